"""Tests for the draft lifecycle: creation, resolution races, posting and fallback."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from shared.clients.base import SendResult
from shared.errors import DraftNotFoundError
from shared.models.delivery import (
    CHANNEL_FALLBACK,
    CHANNEL_PRIMARY,
    DELIVERY_FAILED,
    DELIVERY_SENT,
    DELIVERY_SKIPPED,
)
from shared.models.draft import DRAFT_POSTED, DRAFT_SKIPPED
from shared.services.drafts import (
    ACTION_POST_EDITS,
    ACTION_POST_TEMPLATE,
    ACTION_SKIP,
    OUTCOME_ALREADY_RESOLVED,
    OUTCOME_POSTED,
    OUTCOME_SKIPPED,
    RESOLVED_BY_SWEEP,
    RESOLVED_BY_TIMER,
    apply_link,
    idempotency_key,
    render_body,
)

from conftest import APP_ORIGIN, OWNER_ID

TARGET_URL = "https://twitch.tv/speedy"


@pytest.fixture
async def draft(controller, stream):
    return await controller.create_draft(stream, stream.title, TARGET_URL, stream.thumbnail_url)


# =============================================================================
# Body rendering
# =============================================================================


class TestRenderBody:
    def test_url_goes_on_last_line(self):
        assert render_body("Live now! {title}", "Chill", "https://s/l/ab") == "Live now! Chill\nhttps://s/l/ab"

    def test_legacy_url_placeholder_is_dropped(self):
        body = render_body("{title} {twitch_url}", "Chill", "https://s/l/ab")
        assert body == "Chill\nhttps://s/l/ab"

    def test_apply_link_replaces_original_url(self):
        assert apply_link(f"Come {TARGET_URL} now", TARGET_URL, "https://s/l/ab") == "Come https://s/l/ab now"

    def test_apply_link_appends_when_missing(self):
        assert apply_link("Come hang out", TARGET_URL, "https://s/l/ab") == "Come hang out\nhttps://s/l/ab"


def test_idempotency_key_is_deterministic():
    assert idempotency_key("d1") == idempotency_key("d1")
    assert idempotency_key("d1") != idempotency_key("d2")


# =============================================================================
# Creation
# =============================================================================


async def test_create_draft_arms_timer_with_owner_settings(controller, stream, owners, timers):
    owners.settings[OWNER_ID].grace_seconds = 5000
    draft = await controller.create_draft(stream, stream.title, TARGET_URL)

    assert draft.status == "pending"
    assert draft.grace_seconds == 300
    assert timers.armed[draft.id] == 300


async def test_create_draft_twice_for_same_stream(controller, stream):
    assert await controller.create_draft(stream, "t", TARGET_URL) is not None
    assert await controller.create_draft(stream, "t", TARGET_URL) is None


# =============================================================================
# Human resolution
# =============================================================================


async def test_post_with_template(controller, draft, sender, link_repo, quota_repo, timers):
    resolution = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)

    assert resolution.outcome == OUTCOME_POSTED
    assert resolution.draft.status == DRAFT_POSTED
    delivery = resolution.delivery
    assert delivery.status == DELIVERY_SENT
    assert delivery.channel == CHANNEL_PRIMARY
    assert delivery.external_post_id == "x-123"
    assert delivery.latency_ms is not None

    link = next(iter(link_repo.links.values()))
    assert delivery.link_id == link.id
    assert link.has_media
    assert delivery.body_text == f"Live now! Speedrun night\n{APP_ORIGIN}/l/{link.short_code}"

    assert len(sender.sent) == 1
    assert sender.sent[0][2] == ["media-1"]
    assert quota_repo.quotas[OWNER_ID].monthly_used == 1
    assert draft.id in timers.cancelled


async def test_post_with_edits_swaps_in_short_link(controller, draft, link_repo):
    resolution = await controller.resolve(
        draft.id, ACTION_POST_EDITS, f"Racing tonight {TARGET_URL}", owner_id=OWNER_ID
    )

    link = next(iter(link_repo.links.values()))
    assert resolution.delivery.body_text == f"Racing tonight {APP_ORIGIN}/l/{link.short_code}"


async def test_post_with_edits_requires_body(controller, draft):
    with pytest.raises(ValueError):
        await controller.resolve(draft.id, ACTION_POST_EDITS, owner_id=OWNER_ID)


async def test_skip_records_skipped_delivery(controller, draft, sender, quota_repo):
    resolution = await controller.resolve(draft.id, ACTION_SKIP, owner_id=OWNER_ID)

    assert resolution.outcome == OUTCOME_SKIPPED
    assert resolution.draft.status == DRAFT_SKIPPED
    assert resolution.delivery.status == DELIVERY_SKIPPED
    assert sender.sent == []
    assert OWNER_ID not in quota_repo.quotas


async def test_other_owner_cannot_resolve(controller, draft):
    with pytest.raises(DraftNotFoundError):
        await controller.resolve(draft.id, ACTION_SKIP, owner_id="someone-else")


async def test_unknown_draft(controller):
    with pytest.raises(DraftNotFoundError):
        await controller.resolve("00000000-0000-0000-0000-000000000000", ACTION_SKIP)


# =============================================================================
# Exactly-once
# =============================================================================


async def test_human_and_timer_race_produces_one_post(controller, draft, sender, deliveries):
    results = await asyncio.gather(
        controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID),
        controller.resolve_timeout(draft.id),
    )

    posted = [r for r in results if r is not None and r.outcome == OUTCOME_POSTED]
    assert len(posted) == 1
    assert len(sender.sent) == 1
    assert len(deliveries.by_id) == 1


async def test_retry_after_post_returns_existing_delivery(controller, draft, sender):
    first = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)
    second = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)

    assert second.outcome == OUTCOME_ALREADY_RESOLVED
    assert second.delivery.id == first.delivery.id
    assert len(sender.sent) == 1


async def test_skip_after_post_is_rejected(controller, draft):
    await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)
    resolution = await controller.resolve(draft.id, ACTION_SKIP, owner_id=OWNER_ID)

    assert resolution.outcome == OUTCOME_ALREADY_RESOLVED
    assert resolution.draft.status == DRAFT_POSTED


# =============================================================================
# Timer and sweep
# =============================================================================


async def test_timeout_applies_captured_skip_action(controller, stream, owners, sender):
    owners.settings[OWNER_ID].timeout_action = "skip"
    draft = await controller.create_draft(stream, stream.title, TARGET_URL)

    resolution = await controller.resolve_timeout(draft.id)

    assert resolution.outcome == OUTCOME_SKIPPED
    assert resolution.draft.resolved_by == RESOLVED_BY_TIMER
    assert sender.sent == []


async def test_timeout_on_resolved_draft_is_noop(controller, draft, sender):
    await controller.resolve(draft.id, ACTION_SKIP, owner_id=OWNER_ID)
    assert await controller.resolve_timeout(draft.id) is None
    assert sender.sent == []


async def test_sweep_resolves_overdue_drafts_once(controller, draft, drafts):
    drafts.drafts[draft.id].created_at = datetime.now(timezone.utc) - timedelta(minutes=10)
    now = datetime.now(timezone.utc)

    assert await controller.sweep_overdue(now, 30) == 1
    assert await controller.sweep_overdue(now, 30) == 0
    assert drafts.drafts[draft.id].resolved_by == RESOLVED_BY_SWEEP


async def test_sweep_leaves_drafts_inside_window(controller, draft):
    assert await controller.sweep_overdue(datetime.now(timezone.utc), 30) == 0


# =============================================================================
# Degraded paths
# =============================================================================


async def _exhaust_owner_quota(quota_repo):
    await quota_repo.ensure_quota(OWNER_ID, 12, date(2026, 4, 1))
    quota_repo.quotas[OWNER_ID].monthly_used = 12


async def test_quota_exhausted_routes_to_fallback(controller, draft, owners, quota_repo, sender, webhook):
    owners.settings[OWNER_ID].fallback_webhook_url = "https://discord.com/api/webhooks/1/abc"
    await _exhaust_owner_quota(quota_repo)

    resolution = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)

    assert resolution.delivery.channel == CHANNEL_FALLBACK
    assert resolution.delivery.status == DELIVERY_SENT
    assert sender.sent == []
    assert sender.uploads == []
    assert len(webhook.sent) == 1
    assert quota_repo.quotas[OWNER_ID].monthly_used == 12


async def test_critical_global_usage_routes_to_fallback(controller, draft, owners, quota_repo, webhook):
    owners.settings[OWNER_ID].fallback_webhook_url = "https://discord.com/api/webhooks/1/abc"
    quota_repo.glob.used = 390

    resolution = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)

    assert resolution.delivery.channel == CHANNEL_FALLBACK
    assert len(webhook.sent) == 1


async def test_quota_exhausted_without_webhook_fails_delivery(controller, draft, quota_repo, drafts):
    await _exhaust_owner_quota(quota_repo)

    resolution = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)

    assert resolution.send_failed
    assert resolution.delivery.error == "Quota exhausted and no fallback webhook configured"
    assert drafts.drafts[draft.id].status == DRAFT_POSTED


async def test_sender_failure_keeps_draft_posted(controller, draft, sender, drafts):
    sender.result = SendResult(success=False, error="Too Many Requests")

    resolution = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)

    assert resolution.outcome == OUTCOME_POSTED
    assert resolution.send_failed
    assert resolution.delivery.status == DELIVERY_FAILED
    assert resolution.delivery.error == "Too Many Requests"
    assert drafts.drafts[draft.id].status == DRAFT_POSTED


async def test_short_link_failure_uses_original_url(controller, draft, link_repo):
    link_repo.collide = 100

    resolution = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)

    assert resolution.delivery.status == DELIVERY_SENT
    assert resolution.delivery.body_text.endswith(TARGET_URL)
    assert resolution.delivery.link_id is None


async def test_store_error_after_claim_records_failed_delivery(controller, draft, sender, drafts):
    controller.quota.get_status = AsyncMock(side_effect=ConnectionError("quota store unavailable"))

    first = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)

    assert first.outcome == OUTCOME_POSTED
    assert first.send_failed
    assert first.delivery.status == DELIVERY_FAILED
    assert first.delivery.error == "quota store unavailable"
    assert first.delivery.idempotency_key == idempotency_key(draft.id)
    assert drafts.drafts[draft.id].status == DRAFT_POSTED
    assert sender.sent == []

    retry = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)
    assert retry.outcome == OUTCOME_ALREADY_RESOLVED
    assert retry.delivery.id == first.delivery.id
    assert retry.delivery.status == DELIVERY_FAILED


async def test_store_error_during_timeout_is_recorded(controller, draft, deliveries):
    controller.owners.get_settings = AsyncMock(side_effect=ConnectionError("settings read failed"))

    resolution = await controller.resolve_timeout(draft.id)

    assert resolution.outcome == OUTCOME_POSTED
    assert resolution.delivery.error == "settings read failed"
    assert [d.status for d in deliveries.by_id.values()] == [DELIVERY_FAILED]


async def test_error_after_queued_delivery_marks_it_failed(controller, draft, deliveries, sender):
    controller._send_primary = AsyncMock(side_effect=RuntimeError("event loop closed"))

    resolution = await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)

    assert len(deliveries.by_id) == 1
    assert resolution.delivery.status == DELIVERY_FAILED
    assert resolution.delivery.error == "event loop closed"
    assert resolution.delivery.body_text


async def test_unrecordable_failure_propagates(controller, draft, deliveries):
    controller.quota.get_status = AsyncMock(side_effect=ConnectionError("quota store unavailable"))
    deliveries.insert = AsyncMock(side_effect=ConnectionError("ledger unavailable"))

    with pytest.raises(ConnectionError, match="ledger unavailable"):
        await controller.resolve(draft.id, ACTION_POST_TEMPLATE, owner_id=OWNER_ID)
