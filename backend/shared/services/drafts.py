"""Draft Lifecycle Controller.

A draft is created when a stream goes live and ends in exactly one of
``posted`` or ``skipped``. The human path and the grace-timer path both
go through ``DraftRepository.transition``, a guarded update that only
matches a row still ``pending``; whichever caller loses sees ``None`` and
does nothing further.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime

from shared.clients.base import PostSender, SendResult, WebhookChannel
from shared.errors import DraftNotFoundError
from shared.models.delivery import (
    CHANNEL_FALLBACK,
    CHANNEL_PRIMARY,
    DELIVERY_FAILED,
    DELIVERY_QUEUED,
    DELIVERY_SENT,
    DELIVERY_SKIPPED,
    Delivery,
)
from shared.models.draft import DRAFT_POSTED, DRAFT_SKIPPED, Draft
from shared.models.stream import Stream
from shared.repositories.delivery import DeliveryRepository
from shared.repositories.draft import DraftRepository
from shared.repositories.owner import OwnerRepository

from .grace_timer import GraceTimers, clamp_grace
from .links import LinkService
from .quota import QuotaManager

logger = logging.getLogger(__name__)

ACTION_POST_TEMPLATE = "post-with-template"
ACTION_POST_EDITS = "post-with-edits"
ACTION_SKIP = "skip"
ACTIONS = (ACTION_POST_TEMPLATE, ACTION_POST_EDITS, ACTION_SKIP)

RESOLVED_BY_USER = "user"
RESOLVED_BY_TIMER = "timer"
RESOLVED_BY_SWEEP = "sweep"

OUTCOME_POSTED = "posted"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ALREADY_RESOLVED = "already_resolved"

DEFAULT_TEMPLATE = "Live now! {title}"


def idempotency_key(draft_id: str) -> str:
    return hashlib.sha256(f"draft-{draft_id}".encode()).hexdigest()


def render_body(template: str, title: str, url: str) -> str:
    """Fill ``{title}``; the stream URL always goes on its own last line."""
    text = template.replace("{title}", title).replace("{twitch_url}", "")
    text = "\n".join(line.rstrip() for line in text.strip().splitlines())
    return f"{text}\n{url}" if text else url


def apply_link(body: str, original_url: str, url: str) -> str:
    """Swap the stream URL in a user-edited body for *url*, appending it if absent."""
    if original_url in body:
        return body.replace(original_url, url)
    if url in body:
        return body
    return f"{body.rstrip()}\n{url}"


@dataclass
class Resolution:
    outcome: str  # 'posted' | 'skipped' | 'already_resolved'
    draft: Draft
    delivery: Delivery | None = None

    @property
    def send_failed(self) -> bool:
        return self.delivery is not None and self.delivery.status == DELIVERY_FAILED


class DraftLifecycleController:
    def __init__(
        self,
        drafts: DraftRepository,
        deliveries: DeliveryRepository,
        owners: OwnerRepository,
        quota: QuotaManager,
        links: LinkService,
        sender: PostSender,
        fallback: WebhookChannel,
        timers: GraceTimers | None = None,
        *,
        default_grace_seconds: int = 90,
        default_timeout_action: str = "post",
    ) -> None:
        self.drafts = drafts
        self.deliveries = deliveries
        self.owners = owners
        self.quota = quota
        self.links = links
        self.sender = sender
        self.fallback = fallback
        self.timers = timers
        self.default_grace_seconds = default_grace_seconds
        self.default_timeout_action = default_timeout_action

    # ==================== Creation ====================

    async def create_draft(
        self, stream: Stream, title: str, target_url: str, image_url: str | None = None
    ) -> Draft | None:
        """Create the pending draft for *stream* and arm its grace timer.

        Returns None when the stream already has a draft.
        """
        settings = await self.owners.get_settings(stream.owner_id)
        grace = clamp_grace(settings.grace_seconds if settings else self.default_grace_seconds)
        timeout_action = settings.timeout_action if settings else self.default_timeout_action

        draft = await self.drafts.create_draft(
            stream.id, stream.owner_id, title, target_url, image_url, grace, timeout_action
        )
        if draft is None:
            logger.info(f"Draft for stream {stream.id} already exists, not creating another")
            return None

        logger.info(
            f"Draft {draft.id} created for stream {stream.id} "
            f"(owner={stream.owner_id}, grace={grace}s, timeout={timeout_action})"
        )
        await self.arm_grace_timer(draft.id, grace, timeout_action, draft=draft)
        return draft

    async def arm_grace_timer(
        self,
        draft_id: str,
        grace_seconds: int,
        timeout_action: str,
        *,
        draft: Draft | None = None,
    ) -> None:
        if self.timers is None:
            return
        if draft is None:
            draft = await self.drafts.get_draft(draft_id)
            if draft is None:
                raise DraftNotFoundError(f"Draft {draft_id} not found")
        try:
            await self.timers.arm(
                draft_id, draft.owner_id, grace_seconds, timeout_action, title=draft.title
            )
        except Exception as e:
            # The sweep resolves drafts whose timer was never armed
            logger.warning(f"Failed to arm grace timer for draft {draft_id}: {e}")

    # ==================== Reads ====================

    async def get_draft(self, draft_id: str, owner_id: str | None = None) -> Draft:
        draft = await self.drafts.get_draft(draft_id, owner_id)
        if draft is None:
            raise DraftNotFoundError(f"Draft {draft_id} not found")
        return draft

    # ==================== Resolution ====================

    async def resolve(
        self,
        draft_id: str,
        action: str,
        edited_body: str | None = None,
        *,
        owner_id: str | None = None,
        resolved_by: str = RESOLVED_BY_USER,
        template_id: str | None = None,
    ) -> Resolution:
        if action not in ACTIONS:
            raise ValueError(f"Unknown draft action: {action}")
        if action == ACTION_POST_EDITS and not edited_body:
            raise ValueError("post-with-edits requires an edited body")

        to_status = DRAFT_SKIPPED if action == ACTION_SKIP else DRAFT_POSTED
        draft = await self.drafts.transition(draft_id, to_status, resolved_by, owner_id)
        if draft is None:
            existing = await self.drafts.get_draft(draft_id, owner_id)
            if existing is None:
                raise DraftNotFoundError(f"Draft {draft_id} not found")
            logger.info(
                f"Draft {draft_id} already {existing.status}, ignoring {action} from {resolved_by}"
            )
            delivery = await self.deliveries.get_by_key(idempotency_key(draft_id))
            return Resolution(OUTCOME_ALREADY_RESOLVED, existing, delivery)

        if resolved_by == RESOLVED_BY_USER and self.timers is not None:
            try:
                await self.timers.cancel(draft_id)
            except Exception as e:
                logger.warning(f"Failed to cancel grace timer for draft {draft_id}: {e}")

        if action == ACTION_SKIP:
            delivery = await self.deliveries.insert(
                owner_id=draft.owner_id,
                idempotency_key=idempotency_key(draft.id),
                channel=CHANNEL_PRIMARY,
                status=DELIVERY_SKIPPED,
                draft_id=draft.id,
                stream_id=draft.stream_id,
            )
            logger.info(f"Draft {draft.id} resolved by {resolved_by}: skipped")
            return Resolution(OUTCOME_SKIPPED, draft, delivery)

        delivery = await self._post(draft, edited_body, template_id)
        logger.info(
            f"Draft {draft.id} resolved by {resolved_by}: posted "
            f"({delivery.channel if delivery else '-'}: {delivery.status if delivery else '-'})"
        )
        return Resolution(OUTCOME_POSTED, draft, delivery)

    async def resolve_timeout(
        self, draft_id: str, resolved_by: str = RESOLVED_BY_TIMER
    ) -> Resolution | None:
        """Apply the draft's captured timeout action. No-op if already terminal."""
        draft = await self.drafts.get_draft(draft_id)
        if draft is None:
            logger.warning(f"Grace timer fired for unknown draft {draft_id}")
            return None
        if not draft.is_pending:
            return None

        action = ACTION_POST_TEMPLATE if draft.timeout_action == "post" else ACTION_SKIP
        resolution = await self.resolve(draft_id, action, resolved_by=resolved_by)
        if resolution.send_failed:
            logger.warning(
                f"Automatic post for draft {draft_id} failed: {resolution.delivery.error}"
            )
        return resolution

    async def sweep_overdue(self, now: datetime, slack_seconds: int = 30) -> int:
        """Resolve drafts left pending past their window (lost timers)."""
        overdue = await self.drafts.list_overdue(now, slack_seconds)
        resolved = 0
        for draft in overdue:
            try:
                resolution = await self.resolve_timeout(draft.id, RESOLVED_BY_SWEEP)
            except Exception as e:
                logger.exception(f"Sweep failed to resolve draft {draft.id}: {e}")
                continue
            if resolution is not None and resolution.outcome != OUTCOME_ALREADY_RESOLVED:
                resolved += 1
        if overdue:
            logger.info(f"Draft sweep: {resolved}/{len(overdue)} overdue draft(s) resolved")
        return resolved

    # ==================== Posting ====================

    async def _post(
        self, draft: Draft, edited_body: str | None, template_id: str | None
    ) -> Delivery | None:
        """Run the post for a draft that has already been moved to ``posted``.

        The draft is terminal from here on, so an unexpected failure is
        recorded as a ``failed`` delivery rather than left with no ledger row.
        """
        try:
            return await self._attempt_post(draft, edited_body, template_id)
        except Exception as e:
            logger.exception(f"Posting draft {draft.id} failed: {type(e).__name__}: {e}")
            return await self._record_failed_attempt(draft, str(e) or type(e).__name__)

    async def _record_failed_attempt(self, draft: Draft, error: str) -> Delivery | None:
        key = idempotency_key(draft.id)
        try:
            delivery = await self.deliveries.insert(
                owner_id=draft.owner_id,
                idempotency_key=key,
                channel=CHANNEL_PRIMARY,
                status=DELIVERY_QUEUED,
                draft_id=draft.id,
                stream_id=draft.stream_id,
            )
            if delivery is not None:
                return await self.deliveries.complete(
                    delivery.id, status=DELIVERY_FAILED, body_text="", error=error
                )

            existing = await self.deliveries.get_by_key(key)
            if existing is None or existing.status != DELIVERY_QUEUED:
                return existing
            return await self.deliveries.complete(
                existing.id,
                status=DELIVERY_FAILED,
                body_text=existing.body_text,
                error=error,
                link_id=existing.link_id,
            )
        except Exception as e:
            logger.exception(f"Could not record failed delivery for draft {draft.id}: {e}")
            raise

    async def _attempt_post(
        self, draft: Draft, edited_body: str | None, template_id: str | None
    ) -> Delivery | None:
        owner_id = draft.owner_id
        settings = await self.owners.get_settings(owner_id)

        status = await self.quota.get_status(owner_id)
        use_fallback = status.should_fallback
        if not use_fallback and not await self.quota.try_consume(owner_id):
            use_fallback = True
        if use_fallback:
            logger.info(
                f"Draft {draft.id}: routing to fallback webhook "
                f"(warning={status.warning_level}, can_post={status.can_post})"
            )

        media_ids: list[str] = []
        if not use_fallback and draft.image_url:
            try:
                media_id = await self.sender.upload_media(owner_id, draft.image_url)
            except Exception as e:
                logger.warning(f"Media upload failed for draft {draft.id}: {e}")
                media_id = None
            if media_id:
                media_ids.append(media_id)

        link_id: int | None = None
        url = draft.target_url
        try:
            link = await self.links.create_short_link(
                owner_id,
                draft.target_url,
                campaign_id=f"stream-{draft.stream_id}",
                stream_id=draft.stream_id,
                has_media=bool(media_ids),
            )
            link_id = link.id
            url = self.links.short_url(link.short_code)
        except Exception as e:
            logger.warning(f"Short link creation failed for draft {draft.id}, using original URL: {e}")

        if edited_body:
            body = apply_link(edited_body, draft.target_url, url)
        else:
            template = (settings.default_template if settings else None) or DEFAULT_TEMPLATE
            body = render_body(template, draft.title, url)

        channel = CHANNEL_FALLBACK if use_fallback else CHANNEL_PRIMARY
        key = idempotency_key(draft.id)
        queued = await self.deliveries.insert(
            owner_id=owner_id,
            idempotency_key=key,
            channel=channel,
            body_text=body,
            draft_id=draft.id,
            stream_id=draft.stream_id,
            template_id=template_id,
        )
        if queued is None:
            logger.info(f"Delivery for draft {draft.id} already recorded, not sending again")
            return await self.deliveries.get_by_key(key)

        started = time.monotonic()
        if use_fallback:
            result = await self._send_fallback(settings, draft, body, url)
        else:
            result = await self._send_primary(owner_id, body, media_ids)
        latency_ms = int((time.monotonic() - started) * 1000)

        return await self.deliveries.complete(
            queued.id,
            status=DELIVERY_SENT if result.success else DELIVERY_FAILED,
            body_text=body,
            external_post_id=result.external_post_id,
            error=result.error,
            latency_ms=latency_ms,
            link_id=link_id,
        )

    async def _send_primary(self, owner_id: str, body: str, media_ids: list[str]) -> SendResult:
        try:
            return await self.sender.send(owner_id, body, media_ids or None)
        except Exception as e:
            logger.exception(f"Post sender raised for owner {owner_id}: {e}")
            return SendResult(success=False, error=str(e) or type(e).__name__)

    async def _send_fallback(self, settings, draft: Draft, body: str, url: str) -> SendResult:
        webhook_url = settings.fallback_webhook_url if settings else None
        if not webhook_url:
            return SendResult(success=False, error="Quota exhausted and no fallback webhook configured")
        try:
            return await self.fallback.send(
                webhook_url, body, title=draft.title, url=url, image_url=draft.image_url
            )
        except Exception as e:
            logger.exception(f"Fallback webhook raised for draft {draft.id}: {e}")
            return SendResult(success=False, error=str(e) or type(e).__name__)
