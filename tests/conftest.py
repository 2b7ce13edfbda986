"""
Shared test fixtures.

The repositories are replaced by small in-memory fakes that keep the same
method signatures and the same guarded-update semantics as the SQL
versions: a draft transition only matches a pending row, a delivery insert
is ignored on a duplicate idempotency key, and quota consumption checks
and increments both counters in one step.
"""

import asyncio
import itertools
import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from shared.clients.base import SendResult
from shared.models.delivery import DELIVERY_QUEUED, Delivery
from shared.models.draft import DRAFT_PENDING, Draft
from shared.models.link import Link
from shared.models.owner import OwnerSettings
from shared.models.quota import GlobalQuota, Quota
from shared.models.sampling import SamplingRun
from shared.models.stream import Sample, Stream
from shared.services.drafts import DraftLifecycleController
from shared.services.links import ClickRecorder, LinkService
from shared.services.quota import QuotaManager

APP_ORIGIN = "https://cue.example"
OWNER_ID = "owner-1"
BROADCASTER_ID = "1001"
T0 = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)


# =============================================================================
# Repository fakes
# =============================================================================


class FakeOwnerRepository:
    def __init__(self):
        self.settings: dict[str, OwnerSettings] = {}
        self.tokens: dict[str, str] = {}

    def add(self, owner_id=OWNER_ID, broadcaster_id=BROADCASTER_ID, **kwargs) -> OwnerSettings:
        settings = OwnerSettings(
            owner_id=owner_id,
            broadcaster_id=broadcaster_id,
            broadcaster_login=f"login-{owner_id}",
            **kwargs,
        )
        self.settings[owner_id] = settings
        return settings

    async def get_settings(self, owner_id):
        return self.settings.get(owner_id)

    async def get_by_broadcaster(self, broadcaster_id):
        for s in self.settings.values():
            if s.broadcaster_id == broadcaster_id:
                return s
        return None

    async def update_settings(self, owner_id, **changes):
        current = self.settings.get(owner_id)
        if current is None:
            return None
        updates = {k: v for k, v in changes.items() if v is not None}
        self.settings[owner_id] = replace(current, **updates)
        return self.settings[owner_id]

    async def get_x_token(self, owner_id):
        return self.tokens.get(owner_id)


class FakeStreamRepository:
    def __init__(self):
        self.streams: dict[int, Stream] = {}
        self.samples: list[Sample] = []
        self._ids = itertools.count(1)
        self._sample_ids = itertools.count(1)

    def add(self, owner_id=OWNER_ID, **kwargs) -> Stream:
        stream_id = next(self._ids)
        fields = {
            "platform_stream_id": f"ps-{stream_id}",
            "broadcaster_id": BROADCASTER_ID,
            "started_at": T0,
            "title": "Speedrun night",
        }
        fields.update(kwargs)
        stream = Stream(id=stream_id, owner_id=owner_id, **fields)
        self.streams[stream_id] = stream
        return stream

    async def create_stream(
        self, owner_id, platform_stream_id, broadcaster_id, started_at, *,
        title=None, thumbnail_url=None, platform="twitch",
    ):
        for s in self.streams.values():
            if s.platform == platform and s.platform_stream_id == platform_stream_id:
                return None
        return self.add(
            owner_id,
            platform_stream_id=platform_stream_id,
            broadcaster_id=broadcaster_id,
            started_at=started_at,
            title=title,
            thumbnail_url=thumbnail_url,
            platform=platform,
        )

    async def get_by_platform_stream_id(self, platform_stream_id, platform="twitch"):
        for s in self.streams.values():
            if s.platform == platform and s.platform_stream_id == platform_stream_id:
                return s
        return None

    async def get_stream(self, stream_id, owner_id=None):
        stream = self.streams.get(stream_id)
        if stream is None or (owner_id is not None and stream.owner_id != owner_id):
            return None
        return stream

    async def list_active(self):
        return [s for s in self.streams.values() if s.ended_at is None]

    async def mark_ended(self, stream_id, ended_at):
        stream = self.streams.get(stream_id)
        if stream is None or stream.ended_at is not None:
            return False
        stream.ended_at = ended_at
        return True

    async def raise_peak(self, stream_id, viewer_count):
        stream = self.streams[stream_id]
        if stream.peak_viewer_count is None or stream.peak_viewer_count < viewer_count:
            stream.peak_viewer_count = viewer_count
            return True
        return False

    async def close_stale(self, cutoff):
        closed = []
        for stream in self.streams.values():
            if stream.ended_at is not None:
                continue
            times = [s.taken_at for s in self.samples if s.stream_id == stream.id]
            seen_at = max(times) if times else stream.started_at
            if seen_at < cutoff:
                stream.ended_at = seen_at
                closed.append(stream.id)
        return closed

    async def insert_sample(self, stream_id, viewer_count, taken_at=None):
        sample = Sample(
            id=next(self._sample_ids),
            stream_id=stream_id,
            taken_at=taken_at or datetime.now(timezone.utc),
            viewer_count=viewer_count,
        )
        self.samples.append(sample)
        return sample

    async def list_samples(self, stream_id, since=None, until=None):
        return sorted(
            (
                s
                for s in self.samples
                if s.stream_id == stream_id
                and (since is None or s.taken_at >= since)
                and (until is None or s.taken_at <= until)
            ),
            key=lambda s: s.taken_at,
        )

    async def list_latest_sample_times(self, limit=2):
        return sorted((s.taken_at for s in self.samples), reverse=True)[:limit]


class FakeDraftRepository:
    def __init__(self):
        self.drafts: dict[str, Draft] = {}

    async def create_draft(
        self, stream_id, owner_id, title, target_url, image_url, grace_seconds, timeout_action
    ):
        if any(d.stream_id == stream_id for d in self.drafts.values()):
            return None
        draft = Draft(
            id=str(uuid.uuid4()),
            stream_id=stream_id,
            owner_id=owner_id,
            title=title,
            target_url=target_url,
            image_url=image_url,
            grace_seconds=grace_seconds,
            timeout_action=timeout_action,
            created_at=datetime.now(timezone.utc),
        )
        self.drafts[draft.id] = draft
        return draft

    async def get_draft(self, draft_id, owner_id=None):
        draft = self.drafts.get(draft_id)
        if draft is None or (owner_id is not None and draft.owner_id != owner_id):
            return None
        return replace(draft)

    async def transition(self, draft_id, to_status, resolved_by, owner_id=None):
        # Yield first so concurrent callers interleave like separate connections
        await asyncio.sleep(0)
        draft = self.drafts.get(draft_id)
        if draft is None or draft.status != DRAFT_PENDING:
            return None
        if owner_id is not None and draft.owner_id != owner_id:
            return None
        draft.status = to_status
        draft.resolved_by = resolved_by
        draft.resolved_at = datetime.now(timezone.utc)
        return replace(draft)

    async def list_overdue(self, now, slack_seconds=0):
        return [
            replace(d)
            for d in self.drafts.values()
            if d.status == DRAFT_PENDING
            and d.created_at + timedelta(seconds=d.grace_seconds + slack_seconds) < now
        ]

    async def list_pending(self):
        return [replace(d) for d in self.drafts.values() if d.status == DRAFT_PENDING]


class FakeDeliveryRepository:
    def __init__(self):
        self.by_id: dict[int, Delivery] = {}
        self._ids = itertools.count(1)

    async def insert(
        self, *, owner_id, idempotency_key, channel, status=DELIVERY_QUEUED, body_text="",
        draft_id=None, stream_id=None, template_id=None,
    ):
        if any(d.idempotency_key == idempotency_key for d in self.by_id.values()):
            return None
        delivery = Delivery(
            id=next(self._ids),
            owner_id=owner_id,
            idempotency_key=idempotency_key,
            channel=channel,
            status=status,
            body_text=body_text,
            draft_id=draft_id,
            stream_id=stream_id,
            template_id=template_id,
            created_at=datetime.now(timezone.utc),
        )
        self.by_id[delivery.id] = delivery
        return replace(delivery)

    async def complete(
        self, delivery_id, *, status, body_text, external_post_id=None, error=None,
        latency_ms=None, link_id=None,
    ):
        delivery = self.by_id.get(delivery_id)
        if delivery is None:
            return None
        delivery.status = status
        delivery.body_text = body_text
        delivery.external_post_id = external_post_id
        delivery.error = error
        delivery.latency_ms = latency_ms
        delivery.link_id = link_id
        return replace(delivery)

    async def get_by_key(self, idempotency_key):
        for d in self.by_id.values():
            if d.idempotency_key == idempotency_key:
                return replace(d)
        return None

    async def count_outcomes(self, since):
        rows = [d for d in self.by_id.values() if d.status in ("sent", "failed")]
        return len(rows), sum(1 for d in rows if d.status == "failed")


class FakeQuotaRepository:
    def __init__(self, global_limit=400, reset_on=date(2026, 4, 1)):
        self.quotas: dict[str, Quota] = {}
        self.glob = GlobalQuota(used=0, monthly_limit=global_limit, reset_on=reset_on)

    async def ensure_quota(self, owner_id, monthly_limit, reset_on):
        self.quotas.setdefault(
            owner_id,
            Quota(
                owner_id=owner_id,
                monthly_limit=monthly_limit,
                monthly_used=0,
                global_monthly_used=self.glob.used,
                reset_on=reset_on,
            ),
        )

    async def get_quota(self, owner_id):
        quota = self.quotas.get(owner_id)
        return replace(quota) if quota else None

    async def get_global(self):
        return replace(self.glob)

    async def consume(self, owner_id, amount=1):
        await asyncio.sleep(0)
        quota = self.quotas.get(owner_id)
        if quota is None or quota.monthly_used + amount > quota.monthly_limit:
            return False
        if self.glob.used + amount > self.glob.monthly_limit:
            return False
        quota.monthly_used += amount
        self.glob.used += amount
        quota.global_monthly_used = self.glob.used
        return True

    async def reset_due(self, today, next_reset):
        count = 0
        for quota in self.quotas.values():
            if quota.reset_on <= today:
                quota.monthly_used = 0
                quota.global_monthly_used = 0
                quota.reset_on = next_reset
                count += 1
        if self.glob.reset_on <= today:
            self.glob.used = 0
            self.glob.reset_on = next_reset
        return count

    async def set_global_limit(self, monthly_limit):
        self.glob.monthly_limit = monthly_limit


class FakeLinkRepository:
    def __init__(self):
        self.links: dict[str, Link] = {}
        self.clicks: list[tuple] = []
        self.fail_clicks = False
        self.collide = 0
        self._ids = itertools.count(1)

    async def insert_link(
        self, owner_id, short_code, target_url, *, campaign_id=None, stream_id=None,
        has_media=False,
    ):
        if self.collide > 0:
            self.collide -= 1
            return None
        if short_code in self.links:
            return None
        link = Link(
            id=next(self._ids),
            owner_id=owner_id,
            short_code=short_code,
            target_url=target_url,
            campaign_id=campaign_id,
            stream_id=stream_id,
            has_media=has_media,
        )
        self.links[short_code] = link
        return link

    async def get_by_short_code(self, short_code):
        return self.links.get(short_code)

    async def insert_click(self, link_id, user_agent, referrer):
        if self.fail_clicks:
            raise ConnectionError("clicks table unavailable")
        self.clicks.append((link_id, user_agent, referrer))

    async def count_clicks(self, link_id):
        return sum(1 for c in self.clicks if c[0] == link_id)


class FakeMetricsRepository:
    def __init__(self):
        self.runs: list[SamplingRun] = []
        self.fail = False
        self._ids = itertools.count(1)

    async def record_run(self, *, executed_at=None, **fields):
        if self.fail:
            raise ConnectionError("metrics write failed")
        self.runs.append(
            SamplingRun(
                id=next(self._ids),
                executed_at=executed_at or datetime.now(timezone.utc),
                **fields,
            )
        )

    async def list_since(self, since):
        return [r for r in self.runs if r.executed_at >= since]


# =============================================================================
# Channel / timer fakes
# =============================================================================


class FakeSender:
    def __init__(self, result: SendResult | None = None):
        self.result = result or SendResult(success=True, external_post_id="x-123")
        self.sent: list[tuple] = []
        self.uploads: list[str] = []
        self.media_id: str | None = "media-1"

    async def upload_media(self, owner_id, image_url):
        self.uploads.append(image_url)
        return self.media_id

    async def send(self, owner_id, body, media_ids=None):
        await asyncio.sleep(0)
        self.sent.append((owner_id, body, media_ids))
        return self.result


class FakeWebhook:
    def __init__(self, result: SendResult | None = None):
        self.result = result or SendResult(success=True, external_post_id="discord-9")
        self.sent: list[tuple] = []

    async def send(self, webhook_url, message, *, title=None, url=None, image_url=None):
        self.sent.append((webhook_url, message, title, url))
        return self.result


class FakeTimers:
    def __init__(self):
        self.armed: dict[str, float] = {}
        self.cancelled: list[str] = []

    async def arm(self, draft_id, owner_id, grace_seconds, timeout_action, *, title=None):
        self.armed[draft_id] = grace_seconds

    async def cancel(self, draft_id):
        self.armed.pop(draft_id, None)
        self.cancelled.append(draft_id)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def owners():
    repo = FakeOwnerRepository()
    repo.add()
    repo.tokens[OWNER_ID] = "x-token"
    return repo


@pytest.fixture
def streams():
    return FakeStreamRepository()


@pytest.fixture
def drafts():
    return FakeDraftRepository()


@pytest.fixture
def deliveries():
    return FakeDeliveryRepository()


@pytest.fixture
def quota_repo():
    return FakeQuotaRepository()


@pytest.fixture
def quota(quota_repo):
    return QuotaManager(quota_repo, owner_limit=12, global_limit=400)


@pytest.fixture
def link_repo():
    return FakeLinkRepository()


@pytest.fixture
def link_service(link_repo, streams):
    return LinkService(
        link_repo,
        streams,
        ClickRecorder(link_repo),
        app_origin=APP_ORIGIN,
        allowed_domains=["twitch.tv"],
    )


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def webhook():
    return FakeWebhook()


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def controller(drafts, deliveries, owners, quota, link_service, sender, webhook, timers):
    return DraftLifecycleController(
        drafts, deliveries, owners, quota, link_service, sender, webhook, timers
    )


@pytest.fixture
def stream(streams):
    return streams.add(thumbnail_url="https://static-cdn.jtvnw.net/previews/live_1280x720.jpg")
