"""Sampling & Lift Calculator.

Viewer counts are captured for every live stream on a fixed cadence; the
lift of a post is the difference between mean viewers after and before it.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from shared.clients.base import ViewerCountSource
from shared.errors import StreamNotFoundError, UpstreamError
from shared.models.stream import Sample, Stream
from shared.repositories.sampling import SamplingMetricsRepository
from shared.repositories.stream import StreamRepository

logger = logging.getLogger(__name__)

LIFT_WINDOW = timedelta(minutes=5)
DEFAULT_STALE_AFTER = timedelta(hours=3)
DEFAULT_CONCURRENCY = 10

METHOD_SESSION = "session"
METHOD_WINDOW = "window"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


# ==================== Lift ====================


@dataclass
class LiftResult:
    baseline: float
    after_post: float
    lift: int  # clamped to >= 0
    raw_lift: int
    lift_percent: float
    method: str  # 'session' | 'window'
    before_samples: int = 0
    after_samples: int = 0


def _lift(before: Sequence[int], after: Sequence[int], method: str) -> LiftResult | None:
    if not before or not after:
        return None
    baseline = sum(before) / len(before)
    after_avg = sum(after) / len(after)
    raw = _round_half_up(after_avg - baseline)
    lift = max(0, raw)
    percent = round(lift / baseline * 100, 1) if baseline > 0 else 0.0
    return LiftResult(
        baseline=round(baseline, 1),
        after_post=round(after_avg, 1),
        lift=lift,
        raw_lift=raw,
        lift_percent=percent,
        method=method,
        before_samples=len(before),
        after_samples=len(after),
    )


def _as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken as UTC; sample times are always aware."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def session_lift(samples: Sequence[Sample], post_time: datetime) -> LiftResult | None:
    """Whole-session split: every sample before *post_time* against every one after."""
    post_time = _as_utc(post_time)
    before = [s.viewer_count for s in samples if s.taken_at < post_time]
    after = [s.viewer_count for s in samples if s.taken_at >= post_time]
    return _lift(before, after, METHOD_SESSION)


def windowed_lift(
    samples: Sequence[Sample], post_time: datetime, window: timedelta = LIFT_WINDOW
) -> LiftResult | None:
    """Only the *window* immediately before and after *post_time*."""
    post_time = _as_utc(post_time)
    before = [
        s.viewer_count for s in samples if post_time - window <= s.taken_at < post_time
    ]
    after = [
        s.viewer_count for s in samples if post_time <= s.taken_at < post_time + window
    ]
    return _lift(before, after, METHOD_WINDOW)


# ==================== Job ====================


@dataclass
class SamplingJobResult:
    active_streams: int = 0
    successful: int = 0
    ended: int = 0
    failed: int = 0
    stale_closed: list[int] = field(default_factory=list)
    execution_time_ms: int = 0
    errors: list[str] = field(default_factory=list)


class SamplingService:
    def __init__(
        self,
        streams: StreamRepository,
        metrics: SamplingMetricsRepository,
        viewer_source: ViewerCountSource,
        *,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        concurrency: int = DEFAULT_CONCURRENCY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.streams = streams
        self.metrics = metrics
        self.viewer_source = viewer_source
        self.stale_after = stale_after
        self.concurrency = concurrency
        self.clock = clock

    async def sample(self, stream_id: int) -> Sample | None:
        """Take one reading. None means the stream has ended (or already had)."""
        stream = await self.streams.get_stream(stream_id)
        if stream is None:
            raise StreamNotFoundError(f"Stream {stream_id} not found")
        return await self._sample_stream(stream)

    async def _sample_stream(self, stream: Stream) -> Sample | None:
        if not stream.is_live:
            return None

        # UpstreamError propagates: this tick is skipped, the stream stays live
        count = await self.viewer_source.get_live_viewer_count(
            stream.broadcaster_id, stream.platform_stream_id
        )
        if count is None:
            if await self.streams.mark_ended(stream.id, self.clock()):
                logger.info(f"Stream {stream.id} detected offline, marked ended")
            return None

        sample = await self.streams.insert_sample(stream.id, max(0, count), self.clock())
        if await self.streams.raise_peak(stream.id, sample.viewer_count):
            logger.debug(f"Stream {stream.id} new peak: {sample.viewer_count}")
        return sample

    async def compute_lift(self, stream_id: int, post_time: datetime) -> LiftResult | None:
        post_time = _as_utc(post_time)
        samples = await self.streams.list_samples(stream_id)
        return session_lift(samples, post_time)

    async def compute_windowed_lift(
        self, stream_id: int, post_time: datetime, window: timedelta = LIFT_WINDOW
    ) -> LiftResult | None:
        post_time = _as_utc(post_time)
        samples = await self.streams.list_samples(
            stream_id, since=post_time - window, until=post_time + window
        )
        return windowed_lift(samples, post_time, window)

    async def close_stale(self) -> list[int]:
        """End streams that have gone without a sample for too long."""
        closed = await self.streams.close_stale(self.clock() - self.stale_after)
        if closed:
            logger.info(f"Closed {len(closed)} stale stream(s): {closed}")
        return closed

    async def run_sampling_job(self, source: str = "worker") -> SamplingJobResult:
        started = time.monotonic()
        result = SamplingJobResult()
        semaphore = asyncio.Semaphore(self.concurrency)

        streams = await self.streams.list_active()
        result.active_streams = len(streams)

        async def _one(stream: Stream) -> None:
            async with semaphore:
                try:
                    sample = await self._sample_stream(stream)
                except UpstreamError as e:
                    result.failed += 1
                    result.errors.append(f"stream {stream.id}: {e.message}")
                    return
                except Exception as e:
                    logger.exception(f"Sampling stream {stream.id} failed: {e}")
                    result.failed += 1
                    result.errors.append(f"stream {stream.id}: {type(e).__name__}")
                    return
                if sample is None:
                    result.ended += 1
                else:
                    result.successful += 1

        await asyncio.gather(*(_one(s) for s in streams))

        try:
            result.stale_closed = await self.close_stale()
            result.ended += len(result.stale_closed)
        except Exception as e:
            logger.exception(f"Closing stale streams failed: {e}")
            result.errors.append(f"close_stale: {type(e).__name__}")

        result.execution_time_ms = int((time.monotonic() - started) * 1000)

        try:
            await self.metrics.record_run(
                active_streams_count=result.active_streams,
                successful_samples=result.successful,
                failed_samples=result.failed,
                ended_streams=result.ended,
                execution_time_ms=result.execution_time_ms,
                error_message="; ".join(result.errors)[:1000] or None,
                source=source,
            )
        except Exception as e:
            logger.warning(f"Failed to record sampling metrics: {type(e).__name__}: {e}")

        logger.info(
            f"Sampling run ({source}): {result.active_streams} active, "
            f"{result.successful} sampled, {result.ended} ended, {result.failed} failed "
            f"in {result.execution_time_ms}ms"
        )
        return result
