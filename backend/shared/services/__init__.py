"""Core engine services shared by the API and the worker."""

from .capacity import CapacityService, Recommendation, RunMetrics, recommend, summarize_runs
from .drafts import DraftLifecycleController, Resolution
from .eventsub import StreamOnlineEvent, StreamOnlineHandler, verify_signature
from .grace_timer import GraceTimerScheduler, PgNotifyGraceTimers
from .links import ClickRecorder, LinkService, RedirectDecision
from .quota import QuotaManager, QuotaStatus
from .reports import ReportService
from .sampling import LiftResult, SamplingService

__all__ = [
    "CapacityService",
    "ClickRecorder",
    "DraftLifecycleController",
    "GraceTimerScheduler",
    "LiftResult",
    "LinkService",
    "PgNotifyGraceTimers",
    "QuotaManager",
    "QuotaStatus",
    "Recommendation",
    "RedirectDecision",
    "ReportService",
    "Resolution",
    "RunMetrics",
    "SamplingService",
    "StreamOnlineEvent",
    "StreamOnlineHandler",
    "recommend",
    "summarize_runs",
    "verify_signature",
]
