"""Worker components, loaded in order by ``Worker.start``."""

from .draft_sweep import DraftSweepComponent
from .grace_timers import GraceTimerComponent
from .quota_reset import QuotaResetComponent
from .sampler import SamplerComponent

COMPONENTS = [GraceTimerComponent, DraftSweepComponent, SamplerComponent, QuotaResetComponent]

__all__ = [
    "COMPONENTS",
    "DraftSweepComponent",
    "GraceTimerComponent",
    "QuotaResetComponent",
    "SamplerComponent",
]
