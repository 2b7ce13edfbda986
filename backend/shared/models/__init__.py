"""Shared data models for the CastCue API and worker."""

from .delivery import Delivery
from .draft import Draft
from .link import Click, Link
from .owner import OwnerSettings
from .quota import GlobalQuota, Quota
from .sampling import SamplingRun
from .stream import Sample, Stream

__all__ = [
    "Click",
    "Delivery",
    "Draft",
    "GlobalQuota",
    "Link",
    "OwnerSettings",
    "Quota",
    "Sample",
    "SamplingRun",
    "Stream",
]
