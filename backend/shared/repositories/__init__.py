"""Shared repository layer for the CastCue API and worker."""

from .delivery import DeliveryRepository
from .draft import DraftRepository
from .link import LinkRepository
from .owner import OwnerRepository
from .quota import QuotaRepository
from .sampling import SamplingMetricsRepository
from .stream import StreamRepository

__all__ = [
    "DeliveryRepository",
    "DraftRepository",
    "LinkRepository",
    "OwnerRepository",
    "QuotaRepository",
    "SamplingMetricsRepository",
    "StreamRepository",
]
