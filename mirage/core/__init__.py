"""
Mirage Core
============

Domain models and the observation store. The correlation engine lives
in :mod:`mirage.core.engine` and is imported from there directly.
"""

from mirage.core.models import (
    CycleReport,
    CycleState,
    Detection,
    Finding,
    FindingBatch,
    FindingStatus,
    FindingType,
    FrequencyBand,
    NetworkHistory,
    NetworkObservation,
    NormalizationResult,
    SecurityType,
    SsidSighting,
)
from mirage.core.store import ObservationStore

__all__ = [
    "CycleReport",
    "CycleState",
    "Detection",
    "Finding",
    "FindingBatch",
    "FindingStatus",
    "FindingType",
    "FrequencyBand",
    "NetworkHistory",
    "NetworkObservation",
    "NormalizationResult",
    "ObservationStore",
    "SecurityType",
    "SsidSighting",
]
