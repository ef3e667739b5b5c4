"""
Mirage Detector Interface
==========================

The read-only view of the observation store handed to every detector
once per cycle, and the structural :class:`Detector` protocol the
correlation engine schedules.

Detectors are pure functions of their :class:`DetectionContext`: they
never touch the store directly, never mutate the histories they are
given, and report only subjects observed in the current cycle so that
findings lapse when the suspect transmitter goes quiet.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol, Sequence, runtime_checkable

from mirage.core.models import Detection, NetworkHistory


@dataclass(frozen=True, slots=True)
class DetectionContext:
    """Snapshot of store state for one detection phase.

    Attributes:
        now:        Cycle timestamp (timezone-aware).
        cycle:      Current cycle number.
        histories:  Copies of every history active in the retention window.
        retention_window_seconds: Width of that window.
    """

    now: datetime
    cycle: int
    histories: Sequence[NetworkHistory]
    retention_window_seconds: float = 600.0

    @property
    def window_start(self) -> datetime:
        return self.now - timedelta(seconds=self.retention_window_seconds)

    @property
    def current(self) -> list[NetworkHistory]:
        """Histories observed during the current cycle."""
        return [h for h in self.histories if h.last_cycle == self.cycle]

    @property
    def baseline(self) -> list[NetworkHistory]:
        """Histories first observed before the current cycle."""
        return [h for h in self.histories if h.first_cycle < self.cycle]


@runtime_checkable
class Detector(Protocol):
    """Anything with a ``name`` and a ``detect(context)`` method.

    A detector may also expose ``finding_type``, the one
    :class:`~mirage.core.models.FindingType` it reports. The engine uses
    it to hold that type's findings open while the detector is failing;
    without it, a failure holds every type no working detector reports.
    """

    name: str

    def detect(self, context: DetectionContext) -> list[Detection]:
        ...
