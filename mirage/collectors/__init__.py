"""
Mirage Collectors
==================

Input side of the pipeline.

Modules:
    normalizer  -- Raw scan records to canonical NetworkObservations
    replay      -- Recorded snapshot files (JSON / JSON lines)
"""

from mirage.collectors.normalizer import (
    SnapshotNormalizer,
    canonicalize_bssid,
    classify_security,
)
from mirage.collectors.replay import ReplaySnapshot, iter_snapshots, load_snapshots

__all__ = [
    "ReplaySnapshot",
    "SnapshotNormalizer",
    "canonicalize_bssid",
    "classify_security",
    "iter_snapshots",
    "load_snapshots",
]
