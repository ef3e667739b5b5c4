"""
Mirage Mathematical Utilities
==============================

Small NumPy-backed helpers used by the heuristic detectors: presence
vectors over scan cycles, set-similarity between presence vectors,
and event-rate estimation over time windows.

References:
    - Jaccard, P. (1912). The Distribution of the Flora in the Alpine
      Zone. New Phytologist, 11(2), 37-50.
    - Harris, C. R. et al. (2020). Array programming with NumPy.
      Nature, 585, 357-362.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np
from numpy.typing import NDArray

BoolArray = NDArray[np.bool_]


def presence_vector(cycles: Iterable[int], first: int, last: int) -> BoolArray:
    """Build a boolean vector marking the cycles in ``[first, last]`` present.

    Args:
        cycles: Cycle numbers in which an entity was observed.
        first:  First cycle of the window (inclusive).
        last:   Last cycle of the window (inclusive).

    Returns:
        Array of length ``last - first + 1``; empty when the window is empty.
    """
    length = last - first + 1
    if length <= 0:
        return np.zeros(0, dtype=np.bool_)
    vec = np.zeros(length, dtype=np.bool_)
    idx = np.fromiter(
        (c - first for c in cycles if first <= c <= last), dtype=np.int64
    )
    if idx.size:
        vec[idx] = True
    return vec


def jaccard_similarity(a: BoolArray, b: BoolArray) -> float:
    """Jaccard index ``|a & b| / |a | b|`` of two equal-length boolean vectors.

    Two all-false vectors have similarity 0.0 by convention.

    Raises:
        ValueError: If the vectors differ in shape.
    """
    a = np.asarray(a, dtype=np.bool_)
    b = np.asarray(b, dtype=np.bool_)
    if a.shape != b.shape:
        raise ValueError(f"shape mismatch: {a.shape} vs {b.shape}")
    union = int(np.count_nonzero(a | b))
    if union == 0:
        return 0.0
    return int(np.count_nonzero(a & b)) / union


def max_gap(sorted_values: Iterable[int]) -> int:
    """Largest difference between consecutive values (0 for fewer than two)."""
    arr = np.fromiter(sorted_values, dtype=np.int64)
    if arr.size < 2:
        return 0
    return int(np.max(np.diff(arr)))


def events_per_minute(
    event_count: int, span_seconds: float, min_span_seconds: float = 60.0
) -> float:
    """Rate of *event_count* events over a span, floored at *min_span_seconds*.

    Flooring the span keeps two events a second apart from reading as
    120 events per minute.
    """
    if event_count <= 0:
        return 0.0
    span = max(float(span_seconds), float(min_span_seconds))
    return event_count * 60.0 / span
