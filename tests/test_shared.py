"""Tests for the shared logger, numeric helpers and models."""

from __future__ import annotations

import json

import numpy as np
import pytest

from shared.logger import MirageLogger
from shared.math_utils import (
    events_per_minute,
    jaccard_similarity,
    max_gap,
    presence_vector,
)
from shared.models import Diagnostic, Severity


def test_presence_vector_marks_cycles_in_window():
    vec = presence_vector([1, 3, 4, 9], first=2, last=5)

    assert vec.tolist() == [False, True, True, False]
    assert presence_vector([1], first=5, last=4).size == 0


def test_jaccard_similarity():
    a = np.array([True, True, False, True])
    b = np.array([True, False, False, True])

    assert jaccard_similarity(a, b) == pytest.approx(2 / 3)
    assert jaccard_similarity(np.zeros(3, bool), np.zeros(3, bool)) == 0.0
    with pytest.raises(ValueError, match="shape mismatch"):
        jaccard_similarity(a, b[:2])


def test_max_gap():
    assert max_gap([1, 2, 5, 6]) == 3
    assert max_gap([4]) == 0


def test_events_per_minute_floors_short_spans():
    assert events_per_minute(8, 240.0) == pytest.approx(2.0)
    assert events_per_minute(2, 1.0) == pytest.approx(2.0)
    assert events_per_minute(0, 100.0) == 0.0


def test_severity_ordering_and_parsing():
    assert Severity.LOW.rank < Severity.MEDIUM.rank < Severity.HIGH.rank < Severity.CRITICAL.rank
    assert Severity.highest(Severity.MEDIUM, Severity.CRITICAL, Severity.LOW) is Severity.CRITICAL
    assert Severity.parse(" High ") is Severity.HIGH
    with pytest.raises(ValueError, match="Unknown severity"):
        Severity.parse("urgent")


def test_diagnostic_str():
    diag = Diagnostic(source="detector:karma", message="boom", cycle=3)
    assert str(diag) == "[detector:karma] boom"


def test_json_log_file_carries_component_and_cycle(tmp_path):
    log = MirageLogger("tests.shared", console_output=False)
    path = tmp_path / "logs" / "mirage.log"
    MirageLogger.configure(
        log_level="INFO", log_file=path, json_logs=True, console_output=False
    )
    try:
        with log.cycle(4):
            log.warning("stale history evicted", bssid="aa:bb:cc:00:00:01")
    finally:
        MirageLogger.configure(log_level="ERROR", console_output=False)

    entry = json.loads(path.read_text(encoding="utf-8").splitlines()[-1])
    assert entry["level"] == "WARNING"
    assert entry["component"] == "tests.shared"
    assert entry["cycle"] == 4
    assert entry["extra"] == {"bssid": "aa:bb:cc:00:00:01"}


def test_cycle_binding_is_shared_across_components():
    engine_log = MirageLogger("tests.engine", console_output=False)
    assert MirageLogger.current_cycle() is None

    with engine_log.cycle(12):
        assert MirageLogger.current_cycle() == 12
        with engine_log.cycle(13):
            assert MirageLogger.current_cycle() == 13
        assert MirageLogger.current_cycle() == 12

    assert MirageLogger.current_cycle() is None
