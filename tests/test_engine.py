"""Tests for mirage.core.engine.CorrelationEngine."""

from __future__ import annotations

import asyncio
import math

import pytest

from shared.config import MirageConfig
from shared.models import Severity

from mirage.analyzers.evil_twin import EvilTwinDetector
from mirage.collectors.normalizer import SnapshotNormalizer
from mirage.core.engine import CorrelationEngine
from mirage.core.models import CycleState, FindingStatus, FindingType

from conftest import at, record

LEGIT = "aa:aa:aa:aa:aa:01"
ROGUE = "bb:bb:bb:bb:bb:02"

CAFE = [
    record(LEGIT, "Cafe", security="[WPA2-PSK-CCMP][ESS]"),
    record(ROGUE, "Cafe", security="[ESS]"),
]
LEGIT_ONLY = [record(LEGIT, "Cafe")]


class _ExplodingDetector:
    name = "boom"

    def detect(self, context):
        raise RuntimeError("detector exploded")


class _ExplodingSink:
    name = "broken"

    def publish(self, batch):
        raise OSError("disk full")


class _FlakyEvilTwin(EvilTwinDetector):
    failing = False

    def detect(self, context):
        if self.failing:
            raise RuntimeError("radio map unavailable")
        return super().detect(context)


class _FlakyNormalizer(SnapshotNormalizer):
    failing = False

    def normalize(self, records, snapshot_time=None, *, cycle=None):
        if self.failing:
            raise RuntimeError("driver returned garbage")
        return super().normalize(records, snapshot_time, cycle=cycle)


@pytest.fixture
def engine(config, memory_sink):
    return CorrelationEngine(config, sinks=[memory_sink])


def test_evil_twin_scenario_end_to_end(engine, memory_sink):
    report = engine.run_cycle_sync(CAFE, now=at(0))

    assert report.cycle == 1
    assert report.observations == 2
    assert report.highest_severity is Severity.HIGH
    (finding,) = engine.active_findings()
    assert finding.type is FindingType.EVIL_TWIN
    assert finding.subject_bssid == ROGUE
    assert finding.related_bssid == LEGIT
    assert finding.severity is Severity.HIGH
    assert memory_sink.last.new[0].id == finding.id
    assert engine.state is CycleState.IDLE


def test_stable_condition_is_confirmed_not_duplicated(engine, memory_sink):
    for i in range(4):
        engine.run_cycle_sync(CAFE, now=at(i * 30))

    (finding,) = engine.active_findings()
    assert finding.confirmations == 4
    assert finding.first_detected_at == at(0)
    assert finding.last_confirmed_at == at(90)
    assert finding.severity is Severity.HIGH

    batches = memory_sink.batches
    assert [len(b.new) for b in batches] == [1, 0, 0, 0]
    assert [len(b.confirmed) for b in batches] == [0, 1, 1, 1]
    assert all(len(b.active) == 1 for b in batches)


def test_finding_resolves_after_grace_period(engine, memory_sink):
    engine.run_cycle_sync(CAFE, now=at(0))
    engine.run_cycle_sync(LEGIT_ONLY, now=at(30))
    engine.run_cycle_sync(LEGIT_ONLY, now=at(60))
    assert len(engine.active_findings()) == 1
    assert engine.active_findings()[0].missed_cycles == 2

    engine.run_cycle_sync(LEGIT_ONLY, now=at(90))

    assert engine.active_findings() == []
    (resolved,) = engine.resolved_findings()
    assert resolved.status is FindingStatus.RESOLVED
    assert resolved.resolved_at == at(90)
    assert memory_sink.last.resolved[0].id == resolved.id
    assert [f.id for f in engine.finding_history()] == [resolved.id]


def test_redetection_within_grace_resets_missed_count(engine):
    engine.run_cycle_sync(CAFE, now=at(0))
    engine.run_cycle_sync(LEGIT_ONLY, now=at(30))
    engine.run_cycle_sync(CAFE, now=at(60))

    (finding,) = engine.active_findings()
    assert finding.missed_cycles == 0
    assert finding.confirmations == 2


def test_evicted_subject_resolves_immediately():
    config = MirageConfig()
    config.store.stale_after_seconds = 100
    engine = CorrelationEngine(config)

    engine.run_cycle_sync(CAFE, now=at(0))
    report = engine.run_cycle_sync(LEGIT_ONLY, now=at(200))

    assert report.evicted == [ROGUE]
    assert ROGUE not in engine.store
    assert engine.active_findings() == []
    (resolved,) = engine.resolved_findings()
    assert resolved.subject_bssid == ROGUE
    assert "evicted" in resolved.resolution


def test_failing_detector_is_isolated(config, memory_sink):
    engine = CorrelationEngine(
        config,
        detectors=[_ExplodingDetector(), EvilTwinDetector(config.evil_twin)],
        sinks=[memory_sink],
    )

    report = engine.run_cycle_sync(CAFE, now=at(0))

    assert [w.source for w in report.warnings] == ["detector:boom"]
    assert "detector exploded" in report.warnings[0].message
    assert len(engine.active_findings()) == 1
    assert engine.state is CycleState.IDLE


def test_failing_sink_is_isolated(config, memory_sink):
    engine = CorrelationEngine(config, sinks=[_ExplodingSink(), memory_sink])

    report = engine.run_cycle_sync(CAFE, now=at(0))

    assert [w.source for w in report.warnings] == ["sink:broken"]
    assert len(memory_sink.batches) == 1


def test_store_never_exceeds_capacity():
    config = MirageConfig()
    config.store.max_histories = 5
    engine = CorrelationEngine(config)

    snapshot = [record(f"00:11:22:33:44:{i:02x}", f"net-{i}") for i in range(20)]
    engine.run_cycle_sync(snapshot, now=at(0))

    assert len(engine.store) == 5


def test_malformed_records_become_warnings(engine):
    report = engine.run_cycle_sync([{"bssid": "nonsense"}, *CAFE], now=at(0))

    assert report.observations == 2
    assert [w.source for w in report.warnings] == ["normalizer"]


def test_empty_snapshot_is_an_uneventful_cycle(engine, memory_sink):
    report = engine.run_cycle_sync([], now=at(0))

    assert report.observations == 0
    assert report.warnings == []
    assert memory_sink.last.active == []


def test_karma_scenario_end_to_end(engine):
    snapshot = [record("cc:cc:cc:cc:cc:03", f"Probe-{i:02d}") for i in range(11)]
    engine.run_cycle_sync(snapshot, now=at(0))

    (finding,) = engine.active_findings()
    assert finding.type is FindingType.KARMA
    assert finding.severity is Severity.HIGH


def test_sequential_detectors_mode(config):
    config.correlation.parallel_detectors = False
    engine = CorrelationEngine(config)

    engine.run_cycle_sync(CAFE, now=at(0))
    assert len(engine.active_findings()) == 1


def test_concurrent_calls_run_one_cycle_at_a_time(engine):
    async def scenario():
        return await asyncio.gather(
            engine.run_cycle(CAFE, now=at(0)),
            engine.run_cycle(CAFE, now=at(30)),
        )

    first, second = asyncio.run(scenario())

    assert {first.cycle, second.cycle} == {1, 2}
    assert engine.cycle == 2
    (finding,) = engine.active_findings()
    assert finding.confirmations == 2


def test_batches_are_detached_from_engine_state(engine, memory_sink):
    engine.run_cycle_sync(CAFE, now=at(0))
    memory_sink.last.active[0].evidence.clear()

    assert engine.active_findings()[0].evidence


def test_failing_detector_keeps_its_findings_open(config, memory_sink):
    detector = _FlakyEvilTwin(config.evil_twin)
    engine = CorrelationEngine(config, detectors=[detector], sinks=[memory_sink])
    engine.run_cycle_sync(CAFE, now=at(0))

    detector.failing = True
    for i in range(1, 4):
        report = engine.run_cycle_sync(LEGIT_ONLY, now=at(i * 30))
        assert [w.source for w in report.warnings] == ["detector:evil_twin"]

    (finding,) = engine.active_findings()
    assert finding.missed_cycles == 0
    assert engine.resolved_findings() == []
    assert all(b.resolved == [] for b in memory_sink.batches)

    detector.failing = False
    for i in range(4, 7):
        engine.run_cycle_sync(LEGIT_ONLY, now=at(i * 30))

    assert engine.active_findings() == []
    (resolved,) = engine.resolved_findings()
    assert resolved.resolution == "not re-detected for 3 cycles"


def test_undeclared_failing_detector_does_not_hold_covered_types(config):
    engine = CorrelationEngine(
        config, detectors=[_ExplodingDetector(), EvilTwinDetector(config.evil_twin)]
    )
    engine.run_cycle_sync(CAFE, now=at(0))
    for i in range(1, 4):
        engine.run_cycle_sync(LEGIT_ONLY, now=at(i * 30))

    assert engine.active_findings() == []
    assert len(engine.resolved_findings()) == 1


@pytest.mark.parametrize(
    "bad",
    [
        {"channel": math.inf},
        {"channel": -math.inf},
        {"channel": None, "frequency": math.nan},
        {"channel": None, "frequency": math.inf},
    ],
)
def test_non_finite_radio_fields_are_dropped_not_fatal(engine, bad):
    report = engine.run_cycle_sync(
        [*CAFE, record("cc:cc:cc:00:00:09", "Lobby", **bad)], now=at(0)
    )

    assert report.observations == 2
    assert [w.source for w in report.warnings] == ["normalizer"]
    assert len(engine.active_findings()) == 1


@pytest.mark.parametrize("signal", [math.nan, math.inf, -math.inf])
def test_non_finite_signal_uses_default(engine, signal):
    report = engine.run_cycle_sync(
        [*CAFE, record("cc:cc:cc:00:00:09", "Lobby", signal=signal)], now=at(0)
    )

    assert report.observations == 3
    assert report.warnings == []
    lobby = engine.store.history_for("cc:cc:cc:00:00:09")
    assert lobby.last_observation.signal_dbm == engine.config.normalizer.default_signal_dbm


def test_normalizer_fault_becomes_an_empty_cycle(config, memory_sink):
    normalizer = _FlakyNormalizer(config.normalizer)
    engine = CorrelationEngine(config, sinks=[memory_sink], normalizer=normalizer)
    engine.run_cycle_sync(CAFE, now=at(0))

    normalizer.failing = True
    for i in range(1, 4):
        report = engine.run_cycle_sync(CAFE, now=at(i * 30))
        assert report.observations == 0
        assert [w.source for w in report.warnings] == ["normalizer"]
        assert "driver returned garbage" in report.warnings[0].message

    assert engine.state is CycleState.IDLE
    assert engine.cycle == 4
    (finding,) = engine.active_findings()
    assert finding.missed_cycles == 0
