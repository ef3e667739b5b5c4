"""Tests for mirage.analyzers.karma."""

from __future__ import annotations

import pytest

from shared.config import KarmaConfig
from shared.models import Severity

from mirage.analyzers.karma import KarmaDetector
from mirage.core.models import FindingType

from conftest import context_for, observation

KARMA = "cc:cc:cc:cc:cc:03"


def _one_new_ssid_per_cycle(store, ssids, bssid=KARMA, spacing=60):
    """Record *bssid* once per cycle, each time with the next SSID."""
    for i, ssid in enumerate(ssids):
        store.record(observation(bssid, ssid, seconds=i * spacing), cycle=i + 1)


def test_six_ssids_in_ten_minutes_is_medium(store):
    _one_new_ssid_per_cycle(store, [f"Net-{i}" for i in range(6)])

    detections = KarmaDetector().detect(context_for(store, cycle=6, seconds=300))

    assert len(detections) == 1
    det = detections[0]
    assert det.type is FindingType.KARMA
    assert det.subject_bssid == KARMA
    assert det.severity is Severity.MEDIUM
    assert "6 distinct SSIDs" in det.evidence[0]
    assert "'Net-0'" in det.evidence[0] and "'Net-5'" in det.evidence[0]


def test_eleven_ssids_is_high(store):
    store.record_batch(
        [observation(KARMA, f"Probe-{i:02d}") for i in range(11)], cycle=1
    )

    (det,) = KarmaDetector().detect(context_for(store, cycle=1, seconds=0))

    assert det.severity is Severity.HIGH
    assert det.confidence == pytest.approx(0.8)


def test_below_threshold_is_ignored(store):
    store.record_batch([observation(KARMA, f"Net-{i}") for i in range(4)], cycle=1)
    assert KarmaDetector().detect(context_for(store, cycle=1, seconds=0)) == []


def test_repeated_ssid_counts_once(store):
    _one_new_ssid_per_cycle(store, ["Home"] * 8)
    assert KarmaDetector().detect(context_for(store, cycle=8, seconds=420)) == []


def test_bssid_absent_from_current_cycle_is_ignored(store):
    store.record_batch([observation(KARMA, f"Net-{i}") for i in range(6)], cycle=1)
    store.record(observation("aa:aa:aa:00:00:01", "Home", seconds=30), cycle=2)

    assert KarmaDetector().detect(context_for(store, cycle=2, seconds=30)) == []


def test_presence_gap_breaks_continuity(store):
    plan = {1: ["A"], 2: ["B"], 3: ["C"], 6: ["D", "E"], 7: ["F"]}
    for cycle, ssids in plan.items():
        store.record_batch(
            [observation(KARMA, s, seconds=(cycle - 1) * 60) for s in ssids], cycle=cycle
        )
    ctx = context_for(store, cycle=7, seconds=360)

    assert KarmaDetector().detect(ctx) == []
    tolerant = KarmaDetector(KarmaConfig(max_missed_cycles=2))
    assert [d.subject_bssid for d in tolerant.detect(ctx)] == [KARMA]


def test_ssids_outside_window_do_not_count(store):
    store.record_batch([observation(KARMA, f"Old-{i}") for i in range(3)], cycle=1)
    store.record_batch(
        [observation(KARMA, f"New-{i}", seconds=700) for i in range(3)], cycle=2
    )
    assert KarmaDetector().detect(context_for(store, cycle=2, seconds=700)) == []


def test_bait_names_strengthen_evidence(store):
    ssids = ["xfinitywifi", "attwifi", "Starbucks WiFi", "linksys", "NETGEAR55", "Home"]
    store.record_batch([observation(KARMA, s) for s in ssids], cycle=1)
    detector = KarmaDetector()

    (det,) = detector.detect(context_for(store, cycle=1, seconds=0))

    assert any("match common hotspot/default names" in e for e in det.evidence)
    assert det.confidence == pytest.approx(0.65)
    assert detector.bait_matches(["Home", "Guest-5G"]) == ["Guest-5G"]


def _plan(store, plan):
    """Record KARMA once per listed cycle as ``cycle: (ssid, channel)``."""
    for cycle, (ssid, channel) in plan.items():
        store.record(
            observation(KARMA, ssid, channel=channel, seconds=(cycle - 1) * 60),
            cycle=cycle,
        )


def test_hopping_away_and_back_across_a_gap_is_not_karma(store):
    _plan(
        store,
        {1: ("A", 6), 2: ("B", 6), 3: ("C", 6), 4: ("D", 11), 6: ("E", 6), 7: ("F", 6)},
    )

    assert KarmaDetector().detect(context_for(store, cycle=7, seconds=360)) == []


def test_gap_without_channel_return_is_still_karma(store):
    _plan(
        store,
        {1: ("A", 6), 2: ("B", 6), 3: ("C", 6), 4: ("D", 11), 6: ("E", 11), 7: ("F", 11)},
    )

    (det,) = KarmaDetector().detect(context_for(store, cycle=7, seconds=360))
    assert det.subject_bssid == KARMA


def test_rotating_channels_without_gaps_is_still_karma(store):
    _plan(store, {c: (f"Net-{c}", (1, 6, 11)[c % 3]) for c in range(1, 7)})

    (det,) = KarmaDetector().detect(context_for(store, cycle=6, seconds=300))
    assert det.subject_bssid == KARMA
