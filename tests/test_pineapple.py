"""Tests for mirage.analyzers.pineapple."""

from __future__ import annotations

import pytest

from shared.config import PineappleConfig
from shared.models import Severity

from mirage.analyzers.pineapple import PineappleDetector
from mirage.core.models import FindingType, SecurityType

from conftest import context_for, observation

HAK5 = "00:13:37:aa:bb:01"


def test_rogue_oui_with_channel_churn_is_critical(store):
    channels = [1, 6, 11, 1, 6, 11, 1, 6, 11]
    for i, channel in enumerate(channels):
        store.record(
            observation(HAK5, "CoffeeShop", channel=channel, seconds=i * 35), cycle=i + 1
        )

    detections = PineappleDetector().detect(context_for(store, cycle=9, seconds=280))

    assert len(detections) == 1
    det = detections[0]
    assert det.type is FindingType.PINEAPPLE
    assert det.subject_bssid == HAK5
    assert det.ssid == "CoffeeShop"
    assert det.severity is Severity.CRITICAL
    assert det.confidence == pytest.approx(0.75)
    text = "\n".join(det.evidence)
    assert "Hak5" in text
    assert "8 channel switches" in text


def test_rogue_oui_alone_is_medium(store):
    store.record(observation(HAK5, "CoffeeShop"), cycle=1)

    (det,) = PineappleDetector().detect(context_for(store, cycle=1, seconds=0))

    assert det.severity is Severity.MEDIUM
    assert det.evidence[0] == "Rogue-hardware score 40: medium"


def test_ordinary_access_point_scores_nothing(store):
    store.record_batch(
        [observation("f0:9f:c2:00:00:01", "Home"), observation("14:cc:20:00:00:02", "Office")],
        cycle=1,
    )
    assert PineappleDetector().detect(context_for(store, cycle=1, seconds=0)) == []


def test_slow_channel_changes_are_not_churn(store):
    for i, channel in enumerate([1, 6, 11]):
        store.record(observation(HAK5, "x", channel=channel, seconds=i * 140), cycle=i + 1)

    (det,) = PineappleDetector().detect(context_for(store, cycle=3, seconds=280))
    assert det.severity is Severity.MEDIUM
    assert not any("channel switches" in e for e in det.evidence)


def test_software_ap_appearing_close_by(store):
    store.record(observation("f0:9f:c2:00:00:01", "Home"), cycle=1)
    store.record_batch(
        [
            observation("f0:9f:c2:00:00:01", "Home", seconds=30),
            observation("02:11:22:33:44:55", "Free WiFi", signal=-30, seconds=30),
        ],
        cycle=2,
    )

    (det,) = PineappleDetector().detect(context_for(store, cycle=2, seconds=30))

    assert det.subject_bssid == "02:11:22:33:44:55"
    assert det.severity is Severity.MEDIUM
    assert len(det.evidence) == 4
    text = "\n".join(det.evidence)
    assert "'Free WiFi'" in text
    assert "locally administered" in text
    assert "-30 dBm" in text


def test_co_located_burst_with_decoy_ssids_is_low(store):
    bssids = [f"00:11:22:00:00:0{i}" for i in range(1, 4)]
    for cycle in (1, 2):
        store.record_batch(
            [
                observation(b, f"{b[-2:]}-{suffix}", seconds=(cycle - 1) * 30)
                for b in bssids
                for suffix in ("a", "b")
            ],
            cycle=cycle,
        )

    detections = PineappleDetector().detect(context_for(store, cycle=2, seconds=30))

    assert [d.subject_bssid for d in detections] == bssids
    for det in detections:
        assert det.severity is Severity.LOW
        assert det.confidence == pytest.approx(0.35)


def test_security_churn_adds_weight(store):
    store.record(observation(HAK5, "Lobby", security=SecurityType.WPA2), cycle=1)
    store.record(observation(HAK5, "Lobby", security=SecurityType.OPEN, seconds=30), cycle=2)

    (det,) = PineappleDetector().detect(context_for(store, cycle=2, seconds=30))
    assert det.evidence[0] == "Rogue-hardware score 50: medium"


def test_zero_weight_disables_a_signal(store):
    store.record(observation(HAK5, "CoffeeShop"), cycle=1)
    detector = PineappleDetector(PineappleConfig(weights={"rogue_oui": 0.0}))

    assert detector.detect(context_for(store, cycle=1, seconds=0)) == []


@pytest.mark.parametrize(
    "score, expected",
    [
        (10.0, None),
        (30.0, Severity.LOW),
        (45.0, Severity.MEDIUM),
        (55.0, Severity.HIGH),
        (95.0, Severity.CRITICAL),
    ],
)
def test_score_bands(score, expected):
    assert PineappleDetector().severity_for(score) is expected
