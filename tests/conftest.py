"""Shared fixtures and builders for the Mirage test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from shared.config import MirageConfig
from shared.logger import MirageLogger

from mirage.analyzers.base import DetectionContext
from mirage.core.models import FrequencyBand, NetworkObservation, SecurityType
from mirage.core.store import ObservationStore
from mirage.output.sinks import MemorySink

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """``T0`` shifted by *seconds*."""
    return T0 + timedelta(seconds=seconds)


def record(
    bssid: str,
    ssid: str = "",
    *,
    channel: int = 6,
    security: Any = "[WPA2-PSK-CCMP][ESS]",
    signal: int = -60,
    **extra: Any,
) -> dict[str, Any]:
    """A raw scan record as a driver would report it."""
    raw: dict[str, Any] = {
        "bssid": bssid,
        "ssid": ssid,
        "channel": channel,
        "signal_level": signal,
        "security": security,
    }
    raw.update(extra)
    return raw


def observation(
    bssid: str,
    ssid: str = "Net",
    *,
    channel: int = 6,
    security: SecurityType = SecurityType.WPA2,
    signal: int = -60,
    seconds: float = 0.0,
) -> NetworkObservation:
    """A normalized observation at ``T0 + seconds``."""
    band = FrequencyBand.BAND_2_4GHZ if channel <= 14 else FrequencyBand.BAND_5GHZ
    return NetworkObservation(
        bssid=bssid,
        ssid=ssid,
        channel=channel,
        band=band,
        signal_dbm=signal,
        security=security,
        observed_at=at(seconds),
    )


def context_for(
    store: ObservationStore, cycle: int, seconds: float
) -> DetectionContext:
    """Detection context over *store* at ``T0 + seconds``."""
    now = at(seconds)
    return DetectionContext(
        now=now,
        cycle=cycle,
        histories=tuple(store.all_active(now)),
        retention_window_seconds=store.config.retention_window_seconds,
    )


@pytest.fixture(autouse=True, scope="session")
def _quiet_logging():
    MirageLogger.configure(log_level="ERROR", console_output=False)
    yield


@pytest.fixture
def config() -> MirageConfig:
    return MirageConfig()


@pytest.fixture
def store(config: MirageConfig) -> ObservationStore:
    return ObservationStore(config.store)


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()
