"""
Mirage Observation Store
=========================

Thread-safe, bounded, in-memory store of per-BSSID
:class:`NetworkHistory` records.

The store is the only owner of history state. Writers go through
:meth:`ObservationStore.record_batch`, which applies a whole snapshot
under one lock so that readers never see half a cycle; readers get
deep copies and may hold them as long as they like.

Memory is bounded on every axis: the number of histories, the SSIDs
per history, the channel-change history and the cycle-presence list.
Configured limits are additionally clamped by hard caps so that a
hostile configuration cannot make the store unbounded.

References:
    - Gamma, E. et al. (1994). Design Patterns. Repository pattern.
    - Python threading documentation.
      https://docs.python.org/3/library/threading.html
"""

from __future__ import annotations

import bisect
import json
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from shared.config import StoreConfig
from shared.logger import MirageLogger

from mirage.core.models import (
    NetworkHistory,
    NetworkObservation,
    SecurityType,
    SsidSighting,
)

logger = MirageLogger("core.store")

_HARD_MAX_HISTORIES = 65_536
_HARD_MAX_CHANNEL_HISTORY = 1024
_HARD_MAX_SSIDS = 4096
_HARD_MAX_PRESENCE = 4096

_STATE_VERSION = 1


class ObservationStore:
    """Bounded per-BSSID history store.

    Usage::

        store = ObservationStore(config.store)
        store.record_batch(observations, cycle=3)
        active = store.all_active(now)
        evicted = store.evict_stale(now, cycle=3)

    Args:
        config: Store section of the Mirage configuration.
    """

    def __init__(self, config: Optional[StoreConfig] = None) -> None:
        self._config = config or StoreConfig()
        self._histories: dict[str, NetworkHistory] = {}
        self._lock = threading.RLock()
        self._last_cycle = 0

        self._max_histories = _clamp(self._config.max_histories, _HARD_MAX_HISTORIES)
        self._max_channels = _clamp(
            self._config.channel_history_length, _HARD_MAX_CHANNEL_HISTORY
        )
        self._max_ssids = _clamp(self._config.max_ssids_per_history, _HARD_MAX_SSIDS)
        self._max_presence = _clamp(
            self._config.presence_history_length, _HARD_MAX_PRESENCE
        )

    # ------------------------------------------------------------------ #
    #  Writes
    # ------------------------------------------------------------------ #

    def record(self, observation: NetworkObservation, cycle: int) -> list[str]:
        """Fold one observation into its history.

        Returns:
            BSSIDs evicted to stay within ``max_histories`` (usually empty).
        """
        return self.record_batch([observation], cycle)

    def record_batch(
        self, observations: Iterable[NetworkObservation], cycle: int
    ) -> list[str]:
        """Atomically fold a snapshot's observations into the store.

        Returns:
            BSSIDs evicted to stay within ``max_histories``.
        """
        with self._lock:
            count = 0
            for obs in observations:
                self._apply(obs, cycle)
                count += 1
            self._last_cycle = max(self._last_cycle, cycle)
            evicted = self._enforce_capacity()
        logger.debug(
            f"Recorded {count} observations for cycle {cycle} "
            f"({len(self)} histories)"
        )
        return evicted

    def evict_stale(self, now: datetime, cycle: Optional[int] = None) -> list[str]:
        """Drop histories not seen for ``stale_after_seconds`` or
        ``stale_after_cycles`` cycles, whichever applies first.

        Returns:
            Sorted list of evicted BSSIDs.
        """
        cutoff = now - timedelta(seconds=self._config.stale_after_seconds)
        max_missed = self._config.stale_after_cycles
        with self._lock:
            current = self._last_cycle if cycle is None else cycle
            evicted = sorted(
                bssid
                for bssid, hist in self._histories.items()
                if hist.last_seen < cutoff
                or (max_missed > 0 and current - hist.last_cycle > max_missed)
            )
            for bssid in evicted:
                del self._histories[bssid]
        if evicted:
            logger.info(f"Evicted {len(evicted)} stale histories", evicted=evicted)
        return evicted

    def clear(self) -> None:
        with self._lock:
            self._histories.clear()
            self._last_cycle = 0

    # ------------------------------------------------------------------ #
    #  Reads (always copies)
    # ------------------------------------------------------------------ #

    def history_for(self, bssid: str) -> Optional[NetworkHistory]:
        """Return a copy of the history for *bssid*, or ``None``."""
        with self._lock:
            hist = self._histories.get(bssid.lower())
            return hist.model_copy(deep=True) if hist is not None else None

    def all_active(self, now: datetime) -> list[NetworkHistory]:
        """Copies of every history seen within the retention window."""
        cutoff = now - timedelta(seconds=self._config.retention_window_seconds)
        with self._lock:
            return [
                hist.model_copy(deep=True)
                for hist in self._histories.values()
                if hist.last_seen >= cutoff
            ]

    def seen_in_cycle(self, cycle: int) -> list[NetworkHistory]:
        """Copies of the histories observed during *cycle*."""
        with self._lock:
            return [
                hist.model_copy(deep=True)
                for hist in self._histories.values()
                if hist.last_cycle == cycle
            ]

    def bssids(self) -> list[str]:
        with self._lock:
            return sorted(self._histories)

    @property
    def last_cycle(self) -> int:
        """Highest cycle number recorded so far."""
        return self._last_cycle

    @property
    def config(self) -> StoreConfig:
        return self._config

    def __len__(self) -> int:
        with self._lock:
            return len(self._histories)

    def __contains__(self, bssid: object) -> bool:
        if not isinstance(bssid, str):
            return False
        with self._lock:
            return bssid.lower() in self._histories

    # ------------------------------------------------------------------ #
    #  Persistence
    # ------------------------------------------------------------------ #

    def save(self, path: str | Path) -> Path:
        """Write the store to *path* as JSON and return the resolved path."""
        out_path = Path(path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            document: dict[str, Any] = {
                "version": _STATE_VERSION,
                "last_cycle": self._last_cycle,
                "histories": [
                    hist.model_dump(mode="json")
                    for hist in self._histories.values()
                ],
            }
        out_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        logger.info(
            f"Saved {len(document['histories'])} histories to {out_path}"
        )
        return out_path.resolve()

    @classmethod
    def load(
        cls, path: str | Path, config: Optional[StoreConfig] = None
    ) -> ObservationStore:
        """Restore a store previously written by :meth:`save`.

        Raises:
            FileNotFoundError: If *path* does not exist.
            ValueError: If the file is not a valid store document.
        """
        in_path = Path(path)
        try:
            document = json.loads(in_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"{in_path}: invalid JSON ({exc})") from exc
        if not isinstance(document, dict) or "histories" not in document:
            raise ValueError(f"{in_path}: not a Mirage store document")
        if document.get("version") != _STATE_VERSION:
            raise ValueError(
                f"{in_path}: unsupported store version {document.get('version')!r}"
            )

        store = cls(config)
        try:
            histories = [
                NetworkHistory.model_validate(item)
                for item in document["histories"]
            ]
        except ValidationError as exc:
            raise ValueError(f"{in_path}: invalid history record ({exc})") from exc

        with store._lock:
            for hist in histories:
                store._histories[hist.bssid] = hist
            store._last_cycle = int(document.get("last_cycle", 0))
            store._enforce_capacity()
        logger.info(f"Loaded {len(store)} histories from {in_path}")
        return store

    # ------------------------------------------------------------------ #
    #  Internal helpers (caller holds the lock)
    # ------------------------------------------------------------------ #

    def _apply(self, obs: NetworkObservation, cycle: int) -> None:
        ts = obs.observed_at
        hist = self._histories.get(obs.bssid)
        if hist is None:
            hist = NetworkHistory(
                bssid=obs.bssid,
                first_seen=ts,
                last_seen=ts,
                first_cycle=cycle,
                last_cycle=cycle,
            )
            self._histories[obs.bssid] = hist

        hist.first_seen = min(hist.first_seen, ts)
        hist.last_seen = max(hist.last_seen, ts)
        hist.first_cycle = min(hist.first_cycle, cycle)
        hist.last_cycle = max(hist.last_cycle, cycle)
        hist.sightings += 1

        self._apply_ssid(hist, obs, cycle)
        self._apply_channel(hist, obs.channel, ts)

        if obs.security is not SecurityType.UNKNOWN:
            hist.security_history.add(obs.security)

        if cycle not in hist.presence:
            bisect.insort(hist.presence, cycle)
            if len(hist.presence) > self._max_presence:
                del hist.presence[: len(hist.presence) - self._max_presence]

        last = hist.last_observation
        if last is None or ts >= last.observed_at:
            hist.last_observation = obs

    def _apply_ssid(
        self, hist: NetworkHistory, obs: NetworkObservation, cycle: int
    ) -> None:
        ts = obs.observed_at
        sighting = hist.ssids.get(obs.ssid)
        if sighting is None:
            if len(hist.ssids) >= self._max_ssids:
                oldest = min(hist.ssids, key=lambda s: hist.ssids[s].last_seen)
                del hist.ssids[oldest]
            hist.ssids[obs.ssid] = SsidSighting(
                last_seen=ts,
                last_cycle=cycle,
                security=obs.security,
                first_seen=ts,
            )
            return

        sighting.sightings += 1
        sighting.first_seen = min(sighting.first_seen, ts)
        if ts >= sighting.last_seen:
            sighting.last_seen = ts
            # An unknown reading never hides a previously known security.
            if obs.security is not SecurityType.UNKNOWN:
                sighting.security = obs.security
        elif sighting.security is SecurityType.UNKNOWN:
            sighting.security = obs.security
        sighting.last_cycle = max(sighting.last_cycle, cycle)

    def _apply_channel(self, hist: NetworkHistory, channel: int, ts: datetime) -> None:
        """Record *channel* at *ts* when it differs from the channel in effect.

        ``channel_history`` holds change points only, oldest first.
        """
        entries = hist.channel_history
        idx = bisect.bisect_right([t for _, t in entries], ts)
        if idx > 0 and entries[idx - 1][0] == channel:
            return
        entries.insert(idx, (channel, ts))
        # A later entry on the same channel is no longer a change point.
        if idx + 1 < len(entries) and entries[idx + 1][0] == channel:
            del entries[idx + 1]
        if len(entries) > self._max_channels:
            del entries[: len(entries) - self._max_channels]

    def _enforce_capacity(self) -> list[str]:
        """Evict least-recently-seen histories beyond ``max_histories``."""
        excess = len(self._histories) - self._max_histories
        if excess <= 0:
            return []
        victims = sorted(
            self._histories.values(),
            key=lambda h: (h.last_seen, h.last_cycle, h.bssid),
        )[:excess]
        evicted = sorted(h.bssid for h in victims)
        for bssid in evicted:
            del self._histories[bssid]
        logger.warning(
            f"History capacity {self._max_histories} reached; "
            f"evicted {len(evicted)} least-recently-seen BSSIDs"
        )
        return evicted


def _clamp(value: int, hard_cap: int) -> int:
    return max(1, min(int(value), hard_cap))
