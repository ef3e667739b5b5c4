"""
Mirage Pineapple Detector
==========================

Weighted heuristic scoring of access points that look like dedicated
rogue-AP hardware: the Hak5 WiFi Pineapple, ALFA-adapter rigs and
Raspberry-Pi based ``hostapd-mana`` / ``airbase-ng`` setups.

No single indicator is conclusive, so each BSSID observed in the current
cycle accumulates a score from independent signals:

    ====================  =================================================
    Signal                Meaning
    ====================  =================================================
    rogue_oui             BSSID vendor prefix belongs to rogue-AP hardware
    channel_churn         Rapid channel hopping within the churn window
    co_located_burst      Several same-vendor BSSIDs appeared together and
                          keep appearing together (virtual interfaces)
    ssid_pattern          SSID matches rogue-tool or bait naming
    decoy_broadcast       The same-vendor burst advertises many SSIDs
    locally_administered  Software-assigned BSSID
    security_churn        More than one security type seen on the BSSID
    strong_new_signal     Brand-new BSSID that is suspiciously close
    ====================  =================================================

The score is translated into a severity through configurable bands;
scores below the low-water mark produce no finding.

References:
    - Hak5. WiFi Pineapple Documentation. https://docs.hak5.org/
    - Kao, C.-C. et al. (2011). Rogue Access Point Detection by Analyzing
      Network Traffic Characteristics. IEEE ICCST.
    - Jaccard, P. (1912). The Distribution of the Flora in the Alpine
      Zone. New Phytologist, 11(2), 37-50.
"""

from __future__ import annotations

import re
from collections import defaultdict
from datetime import timedelta
from typing import Optional

from shared.config import PineappleConfig
from shared.logger import MirageLogger
from shared.math_utils import events_per_minute, jaccard_similarity, presence_vector
from shared.models import Severity

from mirage.analyzers.base import DetectionContext
from mirage.core.models import (
    Detection,
    FindingType,
    NetworkHistory,
    is_locally_administered,
    vendor_label,
)

logger = MirageLogger("analyzers.pineapple")

SIGNAL_NAMES: tuple[str, ...] = (
    "rogue_oui",
    "channel_churn",
    "co_located_burst",
    "ssid_pattern",
    "decoy_broadcast",
    "locally_administered",
    "security_churn",
    "strong_new_signal",
)

_MAX_CONFIDENCE = 0.99


class PineappleDetector:
    """Scores current-cycle BSSIDs against rogue-hardware heuristics.

    Args:
        config: Pineapple section of the Mirage configuration.

    Raises:
        re.error: If a configured SSID pattern is not a valid regex.
    """

    name = "pineapple"
    finding_type = FindingType.PINEAPPLE

    def __init__(self, config: Optional[PineappleConfig] = None) -> None:
        self._cfg = config or PineappleConfig()
        self._rogue_ouis = {o.strip().lower().replace("-", ":") for o in self._cfg.rogue_ouis}
        self._patterns = [re.compile(p, re.IGNORECASE) for p in self._cfg.ssid_patterns]
        self._weights = {
            name: float(self._cfg.weights.get(name, 0.0)) for name in SIGNAL_NAMES
        }

    def detect(self, context: DetectionContext) -> list[Detection]:
        by_oui: dict[str, list[NetworkHistory]] = defaultdict(list)
        for hist in context.histories:
            by_oui[hist.oui].append(hist)
        has_baseline = bool(context.baseline)

        detections: list[Detection] = []
        for hist in sorted(context.current, key=lambda h: h.bssid):
            signals = self.score_signals(hist, by_oui[hist.oui], has_baseline, context)
            score = sum(self._weights[name] for name, _ in signals)
            severity = self.severity_for(score)
            if severity is None:
                continue
            evidence = [f"Rogue-hardware score {score:g}: {severity.value}"]
            evidence.extend(
                f"[+{self._weights[name]:g}] {text}" for name, text in signals
            )
            detections.append(
                Detection(
                    type=FindingType.PINEAPPLE,
                    subject_bssid=hist.bssid,
                    ssid=_primary_ssid(hist),
                    severity=severity,
                    confidence=min(_MAX_CONFIDENCE, score / 100.0),
                    evidence=evidence,
                )
            )

        if detections:
            logger.info(
                f"Pineapple candidates: {len(detections)} "
                f"({', '.join(d.subject_bssid for d in detections)})"
            )
        return detections

    def severity_for(self, score: float) -> Optional[Severity]:
        """Map a cumulative score onto the configured severity bands."""
        cfg = self._cfg
        if score >= cfg.critical_score:
            return Severity.CRITICAL
        if score >= cfg.high_score:
            return Severity.HIGH
        if score >= cfg.medium_score:
            return Severity.MEDIUM
        if score >= cfg.low_water_score:
            return Severity.LOW
        return None

    def score_signals(
        self,
        hist: NetworkHistory,
        same_oui: list[NetworkHistory],
        has_baseline: bool,
        context: DetectionContext,
    ) -> list[tuple[str, str]]:
        """Return the ``(signal, evidence)`` pairs that fire for *hist*.

        Signals with zero weight are still evaluated but not reported.
        """
        cfg = self._cfg
        signals: list[tuple[str, str]] = []

        if hist.oui in self._rogue_ouis:
            signals.append(
                ("rogue_oui", f"Rogue-hardware vendor OUI {vendor_label(hist.bssid)}")
            )

        churn = self._channel_churn(hist, context)
        if churn is not None:
            signals.append(("channel_churn", churn))

        peers = self._burst_peers(hist, same_oui, context)
        if len(peers) >= cfg.burst_min_peers:
            signals.append(
                (
                    "co_located_burst",
                    f"Appeared alongside {len(peers)} same-vendor BSSIDs: "
                    + ", ".join(p.bssid for p in peers),
                )
            )
            group_ssids = {
                ssid
                for member in [hist, *peers]
                for ssid in member.ssids_since(context.window_start)
            }
            if len(group_ssids) >= cfg.decoy_min_ssids:
                signals.append(
                    (
                        "decoy_broadcast",
                        f"Same-vendor burst advertises {len(group_ssids)} distinct SSIDs",
                    )
                )

        matched = sorted(
            ssid
            for ssid in hist.ssids_since(context.window_start)
            if any(p.search(ssid) for p in self._patterns)
        )
        if matched:
            signals.append(
                (
                    "ssid_pattern",
                    "SSID matches rogue-tool naming: "
                    + ", ".join(f"'{s}'" for s in matched),
                )
            )

        if is_locally_administered(hist.bssid):
            signals.append(
                ("locally_administered", f"{hist.bssid} is locally administered")
            )

        if len(hist.security_history) > 1:
            kinds = ", ".join(sorted(s.value for s in hist.security_history))
            signals.append(("security_churn", f"Security changed between {kinds}"))

        last = hist.last_observation
        if (
            has_baseline
            and hist.first_cycle == context.cycle
            and last is not None
            and last.signal_dbm >= cfg.strong_signal_dbm
        ):
            signals.append(
                (
                    "strong_new_signal",
                    f"New BSSID at {last.signal_dbm} dBm "
                    f"(>= {cfg.strong_signal_dbm} dBm)",
                )
            )

        return [(name, text) for name, text in signals if self._weights[name] > 0]

    # ------------------------------------------------------------------ #
    #  Individual heuristics
    # ------------------------------------------------------------------ #

    def _channel_churn(
        self, hist: NetworkHistory, context: DetectionContext
    ) -> Optional[str]:
        cfg = self._cfg
        since = context.now - timedelta(seconds=cfg.churn_window_seconds)
        entries = hist.channel_history
        switches = sum(
            1
            for prev, cur in zip(entries, entries[1:])
            if cur[1] >= since and cur[0] != prev[0]
        )
        if switches < cfg.churn_min_switches:
            return None
        span = (context.now - max(since, hist.first_seen)).total_seconds()
        rate = events_per_minute(switches, span)
        if rate < cfg.churn_rate_per_minute:
            return None
        channels = sorted({ch for ch, ts in entries if ts >= since})
        return (
            f"{switches} channel switches in {cfg.churn_window_seconds / 60:g} min "
            f"({rate:.1f}/min) across channels {', '.join(map(str, channels))}"
        )

    def _burst_peers(
        self,
        hist: NetworkHistory,
        same_oui: list[NetworkHistory],
        context: DetectionContext,
    ) -> list[NetworkHistory]:
        """Same-OUI BSSIDs that appeared with *hist* and share its presence."""
        cfg = self._cfg
        window = timedelta(seconds=cfg.burst_window_seconds)
        peers: list[NetworkHistory] = []
        for other in same_oui:
            if other.bssid == hist.bssid:
                continue
            if abs(other.first_seen - hist.first_seen) > window:
                continue
            first = min(hist.first_cycle, other.first_cycle)
            similarity = jaccard_similarity(
                presence_vector(hist.presence, first, context.cycle),
                presence_vector(other.presence, first, context.cycle),
            )
            if similarity >= cfg.burst_min_similarity:
                peers.append(other)
        return sorted(peers, key=lambda p: p.bssid)


def _primary_ssid(hist: NetworkHistory) -> Optional[str]:
    """Most recently seen non-hidden SSID, if any."""
    named = [(s.last_seen, ssid) for ssid, s in hist.ssids.items() if ssid]
    return max(named)[1] if named else None
