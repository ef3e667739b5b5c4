"""
Mirage Karma / MANA Detector
=============================

Detects access points that answer client probe requests for *any*
SSID, the behaviour of the KARMA attack and its MANA refinement.

A legitimate AP advertises a small, fixed set of SSIDs. A Karma AP
mirrors every network name its victims probe for, so a single BSSID
accumulates many distinct SSIDs in a short time. The detector counts
the distinct non-hidden SSIDs each BSSID advertised within a sliding
window, and requires the BSSID to have been continuously present while
it accumulated them so that a BSSID reused across unrelated sightings
is not mistaken for one impersonating many networks.

Continuity is read from two records. The per-cycle presence list must
show no gap longer than ``max_missed_cycles``, and a BSSID that did miss
a cycle must not have hopped away and back (its channel change points in
the window returning to an earlier channel). A radio that rotates
channels while answering every scan stays a candidate.

Names victims commonly probe for (carrier hotspots, router defaults,
phone tethering SSIDs) make the finding more convincing but are not
required.

References:
    - Dai Zovi, D., & Macaulay, S. (2005). Attacking Automatic Wireless
      Network Selection. IEEE Information Assurance Workshop.
    - White, D., & de Villiers, D. (2014). Manna from Heaven: Improvements
      in Rogue AP Attacks. DEF CON 22.
    - Vanhoef, M. et al. (2016). Why MAC Address Randomization is not
      Enough. ACM AsiaCCS.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from shared.config import KarmaConfig
from shared.logger import MirageLogger
from shared.math_utils import max_gap
from shared.models import Severity

from mirage.analyzers.base import DetectionContext
from mirage.core.models import Detection, FindingType, NetworkHistory

logger = MirageLogger("analyzers.karma")

_BASE_CONFIDENCE = 0.5
_PER_SSID_CONFIDENCE = 0.05
_BAIT_BONUS = 0.1
_BAIT_SHARE = 0.5
_MAX_CONFIDENCE = 0.95
_MAX_LISTED_SSIDS = 25


class KarmaDetector:
    """Flags BSSIDs advertising many distinct SSIDs in a short window.

    Args:
        config: Karma section of the Mirage configuration.

    Usage::

        detector = KarmaDetector(config.karma)
        detections = detector.detect(context)
    """

    name = "karma"
    finding_type = FindingType.KARMA

    def __init__(self, config: Optional[KarmaConfig] = None) -> None:
        cfg = config or KarmaConfig()
        self._min_ssids = max(1, cfg.min_ssids)
        self._high_ssids = max(self._min_ssids, cfg.high_severity_ssids)
        self._window = timedelta(seconds=cfg.window_seconds)
        self._max_missed = max(0, cfg.max_missed_cycles)
        self._bait = [p.lower() for p in cfg.bait_ssid_patterns if p]

    def detect(self, context: DetectionContext) -> list[Detection]:
        since = context.now - self._window
        detections: list[Detection] = []

        for hist in sorted(context.current, key=lambda h: h.bssid):
            window_ssids = hist.ssids_since(since)
            if len(window_ssids) < self._min_ssids:
                continue

            start_cycle = min(s.last_cycle for s in window_ssids.values())
            if not self._continuous(hist, start_cycle, context.cycle):
                logger.debug(
                    f"{hist.bssid}: {len(window_ssids)} SSIDs but presence "
                    f"gap exceeds {self._max_missed} missed cycle(s)"
                )
                continue
            if self._hopped_back(hist, since, start_cycle, context.cycle):
                logger.debug(
                    f"{hist.bssid}: {len(window_ssids)} SSIDs but it left and "
                    "returned to an earlier channel across a presence gap"
                )
                continue

            detections.append(
                self._build(hist, sorted(window_ssids), start_cycle, context)
            )

        if detections:
            logger.info(
                f"Karma candidates: {len(detections)} "
                f"({', '.join(d.subject_bssid for d in detections)})"
            )
        return detections

    def bait_matches(self, ssids: list[str]) -> list[str]:
        """SSIDs containing one of the configured bait-name fragments."""
        return [s for s in ssids if any(b in s.lower() for b in self._bait)]

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    def _continuous(self, hist: NetworkHistory, start: int, end: int) -> bool:
        """True when no presence gap in ``[start, end]`` exceeds the allowance."""
        cycles = [c for c in hist.presence if start <= c <= end]
        if not cycles or cycles[0] != start or cycles[-1] != end:
            return False
        return max_gap(cycles) <= self._max_missed + 1

    @staticmethod
    def _hopped_back(
        hist: NetworkHistory, since: datetime, start: int, end: int
    ) -> bool:
        """True when a missed cycle coincides with a return to an old channel."""
        cycles = [c for c in hist.presence if start <= c <= end]
        if max_gap(cycles) <= 1:
            return False
        # Change points only: any repeated channel is a return.
        path = [channel for channel, _ in hist.channels_since(since)]
        return len(set(path)) < len(path)

    def _build(
        self,
        hist: NetworkHistory,
        ssids: list[str],
        start_cycle: int,
        context: DetectionContext,
    ) -> Detection:
        count = len(ssids)
        severity = Severity.HIGH if count >= self._high_ssids else Severity.MEDIUM
        bait = self.bait_matches(ssids)

        confidence = _BASE_CONFIDENCE + _PER_SSID_CONFIDENCE * (count - self._min_ssids)
        if bait and len(bait) / count >= _BAIT_SHARE:
            confidence += _BAIT_BONUS

        listed = ", ".join(f"'{s}'" for s in ssids[:_MAX_LISTED_SSIDS])
        if count > _MAX_LISTED_SSIDS:
            listed += f", ... (+{count - _MAX_LISTED_SSIDS} more)"
        minutes = self._window.total_seconds() / 60.0

        evidence = [
            f"{hist.bssid} advertised {count} distinct SSIDs "
            f"within {minutes:g} min: {listed}",
            f"Continuously present from cycle {start_cycle} to {context.cycle}",
        ]
        if bait:
            evidence.append(
                f"{len(bait)} SSID(s) match common hotspot/default names: "
                + ", ".join(f"'{s}'" for s in bait)
            )

        return Detection(
            type=FindingType.KARMA,
            subject_bssid=hist.bssid,
            severity=severity,
            confidence=min(confidence, _MAX_CONFIDENCE),
            evidence=evidence,
        )
