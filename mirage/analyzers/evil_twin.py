"""
Mirage Evil-Twin Detector
==========================

Detects rogue access points impersonating a legitimate network by
advertising the same SSID from a different BSSID.

Multi-AP deployments and mesh systems legitimately share an SSID, so a
shared name alone is not evidence. For every pair of BSSIDs advertising
the same SSID within the retention window the detector weighs three
conflict signals:

    1. Security downgrade -- one BSSID offers weaker protection than the
       other (e.g. ``WPA2`` vs ``open``), the classic credential-capture
       twin. Unknown security never counts as a downgrade.
    2. Co-presence -- both BSSIDs were seen in the same scan cycle or
       within the co-presence window, i.e. both transmit right now.
    3. Vendor mismatch -- the BSSIDs carry different OUIs, which a
       single-vendor enterprise deployment would not.

Without an allow-list of known deployments, a co-present pair with
equal security and the same OUI is still flagged, at low severity, for
the operator to dismiss. Differing channel behaviour (one BSSID hopping
channels while the other holds still) raises the confidence of any
conflict. A pair seen only at different times with nothing else in
conflict produces nothing.

References:
    - Bauer, K. et al. (2008). Detecting Rogue Access Points Using
      Client-side Bottleneck Bandwidth Analysis. ACM WiSec.
    - Song, Y. et al. (2010). Real-time Detection of Evil Twin Attacks.
      IEEE INFOCOM.
    - Wright, J., & Cache, J. (2015). Hacking Exposed Wireless (3rd ed.).
      McGraw-Hill. Chapter 7: Attacking the Wireless Client.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from itertools import combinations
from typing import Optional

from shared.config import EvilTwinConfig
from shared.logger import MirageLogger
from shared.models import Severity

from mirage.analyzers.base import DetectionContext
from mirage.core.models import (
    Detection,
    FindingType,
    NetworkHistory,
    SsidSighting,
    vendor_label,
)

logger = MirageLogger("analyzers.evil_twin")

_DOWNGRADE_CONFIDENCE = 0.6
_OUI_ONLY_CONFIDENCE = 0.4
_CO_PRESENCE_ONLY_CONFIDENCE = 0.2
_CO_PRESENCE_BONUS = 0.2
_OUI_BONUS = 0.1
_CHANNEL_BONUS = 0.1
_MAX_CONFIDENCE = 0.95


@dataclass(slots=True)
class _PairConflict:
    """One conflicting BSSID pair on one SSID, oriented subject -> related."""

    ssid: str
    subject: str
    related: str
    severity: Severity
    confidence: float
    evidence: list[str] = field(default_factory=list)


class EvilTwinDetector:
    """Flags BSSIDs that conflict with another BSSID on the same SSID.

    Args:
        config: Evil-Twin section of the Mirage configuration.

    Raises:
        ValueError: If a configured severity name is not recognised.

    Usage::

        detector = EvilTwinDetector(config.evil_twin)
        detections = detector.detect(context)
    """

    name = "evil_twin"
    finding_type = FindingType.EVIL_TWIN

    def __init__(self, config: Optional[EvilTwinConfig] = None) -> None:
        cfg = config or EvilTwinConfig()
        self._downgrade_severity = Severity.parse(cfg.downgrade_severity)
        self._oui_severity = Severity.parse(cfg.oui_mismatch_severity)
        self._co_presence_severity = Severity.parse(cfg.co_presence_severity)
        self._co_window = timedelta(seconds=cfg.co_presence_window_seconds)

    def detect(self, context: DetectionContext) -> list[Detection]:
        """Return at most one evil-twin detection per subject BSSID."""
        groups: dict[str, list[tuple[NetworkHistory, SsidSighting]]] = defaultdict(list)
        for hist in context.histories:
            for ssid, sighting in hist.ssids_since(context.window_start).items():
                groups[ssid].append((hist, sighting))

        by_subject: dict[str, list[_PairConflict]] = defaultdict(list)
        for ssid in sorted(groups):
            members = sorted(groups[ssid], key=lambda m: m[0].bssid)
            for first, second in combinations(members, 2):
                conflict = self._compare(ssid, first, second, context)
                if conflict is not None:
                    by_subject[conflict.subject].append(conflict)

        detections = [
            self._merge(subject, conflicts)
            for subject, conflicts in sorted(by_subject.items())
        ]
        if detections:
            logger.info(
                f"Evil-twin candidates: {len(detections)} "
                f"({', '.join(d.subject_bssid for d in detections)})"
            )
        return detections

    # ------------------------------------------------------------------ #
    #  Pair analysis
    # ------------------------------------------------------------------ #

    def _compare(
        self,
        ssid: str,
        first: tuple[NetworkHistory, SsidSighting],
        second: tuple[NetworkHistory, SsidSighting],
        context: DetectionContext,
    ) -> Optional[_PairConflict]:
        (hist_a, sight_a), (hist_b, sight_b) = first, second
        strength_a = sight_a.security.strength
        strength_b = sight_b.security.strength
        downgrade = (
            strength_a is not None
            and strength_b is not None
            and strength_a != strength_b
        )
        oui_mismatch = hist_a.oui != hist_b.oui
        co_present = (
            sight_a.last_cycle == sight_b.last_cycle
            or abs(sight_a.last_seen - sight_b.last_seen) <= self._co_window
        )
        if not (downgrade or oui_mismatch or co_present):
            return None

        if downgrade:
            weak_first = strength_a < strength_b  # type: ignore[operator]
        else:
            # The newcomer is the suspect; ties go to the larger BSSID.
            weak_first = (sight_a.first_seen, hist_a.bssid) > (
                sight_b.first_seen, hist_b.bssid
            )
        (subject, s_sight), (related, r_sight) = (
            (first, second) if weak_first else (second, first)
        )
        if s_sight.last_cycle != context.cycle:
            return None

        evidence = [
            f"SSID '{ssid}' advertised by {subject.bssid} "
            f"({s_sight.security.value}) and {related.bssid} "
            f"({r_sight.security.value})"
        ]
        if downgrade:
            severity = self._downgrade_severity
            confidence = _DOWNGRADE_CONFIDENCE
            evidence.append(
                f"Security downgrade: {subject.bssid} offers "
                f"{s_sight.security.value} where {related.bssid} offers "
                f"{r_sight.security.value}"
            )
        elif oui_mismatch:
            severity = self._oui_severity
            confidence = _OUI_ONLY_CONFIDENCE
            evidence.append(
                f"{subject.bssid} appeared after {related.bssid} with "
                f"matching security ({s_sight.security.value})"
            )
        else:
            severity = self._co_presence_severity
            confidence = _CO_PRESENCE_ONLY_CONFIDENCE
            evidence.append(
                f"{subject.bssid} appeared after {related.bssid} with matching "
                f"security and vendor; dismiss if this is a known multi-AP network"
            )

        if co_present:
            confidence += _CO_PRESENCE_BONUS
            if s_sight.last_cycle == r_sight.last_cycle:
                evidence.append(f"Both BSSIDs seen in cycle {context.cycle}")
            else:
                gap = abs(s_sight.last_seen - r_sight.last_seen).total_seconds()
                evidence.append(f"Both BSSIDs seen within {gap:.0f}s")
        else:
            evidence.append(
                f"{related.bssid} last seen {r_sight.last_seen.isoformat()} "
                "(historical baseline)"
            )

        if oui_mismatch:
            if downgrade:
                confidence += _OUI_BONUS
            evidence.append(
                f"Vendor OUI mismatch: {vendor_label(subject.bssid)} vs "
                f"{vendor_label(related.bssid)}"
            )

        hopping = self._channel_contrast(subject, related, context)
        if hopping is not None:
            confidence += _CHANNEL_BONUS
            evidence.append(hopping)

        return _PairConflict(
            ssid=ssid,
            subject=subject.bssid,
            related=related.bssid,
            severity=severity,
            confidence=min(confidence, _MAX_CONFIDENCE),
            evidence=evidence,
        )

    @staticmethod
    def _channel_contrast(
        subject: NetworkHistory, related: NetworkHistory, context: DetectionContext
    ) -> Optional[str]:
        """Evidence line when exactly one side of the pair changed channel."""
        moves: dict[str, list[int]] = {}
        for hist in (subject, related):
            path: list[int] = []
            for channel, _ in hist.channels_since(context.window_start):
                if not path or path[-1] != channel:
                    path.append(channel)
            moves[hist.bssid] = path
        hopped = [bssid for bssid, path in moves.items() if len(path) > 1]
        if len(hopped) != 1:
            return None
        mover = hopped[0]
        steady = related.bssid if mover == subject.bssid else subject.bssid
        route = " -> ".join(str(c) for c in moves[mover])
        held = moves[steady][-1] if moves[steady] else "?"
        return (
            f"Channel behaviour differs: {mover} moved {route} "
            f"while {steady} stayed on channel {held}"
        )

    @staticmethod
    def _merge(subject: str, conflicts: list[_PairConflict]) -> Detection:
        """Collapse every conflict naming *subject* into one detection."""
        ranked = sorted(
            conflicts,
            key=lambda c: (c.severity.rank, c.confidence),
            reverse=True,
        )
        lead = ranked[0]
        evidence: list[str] = []
        for conflict in ranked:
            for line in conflict.evidence:
                if line not in evidence:
                    evidence.append(line)
        return Detection(
            type=FindingType.EVIL_TWIN,
            subject_bssid=subject,
            related_bssid=lead.related,
            ssid=lead.ssid,
            severity=lead.severity,
            confidence=lead.confidence,
            evidence=evidence,
        )
