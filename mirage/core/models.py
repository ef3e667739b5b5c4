"""
Mirage Core Data Models
========================

Pydantic-based domain models for the Mirage correlation engine:
normalized scan observations, per-BSSID histories, detector output,
persistent threat findings and the per-cycle report handed to sinks.

Channel and band definitions follow IEEE 802.11-2020 Annex E; the
security classes follow the Wi-Fi Alliance certification programmes.

References:
    - IEEE. (2020). IEEE Std 802.11-2020. Annex E: Country Information
      and Operating Classes.
    - Wi-Fi Alliance. (2018). WPA3 Specification v1.0.
    - Pydantic v2 Documentation. https://docs.pydantic.dev/latest/
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from shared.models import Diagnostic, Severity


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class FrequencyBand(str, enum.Enum):
    """Wi-Fi operating band."""

    BAND_2_4GHZ = "2.4GHz"
    BAND_5GHZ = "5GHz"
    BAND_6GHZ = "6GHz"


class SecurityType(str, enum.Enum):
    """Best-effort security classification of an access point.

    Reference:
        IEEE. (2020). IEEE Std 802.11-2020. Section 12: Security.
    """

    OPEN = "open"
    WEP = "WEP"
    WPA = "WPA"
    WPA2 = "WPA2"
    WPA3 = "WPA3"
    UNKNOWN = "unknown"

    @property
    def strength(self) -> Optional[int]:
        """Ordinal protection level, ``None`` when unknown."""
        return _SECURITY_STRENGTH.get(self)


_SECURITY_STRENGTH: dict[SecurityType, int] = {
    SecurityType.OPEN: 0,
    SecurityType.WEP: 1,
    SecurityType.WPA: 2,
    SecurityType.WPA2: 3,
    SecurityType.WPA3: 4,
}


class FindingType(str, enum.Enum):
    """Attack classes the engine reports."""

    EVIL_TWIN = "evil-twin"
    KARMA = "karma"
    PINEAPPLE = "pineapple"


class FindingStatus(str, enum.Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class CycleState(str, enum.Enum):
    """Correlation Engine per-cycle state machine."""

    IDLE = "idle"
    NORMALIZING = "normalizing"
    RECORDING = "recording"
    DETECTING = "detecting"
    MERGING = "merging"
    PUBLISHING = "publishing"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# MAC helpers
# ---------------------------------------------------------------------------


def oui_of(bssid: str) -> str:
    """Return the vendor prefix (first three octets) of a canonical BSSID."""
    return bssid[:8]


def is_locally_administered(bssid: str) -> bool:
    """True when the locally-administered bit (0x02 of octet 0) is set.

    Reference:
        IEEE. (2014). IEEE Std 802-2014. Section 8.1: Universal/Local
        Address Bits.
    """
    try:
        return bool(int(bssid[:2], 16) & 0x02)
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Network Observation
# ---------------------------------------------------------------------------


class NetworkObservation(BaseModel):
    """One sighting of a BSSID at a point in time.

    Immutable: the store only ever appends new observations.

    Attributes:
        bssid: Canonical lowercase colon-separated BSSID.
        ssid: Network name; empty for hidden networks.
        channel: Operating channel number.
        band: Operating band derived from channel or frequency.
        signal_dbm: Received signal strength in dBm.
        security: Security classification.
        observed_at: Timezone-aware sighting time.
        frequency_mhz: Centre frequency reported by the driver (0 if unknown).
    """

    model_config = ConfigDict(frozen=True)

    bssid: str
    ssid: str = ""
    channel: int
    band: FrequencyBand
    signal_dbm: int = -100
    security: SecurityType = SecurityType.UNKNOWN
    observed_at: datetime
    frequency_mhz: int = 0

    @property
    def oui(self) -> str:
        return oui_of(self.bssid)

    @property
    def is_hidden(self) -> bool:
        return not self.ssid

    @property
    def is_locally_administered(self) -> bool:
        return is_locally_administered(self.bssid)


# ---------------------------------------------------------------------------
# Network History
# ---------------------------------------------------------------------------


class SsidSighting(BaseModel):
    """Latest sighting of one SSID on one BSSID."""

    last_seen: datetime
    last_cycle: int
    security: SecurityType = SecurityType.UNKNOWN
    first_seen: datetime
    sightings: int = 1


class NetworkHistory(BaseModel):
    """Aggregated per-BSSID state derived from its observations.

    Owned exclusively by :class:`~mirage.core.store.ObservationStore`;
    detectors only ever see copies.

    Attributes:
        bssid: Identity key.
        first_seen / last_seen: Sighting time bounds.
        first_cycle / last_cycle: Scan cycle bounds.
        ssids: SSID -> latest sighting, the source of ``ssids_seen``.
        channel_history: ``(channel, timestamp)`` pairs, oldest first, bounded.
        security_history: Every security type ever seen.
        presence: Ascending cycle numbers in which the BSSID was seen, bounded.
        sightings: Total observation count.
        last_observation: Most recent observation.
    """

    bssid: str
    first_seen: datetime
    last_seen: datetime
    first_cycle: int = 0
    last_cycle: int = 0
    ssids: dict[str, SsidSighting] = Field(default_factory=dict)
    channel_history: list[tuple[int, datetime]] = Field(default_factory=list)
    security_history: set[SecurityType] = Field(default_factory=set)
    presence: list[int] = Field(default_factory=list)
    sightings: int = 0
    last_observation: Optional[NetworkObservation] = None

    @property
    def oui(self) -> str:
        return oui_of(self.bssid)

    @property
    def ssids_seen(self) -> set[str]:
        """Every SSID (including the empty hidden SSID) tied to this BSSID."""
        return set(self.ssids)

    def ssids_since(self, since: datetime) -> dict[str, SsidSighting]:
        """Non-hidden SSIDs whose latest sighting is at or after *since*."""
        return {
            ssid: s for ssid, s in self.ssids.items()
            if ssid and s.last_seen >= since
        }

    def ssids_in_cycle(self, cycle: int) -> dict[str, SsidSighting]:
        """Non-hidden SSIDs observed on this BSSID during *cycle*."""
        return {
            ssid: s for ssid, s in self.ssids.items()
            if ssid and s.last_cycle == cycle
        }

    def channels_since(self, since: datetime) -> list[tuple[int, datetime]]:
        return [(ch, ts) for ch, ts in self.channel_history if ts >= since]


# ---------------------------------------------------------------------------
# Detector output and Findings
# ---------------------------------------------------------------------------


class Detection(BaseModel):
    """A detector's candidate finding for one cycle, before merging.

    Attributes:
        type: Attack class.
        subject_bssid: Suspected rogue BSSID.
        related_bssid: Conflicting legitimate BSSID (evil-twin only).
        ssid: SSID the detection concerns, if any.
        severity: Severity assigned by the detector.
        confidence: Detector confidence [0.0, 1.0].
        evidence: Ordered human-readable facts.
    """

    type: FindingType
    subject_bssid: str
    related_bssid: Optional[str] = None
    ssid: Optional[str] = None
    severity: Severity
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence: list[str] = Field(default_factory=list)

    @property
    def key(self) -> tuple[FindingType, str]:
        return (self.type, self.subject_bssid)


class Finding(BaseModel):
    """A detected threat instance tracked across cycles.

    Re-detection bumps ``last_confirmed_at`` instead of creating a new
    Finding; absence for the grace period resolves it.
    """

    id: UUID = Field(default_factory=uuid4)
    type: FindingType
    severity: Severity
    subject_bssid: str
    related_bssid: Optional[str] = None
    ssid: Optional[str] = None
    evidence: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    first_detected_at: datetime = Field(default_factory=_utcnow)
    last_confirmed_at: datetime = Field(default_factory=_utcnow)
    status: FindingStatus = FindingStatus.ACTIVE
    resolved_at: Optional[datetime] = None
    resolution: str = ""
    confirmations: int = 1
    missed_cycles: int = 0

    @property
    def key(self) -> tuple[FindingType, str]:
        return (self.type, self.subject_bssid)

    @property
    def is_active(self) -> bool:
        return self.status is FindingStatus.ACTIVE

    @classmethod
    def from_detection(cls, detection: Detection, now: datetime) -> Finding:
        return cls(
            type=detection.type,
            severity=detection.severity,
            subject_bssid=detection.subject_bssid,
            related_bssid=detection.related_bssid,
            ssid=detection.ssid,
            evidence=list(detection.evidence),
            confidence=detection.confidence,
            first_detected_at=now,
            last_confirmed_at=now,
        )


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------


class NormalizationResult(BaseModel):
    """Output of the Snapshot Normalizer."""

    observations: list[NetworkObservation] = Field(default_factory=list)
    warnings: list[Diagnostic] = Field(default_factory=list)
    input_count: int = 0
    dropped: int = 0
    duplicates: int = 0


class FindingBatch(BaseModel):
    """What a Finding Sink receives once per cycle.

    ``active`` is the full active set after merging; ``new``,
    ``confirmed`` and ``resolved`` partition what changed this cycle.
    """

    cycle: int
    generated_at: datetime = Field(default_factory=_utcnow)
    active: list[Finding] = Field(default_factory=list)
    new: list[Finding] = Field(default_factory=list)
    confirmed: list[Finding] = Field(default_factory=list)
    resolved: list[Finding] = Field(default_factory=list)


class CycleReport(BaseModel):
    """Summary of one complete scan cycle."""

    cycle: int
    started_at: datetime
    ended_at: Optional[datetime] = None
    observations: int = 0
    active_networks: int = 0
    evicted: list[str] = Field(default_factory=list)
    batch: FindingBatch
    warnings: list[Diagnostic] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def severity_counts(self) -> dict[str, int]:
        """Active findings grouped by severity name."""
        counts = {s.value: 0 for s in Severity}
        for finding in self.batch.active:
            counts[finding.severity.value] += 1
        return counts

    @property
    def highest_severity(self) -> Severity | None:
        if not self.batch.active:
            return None
        return Severity.highest(*(f.severity for f in self.batch.active))


# ---------------------------------------------------------------------------
# Channel / frequency tables
# ---------------------------------------------------------------------------

CHANNEL_FREQ_MAP_24GHZ: dict[int, int] = {
    1: 2412, 2: 2417, 3: 2422, 4: 2427, 5: 2432,
    6: 2437, 7: 2442, 8: 2447, 9: 2452, 10: 2457,
    11: 2462, 12: 2467, 13: 2472, 14: 2484,
}

CHANNEL_FREQ_MAP_5GHZ: dict[int, int] = {
    36: 5180, 40: 5200, 44: 5220, 48: 5240,
    52: 5260, 56: 5280, 60: 5300, 64: 5320,
    100: 5500, 104: 5520, 108: 5540, 112: 5560,
    116: 5580, 120: 5600, 124: 5620, 128: 5640,
    132: 5660, 136: 5680, 140: 5700, 144: 5720,
    149: 5745, 153: 5765, 157: 5785, 161: 5805,
    165: 5825,
}


# ---------------------------------------------------------------------------
# Vendor names for evidence text
# ---------------------------------------------------------------------------

OUI_VENDORS: dict[str, str] = {
    "00:13:37": "Hak5",
    "00:c0:ca": "ALFA Network",
    "00:0f:00": "ALFA Network",
    "b8:27:eb": "Raspberry Pi",
    "dc:a6:32": "Raspberry Pi",
    "e4:5f:01": "Raspberry Pi",
    "d8:3a:dd": "Raspberry Pi",
    "28:cd:c1": "Raspberry Pi",
    "24:0a:c4": "Espressif",
    "30:ae:a4": "Espressif",
    "00:18:0a": "Cisco Meraki",
    "00:0b:86": "Aruba Networks",
    "f0:9f:c2": "Ubiquiti",
    "00:27:22": "Ubiquiti",
    "14:cc:20": "TP-Link",
    "00:09:5b": "Netgear",
}


def vendor_label(bssid: str) -> str:
    """``"aa:bb:cc (Vendor)"`` style label for evidence strings."""
    oui = oui_of(bssid)
    vendor = OUI_VENDORS.get(oui)
    if vendor:
        return f"{oui} ({vendor})"
    if is_locally_administered(bssid):
        return f"{oui} (locally administered)"
    return oui
