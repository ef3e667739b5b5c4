"""
Mirage Snapshot Normalizer
===========================

Converts the raw, driver-specific records of one Wi-Fi scan into
canonical :class:`NetworkObservation` instances.

Scan sources disagree on nearly everything: field names (``bssid`` vs
``mac``, ``signal_level`` vs ``rssi``), MAC notation (colon, dash,
Cisco dotted, bare hex), whether a channel or only a frequency is
reported, and how security is spelled (Android capability strings such
as ``[WPA2-PSK-CCMP][ESS]``, ``nmcli`` flags, free-form ``"WPA3 SAE"``).
The normalizer accepts all of them, drops what cannot be salvaged
(with a :class:`Diagnostic` per record) and never raises on bad input.

References:
    - IEEE. (2020). IEEE Std 802.11-2020. Annex E: Country Information
      and Operating Classes.
    - IEEE. (2014). IEEE Std 802-2014. Section 8.1: MAC Address Format.
    - Android Open Source Project. ScanResult.capabilities.
      https://developer.android.com/reference/android/net/wifi/ScanResult
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from shared.config import NormalizerConfig
from shared.logger import MirageLogger
from shared.models import Diagnostic

from mirage.core.models import (
    CHANNEL_FREQ_MAP_24GHZ,
    CHANNEL_FREQ_MAP_5GHZ,
    FrequencyBand,
    NetworkObservation,
    NormalizationResult,
    SecurityType,
)

logger = MirageLogger("collectors.normalizer")

_SOURCE = "normalizer"

# Accepted spellings for each canonical field, in priority order.
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "bssid": ("bssid", "BSSID", "mac", "MAC", "address"),
    "ssid": ("ssid", "SSID", "essid", "ESSID", "name"),
    "channel": ("channel", "chan", "CHAN", "Channel"),
    "frequency": ("frequency", "freq", "FREQ", "Frequency"),
    "signal": ("signal_level", "signal", "rssi", "RSSI", "level", "SIGNAL"),
    "security": (
        "security", "capabilities", "flags", "encryption",
        "security_flags", "SECURITY",
    ),
    "timestamp": ("timestamp", "observed_at", "seen_at", "time"),
}

_MAC_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^[0-9a-f]{2}([:-])[0-9a-f]{2}(?:\1[0-9a-f]{2}){4}$"),
    re.compile(r"^[0-9a-f]{4}\.[0-9a-f]{4}\.[0-9a-f]{4}$"),
    re.compile(r"^[0-9a-f]{12}$"),
)

_INVALID_BSSIDS = frozenset({"000000000000", "ffffffffffff"})

# Capability tags that say nothing about encryption.
_NON_SECURITY_TAGS = re.compile(r"\[(?:ESS|IBSS|BSS|WPS|P2P|MESH)\]")
_OPEN_WORDS = frozenset({"", "OPEN", "NONE", "--", "OFF", "NO", "ESS"})

_LEADING_INT = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")
_EPOCH = re.compile(r"\d+(?:\.\d+)?")


# ---------------------------------------------------------------------------
# Field coercion helpers
# ---------------------------------------------------------------------------


def canonicalize_bssid(value: Any) -> Optional[str]:
    """Return *value* as a lowercase colon-separated MAC, or ``None``.

    Broadcast and all-zero addresses are rejected since no access point
    can legitimately transmit from them.

    >>> canonicalize_bssid("AA-BB-CC-DD-EE-FF")
    'aa:bb:cc:dd:ee:ff'
    >>> canonicalize_bssid("aabb.ccdd.eeff")
    'aa:bb:cc:dd:ee:ff'
    """
    if not isinstance(value, str):
        return None
    text = value.strip().lower()
    if not any(p.match(text) for p in _MAC_PATTERNS):
        return None
    digits = re.sub(r"[^0-9a-f]", "", text)
    if digits in _INVALID_BSSIDS:
        return None
    return ":".join(digits[i:i + 2] for i in range(0, 12, 2))


def classify_security(value: Any) -> SecurityType:
    """Map a driver security description onto :class:`SecurityType`.

    WPA2/WPA3 transition-mode networks classify as WPA2 because they
    still admit WPA2 clients.
    """
    if value is None:
        return SecurityType.UNKNOWN
    if isinstance(value, (list, tuple, set, frozenset)):
        value = " ".join(str(v) for v in value)
    text = str(value).strip().upper()
    remainder = _NON_SECURITY_TAGS.sub("", text).strip().strip('"')
    if remainder in _OPEN_WORDS:
        return SecurityType.OPEN

    has_wpa3 = "WPA3" in text or "SAE" in text or "OWE" in text
    has_wpa2 = (
        "WPA2" in text
        or re.search(r"RSN-[^\]\s]*(?:PSK|EAP)", text) is not None
    )
    if has_wpa3 and has_wpa2:
        return SecurityType.WPA2
    if has_wpa3:
        return SecurityType.WPA3
    if has_wpa2 or "RSN" in text:
        return SecurityType.WPA2
    if "WPA" in text:
        return SecurityType.WPA
    if "WEP" in text:
        return SecurityType.WEP
    if "OPEN" in text or "NONE" in text:
        return SecurityType.OPEN
    return SecurityType.UNKNOWN


def channel_from_frequency(frequency: int) -> int:
    """Convert a centre frequency in MHz to a channel number (0 if unknown)."""
    for ch, freq in CHANNEL_FREQ_MAP_24GHZ.items():
        if freq == frequency:
            return ch
    for ch, freq in CHANNEL_FREQ_MAP_5GHZ.items():
        if freq == frequency:
            return ch
    if 2412 <= frequency <= 2484:
        return 14 if frequency == 2484 else (frequency - 2407) // 5
    if 5150 <= frequency < 5925:
        return (frequency - 5000) // 5
    if 5925 <= frequency <= 7125:
        return (frequency - 5950) // 5
    return 0


def band_for(channel: int, frequency: int) -> Optional[FrequencyBand]:
    """Derive the operating band, preferring the frequency when reported."""
    if frequency:
        if 2400 <= frequency <= 2500:
            return FrequencyBand.BAND_2_4GHZ
        if 5150 <= frequency < 5925:
            return FrequencyBand.BAND_5GHZ
        if 5925 <= frequency <= 7125:
            return FrequencyBand.BAND_6GHZ
    if 1 <= channel <= 14:
        return FrequencyBand.BAND_2_4GHZ
    if 32 <= channel <= 177:
        return FrequencyBand.BAND_5GHZ
    return None


def _coerce_number(value: Any) -> Optional[float]:
    """Leading number of *value*; ``None`` for NaN and infinities."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        else:
            match = _LEADING_INT.match(str(value))
            if not match:
                return None
            number = float(match.group(1))
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _coerce_signal(value: Any, default: int) -> int:
    """Signal in dBm; positive readings are treated as 0-100 % quality."""
    number = _coerce_number(value)
    if number is None:
        return default
    if 0 < number <= 100:
        return int(round(number / 2 - 100))
    return int(round(max(min(number, 0.0), -120.0)))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 text, epoch seconds or epoch milliseconds to aware UTC."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    number: Optional[float] = None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = _coerce_number(value)
    elif isinstance(value, str) and _EPOCH.fullmatch(value.strip()):
        number = _coerce_number(value)
    if number is not None:
        if number > 1e12:
            number /= 1000.0
        try:
            return datetime.fromtimestamp(number, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _clean_ssid(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).replace("\x00", "").strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        text = text[1:-1]
    if text.lower() in ("<hidden>", "<unknown ssid>", "<unknown>"):
        return ""
    return text


def _pick(record: Mapping[str, Any], field: str) -> Any:
    for alias in _FIELD_ALIASES[field]:
        if alias in record and record[alias] not in (None, ""):
            return record[alias]
    return None


# ---------------------------------------------------------------------------
# Snapshot Normalizer
# ---------------------------------------------------------------------------


class SnapshotNormalizer:
    """Turns one raw scan snapshot into deduplicated observations.

    Args:
        config: Normalizer section of the Mirage configuration.
    """

    def __init__(self, config: Optional[NormalizerConfig] = None) -> None:
        self._config = config or NormalizerConfig()

    def normalize(
        self,
        records: Iterable[Any],
        snapshot_time: Optional[datetime] = None,
        *,
        cycle: Optional[int] = None,
    ) -> NormalizationResult:
        """Normalize *records* captured at *snapshot_time*.

        Records without their own timestamp inherit *snapshot_time*.
        Duplicate ``(bssid, ssid)`` pairs keep the strongest signal.

        Args:
            records:       Raw scan records (mappings).
            snapshot_time: Time the snapshot was taken (defaults to now, UTC).
            cycle:         Cycle number attached to diagnostics.

        Returns:
            A :class:`NormalizationResult`; never raises on malformed records.
        """
        now = parse_timestamp(snapshot_time) if snapshot_time else None
        now = now or datetime.now(timezone.utc)
        raw = list(records or [])
        warnings: list[Diagnostic] = []

        limit = self._config.max_records_per_snapshot
        if limit > 0 and len(raw) > limit:
            warnings.append(
                Diagnostic(
                    source=_SOURCE,
                    message=(
                        f"snapshot has {len(raw)} records; "
                        f"only the first {limit} were processed"
                    ),
                    cycle=cycle,
                )
            )
            truncated = len(raw) - limit
            raw = raw[:limit]
        else:
            truncated = 0

        best: dict[tuple[str, str], NetworkObservation] = {}
        dropped = truncated
        for index, record in enumerate(raw):
            obs, problem = self._normalize_record(record, now)
            if obs is None:
                dropped += 1
                warnings.append(
                    Diagnostic(
                        source=_SOURCE,
                        message=f"record {index} dropped: {problem}",
                        cycle=cycle,
                    )
                )
                continue
            key = (obs.bssid, obs.ssid)
            current = best.get(key)
            if current is None or (obs.signal_dbm, obs.observed_at) > (
                current.signal_dbm, current.observed_at
            ):
                best[key] = obs

        accepted = len(raw) - (dropped - truncated)
        result = NormalizationResult(
            observations=list(best.values()),
            warnings=warnings,
            input_count=len(raw) + truncated,
            dropped=dropped,
            duplicates=accepted - len(best),
        )
        if dropped:
            logger.warning(
                f"Dropped {dropped} of {result.input_count} scan records",
                dropped=dropped,
            )
        logger.debug(
            f"Normalized {len(result.observations)} observations "
            f"({result.duplicates} duplicates merged)"
        )
        return result

    def _normalize_record(
        self, record: Any, now: datetime
    ) -> tuple[Optional[NetworkObservation], str]:
        """Return ``(observation, "")`` or ``(None, reason)``."""
        if not isinstance(record, Mapping):
            return None, f"expected a mapping, got {type(record).__name__}"

        raw_bssid = _pick(record, "bssid")
        bssid = canonicalize_bssid(raw_bssid)
        if bssid is None:
            return None, f"invalid or missing BSSID {raw_bssid!r}"

        channel_num = _coerce_number(_pick(record, "channel"))
        channel = int(channel_num) if channel_num and channel_num > 0 else 0
        freq_num = _coerce_number(_pick(record, "frequency"))
        frequency = int(freq_num) if freq_num and freq_num > 0 else 0
        # Some drivers report frequency in GHz.
        if 0 < frequency < 10 and freq_num is not None:
            frequency = int(round(freq_num * 1000))

        if not channel and not frequency:
            return None, f"{bssid}: neither channel nor frequency reported"
        if not channel:
            channel = channel_from_frequency(frequency)
        band = band_for(channel, frequency)
        if band is None or not channel:
            return None, (
                f"{bssid}: cannot determine band "
                f"(channel={channel}, frequency={frequency})"
            )

        raw_ts = _pick(record, "timestamp")
        observed_at = now
        if raw_ts is not None:
            observed_at = parse_timestamp(raw_ts) or now

        raw_security = _pick(record, "security")
        if raw_security is None and any(
            alias in record for alias in _FIELD_ALIASES["security"]
        ):
            # Present but empty means no encryption advertised.
            raw_security = ""

        try:
            obs = NetworkObservation(
                bssid=bssid,
                ssid=_clean_ssid(_pick(record, "ssid")),
                channel=channel,
                band=band,
                signal_dbm=_coerce_signal(
                    _pick(record, "signal"), self._config.default_signal_dbm
                ),
                security=classify_security(raw_security),
                observed_at=observed_at,
                frequency_mhz=frequency,
            )
        except ValidationError as exc:
            return None, f"{bssid}: {exc.error_count()} validation error(s)"
        return obs, ""
