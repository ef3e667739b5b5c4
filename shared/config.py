"""
Mirage Configuration Management
================================

Centralized configuration for the Mirage correlation engine using
Python dataclasses and TOML-based persistence.

Every detection threshold lives here rather than in the analyzers:
false-positive tuning is expected in the field, so the defaults are
starting points, not contracts.

References:
    - Wiggins, A. (2011). The Twelve-Factor App. https://12factor.net/
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


# ---------------------------------------------------------------------------
# Default configuration file path relative to the Mirage root
# ---------------------------------------------------------------------------
_DEFAULT_CONFIG_PATH: Path = Path(__file__).resolve().parent.parent / "config.toml"


# ======================== Pipeline Stage Configs ===========================


@dataclass(frozen=False, slots=True)
class NormalizerConfig:
    """Configuration for the Snapshot Normalizer.

    Governs how raw scan-driver records are coerced into
    ``NetworkObservation`` instances.
    """

    default_signal_dbm: int = -100
    max_records_per_snapshot: int = 4096


@dataclass(frozen=False, slots=True)
class StoreConfig:
    """Configuration for the Observation Store.

    ``retention_window_seconds`` decides which histories count as
    *active*; ``stale_after_seconds`` / ``stale_after_cycles`` decide
    when a history is evicted altogether. The ``max_*`` values are
    further clamped by hard caps inside the store.
    """

    retention_window_seconds: float = 600.0
    stale_after_seconds: float = 1800.0
    stale_after_cycles: int = 0  # 0 disables cycle-based eviction
    max_histories: int = 4096
    channel_history_length: int = 64
    max_ssids_per_history: int = 256
    presence_history_length: int = 128


@dataclass(frozen=False, slots=True)
class EvilTwinConfig:
    """Configuration for the Evil-Twin Detector.

    Severity names are one of ``low``, ``medium``, ``high``, ``critical``.
    """

    downgrade_severity: str = "high"
    oui_mismatch_severity: str = "medium"
    co_presence_severity: str = "low"
    co_presence_window_seconds: float = 30.0


@dataclass(frozen=False, slots=True)
class KarmaConfig:
    """Configuration for the Karma/MANA Detector."""

    min_ssids: int = 5
    high_severity_ssids: int = 10
    window_seconds: float = 600.0
    max_missed_cycles: int = 1
    bait_ssid_patterns: list[str] = field(
        default_factory=lambda: [
            "xfinitywifi", "attwifi", "att wifi", "t-mobile", "verizon",
            "spectrum", "boingo", "free wifi", "freewifi", "public",
            "guest", "linksys", "netgear", "dlink", "tp-link", "default",
            "androidap", "iphone", "galaxy", "hotspot", "starbucks",
            "mcdonalds", "airport", "hotel",
        ]
    )


@dataclass(frozen=False, slots=True)
class PineappleConfig:
    """Configuration for the Pineapple (rogue hardware) Detector.

    Each heuristic signal contributes its weight from ``weights`` to a
    cumulative score; the score is mapped onto a severity by the
    ``*_score`` bands. Scores below ``low_water_score`` yield no finding.
    """

    rogue_ouis: list[str] = field(
        default_factory=lambda: [
            "00:13:37",  # Hak5 (WiFi Pineapple)
            "00:c0:ca",  # ALFA Network
            "00:0f:00",  # ALFA Network (legacy)
            "b8:27:eb",  # Raspberry Pi
            "dc:a6:32",  # Raspberry Pi
            "e4:5f:01",  # Raspberry Pi
            "d8:3a:dd",  # Raspberry Pi
            "28:cd:c1",  # Raspberry Pi
        ]
    )
    ssid_patterns: list[str] = field(
        default_factory=lambda: [
            r"^pineapple",
            r"wifi[ _-]?pineapple",
            r"\bkarma\b",
            r"\bmana\b",
            r"\bevil\b",
            r"\brogue\b",
            r"\bpentest\b",
            r"\bkali\b",
            r"^free[ _-]?wi-?fi",
            r"^public[ _-]?wi-?fi",
            r"password",
        ]
    )
    weights: dict[str, float] = field(
        default_factory=lambda: {
            "rogue_oui": 40.0,
            "channel_churn": 35.0,
            "co_located_burst": 20.0,
            "ssid_pattern": 20.0,
            "decoy_broadcast": 15.0,
            "locally_administered": 10.0,
            "security_churn": 10.0,
            "strong_new_signal": 10.0,
        }
    )
    churn_window_seconds: float = 300.0
    churn_rate_per_minute: float = 1.0
    churn_min_switches: int = 3
    burst_window_seconds: float = 60.0
    burst_min_peers: int = 2
    burst_min_similarity: float = 0.8
    decoy_min_ssids: int = 5
    strong_signal_dbm: int = -40
    low_water_score: float = 30.0
    medium_score: float = 40.0
    high_score: float = 55.0
    critical_score: float = 70.0


@dataclass(frozen=False, slots=True)
class CorrelationConfig:
    """Configuration for the Correlation Engine merge/resolve policy."""

    grace_cycles: int = 3
    max_resolved_findings: int = 1000
    parallel_detectors: bool = True


# =========================== Global Settings ===============================


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """Global settings: logging verbosity and destination."""

    log_level: str = "WARNING"
    log_file: str = ""
    log_json: bool = False
    version: str = "1.0.0"


# =========================== Master Config =================================


@dataclass(frozen=False, slots=True)
class MirageConfig:
    """Master configuration aggregating every section.

    Usage:
        >>> config = MirageConfig.load()                  # from default path
        >>> config = MirageConfig.load("custom.toml")     # from custom path
        >>> config.karma.min_ssids
        5
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    normalizer: NormalizerConfig = field(default_factory=NormalizerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    evil_twin: EvilTwinConfig = field(default_factory=EvilTwinConfig)
    karma: KarmaConfig = field(default_factory=KarmaConfig)
    pineapple: PineappleConfig = field(default_factory=PineappleConfig)
    correlation: CorrelationConfig = field(default_factory=CorrelationConfig)

    # ------------------------------------------------------------------ #
    #  TOML Loading
    # ------------------------------------------------------------------ #

    @classmethod
    def load(cls, path: str | Path | None = None) -> MirageConfig:
        """Load configuration from a TOML file.

        If *path* is ``None`` the loader looks for ``config.toml`` in the
        project root. Missing keys fall back to dataclass defaults.

        Args:
            path: Filesystem path to a TOML configuration file.

        Returns:
            A fully-populated :class:`MirageConfig` instance.

        Raises:
            FileNotFoundError: If the specified path does not exist
                *and* was explicitly provided by the caller.
        """
        config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH

        if not config_path.exists():
            if path is not None:
                raise FileNotFoundError(
                    f"Configuration file not found: {config_path}"
                )
            return cls()

        with open(config_path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)

        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MirageConfig:
        """Build a configuration from an already-parsed TOML mapping."""
        pineapple_raw = dict(raw.get("pineapple", {}))
        weight_overrides = pineapple_raw.pop("weights", {})
        pineapple = cls._build_section(PineappleConfig, pineapple_raw)
        # Partial weight tables override individual defaults only.
        pineapple.weights = {**pineapple.weights, **weight_overrides}

        return cls(
            global_settings=cls._build_section(GlobalConfig, raw.get("global", {})),
            normalizer=cls._build_section(NormalizerConfig, raw.get("normalizer", {})),
            store=cls._build_section(StoreConfig, raw.get("store", {})),
            evil_twin=cls._build_section(EvilTwinConfig, raw.get("evil_twin", {})),
            karma=cls._build_section(KarmaConfig, raw.get("karma", {})),
            pineapple=pineapple,
            correlation=cls._build_section(
                CorrelationConfig, raw.get("correlation", {})
            ),
        )

    # ------------------------------------------------------------------ #
    #  Serialisation helpers
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict[str, Any]:
        """Serialise the entire configuration tree to a plain dictionary."""
        return asdict(self)

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _build_section(cls: type, data: dict[str, Any]) -> Any:
        """Instantiate a dataclass *cls* using only the keys it declares.

        Unknown keys in the TOML source are silently ignored so that
        forward-compatible config files do not break older code.
        """
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)


# ========================= Module-level convenience ========================

def get_config(path: str | Path | None = None) -> MirageConfig:
    """Module-level convenience wrapper around :meth:`MirageConfig.load`.

    Caches the result so that repeated imports share one instance.
    """
    if not hasattr(get_config, "_cached") or path is not None:
        get_config._cached = MirageConfig.load(path)  # type: ignore[attr-defined]
    return get_config._cached  # type: ignore[attr-defined]
