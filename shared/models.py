"""
Mirage Shared Models
=====================

Pydantic v2 models shared by every Mirage component: the qualitative
:class:`Severity` scale used for threat findings, and the
:class:`Diagnostic` record used to surface recoverable problems
(malformed scan records, failing detectors or sinks) without aborting
a scan cycle.

References:
    - FIRST. (2019). Common Vulnerability Scoring System v3.1.
      https://www.first.org/cvss/v3.1/specification-document
    - Pydantic v2 documentation. https://docs.pydantic.dev/latest/
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ========================== Enumerations ===================================


class Severity(str, Enum):
    """Finding severity level, ordered ``LOW < MEDIUM < HIGH < CRITICAL``.

    Aligned with the CVSS v3.1 qualitative severity ratings.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position on the severity scale (``LOW`` is 0)."""
        return _SEVERITY_ORDER.index(self)

    @property
    def style(self) -> str:
        """Rich theme style name for severity-based colouring."""
        return f"mirage.{self.value}"

    @classmethod
    def parse(cls, value: str | Severity) -> Severity:
        """Parse a severity name case-insensitively.

        Raises:
            ValueError: If *value* does not name a severity.
        """
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown severity {value!r}; expected one of "
                f"{', '.join(s.value for s in cls)}"
            ) from None

    @staticmethod
    def highest(*severities: Severity) -> Severity:
        """Return the most severe of *severities*."""
        return max(severities, key=lambda s: s.rank)


_SEVERITY_ORDER: list[Severity] = [
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
]


# ========================== Diagnostics ====================================


class Diagnostic(BaseModel):
    """A recoverable problem surfaced during a scan cycle.

    Attributes:
        source:    Component that raised the diagnostic
                   (``normalizer``, ``detector:karma``, ``sink:jsonl``, ...).
        message:   Human-readable description.
        cycle:     Scan cycle number, if known.
        timestamp: UTC time the diagnostic was created.
    """

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    cycle: Optional[int] = None
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __str__(self) -> str:
        return f"[{self.source}] {self.message}"
