"""
Mirage Report Generator
========================

Generates a structured JSON report from a Mirage run: the final set of
active findings, the resolved-finding audit trail, per-cycle summaries
and the configuration the run used.

References:
    - OWASP. (2023). Testing Guide v4: Reporting.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence
from uuid import UUID

from shared.config import MirageConfig
from shared.logger import MirageLogger

from mirage import __tool__, __version__
from mirage.core.models import CycleReport, Finding

logger = MirageLogger("output.report")


class _MirageJSONEncoder(json.JSONEncoder):
    """JSON encoder handling Mirage model serialization."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        if hasattr(obj, "model_dump"):
            return obj.model_dump(mode="json")
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


class MirageReportGenerator:
    """Builds and writes JSON reports.

    Usage::

        gen = MirageReportGenerator()
        path = gen.write_json("report.json", active, resolved, cycles, config)
    """

    def build(
        self,
        active: Sequence[Finding],
        resolved: Sequence[Finding],
        cycles: Sequence[CycleReport] = (),
        config: Optional[MirageConfig] = None,
        *,
        source: str = "",
    ) -> dict[str, Any]:
        """Assemble the report document as plain data."""
        severity_counts: dict[str, int] = {}
        for finding in active:
            key = finding.severity.value
            severity_counts[key] = severity_counts.get(key, 0) + 1

        return {
            "tool": __tool__,
            "version": __version__,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "source": source,
            "summary": {
                "cycles": len(cycles),
                "active_findings": len(active),
                "resolved_findings": len(resolved),
                "severity_counts": severity_counts,
                "warnings": sum(len(c.warnings) for c in cycles),
            },
            "active_findings": [f.model_dump(mode="json") for f in active],
            "resolved_findings": [f.model_dump(mode="json") for f in resolved],
            "cycles": [
                {
                    "cycle": c.cycle,
                    "started_at": c.started_at,
                    "duration_seconds": c.duration_seconds,
                    "observations": c.observations,
                    "active_networks": c.active_networks,
                    "new": len(c.batch.new),
                    "confirmed": len(c.batch.confirmed),
                    "resolved": len(c.batch.resolved),
                    "evicted": c.evicted,
                    "warnings": [str(w) for w in c.warnings],
                }
                for c in cycles
            ],
            "config": config.to_dict() if config is not None else None,
        }

    def write_json(
        self,
        path: str | Path,
        active: Sequence[Finding],
        resolved: Sequence[Finding],
        cycles: Sequence[CycleReport] = (),
        config: Optional[MirageConfig] = None,
        *,
        source: str = "",
    ) -> Path:
        """Write the report to *path* and return the resolved path."""
        document = self.build(active, resolved, cycles, config, source=source)
        out_path = Path(path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(
            json.dumps(document, cls=_MirageJSONEncoder, indent=2),
            encoding="utf-8",
        )
        logger.info(f"JSON report written to {out_path}")
        return out_path.resolve()
