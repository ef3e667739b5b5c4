"""
Mirage Console Output
======================

Rich-based console output for Mirage: cycle summaries, finding tables,
the audit trail of resolved findings and the observed-network table.

References:
    - Rich library: https://github.com/Textualize/rich
    - Mirage Console: shared.console.MirageConsole
"""

from __future__ import annotations

from typing import Optional, Sequence

from rich.markup import escape
from rich.text import Text

from shared.console import MirageConsole

from mirage import __version__
from mirage.core.models import (
    CycleReport,
    Finding,
    NetworkHistory,
    SecurityType,
    vendor_label,
)


# ---------------------------------------------------------------------------
# Colour mappings
# ---------------------------------------------------------------------------

_SECURITY_COLORS: dict[SecurityType, str] = {
    SecurityType.OPEN: "bold red",
    SecurityType.WEP: "bold bright_red",
    SecurityType.WPA: "bold yellow",
    SecurityType.WPA2: "bold green",
    SecurityType.WPA3: "bold bright_green",
    SecurityType.UNKNOWN: "dim",
}


class MirageConsoleOutput:
    """Rich console presentation of Mirage results.

    Usage::

        output = MirageConsoleOutput()
        output.display_cycle(report)
        output.display_findings(engine.active_findings())
    """

    def __init__(self, console: Optional[MirageConsole] = None) -> None:
        self._console = console or MirageConsole()

    @property
    def console(self) -> MirageConsole:
        return self._console

    def display_banner(self) -> None:
        self._console.banner(__version__)

    def display_cycle(self, report: CycleReport) -> None:
        """One-line-per-fact summary of a completed cycle."""
        batch = report.batch
        parts = [
            f"cycle {report.cycle}",
            f"{report.observations} observations",
            f"{report.active_networks} active networks",
            f"{len(batch.active)} active findings",
        ]
        if batch.new:
            parts.append(f"[mirage.warning]{len(batch.new)} new[/mirage.warning]")
        if batch.resolved:
            parts.append(f"[mirage.success]{len(batch.resolved)} resolved[/mirage.success]")
        if report.evicted:
            parts.append(f"{len(report.evicted)} evicted")
        self._console.print("[mirage.dim]>[/mirage.dim] " + "  |  ".join(parts))

        for finding in batch.new:
            self._console.print(
                f"    {self._console.severity_badge(finding.severity)} "
                f"{finding.type.value:<10} {finding.subject_bssid}"
                + (f"  '{escape(finding.ssid)}'" if finding.ssid else "")
            )
        self._console.diagnostics(report.warnings)

    def display_findings(
        self, findings: Sequence[Finding], title: str = "Active Findings"
    ) -> None:
        self._console.section(title)
        if not findings:
            self._console.success("No threats detected")
            return

        table = self._console.new_table(title)
        table.add_column("#", justify="right", width=4)
        table.add_column("Severity", width=10)
        table.add_column("Type", width=10)
        table.add_column("Subject", width=19)
        table.add_column("SSID", ratio=1)
        table.add_column("Evidence", ratio=3)
        table.add_column("Conf.", justify="center", width=6)
        table.add_column("Seen", justify="right", width=5)

        for idx, finding in enumerate(findings, 1):
            sev = finding.severity
            subject = finding.subject_bssid
            if finding.related_bssid:
                subject += f"\nvs {finding.related_bssid}"
            table.add_row(
                str(idx),
                Text(sev.value.upper(), style=sev.style),
                finding.type.value,
                subject,
                escape(finding.ssid) if finding.ssid else "[dim]-[/dim]",
                escape("\n".join(finding.evidence[:6])),
                f"{finding.confidence:.0%}",
                str(finding.confirmations),
            )

        self._console.rich.print(table)
        self._console.blank()

    def display_resolved(self, findings: Sequence[Finding]) -> None:
        if not findings:
            return
        rows = [
            (
                f.type.value,
                f.subject_bssid,
                f.first_detected_at.strftime("%Y-%m-%d %H:%M:%S"),
                f.resolved_at.strftime("%Y-%m-%d %H:%M:%S") if f.resolved_at else "-",
                f.resolution,
            )
            for f in findings
        ]
        self._console.table(
            "Resolved Findings",
            ["Type", "Subject", "First Detected", "Resolved", "Reason"],
            rows,
        )

    def display_networks(self, histories: Sequence[NetworkHistory]) -> None:
        """Table of the networks currently held by the store."""
        self._console.section("Observed Networks")
        rows = []
        for hist in sorted(histories, key=lambda h: h.bssid):
            last = hist.last_observation
            security = (
                sorted(hist.security_history, key=lambda s: s.strength or 0)[-1]
                if hist.security_history
                else SecurityType.UNKNOWN
            )
            named = sorted(escape(s) for s in hist.ssids if s)
            rows.append(
                (
                    hist.bssid,
                    vendor_label(hist.bssid),
                    ", ".join(named[:3]) + (f" (+{len(named) - 3})" if len(named) > 3 else "")
                    or "[dim]<hidden>[/dim]",
                    str(last.channel) if last else "-",
                    f"{last.signal_dbm} dBm" if last else "-",
                    Text(security.value, style=_SECURITY_COLORS[security]),
                    str(len(hist.presence)),
                )
            )
        self._console.table(
            "Networks",
            ["BSSID", "Vendor", "SSIDs", "Ch", "Signal", "Security", "Cycles"],
            rows,
        )
