"""
Mirage Console Interface
=========================

Thin presentation layer over :class:`rich.console.Console` shared by
the CLI, the console view and the console sink.

All colours come from one theme whose style names follow the
``mirage.<role>`` convention; severities map onto ``mirage.<severity>``
so that :attr:`shared.models.Severity.style` can be used directly in
markup.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

import datetime as _dt
from typing import Any, Iterable, Sequence

from rich.align import Align
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from shared.models import Diagnostic, Severity

_ACCENT = "bright_cyan"
_HEADER = "bold bright_magenta"

_MIRAGE_THEME = Theme(
    {
        "mirage.banner": f"bold {_ACCENT}",
        "mirage.section": _HEADER,
        "mirage.dim": "dim white",
        "mirage.success": "bold green",
        "mirage.warning": "bold yellow",
        "mirage.error": "bold red",
        "mirage.info": "bold bright_blue",
        # one entry per Severity value
        "mirage.low": f"bold {_ACCENT}",
        "mirage.medium": "bold yellow",
        "mirage.high": "bold red",
        "mirage.critical": "bold white on red",
    }
)

_BANNER_ART = r"""
[bright_cyan]
  ███╗   ███╗██╗██████╗  █████╗  ██████╗ ███████╗
  ████╗ ████║██║██╔══██╗██╔══██╗██╔════╝ ██╔════╝
  ██╔████╔██║██║██████╔╝███████║██║  ███╗█████╗
  ██║╚██╔╝██║██║██╔══██╗██╔══██║██║   ██║██╔══╝
  ██║ ╚═╝ ██║██║██║  ██║██║  ██║╚██████╔╝███████╗
  ╚═╝     ╚═╝╚═╝╚═╝  ╚═╝╚═╝  ╚═╝ ╚═════╝ ╚══════╝
[/bright_cyan]"""

_TAGLINE = "Passive Evil-Twin / Karma / Rogue-AP Detection"

# role -> (glyph, label)
_MESSAGE_TAGS: dict[str, tuple[str, str]] = {
    "success": ("✔", "SUCCESS"),
    "warning": ("⚠", "WARNING"),
    "error": ("✘", "ERROR"),
    "info": ("ℹ", "INFO"),
}


class MirageConsole:
    """Themed console used by every Mirage front end.

    Args:
        quiet:  Suppress all output (reports and exit codes only).
        record: Keep rendered output for :meth:`rich.console.Console.export_text`.
    """

    def __init__(self, *, quiet: bool = False, record: bool = False) -> None:
        self._console = Console(
            theme=_MIRAGE_THEME, quiet=quiet, record=record, highlight=False
        )

    @property
    def rich(self) -> Console:
        return self._console

    def print(self, *args: Any, **kwargs: Any) -> None:
        self._console.print(*args, **kwargs)

    def blank(self, count: int = 1) -> None:
        for _ in range(count):
            self._console.print()

    # ------------------------------------------------------------------ #
    #  Framing
    # ------------------------------------------------------------------ #

    def banner(self, version: str) -> None:
        """Logo panel with tagline, version and local time."""
        stamp = _dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        body = Text.from_markup(
            f"{_BANNER_ART}\n[mirage.banner]{_TAGLINE}[/mirage.banner]\n"
            f"[mirage.dim]v{version}  |  {stamp}[/mirage.dim]"
        )
        self._console.print(
            Panel(Align.center(body), border_style=_ACCENT, padding=(1, 2))
        )

    def section(self, title: str) -> None:
        self._console.rule(f"  {title}  ", style="mirage.section", characters="─")
        self._console.print()

    # ------------------------------------------------------------------ #
    #  Tagged messages
    # ------------------------------------------------------------------ #

    def _tagged(self, role: str, message: str) -> None:
        glyph, label = _MESSAGE_TAGS[role]
        style = f"mirage.{role}"
        self._console.print(f"[{style}][{glyph}] {label}:[/{style}] {message}")

    def success(self, message: str) -> None:
        self._tagged("success", message)

    def warning(self, message: str) -> None:
        self._tagged("warning", message)

    def error(self, message: str) -> None:
        self._tagged("error", message)

    def info(self, message: str) -> None:
        self._tagged("info", message)

    def diagnostics(self, diagnostics: Iterable[Diagnostic]) -> None:
        """One warning line per cycle diagnostic, markup escaped."""
        for diag in diagnostics:
            self.warning(escape(str(diag)))

    @staticmethod
    def severity_badge(severity: Severity, width: int = 8) -> str:
        """Fixed-width, theme-coloured markup label for *severity*."""
        return f"[{severity.style}]{severity.value.upper():<{width}}[/{severity.style}]"

    # ------------------------------------------------------------------ #
    #  Tables
    # ------------------------------------------------------------------ #

    @staticmethod
    def new_table(title: str) -> Table:
        """Empty table in the Mirage house style."""
        return Table(
            title=title,
            border_style=_ACCENT,
            header_style=_HEADER,
            show_lines=True,
            padding=(0, 1),
        )

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Iterable[Sequence[Any]],
    ) -> None:
        """Render *rows* under *columns*; :class:`Text` cells keep their style."""
        tbl = self.new_table(title)
        for name in columns:
            tbl.add_column(name)
        for row in rows:
            tbl.add_row(*(cell if isinstance(cell, Text) else str(cell) for cell in row))
        self._console.print(tbl)
