"""
Mirage Finding Sinks
=====================

Destinations for the :class:`FindingBatch` the correlation engine
produces once per cycle.

A sink is anything with a ``publish(batch)`` method. The engine calls
every registered sink in turn; an exception raised by one sink is
logged and recorded as a cycle diagnostic without affecting the others.

Stock sinks:
    MemorySink     -- keeps batches in memory (tests, embedding)
    ConsoleSink    -- prints a Rich summary of each cycle
    JsonLinesSink  -- appends one JSON object per finding event to a file
"""

from __future__ import annotations

import json
import threading
from collections import deque
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from rich.markup import escape

from shared.console import MirageConsole
from shared.logger import MirageLogger

from mirage.core.models import Finding, FindingBatch

logger = MirageLogger("output.sinks")


@runtime_checkable
class FindingSink(Protocol):
    """Receives one batch per completed cycle."""

    def publish(self, batch: FindingBatch) -> None:
        ...


class MemorySink:
    """Retains the most recent *max_batches* batches."""

    name = "memory"

    def __init__(self, max_batches: int = 1000) -> None:
        self._batches: deque[FindingBatch] = deque(maxlen=max(1, max_batches))
        self._lock = threading.Lock()

    def publish(self, batch: FindingBatch) -> None:
        with self._lock:
            self._batches.append(batch)

    @property
    def batches(self) -> list[FindingBatch]:
        with self._lock:
            return list(self._batches)

    @property
    def last(self) -> Optional[FindingBatch]:
        with self._lock:
            return self._batches[-1] if self._batches else None

    def clear(self) -> None:
        with self._lock:
            self._batches.clear()


class ConsoleSink:
    """Prints new and resolved findings as they happen.

    Confirmations are silent unless *verbose* is set, so a stable
    threat does not repeat on every cycle.
    """

    name = "console"

    def __init__(
        self, console: Optional[MirageConsole] = None, *, verbose: bool = False
    ) -> None:
        self._console = console or MirageConsole()
        self._verbose = verbose

    def publish(self, batch: FindingBatch) -> None:
        for finding in batch.new:
            self._line(batch.cycle, "NEW", finding)
        if self._verbose:
            for finding in batch.confirmed:
                self._line(batch.cycle, "CONFIRMED", finding)
        for finding in batch.resolved:
            self._line(batch.cycle, "RESOLVED", finding)

    def _line(self, cycle: int, event: str, finding: Finding) -> None:
        text = (
            f"[mirage.dim]#{cycle:<4}[/mirage.dim] {event:<9} "
            f"{MirageConsole.severity_badge(finding.severity)} "
            f"{finding.type.value:<10} {finding.subject_bssid}"
        )
        if finding.ssid:
            text += f"  '{escape(finding.ssid)}'"
        if event == "RESOLVED" and finding.resolution:
            text += f"  [mirage.dim]({finding.resolution})[/mirage.dim]"
        self._console.print(text)


class JsonLinesSink:
    """Appends finding events to a JSON-lines file.

    Each line is ``{"cycle": ..., "event": "new"|"confirmed"|"resolved",
    "finding": {...}}``. Confirmation events are written only when
    *include_confirmed* is set.
    """

    name = "jsonl"

    def __init__(self, path: str | Path, *, include_confirmed: bool = False) -> None:
        self._path = Path(path)
        self._include_confirmed = include_confirmed
        self._lock = threading.Lock()
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def publish(self, batch: FindingBatch) -> None:
        events = [("new", f) for f in batch.new]
        if self._include_confirmed:
            events += [("confirmed", f) for f in batch.confirmed]
        events += [("resolved", f) for f in batch.resolved]
        if not events:
            return

        lines = [
            json.dumps(
                {
                    "cycle": batch.cycle,
                    "event": event,
                    "finding": finding.model_dump(mode="json"),
                },
                ensure_ascii=False,
            )
            for event, finding in events
        ]
        with self._lock, self._path.open("a", encoding="utf-8") as fh:
            fh.write("\n".join(lines) + "\n")
        logger.debug(f"Wrote {len(lines)} finding events to {self._path}")
