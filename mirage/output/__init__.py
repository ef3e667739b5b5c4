"""
Mirage Output
==============

Output modules for Mirage.

Modules:
    sinks    -- FindingSink protocol and the memory, console and JSONL sinks
    console  -- Rich-based console tables
    report   -- JSON report generation
"""

from mirage.output.console import MirageConsoleOutput
from mirage.output.report import MirageReportGenerator
from mirage.output.sinks import ConsoleSink, FindingSink, JsonLinesSink, MemorySink

__all__ = [
    "ConsoleSink",
    "FindingSink",
    "JsonLinesSink",
    "MemorySink",
    "MirageConsoleOutput",
    "MirageReportGenerator",
]
