"""
Mirage Structured Logger
=========================

Provides :class:`MirageLogger`, a structured logging facade that emits
human-friendly Rich console output and, optionally, machine-parseable
JSON lines to a rotating log file.

Every record carries the emitting *component* (``"engine"``,
``"analyzers.karma"``, ...) and, while a scan cycle is in progress, the
*cycle* number, so that a single cycle can be followed across the
normalizer, the store, the detectors, and the sinks.

References:
    - Python logging HOWTO. https://docs.python.org/3/howto/logging.html
    - Rich library. https://github.com/Textualize/rich
"""

from __future__ import annotations

import json
import logging
import time
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

_LOG_THEME = Theme(
    {
        "log.level.debug": "dim cyan",
        "log.level.info": "bold bright_blue",
        "log.level.warning": "bold yellow",
        "log.level.error": "bold red",
        "log.level.critical": "bold white on red",
    }
)

_ROOT_NAMESPACE = "mirage"

_current_cycle: ContextVar[int | None] = ContextVar("mirage_cycle", default=None)


# ========================== JSON Formatter =================================


class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single-line JSON object.

    Output fields::

        {
          "timestamp": "...",
          "level": "WARNING",
          "logger": "mirage.engine",
          "message": "...",
          "component": "engine",
          "cycle": 42,
          "extra": { ... },
          "exc_info": "..."
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for attr in ("component", "cycle"):
            val = getattr(record, attr, None)
            if val is not None:
                entry[attr] = val

        extra = getattr(record, "mirage_extra", None)
        if extra is not None:
            entry["extra"] = extra

        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


# ========================== Rich Console Handler ===========================


class _ColorConsoleHandler(RichHandler):
    """:class:`rich.logging.RichHandler` writing to stderr with the Mirage theme."""

    def __init__(self, **kwargs: Any) -> None:
        console = Console(theme=_LOG_THEME, stderr=True)
        super().__init__(
            console=console,
            show_path=False,
            show_time=True,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=False,
            **kwargs,
        )


# ========================== MirageLogger ===================================


class MirageLogger:
    """Structured, cycle-aware logger for Mirage components.

    The bound cycle number lives in a context variable: records from
    every component, including detector worker threads started with
    :func:`asyncio.to_thread`, carry the cycle the engine is running.

    Usage::

        log = MirageLogger("core.engine")
        with log.cycle(7):
            log.warning("Detector %s failed", "karma", detector="karma")
        with log.timed("merge"):
            merge()

    Args:
        component:       Dotted component name, appended to ``mirage.``.
        log_level:       Minimum severity (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file:        Path to the rotating log file. ``None`` disables file logging.
        json_logs:       If ``True`` the file handler emits JSON lines.
        console_output:  If ``True`` attach a colour Rich console handler.
    """

    def __init__(
        self,
        component: str,
        *,
        log_level: str = "INFO",
        log_file: str | Path | None = None,
        json_logs: bool = False,
        console_output: bool = True,
    ) -> None:
        self._component = component
        self._logger = logging.getLogger(f"{_ROOT_NAMESPACE}.{component}")
        self._logger.propagate = False
        file_handler = (
            _build_file_handler(Path(log_file), log_level, json_logs) if log_file else None
        )
        _install_handlers(self._logger, log_level, file_handler, console_output)

    # ------------------------------------------------------------------ #
    #  Process-wide configuration
    # ------------------------------------------------------------------ #

    @staticmethod
    def configure(
        *,
        log_level: str = "INFO",
        log_file: str | Path | None = None,
        json_logs: bool = False,
        console_output: bool = True,
    ) -> None:
        """Re-apply level and handlers to every existing ``mirage.*`` logger.

        Module loggers are created at import time with defaults; the CLI
        calls this once the configuration file has been read. All loggers
        share one file handler.
        """
        file_handler = (
            _build_file_handler(Path(log_file), log_level, json_logs) if log_file else None
        )
        prefix = f"{_ROOT_NAMESPACE}."
        for name, candidate in list(logging.Logger.manager.loggerDict.items()):
            if name.startswith(prefix) and isinstance(candidate, logging.Logger):
                _install_handlers(candidate, log_level, file_handler, console_output)

    # ------------------------------------------------------------------ #
    #  Context management -- cycle scope
    # ------------------------------------------------------------------ #

    class _CycleContext:
        """Binds a cycle number to the current context until exit."""

        def __init__(self, cycle: int) -> None:
            self._cycle = cycle
            self._token: Token[int | None] | None = None

        def __enter__(self) -> int:
            self._token = _current_cycle.set(self._cycle)
            return self._cycle

        def __exit__(self, *exc: Any) -> None:
            if self._token is not None:
                _current_cycle.reset(self._token)

    def cycle(self, number: int) -> _CycleContext:
        """Return a context manager that tags records with ``cycle=<number>``."""
        return self._CycleContext(number)

    @staticmethod
    def current_cycle() -> int | None:
        """Cycle bound by the innermost active :meth:`cycle` block, if any."""
        return _current_cycle.get()

    # ------------------------------------------------------------------ #
    #  Log methods
    # ------------------------------------------------------------------ #

    def _enrich(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Move non-standard keyword arguments into the record's *extra*."""
        extra = kwargs.pop("extra", {}) or {}

        mirage_extra: dict[str, Any] = {}
        standard_keys = {"exc_info", "stack_info", "stacklevel"}
        for key in list(kwargs):
            if key not in standard_keys:
                mirage_extra[key] = kwargs.pop(key)

        extra["component"] = self._component
        extra["cycle"] = _current_cycle.get()
        if mirage_extra:
            extra["mirage_extra"] = mirage_extra

        kwargs["extra"] = extra
        return kwargs

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **self._enrich(kwargs))

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **self._enrich(kwargs))

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **self._enrich(kwargs))

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **self._enrich(kwargs))

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log an ERROR-level message with full exception traceback."""
        kwargs["exc_info"] = kwargs.get("exc_info", True)
        self._logger.error(msg, *args, **self._enrich(kwargs))

    # ------------------------------------------------------------------ #
    #  Timing helper
    # ------------------------------------------------------------------ #

    class _TimingContext:
        """Context manager for measuring and logging elapsed time."""

        def __init__(self, logger_inst: MirageLogger, label: str) -> None:
            self._logger = logger_inst
            self._label = label
            self._start: float = 0.0

        def __enter__(self) -> MirageLogger._TimingContext:
            self._start = time.perf_counter()
            return self

        def __exit__(self, *exc: Any) -> None:
            self._logger.debug(
                "Completed: %s (%.3f sec)", self._label, self.elapsed
            )

        @property
        def elapsed(self) -> float:
            """Seconds elapsed since entering the context."""
            return time.perf_counter() - self._start

    def timed(self, label: str) -> _TimingContext:
        """Context manager that logs elapsed time at DEBUG on exit."""
        return self._TimingContext(self, label)

    # ------------------------------------------------------------------ #
    #  Properties
    # ------------------------------------------------------------------ #

    @property
    def component(self) -> str:
        """Name of the component this logger is bound to."""
        return self._component

    @property
    def underlying(self) -> logging.Logger:
        """Direct access to the stdlib :class:`logging.Logger`."""
        return self._logger


# ========================== Handler helpers ================================

_MAX_LOG_BYTES = 10_485_760
_LOG_BACKUPS = 5


def _install_handlers(
    target: logging.Logger,
    log_level: str,
    file_handler: logging.Handler | None,
    console_output: bool,
) -> None:
    """Replace *target*'s handlers; never stacks duplicates."""
    target.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    target.handlers.clear()
    if console_output:
        target.addHandler(_ColorConsoleHandler(level=log_level.upper()))
    if file_handler is not None:
        target.addHandler(file_handler)


def _build_file_handler(
    file_path: Path,
    log_level: str,
    json_logs: bool,
) -> RotatingFileHandler:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    fh = RotatingFileHandler(
        filename=str(file_path),
        maxBytes=_MAX_LOG_BYTES,
        backupCount=_LOG_BACKUPS,
        encoding="utf-8",
    )
    fh.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    if json_logs:
        fh.setFormatter(_JSONFormatter())
    else:
        fh.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S%z",
            )
        )
    return fh
