"""
Mirage CLI
===========

Click-based command-line interface for the Mirage rogue access point
correlation engine.

Commands:
    mirage replay SNAPSHOTS      Run the engine over recorded scan snapshots
    mirage config                Print the effective configuration

Common options:
    --config PATH       Mirage configuration file (TOML)
    --quiet             Suppress console output
    --log-level LEVEL   Override the configured log level

Exit codes for ``replay``: 2 when a critical finding is still active at
the end of the run, 1 for a high finding, 0 otherwise.

References:
    - Click Documentation: https://click.palletsprojects.com/
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import click

from shared.config import MirageConfig
from shared.console import MirageConsole
from shared.logger import MirageLogger
from shared.models import Severity

from mirage import __version__

_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


# ---------------------------------------------------------------------------
# CLI Group
# ---------------------------------------------------------------------------


@click.group(
    name="mirage",
    help=(
        "MIRAGE - Rogue Access Point Correlation Engine\n\n"
        "Correlates periodic Wi-Fi scan snapshots to detect Evil-Twin, "
        "Karma/MANA and WiFi-Pineapple style attacks."
    ),
)
@click.version_option(__version__, prog_name="mirage")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to Mirage configuration file (TOML).",
)
@click.option(
    "--quiet",
    is_flag=True,
    default=False,
    help="Suppress console output (reports and exit code only).",
)
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Override the configured log level.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[str],
    quiet: bool,
    log_level: Optional[str],
) -> None:
    """Mirage - main CLI entry point."""
    ctx.ensure_object(dict)

    try:
        config = MirageConfig.load(config_path)
    except FileNotFoundError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if log_level:
        config.global_settings.log_level = log_level.upper()
    settings = config.global_settings
    MirageLogger.configure(
        log_level=settings.log_level,
        log_file=settings.log_file or None,
        json_logs=settings.log_json,
        console_output=not quiet,
    )

    ctx.obj["config"] = config
    ctx.obj["console"] = MirageConsole(quiet=quiet)
    ctx.obj["quiet"] = quiet


# ---------------------------------------------------------------------------
# Replay Command
# ---------------------------------------------------------------------------


@cli.command(
    name="replay",
    help=(
        "Replay recorded scan snapshots.\n\n"
        "Feeds each snapshot in SNAPSHOTS (a JSON array or JSON-lines "
        "file) to the correlation engine as one scan cycle, prints new "
        "and resolved findings as they occur, and summarises the final "
        "active findings.\n\n"
        "Snapshots without a timestamp are spaced --interval seconds apart."
    ),
)
@click.argument("snapshots", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write a JSON report to this path.",
)
@click.option(
    "--jsonl",
    type=click.Path(dir_okay=False),
    default=None,
    help="Append finding events to this JSON-lines file.",
)
@click.option(
    "--state",
    type=click.Path(dir_okay=False),
    default=None,
    help="Observation store file: loaded if present, saved after the run.",
)
@click.option(
    "--interval",
    type=click.FloatRange(min=0.0, min_open=True),
    default=30.0,
    show_default=True,
    help="Seconds between snapshots that carry no timestamp.",
)
@click.option(
    "--networks",
    is_flag=True,
    default=False,
    help="Also print the networks held by the store at the end.",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Print a summary line for every cycle.",
)
@click.pass_context
def replay(
    ctx: click.Context,
    snapshots: str,
    output: Optional[str],
    jsonl: Optional[str],
    state: Optional[str],
    interval: float,
    networks: bool,
    verbose: bool,
) -> None:
    """Replay a snapshot file through the correlation engine."""
    config: MirageConfig = ctx.obj["config"]
    console: MirageConsole = ctx.obj["console"]

    from mirage.collectors.replay import load_snapshots
    from mirage.core.engine import CorrelationEngine
    from mirage.core.store import ObservationStore
    from mirage.output.console import MirageConsoleOutput
    from mirage.output.report import MirageReportGenerator
    from mirage.output.sinks import ConsoleSink, JsonLinesSink

    output_view = MirageConsoleOutput(console)
    output_view.display_banner()

    try:
        recorded = load_snapshots(snapshots)
    except ValueError as exc:
        console.error(str(exc))
        sys.exit(1)

    store = None
    if state and Path(state).exists():
        try:
            store = ObservationStore.load(state, config.store)
        except ValueError as exc:
            console.error(str(exc))
            sys.exit(1)
        console.info(f"Restored {len(store)} networks from {state}")

    sinks = [ConsoleSink(console, verbose=verbose)]
    if jsonl:
        sinks.append(JsonLinesSink(jsonl))
    engine = CorrelationEngine(config, store=store, sinks=sinks)

    console.section(f"Replaying {len(recorded)} snapshots")
    base = datetime.now(timezone.utc)
    previous: Optional[datetime] = None
    reports = []
    for snapshot in recorded:
        if snapshot.timestamp is not None:
            now = snapshot.timestamp
        elif previous is not None:
            now = previous + timedelta(seconds=interval)
        else:
            now = base
        previous = now
        report = engine.run_cycle_sync(snapshot.records, now=now)
        reports.append(report)
        if verbose:
            output_view.display_cycle(report)
        else:
            console.diagnostics(report.warnings)
    console.blank()

    active = engine.active_findings()
    resolved = engine.resolved_findings()
    output_view.display_findings(active)
    output_view.display_resolved(resolved)
    if networks:
        last = previous or base
        output_view.display_networks(engine.store.all_active(last))

    if output:
        path = MirageReportGenerator().write_json(
            output, active, resolved, reports, config, source=snapshots
        )
        console.success(f"Report written to {path}")
    if state:
        engine.store.save(state)
        console.success(f"Observation store saved to {state}")

    severities = {f.severity for f in active}
    if Severity.CRITICAL in severities:
        sys.exit(2)
    if Severity.HIGH in severities:
        sys.exit(1)


# ---------------------------------------------------------------------------
# Config Command
# ---------------------------------------------------------------------------


@cli.command(name="config", help="Print the effective configuration as JSON.")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the merged configuration."""
    config: MirageConfig = ctx.obj["config"]
    click.echo(json.dumps(config.to_dict(), indent=2))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Entry point for the Mirage CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
