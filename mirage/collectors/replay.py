"""
Mirage Snapshot Replay
=======================

Loads recorded scan snapshots from disk so that the correlation engine
can be driven offline, one snapshot per cycle.

Two layouts are accepted:

    - A JSON document: either an array of snapshots, an object with a
      ``"snapshots"`` array, or a plain array of scan records (treated
      as one snapshot).
    - JSON lines: one snapshot per non-empty line.

A snapshot is either ``{"timestamp": ..., "networks": [...]}`` (the
``networks`` key may also be spelled ``records`` or ``results``) or a
bare array of scan records. Records are passed to the normalizer
unchanged.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from shared.logger import MirageLogger

from mirage.collectors.normalizer import parse_timestamp

logger = MirageLogger("collectors.replay")

_RECORD_KEYS = ("networks", "records", "results")


@dataclass(slots=True)
class ReplaySnapshot:
    """One recorded scan.

    Attributes:
        index:     Position in the file (0-based).
        timestamp: Scan time, if the file recorded one.
        records:   Raw scan records.
    """

    index: int
    timestamp: Optional[datetime] = None
    records: list[Any] = field(default_factory=list)


def load_snapshots(path: str | Path) -> list[ReplaySnapshot]:
    """Read every snapshot in *path*.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file is not valid JSON / JSON lines, or a
            snapshot has an unexpected shape. The message names the file
            and line.
    """
    snapshots = list(iter_snapshots(path))
    logger.info(f"Loaded {len(snapshots)} snapshots from {path}")
    return snapshots


def iter_snapshots(path: str | Path) -> Iterator[ReplaySnapshot]:
    """Yield snapshots from *path* in file order."""
    in_path = Path(path)
    text = in_path.read_text(encoding="utf-8")
    stripped = text.lstrip()
    if not stripped:
        return

    if stripped[0] in "[{":
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            # Trailing data after the first value means JSON lines.
            if exc.msg != "Extra data":
                raise ValueError(
                    f"{in_path}:{exc.lineno}: invalid JSON ({exc.msg})"
                ) from exc
        else:
            yield from _from_document(document, in_path)
            return

    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ValueError(
                f"{in_path}:{lineno}: invalid JSON ({exc.msg})"
            ) from exc
        yield _to_snapshot(item, lineno - 1, f"{in_path}:{lineno}")


def _from_document(document: Any, in_path: Path) -> Iterator[ReplaySnapshot]:
    if isinstance(document, dict):
        if "snapshots" in document:
            document = document["snapshots"]
        else:
            yield _to_snapshot(document, 0, str(in_path))
            return
    if not isinstance(document, list):
        raise ValueError(f"{in_path}: expected a JSON array of snapshots")

    if document and all(_looks_like_record(item) for item in document):
        yield ReplaySnapshot(index=0, records=list(document))
        return

    for index, item in enumerate(document):
        yield _to_snapshot(item, index, f"{in_path}[{index}]")


def _looks_like_record(item: Any) -> bool:
    return isinstance(item, dict) and not any(k in item for k in _RECORD_KEYS)


def _to_snapshot(item: Any, index: int, where: str) -> ReplaySnapshot:
    if isinstance(item, list):
        return ReplaySnapshot(index=index, records=item)
    if not isinstance(item, dict):
        raise ValueError(f"{where}: expected a snapshot object or array")

    records: Any = []
    for key in _RECORD_KEYS:
        if key in item:
            records = item[key]
            break
    if not isinstance(records, list):
        raise ValueError(f"{where}: snapshot records must be an array")

    timestamp = None
    raw_ts = item.get("timestamp", item.get("time"))
    if raw_ts is not None:
        timestamp = parse_timestamp(raw_ts)
        if timestamp is None:
            raise ValueError(f"{where}: unparseable timestamp {raw_ts!r}")
    return ReplaySnapshot(index=index, timestamp=timestamp, records=records)
