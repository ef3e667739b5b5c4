"""Tests for mirage.collectors.replay."""

from __future__ import annotations

import json

import pytest

from mirage.collectors.replay import iter_snapshots, load_snapshots

from conftest import T0, record

NET = record("aa:bb:cc:00:00:01", "Home")


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_array_of_timestamped_snapshots(tmp_path):
    path = _write(
        tmp_path,
        "scan.json",
        json.dumps(
            [
                {"timestamp": "2024-05-01T12:00:00Z", "networks": [NET]},
                {"timestamp": "2024-05-01T12:00:30Z", "results": [NET, NET]},
            ]
        ),
    )

    first, second = load_snapshots(path)

    assert first.index == 0 and first.timestamp == T0
    assert first.records == [NET]
    assert (second.timestamp - first.timestamp).total_seconds() == 30
    assert len(second.records) == 2


def test_snapshots_key_and_bare_arrays(tmp_path):
    path = _write(tmp_path, "scan.json", json.dumps({"snapshots": [[NET], [], [NET]]}))

    snapshots = load_snapshots(path)

    assert [len(s.records) for s in snapshots] == [1, 0, 1]
    assert all(s.timestamp is None for s in snapshots)


def test_plain_record_array_is_one_snapshot(tmp_path):
    path = _write(tmp_path, "scan.json", json.dumps([NET, record("aa:bb:cc:00:00:02")]))

    (snapshot,) = load_snapshots(path)
    assert len(snapshot.records) == 2


def test_json_lines(tmp_path):
    lines = [
        json.dumps({"timestamp": 1714564800, "networks": [NET]}),
        "",
        json.dumps([NET]),
    ]
    path = _write(tmp_path, "scan.jsonl", "\n".join(lines) + "\n")

    first, second = iter_snapshots(path)

    assert first.timestamp == T0
    assert second.index == 2
    assert second.records == [NET]


def test_invalid_line_names_the_line(tmp_path):
    path = _write(tmp_path, "scan.jsonl", json.dumps([NET]) + "\n{oops\n")

    with pytest.raises(ValueError, match=r"scan\.jsonl:2: invalid JSON"):
        load_snapshots(path)


def test_unparseable_timestamp_is_rejected(tmp_path):
    path = _write(tmp_path, "scan.json", json.dumps({"timestamp": "soon", "networks": []}))

    with pytest.raises(ValueError, match="unparseable timestamp"):
        load_snapshots(path)


def test_empty_file_has_no_snapshots(tmp_path):
    assert load_snapshots(_write(tmp_path, "empty.json", "  \n")) == []
