"""Tests for the mirage command-line interface."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from shared.logger import MirageLogger

from mirage.cli import cli

from conftest import record

CAFE = [
    record("aa:aa:aa:aa:aa:01", "Cafe"),
    record("bb:bb:bb:bb:bb:02", "Cafe", security="[ESS]"),
]
HOME = [record("f0:9f:c2:00:00:01", "Home")]


@pytest.fixture(autouse=True)
def _detach_cli_logging():
    yield
    MirageLogger.configure(log_level="ERROR", console_output=False)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _snapshots(tmp_path, snapshots, name="scan.json"):
    path = tmp_path / name
    path.write_text(json.dumps(snapshots), encoding="utf-8")
    return str(path)


def test_evil_twin_replay_exits_high_and_writes_outputs(runner, tmp_path):
    scan = _snapshots(tmp_path, [CAFE, CAFE, CAFE])
    report = tmp_path / "report.json"
    events = tmp_path / "events.jsonl"

    result = runner.invoke(
        cli, ["--quiet", "replay", scan, "-o", str(report), "--jsonl", str(events)]
    )

    assert result.exit_code == 1, result.output
    document = json.loads(report.read_text(encoding="utf-8"))
    assert document["summary"]["cycles"] == 3
    (finding,) = document["active_findings"]
    assert finding["subject_bssid"] == "bb:bb:bb:bb:bb:02"
    assert finding["confirmations"] == 3
    lines = events.read_text(encoding="utf-8").splitlines()
    assert [json.loads(l)["event"] for l in lines] == ["new"]


def test_benign_replay_exits_zero(runner, tmp_path):
    scan = _snapshots(tmp_path, [HOME, HOME])

    result = runner.invoke(cli, ["--quiet", "replay", scan])

    assert result.exit_code == 0, result.output


def test_rogue_hardware_replay_exits_critical(runner, tmp_path):
    snapshots = [
        [record("00:13:37:aa:bb:01", "CoffeeShop", channel=channel)]
        for channel in [1, 6, 11, 1, 6, 11, 1, 6, 11]
    ]
    scan = _snapshots(tmp_path, snapshots)

    result = runner.invoke(cli, ["--quiet", "replay", scan, "--interval", "35"])

    assert result.exit_code == 2, result.output


def test_replay_prints_findings(runner, tmp_path):
    scan = _snapshots(tmp_path, [CAFE])

    result = runner.invoke(cli, ["replay", scan, "--networks", "-v"])

    assert result.exit_code == 1
    assert "bb:bb:bb:bb:bb:02" in result.output
    assert "Observed Networks" in result.output


def test_state_file_carries_history_across_runs(runner, tmp_path):
    state = tmp_path / "state" / "store.json"
    report = tmp_path / "report.json"
    scan = _snapshots(tmp_path, [HOME])

    first = runner.invoke(cli, ["--quiet", "replay", scan, "--state", str(state)])
    assert first.exit_code == 0, first.output
    saved = json.loads(state.read_text(encoding="utf-8"))
    assert saved["last_cycle"] == 1

    second = runner.invoke(
        cli, ["--quiet", "replay", scan, "--state", str(state), "-o", str(report)]
    )
    assert second.exit_code == 0, second.output
    document = json.loads(report.read_text(encoding="utf-8"))
    assert [c["cycle"] for c in document["cycles"]] == [2]


def test_invalid_snapshot_file_fails(runner, tmp_path):
    path = tmp_path / "broken.jsonl"
    path.write_text("[]\n{broken\n", encoding="utf-8")

    result = runner.invoke(cli, ["--quiet", "replay", str(path)])

    assert result.exit_code == 1


def test_config_command_prints_effective_settings(runner, tmp_path):
    path = tmp_path / "mirage.toml"
    path.write_text("[karma]\nmin_ssids = 7\n", encoding="utf-8")

    result = runner.invoke(cli, ["--config", str(path), "config"])

    assert result.exit_code == 0, result.output
    settings = json.loads(result.stdout)
    assert settings["karma"]["min_ssids"] == 7
    assert settings["correlation"]["grace_cycles"] == 3


def test_missing_config_file_is_an_error(runner, tmp_path):
    result = runner.invoke(cli, ["--config", str(tmp_path / "nope.toml"), "config"])

    assert result.exit_code == 1
    assert "Configuration file not found" in result.output


def test_version_option(runner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "1.0.0" in result.output
