"""Tests for the command line: exit codes, JSON envelopes and human output."""

import json

import pytest
from click.testing import CliRunner

from reprovision.cli import main
from reprovision.drivers.memory import MemoryDriver


@pytest.fixture
def shared_driver(monkeypatch):
    """One in-memory package manager that survives across CLI invocations."""
    driver = MemoryDriver()
    monkeypatch.setattr("reprovision.engine.build_driver", lambda settings: driver)
    return driver


@pytest.fixture
def cli(home):
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(main, ["--home", str(home), *args], catch_exceptions=False)

    return _invoke


@pytest.fixture
def manifest(tmp_path, write_yaml):
    return write_yaml(tmp_path / "desk.yaml", {"version": 1, "packages": ["git", "jq"]})


def _envelope(result):
    return json.loads(result.stdout)


def test_apply_json_envelope(cli, manifest, shared_driver):
    result = cli("--json", "apply", str(manifest))

    assert result.exit_code == 0
    envelope = _envelope(result)
    assert envelope["command"] == "apply"
    assert envelope["success"] is True
    assert envelope["schemaVersion"] == 1
    assert envelope["runId"]
    assert envelope["error"] is None
    assert shared_driver.installed == {"git", "jq"}


def test_plan_human_output_when_converged(cli, manifest, shared_driver):
    shared_driver.installed.update({"git", "jq"})
    result = cli("plan", str(manifest))
    assert result.exit_code == 0
    assert "Already converged" in result.stdout


def test_partial_apply_exits_2(cli, manifest, shared_driver):
    shared_driver.failing.add("jq")
    result = cli("--json", "apply", str(manifest))
    assert result.exit_code == 2
    assert _envelope(result)["success"] is False


def test_invalid_manifest_exits_1(cli, tmp_path, write_yaml, shared_driver):
    bad = write_yaml(tmp_path / "bad.yaml", {"version": "one"})
    result = cli("--json", "plan", str(bad))
    assert result.exit_code == 1
    assert _envelope(result)["error"]["code"] == "MANIFEST_PARSE"


def test_restore_without_flag_is_refused(cli, manifest, shared_driver):
    result = cli("--json", "restore", str(manifest))
    assert result.exit_code == 1
    assert _envelope(result)["error"]["code"] == "RESTORE_NOT_ENABLED"


def test_failed_verify_exits_2(cli, manifest, shared_driver):
    result = cli("--json", "verify", str(manifest))
    assert result.exit_code == 2
    assert _envelope(result)["data"]["report"]["failed"] == 2


def test_invalid_config_is_reported(cli, home, manifest, write_yaml):
    write_yaml(home / ".reprovision" / "config.yaml", {"driver": {"kind": "teleport"}})
    result = cli("--json", "plan", str(manifest))
    assert result.exit_code == 1
    assert _envelope(result)["error"]["code"] == "CONFIG_INVALID"


def test_error_renders_for_humans(cli, tmp_path, shared_driver):
    result = cli("plan", "ghost")
    assert result.exit_code == 1
    assert "PROFILE_NOT_FOUND" in result.stdout


def test_state_after_apply(cli, manifest, shared_driver):
    cli("apply", str(manifest))
    result = cli("--json", "state", "--limit", "5")
    data = _envelope(result)["data"]
    assert data["totalRuns"] == 1
    assert data["runs"][0]["outcome"] == "success"


def test_capture_with_memory_driver(cli, home, tmp_path, write_yaml):
    write_yaml(home / ".reprovision" / "config.yaml", {"driver": {"kind": "memory", "packages": ["git"]}})
    artifact = tmp_path / "snap.zip"

    result = cli("--json", "capture", "--output", str(artifact))

    assert result.exit_code == 0
    assert artifact.is_file()
    assert _envelope(result)["data"]["packages"] == ["git"]


def test_schema_command():
    runner = CliRunner()
    listing = runner.invoke(main, ["schema"])
    assert "manifest" in listing.stdout.split()

    manifest = runner.invoke(main, ["schema", "manifest"])
    assert json.loads(manifest.stdout)["title"] == "Desired-state manifest"

    unknown = runner.invoke(main, ["schema", "nope"])
    assert unknown.exit_code == 2
