"""End-to-end tests of the engine commands, driven through their envelopes."""

import pytest

from reprovision.config import EngineConfig, EngineContext
from reprovision.drivers.memory import MemoryDriver
from reprovision.engine import (
    apply_command,
    capture_command,
    plan_command,
    restore_command,
    revert_command,
    state_command,
    verify_command,
)
from reprovision.envelope import EXIT_FAILURE, EXIT_PARTIAL, EXIT_SUCCESS


@pytest.fixture
def profile(tmp_path, write_yaml, context):
    source = tmp_path / "profile" / "files" / "gitconfig"
    source.parent.mkdir(parents=True)
    source.write_text("[user]\nname = me\n\n")
    return write_yaml(
        tmp_path / "profile" / "manifest.yaml",
        {
            "version": 1,
            "packages": ["git", "jq"],
            "restore": [{"type": "copy", "source": "files/gitconfig", "target": "~/.gitconfig"}],
        },
    )


def test_capture_then_apply_on_a_fresh_machine(tmp_path, context, make_module):
    make_module(
        "git",
        matches={"ids": ["git"]},
        capture={"files": ["~/.gitconfig"]},
        restore=[{"type": "merge-ini", "source": "payload/gitconfig", "target": "~/.gitconfig"}],
    )
    (context.home / ".gitconfig").write_text("[user]\nname = me\n")
    artifact = tmp_path / "snap.zip"

    captured = capture_command(context, artifact, driver=MemoryDriver({"git", "jq"}))
    assert captured.success, captured.error
    assert captured.data["metadata"]["modulesIncluded"] == ["git"]

    fresh_home = tmp_path / "fresh"
    fresh_home.mkdir()
    fresh = EngineContext.create(fresh_home, EngineConfig(machine_id="fresh"))
    driver = MemoryDriver()

    applied = apply_command(fresh, str(artifact), driver=driver)
    assert applied.exit_code == EXIT_SUCCESS, applied.error
    assert driver.installed == {"git", "jq"}
    assert "name = me" in (fresh.home / ".gitconfig").read_text()

    again = plan_command(fresh, str(artifact), driver=driver)
    assert again.data["plan"]["converged"] is True


def test_apply_is_idempotent(context, profile, driver):
    first = apply_command(context, str(profile), driver=driver)
    assert first.success
    assert len(first.data["run"]["steps"]) == 3

    second = apply_command(context, str(profile), driver=driver)
    assert second.success
    assert second.data["plan"]["converged"] is True
    assert second.data["run"]["steps"] == []


def test_dry_run_changes_nothing(context, profile, driver):
    result = apply_command(context, str(profile), dry_run=True, driver=driver)

    assert result.success
    assert result.to_dict()["runId"] is None
    assert driver.installed == set()
    assert not (context.home / ".gitconfig").exists()
    assert all(step["wouldDo"].startswith("would ") for step in result.data["plan"]["steps"])
    assert state_command(context).data["totalRuns"] == 0


def test_partial_failure_exit_code(context, profile):
    result = apply_command(context, str(profile), driver=MemoryDriver(failing={"jq"}))
    assert result.exit_code == EXIT_PARTIAL
    assert not result.success
    assert (context.home / ".gitconfig").is_file()


def test_input_errors_are_fatal_and_enveloped(context, tmp_path, write_yaml, driver):
    bad = write_yaml(tmp_path / "bad.yaml", {"packages": ["git"]})
    result = apply_command(context, str(bad), driver=driver)
    assert result.exit_code == EXIT_FAILURE
    assert result.error["code"] == "MANIFEST_PARSE"
    assert driver.calls == []

    missing = plan_command(context, "ghost", driver=driver, cwd=tmp_path)
    assert missing.error["code"] == "PROFILE_NOT_FOUND"


def test_restore_requires_opt_in(context, profile, driver):
    refused = restore_command(context, str(profile), driver=driver)
    assert refused.error["code"] == "RESTORE_NOT_ENABLED"

    result = restore_command(context, str(profile), enable_restore=True, driver=driver)
    assert result.success
    assert driver.installed == set()
    assert [s["kind"] for s in result.data["run"]["steps"]] == ["restore"]


def test_verify_and_revert(context, profile, driver):
    assert verify_command(context, str(profile), driver=driver).exit_code == EXIT_PARTIAL

    (context.home / ".gitconfig").write_text("[core]\n")
    apply_command(context, str(profile), driver=driver)
    report = verify_command(context, str(profile), driver=driver)
    assert report.exit_code == EXIT_SUCCESS
    assert report.data["report"]["failed"] == 0

    reverted = revert_command(context)
    assert reverted.success
    assert (context.home / ".gitconfig").read_text() == "[core]\n"
    assert reverted.data["run"]["warnings"]


def test_revert_with_nothing_to_revert(context):
    result = revert_command(context)
    assert result.error["code"] == "BACKUP_MISSING"


def test_state_reports_runs_and_drift(context, profile, driver):
    assert state_command(context).data["firstRun"] is True

    apply_command(context, str(profile), driver=driver)
    (context.home / ".gitconfig").write_text("edited by hand\n")

    data = state_command(context).data
    assert data["firstRun"] is False
    assert data["totalRuns"] == 1
    assert data["runs"][0]["command"] == "apply"
    assert [d["path"] for d in data["drift"]] == [str(context.home / ".gitconfig")]


def test_filesystem_errors_are_enveloped(context, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    result = capture_command(context, blocker / "out.zip", driver=MemoryDriver({"jq"}))

    assert result.exit_code == EXIT_FAILURE
    assert not result.success
    assert result.error["code"] == "IO_ERROR"
    assert result.error["detail"]["path"] == str(blocker)
