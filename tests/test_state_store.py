"""Tests for the state store: snapshots, run history and failure modes."""

import json
import tempfile
from pathlib import Path

import pytest

from reprovision import SCHEMA_VERSION
from reprovision.errors import ReprovisionError, SchemaVersionMismatchError
from reprovision.fsutil import atomic_write_bytes, mangle_path
from reprovision.models.plan import RunOutcome, RunRecord
from reprovision.models.state import Snapshot
from reprovision.state import StateStore


def _record(run_id, timestamp="2026-01-01T00:00:00+00:00", command="apply"):
    return RunRecord(run_id=run_id, command=command, timestamp_utc=timestamp, outcome=RunOutcome.SUCCESS)


def test_missing_state_is_first_run():
    with tempfile.TemporaryDirectory() as tmpdir:
        state = StateStore(Path(tmpdir) / "state").load()
        assert state.is_empty
        assert state.schema_version == SCHEMA_VERSION


def test_corrupt_state_fails_closed(store):
    store.state_path.parent.mkdir(parents=True)
    store.state_path.write_text("{ half a json docu")
    assert store.load().is_empty


def test_malformed_state_fails_closed(store):
    store.state_path.parent.mkdir(parents=True)
    store.state_path.write_text(json.dumps({"schemaVersion": "one"}))
    assert store.load().is_empty


def test_newer_schema_version_is_fatal(store):
    store.state_path.parent.mkdir(parents=True)
    store.state_path.write_text(json.dumps({"schemaVersion": SCHEMA_VERSION + 1}))
    with pytest.raises(SchemaVersionMismatchError) as exc:
        store.load()
    assert exc.value.detail["found"] == SCHEMA_VERSION + 1


def test_snapshot_round_trip(store):
    snapshot = Snapshot(packages={"git", "jq"}, files={"/h/.gitconfig": "ab" * 32, "/h/x": None})
    store.save_snapshot(snapshot, run_id="run-1")

    loaded = store.load()
    assert loaded.last_run_id == "run-1"
    assert loaded.last_snapshot.packages == {"git", "jq"}
    assert loaded.last_snapshot.files == {"/h/.gitconfig": "ab" * 32, "/h/x": None}
    assert json.loads(store.state_path.read_text())["schemaVersion"] == SCHEMA_VERSION


def test_writes_leave_no_temp_files(store):
    for i in range(3):
        store.save_snapshot(Snapshot(packages={f"p{i}"}))
        store.write_run(_record(f"run-{i}"))
    leftovers = [p for p in store.state_dir.rglob("*") if p.name.endswith(".tmp")]
    assert leftovers == []


def test_run_records_are_append_only(store):
    store.write_run(_record("abc"))
    with pytest.raises(ReprovisionError):
        store.write_run(_record("abc"))


def test_list_runs_oldest_first_and_skips_garbage(store):
    store.write_run(_record("late", "2026-03-01T00:00:00+00:00"))
    store.write_run(_record("early", "2026-01-01T00:00:00+00:00"))
    (store.runs_dir / "garbage.json").write_text("not json")
    (store.runs_dir / "partial.json").write_text(json.dumps({"schemaVersion": 1, "runId": "x"}))

    assert [r.run_id for r in store.list_runs()] == ["early", "late"]
    assert store.latest_run().run_id == "late"


def test_run_record_from_newer_schema_is_fatal(store):
    store.runs_dir.mkdir(parents=True)
    data = _record("future").to_dict()
    data["schemaVersion"] = SCHEMA_VERSION + 1
    (store.runs_dir / "future.json").write_text(json.dumps(data))
    with pytest.raises(SchemaVersionMismatchError):
        store.list_runs()


def test_backup_dirs_are_timestamp_named(store):
    path = store.new_backup_dir("0123456789abcdef", "2026-02-03T04:05:06.000007+00:00")
    assert path.parent == store.backups_root
    assert path.name == "20260203T040506000007Z-01234567"


def test_atomic_write_keeps_mode(tmp_path):
    target = tmp_path / "script.sh"
    target.write_text("old")
    target.chmod(0o750)

    atomic_write_bytes(target, b"new")

    assert target.read_bytes() == b"new"
    assert target.stat().st_mode & 0o777 == 0o750


def test_mangle_path_flattens_absolute_paths():
    assert mangle_path(Path("/home/me/.gitconfig")) == "home/me/.gitconfig"
