"""Tests for observation and diff-based planning."""

import json

import pytest

from reprovision.drivers.memory import MemoryDriver
from reprovision.errors import InstallCapabilityError
from reprovision.models.catalog import MergeStrategy, RestoreOp
from reprovision.models.manifest import (
    DesiredStateGraph,
    EnsureState,
    InstallIntent,
    PackageRef,
    RestoreIntent,
)
from reprovision.models.plan import InstallStep, RestoreStep, StepKind
from reprovision.models.state import Snapshot
from reprovision.observe import observe
from reprovision.planner import plan


def _install(package_id, ensure=EnsureState.PRESENT):
    return InstallIntent(PackageRef(package_id, ensure=ensure), provenance="test")


def _restore(source, target, strategy=MergeStrategy.COPY, optional=False):
    op = RestoreOp(strategy, str(source), str(target), optional=optional)
    return RestoreIntent(op=op, source=source, target=target, provenance="test")


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def _plan(graph, installed=()):
    return plan(graph, observe(graph, MemoryDriver(installed)))


# --- Installs ---


def test_missing_package_gets_install_step():
    result = _plan(DesiredStateGraph(installs=[_install("jq"), _install("git")]), installed={"git"})

    assert [s.package.id for s in result.install_steps] == ["jq"]
    assert [s.reason for s in result.skipped] == ["already installed"]


def test_package_match_is_case_insensitive():
    result = _plan(DesiredStateGraph(installs=[_install("Git.Git")]), installed={"git.git"})
    assert result.converged


def test_absent_package_gets_remove_step():
    graph = DesiredStateGraph(
        installs=[_install("telnet", EnsureState.ABSENT), _install("ftp", EnsureState.ABSENT)]
    )
    result = _plan(graph, installed={"telnet"})

    assert len(result.steps) == 1
    assert result.steps[0].kind == StepKind.REMOVE
    assert result.skipped[0].reason == "already absent"


# --- Restores ---


def test_restore_emitted_when_target_missing(tmp_path):
    source = _write(tmp_path / "src" / "gitconfig", "[user]\n")
    result = _plan(DesiredStateGraph(restores=[_restore(source, tmp_path / "home" / ".gitconfig")]))

    assert len(result.restore_steps) == 1
    assert result.restore_steps[0].backup_required


def test_restore_emitted_when_content_differs(tmp_path):
    source = _write(tmp_path / "src", "new")
    target = _write(tmp_path / "dst", "old")
    result = _plan(DesiredStateGraph(restores=[_restore(source, target)]))
    assert len(result.restore_steps) == 1


def test_restore_skipped_when_content_matches(tmp_path):
    source = _write(tmp_path / "src", "same")
    target = _write(tmp_path / "dst", "same")
    result = _plan(DesiredStateGraph(restores=[_restore(source, target)]))

    assert result.converged
    assert result.skipped[0].reason == "content up to date"


def test_merge_dry_pass_decides_convergence(tmp_path):
    source = _write(tmp_path / "settings.json", json.dumps({"fontSize": 14}))
    target = _write(
        tmp_path / "user" / "settings.json",
        json.dumps({"theme": "dark", "fontSize": 14}, indent=2) + "\n",
    )
    result = _plan(DesiredStateGraph(restores=[_restore(source, target, MergeStrategy.MERGE_JSON)]))
    assert result.converged


def test_optional_missing_source_is_skipped(tmp_path):
    graph = DesiredStateGraph(
        restores=[_restore(tmp_path / "nope", tmp_path / "dst", optional=True)]
    )
    result = _plan(graph)
    assert result.converged
    assert result.skipped[0].reason == "optional source missing"


def test_required_missing_source_is_planned_with_warning(tmp_path):
    result = _plan(DesiredStateGraph(restores=[_restore(tmp_path / "nope", tmp_path / "dst")]))

    assert result.restore_steps[0].note == "source missing"
    assert any("does not exist" in w for w in result.warnings)


def test_unmergeable_target_is_planned_with_note(tmp_path):
    source = _write(tmp_path / "s.json", "{}")
    target = _write(tmp_path / "t.json", "not json")
    result = _plan(DesiredStateGraph(restores=[_restore(source, target, MergeStrategy.MERGE_JSON)]))
    assert result.restore_steps[0].note.startswith("merge will fail")


# --- Ordering and purity ---


def test_installs_precede_restores_and_keep_graph_order(tmp_path):
    source = _write(tmp_path / "src", "x")
    graph = DesiredStateGraph(
        installs=[_install("b"), _install("a")],
        restores=[_restore(source, tmp_path / "t1"), _restore(source, tmp_path / "t2")],
    )
    result = _plan(graph)

    kinds = [type(s) for s in result.steps]
    assert kinds == [InstallStep, InstallStep, RestoreStep, RestoreStep]
    assert [s.subject for s in result.steps] == ["b", "a", str(tmp_path / "t1"), str(tmp_path / "t2")]


def test_planning_never_writes(tmp_path):
    source = _write(tmp_path / "src" / "s.json", '{"a": 1}')
    target = _write(tmp_path / "dst" / "t.json", '{"b": 2}')
    before = sorted(p.relative_to(tmp_path) for p in tmp_path.rglob("*"))

    _plan(DesiredStateGraph(restores=[_restore(source, target, MergeStrategy.MERGE_JSON)]))

    assert sorted(p.relative_to(tmp_path) for p in tmp_path.rglob("*")) == before
    assert target.read_text() == '{"b": 2}'


# --- Observation ---


def test_observe_fingerprints_targets(tmp_path):
    target = _write(tmp_path / "t", "x")
    graph = DesiredStateGraph(
        restores=[_restore(tmp_path / "s", target), _restore(tmp_path / "s", tmp_path / "missing")]
    )
    snapshot = observe(graph, MemoryDriver({"git"}))

    assert snapshot.packages == {"git"}
    assert snapshot.files[str(target)] is not None
    assert snapshot.files[str(tmp_path / "missing")] is None


def test_observe_falls_back_to_stored_snapshot(store):
    store.save_snapshot(Snapshot(packages={"git", "jq"}))
    snapshot = observe(DesiredStateGraph(), MemoryDriver(query_error="manager offline"), store)

    assert snapshot.packages == {"git", "jq"}
    assert snapshot.warnings


def test_observe_without_fallback_raises():
    with pytest.raises(InstallCapabilityError):
        observe(DesiredStateGraph(), MemoryDriver(query_error="manager offline"))
