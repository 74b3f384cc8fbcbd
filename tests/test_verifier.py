"""Tests for post-apply verification."""

import shlex
import sys

from reprovision.drivers.memory import MemoryDriver
from reprovision.fsutil import sha256_bytes
from reprovision.models.catalog import MergeStrategy, RestoreOp, VerifyOp, VerifyType
from reprovision.models.manifest import (
    DesiredStateGraph,
    EnsureState,
    InstallIntent,
    PackageRef,
    RestoreIntent,
    VerifyIntent,
)
from reprovision.verifier import verify


def _restore(source, target, strategy=MergeStrategy.COPY, optional=False):
    op = RestoreOp(type=strategy, source=str(source), target=str(target), optional=optional)
    return RestoreIntent(op=op, source=source, target=target, provenance="test")


def _module_check(**fields):
    return VerifyIntent(op=VerifyOp(**fields), module_id="tool", provenance="module:tool")


def _python(code):
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def test_package_checks_honor_ensure(context):
    graph = DesiredStateGraph(
        installs=[
            InstallIntent(PackageRef("Git"), "m"),
            InstallIntent(PackageRef("telnet", ensure=EnsureState.ABSENT), "m"),
            InstallIntent(PackageRef("jq"), "m"),
        ]
    )
    driver = MemoryDriver({"git", "telnet"})

    report = verify(graph, driver, context)

    assert [c.passed for c in report.checks] == [True, False, False]
    assert report.failures[0].reason == "still installed"
    assert report.failures[1].reason == "not installed"
    assert driver.calls == [("query", "")]
    assert not report.passed


def test_query_failure_fails_each_package_check(context):
    graph = DesiredStateGraph(installs=[InstallIntent(PackageRef("git"), "m")])
    report = verify(graph, MemoryDriver(query_error="no manager"), context)
    assert not report.passed
    assert "no manager" in report.checks[0].reason


def test_restore_check_compares_merge_result(context, tmp_path):
    source = tmp_path / "src.json"
    source.write_text('{"a": 1}')
    target = tmp_path / "settings.json"
    target.write_text('{\n  "b": 2,\n  "a": 1\n}\n')
    stale = tmp_path / "stale.json"
    stale.write_text('{"a": 0}')

    graph = DesiredStateGraph(
        restores=[
            _restore(source, target, MergeStrategy.MERGE_JSON),
            _restore(source, stale, MergeStrategy.MERGE_JSON),
            _restore(source, tmp_path / "missing.json"),
        ]
    )
    report = verify(graph, MemoryDriver(), context)

    assert [c.passed for c in report.checks] == [True, False, False]
    assert report.checks[2].reason == "target missing"


def test_optional_missing_source_passes(context, tmp_path):
    graph = DesiredStateGraph(
        restores=[
            _restore(tmp_path / "nope", tmp_path / "t", optional=True),
            _restore(tmp_path / "nope", tmp_path / "t"),
        ]
    )
    report = verify(graph, MemoryDriver(), context)
    assert [c.passed for c in report.checks] == [True, False]


def test_module_file_exists_with_hash(context):
    rc = context.home / ".toolrc"
    rc.write_text("x")
    graph = DesiredStateGraph(
        verifies=[
            _module_check(type=VerifyType.FILE_EXISTS, path="~/.toolrc"),
            _module_check(type=VerifyType.FILE_EXISTS, path="~/.toolrc", sha256=sha256_bytes(b"x")),
            _module_check(type=VerifyType.FILE_EXISTS, path="~/.toolrc", sha256="0" * 64),
            _module_check(type=VerifyType.FILE_EXISTS, path="~/.absent"),
        ]
    )
    report = verify(graph, MemoryDriver(), context)
    assert [c.passed for c in report.checks] == [True, True, False, False]
    assert report.checks[0].subject.startswith("tool: ")


def test_module_package_present(context):
    graph = DesiredStateGraph(
        verifies=[_module_check(type=VerifyType.PACKAGE_PRESENT, package_id="git")]
    )
    assert verify(graph, MemoryDriver({"git"}), context).passed
    assert not verify(graph, MemoryDriver(), context).passed


def test_module_command_exit_codes(context):
    graph = DesiredStateGraph(
        verifies=[
            _module_check(type=VerifyType.COMMAND, command=_python("raise SystemExit(0)")),
            _module_check(type=VerifyType.COMMAND, command=_python("raise SystemExit(3)")),
            _module_check(
                type=VerifyType.COMMAND, command=_python("raise SystemExit(3)"), expected_exit_code=3
            ),
            _module_check(type=VerifyType.COMMAND, command="definitely-not-a-real-binary-xyz"),
        ]
    )
    report = verify(graph, MemoryDriver(), context)
    assert [c.passed for c in report.checks] == [True, False, True, False]
    assert report.checks[1].reason == "exit code 3, expected 0"


def test_module_command_timeout(context):
    graph = DesiredStateGraph(
        verifies=[
            _module_check(
                type=VerifyType.COMMAND,
                command=_python("import time; time.sleep(10)"),
                timeout_seconds=1,
            )
        ]
    )
    report = verify(graph, MemoryDriver(), context)
    assert not report.passed
    assert "timed out" in report.checks[0].reason


def test_report_dict(context):
    report = verify(DesiredStateGraph(), MemoryDriver(), context)
    assert report.to_dict() == {"passed": True, "total": 0, "failed": 0, "checks": []}
