"""Post-apply verification. Read-only: nothing here writes to disk or calls
``ensure``/``remove``.

Three kinds of checks:

- every install intent: package present (or absent for ``ensure: absent``);
- every restore intent: target exists and already holds what the merge
  strategy would produce from the source;
- module ``verify`` ops: ``file-exists`` (optionally with a sha256),
  ``package-present`` and ``command`` (exit code within a timeout).

A failing check is a result, not an exception.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, field

from reprovision.config import EngineContext
from reprovision.drivers.base import InstallCapability
from reprovision.errors import InstallCapabilityError, MergeError
from reprovision.fsutil import sha256_bytes, sha256_file
from reprovision.merge import apply_strategy
from reprovision.models.catalog import VerifyOp, VerifyType
from reprovision.models.manifest import DesiredStateGraph, EnsureState, RestoreIntent

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    kind: str  # package | file | module
    subject: str
    passed: bool
    reason: str = ""
    provenance: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "subject": self.subject,
            "passed": self.passed,
            "reason": self.reason,
            "provenance": self.provenance,
        }


@dataclass
class VerifyReport:
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def failures(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed]

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "total": len(self.checks),
            "failed": len(self.failures),
            "checks": [c.to_dict() for c in self.checks],
        }


class Verifier:
    def __init__(self, driver: InstallCapability, context: EngineContext):
        self.driver = driver
        self.context = context
        self._packages: set[str] | None = None
        self._query_error = ""

    def verify(self, graph: DesiredStateGraph) -> VerifyReport:
        report = VerifyReport()
        for intent in graph.installs:
            report.checks.append(
                self._check_package(
                    intent.package.id,
                    intent.package.ensure == EnsureState.PRESENT,
                    intent.provenance,
                )
            )
        for intent in graph.restores:
            report.checks.append(self._check_restore(intent))
        for intent in graph.verifies:
            report.checks.append(self._check_op(intent.op, intent.module_id, intent.provenance))

        logger.info("Verify: %d checks, %d failed", len(report.checks), len(report.failures))
        return report

    # -- checks ---------------------------------------------------------------

    def _check_package(self, package_id: str, want_present: bool, provenance: str) -> CheckResult:
        installed = self._installed()
        if installed is None:
            return CheckResult("package", package_id, False, self._query_error, provenance)
        present = package_id.lower() in installed
        if present == want_present:
            reason = "installed" if present else "absent"
            return CheckResult("package", package_id, True, reason, provenance)
        reason = "not installed" if want_present else "still installed"
        return CheckResult("package", package_id, False, reason, provenance)

    def _check_restore(self, intent: RestoreIntent) -> CheckResult:
        subject = str(intent.target)

        def result(passed: bool, reason: str) -> CheckResult:
            return CheckResult("file", subject, passed, reason, intent.provenance)

        if not intent.source.is_file():
            if intent.op.optional:
                return result(True, "optional source missing; not restored")
            return result(False, f"source {intent.source} missing")
        if not intent.target.is_file():
            return result(False, "target missing")

        try:
            current = intent.target.read_bytes()
            expected = apply_strategy(intent.op.type, intent.source.read_bytes(), current)
        except OSError as e:
            return result(False, f"cannot read: {e}")
        except MergeError as e:
            return result(False, e.message)

        if sha256_bytes(expected) != sha256_bytes(current):
            return result(False, f"content differs from {intent.op.type.value} of {intent.source}")
        return result(True, "content matches")

    def _check_op(self, op: VerifyOp, module_id: str, provenance: str) -> CheckResult:
        label = f"{module_id}: {op.label()}"
        if op.type == VerifyType.PACKAGE_PRESENT:
            outcome = self._check_package(op.package_id, True, provenance)
            return CheckResult("module", label, outcome.passed, outcome.reason, provenance)

        if op.type == VerifyType.FILE_EXISTS:
            path = self.context.expand(op.path)
            if not path.is_file():
                return CheckResult("module", label, False, f"{path} missing", provenance)
            if op.sha256 and sha256_file(path) != op.sha256.lower():
                return CheckResult("module", label, False, f"{path} hash mismatch", provenance)
            return CheckResult("module", label, True, "present", provenance)

        return self._check_command(op, label, provenance)

    def _check_command(self, op: VerifyOp, label: str, provenance: str) -> CheckResult:
        try:
            proc = subprocess.run(
                shlex.split(op.command),
                capture_output=True,
                text=True,
                timeout=op.timeout_seconds,
                cwd=self.context.home,
            )
        except subprocess.TimeoutExpired:
            return CheckResult("module", label, False, f"timed out after {op.timeout_seconds}s", provenance)
        except (OSError, ValueError) as e:
            return CheckResult("module", label, False, str(e), provenance)

        if proc.returncode != op.expected_exit_code:
            return CheckResult(
                "module",
                label,
                False,
                f"exit code {proc.returncode}, expected {op.expected_exit_code}",
                provenance,
            )
        return CheckResult("module", label, True, f"exit code {proc.returncode}", provenance)

    def _installed(self) -> set[str] | None:
        """Observed package ids (lower-cased), queried once per report."""
        if self._packages is None and not self._query_error:
            try:
                self._packages = {p.lower() for p in self.driver.query()}
            except InstallCapabilityError as e:
                logger.warning("Package query failed during verify: %s", e.message)
                self._query_error = f"package query failed: {e.message}"
        return self._packages


def verify(
    graph: DesiredStateGraph, driver: InstallCapability, context: EngineContext
) -> VerifyReport:
    return Verifier(driver, context).verify(graph)
