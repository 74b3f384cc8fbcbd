"""Plan and run-record models.

A Plan is pure data: nothing happens until the executor walks it. A
RunRecord is what the executor (or revert) leaves behind; it is written once
and never modified.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union

from reprovision import SCHEMA_VERSION
from reprovision.models.catalog import MergeStrategy
from reprovision.models.manifest import EnsureState, PackageRef


class StepKind(Enum):
    INSTALL = "install"
    REMOVE = "remove"
    RESTORE = "restore"
    REVERT = "revert"  # Written by revert for each file it puts back


@dataclass(frozen=True)
class InstallStep:
    package: PackageRef
    provenance: str = ""

    @property
    def kind(self) -> StepKind:
        if self.package.ensure == EnsureState.ABSENT:
            return StepKind.REMOVE
        return StepKind.INSTALL

    @property
    def subject(self) -> str:
        return self.package.id

    def describe(self) -> str:
        verb = "remove" if self.kind == StepKind.REMOVE else "install"
        return f"{verb} package {self.package.id}"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "packageId": self.package.id,
            "provenance": self.provenance,
        }


@dataclass(frozen=True)
class RestoreStep:
    source: Path
    target: Path
    strategy: MergeStrategy
    backup_required: bool = True
    provenance: str = ""
    module_id: str = ""
    note: str = ""

    @property
    def kind(self) -> StepKind:
        return StepKind.RESTORE

    @property
    def subject(self) -> str:
        return str(self.target)

    def describe(self) -> str:
        return f"{self.strategy.value} {self.source} -> {self.target}"

    def to_dict(self) -> dict:
        data = {
            "kind": self.kind.value,
            "source": str(self.source),
            "target": str(self.target),
            "strategy": self.strategy.value,
            "backupRequired": self.backup_required,
            "provenance": self.provenance,
        }
        if self.module_id:
            data["moduleId"] = self.module_id
        if self.note:
            data["note"] = self.note
        return data


Step = Union[InstallStep, RestoreStep]


@dataclass(frozen=True)
class SkippedIntent:
    """A desired intent the planner found already satisfied (or skippable)."""

    subject: str
    reason: str
    provenance: str = ""


@dataclass
class Plan:
    steps: list[Step] = field(default_factory=list)
    skipped: list[SkippedIntent] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        """Zero steps: the machine already matches the desired state."""
        return not self.steps

    @property
    def install_steps(self) -> list[InstallStep]:
        return [s for s in self.steps if isinstance(s, InstallStep)]

    @property
    def restore_steps(self) -> list[RestoreStep]:
        return [s for s in self.steps if isinstance(s, RestoreStep)]

    def only_restores(self) -> Plan:
        return Plan(
            steps=list(self.restore_steps),
            skipped=list(self.skipped),
            warnings=list(self.warnings),
        )

    def to_dict(self) -> dict:
        return {
            "converged": self.converged,
            "steps": [s.to_dict() for s in self.steps],
            "skipped": [
                {"subject": s.subject, "reason": s.reason, "provenance": s.provenance}
                for s in self.skipped
            ],
            "warnings": list(self.warnings),
        }


# --- Execution results ---


class StepStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PLANNED = "planned"  # Dry-run: would have executed


class RunOutcome(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class BackupRef:
    """Where a Backup Entry lives (relative to the run's backup dir) and what it holds."""

    path: str
    sha256: str
    size: int

    def to_dict(self) -> dict:
        return {"path": self.path, "sha256": self.sha256, "size": self.size}

    @classmethod
    def from_dict(cls, data: dict) -> BackupRef:
        return cls(path=data["path"], sha256=data["sha256"], size=data.get("size", 0))


@dataclass
class StepResult:
    index: int
    kind: StepKind
    subject: str  # Package id or target path
    status: StepStatus
    message: str = ""
    backup: BackupRef | None = None
    created: bool = False  # Target did not exist before the step wrote it
    pre_hash: str | None = None
    post_hash: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != StepStatus.FAILED

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "kind": self.kind.value,
            "subject": self.subject,
            "status": self.status.value,
            "message": self.message,
            "backup": self.backup.to_dict() if self.backup else None,
            "created": self.created,
            "preHash": self.pre_hash,
            "postHash": self.post_hash,
        }

    @classmethod
    def from_dict(cls, data: dict) -> StepResult:
        backup = data.get("backup")
        return cls(
            index=data["index"],
            kind=StepKind(data["kind"]),
            subject=data["subject"],
            status=StepStatus(data["status"]),
            message=data.get("message", ""),
            backup=BackupRef.from_dict(backup) if backup else None,
            created=data.get("created", False),
            pre_hash=data.get("preHash"),
            post_hash=data.get("postHash"),
        )


@dataclass
class RunRecord:
    """Durable log entry for one apply / restore / revert / capture invocation."""

    run_id: str
    command: str
    timestamp_utc: str
    outcome: RunOutcome
    steps: list[StepResult] = field(default_factory=list)
    backup_dir: str = ""
    warnings: list[str] = field(default_factory=list)
    dry_run: bool = False
    reverted_run_id: str = ""

    @property
    def failed_steps(self) -> list[StepResult]:
        return [s for s in self.steps if s.status == StepStatus.FAILED]

    @staticmethod
    def outcome_for(results: list[StepResult]) -> RunOutcome:
        failed = sum(1 for r in results if r.status == StepStatus.FAILED)
        if failed == 0:
            return RunOutcome.SUCCESS
        if failed == len(results):
            return RunOutcome.FAILED
        return RunOutcome.PARTIAL

    def to_dict(self) -> dict:
        data = {
            "schemaVersion": SCHEMA_VERSION,
            "runId": self.run_id,
            "command": self.command,
            "timestampUtc": self.timestamp_utc,
            "outcome": self.outcome.value,
            "dryRun": self.dry_run,
            "steps": [s.to_dict() for s in self.steps],
            "backupDir": self.backup_dir,
            "warnings": list(self.warnings),
        }
        if self.reverted_run_id:
            data["revertedRunId"] = self.reverted_run_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> RunRecord:
        return cls(
            run_id=data["runId"],
            command=data["command"],
            timestamp_utc=data["timestampUtc"],
            outcome=RunOutcome(data["outcome"]),
            steps=[StepResult.from_dict(s) for s in data.get("steps", [])],
            backup_dir=data.get("backupDir", ""),
            warnings=data.get("warnings", []),
            dry_run=data.get("dryRun", False),
            reverted_run_id=data.get("revertedRunId", ""),
        )
