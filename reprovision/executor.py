"""Apply / restore executor.

Walks a plan strictly in order. Installs go to the install capability;
restores back up the existing target, run the merge strategy and write the
result atomically. A failing step is recorded and the run continues; the
outcome becomes ``partial`` (or ``failed`` if nothing succeeded). A failed
install does not gate restores that logically depend on it.

Dry-run performs every read and merge but writes nothing: no installs, no
file writes, no backups and no run record.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from reprovision.backup import BackupSet
from reprovision.drivers.base import InstallCapability
from reprovision.errors import InstallCapabilityError, MergeError
from reprovision.fsutil import atomic_write_bytes, sha256_bytes
from reprovision.merge import apply_strategy
from reprovision.models import utc_now_iso
from reprovision.models.plan import (
    InstallStep,
    Plan,
    RestoreStep,
    RunRecord,
    StepKind,
    StepResult,
    StepStatus,
)
from reprovision.state import StateStore

logger = logging.getLogger(__name__)


class Executor:
    def __init__(
        self,
        driver: InstallCapability,
        store: StateStore,
        *,
        dry_run: bool = False,
        command: str = "apply",
    ):
        self.driver = driver
        self.store = store
        self.dry_run = dry_run
        self.command = command

    def execute(self, plan: Plan) -> RunRecord:
        run_id = uuid.uuid4().hex
        timestamp = utc_now_iso()
        backups = BackupSet(self.store.new_backup_dir(run_id, timestamp), run_id)

        results: list[StepResult] = []
        for index, step in enumerate(plan.steps):
            if self.dry_run:
                result = self._preview(index, step)
            elif isinstance(step, InstallStep):
                result = self._install(index, step)
            else:
                result = self._restore(index, step, backups)
            if result.status == StepStatus.FAILED:
                logger.error("Step %d failed: %s (%s)", index, step.describe(), result.message)
            results.append(result)

        record = RunRecord(
            run_id=run_id,
            command=self.command,
            timestamp_utc=timestamp,
            outcome=RunRecord.outcome_for(results),
            steps=results,
            backup_dir="" if backups.is_empty else _relative(backups.directory, self.store.state_dir),
            warnings=list(plan.warnings),
            dry_run=self.dry_run,
        )
        if not self.dry_run:
            self.store.write_run(record)
        return record

    # -- steps ----------------------------------------------------------------

    def _install(self, index: int, step: InstallStep) -> StepResult:
        logger.info("Step %d: %s", index, step.describe())
        try:
            if step.kind == StepKind.REMOVE:
                outcome = self.driver.remove(step.package.id)
            else:
                outcome = self.driver.ensure(step.package.id)
        except InstallCapabilityError as e:
            return _failed(index, step, e.message)

        if not outcome.ok:
            return _failed(index, step, outcome.reason)
        return StepResult(
            index=index,
            kind=step.kind,
            subject=step.subject,
            status=StepStatus.SUCCEEDED,
            message=outcome.status.value,
        )

    def _restore(self, index: int, step: RestoreStep, backups: BackupSet) -> StepResult:
        logger.info("Step %d: %s", index, step.describe())
        target = step.target
        try:
            source = step.source.read_bytes()
        except OSError as e:
            return _failed(index, step, f"cannot read source: {e}")

        if target.exists() and not target.is_file():
            return _failed(index, step, "target exists and is not a regular file")

        try:
            current = target.read_bytes() if target.exists() else None
            desired = apply_strategy(step.strategy, source, current)
        except (OSError, MergeError) as e:
            return _failed(index, step, str(e))

        pre_hash = sha256_bytes(current) if current is not None else None
        post_hash = sha256_bytes(desired)
        if pre_hash == post_hash:
            return StepResult(
                index=index,
                kind=step.kind,
                subject=step.subject,
                status=StepStatus.SUCCEEDED,
                message="already up to date",
                pre_hash=pre_hash,
                post_hash=post_hash,
            )

        backup = None
        try:
            if current is not None and step.backup_required:
                backup = backups.save(target, current)
            atomic_write_bytes(target, desired)
        except OSError as e:
            return _failed(index, step, f"write failed: {e}", backup=backup, pre_hash=pre_hash)

        return StepResult(
            index=index,
            kind=step.kind,
            subject=step.subject,
            status=StepStatus.SUCCEEDED,
            message="created" if current is None else f"{step.strategy.value} applied",
            backup=backup,
            created=current is None,
            pre_hash=pre_hash,
            post_hash=post_hash,
        )

    def _preview(self, index: int, step: InstallStep | RestoreStep) -> StepResult:
        message = f"would {step.describe()}"
        if isinstance(step, RestoreStep):
            if step.target.is_file():
                message += " (existing file would be backed up)"
            else:
                message += " (new file)"
            if step.note:
                message += f"; {step.note}"
        return StepResult(
            index=index,
            kind=step.kind,
            subject=step.subject,
            status=StepStatus.PLANNED,
            message=message,
        )


def _failed(index: int, step: InstallStep | RestoreStep, message: str, **extra) -> StepResult:
    return StepResult(
        index=index,
        kind=step.kind,
        subject=step.subject,
        status=StepStatus.FAILED,
        message=message,
        **extra,
    )


def _relative(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def execute(
    plan: Plan,
    driver: InstallCapability,
    store: StateStore,
    *,
    dry_run: bool = False,
    command: str = "apply",
) -> RunRecord:
    return Executor(driver, store, dry_run=dry_run, command=command).execute(plan)
