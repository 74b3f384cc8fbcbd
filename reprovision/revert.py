"""Revert — put back the files the most recent apply/restore run changed.

Only one generation is supported: if the latest mutating run has already
been reverted successfully there is nothing further back to go, while a
failed revert can be retried. Every backup entry is checked against its
recorded sha256 before any file is touched, so a corrupt backup aborts the
revert with the machine unchanged.

Package installs and removals are not undone.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from reprovision.backup import BackupSet
from reprovision.errors import BackupMissingError
from reprovision.fsutil import atomic_write_bytes, sha256_bytes
from reprovision.models import utc_now_iso
from reprovision.models.plan import RunOutcome, RunRecord, StepKind, StepResult, StepStatus
from reprovision.state import StateStore

logger = logging.getLogger(__name__)

REVERTIBLE_COMMANDS = ("apply", "restore")


def revert(store: StateStore) -> RunRecord:
    target_run = _revert_target(store)
    backups = BackupSet(_backup_dir(store, target_run), target_run.run_id)

    changed = [
        s
        for s in target_run.steps
        if s.kind == StepKind.RESTORE
        and s.status == StepStatus.SUCCEEDED
        and (s.backup is not None or s.created)
    ]

    # Validate everything up front; nothing is written if any entry is bad.
    originals: dict[int, bytes] = {}
    for step in changed:
        if step.backup is not None:
            originals[step.index] = backups.read(step.backup)

    warnings = []
    package_steps = [
        s
        for s in target_run.steps
        if s.kind in (StepKind.INSTALL, StepKind.REMOVE) and s.status == StepStatus.SUCCEEDED
    ]
    if package_steps:
        warnings.append("Package changes from the reverted run are not undone")
    if not changed:
        warnings.append(f"Run {target_run.run_id} changed no files; nothing to revert")

    results: list[StepResult] = []
    for position, step in enumerate(reversed(changed)):
        target = Path(step.subject)
        try:
            if step.index in originals:
                atomic_write_bytes(target, originals[step.index])
                message = "restored from backup"
                post_hash = sha256_bytes(originals[step.index])
            else:
                if target.exists():
                    target.unlink()
                message = "removed file created by the run"
                post_hash = None
        except OSError as e:
            logger.error("Revert of %s failed: %s", target, e)
            results.append(
                StepResult(
                    index=position,
                    kind=StepKind.REVERT,
                    subject=step.subject,
                    status=StepStatus.FAILED,
                    message=str(e),
                )
            )
            continue
        logger.info("Reverted %s (%s)", target, message)
        results.append(
            StepResult(
                index=position,
                kind=StepKind.REVERT,
                subject=step.subject,
                status=StepStatus.SUCCEEDED,
                message=message,
                pre_hash=step.post_hash,
                post_hash=post_hash,
            )
        )

    record = RunRecord(
        run_id=uuid.uuid4().hex,
        command="revert",
        timestamp_utc=utc_now_iso(),
        outcome=RunRecord.outcome_for(results),
        steps=results,
        backup_dir=target_run.backup_dir,
        warnings=warnings,
        reverted_run_id=target_run.run_id,
    )
    store.write_run(record)
    return record


def _revert_target(store: StateStore) -> RunRecord:
    """The latest apply/restore run, provided no successful revert has been
    recorded since. A failed or partial revert leaves that run revertible."""
    for record in reversed(store.list_runs()):
        if record.dry_run:
            continue
        if record.command == "revert":
            if record.outcome != RunOutcome.SUCCESS:
                logger.info("Revert %s ended %s; it may be retried", record.run_id, record.outcome.value)
                continue
            raise BackupMissingError(
                f"Run {record.reverted_run_id} was already reverted; "
                "only the most recent run can be rolled back",
                {"revertRunId": record.run_id, "revertedRunId": record.reverted_run_id},
            )
        if record.command in REVERTIBLE_COMMANDS:
            return record
    raise BackupMissingError("No apply or restore run has been recorded; nothing to revert")


def _backup_dir(store: StateStore, record: RunRecord) -> Path:
    path = Path(record.backup_dir)
    return path if path.is_absolute() else store.state_dir / path
