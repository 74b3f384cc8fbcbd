"""Differ / planner — compare the desired-state graph with an observed snapshot
and emit the steps that would close the gap.

The planner only reads: it hashes targets and runs merge strategies in memory
to decide whether a restore would change anything. All install and removal
steps come before all restore steps; within each group, graph order holds.
"""

from __future__ import annotations

import logging
from pathlib import Path

from reprovision.errors import MergeError
from reprovision.fsutil import sha256_bytes
from reprovision.merge import apply_strategy
from reprovision.models.manifest import DesiredStateGraph, EnsureState, RestoreIntent
from reprovision.models.plan import InstallStep, Plan, RestoreStep, SkippedIntent
from reprovision.models.state import Snapshot

logger = logging.getLogger(__name__)


def plan(graph: DesiredStateGraph, snapshot: Snapshot) -> Plan:
    """Build the ordered plan that converges the machine on ``graph``.

    An empty ``plan.steps`` means the machine has already converged.
    """
    result = Plan(warnings=list(snapshot.warnings))

    for intent in graph.installs:
        package = intent.package
        installed = snapshot.has_package(package.id)
        if package.ensure == EnsureState.PRESENT and not installed:
            result.steps.append(InstallStep(package=package, provenance=intent.provenance))
        elif package.ensure == EnsureState.ABSENT and installed:
            result.steps.append(InstallStep(package=package, provenance=intent.provenance))
        else:
            reason = "already installed" if installed else "already absent"
            result.skipped.append(SkippedIntent(package.id, reason, intent.provenance))

    for intent in graph.restores:
        step, skip_reason = _plan_restore(intent, snapshot, result.warnings)
        if step is not None:
            result.steps.append(step)
        else:
            result.skipped.append(SkippedIntent(str(intent.target), skip_reason, intent.provenance))

    logger.info(
        "Plan: %d steps (%d install/remove, %d restore), %d already satisfied",
        len(result.steps),
        len(result.install_steps),
        len(result.restore_steps),
        len(result.skipped),
    )
    return result


def _plan_restore(
    intent: RestoreIntent, snapshot: Snapshot, warnings: list[str]
) -> tuple[RestoreStep | None, str]:
    def step(note: str = "") -> RestoreStep:
        return RestoreStep(
            source=intent.source,
            target=intent.target,
            strategy=intent.op.type,
            backup_required=True,
            provenance=intent.provenance,
            module_id=intent.module_id,
            note=note,
        )

    if not intent.source.is_file():
        if intent.op.optional:
            return None, "optional source missing"
        warnings.append(f"Restore source {intent.source} does not exist")
        return step("source missing"), ""

    recorded = snapshot.files.get(str(intent.target), "unknown")
    if recorded is None or not intent.target.exists():
        return step(), ""

    current = _read(intent.target)
    if current is None:
        warnings.append(f"Restore target {intent.target} is not a readable file")
        return step("target unreadable"), ""

    try:
        desired = apply_strategy(intent.op.type, intent.source.read_bytes(), current)
    except MergeError as e:
        warnings.append(f"{intent.target}: {e.message}")
        return step(f"merge will fail: {e.message}"), ""

    if sha256_bytes(desired) == sha256_bytes(current):
        return None, "content up to date"
    return step(), ""


def _read(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except OSError:
        return None
