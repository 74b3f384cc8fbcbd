"""Engine operations behind each CLI command.

Every ``*_command`` function returns an :class:`Envelope`. Engine errors are
turned into ``envelope.error`` instead of propagating, so callers always get
exactly one result document.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

from reprovision.capture import capture, discover
from reprovision.catalog import Catalog, load_catalog
from reprovision.config import EngineContext
from reprovision.drivers import InstallCapability, build_driver
from reprovision.envelope import EXIT_FAILURE, EXIT_PARTIAL, EXIT_SUCCESS, Envelope
from reprovision.errors import IOFailureError, ReprovisionError, RestoreNotEnabledError
from reprovision.executor import execute
from reprovision.fsutil import file_fingerprint
from reprovision.models import utc_now_iso
from reprovision.models.manifest import DesiredStateGraph
from reprovision.models.plan import Plan, RunOutcome, RunRecord
from reprovision.observe import observe
from reprovision.planner import plan as build_plan
from reprovision.resolver import resolve
from reprovision.revert import revert
from reprovision.state import StateStore
from reprovision.verifier import verify

logger = logging.getLogger(__name__)

_OUTCOME_EXIT = {
    RunOutcome.SUCCESS: EXIT_SUCCESS,
    RunOutcome.PARTIAL: EXIT_PARTIAL,
    RunOutcome.FAILED: EXIT_FAILURE,
}


@dataclass
class Session:
    """Everything one command invocation works against, loaded once."""

    context: EngineContext
    catalog: Catalog
    driver: InstallCapability
    store: StateStore

    @classmethod
    def open(cls, context: EngineContext, driver: InstallCapability | None = None) -> Session:
        return cls(
            context=context,
            catalog=load_catalog(context.catalog_dir),
            driver=driver or build_driver(context.driver),
            store=StateStore(context.state_dir),
        )

    @contextmanager
    def desired_state(
        self, profile_name: str, cwd: Path | None = None
    ) -> Iterator[tuple[dict, DesiredStateGraph]]:
        """Discover ``profile_name``, resolve it and yield (profile info, graph).

        The graph's sources stay readable until the block exits.
        """
        profile = discover(profile_name, self.context, cwd)
        with profile.open() as manifest_path:
            graph = resolve(manifest_path, self.catalog, self.context)
            yield profile.to_dict(), graph

    def observe_and_plan(self, graph: DesiredStateGraph) -> Plan:
        snapshot = observe(graph, self.driver, self.store)
        return build_plan(graph, snapshot)


def _run(command: str, operation: Callable[[], Envelope]) -> Envelope:
    try:
        return operation()
    except ReprovisionError as e:
        logger.error("%s failed: %s", command, e.message)
        return Envelope.failure(command, e)
    except OSError as e:
        logger.error("%s failed: %s", command, e, exc_info=True)
        detail = {"path": str(e.filename) if e.filename else "", "errno": e.errno}
        return Envelope.failure(command, IOFailureError(f"{command} failed: {e}", detail))


# --- Commands ---------------------------------------------------------------


def capture_command(
    context: EngineContext,
    destination: str | Path | None = None,
    *,
    module_ids: list[str] | None = None,
    include_sensitive_modules: bool = False,
    driver: InstallCapability | None = None,
) -> Envelope:
    def operation() -> Envelope:
        session = Session.open(context, driver)
        target = Path(destination) if destination else _default_artifact_path(context)
        result = capture(
            session.driver,
            session.catalog,
            context,
            target,
            module_ids=module_ids,
            include_sensitive_modules=include_sensitive_modules,
        )
        outcome = RunOutcome.PARTIAL if result.failed_modules else RunOutcome.SUCCESS
        record = RunRecord(
            run_id=uuid.uuid4().hex,
            command="capture",
            timestamp_utc=result.metadata.captured_at_utc,
            outcome=outcome,
            warnings=list(result.metadata.warnings),
        )
        session.store.write_run(record)
        return Envelope(
            command="capture",
            success=outcome == RunOutcome.SUCCESS,
            data=result.to_dict(),
            run_id=record.run_id,
            exit_code=_OUTCOME_EXIT[outcome],
        )

    return _run("capture", operation)


def plan_command(
    context: EngineContext,
    profile: str,
    *,
    driver: InstallCapability | None = None,
    cwd: Path | None = None,
) -> Envelope:
    def operation() -> Envelope:
        session = Session.open(context, driver)
        with session.desired_state(profile, cwd) as (info, graph):
            plan = session.observe_and_plan(graph)
        return Envelope(
            command="plan",
            success=True,
            data={"profile": info, "plan": plan.to_dict()},
        )

    return _run("plan", operation)


def apply_command(
    context: EngineContext,
    profile: str,
    *,
    dry_run: bool = False,
    driver: InstallCapability | None = None,
    cwd: Path | None = None,
) -> Envelope:
    return _run(
        "apply",
        lambda: _execute_profile("apply", context, profile, dry_run, driver, cwd, restores_only=False),
    )


def restore_command(
    context: EngineContext,
    profile: str,
    *,
    enable_restore: bool = False,
    dry_run: bool = False,
    driver: InstallCapability | None = None,
    cwd: Path | None = None,
) -> Envelope:
    def operation() -> Envelope:
        if not enable_restore:
            raise RestoreNotEnabledError(
                "Restore writes configuration files; pass --enable-restore to allow it"
            )
        return _execute_profile("restore", context, profile, dry_run, driver, cwd, restores_only=True)

    return _run("restore", operation)


def revert_command(context: EngineContext) -> Envelope:
    def operation() -> Envelope:
        store = StateStore(context.state_dir)
        record = revert(store)
        return Envelope(
            command="revert",
            success=record.outcome == RunOutcome.SUCCESS,
            data={"run": record.to_dict()},
            run_id=record.run_id,
            exit_code=_OUTCOME_EXIT[record.outcome],
        )

    return _run("revert", operation)


def verify_command(
    context: EngineContext,
    profile: str,
    *,
    driver: InstallCapability | None = None,
    cwd: Path | None = None,
) -> Envelope:
    def operation() -> Envelope:
        session = Session.open(context, driver)
        with session.desired_state(profile, cwd) as (info, graph):
            report = verify(graph, session.driver, context)
        return Envelope(
            command="verify",
            success=report.passed,
            data={"profile": info, "report": report.to_dict()},
            exit_code=EXIT_SUCCESS if report.passed else EXIT_PARTIAL,
        )

    return _run("verify", operation)


def state_command(context: EngineContext, *, limit: int = 10) -> Envelope:
    def operation() -> Envelope:
        store = StateStore(context.state_dir)
        stored = store.load()
        runs = list(reversed(store.list_runs()))
        data = {
            "stateDir": str(store.state_dir),
            "state": stored.to_dict(),
            "firstRun": stored.is_empty,
            "drift": _drift(stored.last_snapshot.files if stored.last_snapshot else {}),
            "runs": [_run_summary(r) for r in runs[: max(limit, 0)]],
            "totalRuns": len(runs),
        }
        return Envelope(command="state", success=True, data=data)

    return _run("state", operation)


# --- helpers ----------------------------------------------------------------


def _execute_profile(
    command: str,
    context: EngineContext,
    profile: str,
    dry_run: bool,
    driver: InstallCapability | None,
    cwd: Path | None,
    *,
    restores_only: bool,
) -> Envelope:
    session = Session.open(context, driver)
    with session.desired_state(profile, cwd) as (info, graph):
        plan = session.observe_and_plan(graph)
        if restores_only:
            plan = plan.only_restores()
        record = execute(plan, session.driver, session.store, dry_run=dry_run, command=command)
        if not dry_run:
            session.store.save_snapshot(observe(graph, session.driver, session.store), record.run_id)

    plan_data = plan.to_dict()
    if dry_run:
        for step, result in zip(plan_data["steps"], record.steps):
            step["wouldDo"] = result.message
    return Envelope(
        command=command,
        success=record.outcome == RunOutcome.SUCCESS,
        data={"profile": info, "dryRun": dry_run, "plan": plan_data, "run": record.to_dict()},
        run_id="" if dry_run else record.run_id,
        exit_code=_OUTCOME_EXIT[record.outcome],
    )


def _drift(recorded: dict[str, str | None]) -> list[dict]:
    """Tracked files whose content changed since the last snapshot."""
    drift = []
    for path, fingerprint in sorted(recorded.items()):
        current = file_fingerprint(Path(path))
        if current != fingerprint:
            drift.append({"path": path, "recorded": fingerprint, "current": current})
    return drift


def _run_summary(record: RunRecord) -> dict:
    return {
        "runId": record.run_id,
        "command": record.command,
        "timestampUtc": record.timestamp_utc,
        "outcome": record.outcome.value,
        "steps": len(record.steps),
        "failedSteps": len(record.failed_steps),
        "revertedRunId": record.reverted_run_id or None,
    }


def _default_artifact_path(context: EngineContext) -> Path:
    stamp = datetime.fromisoformat(utc_now_iso()).strftime("%Y%m%dT%H%M%SZ")
    return context.profiles_dir / f"{context.machine_id}-{stamp}.zip"
