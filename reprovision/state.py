"""State store — last observed snapshot, run history and backup locations.

Storage layout::

    <state-dir>/state.json            last-known state (schemaVersion, snapshot)
    <state-dir>/runs/<runId>.json     one immutable record per run
    <state-dir>/backups/<stamp>-<id>/ backup entries created by that run

Every write goes to a temp file and is renamed into place, so a reader never
sees half a file. Reads fail closed: a missing or unreadable state file is
"no observed state yet", except a file written by a newer schema, which is
fatal.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from reprovision import SCHEMA_VERSION
from reprovision.errors import ReprovisionError, SchemaVersionMismatchError
from reprovision.fsutil import atomic_write_json
from reprovision.models import utc_now_iso
from reprovision.models.plan import RunRecord
from reprovision.models.state import Snapshot, StoredState
from reprovision.schema import validate_schema
from reprovision.schema.documents import RUN_RECORD_SCHEMA, STATE_SCHEMA

logger = logging.getLogger(__name__)


class StateStore:
    """File-backed state for one machine. Assumes a single writer at a time."""

    STATE_FILE = "state.json"
    RUNS_DIR = "runs"
    BACKUPS_DIR = "backups"

    def __init__(self, state_dir: str | Path):
        self.state_dir = Path(state_dir)
        self.state_path = self.state_dir / self.STATE_FILE
        self.runs_dir = self.state_dir / self.RUNS_DIR
        self.backups_root = self.state_dir / self.BACKUPS_DIR

    # -- last-known state -----------------------------------------------------

    def load(self) -> StoredState:
        data = self._read_json(self.state_path)
        if data is None:
            return StoredState(schema_version=SCHEMA_VERSION)

        _check_schema_version(data, self.state_path)
        issues = validate_schema(data, STATE_SCHEMA)
        if issues:
            logger.warning(
                "State file %s is malformed (%s); treating as first run",
                self.state_path,
                "; ".join(issues),
            )
            return StoredState(schema_version=SCHEMA_VERSION)

        snapshot = data.get("lastSnapshot")
        return StoredState(
            schema_version=data["schemaVersion"],
            updated_at_utc=data.get("updatedAtUtc", ""),
            last_run_id=data.get("lastRunId", ""),
            last_snapshot=Snapshot.from_dict(snapshot) if snapshot else None,
        )

    def save_snapshot(self, snapshot: Snapshot, run_id: str = "") -> StoredState:
        """Replace the last observed snapshot (and remember which run produced it)."""
        current = self.load()
        state = StoredState(
            schema_version=SCHEMA_VERSION,
            updated_at_utc=utc_now_iso(),
            last_run_id=run_id or current.last_run_id,
            last_snapshot=snapshot,
        )
        atomic_write_json(self.state_path, state.to_dict())
        logger.debug("Saved state snapshot to %s", self.state_path)
        return state

    # -- run history ------------------------------------------------------------

    def write_run(self, record: RunRecord) -> Path:
        """Persist a run record. Records are append-only: an existing id is an error."""
        path = self._run_path(record.run_id)
        if path.exists():
            raise ReprovisionError(
                f"Run record {record.run_id} already exists; run records are never rewritten",
                {"runId": record.run_id},
            )
        atomic_write_json(path, record.to_dict())
        logger.info("Recorded run %s (%s, %s)", record.run_id, record.command, record.outcome.value)
        return path

    def get_run(self, run_id: str) -> RunRecord | None:
        return self._load_run(self._run_path(run_id))

    def list_runs(self) -> list[RunRecord]:
        """All readable run records, oldest first."""
        if not self.runs_dir.is_dir():
            return []
        records = []
        for path in self.runs_dir.glob("*.json"):
            record = self._load_run(path)
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: (r.timestamp_utc, r.run_id))
        return records

    def latest_run(self) -> RunRecord | None:
        runs = self.list_runs()
        return runs[-1] if runs else None

    def new_backup_dir(self, run_id: str, timestamp_utc: str) -> Path:
        stamp = datetime.fromisoformat(timestamp_utc).strftime("%Y%m%dT%H%M%S%fZ")
        return self.backups_root / f"{stamp}-{run_id[:8]}"

    # -- helpers --------------------------------------------------------------

    def _run_path(self, run_id: str) -> Path:
        safe_id = run_id.replace("/", "_").replace("\\", "_")
        return self.runs_dir / f"{safe_id}.json"

    def _load_run(self, path: Path) -> RunRecord | None:
        data = self._read_json(path)
        if data is None:
            return None
        _check_schema_version(data, path)
        issues = validate_schema(data, RUN_RECORD_SCHEMA)
        if issues:
            logger.warning("Skipping malformed run record %s: %s", path, "; ".join(issues))
            return None
        try:
            return RunRecord.from_dict(data)
        except (KeyError, ValueError) as e:
            logger.warning("Skipping unreadable run record %s: %s", path, e)
            return None

    @staticmethod
    def _read_json(path: Path) -> dict | None:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Cannot read %s (%s); ignoring it", path, e)
            return None
        if not isinstance(data, dict):
            logger.warning("%s does not contain a JSON object; ignoring it", path)
            return None
        return data


def _check_schema_version(data: dict, path: Path) -> None:
    version = data.get("schemaVersion")
    if isinstance(version, int) and not isinstance(version, bool) and version > SCHEMA_VERSION:
        raise SchemaVersionMismatchError(
            f"{path} was written with schema version {version}; "
            f"this build supports up to {SCHEMA_VERSION}",
            {"path": str(path), "found": version, "supported": SCHEMA_VERSION},
        )
