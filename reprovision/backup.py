"""Backup entries: the pre-overwrite bytes of every file a run replaces.

Each run that overwrites something gets its own timestamp-named directory::

    backups/<stamp>-<run>/manifest.json
    backups/<stamp>-<run>/files/<flattened target path>

The run record references each entry by relative path and sha256; revert
checks that fingerprint before trusting the bytes.
"""

from __future__ import annotations

import logging
from pathlib import Path

from reprovision.errors import BackupCorruptError, BackupMissingError
from reprovision.fsutil import atomic_write_bytes, atomic_write_json, mangle_path, sha256_bytes
from reprovision.models import utc_now_iso
from reprovision.models.plan import BackupRef

logger = logging.getLogger(__name__)


class BackupSet:
    """The backup directory of a single run."""

    MANIFEST_FILE = "manifest.json"

    def __init__(self, directory: Path, run_id: str = ""):
        self.directory = Path(directory)
        self.run_id = run_id
        self._entries: list[dict] = []

    def save(self, target: Path, data: bytes) -> BackupRef:
        """Preserve ``data`` (the current bytes of ``target``) before it is overwritten."""
        relative = f"files/{mangle_path(target)}"
        generation = 0
        while (self.directory / relative).exists():
            # Same target overwritten again in this run; keep every generation.
            generation += 1
            relative = f"files/{mangle_path(target)}.{generation}"
        destination = self.directory / relative

        atomic_write_bytes(destination, data)
        ref = BackupRef(path=relative, sha256=sha256_bytes(data), size=len(data))
        self._entries.append({"target": str(target), **ref.to_dict()})
        self._write_manifest()
        logger.info("Backed up %s (%d bytes) to %s", target, len(data), destination)
        return ref

    def read(self, ref: BackupRef) -> bytes:
        """Return backed-up bytes after checking them against the recorded fingerprint."""
        path = self.directory / ref.path
        if not path.is_file():
            raise BackupMissingError(
                f"Backup entry {path} is missing", {"path": str(path)}
            )
        data = path.read_bytes()
        actual = sha256_bytes(data)
        if actual != ref.sha256:
            raise BackupCorruptError(
                f"Backup entry {path} does not match its recorded fingerprint",
                {"path": str(path), "expected": ref.sha256, "actual": actual},
            )
        return data

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def _write_manifest(self) -> None:
        atomic_write_json(
            self.directory / self.MANIFEST_FILE,
            {"runId": self.run_id, "updatedAtUtc": utc_now_iso(), "entries": self._entries},
        )
