"""Observed-state models."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Snapshot:
    """Point-in-time record of installed packages and tracked file fingerprints.

    ``files`` maps a target path to its sha256, or to ``None`` when the file
    does not exist.
    """

    packages: set[str] = field(default_factory=set)
    files: dict[str, str | None] = field(default_factory=dict)
    taken_at_utc: str = ""
    warnings: list[str] = field(default_factory=list)

    def has_package(self, package_id: str) -> bool:
        wanted = package_id.lower()
        return any(p.lower() == wanted for p in self.packages)

    def to_dict(self) -> dict:
        return {
            "takenAtUtc": self.taken_at_utc,
            "packages": sorted(self.packages),
            "files": dict(sorted(self.files.items())),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Snapshot:
        return cls(
            packages=set(data.get("packages", [])),
            files=dict(data.get("files", {})),
            taken_at_utc=data.get("takenAtUtc", ""),
        )


@dataclass
class StoredState:
    """Contents of the state file; an empty instance means "first run"."""

    schema_version: int
    updated_at_utc: str = ""
    last_run_id: str = ""
    last_snapshot: Snapshot | None = None

    @property
    def is_empty(self) -> bool:
        return self.last_snapshot is None and not self.last_run_id

    def to_dict(self) -> dict:
        data: dict = {
            "schemaVersion": self.schema_version,
            "updatedAtUtc": self.updated_at_utc,
            "lastRunId": self.last_run_id,
        }
        if self.last_snapshot is not None:
            data["lastSnapshot"] = self.last_snapshot.to_dict()
        return data
