"""Desired-state models — the manifest as written, and the flattened graph the
resolver produces from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from reprovision.models.catalog import RestoreOp, VerifyOp


class EnsureState(Enum):
    PRESENT = "present"
    ABSENT = "absent"


@dataclass(frozen=True)
class PackageRef:
    """An opaque package identifier plus the metadata a manifest attached to it."""

    id: str
    ensure: EnsureState = EnsureState.PRESENT
    display_name: str = ""
    source: str = ""
    version: str = ""

    @classmethod
    def from_value(cls, value: str | dict) -> PackageRef:
        if isinstance(value, str):
            return cls(id=value)
        return cls(
            id=value["id"],
            ensure=EnsureState(value.get("ensure", "present")),
            display_name=value.get("displayName", ""),
            source=value.get("source", ""),
            version=value.get("version", ""),
        )

    def to_value(self) -> str | dict:
        if (
            self.ensure == EnsureState.PRESENT
            and not self.display_name
            and not self.source
            and not self.version
        ):
            return self.id
        data: dict = {"id": self.id}
        if self.ensure != EnsureState.PRESENT:
            data["ensure"] = self.ensure.value
        if self.display_name:
            data["displayName"] = self.display_name
        if self.source:
            data["source"] = self.source
        if self.version:
            data["version"] = self.version
        return data

    @property
    def key(self) -> str:
        """Identity used for de-duplication."""
        return self.id.lower()


@dataclass
class Manifest:
    """A desired-state document as loaded from disk (includes not yet merged)."""

    version: int
    name: str = ""
    path: Path | None = None
    includes: list[str] = field(default_factory=list)
    packages: list[PackageRef] = field(default_factory=list)
    bundles: list[str] = field(default_factory=list)
    modules: list[str] = field(default_factory=list)
    restore: list[RestoreOp] = field(default_factory=list)

    @property
    def base_dir(self) -> Path:
        return self.path.parent if self.path else Path.cwd()

    @property
    def label(self) -> str:
        return str(self.path) if self.path else (self.name or "<inline>")

    def to_dict(self) -> dict:
        data: dict = {"version": self.version}
        if self.name:
            data["name"] = self.name
        if self.includes:
            data["includes"] = list(self.includes)
        data["packages"] = [p.to_value() for p in self.packages]
        if self.bundles:
            data["bundles"] = list(self.bundles)
        if self.modules:
            data["modules"] = list(self.modules)
        if self.restore:
            data["restore"] = [op.to_dict() for op in self.restore]
        return data


# --- Desired-state graph ---


@dataclass(frozen=True)
class InstallIntent:
    package: PackageRef
    provenance: str


@dataclass(frozen=True)
class RestoreIntent:
    """A config restore with its source and target already resolved to paths."""

    op: RestoreOp
    source: Path
    target: Path
    provenance: str
    module_id: str = ""

    @property
    def key(self) -> str:
        return str(self.target)


@dataclass(frozen=True)
class VerifyIntent:
    op: VerifyOp
    module_id: str
    provenance: str


@dataclass
class DesiredStateGraph:
    """Resolver output: flattened, ordered and de-duplicated intents."""

    installs: list[InstallIntent] = field(default_factory=list)
    restores: list[RestoreIntent] = field(default_factory=list)
    verifies: list[VerifyIntent] = field(default_factory=list)
    modules: list[str] = field(default_factory=list)
    manifests: list[str] = field(default_factory=list)  # Every file loaded, in order

    @property
    def is_empty(self) -> bool:
        return not self.installs and not self.restores

    def to_dict(self) -> dict:
        return {
            "installs": [
                {
                    "package": i.package.to_value(),
                    "provenance": i.provenance,
                }
                for i in self.installs
            ],
            "restores": [
                {
                    "type": r.op.type.value,
                    "source": str(r.source),
                    "target": str(r.target),
                    "provenance": r.provenance,
                }
                for r in self.restores
            ],
            "modules": list(self.modules),
            "manifests": list(self.manifests),
        }
