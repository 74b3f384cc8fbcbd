"""Catalog data models — modules, their capture/restore/verify surfaces, and
bundle groupings.

All catalog types are frozen: the catalog is loaded once per invocation and
handed to the resolver, capture engine and verifier as read-only input.
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Sensitivity(Enum):
    """How risky a module's captured payload is."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"  # Skipped by capture unless explicitly requested


class MergeStrategy(Enum):
    """How a restore operation combines its source with the existing target."""

    COPY = "copy"  # Overwrite
    MERGE_JSON = "merge-json"  # Deep merge, untouched keys preserved
    MERGE_INI = "merge-ini"  # Section/key merge, untouched keys preserved
    APPEND = "append"  # Add content only if not already present


class VerifyType(Enum):
    FILE_EXISTS = "file-exists"
    PACKAGE_PRESENT = "package-present"
    COMMAND = "command"


@dataclass(frozen=True)
class MatchSpec:
    """Predicates over observed package identifiers.

    Matching is case-insensitive: package managers disagree on casing
    (``Git.Git`` vs ``git.git``) for the same identifier.
    """

    ids: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()

    def matches(self, package_id: str) -> bool:
        candidate = package_id.lower()
        if any(candidate == i.lower() for i in self.ids):
            return True
        return any(fnmatch.fnmatchcase(candidate, p.lower()) for p in self.patterns)

    @property
    def is_empty(self) -> bool:
        return not self.ids and not self.patterns


@dataclass(frozen=True)
class CaptureSpec:
    """Which files a module captures.

    ``sensitive_files`` are never captured, even when a ``files`` glob
    matches them.
    """

    files: tuple[str, ...] = ()
    exclude_globs: tuple[str, ...] = ()
    sensitive_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class RestoreOp:
    """A single configuration action: put ``source`` onto ``target``."""

    type: MergeStrategy
    source: str
    target: str
    optional: bool = False
    module: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> RestoreOp:
        return cls(
            type=MergeStrategy(data["type"]),
            source=data["source"],
            target=data["target"],
            optional=data.get("optional", False),
            module=data.get("module", ""),
        )

    def to_dict(self) -> dict:
        data = {
            "type": self.type.value,
            "source": self.source,
            "target": self.target,
        }
        if self.optional:
            data["optional"] = True
        if self.module:
            data["module"] = self.module
        return data


@dataclass(frozen=True)
class VerifyOp:
    """A read-only post-apply check declared by a module."""

    type: VerifyType
    path: str = ""
    sha256: str = ""
    package_id: str = ""
    command: str = ""
    expected_exit_code: int = 0
    timeout_seconds: int = 30
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> VerifyOp:
        return cls(
            type=VerifyType(data["type"]),
            path=data.get("path", ""),
            sha256=data.get("sha256", ""),
            package_id=data.get("id", ""),
            command=data.get("command", ""),
            expected_exit_code=data.get("expectedExitCode", 0),
            timeout_seconds=data.get("timeoutSeconds", 30),
            description=data.get("description", ""),
        )

    def label(self) -> str:
        if self.description:
            return self.description
        if self.type == VerifyType.FILE_EXISTS:
            return f"file {self.path} exists"
        if self.type == VerifyType.PACKAGE_PRESENT:
            return f"package {self.package_id} present"
        return f"command `{self.command}` exits {self.expected_exit_code}"


@dataclass(frozen=True)
class Module:
    """One application's restorable surface."""

    id: str
    display_name: str = ""
    version: str = ""
    sensitivity: Sensitivity = Sensitivity.LOW
    matches: MatchSpec = field(default_factory=MatchSpec)
    capture: CaptureSpec = field(default_factory=CaptureSpec)
    restore: tuple[RestoreOp, ...] = ()
    verify: tuple[VerifyOp, ...] = ()
    base_dir: Path | None = None  # Directory restore sources are relative to

    @classmethod
    def from_dict(cls, data: dict, base_dir: Path | None = None) -> Module:
        matches = data.get("matches", {})
        capture = data.get("capture", {})
        return cls(
            id=data["id"],
            display_name=data.get("displayName", data["id"]),
            version=data.get("version", ""),
            sensitivity=Sensitivity(data.get("sensitivity", "low")),
            matches=MatchSpec(
                ids=tuple(matches.get("ids", [])),
                patterns=tuple(matches.get("patterns", [])),
            ),
            capture=CaptureSpec(
                files=tuple(capture.get("files", [])),
                exclude_globs=tuple(capture.get("excludeGlobs", [])),
                sensitive_files=tuple(capture.get("sensitiveFiles", [])),
            ),
            restore=tuple(RestoreOp.from_dict(op) for op in data.get("restore", [])),
            verify=tuple(VerifyOp.from_dict(op) for op in data.get("verify", [])),
            base_dir=base_dir,
        )

    def matches_package(self, package_id: str) -> bool:
        return self.matches.matches(package_id)


@dataclass(frozen=True)
class CatalogBundle:
    """A named, ordered grouping of module ids (not the capture artifact)."""

    id: str
    display_name: str = ""
    modules: tuple[str, ...] = ()
    bundles: tuple[str, ...] = ()  # Nested groupings, expanded first

    @classmethod
    def from_dict(cls, data: dict) -> CatalogBundle:
        return cls(
            id=data["id"],
            display_name=data.get("displayName", data["id"]),
            modules=tuple(data.get("modules", [])),
            bundles=tuple(data.get("bundles", [])),
        )
