"""Profile discovery: find what a name refers to.

For each search location (the working directory first, then the configured
profiles directory) the candidates are tried in a fixed order and the first
hit wins:

1. ``<name>.zip`` (or ``<name>`` itself when it ends in ``.zip``): a bundle
   artifact;
2. ``<name>/`` containing ``manifest.yaml|yml|json``: an unpacked artifact or
   a hand-written profile directory;
3. ``<name>.yaml|yml|json`` (or ``<name>`` itself when it ends in one of those
   suffixes): a bare manifest file.

A file is only recognised by its suffix, so an extensionless file named
``<name>`` is never a match.
"""

from __future__ import annotations

import logging
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator

from reprovision.capture.artifact import extract_artifact
from reprovision.config import EngineContext
from reprovision.errors import ProfileNotFoundError

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".zip"
MANIFEST_NAMES = ("manifest.yaml", "manifest.yml", "manifest.json")
MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


class ProfileKind(Enum):
    ARCHIVE = "archive"
    DIRECTORY = "directory"
    MANIFEST = "manifest"


@dataclass(frozen=True)
class Profile:
    name: str
    kind: ProfileKind
    path: Path

    @contextmanager
    def open(self) -> Iterator[Path]:
        """Yield a manifest path; archives are extracted to a temp dir for the duration."""
        if self.kind == ProfileKind.ARCHIVE:
            with tempfile.TemporaryDirectory(prefix="reprovision-") as tmp:
                yield extract_artifact(self.path, Path(tmp))
        elif self.kind == ProfileKind.DIRECTORY:
            yield _directory_manifest(self.path)
        else:
            yield self.path

    def to_dict(self) -> dict:
        return {"name": self.name, "kind": self.kind.value, "path": str(self.path)}


def discover(name: str, context: EngineContext, cwd: Path | None = None) -> Profile:
    tried: list[str] = []
    for base in _bases(name, context, cwd):
        for kind, candidate in _candidates(base):
            tried.append(str(candidate))
            if _accepts(kind, candidate):
                logger.debug("Profile %r resolved to %s (%s)", name, candidate, kind.value)
                return Profile(name=name, kind=kind, path=candidate)
    raise ProfileNotFoundError(
        f"No bundle artifact, profile directory or manifest named '{name}'",
        {"name": name, "tried": tried},
    )


def _bases(name: str, context: EngineContext, cwd: Path | None) -> list[Path]:
    path = Path(name).expanduser()
    if path.is_absolute():
        return [path]
    bases = [(cwd or Path.cwd()) / path]
    profiles_base = context.profiles_dir / path
    if profiles_base not in bases:
        bases.append(profiles_base)
    return bases


def _candidates(base: Path) -> list[tuple[ProfileKind, Path]]:
    candidates = []
    if base.suffix == ARCHIVE_SUFFIX:
        candidates.append((ProfileKind.ARCHIVE, base))
    else:
        candidates.append((ProfileKind.ARCHIVE, base.with_name(base.name + ARCHIVE_SUFFIX)))
    candidates.append((ProfileKind.DIRECTORY, base))
    if base.suffix in MANIFEST_SUFFIXES:
        candidates.append((ProfileKind.MANIFEST, base))
    candidates.extend(
        (ProfileKind.MANIFEST, base.with_name(base.name + s)) for s in MANIFEST_SUFFIXES
    )
    return candidates


def _accepts(kind: ProfileKind, candidate: Path) -> bool:
    if kind == ProfileKind.DIRECTORY:
        return candidate.is_dir() and _directory_manifest(candidate).is_file()
    return candidate.is_file()


def _directory_manifest(directory: Path) -> Path:
    for name in MANIFEST_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return directory / MANIFEST_NAMES[0]
