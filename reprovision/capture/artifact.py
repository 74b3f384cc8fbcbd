"""Bundle artifact: the portable zip a capture produces.

Layout::

    manifest.yaml                      desired-state document (always present)
    metadata.json                      capture decisions, warnings, file index
    configs/<module-id>/<relpath>      captured payload (zero or more)

Entries are written sorted with a fixed 1980-01-01 timestamp so identical
inputs give byte-identical archives. The archive is built next to its
destination under a temporary name and renamed into place, so a half-written
artifact is never visible under the final name.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from urllib.parse import quote

import yaml

from reprovision import SCHEMA_VERSION, __version__
from reprovision.errors import ArtifactError, SchemaVersionMismatchError
from reprovision.schema import validate_schema
from reprovision.schema.documents import METADATA_SCHEMA

logger = logging.getLogger(__name__)

MANIFEST_ENTRY = "manifest.yaml"
METADATA_ENTRY = "metadata.json"
CONFIGS_PREFIX = "configs/"

_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
_FILE_MODE = 0o644


@dataclass
class ArtifactMetadata:
    captured_at_utc: str
    source_machine_id: str
    schema_version: int = SCHEMA_VERSION
    tool_version: str = __version__
    modules_included: list[str] = field(default_factory=list)
    modules_skipped: list[dict] = field(default_factory=list)  # {id, reason}
    warnings: list[str] = field(default_factory=list)
    files: dict[str, list[dict]] = field(default_factory=dict)  # module id -> file entries
    package_count: int = 0

    def to_dict(self) -> dict:
        return {
            "schemaVersion": self.schema_version,
            "toolVersion": self.tool_version,
            "capturedAtUtc": self.captured_at_utc,
            "sourceMachineId": self.source_machine_id,
            "modulesIncluded": list(self.modules_included),
            "modulesSkipped": list(self.modules_skipped),
            "warnings": list(self.warnings),
            "files": {k: list(v) for k, v in sorted(self.files.items())},
            "packageCount": self.package_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ArtifactMetadata:
        return cls(
            captured_at_utc=data.get("capturedAtUtc", ""),
            source_machine_id=data.get("sourceMachineId", ""),
            schema_version=data.get("schemaVersion", SCHEMA_VERSION),
            tool_version=data.get("toolVersion", ""),
            modules_included=list(data.get("modulesIncluded", [])),
            modules_skipped=list(data.get("modulesSkipped", [])),
            warnings=list(data.get("warnings", [])),
            files=dict(data.get("files", {})),
            package_count=data.get("packageCount", 0),
        )


def write_artifact(
    destination: Path,
    manifest: dict,
    metadata: ArtifactMetadata,
    payloads: dict[str, bytes] | None = None,
) -> Path:
    """Write the artifact atomically. ``payloads`` maps archive names under
    ``configs/`` to file bytes."""
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    entries: dict[str, bytes] = {
        MANIFEST_ENTRY: yaml.safe_dump(manifest, sort_keys=False).encode("utf-8"),
        METADATA_ENTRY: (json.dumps(metadata.to_dict(), indent=2, sort_keys=True) + "\n").encode("utf-8"),
    }
    for name, data in (payloads or {}).items():
        entries[checked_entry_name(name)] = data

    fd, temp_name = tempfile.mkstemp(
        dir=str(destination.parent), prefix=f".{destination.name}.", suffix=".tmp"
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            with zipfile.ZipFile(handle, "w") as zf:
                for name in sorted(entries):
                    info = zipfile.ZipInfo(name, date_time=_ZIP_EPOCH)
                    info.compress_type = zipfile.ZIP_DEFLATED
                    info.external_attr = (_FILE_MODE & 0xFFFF) << 16
                    zf.writestr(info, entries[name])
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, destination)
    finally:
        if temp_path.exists():
            temp_path.unlink()

    logger.info("Wrote bundle artifact %s (%d entries)", destination, len(entries))
    return destination


@dataclass
class ArtifactContents:
    manifest: dict
    metadata: ArtifactMetadata
    names: list[str]

    @property
    def config_names(self) -> list[str]:
        return [n for n in self.names if n.startswith(CONFIGS_PREFIX)]

    @property
    def install_only(self) -> bool:
        return not self.config_names


def read_artifact(path: Path) -> ArtifactContents:
    """Read and check an artifact's manifest and metadata without extracting it."""
    with _open_zip(path) as zf:
        names = sorted(zf.namelist())
        for name in names:
            checked_entry_name(name, path)
        if MANIFEST_ENTRY not in names:
            raise ArtifactError(f"{path} has no {MANIFEST_ENTRY}", {"path": str(path)})
        try:
            manifest = yaml.safe_load(zf.read(MANIFEST_ENTRY)) or {}
            metadata_raw = json.loads(zf.read(METADATA_ENTRY)) if METADATA_ENTRY in names else {}
        except (yaml.YAMLError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ArtifactError(f"{path} has an unreadable document: {e}", {"path": str(path)}) from e

    if not isinstance(manifest, dict) or not isinstance(metadata_raw, dict):
        raise ArtifactError(f"{path} documents must be mappings", {"path": str(path)})
    if metadata_raw:
        issues = validate_schema(metadata_raw, METADATA_SCHEMA)
        if issues:
            raise ArtifactError(
                f"{path} has invalid {METADATA_ENTRY}", {"path": str(path), "issues": issues}
            )
    metadata = ArtifactMetadata.from_dict(metadata_raw)
    if metadata.schema_version > SCHEMA_VERSION:
        raise SchemaVersionMismatchError(
            f"{path} was captured with schema version {metadata.schema_version}; "
            f"this build supports up to {SCHEMA_VERSION}",
            {"path": str(path), "found": metadata.schema_version, "supported": SCHEMA_VERSION},
        )
    return ArtifactContents(manifest=manifest, metadata=metadata, names=names)


def extract_artifact(path: Path, destination: Path) -> Path:
    """Unpack an artifact into ``destination`` and return the manifest path."""
    read_artifact(path)
    with _open_zip(path) as zf:
        for name in sorted(zf.namelist()):
            target = destination.joinpath(*PurePosixPath(name).parts)
            if name.endswith("/"):
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(zf.read(name))
    logger.debug("Extracted %s into %s", path, destination)
    return destination / MANIFEST_ENTRY


def _open_zip(path: Path) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(path)
    except (OSError, zipfile.BadZipFile) as e:
        raise ArtifactError(f"{path} is not a readable bundle artifact: {e}", {"path": str(path)}) from e


def entry_name(relative: str) -> str:
    """Percent-encode a captured file's relative path for use as an entry name.

    ``:`` and ``\\`` are legal in POSIX filenames but are refused when an
    artifact is read, so they are escaped along with anything else outside the
    unreserved set. The restore op keeps the real target path.
    """
    return quote(relative, safe="/")


def checked_entry_name(name: str, source: Path | None = None) -> str:
    """Reject archive names that would escape the extraction directory."""
    pure = PurePosixPath(name)
    if pure.is_absolute() or ".." in pure.parts or "\\" in name or ":" in name:
        raise ArtifactError(
            f"Unsafe archive entry name {name!r}",
            {"entry": name, "path": str(source) if source else ""},
        )
    return name
