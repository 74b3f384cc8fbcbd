"""Filesystem helpers shared by the state store, executor and capture engine."""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def file_fingerprint(path: Path) -> str | None:
    """Return the sha256 of a regular file, or None when it does not exist."""
    if not path.is_file():
        return None
    return sha256_file(path)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` so readers see either the old or new file.

    The payload goes to a temp file in the same directory, is fsynced, then
    renamed over the destination.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=str(path.parent),
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            temp_path = Path(tmp.name)
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        if path.exists():
            os.chmod(temp_path, path.stat().st_mode & 0o7777)
        os.replace(temp_path, path)
        temp_path = None
    finally:
        if temp_path is not None and temp_path.exists():
            temp_path.unlink()


def atomic_write_json(path: Path, payload: Any) -> None:
    text = json.dumps(payload, indent=2, sort_keys=True) + "\n"
    atomic_write_bytes(path, text.encode("utf-8"))


def mangle_path(path: Path) -> str:
    """Flatten an absolute path into a relative one usable under a backup dir.

    ``/home/me/.gitconfig`` becomes ``home/me/.gitconfig``; on Windows the
    drive letter becomes a leading directory (``C/Users/...``).
    """
    parts = list(path.parts)
    if parts and parts[0] == path.anchor:
        drive = path.drive.rstrip(":")
        parts = ([drive] if drive else []) + parts[1:]
    return "/".join(parts)
