"""Capture engine — snapshot the live machine into a bundle artifact.

1. Ask the install capability for every installed package.
2. Match catalog modules against those package ids.
3. Collect each included module's files in parallel. Excluded and sensitive
   files are dropped while collecting, so their bytes are never read.
4. Write the artifact: the package list always, plus whatever the modules
   managed to collect.

One module failing never aborts the capture; it is recorded as skipped with
a warning naming it.
"""

from __future__ import annotations

import fnmatch
import glob
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from reprovision.capture.artifact import (
    CONFIGS_PREFIX,
    ArtifactMetadata,
    checked_entry_name,
    entry_name,
    write_artifact,
)
from reprovision.catalog import Catalog
from reprovision.config import EngineContext
from reprovision.drivers.base import InstallCapability
from reprovision.fsutil import mangle_path, sha256_bytes
from reprovision.models import utc_now_iso
from reprovision.models.catalog import MergeStrategy, Module, Sensitivity
from reprovision.resolver import MANIFEST_VERSION

logger = logging.getLogger(__name__)

ROOT_PREFIX = "_root"


class ModuleCaptureStatus(Enum):
    CAPTURED = "captured"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class CapturedFile:
    module_id: str
    path: Path
    relative: str  # Path inside configs/<module-id>/
    target: str  # Where restore puts it back, ``~``-relative when under home
    strategy: MergeStrategy
    sha256: str
    size: int
    data: bytes = field(repr=False, default=b"")

    @property
    def archive_name(self) -> str:
        return f"{CONFIGS_PREFIX}{self.module_id}/{self.relative}"

    def to_dict(self) -> dict:
        return {"path": self.relative, "target": self.target, "sha256": self.sha256, "size": self.size}


@dataclass
class ModuleCaptureResult:
    module_id: str
    status: ModuleCaptureStatus
    files: list[CapturedFile] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)
    sensitive_excluded: list[str] = field(default_factory=list)
    reason: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "moduleId": self.module_id,
            "status": self.status.value,
            "files": [f.to_dict() for f in self.files],
            "excluded": list(self.excluded),
            "sensitiveExcluded": list(self.sensitive_excluded),
            "reason": self.reason,
            "error": self.error,
        }


@dataclass
class CaptureResult:
    artifact_path: Path
    metadata: ArtifactMetadata
    modules: list[ModuleCaptureResult]
    packages: list[str]

    @property
    def failed_modules(self) -> list[ModuleCaptureResult]:
        return [m for m in self.modules if m.status == ModuleCaptureStatus.FAILED]

    def to_dict(self) -> dict:
        return {
            "artifact": str(self.artifact_path),
            "packages": list(self.packages),
            "modules": [m.to_dict() for m in self.modules],
            "metadata": self.metadata.to_dict(),
        }


def capture(
    driver: InstallCapability,
    catalog: Catalog,
    context: EngineContext,
    destination: str | Path,
    *,
    module_ids: list[str] | None = None,
    include_sensitive_modules: bool = False,
    max_workers: int = 4,
) -> CaptureResult:
    packages = sorted(driver.query())
    logger.info("Capture: %d installed packages", len(packages))

    if module_ids:
        candidates = [catalog.module(m) for m in sorted(set(module_ids))]
    else:
        candidates = catalog.sorted_modules()

    results: list[ModuleCaptureResult] = []
    selected: list[Module] = []
    for module in candidates:
        if not any(module.matches_package(p) for p in packages):
            results.append(_skipped(module, "no matching package installed"))
        elif module.sensitivity == Sensitivity.HIGH and not include_sensitive_modules:
            logger.info("Skipping high-sensitivity module %s", module.id)
            results.append(_skipped(module, "sensitivity high; not requested"))
        else:
            selected.append(module)

    if selected:
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            results.extend(pool.map(lambda m: _capture_module(m, context), selected))
    # Completion order must not leak into the artifact.
    results.sort(key=lambda r: r.module_id)

    metadata = ArtifactMetadata(
        captured_at_utc=utc_now_iso(),
        source_machine_id=context.machine_id,
        package_count=len(packages),
    )
    payloads: dict[str, bytes] = {}
    restore_ops: list[dict] = []
    for result in results:
        if result.status == ModuleCaptureStatus.CAPTURED:
            metadata.modules_included.append(result.module_id)
            metadata.files[result.module_id] = [f.to_dict() for f in result.files]
            for captured in result.files:
                payloads[captured.archive_name] = captured.data
                restore_ops.append(
                    {
                        "type": captured.strategy.value,
                        "source": captured.archive_name,
                        "target": captured.target,
                        "module": captured.module_id,
                    }
                )
        elif result.status == ModuleCaptureStatus.FAILED:
            metadata.modules_skipped.append(
                {"id": result.module_id, "reason": f"capture failed: {result.error}"}
            )
            metadata.warnings.append(f"Module {result.module_id} capture failed: {result.error}")
        else:
            metadata.modules_skipped.append({"id": result.module_id, "reason": result.reason})
        for path in result.sensitive_excluded:
            metadata.warnings.append(f"Module {result.module_id}: sensitive file {path} not captured")

    manifest: dict = {
        "version": MANIFEST_VERSION,
        "name": f"capture-{context.machine_id}",
        "packages": packages,
    }
    if restore_ops:
        manifest["restore"] = restore_ops

    artifact_path = write_artifact(Path(destination), manifest, metadata, payloads)
    return CaptureResult(
        artifact_path=artifact_path, metadata=metadata, modules=results, packages=packages
    )


def _skipped(module: Module, reason: str) -> ModuleCaptureResult:
    return ModuleCaptureResult(module.id, ModuleCaptureStatus.SKIPPED, reason=reason)


def _capture_module(module: Module, context: EngineContext) -> ModuleCaptureResult:
    try:
        return _collect(module, context)
    except Exception as e:  # isolate one module's failure from the rest of the capture
        logger.warning("Capture of module %s failed: %s", module.id, e, exc_info=True)
        return ModuleCaptureResult(module.id, ModuleCaptureStatus.FAILED, error=str(e))


def _collect(module: Module, context: EngineContext) -> ModuleCaptureResult:
    result = ModuleCaptureResult(module.id, ModuleCaptureStatus.CAPTURED)
    sensitive = [context.expand(p).as_posix() for p in module.capture.sensitive_files]
    strategies = {
        context.expand(op.target).as_posix(): op.type for op in module.restore
    }

    seen: set[Path] = set()
    for pattern in module.capture.files:
        for path in _expand(context.expand(pattern)):
            if path in seen:
                continue
            seen.add(path)
            display = context.contract(path)
            if _is_excluded(path, display, module.capture.exclude_globs):
                result.excluded.append(display)
                continue
            if _is_sensitive(path, sensitive, context.sensitive_patterns):
                logger.warning("Module %s: refusing to capture sensitive file %s", module.id, display)
                result.sensitive_excluded.append(display)
                continue

            data = path.read_bytes()
            captured = CapturedFile(
                module_id=module.id,
                path=path,
                relative=_payload_path(path, context),
                target=display,
                strategy=strategies.get(path.as_posix(), MergeStrategy.COPY),
                sha256=sha256_bytes(data),
                size=len(data),
                data=data,
            )
            # Checked here so a bad name fails this module, not the artifact.
            checked_entry_name(captured.archive_name)
            result.files.append(captured)

    result.files.sort(key=lambda f: f.relative)
    logger.info("Module %s: captured %d files", module.id, len(result.files))
    return result


def _expand(pattern: Path) -> list[Path]:
    """Files matched by ``pattern``; matched directories contribute their files."""
    files: list[Path] = []
    for match in sorted(glob.glob(str(pattern), recursive=True)):
        path = Path(os.path.normpath(match))
        if path.is_dir():
            files.extend(sorted(p for p in path.rglob("*") if p.is_file()))
        elif path.is_file():
            files.append(path)
    return files


def _is_excluded(path: Path, display: str, exclude_globs: tuple[str, ...]) -> bool:
    candidates = (path.name, display, path.as_posix())
    return any(fnmatch.fnmatch(c, g) for g in exclude_globs for c in candidates)


def _is_sensitive(path: Path, module_entries: list[str], engine_patterns: tuple[str, ...]) -> bool:
    posix = path.as_posix()
    for entry in module_entries:
        if posix == entry or fnmatch.fnmatch(posix, entry) or posix.startswith(entry.rstrip("/") + "/"):
            return True
    return any(fnmatch.fnmatch(path.name, p) for p in engine_patterns)


def _payload_path(path: Path, context: EngineContext) -> str:
    try:
        relative = path.relative_to(context.home).as_posix()
    except ValueError:
        relative = f"{ROOT_PREFIX}/{mangle_path(path)}"
    return entry_name(relative)
