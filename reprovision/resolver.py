"""Manifest resolution — turn a manifest (and everything it pulls in) into a
canonical, ordered desired-state graph.

Resolution order is significant:

1. ``includes`` are merged first, depth-first in declaration order, so an
   including manifest's own entries come after what it includes.
2. Restore intents come from bundle-expanded modules, then manifest-declared
   modules, then inline ``restore`` operations.
3. Later entries win for the same package or target: the surviving intent
   keeps the position of the first declaration and the content of the last.

Resolution has no side effects; it only reads manifest and catalog files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from reprovision.catalog import Catalog
from reprovision.config import EngineContext
from reprovision.errors import CircularIncludeError, ManifestParseError
from reprovision.models.catalog import MergeStrategy, Module, RestoreOp
from reprovision.models.manifest import (
    DesiredStateGraph,
    InstallIntent,
    Manifest,
    PackageRef,
    RestoreIntent,
    VerifyIntent,
)
from reprovision.schema import unknown_keys, validate_schema
from reprovision.schema.documents import MANIFEST_SCHEMA

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1


# --- Loading ---


def load_manifest(path: str | Path) -> Manifest:
    """Read and validate a manifest file. Includes are not followed here."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ManifestParseError(f"Cannot read manifest {path}: {e}", {"path": str(path)}) from e
    except yaml.YAMLError as e:
        raise ManifestParseError(f"Manifest {path} is not valid YAML/JSON: {e}", {"path": str(path)}) from e
    return parse_manifest(data, path=path.resolve())


def parse_manifest(data: object, path: Path | None = None) -> Manifest:
    """Validate a parsed manifest document and build a :class:`Manifest`."""
    where = str(path) if path else "<inline>"
    if not isinstance(data, dict):
        raise ManifestParseError(f"Manifest {where} must be a mapping", {"path": where})

    issues = validate_schema(data, MANIFEST_SCHEMA)
    if issues:
        raise ManifestParseError(f"Manifest {where} is invalid", {"path": where, "issues": issues})
    if data["version"] > MANIFEST_VERSION:
        raise ManifestParseError(
            f"Manifest {where} uses format version {data['version']}; "
            f"this build supports up to {MANIFEST_VERSION}",
            {"path": where, "version": data["version"]},
        )
    for key in unknown_keys(data, MANIFEST_SCHEMA):
        logger.debug("Ignoring unknown manifest key %r in %s", key, where)

    return Manifest(
        version=data["version"],
        name=data.get("name", ""),
        path=path,
        includes=list(data.get("includes", [])),
        packages=[PackageRef.from_value(v) for v in data.get("packages", [])],
        bundles=list(data.get("bundles", [])),
        modules=list(data.get("modules", [])),
        restore=[RestoreOp.from_dict(op) for op in data.get("restore", [])],
    )


# --- Resolution ---


@dataclass(frozen=True)
class _ModuleUse:
    module: Module
    provenance: str


class Resolver:
    """Resolves manifests against one catalog and one paths context."""

    def __init__(self, catalog: Catalog, context: EngineContext):
        self.catalog = catalog
        self.context = context

    def resolve(self, manifest: Manifest | str | Path) -> DesiredStateGraph:
        if not isinstance(manifest, Manifest):
            manifest = load_manifest(manifest)

        chain = self._flatten(manifest)
        graph = DesiredStateGraph(manifests=[m.label for m in chain])

        graph.installs = self._install_intents(chain)

        uses = self._module_uses(chain)
        graph.modules = [u.module.id for u in uses]
        graph.restores = self._restore_intents(chain, uses)
        graph.verifies = [
            VerifyIntent(op=op, module_id=u.module.id, provenance=u.provenance)
            for u in uses
            for op in u.module.verify
        ]

        logger.info(
            "Resolved %s: %d install intents, %d restore intents, %d modules",
            manifest.label,
            len(graph.installs),
            len(graph.restores),
            len(graph.modules),
        )
        return graph

    # -- includes -----------------------------------------------------------

    def _flatten(self, root: Manifest) -> list[Manifest]:
        ordered: list[Manifest] = []
        seen: set[str] = set()
        self._visit(root, [], ordered, seen)
        return ordered

    def _visit(
        self, manifest: Manifest, stack: list[str], ordered: list[Manifest], seen: set[str]
    ) -> None:
        key = manifest.label
        if key in stack:
            cycle = stack[stack.index(key):] + [key]
            raise CircularIncludeError(
                "Circular manifest include: " + " -> ".join(cycle), {"cycle": cycle}
            )
        if key in seen:
            logger.debug("Manifest %s already included; skipping repeat", key)
            return

        stack.append(key)
        for include in manifest.includes:
            target = self.context.expand(include, base_dir=manifest.base_dir).resolve()
            self._visit(load_manifest(target), stack, ordered, seen)
        stack.pop()

        seen.add(key)
        ordered.append(manifest)

    # -- packages -----------------------------------------------------------

    def _install_intents(self, chain: list[Manifest]) -> list[InstallIntent]:
        intents: dict[str, InstallIntent] = {}
        for manifest in chain:
            for package in manifest.packages:
                intent = InstallIntent(package=package, provenance=f"manifest:{manifest.label}")
                if package.key in intents:
                    logger.debug(
                        "Package %s declared again in %s; later declaration wins",
                        package.id,
                        manifest.label,
                    )
                # dict keeps the first insertion position on reassignment
                intents[package.key] = intent
        return list(intents.values())

    # -- modules ------------------------------------------------------------

    def _module_uses(self, chain: list[Manifest]) -> list[_ModuleUse]:
        uses: list[_ModuleUse] = []
        seen: set[str] = set()

        def add(module_id: str, provenance: str) -> None:
            module = self.catalog.module(module_id)
            if module.id in seen:
                return
            seen.add(module.id)
            uses.append(_ModuleUse(module, provenance))

        for manifest in chain:
            for bundle_id in manifest.bundles:
                for module_id, provenance in self._expand_bundle(bundle_id, []):
                    add(module_id, f"manifest:{manifest.label} > {provenance}")

        for manifest in chain:
            for module_id in manifest.modules:
                add(module_id, f"manifest:{manifest.label} > module:{module_id}")

        return uses

    def _expand_bundle(self, bundle_id: str, stack: list[str]) -> list[tuple[str, str]]:
        if bundle_id in stack:
            cycle = stack[stack.index(bundle_id):] + [bundle_id]
            raise CircularIncludeError(
                "Circular bundle reference: " + " -> ".join(cycle), {"cycle": cycle}
            )
        bundle = self.catalog.bundle(bundle_id)
        expanded: list[tuple[str, str]] = []
        stack.append(bundle_id)
        for nested in bundle.bundles:
            for module_id, provenance in self._expand_bundle(nested, stack):
                expanded.append((module_id, f"bundle:{bundle_id} > {provenance}"))
        stack.pop()
        for module_id in bundle.modules:
            expanded.append((module_id, f"bundle:{bundle_id} > module:{module_id}"))
        return expanded

    # -- restores -----------------------------------------------------------

    def _restore_intents(self, chain: list[Manifest], uses: list[_ModuleUse]) -> list[RestoreIntent]:
        intents: dict[tuple[str, str], RestoreIntent] = {}

        def add(intent: RestoreIntent) -> None:
            key = _restore_key(intent)
            if key in intents:
                logger.debug(
                    "Restore target %s overridden by %s", intent.target, intent.provenance
                )
            intents[key] = intent

        for use in uses:
            for op in use.module.restore:
                add(
                    RestoreIntent(
                        op=op,
                        source=self.context.expand(op.source, base_dir=use.module.base_dir),
                        target=self.context.expand(op.target),
                        provenance=use.provenance,
                        module_id=use.module.id,
                    )
                )

        for manifest in chain:
            for op in manifest.restore:
                provenance = f"manifest:{manifest.label} > inline"
                if op.module:
                    provenance += f" (module:{op.module})"
                add(
                    RestoreIntent(
                        op=op,
                        source=self.context.expand(op.source, base_dir=manifest.base_dir),
                        target=self.context.expand(op.target),
                        provenance=provenance,
                        module_id=op.module,
                    )
                )

        return list(intents.values())


def _restore_key(intent: RestoreIntent) -> tuple[str, str]:
    # Several appends to one file are independent; everything else replaces.
    if intent.op.type == MergeStrategy.APPEND:
        return (str(intent.target), str(intent.source))
    return (str(intent.target), "")


def resolve(
    manifest: Manifest | str | Path, catalog: Catalog, context: EngineContext
) -> DesiredStateGraph:
    """Convenience wrapper around :class:`Resolver`."""
    return Resolver(catalog, context).resolve(manifest)
