"""Module catalog loading.

Layout of a catalog directory::

    <catalog>/modules/<module-id>/module.yaml   # plus any payload files
    <catalog>/bundles/<bundle-id>.yaml

The catalog is read once per invocation into an immutable :class:`Catalog`
that the resolver, capture engine and verifier share.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import yaml

from reprovision.errors import CatalogError, UnknownBundleError, UnknownModuleError
from reprovision.models.catalog import CatalogBundle, Module
from reprovision.schema import unknown_keys, validate_schema
from reprovision.schema.documents import BUNDLE_SCHEMA, MODULE_SCHEMA

logger = logging.getLogger(__name__)

MODULE_FILE_NAMES = ("module.yaml", "module.yml", "module.json")


@dataclass(frozen=True)
class Catalog:
    modules: Mapping[str, Module] = field(default_factory=lambda: MappingProxyType({}))
    bundles: Mapping[str, CatalogBundle] = field(default_factory=lambda: MappingProxyType({}))
    root: Path | None = None

    def module(self, module_id: str) -> Module:
        try:
            return self.modules[module_id]
        except KeyError:
            raise UnknownModuleError(
                f"Module '{module_id}' is not in the catalog", {"moduleId": module_id}
            ) from None

    def bundle(self, bundle_id: str) -> CatalogBundle:
        try:
            return self.bundles[bundle_id]
        except KeyError:
            raise UnknownBundleError(
                f"Bundle '{bundle_id}' is not in the catalog", {"bundleId": bundle_id}
            ) from None

    def sorted_modules(self) -> list[Module]:
        return [self.modules[k] for k in sorted(self.modules)]

    def modules_matching(self, package_id: str) -> list[Module]:
        return [m for m in self.sorted_modules() if m.matches_package(package_id)]


def build_catalog(
    modules: list[Module], bundles: list[CatalogBundle] | None = None, root: Path | None = None
) -> Catalog:
    """Assemble a catalog from already-parsed definitions, rejecting duplicate ids."""
    module_map: dict[str, Module] = {}
    for module in modules:
        if module.id in module_map:
            raise CatalogError(f"Duplicate module id '{module.id}'", {"moduleId": module.id})
        module_map[module.id] = module

    bundle_map: dict[str, CatalogBundle] = {}
    for bundle in bundles or []:
        if bundle.id in bundle_map:
            raise CatalogError(f"Duplicate bundle id '{bundle.id}'", {"bundleId": bundle.id})
        bundle_map[bundle.id] = bundle

    return Catalog(
        modules=MappingProxyType(module_map),
        bundles=MappingProxyType(bundle_map),
        root=root,
    )


def load_catalog(catalog_dir: str | Path) -> Catalog:
    """Load every module and bundle definition under ``catalog_dir``.

    A missing directory is an empty catalog. Any malformed definition fails
    the whole load with :class:`CatalogError`.
    """
    root = Path(catalog_dir)
    if not root.is_dir():
        logger.debug("Catalog directory %s does not exist; using an empty catalog", root)
        return build_catalog([], [], root)

    modules = []
    modules_dir = root / "modules"
    if modules_dir.is_dir():
        for module_dir in sorted(p for p in modules_dir.iterdir() if p.is_dir()):
            definition = _find_module_file(module_dir)
            if definition is None:
                logger.warning("Skipping %s: no module definition file", module_dir)
                continue
            modules.append(load_module(definition))

    bundles = []
    bundles_dir = root / "bundles"
    if bundles_dir.is_dir():
        for path in sorted(bundles_dir.iterdir()):
            if path.suffix in (".yaml", ".yml", ".json") and path.is_file():
                bundles.append(load_bundle(path))

    catalog = build_catalog(modules, bundles, root)
    logger.debug("Loaded catalog %s: %d modules, %d bundles", root, len(modules), len(bundles))
    return catalog


def load_module(path: Path) -> Module:
    data = _read_document(path)
    issues = validate_schema(data, MODULE_SCHEMA)
    if issues:
        raise CatalogError(f"Invalid module definition {path}", {"path": str(path), "issues": issues})
    _log_unknown(data, MODULE_SCHEMA, path)
    return Module.from_dict(data, base_dir=path.parent)


def load_bundle(path: Path) -> CatalogBundle:
    data = _read_document(path)
    issues = validate_schema(data, BUNDLE_SCHEMA)
    if issues:
        raise CatalogError(f"Invalid bundle definition {path}", {"path": str(path), "issues": issues})
    _log_unknown(data, BUNDLE_SCHEMA, path)
    return CatalogBundle.from_dict(data)


def _find_module_file(module_dir: Path) -> Path | None:
    for name in MODULE_FILE_NAMES:
        candidate = module_dir / name
        if candidate.is_file():
            return candidate
    return None


def _read_document(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise CatalogError(f"Cannot read {path}: {e}", {"path": str(path)}) from e
    if not isinstance(data, dict):
        raise CatalogError(f"{path} must contain a mapping", {"path": str(path)})
    return data


def _log_unknown(data: dict, schema: dict, path: Path) -> None:
    for key in unknown_keys(data, schema):
        logger.debug("Ignoring unknown key %r in %s", key, path)
