"""Shared fixtures: an isolated home directory, paths context, state store and driver."""

from pathlib import Path

import pytest
import yaml

from reprovision.config import EngineConfig, EngineContext
from reprovision.drivers.memory import MemoryDriver
from reprovision.state import StateStore


@pytest.fixture
def home(tmp_path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path.resolve()


@pytest.fixture
def context(home) -> EngineContext:
    return EngineContext.create(home, EngineConfig(machine_id="test-box"))


@pytest.fixture
def store(context) -> StateStore:
    return StateStore(context.state_dir)


@pytest.fixture
def driver() -> MemoryDriver:
    return MemoryDriver()


@pytest.fixture
def write_yaml():
    def _write(path: Path, data) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_module(context, write_yaml):
    """Write ``<catalog>/modules/<id>/module.yaml`` plus optional payload files."""

    def _make(module_id: str, payload: dict | None = None, **fields) -> Path:
        module_dir = context.catalog_dir / "modules" / module_id
        write_yaml(module_dir / "module.yaml", {"id": module_id, **fields})
        for relative, content in (payload or {}).items():
            target = module_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return module_dir

    return _make
