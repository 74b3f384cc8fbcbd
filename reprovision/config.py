"""Engine configuration and the explicit paths context.

Nothing below the CLI reads the process environment. The CLI turns options
(and their ``envvar`` fallbacks) plus the optional config file into one
:class:`EngineContext`, which is passed to every engine component.
"""

from __future__ import annotations

import logging
import platform
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from reprovision.errors import ConfigError
from reprovision.schema import unknown_keys, validate_schema
from reprovision.schema.documents import CONFIG_SCHEMA

logger = logging.getLogger(__name__)

DEFAULT_ROOT_NAME = ".reprovision"

# Never captured, whatever a module's globs say.
DEFAULT_SENSITIVE_PATTERNS = (
    "id_rsa",
    "id_dsa",
    "id_ecdsa",
    "id_ed25519",
    "*.pem",
    "*.key",
    ".netrc",
    ".git-credentials",
)

_VARIABLE_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(frozen=True)
class DriverSettings:
    """How to reach the install capability."""

    kind: str = "command"  # command | memory
    preset: str = ""
    query: str = ""
    ensure: str = ""
    remove: str = ""
    timeout_seconds: int = 900
    packages: tuple[str, ...] = ()  # Seed set for the memory driver


@dataclass(frozen=True)
class EngineConfig:
    """Settings read from the optional YAML config file. Unset means default."""

    state_dir: str = ""
    catalog_dir: str = ""
    profiles_dir: str = ""
    machine_id: str = ""
    log_file: str = ""
    sensitive_patterns: tuple[str, ...] = ()
    variables: dict[str, str] = field(default_factory=dict)
    driver: DriverSettings = field(default_factory=DriverSettings)


def load_config(path: str | Path | None) -> EngineConfig:
    """Load the engine config file. A missing file yields the defaults."""
    if path is None:
        return EngineConfig()
    path = Path(path)
    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return EngineConfig()

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML: {e}") from e

    issues = validate_schema(data, CONFIG_SCHEMA)
    if issues:
        raise ConfigError(f"Config file {path} is invalid", {"issues": issues})
    for key in unknown_keys(data, CONFIG_SCHEMA):
        logger.debug("Ignoring unknown config key %r in %s", key, path)

    driver = data.get("driver", {})
    return EngineConfig(
        state_dir=data.get("stateDir", ""),
        catalog_dir=data.get("catalogDir", ""),
        profiles_dir=data.get("profilesDir", ""),
        machine_id=data.get("machineId", ""),
        log_file=data.get("logFile", ""),
        sensitive_patterns=tuple(data.get("sensitivePatterns", [])),
        variables={str(k): str(v) for k, v in data.get("variables", {}).items()},
        driver=DriverSettings(
            kind=driver.get("kind", "command"),
            preset=driver.get("preset", ""),
            query=driver.get("query", ""),
            ensure=driver.get("ensure", ""),
            remove=driver.get("remove", ""),
            timeout_seconds=driver.get("timeoutSeconds", 900),
            packages=tuple(driver.get("packages", [])),
        ),
    )


@dataclass(frozen=True)
class EngineContext:
    """Explicit environment threaded through resolver, capture, executor and verifier."""

    home: Path
    state_dir: Path
    catalog_dir: Path
    profiles_dir: Path
    machine_id: str = ""
    variables: dict[str, str] = field(default_factory=dict)
    sensitive_patterns: tuple[str, ...] = DEFAULT_SENSITIVE_PATTERNS
    driver: DriverSettings = field(default_factory=DriverSettings)
    log_file: Path | None = None

    @classmethod
    def create(
        cls,
        home: str | Path,
        config: EngineConfig | None = None,
        *,
        state_dir: str | Path | None = None,
        catalog_dir: str | Path | None = None,
        profiles_dir: str | Path | None = None,
    ) -> EngineContext:
        """Build a context for ``home``; explicit arguments beat the config file."""
        config = config or EngineConfig()
        home = Path(home).expanduser().resolve()
        root = home / DEFAULT_ROOT_NAME
        variables = {"HOME": str(home), **config.variables}

        def pick(explicit, configured: str, default: Path) -> Path:
            if explicit:
                return Path(explicit)
            if configured:
                return _expand_with(configured, home, variables)
            return default

        return cls(
            home=home,
            state_dir=pick(state_dir, config.state_dir, root / "state"),
            catalog_dir=pick(catalog_dir, config.catalog_dir, root / "catalog"),
            profiles_dir=pick(profiles_dir, config.profiles_dir, root / "profiles"),
            machine_id=config.machine_id or platform.node() or "unknown",
            variables=variables,
            sensitive_patterns=DEFAULT_SENSITIVE_PATTERNS + config.sensitive_patterns,
            driver=config.driver,
            log_file=_expand_with(config.log_file, home, variables) if config.log_file else None,
        )

    def expand(self, raw: str, base_dir: Path | None = None) -> Path:
        """Expand ``~`` and ``${NAME}`` in a path from a document.

        Relative results are anchored at ``base_dir`` (or the home directory).
        """
        return _expand_with(raw, self.home, self.variables, base_dir)

    def contract(self, path: Path) -> str:
        """Inverse of :meth:`expand` for display and capture: ``~/...`` under home."""
        try:
            rel = path.relative_to(self.home)
        except ValueError:
            return path.as_posix()
        return "~" if str(rel) == "." else f"~/{rel.as_posix()}"


def _expand_with(
    raw: str, home: Path, variables: dict[str, str], base_dir: Path | None = None
) -> Path:
    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name in variables:
            return variables[name]
        logger.warning("Unknown variable ${%s} in path %r left unexpanded", name, raw)
        return match.group(0)

    text = _VARIABLE_RE.sub(substitute, raw)
    if text == "~":
        return home
    if text.startswith("~/") or text.startswith("~\\"):
        return home / text[2:]
    path = Path(text)
    if not path.is_absolute():
        path = (base_dir or home) / path
    return path
