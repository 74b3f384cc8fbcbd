"""Install capability backed by a package manager's command line.

Each operation is a command template; ``{id}`` is replaced with the package
identifier. Templates are split into argv with :mod:`shlex` and run without a
shell, so identifiers are never interpreted by one.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time

from reprovision.config import DriverSettings
from reprovision.drivers.base import EnsureResult, EnsureStatus
from reprovision.errors import ConfigError, InstallCapabilityError

logger = logging.getLogger(__name__)

PRESETS: dict[str, dict[str, str]] = {
    "apt": {
        "query": "dpkg-query -W -f='${binary:Package}\\n'",
        "ensure": "apt-get install -y {id}",
        "remove": "apt-get remove -y {id}",
    },
    "dnf": {
        "query": "rpm -qa --qf '%{NAME}\\n'",
        "ensure": "dnf install -y {id}",
        "remove": "dnf remove -y {id}",
    },
    "brew": {
        "query": "brew list -1",
        "ensure": "brew install {id}",
        "remove": "brew uninstall {id}",
    },
    "pacman": {
        "query": "pacman -Qq",
        "ensure": "pacman -S --noconfirm --needed {id}",
        "remove": "pacman -R --noconfirm {id}",
    },
}

_OUTPUT_LIMIT = 2000


class CommandDriver:
    """Runs package-manager commands; timeouts are enforced here, not by the engine."""

    name = "command"

    def __init__(self, query: str, ensure: str, remove: str = "", timeout_seconds: int = 900):
        if not query or not ensure:
            raise ConfigError("Command driver needs at least 'query' and 'ensure' templates")
        self.query_template = query
        self.ensure_template = ensure
        self.remove_template = remove
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: DriverSettings) -> CommandDriver:
        templates = dict(PRESETS.get(settings.preset, {})) if settings.preset else {}
        for key in ("query", "ensure", "remove"):
            value = getattr(settings, key)
            if value:
                templates[key] = value
        return cls(
            query=templates.get("query", ""),
            ensure=templates.get("ensure", ""),
            remove=templates.get("remove", ""),
            timeout_seconds=settings.timeout_seconds,
        )

    def query(self) -> set[str]:
        try:
            proc = self._run(self.query_template, "")
        except (OSError, subprocess.TimeoutExpired) as e:
            raise InstallCapabilityError(f"Package query failed: {e}") from e
        if proc.returncode != 0:
            raise InstallCapabilityError(
                f"Package query exited {proc.returncode}",
                {"stderr": proc.stderr[:_OUTPUT_LIMIT]},
            )
        return {line.strip() for line in proc.stdout.splitlines() if line.strip()}

    def ensure(self, package_id: str) -> EnsureResult:
        return self._change(self.ensure_template, package_id, EnsureStatus.INSTALLED)

    def remove(self, package_id: str) -> EnsureResult:
        if not self.remove_template:
            return EnsureResult.failed("driver has no 'remove' command configured")
        return self._change(self.remove_template, package_id, EnsureStatus.REMOVED)

    def _change(self, template: str, package_id: str, success: EnsureStatus) -> EnsureResult:
        start = time.monotonic()
        try:
            proc = self._run(template, package_id)
        except subprocess.TimeoutExpired:
            return EnsureResult.failed(f"timed out after {self.timeout_seconds}s")
        except OSError as e:
            return EnsureResult.failed(str(e))

        duration = int((time.monotonic() - start) * 1000)
        logger.debug("%s %s exited %d in %dms", template, package_id, proc.returncode, duration)
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout).strip()[-_OUTPUT_LIMIT:]
            return EnsureResult.failed(f"exit code {proc.returncode}: {detail}")
        return EnsureResult(success)

    def _run(self, template: str, package_id: str) -> subprocess.CompletedProcess:
        argv = [token.replace("{id}", package_id) for token in shlex.split(template)]
        return subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
        )
