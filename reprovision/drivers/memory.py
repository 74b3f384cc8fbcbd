"""In-process install capability.

Keeps the package set in memory. Used for offline previews
(``--driver memory``) and throughout the test suite.
"""

from __future__ import annotations

from reprovision.drivers.base import EnsureResult, EnsureStatus
from reprovision.errors import InstallCapabilityError


class MemoryDriver:
    name = "memory"

    def __init__(
        self,
        installed: set[str] | list[str] | tuple[str, ...] = (),
        failing: set[str] | list[str] | tuple[str, ...] = (),
        query_error: str = "",
    ):
        self.installed: set[str] = set(installed)
        self.failing: set[str] = set(failing)
        self.query_error = query_error
        self.calls: list[tuple[str, str]] = []

    def query(self) -> set[str]:
        self.calls.append(("query", ""))
        if self.query_error:
            raise InstallCapabilityError(self.query_error)
        return set(self.installed)

    def ensure(self, package_id: str) -> EnsureResult:
        self.calls.append(("ensure", package_id))
        if package_id in self.failing:
            return EnsureResult.failed(f"{package_id}: install failed")
        if package_id in self.installed:
            return EnsureResult(EnsureStatus.ALREADY_PRESENT)
        self.installed.add(package_id)
        return EnsureResult(EnsureStatus.INSTALLED)

    def remove(self, package_id: str) -> EnsureResult:
        self.calls.append(("remove", package_id))
        if package_id in self.failing:
            return EnsureResult.failed(f"{package_id}: removal failed")
        if package_id not in self.installed:
            return EnsureResult(EnsureStatus.ALREADY_ABSENT)
        self.installed.discard(package_id)
        return EnsureResult(EnsureStatus.REMOVED)
