"""The install capability the engine consumes.

Package identifiers are opaque to the engine; only the driver knows what
``Git.Git`` or ``git`` means to its package manager.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class EnsureStatus(Enum):
    INSTALLED = "installed"
    ALREADY_PRESENT = "already_present"
    REMOVED = "removed"
    ALREADY_ABSENT = "already_absent"
    FAILED = "failed"


@dataclass(frozen=True)
class EnsureResult:
    status: EnsureStatus
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status != EnsureStatus.FAILED

    @classmethod
    def failed(cls, reason: str) -> EnsureResult:
        return cls(EnsureStatus.FAILED, reason)


@runtime_checkable
class InstallCapability(Protocol):
    """Anything that can list, install and remove packages.

    ``query`` raises :class:`reprovision.errors.InstallCapabilityError` when the
    package manager cannot be asked at all; ``ensure`` / ``remove`` report
    failures through :class:`EnsureResult` instead of raising.
    """

    name: str

    def query(self) -> set[str]: ...

    def ensure(self, package_id: str) -> EnsureResult: ...

    def remove(self, package_id: str) -> EnsureResult: ...
