"""Install capability drivers."""

from __future__ import annotations

from reprovision.config import DriverSettings
from reprovision.drivers.base import EnsureResult, EnsureStatus, InstallCapability
from reprovision.drivers.command import CommandDriver
from reprovision.drivers.memory import MemoryDriver
from reprovision.errors import ConfigError


def build_driver(settings: DriverSettings) -> InstallCapability:
    if settings.kind == "memory":
        return MemoryDriver(installed=settings.packages)
    if settings.kind == "command":
        return CommandDriver.from_settings(settings)
    raise ConfigError(f"Unknown driver kind '{settings.kind}'")


__all__ = [
    "CommandDriver",
    "EnsureResult",
    "EnsureStatus",
    "InstallCapability",
    "MemoryDriver",
    "build_driver",
]
