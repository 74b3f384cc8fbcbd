"""Tests for the install capability drivers."""

import shlex
import sys

import pytest

from reprovision.config import DriverSettings
from reprovision.drivers import CommandDriver, MemoryDriver, build_driver
from reprovision.drivers.base import EnsureStatus, InstallCapability
from reprovision.drivers.command import PRESETS
from reprovision.errors import ConfigError, InstallCapabilityError

PY = shlex.quote(sys.executable)


def _py(code):
    return f"{PY} -c {shlex.quote(code)}"


def test_memory_driver_is_an_install_capability():
    driver = MemoryDriver({"git"}, failing={"broken"})
    assert isinstance(driver, InstallCapability)
    assert driver.ensure("git").status == EnsureStatus.ALREADY_PRESENT
    assert driver.ensure("jq").status == EnsureStatus.INSTALLED
    assert not driver.ensure("broken").ok
    assert driver.remove("vim").status == EnsureStatus.ALREADY_ABSENT
    assert driver.remove("git").status == EnsureStatus.REMOVED
    assert driver.query() == {"jq"}


def test_build_driver_kinds():
    memory = build_driver(DriverSettings(kind="memory", packages=("git",)))
    assert isinstance(memory, MemoryDriver)
    assert memory.query() == {"git"}

    apt = build_driver(DriverSettings(kind="command", preset="apt"))
    assert isinstance(apt, CommandDriver)
    assert apt.ensure_template == PRESETS["apt"]["ensure"]

    with pytest.raises(ConfigError):
        build_driver(DriverSettings(kind="teleport"))


def test_command_driver_needs_templates():
    with pytest.raises(ConfigError):
        build_driver(DriverSettings(kind="command"))


def test_explicit_templates_override_preset():
    driver = CommandDriver.from_settings(
        DriverSettings(kind="command", preset="brew", ensure="brew install --cask {id}")
    )
    assert driver.query_template == PRESETS["brew"]["query"]
    assert driver.ensure_template == "brew install --cask {id}"


def test_every_preset_splits_cleanly():
    for templates in PRESETS.values():
        for template in templates.values():
            assert shlex.split(template)


def test_query_parses_lines():
    driver = CommandDriver(query=_py("print('git'); print(''); print(' jq ')"), ensure="true")
    assert driver.query() == {"git", "jq"}


def test_query_nonzero_exit_raises():
    driver = CommandDriver(query=_py("import sys; sys.exit(2)"), ensure="true")
    with pytest.raises(InstallCapabilityError):
        driver.query()


def test_query_missing_binary_raises():
    driver = CommandDriver(query="definitely-not-a-real-binary-xyz", ensure="true")
    with pytest.raises(InstallCapabilityError):
        driver.query()


def test_package_id_is_a_single_argument(tmp_path):
    record = tmp_path / "argv.txt"
    code = f"import sys; open({str(record)!r}, 'w').write(repr(sys.argv[1:]))"
    driver = CommandDriver(query="true", ensure=f"{_py(code)} {{id}}")

    result = driver.ensure("name with spaces; rm -rf /")

    assert result.status == EnsureStatus.INSTALLED
    assert record.read_text() == repr(["name with spaces; rm -rf /"])


def test_ensure_failure_carries_output():
    driver = CommandDriver(
        query="true", ensure=_py("import sys; sys.stderr.write('no such package'); sys.exit(100)")
    )
    result = driver.ensure("ghost")
    assert not result.ok
    assert "exit code 100" in result.reason
    assert "no such package" in result.reason


def test_ensure_timeout_is_a_failure():
    driver = CommandDriver(query="true", ensure=_py("import time; time.sleep(10)"), timeout_seconds=1)
    result = driver.ensure("slow")
    assert not result.ok
    assert "timed out" in result.reason


def test_remove_without_template_fails_softly():
    driver = CommandDriver(query="true", ensure="true")
    result = driver.remove("git")
    assert result.status == EnsureStatus.FAILED
