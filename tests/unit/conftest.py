"""Unit test fixtures for isolated, fast test execution.

This file provides:
- Isolated environment fixtures (isolated_env)
- Runner factories pre-loaded with recorded darwin and linux command output
- Platform instances and a fast-booting settings object
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.infrastructure.fixtures import darwin_responses, linux_responses
from tests.infrastructure.mocks.process_mocks import FakeRunnerFactory
from volmon.core.volumes.platforms import DarwinPlatform, LinuxPlatform
from volmon.core.volumes.settings import MonitorSettings


# =============================================================================
# Isolated Environment Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME and the volmon config directory at a temporary tree."""
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("VOLMON_CONFIG_DIR", str(tmp_path / "config" / "volmon"))
    monkeypatch.chdir(work_dir)
    return work_dir


# =============================================================================
# Platform Fixtures
# =============================================================================

@pytest.fixture
def darwin_platform() -> DarwinPlatform:
    return DarwinPlatform()


@pytest.fixture
def linux_platform() -> LinuxPlatform:
    # The fake /dev/sd* nodes do not exist on the test host.
    return LinuxPlatform(user="alice", block_device_check=lambda node: node.startswith("/dev/sd"))


@pytest.fixture
def darwin_runners() -> FakeRunnerFactory:
    return FakeRunnerFactory(darwin_responses())


@pytest.fixture
def linux_runners() -> FakeRunnerFactory:
    return FakeRunnerFactory(linux_responses())


@pytest.fixture
def settings() -> MonitorSettings:
    """Default settings without the boot-time grace period."""
    return MonitorSettings(min_uptime_s=0)
