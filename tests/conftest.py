"""Shared test fixtures for mobiadd-installer tests.

This module provides fixtures for provisioning tests:
- Platform profiles for each supported OS
- InstallPaths rooted in a temporary directory
- FakeHost: simulated host answering external commands
"""

import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog

from mobiadd_installer.config import InstallerSettings
from mobiadd_installer.provision import (
    Architecture,
    OSKind,
    PackageManager,
    PlatformProfile,
    ServiceManager,
)
from mobiadd_installer.shared.paths import InstallPaths
from tests.mocks import FakeHost

# =============================================================================
# Platform profiles
# =============================================================================


@pytest.fixture
def linux_profile() -> PlatformProfile:
    return PlatformProfile(
        os_kind=OSKind.LINUX,
        architecture=Architecture.AMD64,
        package_manager=PackageManager.APT,
        service_manager=ServiceManager.SYSTEMD,
        archive_os="linux",
        archive_ext="tar.gz",
        distro_id="ubuntu",
        distro_version="24.04",
        distro_family="debian",
    )


@pytest.fixture
def macos_profile() -> PlatformProfile:
    return PlatformProfile(
        os_kind=OSKind.MACOS,
        architecture=Architecture.ARM64,
        package_manager=PackageManager.BREW,
        service_manager=ServiceManager.LAUNCHD,
        archive_os="darwin",
        archive_ext="tar.gz",
        distro_id="macos",
        distro_version="14.5",
    )


@pytest.fixture
def windows_profile() -> PlatformProfile:
    return PlatformProfile(
        os_kind=OSKind.WINDOWS,
        architecture=Architecture.AMD64,
        package_manager=PackageManager.CHOCO,
        service_manager=ServiceManager.WINDOWS_SCM,
        archive_os="windows",
        archive_ext="zip",
        distro_id="windows",
        distro_version="10",
    )


# =============================================================================
# Paths, settings and host
# =============================================================================


@pytest.fixture
def install_paths(tmp_path: Path) -> InstallPaths:
    """Installation layout rooted in tmp_path."""
    root = tmp_path / "host"
    return InstallPaths(
        install_dir=root / "usr/local/bin",
        binary=root / "usr/local/bin/mobiadd",
        config_dir=root / "etc/mobiadd",
        log_dir=root / "var/log/mobiadd",
        data_dir=root / "var/lib/mobiadd",
        tmp_path=root / "tmp/mobiadd",
        go_root=root / "usr/local/go",
        service_descriptor=root / "etc/systemd/system/mobiadd.service",
        shell_rc_files=[root / "root/.bashrc", root / "etc/profile.d/go.sh"],
    )


@pytest.fixture
def settings() -> InstallerSettings:
    return InstallerSettings(port=4000, dialect="mysql", go_version="1.23.4", grace_seconds=0)


@pytest.fixture
def fake_host():
    """FakeHost with the base packages and pinned Go already present."""
    host = FakeHost(
        executables={"apt-get", "dpkg", "git", "go"},
        go_version="1.23.4",
    )
    with host.patched():
        yield host


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep PATH edits, MOBIADD_* variables and the settings file test-local."""
    monkeypatch.setenv("PATH", os.environ.get("PATH", ""))
    for name in list(os.environ):
        if name.startswith("MOBIADD_") or name == "SUDO_USER":
            monkeypatch.delenv(name)
    with patch("mobiadd_installer.config.SETTINGS_DIR", tmp_path / "settings"):
        yield


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers bound to streams that pytest or CliRunner will close."""
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()
