"""Pre-flight checks run before any provisioning step.

Privileges are mandatory; a missing init system or unreachable download host
only produce warnings.
"""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import PlatformError
from ..shared.logging import get_logger
from .detector import OSKind, PlatformProfile

logger = get_logger(__name__)

CONNECTIVITY_HOST = ("go.dev", 443)
SYSTEMD_RUNTIME_DIR = Path("/run/systemd/system")


def is_privileged() -> bool:
    """Check for root (POSIX) or an elevated token (Windows)."""
    if os.name == "nt":
        import ctypes

        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


def real_user() -> str | None:
    """The user who invoked sudo, or None when not running under sudo."""
    user = os.environ.get("SUDO_USER")
    if user and user != "root":
        return user
    return None


def real_home(user: str | None) -> Path:
    """Home directory of the invoking user."""
    if user:
        return Path(os.path.expanduser(f"~{user}"))
    return Path.home()


@dataclass
class PreflightReport:
    """Result of pre-flight checks."""

    privileged: bool
    real_user: str | None = None
    systemd_available: bool = True
    network_reachable: bool = True
    warnings: list[str] = field(default_factory=list)


class PreflightChecker:
    """Verify the host can be provisioned."""

    def __init__(self, systemd_dir: Path = SYSTEMD_RUNTIME_DIR, timeout: float = 3.0):
        self.systemd_dir = systemd_dir
        self.timeout = timeout

    def check(self, profile: PlatformProfile) -> PreflightReport:
        """Run all checks for the profile.

        Raises:
            PlatformError: without administrative privileges or on an
                unsupported distribution.
        """
        profile.require_supported()

        if not is_privileged():
            if profile.os_kind == OSKind.WINDOWS:
                hint = "Re-run from an elevated (Run as Administrator) terminal"
            else:
                hint = "Re-run with sudo"
            raise PlatformError("Administrative privileges are required", hint=hint)

        report = PreflightReport(privileged=True)
        if profile.os_kind == OSKind.MACOS:
            report.real_user = real_user()

        if profile.os_kind == OSKind.LINUX and not self.systemd_dir.is_dir():
            report.systemd_available = False
            report.warnings.append("systemd not detected. Service installation might fail.")

        if not self._network_reachable():
            report.network_reachable = False
            report.warnings.append(
                "No internet connection detected. Installation might fail."
            )

        for warning in report.warnings:
            logger.warning("preflight_warning", detail=warning)
        return report

    def _network_reachable(self) -> bool:
        try:
            conn = socket.create_connection(CONNECTIVITY_HOST, timeout=self.timeout)
            conn.close()
            return True
        except OSError:
            return False
