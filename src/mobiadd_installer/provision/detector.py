"""Platform detection.

Resolves the running host into a PlatformProfile: OS kind, distribution,
normalized architecture, package manager, service manager and the archive
naming used for toolchain downloads.
"""

from __future__ import annotations

import platform
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..errors import PlatformError
from ..shared.logging import get_logger

logger = get_logger(__name__)

OS_RELEASE = Path("/etc/os-release")
REDHAT_RELEASE = Path("/etc/redhat-release")


class OSKind(Enum):
    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"


class Architecture(Enum):
    AMD64 = "amd64"
    ARM64 = "arm64"
    ARMV6L = "armv6l"


class PackageManager(Enum):
    APT = "apt"
    DNF = "dnf"
    YUM = "yum"
    PACMAN = "pacman"
    ZYPPER = "zypper"
    BREW = "brew"
    CHOCO = "choco"
    UNKNOWN = "unknown"


class ServiceManager(Enum):
    SYSTEMD = "systemd"
    LAUNCHD = "launchd"
    WINDOWS_SCM = "windows_scm"


# distro id -> (family, package manager)
DISTRO_TABLE: dict[str, tuple[str, PackageManager]] = {
    "ubuntu": ("debian", PackageManager.APT),
    "debian": ("debian", PackageManager.APT),
    "kali": ("debian", PackageManager.APT),
    "pop": ("debian", PackageManager.APT),
    "linuxmint": ("debian", PackageManager.APT),
    "mint": ("debian", PackageManager.APT),
    "fedora": ("fedora", PackageManager.DNF),
    "centos": ("rhel", PackageManager.YUM),
    "rhel": ("rhel", PackageManager.YUM),
    "rocky": ("rhel", PackageManager.YUM),
    "almalinux": ("rhel", PackageManager.YUM),
    "arch": ("arch", PackageManager.PACMAN),
    "manjaro": ("arch", PackageManager.PACMAN),
    "sles": ("suse", PackageManager.ZYPPER),
}

# raw machine string -> normalized architecture, per OS
ARCH_TABLE: dict[OSKind, dict[str, Architecture]] = {
    OSKind.LINUX: {
        "x86_64": Architecture.AMD64,
        "amd64": Architecture.AMD64,
        "aarch64": Architecture.ARM64,
        "arm64": Architecture.ARM64,
        "armv7l": Architecture.ARMV6L,
        "armv6l": Architecture.ARMV6L,
    },
    OSKind.MACOS: {
        "x86_64": Architecture.AMD64,
        "arm64": Architecture.ARM64,
    },
    OSKind.WINDOWS: {
        "amd64": Architecture.AMD64,
        "x86_64": Architecture.AMD64,
        "arm64": Architecture.ARM64,
    },
}

ARCHIVE_NAMING: dict[OSKind, tuple[str, str]] = {
    OSKind.LINUX: ("linux", "tar.gz"),
    OSKind.MACOS: ("darwin", "tar.gz"),
    OSKind.WINDOWS: ("windows", "zip"),
}

SERVICE_MANAGERS: dict[OSKind, ServiceManager] = {
    OSKind.LINUX: ServiceManager.SYSTEMD,
    OSKind.MACOS: ServiceManager.LAUNCHD,
    OSKind.WINDOWS: ServiceManager.WINDOWS_SCM,
}


@dataclass(frozen=True)
class PlatformProfile:
    """Resolved platform-specific choices for one run."""

    os_kind: OSKind
    architecture: Architecture
    package_manager: PackageManager
    service_manager: ServiceManager
    archive_os: str
    archive_ext: str
    distro_id: str | None = None
    distro_version: str | None = None
    distro_family: str | None = None

    @property
    def supported(self) -> bool:
        return self.package_manager != PackageManager.UNKNOWN

    @property
    def go_arch(self) -> str:
        """GOARCH naming used by build output directories."""
        if self.architecture == Architecture.ARMV6L:
            return "arm"
        return self.architecture.value

    @property
    def display_name(self) -> str:
        if self.distro_id:
            version = f" {self.distro_version}" if self.distro_version else ""
            return f"{self.distro_id}{version} ({self.architecture.value})"
        return f"{self.os_kind.value} ({self.architecture.value})"

    def require_supported(self) -> None:
        """Raise PlatformError for profiles later steps must not act on."""
        if not self.supported:
            raise PlatformError(
                f"Unsupported platform: {self.distro_id or self.os_kind.value}",
            )


def parse_os_release(text: str) -> dict[str, str]:
    """Parse an os-release file body into a dict."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def lookup_distro(distro_id: str) -> tuple[str, PackageManager] | None:
    """Map a distribution id onto the fixed distribution table."""
    distro_id = distro_id.lower()
    if distro_id in DISTRO_TABLE:
        return DISTRO_TABLE[distro_id]
    if distro_id.startswith("opensuse"):
        return ("suse", PackageManager.ZYPPER)
    return None


class PlatformDetector:
    """Detect the running platform."""

    def __init__(
        self,
        os_release: Path = OS_RELEASE,
        redhat_release: Path = REDHAT_RELEASE,
    ):
        """Initialize detector.

        Args:
            os_release: Path to the os-release descriptor.
            redhat_release: Legacy release marker checked when os-release is absent.
        """
        self.os_release = os_release
        self.redhat_release = redhat_release

    def detect(self) -> PlatformProfile:
        """Build the profile for the current host.

        Raises:
            PlatformError: for unsupported kernels or architectures.
        """
        os_kind = self._detect_os_kind(platform.system())
        architecture = self._normalize_arch(os_kind, platform.machine())
        archive_os, archive_ext = ARCHIVE_NAMING[os_kind]

        distro_id = distro_version = family = None
        if os_kind == OSKind.LINUX:
            distro_id, distro_version, family, package_manager = self._detect_distro()
        elif os_kind == OSKind.MACOS:
            distro_id, distro_version = "macos", platform.mac_ver()[0] or None
            package_manager = PackageManager.BREW
        else:
            distro_id, distro_version = "windows", platform.release() or None
            package_manager = PackageManager.CHOCO

        profile = PlatformProfile(
            os_kind=os_kind,
            architecture=architecture,
            package_manager=package_manager,
            service_manager=SERVICE_MANAGERS[os_kind],
            archive_os=archive_os,
            archive_ext=archive_ext,
            distro_id=distro_id,
            distro_version=distro_version,
            distro_family=family,
        )
        logger.info(
            "platform_detected",
            os=os_kind.value,
            distro=distro_id,
            arch=architecture.value,
            package_manager=package_manager.value,
        )
        return profile

    def _detect_os_kind(self, system: str) -> OSKind:
        name = system.lower()
        if name == "linux":
            return OSKind.LINUX
        if name == "darwin":
            return OSKind.MACOS
        if name == "windows":
            return OSKind.WINDOWS
        if name.startswith(("cygwin", "mingw", "msys")):
            raise PlatformError(
                f"Windows shell environment detected ({system})",
                hint="Run the installer from an elevated PowerShell or cmd.exe instead",
            )
        raise PlatformError(f"Unsupported operating system: {system or 'unknown'}")

    def _normalize_arch(self, os_kind: OSKind, machine: str) -> Architecture:
        arch = ARCH_TABLE[os_kind].get(machine.lower())
        if arch is None:
            raise PlatformError(
                f"Unsupported architecture: {machine or 'unknown'}",
                hint=f"Supported on {os_kind.value}: "
                f"{', '.join(sorted({a.value for a in ARCH_TABLE[os_kind].values()}))}",
            )
        return arch

    def _detect_distro(self) -> tuple[str, str | None, str | None, PackageManager]:
        if self.os_release.exists():
            info = parse_os_release(self.os_release.read_text(encoding="utf-8"))
            distro_id = info.get("ID", "unknown").lower()
            version = info.get("VERSION_ID") or None
            match = lookup_distro(distro_id)
            if match is None:
                for like in info.get("ID_LIKE", "").split():
                    match = lookup_distro(like)
                    if match:
                        break
        elif self.redhat_release.exists():
            distro_id, version = "rhel", None
            match = DISTRO_TABLE["rhel"]
        else:
            distro_id, version, match = "unknown", None, None

        if match is None:
            logger.warning("distro_unrecognized", distro=distro_id)
            return distro_id, version, None, PackageManager.UNKNOWN
        family, package_manager = match
        return distro_id, version, family, package_manager
