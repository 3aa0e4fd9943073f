"""OS package installation.

One backend per package manager. Each backend answers a side-effect-free
"is it installed?" query and installs a batch of packages in one call.
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..errors import DependencyError, PlatformError
from ..shared.command import CommandResult, run_command
from ..shared.logging import get_logger
from .detector import PackageManager, PlatformProfile

logger = get_logger(__name__)

BASE_PACKAGES = ["git", "curl", "wget"]

BUILD_PACKAGES: dict[PackageManager, list[str]] = {
    PackageManager.APT: ["build-essential"],
    PackageManager.DNF: ["gcc", "gcc-c++", "make"],
    PackageManager.YUM: ["gcc", "gcc-c++", "make"],
    PackageManager.ZYPPER: ["gcc", "gcc-c++", "make"],
    PackageManager.PACMAN: ["base-devel"],
    PackageManager.BREW: [],
    PackageManager.CHOCO: ["make"],
}

NODE_PACKAGE: dict[PackageManager, str] = {
    PackageManager.BREW: "node",
    PackageManager.CHOCO: "nodejs-lts",
}

DATABASE_PACKAGES: dict[str, dict[PackageManager, str]] = {
    "mysql": {
        PackageManager.APT: "mysql-server",
        PackageManager.DNF: "mysql-server",
        PackageManager.YUM: "mysql-server",
        PackageManager.PACMAN: "mariadb",
        PackageManager.ZYPPER: "mariadb",
        PackageManager.BREW: "mysql",
        PackageManager.CHOCO: "mysql",
    },
    "sqlite": {
        PackageManager.APT: "sqlite3",
        PackageManager.DNF: "sqlite",
        PackageManager.YUM: "sqlite",
        PackageManager.PACMAN: "sqlite",
        PackageManager.ZYPPER: "sqlite3",
        PackageManager.BREW: "sqlite",
        PackageManager.CHOCO: "sqlite",
    },
}

NPM_PACKAGE = "npm"


def packages_for(profile: PlatformProfile, dialect: str) -> list[str]:
    """Default package set for a profile and database dialect."""
    manager = profile.package_manager
    packages = list(BASE_PACKAGES)
    packages.append(DATABASE_PACKAGES[dialect][manager])
    packages.extend(BUILD_PACKAGES[manager])
    packages.append(NODE_PACKAGE.get(manager, "nodejs"))
    return packages


class PackageBackend:
    """Base class for package manager backends."""

    manager: PackageManager = PackageManager.UNKNOWN
    executable: str = ""

    def __init__(self, user: str | None = None):
        """Initialize backend.

        Args:
            user: Run package commands as this user (Homebrew refuses root).
        """
        self.user = user

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def query_args(self, package: str) -> list[str]:
        raise NotImplementedError

    def install_args(self, packages: list[str]) -> list[str]:
        raise NotImplementedError

    def is_installed(self, package: str) -> bool:
        return self._run(self.query_args(package)).ok

    def prepare(self) -> None:
        """Hook run once before the install batch."""

    def install(self, packages: list[str]) -> CommandResult:
        return self._run(self.install_args(packages))

    def _run(self, args: list[str]) -> CommandResult:
        return run_command(args, user=self.user)


class AptBackend(PackageBackend):
    manager = PackageManager.APT
    executable = "apt-get"

    def query_args(self, package: str) -> list[str]:
        return ["dpkg", "-s", package]

    def install_args(self, packages: list[str]) -> list[str]:
        return ["apt-get", "install", "-y", *packages]

    def prepare(self) -> None:
        # Best effort; a broken dpkg state otherwise blocks every install
        self._run(["apt-get", "--fix-broken", "install", "-y"])
        result = self._run(["apt-get", "update", "-qq"])
        if not result.ok:
            raise DependencyError(f"apt-get update failed:\n{result.error_tail()}")


class DnfBackend(PackageBackend):
    manager = PackageManager.DNF
    executable = "dnf"

    def query_args(self, package: str) -> list[str]:
        return ["rpm", "-q", package]

    def install_args(self, packages: list[str]) -> list[str]:
        return ["dnf", "install", "-y", *packages]


class YumBackend(PackageBackend):
    manager = PackageManager.YUM
    executable = "yum"

    def query_args(self, package: str) -> list[str]:
        return ["rpm", "-q", package]

    def install_args(self, packages: list[str]) -> list[str]:
        return ["yum", "install", "-y", *packages]

    def prepare(self) -> None:
        result = self._run(["yum", "install", "-y", "epel-release"])
        if not result.ok:
            logger.warning("epel_release_unavailable", detail=result.error_tail(3))


class PacmanBackend(PackageBackend):
    manager = PackageManager.PACMAN
    executable = "pacman"

    def query_args(self, package: str) -> list[str]:
        return ["pacman", "-Qi", package]

    def install_args(self, packages: list[str]) -> list[str]:
        return ["pacman", "-Sy", "--noconfirm", "--needed", *packages]


class ZypperBackend(PackageBackend):
    manager = PackageManager.ZYPPER
    executable = "zypper"

    def query_args(self, package: str) -> list[str]:
        return ["rpm", "-q", package]

    def install_args(self, packages: list[str]) -> list[str]:
        return ["zypper", "--non-interactive", "install", *packages]


class BrewBackend(PackageBackend):
    manager = PackageManager.BREW
    executable = "brew"

    def query_args(self, package: str) -> list[str]:
        return ["brew", "list", "--versions", package]

    def install_args(self, packages: list[str]) -> list[str]:
        return ["brew", "install", *packages]

    def is_installed(self, package: str) -> bool:
        result = self._run(self.query_args(package))
        return result.ok and bool(result.stdout.strip())


class ChocoBackend(PackageBackend):
    manager = PackageManager.CHOCO
    executable = "choco"

    def query_args(self, package: str) -> list[str]:
        return ["choco", "list", "--exact", package, "--limit-output"]

    def install_args(self, packages: list[str]) -> list[str]:
        return ["choco", "install", "-y", "--no-progress", *packages]

    def is_installed(self, package: str) -> bool:
        result = self._run(self.query_args(package))
        prefix = f"{package.lower()}|"
        return result.ok and any(
            line.strip().lower().startswith(prefix) for line in result.stdout.splitlines()
        )


BACKENDS: dict[PackageManager, type[PackageBackend]] = {
    backend.manager: backend
    for backend in (
        AptBackend,
        DnfBackend,
        YumBackend,
        PacmanBackend,
        ZypperBackend,
        BrewBackend,
        ChocoBackend,
    )
}

MISSING_MANAGER_HINTS = {
    PackageManager.BREW: "Install Homebrew as a regular user first: https://brew.sh",
    PackageManager.CHOCO: "Install Chocolatey first: https://chocolatey.org/install",
}


def backend_for(profile: PlatformProfile, user: str | None = None) -> PackageBackend:
    """Select the backend for a profile."""
    profile.require_supported()
    backend_cls = BACKENDS.get(profile.package_manager)
    if backend_cls is None:
        raise PlatformError(f"No backend for package manager {profile.package_manager.value}")
    return backend_cls(user=user)


@dataclass
class PackageReport:
    """Result of ensure_packages."""

    already_installed: list[str] = field(default_factory=list)
    installed: list[str] = field(default_factory=list)
    npm_status: str = "skipped"
    warnings: list[str] = field(default_factory=list)


class DependencyInstaller:
    """Ensure a set of OS packages is present."""

    def __init__(self, profile: PlatformProfile, user: str | None = None):
        """Initialize installer.

        Args:
            profile: Detected platform profile.
            user: Unprivileged user for package managers that refuse root.
        """
        self.profile = profile
        self.backend = backend_for(profile, user)
        self._prepared = False

    def missing(self, names: Iterable[str]) -> tuple[list[str], list[str]]:
        """Split names into (present, missing) without side effects."""
        present: list[str] = []
        missing: list[str] = []
        for name in dict.fromkeys(names):
            if self.backend.is_installed(name):
                present.append(name)
            else:
                missing.append(name)
        return present, missing

    def ensure_packages(self, names: Iterable[str]) -> PackageReport:
        """Install every package in names that is not already installed.

        Raises:
            DependencyError: if the package manager is missing or the batch
                install fails.
        """
        if not self.backend.available():
            raise DependencyError(
                f"Package manager '{self.backend.executable}' not found",
                hint=MISSING_MANAGER_HINTS.get(self.profile.package_manager),
            )

        present, missing = self.missing(names)
        report = PackageReport(already_installed=present)
        for name in present:
            logger.info("package_present", package=name)

        if missing:
            logger.info("packages_missing", packages=missing)
            self._prepare()
            result = self.backend.install(missing)
            if not result.ok:
                raise DependencyError(
                    f"Failed to install packages: {', '.join(missing)}\n{result.error_tail()}"
                )
            report.installed = missing

        report.npm_status = self.ensure_npm(report)
        return report

    def ensure_npm(self, report: PackageReport) -> str:
        """Install npm unless some other package already provides it.

        Node packages frequently bundle npm, so a failed install here is a
        warning only.
        """
        if shutil.which("npm") or self.backend.is_installed(NPM_PACKAGE):
            return "present"

        logger.info("npm_missing")
        try:
            self._prepare()
        except DependencyError as e:
            logger.warning("npm_prepare_failed", detail=e.message)
            report.warnings.append(f"Failed to install npm: {e.message}")
            return "failed"
        result = self.backend.install([NPM_PACKAGE])
        if result.ok:
            return "installed"

        warning = "Failed to install npm. It might be provided by nodejs."
        logger.warning("npm_install_failed", detail=result.error_tail(3))
        report.warnings.append(warning)
        return "failed"

    def _prepare(self) -> None:
        # Index refresh once per run, before the first install
        if not self._prepared:
            self.backend.prepare()
            self._prepared = True
