"""Path management for mobiadd-installer.

Fixed installation paths per operating system, plus the installer's own
settings directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path, PureWindowsPath

APP_NAME = "mobiadd"
SERVICE_LABEL = f"com.{APP_NAME}.server"

# Installer settings directory (not the server's configuration)
SETTINGS_DIR = Path.home() / f".{APP_NAME}"


@dataclass
class InstallPaths:
    """Filesystem locations touched by the installer."""

    install_dir: Path
    binary: Path
    config_dir: Path
    log_dir: Path
    data_dir: Path
    tmp_path: Path
    go_root: Path
    service_descriptor: Path | None = None
    shell_rc_files: list[Path] = field(default_factory=list)

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def sqlite_file(self) -> Path:
        return self.data_dir / "database.sqlite"

    @property
    def go_bin(self) -> Path:
        return self.go_root / "bin"

    @property
    def stdout_log(self) -> Path:
        return self.log_dir / "access.log"

    @property
    def stderr_log(self) -> Path:
        return self.log_dir / "error.log"

    def service_dirs(self) -> list[Path]:
        return [self.config_dir, self.log_dir, self.data_dir]


def linux_paths(home: Path | None = None) -> InstallPaths:
    home = home or Path.home()
    return InstallPaths(
        install_dir=Path("/usr/local/bin"),
        binary=Path("/usr/local/bin") / APP_NAME,
        config_dir=Path("/etc") / APP_NAME,
        log_dir=Path("/var/log") / APP_NAME,
        data_dir=Path("/var/lib") / APP_NAME,
        tmp_path=Path("/tmp") / APP_NAME,
        go_root=Path("/usr/local/go"),
        service_descriptor=Path("/etc/systemd/system") / f"{APP_NAME}.service",
        shell_rc_files=[home / ".bashrc", Path("/etc/profile.d/go.sh")],
    )


def macos_paths(home: Path | None = None) -> InstallPaths:
    home = home or Path.home()
    return InstallPaths(
        install_dir=Path("/usr/local/bin"),
        binary=Path("/usr/local/bin") / APP_NAME,
        config_dir=Path("/etc") / APP_NAME,
        log_dir=Path("/var/log") / APP_NAME,
        data_dir=Path("/usr/local/var") / APP_NAME,
        tmp_path=Path("/tmp") / APP_NAME,
        go_root=Path("/usr/local/go"),
        service_descriptor=Path("/Library/LaunchDaemons") / f"{SERVICE_LABEL}.plist",
        shell_rc_files=[home / ".zshrc"],
    )


def windows_paths() -> InstallPaths:
    program_files = Path(os.environ.get("ProgramFiles", str(PureWindowsPath("C:/Program Files"))))
    program_data = Path(os.environ.get("ProgramData", str(PureWindowsPath("C:/ProgramData"))))
    base = program_data / "Mobiadd"
    install_dir = program_files / "Mobiadd"
    return InstallPaths(
        install_dir=install_dir,
        binary=install_dir / f"{APP_NAME}.exe",
        config_dir=base,
        log_dir=base / "logs",
        data_dir=base / "data",
        tmp_path=base / "tmp",
        go_root=program_files / "Go",
    )
