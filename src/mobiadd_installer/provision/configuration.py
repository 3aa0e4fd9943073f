"""Server configuration generation.

Writes the server's config.json with fresh secrets exactly once, then runs
the server's own migration and admin-creation subcommands. The config file's
existence is the only signal that this already happened: regenerating it
would invalidate every signed cookie and encrypted secret.
"""

from __future__ import annotations

import base64
import json
import os
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..errors import AccountError, ConfigError, MigrationError, ProvisionError
from ..shared.command import run_command
from ..shared.logging import get_logger
from ..shared.paths import APP_NAME, InstallPaths
from .detector import OSKind, PlatformProfile

if TYPE_CHECKING:
    from ..config import InstallerSettings

logger = get_logger(__name__)

SECRET_BYTES = 32
MAX_PARALLEL_TASKS = 10
MYSQL_HOST = "127.0.0.1:3306"
MYSQL_SERVICE_NAMES = ("mysql", "mariadb", "mysqld")
DIALECTS = ("sqlite", "mysql")


class ConfigStatus(Enum):
    """Outcome of ensure_config."""

    ALREADY_EXISTED = "already_existed"
    CREATED = "created"


@dataclass
class AdminAccount:
    """Default administrator created on first install."""

    login: str = "admin"
    email: str = "admin@localhost"
    password: str = "Mobiadd"
    name: str = "Administrator"
    is_admin: bool = True


@dataclass(frozen=True)
class Secrets:
    cookie_hash: str
    cookie_encryption: str
    access_key_encryption: str


def parse_port(value: Any) -> int | None:
    """Port number from a config value such as ":4000", or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        port = value
    elif isinstance(value, str) and value.rsplit(":", 1)[-1].strip().isdigit():
        port = int(value.rsplit(":", 1)[-1])
    else:
        return None
    return port if 0 < port < 65536 else None


def random_secret(num_bytes: int = SECRET_BYTES) -> str:
    """Base64 of num_bytes from the OS CSPRNG."""
    return base64.b64encode(secrets.token_bytes(num_bytes)).decode("ascii")


def generate_secrets() -> Secrets:
    """Three independent 256-bit secrets."""
    return Secrets(
        cookie_hash=random_secret(),
        cookie_encryption=random_secret(),
        access_key_encryption=random_secret(),
    )


def build_config(
    settings: InstallerSettings,
    paths: InstallPaths,
    keys: Secrets,
) -> dict[str, Any]:
    """Assemble the server configuration document."""
    config: dict[str, Any] = {
        "mysql": {
            "host": MYSQL_HOST,
            "user": "root",
            "pass": "",
            "name": APP_NAME,
        },
        "dialect": settings.dialect,
    }
    if settings.dialect == "sqlite":
        config["sqlite"] = {"host": str(paths.sqlite_file)}
    config.update(
        {
            "port": f":{settings.port}",
            "interface": "",
            "tmp_path": str(paths.tmp_path),
            "cookie_hash": keys.cookie_hash,
            "cookie_encryption": keys.cookie_encryption,
            "access_key_encryption": keys.access_key_encryption,
            "email_alert": False,
            "ldap_enable": False,
            "max_parallel_tasks": MAX_PARALLEL_TASKS,
        }
    )
    return config


class ConfigGenerator:
    """Create the server configuration and bootstrap its database."""

    def __init__(
        self,
        profile: PlatformProfile,
        paths: InstallPaths,
        settings: InstallerSettings,
        user: str | None = None,
        admin: AdminAccount | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize generator.

        Args:
            profile: Detected platform profile.
            paths: Installation paths.
            settings: Effective installer settings (port, dialect).
            user: Invoking user for Homebrew-managed database services.
            admin: Admin account to create (defaults to admin/Mobiadd).
            sleep: Sleep function, replaced in tests.
        """
        self.profile = profile
        self.paths = paths
        self.settings = settings
        self.user = user
        self.admin = admin or AdminAccount()
        self.sleep = sleep
        self.warnings: list[ProvisionError] = []

    @property
    def service_user(self) -> str | None:
        """Dedicated system account owning the server files (Linux only)."""
        return APP_NAME if self.profile.os_kind == OSKind.LINUX else None

    def ensure_config(self) -> ConfigStatus:
        """Create the configuration unless it already exists.

        Raises:
            ConfigError: if directories or the file cannot be written.
            MigrationError: if the server's migration fails.
        """
        config_file = self.paths.config_file
        if config_file.exists():
            logger.info("config_exists", path=str(config_file))
            self.settings = self.adopt_existing()
            return ConfigStatus.ALREADY_EXISTED

        self.prepare_directories()
        self.prepare_database()
        self.write_config(build_config(self.settings, self.paths, generate_secrets()))
        self.run_migrations()
        self.create_admin()
        return ConfigStatus.CREATED

    def adopt_existing(self) -> InstallerSettings:
        """Settings with port and dialect taken from the existing config.

        The server keeps serving what its config says, so later steps must
        follow the file rather than this run's overrides. An unreadable file
        leaves the settings unchanged with a warning.
        """
        config_file = self.paths.config_file
        try:
            with open(config_file, encoding="utf-8") as f:
                existing = json.load(f)
        except (OSError, ValueError) as e:
            self._warn(f"Cannot read {config_file} ({e}); using port {self.settings.port}")
            return self.settings
        if not isinstance(existing, dict):
            self._warn(f"{config_file} is not a JSON object; using port {self.settings.port}")
            return self.settings

        adopted: dict[str, Any] = {}
        port = parse_port(existing.get("port"))
        if port is not None:
            adopted["port"] = port
        if existing.get("dialect") in DIALECTS:
            adopted["dialect"] = existing["dialect"]

        for key, value in adopted.items():
            requested = getattr(self.settings, key)
            if value != requested:
                self._warn(
                    f"Ignoring {key} {requested}: {config_file} keeps {key} {value}. "
                    "Remove the file to regenerate it."
                )
        return replace(self.settings, **adopted)

    def prepare_directories(self) -> None:
        """Create server directories and, on Linux, the service account."""
        try:
            if self.service_user:
                self._ensure_service_user()
            for directory in [*self.paths.service_dirs(), self.paths.tmp_path]:
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Cannot create server directories: {e}") from e

        if self.profile.os_kind == OSKind.LINUX:
            owner = f"{self.service_user}:{self.service_user}"
            dirs = [*self.paths.service_dirs(), self.paths.tmp_path]
            result = run_command(["chown", "-R", owner, *dirs])
            if not result.ok:
                raise ConfigError(f"Cannot set ownership:\n{result.error_tail()}")
            self.paths.config_dir.chmod(0o750)
            self.paths.data_dir.chmod(0o750)
        elif self.profile.os_kind == OSKind.MACOS:
            self.paths.config_dir.chmod(0o755)
            self.paths.log_dir.chmod(0o755)

    def _ensure_service_user(self) -> None:
        if run_command(["id", "-u", self.service_user]).ok:
            return
        logger.info("service_user_create", user=self.service_user)
        result = run_command(
            [
                "useradd",
                "--system",
                "--home-dir",
                self.paths.data_dir,
                "--shell",
                "/usr/sbin/nologin",
                self.service_user,
            ]
        )
        if not result.ok:
            raise ConfigError(f"Cannot create user '{self.service_user}':\n{result.error_tail()}")

    def prepare_database(self) -> None:
        """Best effort: make the database reachable before migrating."""
        if self.settings.dialect == "sqlite":
            self.paths.sqlite_file.parent.mkdir(parents=True, exist_ok=True)
            return

        if self.profile.os_kind == OSKind.LINUX:
            started = any(
                run_command(["systemctl", "start", name]).ok for name in MYSQL_SERVICE_NAMES
            )
        elif self.profile.os_kind == OSKind.MACOS:
            started = self._start_brew_mysql()
        else:
            started = run_command(["net", "start", "MySQL"]).ok

        if not started:
            self._warn("MySQL service could not be started; migrations may fail")

        result = run_command(
            ["mysql", "-u", "root", "-e", f"CREATE DATABASE IF NOT EXISTS {APP_NAME};"],
            user=self.user,
        )
        if not result.ok:
            self._warn(f"Could not create database '{APP_NAME}': {result.error_tail(2)}")

    def _start_brew_mysql(self) -> bool:
        listing = run_command(["brew", "services", "list"], user=self.user)
        for line in listing.stdout.splitlines():
            fields = line.split()
            if len(fields) >= 2 and fields[0] == "mysql" and fields[1] == "started":
                return True
        logger.info("mysql_start")
        if not run_command(["brew", "services", "start", "mysql"], user=self.user).ok:
            return False
        self.sleep(5)
        return True

    def write_config(self, config: dict[str, Any]) -> Path:
        """Create the config file with restrictive permissions.

        O_EXCL keeps a concurrent or earlier writer's file intact.
        """
        config_file = self.paths.config_file
        mode = 0o644 if self.profile.os_kind == OSKind.MACOS else 0o640
        try:
            fd = os.open(config_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(config, f, indent=4)
                f.write("\n")
            if os.name != "nt":
                config_file.chmod(mode)
        except FileExistsError as e:
            raise ConfigError(
                f"{config_file} appeared while generating the configuration",
                hint="Another installer may be running; re-run once it finishes",
            ) from e
        except OSError as e:
            raise ConfigError(f"Cannot write {config_file}: {e}") from e

        if self.service_user:
            owner = f"{self.service_user}:{self.service_user}"
            result = run_command(["chown", owner, config_file])
            if not result.ok:
                raise ConfigError(f"Cannot set ownership on {config_file}")
        logger.info("config_written", path=str(config_file))
        return config_file

    def run_migrations(self) -> None:
        """Apply the server schema.

        Raises:
            MigrationError: on a non-zero exit.
        """
        logger.info("migrations_start")
        result = run_command(
            [self.paths.binary, "migrate", "--config", self.paths.config_file]
        )
        if not result.ok:
            raise MigrationError(
                f"Database migration failed (exit {result.returncode}); "
                f"the database may be in an inconsistent state:\n{result.error_tail()}"
            )
        if self.service_user and self.settings.dialect == "sqlite":
            owner = f"{self.service_user}:{self.service_user}"
            run_command(["chown", "-R", owner, self.paths.data_dir])

    def create_admin(self) -> bool:
        """Create the default admin. A failure is recorded as a warning."""
        logger.info("admin_create", login=self.admin.login)
        args = [self.paths.binary, "user", "add"]
        if self.admin.is_admin:
            args.append("--admin")
        args += [
            "--login",
            self.admin.login,
            "--email",
            self.admin.email,
            "--password",
            self.admin.password,
            "--name",
            self.admin.name,
            "--config",
            self.paths.config_file,
        ]
        result = run_command(args)
        if result.ok:
            return True
        self.warnings.append(
            AccountError(f"Admin user '{self.admin.login}' was not created (it may already exist)")
        )
        logger.warning("admin_create_failed", detail=result.error_tail(3))
        return False

    def _warn(self, message: str) -> None:
        logger.warning("config_warning", detail=message)
        self.warnings.append(ProvisionError(message, step="configure", fatal=False))
