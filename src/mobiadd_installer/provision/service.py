"""OS service registration.

Writes a systemd unit, a launchd property list, or a Windows service
registration for the installed server, replacing any earlier registration of
the same name, then enables and starts it.
"""

from __future__ import annotations

import plistlib
import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from ..errors import ServiceError
from ..shared.command import run_command
from ..shared.logging import get_logger
from ..shared.paths import APP_NAME, SERVICE_LABEL, InstallPaths
from .detector import OSKind, PlatformProfile, ServiceManager

if TYPE_CHECKING:
    from ..config import InstallerSettings

logger = get_logger(__name__)

DOCUMENTATION_URL = "https://github.com/semaphoreui/semaphore"
LAUNCHD_PATH = "/usr/local/bin:/usr/bin:/bin:/usr/sbin:/sbin"

# Windows failure actions: restart after 5s, 10s, 30s; reset counter daily
WINDOWS_FAILURE_RESET = 86400
WINDOWS_FAILURE_ACTIONS = "restart/5000/restart/10000/restart/30000"
WINDOWS_STOP_POLLS = 30


@dataclass
class ServiceRegistration:
    """Declarative description of the server service."""

    name: str
    display_name: str
    description: str
    executable_path: Path
    config_path: Path
    stdout_log: Path
    stderr_log: Path
    restart_policy: str = "always"
    restart_sec: int = 5
    user: str | None = None
    after: list[str] = field(default_factory=lambda: ["network.target"])

    @property
    def arguments(self) -> list[str]:
        return ["server", "--config", str(self.config_path)]

    @property
    def log_paths(self) -> list[Path]:
        return [self.stdout_log, self.stderr_log]


def registration_for(
    profile: PlatformProfile,
    paths: InstallPaths,
    settings: InstallerSettings,
) -> ServiceRegistration:
    """Build the registration for this host."""
    after = ["network.target"]
    if settings.dialect == "mysql":
        after.append("mysql.service")
    return ServiceRegistration(
        name=APP_NAME,
        display_name="Mobiadd Automation Server",
        description="Mobiadd Automation Server",
        executable_path=paths.binary,
        config_path=paths.config_file,
        stdout_log=paths.stdout_log,
        stderr_log=paths.stderr_log,
        user=APP_NAME if profile.os_kind == OSKind.LINUX else None,
        after=after,
    )


class ServiceRegistrar:
    """Base class for service manager strategies."""

    def __init__(self, name: str):
        self.name = name

    def exists(self) -> bool:
        raise NotImplementedError

    def remove_existing(self) -> None:
        raise NotImplementedError

    def install(self, registration: ServiceRegistration) -> None:
        raise NotImplementedError

    def enable_and_start(self) -> None:
        raise NotImplementedError

    def is_active(self) -> bool:
        raise NotImplementedError

    def log_hint(self) -> str:
        raise NotImplementedError

    def stop(self) -> None:
        """Stop the service ahead of a binary replacement.

        A no-op where renaming over a running executable is allowed.
        """

    def register_and_start(self, registration: ServiceRegistration) -> None:
        """Replace any existing registration and start the service.

        Raises:
            ServiceError: if the descriptor cannot be installed or started.
        """
        if self.exists():
            logger.info("service_replace", name=self.name)
            self.remove_existing()
        self.install(registration)
        self.enable_and_start()
        logger.info("service_started", name=self.name)

    def _require(self, args: list, action: str) -> None:
        result = run_command(args)
        if not result.ok:
            raise ServiceError(
                f"Failed to {action} service '{self.name}':\n{result.error_tail()}",
                hint=self.log_hint(),
            )


class SystemdRegistrar(ServiceRegistrar):
    """systemd unit file strategy."""

    def __init__(self, name: str, unit_path: Path):
        super().__init__(name)
        self.unit_path = unit_path

    def render_unit(self, registration: ServiceRegistration) -> str:
        lines = [
            "[Unit]",
            f"Description={registration.description}",
            f"Documentation={DOCUMENTATION_URL}",
            f"After={' '.join(registration.after)}",
            "",
            "[Service]",
            "Type=simple",
        ]
        if registration.user:
            lines += [f"User={registration.user}", f"Group={registration.user}"]
        lines += [
            f"ExecStart={registration.executable_path} {' '.join(registration.arguments)}",
            f"Restart={registration.restart_policy}",
            f"RestartSec={registration.restart_sec}s",
            f'Environment="SEMAPHORE_CONFIG={registration.config_path}"',
            f"StandardOutput=append:{registration.stdout_log}",
            f"StandardError=append:{registration.stderr_log}",
            "",
            "[Install]",
            "WantedBy=multi-user.target",
            "",
        ]
        return "\n".join(lines)

    def exists(self) -> bool:
        return self.unit_path.exists()

    def remove_existing(self) -> None:
        run_command(["systemctl", "stop", self.name])
        run_command(["systemctl", "disable", self.name])
        self.unit_path.unlink(missing_ok=True)
        run_command(["systemctl", "daemon-reload"])

    def install(self, registration: ServiceRegistration) -> None:
        try:
            self.unit_path.parent.mkdir(parents=True, exist_ok=True)
            self.unit_path.write_text(self.render_unit(registration), encoding="utf-8")
            self.unit_path.chmod(0o644)
        except OSError as e:
            raise ServiceError(f"Cannot write {self.unit_path}: {e}") from e

    def enable_and_start(self) -> None:
        self._require(["systemctl", "daemon-reload"], "reload units for")
        self._require(["systemctl", "enable", self.name], "enable")
        self._require(["systemctl", "restart", self.name], "start")

    def is_active(self) -> bool:
        return run_command(["systemctl", "is-active", "--quiet", self.name]).ok

    def log_hint(self) -> str:
        return f"Check logs: journalctl -u {self.name}"


class LaunchdRegistrar(ServiceRegistrar):
    """launchd property list strategy."""

    def __init__(self, label: str, plist_path: Path):
        super().__init__(label)
        self.plist_path = plist_path

    def render_plist(self, registration: ServiceRegistration) -> bytes:
        document = {
            "Label": self.name,
            "ProgramArguments": [str(registration.executable_path), *registration.arguments],
            "RunAtLoad": True,
            "KeepAlive": True,
            "StandardOutPath": str(registration.stdout_log),
            "StandardErrorPath": str(registration.stderr_log),
            "EnvironmentVariables": {"PATH": LAUNCHD_PATH},
        }
        return plistlib.dumps(document)

    def _loaded(self) -> bool:
        return run_command(["launchctl", "list", self.name]).ok

    def exists(self) -> bool:
        return self.plist_path.exists() or self._loaded()

    def remove_existing(self) -> None:
        if self._loaded():
            if self.plist_path.exists():
                run_command(["launchctl", "unload", self.plist_path])
            else:
                run_command(["launchctl", "remove", self.name])
        self.plist_path.unlink(missing_ok=True)

    def install(self, registration: ServiceRegistration) -> None:
        try:
            self.plist_path.parent.mkdir(parents=True, exist_ok=True)
            self.plist_path.write_bytes(self.render_plist(registration))
            self.plist_path.chmod(0o644)
        except OSError as e:
            raise ServiceError(f"Cannot write {self.plist_path}: {e}") from e
        self._require(["chown", "root:wheel", self.plist_path], "set ownership for")

    def enable_and_start(self) -> None:
        self._require(["launchctl", "load", "-w", self.plist_path], "load")

    def is_active(self) -> bool:
        result = run_command(["launchctl", "list", self.name])
        return result.ok and '"PID" =' in result.stdout

    def log_hint(self) -> str:
        return f"Check logs in {self.plist_path.name} StandardErrorPath"


class WindowsServiceRegistrar(ServiceRegistrar):
    """Windows Service Control Manager strategy (sc.exe)."""

    def __init__(self, name: str, sleep: Callable[[float], None] = time.sleep):
        super().__init__(name)
        self.sleep = sleep

    def exists(self) -> bool:
        return run_command(["sc.exe", "query", self.name]).ok

    def remove_existing(self) -> None:
        run_command(["sc.exe", "stop", self.name])
        self._require(["sc.exe", "delete", self.name], "delete")

    def install(self, registration: ServiceRegistration) -> None:
        bin_path = (
            f'"{registration.executable_path}" server --config "{registration.config_path}"'
        )
        self._require(
            [
                "sc.exe",
                "create",
                self.name,
                "binPath=",
                bin_path,
                "start=",
                "auto",
                "DisplayName=",
                registration.display_name,
            ],
            "create",
        )
        run_command(["sc.exe", "description", self.name, registration.description])
        self._require(
            [
                "sc.exe",
                "failure",
                self.name,
                "reset=",
                str(WINDOWS_FAILURE_RESET),
                "actions=",
                WINDOWS_FAILURE_ACTIONS,
            ],
            "configure recovery for",
        )

    def enable_and_start(self) -> None:
        self._require(["sc.exe", "start", self.name], "start")

    def is_active(self) -> bool:
        result = run_command(["sc.exe", "query", self.name])
        return result.ok and "RUNNING" in result.stdout

    def log_hint(self) -> str:
        return "Check the Windows Event Viewer (System log, Service Control Manager)"

    def stop(self) -> None:
        """Stop the service and wait for SCM to report it stopped.

        Windows keeps a running executable locked against replacement.
        """
        if not self.is_active():
            return
        logger.info("service_stop", name=self.name)
        run_command(["sc.exe", "stop", self.name])
        for _ in range(WINDOWS_STOP_POLLS):
            if not self.is_active():
                return
            self.sleep(1)
        raise ServiceError(
            f"Service '{self.name}' did not stop; its binary cannot be replaced",
            step="build",
            hint=f"Stop it manually with 'sc.exe stop {self.name}' and re-run",
        )


def registrar_for(profile: PlatformProfile, paths: InstallPaths) -> ServiceRegistrar:
    """Select the registrar for the profile's service manager."""
    if profile.service_manager == ServiceManager.SYSTEMD:
        return SystemdRegistrar(APP_NAME, paths.service_descriptor)
    if profile.service_manager == ServiceManager.LAUNCHD:
        return LaunchdRegistrar(SERVICE_LABEL, paths.service_descriptor)
    return WindowsServiceRegistrar(APP_NAME)


def netsh_local_ports(output: str) -> set[str]:
    """LocalPort values listed by `netsh advfirewall firewall show rule`."""
    ports = set()
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() == "LocalPort":
            ports.add(value.strip())
    return ports


@dataclass
class FirewallResult:
    """Outcome of opening the service port."""

    tool: str | None
    opened: bool
    warning: str | None = None


class FirewallOpener:
    """Open the service port with whichever firewall front-end exists."""

    RULE_NAME = "Mobiadd Server"

    def __init__(self, profile: PlatformProfile):
        self.profile = profile

    def allow(self, port: int) -> FirewallResult:
        """Best-effort port opening; never raises."""
        if self.profile.os_kind == OSKind.WINDOWS:
            return self._allow_netsh(port)
        if shutil.which("ufw"):
            return self._finish("ufw", run_command(["ufw", "allow", f"{port}/tcp"]).ok, port)
        if shutil.which("firewall-cmd"):
            added = run_command(
                ["firewall-cmd", "--permanent", f"--add-port={port}/tcp"]
            ).ok
            reloaded = run_command(["firewall-cmd", "--reload"]).ok
            return self._finish("firewall-cmd", added and reloaded, port)
        logger.info("firewall_not_found")
        return FirewallResult(tool=None, opened=False)

    def _allow_netsh(self, port: int) -> FirewallResult:
        rule = f"name={self.RULE_NAME}"
        show = run_command(["netsh", "advfirewall", "firewall", "show", "rule", rule])
        if show.ok:
            if netsh_local_ports(show.stdout) == {str(port)}:
                return FirewallResult(tool="netsh", opened=True)
            # Same rule name, other port: replace it
            logger.info("firewall_rule_replace", rule=self.RULE_NAME, port=port)
            run_command(["netsh", "advfirewall", "firewall", "delete", "rule", rule])
        added = run_command(
            [
                "netsh",
                "advfirewall",
                "firewall",
                "add",
                "rule",
                f"name={self.RULE_NAME}",
                "dir=in",
                "action=allow",
                "protocol=TCP",
                f"localport={port}",
            ]
        ).ok
        return self._finish("netsh", added, port)

    def _finish(self, tool: str, ok: bool, port: int) -> FirewallResult:
        if ok:
            logger.info("firewall_opened", tool=tool, port=port)
            return FirewallResult(tool=tool, opened=True)
        warning = f"Could not open port {port}/tcp with {tool}"
        logger.warning("firewall_failed", tool=tool, port=port)
        return FirewallResult(tool=tool, opened=False, warning=warning)
