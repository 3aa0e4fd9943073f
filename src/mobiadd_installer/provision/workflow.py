"""Provisioning workflow.

Runs the provisioning steps strictly in order. Each step checks before it
acts, so re-running the whole workflow is safe; the sequence itself is not
transactional and a failure leaves whatever the completed steps produced.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from ..errors import ProvisionError
from ..shared.logging import get_logger, step_context
from ..shared.paths import InstallPaths, linux_paths, macos_paths, windows_paths
from .build import BuildOrchestrator
from .configuration import AdminAccount, ConfigGenerator, ConfigStatus
from .detector import OSKind, PlatformProfile
from .packages import DependencyInstaller, packages_for
from .preflight import PreflightChecker, real_home, real_user
from .service import FirewallOpener, registrar_for, registration_for
from .toolchain import ToolchainInstaller
from .verify import VerificationOutcome, Verifier

if TYPE_CHECKING:
    from ..config import InstallerSettings

logger = get_logger(__name__)


def default_paths(profile: PlatformProfile) -> InstallPaths:
    """Fixed installation paths for the profile's OS."""
    if profile.os_kind == OSKind.LINUX:
        return linux_paths()
    if profile.os_kind == OSKind.MACOS:
        return macos_paths(real_home(real_user()))
    return windows_paths()


@dataclass
class ProvisioningContext:
    """State threaded explicitly between steps."""

    profile: PlatformProfile
    paths: InstallPaths
    settings: InstallerSettings
    admin: AdminAccount = field(default_factory=AdminAccount)
    user: str | None = None
    binary_path: Path | None = None
    config_status: ConfigStatus | None = None
    verification: VerificationOutcome | None = None
    warnings: list[ProvisionError] = field(default_factory=list)


@dataclass
class StepEvent:
    """Progress notification for the CLI."""

    kind: str  # "start", "done", "skip", "warn"
    step: str
    title: str
    index: int
    total: int
    message: str = ""


@dataclass
class ProvisionResult:
    """Outcome of a provisioning run."""

    success: bool
    context: ProvisioningContext
    failed_step: str | None = None
    error: ProvisionError | None = None
    completed_steps: list[str] = field(default_factory=list)

    @property
    def warnings(self) -> list[ProvisionError]:
        return self.context.warnings


class Provisioner:
    """Drive the provisioning steps for one host."""

    def __init__(
        self,
        context: ProvisioningContext,
        preflight: PreflightChecker | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_event: Callable[[StepEvent], None] | None = None,
    ):
        """Initialize provisioner.

        Args:
            context: Provisioning context (profile, paths, settings).
            preflight: Pre-flight checker (default: PreflightChecker()).
            sleep: Sleep function for waits, replaced in tests.
            on_event: Optional callback receiving StepEvents.
        """
        self.context = context
        self.preflight = preflight or PreflightChecker()
        self.sleep = sleep
        self.on_event = on_event

    def steps(self) -> list[tuple[str, str, Callable[[], str | None]]]:
        """(name, title, callable) in execution order."""
        go_version = self.context.settings.go_version
        return [
            ("platform", "Platform Detection", self.check_platform),
            ("dependencies", "System Dependencies", self.install_dependencies),
            ("toolchain", f"Go {go_version} Toolchain", self.install_toolchain),
            ("build", "Build & Install Binary", self.build_binary),
            ("configure", "Configuration", self.configure),
            ("service", "Service Registration", self.register_service),
            ("verify", "Verification", self.verify),
        ]

    def run(self) -> ProvisionResult:
        """Execute every step, stopping at the first fatal error."""
        result = ProvisionResult(success=False, context=self.context)
        steps = self.steps()
        total = len(steps)

        for index, (name, title, step) in enumerate(steps, start=1):
            self._emit("start", name, title, index, total)
            warnings_before = len(self.context.warnings)
            try:
                with step_context(name):
                    message = step()
            except ProvisionError as e:
                if e.fatal:
                    logger.error("step_failed", step=name, error=e.message)
                    result.failed_step = name
                    result.error = e
                    return result
                self.context.warnings.append(e)
                message = None

            for warning in self.context.warnings[warnings_before:]:
                self._emit("warn", name, title, index, total, warning.message)
            kind = "skip" if message and message.startswith("Skipped") else "done"
            self._emit(kind, name, title, index, total, message or "")
            result.completed_steps.append(name)

        result.success = True
        return result

    # ── Steps ──

    def check_platform(self) -> str:
        report = self.preflight.check(self.context.profile)
        self.context.user = report.real_user
        for warning in report.warnings:
            self._warn(warning, "platform")
        return self.context.profile.display_name

    def install_dependencies(self) -> str:
        ctx = self.context
        installer = DependencyInstaller(ctx.profile, user=ctx.user)
        report = installer.ensure_packages(packages_for(ctx.profile, ctx.settings.dialect))
        for warning in report.warnings:
            self._warn(warning, "dependencies")
        if report.installed:
            return f"Installed: {', '.join(report.installed)}"
        return "All base dependencies are already installed"

    def install_toolchain(self) -> str:
        ctx = self.context
        installer = ToolchainInstaller(ctx.profile, ctx.paths, user=ctx.user)
        toolchain = installer.ensure_toolchain(ctx.settings.go_version)
        tools = installer.ensure_build_tools()
        state = "installed" if toolchain.installed else "already installed"
        message = f"Go {toolchain.version} {state}"
        if tools:
            message += f"; installed {', '.join(tools)}"
        return message

    def build_binary(self) -> str:
        ctx = self.context
        orchestrator = BuildOrchestrator(ctx.profile, ctx.paths, ctx.settings.repo_url, ctx.user)
        registrar = registrar_for(ctx.profile, ctx.paths)
        ctx.binary_path = orchestrator.build(before_install=registrar.stop)
        return f"Binary installed to {ctx.binary_path}"

    def configure(self) -> str:
        ctx = self.context
        generator = ConfigGenerator(
            ctx.profile, ctx.paths, ctx.settings, user=ctx.user, admin=ctx.admin, sleep=self.sleep
        )
        try:
            ctx.config_status = generator.ensure_config()
        finally:
            ctx.warnings.extend(generator.warnings)
        if ctx.config_status == ConfigStatus.ALREADY_EXISTED:
            # Later steps serve the existing file's port and dialect
            ctx.settings = generator.settings
            return "Config exists. Skipping generation."
        return f"Configuration created at {ctx.paths.config_file}"

    def register_service(self) -> str:
        ctx = self.context
        if ctx.settings.skip_service:
            return "Skipped (service registration disabled)"
        registrar = registrar_for(ctx.profile, ctx.paths)
        registrar.register_and_start(registration_for(ctx.profile, ctx.paths, ctx.settings))

        firewall = FirewallOpener(ctx.profile).allow(ctx.settings.port)
        if firewall.warning:
            self._warn(firewall.warning, "service")
        return f"Service '{registrar.name}' started"

    def verify(self) -> str:
        ctx = self.context
        if ctx.settings.skip_service:
            return "Skipped (no service to verify)"
        verifier = Verifier(
            registrar_for(ctx.profile, ctx.paths),
            grace_seconds=ctx.settings.grace_seconds,
            sleep=self.sleep,
        )
        ctx.verification = verifier.verify(ctx.settings.port)
        ctx.warnings.extend(ctx.verification.warnings)
        if ctx.verification.port_listening:
            return f"Service is running; port {ctx.settings.port} is listening"
        return "Service is running"

    # ── Helpers ──

    def _warn(self, message: str, step: str) -> None:
        self.context.warnings.append(ProvisionError(message, step=step, fatal=False))

    def _emit(
        self, kind: str, step: str, title: str, index: int, total: int, message: str = ""
    ) -> None:
        if self.on_event:
            self.on_event(StepEvent(kind, step, title, index, total, message))
