"""Provisioning package for installing the Mobiadd server.

This package provides the default `mobiadd-install` workflow which:
1. Detects the platform and checks privileges
2. Installs OS packages
3. Installs the pinned Go toolchain and build tools
4. Builds and installs the server binary
5. Generates the server configuration once, migrates, creates the admin
6. Registers and starts the OS service
7. Verifies the service and reports connection details
"""

from .build import BuildOrchestrator, scoped_temp_dir
from .configuration import (
    AdminAccount,
    ConfigGenerator,
    ConfigStatus,
    Secrets,
    build_config,
    generate_secrets,
)
from .detector import (
    Architecture,
    OSKind,
    PackageManager,
    PlatformDetector,
    PlatformProfile,
    ServiceManager,
)
from .packages import DependencyInstaller, PackageReport, packages_for
from .preflight import PreflightChecker, PreflightReport
from .service import (
    FirewallOpener,
    FirewallResult,
    LaunchdRegistrar,
    ServiceRegistrar,
    ServiceRegistration,
    SystemdRegistrar,
    WindowsServiceRegistrar,
    registrar_for,
    registration_for,
)
from .state import InstallAction, InstallState, InstallStateManager
from .toolchain import ToolchainInstaller, ToolchainPath, download_url
from .verify import VerificationOutcome, Verifier, build_summary
from .workflow import (
    ProvisioningContext,
    ProvisionResult,
    Provisioner,
    StepEvent,
    default_paths,
)

__all__ = [
    # Platform
    "Architecture",
    "OSKind",
    "PackageManager",
    "PlatformDetector",
    "PlatformProfile",
    "ServiceManager",
    "PreflightChecker",
    "PreflightReport",
    # Dependencies
    "DependencyInstaller",
    "PackageReport",
    "packages_for",
    # Toolchain
    "ToolchainInstaller",
    "ToolchainPath",
    "download_url",
    # Build
    "BuildOrchestrator",
    "scoped_temp_dir",
    # Configuration
    "AdminAccount",
    "ConfigGenerator",
    "ConfigStatus",
    "Secrets",
    "build_config",
    "generate_secrets",
    # Service
    "FirewallOpener",
    "FirewallResult",
    "LaunchdRegistrar",
    "ServiceRegistrar",
    "ServiceRegistration",
    "SystemdRegistrar",
    "WindowsServiceRegistrar",
    "registrar_for",
    "registration_for",
    # Verification
    "VerificationOutcome",
    "Verifier",
    "build_summary",
    # State
    "InstallAction",
    "InstallState",
    "InstallStateManager",
    # Workflow
    "ProvisioningContext",
    "ProvisionResult",
    "Provisioner",
    "StepEvent",
    "default_paths",
]
