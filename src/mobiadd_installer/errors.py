"""Error taxonomy for the provisioning workflow.

Every failure raised by a provisioning step is a ProvisionError subclass.
Fatal errors abort the workflow; non-fatal ones are collected as warnings.
"""

from dataclasses import dataclass


@dataclass
class ProvisionError(Exception):
    """Base error class for provisioning failures."""

    message: str
    step: str = "provision"
    hint: str | None = None
    fatal: bool = True

    def __str__(self) -> str:
        return self.message


@dataclass
class PlatformError(ProvisionError):
    """Unsupported OS, distribution, architecture, or missing privileges."""

    step: str = "platform"
    hint: str | None = "Supported: Linux (apt/dnf/yum/pacman/zypper), macOS, Windows"


@dataclass
class DependencyError(ProvisionError):
    """A required OS package could not be installed."""

    step: str = "dependencies"
    hint: str | None = "Check the package manager output above and your network access"


@dataclass
class DownloadError(ProvisionError):
    """Toolchain archive could not be downloaded."""

    step: str = "toolchain"
    hint: str | None = "The pinned Go version may not exist upstream (see https://go.dev/dl/)"


@dataclass
class BuildError(ProvisionError):
    """External build pipeline failed or produced no binary."""

    step: str = "build"
    hint: str | None = "Inspect the build output; nothing was installed"


@dataclass
class ConfigError(ProvisionError):
    """Configuration could not be written or settings are invalid."""

    step: str = "configure"
    hint: str | None = "Check permissions on the configuration directory"


@dataclass
class MigrationError(ProvisionError):
    """The server's migrate subcommand failed."""

    step: str = "configure"
    hint: str | None = (
        "The database may be partially migrated. Fix the cause, then run "
        "'mobiadd migrate --config <path>' manually"
    )


@dataclass
class AccountError(ProvisionError):
    """Admin account creation failed, usually because it already exists."""

    step: str = "configure"
    hint: str | None = "The admin account probably exists already"
    fatal: bool = False


@dataclass
class ServiceError(ProvisionError):
    """Service registration, start, or activation failed."""

    step: str = "service"
    hint: str | None = "Inspect the service logs"


@dataclass
class VerificationWarning(ProvisionError):
    """Post-install check that did not pass but does not fail the install."""

    step: str = "verify"
    hint: str | None = None
    fatal: bool = False
