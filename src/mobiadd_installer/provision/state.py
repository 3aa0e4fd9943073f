"""Installation state detection.

Reports what an earlier run left on the host so the operator can tell a
fresh host from a partial or complete installation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..shared.paths import InstallPaths
from .detector import PlatformProfile
from .service import ServiceRegistrar, registrar_for


class InstallAction(Enum):
    """Suggested next step for the detected state."""

    FRESH_INSTALL = "fresh_install"  # Nothing installed
    RESUME = "resume"  # Partial installation, re-run the installer
    START_SERVICE = "start_service"  # Installed, service not running
    UP_TO_DATE = "up_to_date"  # Installed and running


@dataclass
class InstallState:
    """Current state of the installation."""

    has_binary: bool = False
    has_config: bool = False
    has_service: bool = False
    service_active: bool = False
    suggested_action: InstallAction = InstallAction.FRESH_INSTALL


class InstallStateManager:
    """Inspect an installation without changing it."""

    def __init__(
        self,
        profile: PlatformProfile,
        paths: InstallPaths,
        registrar: ServiceRegistrar | None = None,
    ):
        """Initialize state manager.

        Args:
            profile: Detected platform profile.
            paths: Installation paths.
            registrar: Service registrar (default: the profile's).
        """
        self.profile = profile
        self.paths = paths
        self.registrar = registrar or registrar_for(profile, paths)

    def detect_state(self) -> InstallState:
        """Detect current installation state.

        Returns:
            InstallState with a suggested action.
        """
        state = InstallState()
        state.has_binary = self.paths.binary.exists()
        state.has_config = self.paths.config_file.exists()
        state.has_service = self.registrar.exists()
        state.service_active = state.has_service and self.registrar.is_active()

        if not (state.has_binary or state.has_config or state.has_service):
            state.suggested_action = InstallAction.FRESH_INSTALL
        elif not (state.has_binary and state.has_config and state.has_service):
            state.suggested_action = InstallAction.RESUME
        elif not state.service_active:
            state.suggested_action = InstallAction.START_SERVICE
        else:
            state.suggested_action = InstallAction.UP_TO_DATE
        return state
