"""Shared modules for mobiadd-installer.

- Command execution with consistent logging
- Logging configuration
- Fixed installation paths
"""

from .command import CommandResult, run_command
from .logging import configure_logging, get_logger, step_context
from .paths import (
    APP_NAME,
    SERVICE_LABEL,
    SETTINGS_DIR,
    InstallPaths,
    linux_paths,
    macos_paths,
    windows_paths,
)

__all__ = [
    # Paths
    "APP_NAME",
    "SERVICE_LABEL",
    "SETTINGS_DIR",
    "InstallPaths",
    "linux_paths",
    "macos_paths",
    "windows_paths",
    # Commands
    "CommandResult",
    "run_command",
    # Logging
    "configure_logging",
    "get_logger",
    "step_context",
]
