"""Installer settings management.

Resolves the options that tune a provisioning run. Values can come from
~/.mobiadd/installer.yaml, environment variables, or command-line flags;
anything unset falls back to the per-platform defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .provision.configuration import DIALECTS
from .provision.detector import OSKind
from .shared.paths import SETTINGS_DIR

DEFAULT_REPO_URL = "https://github.com/semaphoreui/semaphore.git"
DEFAULT_GRACE_SECONDS = 5.0

# Defaults per OS. Settings file, environment and flags override any value.
PLATFORM_DEFAULTS: dict[OSKind, dict[str, Any]] = {
    OSKind.LINUX: {"port": 4000, "dialect": "mysql", "go_version": "1.23.4"},
    OSKind.MACOS: {"port": 4000, "dialect": "mysql", "go_version": "1.25.4"},
    OSKind.WINDOWS: {"port": 3000, "dialect": "sqlite", "go_version": "1.23.4"},
}

# Environment variable mappings
ENV_VARS = {
    "port": "MOBIADD_PORT",
    "dialect": "MOBIADD_DIALECT",
    "skip_service": "MOBIADD_SKIP_SERVICE",
    "go_version": "MOBIADD_GO_VERSION",
    "repo_url": "MOBIADD_REPO_URL",
}

SETTING_KEYS = ("port", "dialect", "skip_service", "go_version", "repo_url", "grace_seconds")


@dataclass
class InstallerSettings:
    """Effective settings for one provisioning run."""

    port: int = 4000
    dialect: str = "mysql"
    skip_service: bool = False
    go_version: str = "1.23.4"
    repo_url: str = DEFAULT_REPO_URL
    grace_seconds: float = DEFAULT_GRACE_SECONDS

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict)

    def get_source(self, key: str) -> str:
        """Get the source of a settings value."""
        return self._sources.get(key, "default")

    def as_dict(self) -> dict[str, Any]:
        return {key: getattr(self, key) for key in SETTING_KEYS}


def get_settings_path() -> Path:
    """Get the installer settings file path.

    Returns:
        Path to ~/.mobiadd/installer.yaml
    """
    return SETTINGS_DIR / "installer.yaml"


def _coerce(key: str, value: Any, source: str) -> Any:
    """Validate and convert a raw settings value."""
    try:
        if key == "port":
            port = int(value)
            if not 0 < port < 65536:
                raise ValueError(f"port out of range: {port}")
            return port
        if key == "grace_seconds":
            seconds = float(value)
            if seconds < 0:
                raise ValueError("grace_seconds must not be negative")
            return seconds
        if key == "skip_service":
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in ("1", "true", "yes", "on"):
                return True
            if text in ("0", "false", "no", "off", ""):
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if key == "dialect":
            dialect = str(value).strip().lower()
            if dialect not in DIALECTS:
                raise ValueError(f"dialect must be one of {', '.join(DIALECTS)}")
            return dialect
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"Invalid setting '{key}' from {source}: {e}",
            step="settings",
            hint=f"Fix the value in {get_settings_path()} or the environment",
        ) from e


def load_settings(os_kind: OSKind, overrides: dict[str, Any] | None = None) -> InstallerSettings:
    """Load installer settings.

    Precedence (highest to lowest):
    1. Command-line overrides (None values are ignored)
    2. Environment variables
    3. Settings file (~/.mobiadd/installer.yaml)
    4. Per-platform defaults

    Args:
        os_kind: Detected OS, selects the default row.
        overrides: Values given on the command line.

    Returns:
        InstallerSettings with values and sources

    Raises:
        ConfigError: if any source holds an invalid value.
    """
    settings = InstallerSettings(**PLATFORM_DEFAULTS[os_kind])
    sources: dict[str, str] = {key: "default" for key in SETTING_KEYS}

    settings_path = get_settings_path()
    if settings_path.exists():
        try:
            with open(settings_path) as f:
                file_settings = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Cannot parse {settings_path}: {e}",
                step="settings",
                hint="Fix or remove the settings file",
            ) from e
        if not isinstance(file_settings, dict):
            raise ConfigError(f"{settings_path} must contain a mapping", step="settings")

        for key in SETTING_KEYS:
            if key in file_settings:
                setattr(settings, key, _coerce(key, file_settings[key], "settings file"))
                sources[key] = "settings file"

    for key, env_var in ENV_VARS.items():
        raw = os.environ.get(env_var)
        if raw:
            setattr(settings, key, _coerce(key, raw, f"${env_var}"))
            sources[key] = "environment"

    for key, value in (overrides or {}).items():
        if value is None or key not in SETTING_KEYS:
            continue
        setattr(settings, key, _coerce(key, value, "command line"))
        sources[key] = "command line"

    settings._sources = sources
    return settings
