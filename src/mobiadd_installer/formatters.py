"""CLI output formatting helpers.

Formatters turn profiles, installation state and settings into plain dicts
for JSON output, or echo them as aligned text.
"""

from typing import Any

import click
import yaml

from .config import InstallerSettings, get_settings_path
from .provision import InstallState, PlatformProfile
from .shared.paths import InstallPaths


def profile_to_dict(profile: PlatformProfile) -> dict[str, Any]:
    """Flatten a profile for JSON output.

    Args:
        profile: Detected platform profile

    Returns:
        Dict of plain values
    """
    return {
        "os": profile.os_kind.value,
        "distro": profile.distro_id,
        "distro_version": profile.distro_version,
        "distro_family": profile.distro_family,
        "architecture": profile.architecture.value,
        "go_arch": profile.go_arch,
        "package_manager": profile.package_manager.value,
        "service_manager": profile.service_manager.value,
        "archive": f"{profile.archive_os}-{profile.go_arch}.{profile.archive_ext}",
        "supported": profile.supported,
    }


def print_profile(profile: PlatformProfile) -> None:
    """Print a detected platform profile.

    Args:
        profile: Detected platform profile
    """
    click.echo(f"Platform: {profile.display_name}")
    click.echo(f"  OS:              {profile.os_kind.value}")
    if profile.distro_id:
        family = f" ({profile.distro_family} family)" if profile.distro_family else ""
        click.echo(f"  Distribution:    {profile.distro_id}{family}")
    click.echo(f"  Architecture:    {profile.architecture.value}")
    click.echo(f"  Package manager: {profile.package_manager.value}")
    click.echo(f"  Service manager: {profile.service_manager.value}")
    click.echo(f"  Go archive:      {profile.archive_os}-{profile.go_arch}.{profile.archive_ext}")
    if not profile.supported:
        click.echo("\n  ✗ No supported package manager for this distribution")


def state_to_dict(state: InstallState, paths: InstallPaths) -> dict[str, Any]:
    return {
        "binary": {"path": str(paths.binary), "present": state.has_binary},
        "config": {"path": str(paths.config_file), "present": state.has_config},
        "service": {"registered": state.has_service, "active": state.service_active},
        "suggested_action": state.suggested_action.value,
    }


def _mark(ok: bool) -> str:
    return "✓" if ok else "✗"


def print_state(state: InstallState, paths: InstallPaths) -> None:
    """Print installation state and the suggested next action.

    Args:
        state: Detected installation state
        paths: Installation paths the state refers to
    """
    click.echo("Installation status:")
    click.echo(f"  {_mark(state.has_binary)} Binary:  {paths.binary}")
    click.echo(f"  {_mark(state.has_config)} Config:  {paths.config_file}")
    click.echo(f"  {_mark(state.has_service)} Service: registered")
    click.echo(f"  {_mark(state.service_active)} Service: active")
    click.echo(f"\nSuggested action: {state.suggested_action.value.replace('_', ' ')}")


def print_settings(settings: InstallerSettings) -> None:
    """Print effective settings as YAML with their sources.

    Args:
        settings: Resolved installer settings
    """
    click.echo("Installer settings")
    click.echo(f"File: {get_settings_path()}\n")
    for line in yaml.dump(settings.as_dict(), default_flow_style=False, sort_keys=False).splitlines():
        key = line.split(":", 1)[0]
        click.echo(f"{line:<50} # {settings.get_source(key)}")
