"""Install command for provisioning the Mobiadd server.

This module renders the default `mobiadd-install` flow: it builds the
provisioning context, drives the Provisioner, echoes per-step progress and
prints the final summary.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import click
from rich.console import Console

from ..config import InstallerSettings
from ..errors import ProvisionError
from ..provision import (
    PlatformProfile,
    ProvisioningContext,
    ProvisionResult,
    Provisioner,
    StepEvent,
    build_summary,
    default_paths,
)
from ..shared.paths import InstallPaths

console = Console(stderr=True)


def echo_event(event: StepEvent) -> None:
    """Print one progress event."""
    if event.kind == "start":
        click.echo(f"\n📋 Step {event.index}/{event.total}: {event.title}\n")
    elif event.kind == "warn":
        click.echo(f"  ⚠ {event.message}")
    elif event.kind == "skip":
        click.echo(f"  - {event.message}")
    else:
        click.echo(f"  ✓ {event.message}")


def print_error(error: ProvisionError, step: str | None = None) -> None:
    """Print a fatal error panel with its remedial hint."""
    console.print(f"[red]Error:[/red] {error.message}")
    if error.hint:
        console.print(f"[dim]Hint:[/dim] {error.hint}")
    if step:
        console.print(f"[dim]Failed step:[/dim] {step}")


def print_summary(result: ProvisionResult) -> None:
    ctx = result.context
    click.echo("\n" + "=" * 50)
    click.echo("✓ Installation complete!")
    if result.warnings:
        click.echo(f"  ({len(result.warnings)} warning(s), see above)")
    click.echo()
    rows = build_summary(ctx.paths, ctx.settings.port, ctx.admin)
    width = max(len(label) for label, _ in rows)
    for label, value in rows:
        click.echo(f"  {label + ':':<{width + 1}} {value}")
    if ctx.settings.skip_service:
        click.echo(f"\n  Start manually: {ctx.paths.binary} server --config {ctx.paths.config_file}")
    click.echo("\n  ⚠ Change the default admin password after first login!")
    click.echo("=" * 50 + "\n")


def run_install(
    profile: PlatformProfile,
    settings: InstallerSettings,
    paths: InstallPaths | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ProvisionResult:
    """Execute the full provisioning flow and render its progress."""
    click.echo("\n🚀 Mobiadd Installer\n")
    click.echo(f"  Platform: {profile.display_name}")
    click.echo(f"  Database: {settings.dialect}, port {settings.port}")

    context = ProvisioningContext(
        profile=profile,
        paths=paths or default_paths(profile),
        settings=settings,
    )
    provisioner = Provisioner(context, sleep=sleep, on_event=echo_event)
    result = provisioner.run()

    if not result.success:
        click.echo(f"  ✗ {result.failed_step} failed", err=True)
        print_error(result.error, result.failed_step)
        return result

    print_summary(result)
    return result
