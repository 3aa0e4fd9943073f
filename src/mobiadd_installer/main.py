"""CLI main entry point."""

import json
import sys

import click

__version__ = "1.0.0"  # Defined here to avoid circular import

from .commands import print_error, run_install
from .config import DIALECTS, InstallerSettings, load_settings
from .errors import ProvisionError
from .provision import InstallStateManager, PlatformDetector, PlatformProfile, default_paths
from .shared.logging import configure_logging, get_logger, level_for_verbosity

logger = get_logger(__name__)


def _detect_or_exit() -> PlatformProfile:
    try:
        return PlatformDetector().detect()
    except ProvisionError as e:
        print_error(e, e.step)
        sys.exit(1)


def _settings_or_exit(profile: PlatformProfile, overrides: dict) -> InstallerSettings:
    try:
        return load_settings(profile.os_kind, overrides)
    except ProvisionError as e:
        print_error(e, e.step)
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-vv for debug)")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    help="Write JSON logs to this file instead of stderr",
)
@click.option("--port", type=int, default=None, help="Server port (default per platform)")
@click.option(
    "--dialect",
    type=click.Choice(DIALECTS),
    default=None,
    help="Database dialect (default per platform)",
)
@click.option("--skip-service", is_flag=True, help="Do not register or start the OS service")
@click.option(
    "--grace-seconds",
    type=float,
    default=None,
    help="Wait before verifying the service (default: 5)",
)
@click.version_option(__version__, prog_name="mobiadd-install")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: int,
    log_file: str | None,
    port: int | None,
    dialect: str | None,
    skip_service: bool,
    grace_seconds: float | None,
) -> None:
    """Build, configure and run the Mobiadd server on this host.

    Without a subcommand, runs the full installation. Every step checks
    before it acts, so re-running after a failure resumes where it stopped.

    Examples:

        # Install with the platform defaults
        sudo mobiadd-install

        # Use SQLite on port 8080
        sudo mobiadd-install --dialect sqlite --port 8080

        # Inspect an existing installation
        mobiadd-install status
    """
    configure_logging(level_for_verbosity(verbose), log_file)
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {
        "port": port,
        "dialect": dialect,
        "skip_service": skip_service or None,
        "grace_seconds": grace_seconds,
    }

    if ctx.invoked_subcommand is not None:
        return  # Subcommand handles it

    profile = _detect_or_exit()
    settings = _settings_or_exit(profile, ctx.obj["overrides"])
    try:
        result = run_install(profile, settings)
    except KeyboardInterrupt:
        click.echo("\n✗ Interrupted. Re-run the installer to resume.", err=True)
        sys.exit(130)

    if not result.success:
        logger.error("install_failed", step=result.failed_step)
        sys.exit(1)


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def detect(json_output: bool) -> None:
    """Show the detected platform profile."""
    from .formatters import print_profile, profile_to_dict

    profile = _detect_or_exit()
    if json_output:
        click.echo(json.dumps(profile_to_dict(profile), indent=2))
    else:
        print_profile(profile)
    if not profile.supported:
        sys.exit(1)


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def status(json_output: bool) -> None:
    """Show installation state and the suggested next action."""
    from .formatters import print_state, state_to_dict

    profile = _detect_or_exit()
    paths = default_paths(profile)
    state = InstallStateManager(profile, paths).detect_state()
    if json_output:
        click.echo(json.dumps(state_to_dict(state, paths), indent=2))
    else:
        print_state(state, paths)


@cli.group()
def settings() -> None:
    """Inspect installer settings."""
    pass


@settings.command("show")
@click.pass_context
def settings_show(ctx: click.Context) -> None:
    """Show effective settings and where each value came from."""
    from .formatters import print_settings

    profile = _detect_or_exit()
    print_settings(_settings_or_exit(profile, ctx.obj["overrides"]))


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
