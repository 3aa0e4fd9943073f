"""CLI commands for mobiadd-installer."""

from .install import echo_event, print_error, run_install

__all__ = ["echo_event", "print_error", "run_install"]
