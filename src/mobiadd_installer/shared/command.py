"""External command execution.

All provisioning side effects outside the installer's own file writes go
through run_command, so every call is logged the same way.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .logging import get_logger

logger = get_logger(__name__)

# Return code used when the executable itself is missing (shell convention)
COMMAND_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of an external command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def error_tail(self, lines: int = 15) -> str:
        """Last lines of stderr (or stdout when stderr is empty)."""
        text = (self.stderr or self.stdout or "").strip()
        return "\n".join(text.splitlines()[-lines:])


def format_args(args: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(a)) for a in args)


def run_command(
    args: Sequence[str | Path],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    user: str | None = None,
) -> CommandResult:
    """Run a command to completion and capture its output.

    Args:
        args: Command and arguments.
        cwd: Working directory.
        env: Extra environment variables merged over os.environ.
        timeout: Seconds before the command is abandoned.
        user: Run as this user through sudo (used when the installer runs
            as root but Homebrew and builds must run as the invoking user).

    Returns:
        CommandResult. A missing executable yields returncode 127 instead of
        raising, mirroring the shell.
    """
    argv = [str(a) for a in args]
    if user:
        argv = ["sudo", "-u", user, "-H", *argv]

    logger.debug("command_start", command=format_args(argv), cwd=str(cwd) if cwd else None)

    try:
        proc = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            cwd=cwd,
            env=dict(os.environ, **env) if env else None,
            timeout=timeout,
        )
    except FileNotFoundError:
        logger.debug("command_not_found", command=argv[0])
        return CommandResult(argv, COMMAND_NOT_FOUND, "", f"{argv[0]}: command not found")
    except subprocess.TimeoutExpired:
        logger.warning("command_timeout", command=format_args(argv), timeout=timeout)
        return CommandResult(argv, 1, "", f"{argv[0]}: timed out after {timeout}s")

    logger.debug("command_done", command=argv[0], returncode=proc.returncode)
    return CommandResult(argv, proc.returncode, proc.stdout or "", proc.stderr or "")
