"""Build orchestration.

Clones the server project, runs its own dependency and release pipeline, and
installs the produced binary.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import BuildError
from ..shared.command import run_command
from ..shared.logging import get_logger
from ..shared.paths import InstallPaths
from .detector import OSKind, PlatformProfile

logger = get_logger(__name__)

PROJECT_BINARY = "semaphore"
DIST_DIR = "dist"

DEPS_COMMAND = ["task", "deps"]
RELEASE_COMMAND = ["goreleaser", "release", "--snapshot", "--clean", "--skip=sign"]


@contextmanager
def scoped_temp_dir(prefix: str = "mobiadd-build-", owner: str | None = None) -> Iterator[Path]:
    """Temporary directory removed on every exit path, including Ctrl-C."""
    path = Path(tempfile.mkdtemp(prefix=prefix))
    logger.debug("temp_dir_created", path=str(path))
    try:
        if owner:
            run_command(["chown", owner, path])
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        logger.debug("temp_dir_removed", path=str(path))


class BuildOrchestrator:
    """Build the server binary from source and install it."""

    def __init__(
        self,
        profile: PlatformProfile,
        paths: InstallPaths,
        repo_url: str,
        user: str | None = None,
    ):
        """Initialize orchestrator.

        Args:
            profile: Detected platform profile.
            paths: Installation paths (binary target).
            repo_url: Git URL of the server project.
            user: Run clone and build as this user instead of root.
        """
        self.profile = profile
        self.paths = paths
        self.repo_url = repo_url
        self.user = user

    @property
    def binary_name(self) -> str:
        if self.profile.os_kind == OSKind.WINDOWS:
            return f"{PROJECT_BINARY}.exe"
        return PROJECT_BINARY

    def build(self, before_install: Callable[[], None] | None = None) -> Path:
        """Clone, build and install. Returns the installed binary path.

        Args:
            before_install: Called once the new binary exists, right before it
                replaces the installed one.

        Raises:
            BuildError: if any pipeline command fails or no binary is produced.
        """
        with scoped_temp_dir(owner=self.user) as workdir:
            source = workdir / "src"
            self._run("clone", ["git", "clone", "--depth", "1", self.repo_url, source], workdir)
            self._run("dependencies", DEPS_COMMAND, source)
            self._run("release", RELEASE_COMMAND, source)

            binary = self.locate_binary(source / DIST_DIR)
            if binary is None:
                raise BuildError(f"Build failed. Binary not found in {DIST_DIR}/.")
            if before_install is not None:
                before_install()
            return self.install_binary(binary)

    def locate_binary(self, dist: Path) -> Path | None:
        """Find the built binary for this platform.

        Looks in goreleaser's per-target directories first
        (dist/semaphore_linux_amd64_v1/semaphore), then anywhere under dist.
        """
        if not dist.is_dir():
            return None

        pattern = f"{PROJECT_BINARY}_{self.profile.archive_os}_{self.profile.go_arch}*"
        for target_dir in sorted(dist.glob(pattern)):
            candidate = target_dir / self.binary_name
            if target_dir.is_dir() and candidate.is_file():
                logger.info("binary_found", path=str(candidate))
                return candidate

        for candidate in sorted(dist.rglob(self.binary_name)):
            if candidate.is_file():
                logger.info("binary_found_fallback", path=str(candidate))
                return candidate
        return None

    def install_binary(self, source: Path) -> Path:
        """Install the binary at the fixed path and mark it executable.

        The new file is staged next to the target and renamed over it, so a
        binary that the running service is executing can be replaced.
        """
        target = self.paths.binary
        staged: Path | None = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix=f".{target.name}-", dir=target.parent)
            os.close(fd)
            staged = Path(name)
            shutil.copy2(source, staged)
            if os.name != "nt":
                staged.chmod(0o755)
            os.replace(staged, target)
        except OSError as e:
            if staged is not None:
                staged.unlink(missing_ok=True)
            raise BuildError(
                f"Cannot install binary to {target}: {e}",
                hint="Stop any running instance of the service and retry",
            ) from e
        logger.info("binary_installed", path=str(target))
        return target

    def _run(self, stage: str, args: list, cwd: Path) -> None:
        logger.info("build_stage", stage=stage)
        result = run_command(args, cwd=cwd, user=self.user)
        if not result.ok:
            raise BuildError(f"Build stage '{stage}' failed:\n{result.error_tail()}")
