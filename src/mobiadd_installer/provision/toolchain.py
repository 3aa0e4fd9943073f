"""Go toolchain installation.

Installs a pinned Go release from go.dev, keeps the toolchain directory on
PATH for this run and for future shells, and installs the Go build tools the
project's build pipeline needs.
"""

from __future__ import annotations

import os
import re
import shutil
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path

import httpx

from ..errors import DependencyError, DownloadError
from ..shared.command import run_command
from ..shared.logging import get_logger
from ..shared.paths import InstallPaths
from .detector import OSKind, PlatformProfile

logger = get_logger(__name__)

DOWNLOAD_URL_TEMPLATE = "https://go.dev/dl/go{version}.{os}-{arch}.{ext}"
GO_VERSION_PATTERN = re.compile(r"go version go(\S+)")

# go install targets for the build pipeline, keyed by executable name
BUILD_TOOLS = {
    "task": "github.com/go-task/task/v3/cmd/task@latest",
    "goreleaser": "github.com/goreleaser/goreleaser/v2@latest",
}


@dataclass
class ToolchainPath:
    """Installed toolchain location."""

    root: Path
    bin_dir: Path
    version: str
    installed: bool = False


def download_url(profile: PlatformProfile, version: str) -> str:
    """Deterministic archive URL for a version on a platform."""
    return DOWNLOAD_URL_TEMPLATE.format(
        version=version,
        os=profile.archive_os,
        arch=profile.architecture.value,
        ext=profile.archive_ext,
    )


def parse_go_version(output: str) -> str | None:
    """Extract '1.23.4' from 'go version go1.23.4 linux/amd64'."""
    match = GO_VERSION_PATTERN.search(output)
    return match.group(1) if match else None


def append_to_process_path(directory: Path | str) -> None:
    """Append a directory to PATH for the rest of this process."""
    entries = os.environ.get("PATH", "").split(os.pathsep)
    if str(directory) not in entries:
        os.environ["PATH"] = os.pathsep.join([*filter(None, entries), str(directory)])


class ToolchainInstaller:
    """Install a pinned Go toolchain."""

    def __init__(
        self,
        profile: PlatformProfile,
        paths: InstallPaths,
        user: str | None = None,
        timeout_seconds: float = 300.0,
    ):
        """Initialize toolchain installer.

        Args:
            profile: Detected platform profile.
            paths: Installation paths (go_root, shell rc files).
            user: Invoking user that owns the shell rc files and GOPATH.
            timeout_seconds: HTTP timeout for the archive download.
        """
        self.profile = profile
        self.paths = paths
        self.user = user
        self.timeout_seconds = timeout_seconds

    @property
    def go_executable(self) -> str:
        name = "go.exe" if self.profile.os_kind == OSKind.WINDOWS else "go"
        bundled = self.paths.go_bin / name
        if bundled.exists():
            return str(bundled)
        return shutil.which("go") or str(bundled)

    def current_version(self) -> str | None:
        """Version of the go found on PATH or in the toolchain root."""
        if not shutil.which("go") and not (self.paths.go_bin).exists():
            return None
        result = run_command([self.go_executable, "version"])
        if not result.ok:
            return None
        return parse_go_version(result.stdout)

    def ensure_toolchain(self, version: str) -> ToolchainPath:
        """Install Go at exactly version unless it is already active.

        Raises:
            DownloadError: if the archive cannot be fetched or unpacked.
        """
        current = self.current_version()
        toolchain = ToolchainPath(self.paths.go_root, self.paths.go_bin, version)

        if current == version:
            logger.info("toolchain_current", version=version)
        else:
            logger.info("toolchain_install", wanted=version, found=current)
            url = download_url(self.profile, version)
            with tempfile.TemporaryDirectory(prefix="mobiadd-go-") as tmp:
                archive = Path(tmp) / url.rsplit("/", 1)[-1]
                self.download(url, archive)
                self.extract(archive)
            toolchain.installed = True

        append_to_process_path(self.paths.go_bin)
        self.persist_path()
        return toolchain

    def download(self, url: str, dest: Path) -> Path:
        """Stream url to dest."""
        logger.info("download_start", url=url)
        try:
            with httpx.Client(follow_redirects=True, timeout=self.timeout_seconds) as client:
                with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(dest, "wb") as f:
                        for chunk in response.iter_bytes():
                            f.write(chunk)
        except httpx.HTTPStatusError as e:
            raise DownloadError(
                f"Failed to download {url} (HTTP {e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            raise DownloadError(
                f"Failed to download {url}: {e}",
                hint="Check network access to go.dev; the pinned version may also not exist",
            ) from e
        return dest

    def extract(self, archive: Path) -> None:
        """Replace the toolchain root with the archive contents.

        The archive holds a top-level 'go/' directory, so it is unpacked into
        the parent of go_root.
        """
        root = self.paths.go_root
        if root.exists():
            shutil.rmtree(root)
        root.parent.mkdir(parents=True, exist_ok=True)

        try:
            if archive.name.endswith(".zip"):
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(root.parent)
            else:
                with tarfile.open(archive, "r:gz") as tf:
                    if hasattr(tarfile, "data_filter"):
                        tf.extractall(root.parent, filter="data")
                    else:
                        tf.extractall(root.parent)
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
            raise DownloadError(
                f"Failed to extract {archive.name}: {e}",
                hint="The download may be corrupt; re-run the installer",
            ) from e

        if root.name != "go" and (root.parent / "go").is_dir():
            (root.parent / "go").rename(root)
        logger.info("toolchain_extracted", root=str(root))

    def persist_path(self) -> list[Path]:
        """Make the toolchain available to future shells.

        Returns:
            Files (or the Windows registry marker) that were changed.
        """
        if self.profile.os_kind == OSKind.WINDOWS:
            return self._persist_windows_path()

        changed = []
        go_bin = str(self.paths.go_bin)
        block = f"\nexport PATH=$PATH:{go_bin}\nexport PATH=$PATH:$({go_bin}/go env GOPATH)/bin\n"
        for rc in self.paths.shell_rc_files:
            existing = rc.read_text(encoding="utf-8") if rc.exists() else ""
            if go_bin in existing:
                continue
            rc.parent.mkdir(parents=True, exist_ok=True)
            with open(rc, "a", encoding="utf-8") as f:
                f.write(block)
            if rc.suffix == ".sh":
                rc.chmod(0o755)
            if self.user:
                run_command(["chown", self.user, rc])
            changed.append(rc)
            logger.info("shell_rc_updated", file=str(rc))
        return changed

    def _persist_windows_path(self) -> list[Path]:
        go_bin = str(self.paths.go_bin)
        result = run_command(
            [
                "powershell",
                "-NoProfile",
                "-Command",
                "[Environment]::GetEnvironmentVariable('Path', 'Machine')",
            ]
        )
        if result.ok and go_bin.lower() in result.stdout.lower():
            return []
        script = (
            "$p = [Environment]::GetEnvironmentVariable('Path', 'Machine'); "
            f"[Environment]::SetEnvironmentVariable('Path', $p + ';{go_bin}', 'Machine')"
        )
        result = run_command(["powershell", "-NoProfile", "-Command", script])
        if not result.ok:
            logger.warning("machine_path_update_failed", detail=result.error_tail(3))
            return []
        return [Path("HKLM:/Environment/Path")]

    def gopath_bin(self) -> Path:
        """GOPATH/bin for the user that runs builds."""
        result = run_command([self.go_executable, "env", "GOPATH"], user=self.user)
        gopath = result.stdout.strip() if result.ok else ""
        if not gopath:
            gopath = str(Path.home() / "go")
        return Path(gopath) / "bin"

    def ensure_build_tools(self) -> list[str]:
        """Install task and goreleaser if absent.

        Returns:
            Names of tools that were installed.

        Raises:
            DependencyError: if a go install fails.
        """
        gopath_bin = self.gopath_bin()
        append_to_process_path(gopath_bin)

        installed = []
        for name, module in BUILD_TOOLS.items():
            if self._tool_present(name):
                logger.info("build_tool_present", tool=name)
                continue
            logger.info("build_tool_install", tool=name, module=module)
            result = run_command([self.go_executable, "install", module], user=self.user)
            if not result.ok:
                raise DependencyError(
                    f"Failed to install {name}:\n{result.error_tail()}",
                    step="toolchain",
                    hint="Check that the Go toolchain works: go version",
                )
            installed.append(name)
        return installed

    def _tool_present(self, name: str) -> bool:
        if not shutil.which(name):
            return False
        if name != "task":
            return True
        # Taskwarrior also installs a 'task' executable
        result = run_command(["task", "--version"])
        output = f"{result.stdout} {result.stderr}".lower()
        return result.ok and ("go-task" in output or "task version" in output)
