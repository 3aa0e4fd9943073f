"""Unit tests for build orchestration."""

import os
import shutil
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from mobiadd_installer.errors import BuildError
from mobiadd_installer.provision import BuildOrchestrator, scoped_temp_dir
from mobiadd_installer.provision.build import RELEASE_COMMAND

REPO_URL = "https://example.invalid/semaphore.git"


@pytest.mark.cli_unit
class TestScopedTempDir:
    """Tests for scoped_temp_dir."""

    def test_removed_on_success(self):
        with scoped_temp_dir() as path:
            (path / "file").write_text("x")
            assert path.is_dir()
        assert not path.exists()

    def test_removed_on_error(self):
        with pytest.raises(RuntimeError):
            with scoped_temp_dir() as path:
                raise RuntimeError("boom")
        assert not path.exists()

    def test_removed_on_keyboard_interrupt(self):
        with pytest.raises(KeyboardInterrupt):
            with scoped_temp_dir() as path:
                raise KeyboardInterrupt
        assert not path.exists()


@pytest.mark.cli_unit
class TestBuildOrchestrator:
    """Tests for BuildOrchestrator.build."""

    def test_build_installs_binary(self, linux_profile, install_paths, fake_host):
        binary = BuildOrchestrator(linux_profile, install_paths, REPO_URL).build()

        assert binary == install_paths.binary
        assert binary.is_file()
        assert binary.stat().st_mode & 0o777 == 0o755

    def test_pipeline_order(self, linux_profile, install_paths, fake_host):
        BuildOrchestrator(linux_profile, install_paths, REPO_URL).build()

        clone = fake_host.find("git", "clone")[0]
        assert clone[2:5] == ["--depth", "1", REPO_URL]
        names = [Path(argv[0]).name for argv in fake_host.calls]
        assert names.index("git") < names.index("task") < names.index("goreleaser")
        assert fake_host.find("goreleaser")[0] == RELEASE_COMMAND

    def test_workdir_removed_after_build(self, linux_profile, install_paths, fake_host):
        BuildOrchestrator(linux_profile, install_paths, REPO_URL).build()

        workdir = Path(fake_host.find("git", "clone")[0][-1]).parent
        assert not workdir.exists()

    def test_missing_binary_installs_nothing(self, linux_profile, install_paths, fake_host):
        fake_host.build_produces_binary = False

        with pytest.raises(BuildError, match="Binary not found"):
            BuildOrchestrator(linux_profile, install_paths, REPO_URL).build()

        assert not install_paths.binary.exists()

    def test_stage_failure(self, linux_profile, install_paths, fake_host):
        fake_host._cmd_task = lambda argv, cwd: fake_host._result(argv, 201, "", "deps failed")

        with pytest.raises(BuildError) as exc_info:
            BuildOrchestrator(linux_profile, install_paths, REPO_URL).build()

        assert "dependencies" in exc_info.value.message
        assert "deps failed" in exc_info.value.message
        assert fake_host.count("goreleaser") == 0


@pytest.mark.cli_unit
class TestLocateBinary:
    """Tests for locating goreleaser output."""

    def test_prefers_target_directory(self, linux_profile, install_paths, tmp_path):
        dist = tmp_path / "dist"
        (dist / "semaphore_darwin_arm64").mkdir(parents=True)
        (dist / "semaphore_darwin_arm64" / "semaphore").write_text("")
        (dist / "semaphore_linux_amd64_v1").mkdir()
        (dist / "semaphore_linux_amd64_v1" / "semaphore").write_text("")

        found = BuildOrchestrator(linux_profile, install_paths, REPO_URL).locate_binary(dist)

        assert found == dist / "semaphore_linux_amd64_v1" / "semaphore"

    def test_falls_back_to_search(self, linux_profile, install_paths, tmp_path):
        dist = tmp_path / "dist"
        (dist / "custom").mkdir(parents=True)
        (dist / "custom" / "semaphore").write_text("")

        found = BuildOrchestrator(linux_profile, install_paths, REPO_URL).locate_binary(dist)

        assert found == dist / "custom" / "semaphore"

    def test_windows_binary_name(self, windows_profile, install_paths, tmp_path):
        dist = tmp_path / "dist"
        (dist / "semaphore_windows_amd64_v1").mkdir(parents=True)
        (dist / "semaphore_windows_amd64_v1" / "semaphore.exe").write_text("")

        found = BuildOrchestrator(windows_profile, install_paths, REPO_URL).locate_binary(dist)

        assert found.name == "semaphore.exe"

    def test_missing_dist(self, linux_profile, install_paths, tmp_path):
        orchestrator = BuildOrchestrator(linux_profile, install_paths, REPO_URL)
        assert orchestrator.locate_binary(tmp_path / "dist") is None


@pytest.mark.cli_unit
class TestInstallBinary:
    """Tests for BuildOrchestrator.install_binary."""

    def make_source(self, tmp_path, content):
        source = tmp_path / "build" / "semaphore"
        source.parent.mkdir(parents=True, exist_ok=True)
        source.write_text(content)
        return source

    def test_replaces_existing_binary(self, linux_profile, install_paths, tmp_path):
        install_paths.binary.parent.mkdir(parents=True)
        install_paths.binary.write_text("old")
        orchestrator = BuildOrchestrator(linux_profile, install_paths, REPO_URL)

        orchestrator.install_binary(self.make_source(tmp_path, "new"))

        assert install_paths.binary.read_text() == "new"
        assert install_paths.binary.stat().st_mode & 0o777 == 0o755
        assert list(install_paths.binary.parent.iterdir()) == [install_paths.binary]

    @pytest.mark.skipif(
        os.name != "posix" or shutil.which("sleep") is None, reason="needs a POSIX sleep"
    )
    def test_replaces_binary_of_running_process(self, linux_profile, install_paths, tmp_path):
        install_paths.binary.parent.mkdir(parents=True)
        shutil.copy2(shutil.which("sleep"), install_paths.binary)
        install_paths.binary.chmod(0o755)
        running = subprocess.Popen([str(install_paths.binary), "30"])
        try:
            orchestrator = BuildOrchestrator(linux_profile, install_paths, REPO_URL)

            orchestrator.install_binary(self.make_source(tmp_path, "#!/bin/sh\n"))

            assert install_paths.binary.read_text() == "#!/bin/sh\n"
            assert running.poll() is None
        finally:
            running.kill()
            running.wait()

    def test_failed_install_leaves_no_staged_file(self, linux_profile, install_paths, tmp_path):
        orchestrator = BuildOrchestrator(linux_profile, install_paths, REPO_URL)

        with patch("mobiadd_installer.provision.build.os.replace", side_effect=OSError("busy")):
            with pytest.raises(BuildError, match="busy"):
                orchestrator.install_binary(self.make_source(tmp_path, "new"))

        assert list(install_paths.binary.parent.iterdir()) == []


@pytest.mark.cli_unit
class TestBeforeInstallHook:
    """Tests for the hook run before the binary is replaced."""

    def test_called_before_binary_replaced(self, linux_profile, install_paths, fake_host):
        seen = []
        orchestrator = BuildOrchestrator(linux_profile, install_paths, REPO_URL)

        orchestrator.build(before_install=lambda: seen.append(install_paths.binary.exists()))

        assert seen == [False]
        assert install_paths.binary.is_file()

    def test_not_called_without_binary(self, linux_profile, install_paths, fake_host):
        fake_host.build_produces_binary = False
        seen = []

        with pytest.raises(BuildError):
            BuildOrchestrator(linux_profile, install_paths, REPO_URL).build(
                before_install=lambda: seen.append(True)
            )

        assert seen == []
