"""Tests for compilation/executor.py module.

Tests build command composition and the docker CLI executor.
Uses mocked subprocess for all container runtime calls.
"""

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from release_compiler.compilation.errors import (
    ExecutorLaunchError,
    PersistenceError,
    WorkspaceError,
)
from release_compiler.compilation.executor import (
    CONTAINER_COMPILED_DIR,
    CONTAINER_PACKAGES_DIR,
    BuildExecutor,
    DockerExecutor,
    Workspace,
    compose_compile_command,
)
from release_compiler.releases.models import Package, Release


@pytest.fixture
def package() -> Package:
    """Create a package of a release."""
    release = Release(name="test-release", version="1")
    return Package(
        name="ruby-2.5", fingerprint="abc", version="2.5.0", release=release
    )


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    """Create a workspace on disk."""
    ws = Workspace.under(tmp_path / "ws", log_path=tmp_path / "logs" / "abc.log")
    ws.create()
    return ws


def completed(returncode: int = 0) -> MagicMock:
    result = MagicMock()
    result.returncode = returncode
    return result


class TestWorkspace:
    """Tests for Workspace dataclass."""

    def test_layout(self, tmp_path: Path):
        """Views should live below the root."""
        ws = Workspace.under(tmp_path)
        assert ws.sources == tmp_path / "sources"
        assert ws.dependencies == tmp_path / "dependencies"
        assert ws.output == tmp_path / "output"
        assert ws.log_path == tmp_path / "build.log"

    def test_create(self, workspace: Workspace):
        """create should make every directory."""
        assert workspace.sources.is_dir()
        assert workspace.dependencies.is_dir()
        assert workspace.output.is_dir()
        assert workspace.log_path.parent.is_dir()


class TestComposeCompileCommand:
    """Tests for compose_compile_command function."""

    def test_runs_packaging_script(self, package: Package):
        """The command should run the packaging script with bash."""
        cmd = compose_compile_command(package)
        assert cmd[:2] == ["bash", "-c"]
        assert "bash ./packaging" in cmd[2]

    def test_exports_targets(self, package: Package):
        """Compile and install targets should be exported."""
        script = compose_compile_command(package)[2]
        assert f"BOSH_INSTALL_TARGET={CONTAINER_COMPILED_DIR}/ruby-2.5" in script
        assert "BOSH_PACKAGE_NAME=ruby-2.5" in script
        assert "BOSH_PACKAGE_VERSION=2.5.0" in script
        assert script.startswith("set -e")


class TestDockerExecutor:
    """Tests for DockerExecutor class."""

    def test_satisfies_protocol(self):
        """DockerExecutor should be a BuildExecutor."""
        assert isinstance(DockerExecutor(), BuildExecutor)

    def test_create_environment(self):
        """Should start a detached container from the base image."""
        executor = DockerExecutor(docker_binary="podman", name_prefix="relc")
        with patch("subprocess.run", return_value=completed()) as mock_run:
            handle = executor.create_environment("relc-cbase:1")

        assert handle.startswith("relc-")
        cmd = mock_run.call_args[0][0]
        assert cmd[:3] == ["podman", "run", "--detach"]
        assert "relc-cbase:1" in cmd
        assert cmd[-2:] == ["sleep", "infinity"]

    def test_create_environment_failure(self):
        """A failing runtime should raise ExecutorLaunchError."""
        executor = DockerExecutor()
        error = subprocess.CalledProcessError(125, ["docker"], output="no such image")
        with patch("subprocess.run", side_effect=error):
            with pytest.raises(ExecutorLaunchError, match="no such image"):
                executor.create_environment("missing:1")

    def test_missing_binary(self):
        """A missing runtime binary should raise ExecutorLaunchError."""
        executor = DockerExecutor(docker_binary="/nonexistent/docker")
        with patch("subprocess.run", side_effect=FileNotFoundError("docker")):
            with pytest.raises(ExecutorLaunchError):
                executor.create_environment("img")

    def test_run_build_success(self, package: Package, workspace: Workspace):
        """A successful build should copy in, exec, and copy out."""
        executor = DockerExecutor(timeout=600)
        with patch("subprocess.run", return_value=completed(0)) as mock_run:
            result = executor.run_build("env-1", package, workspace)

        assert result.success
        assert result.log_path == str(workspace.log_path)
        commands = [c[0][0] for c in mock_run.call_args_list]
        assert commands[0][:4] == ["docker", "exec", "env-1", "mkdir"]
        assert commands[1][:2] == ["docker", "cp"]
        assert commands[2] == [
            "docker",
            "cp",
            f"{workspace.dependencies}/.",
            f"env-1:{CONTAINER_PACKAGES_DIR}",
        ]
        assert commands[3][:5] == ["docker", "exec", "env-1", "bash", "-c"]
        assert commands[4] == [
            "docker",
            "cp",
            f"env-1:{CONTAINER_COMPILED_DIR}/ruby-2.5/.",
            str(workspace.output),
        ]
        assert mock_run.call_args_list[3][1]["timeout"] == 600

        log = workspace.log_path.read_text()
        assert "# Package: test-release/ruby-2.5" in log
        assert "# Exit code: 0" in log

    def test_run_build_failure_skips_copy_out(self, package: Package, workspace: Workspace):
        """A non-zero exit should be reported without copying output."""
        executor = DockerExecutor()
        results = [completed(0), completed(0), completed(0), completed(3)]
        with patch("subprocess.run", side_effect=results) as mock_run:
            result = executor.run_build("env-1", package, workspace)

        assert result.exit_code == 3
        assert not result.success
        assert mock_run.call_count == 4

    def test_run_build_timeout(self, package: Package, workspace: Workspace):
        """A timed out build should report exit -1 and a message."""
        executor = DockerExecutor(timeout=60)
        results = [
            completed(0),
            completed(0),
            completed(0),
            subprocess.TimeoutExpired(["docker"], 60),
        ]
        with patch("subprocess.run", side_effect=results):
            result = executor.run_build("env-1", package, workspace)

        assert result.exit_code == -1
        assert "timed out" in result.details["error_message"]
        assert "TIMEOUT" in workspace.log_path.read_text()

    def test_copy_in_failure(self, package: Package, workspace: Workspace):
        """Failing to expose the workspace should raise ExecutorLaunchError."""
        executor = DockerExecutor()
        results = [completed(0), subprocess.CalledProcessError(1, ["docker", "cp"])]
        with patch("subprocess.run", side_effect=results):
            with pytest.raises(ExecutorLaunchError) as exc_info:
                executor.run_build("env-1", package, workspace)
        assert exc_info.value.fingerprint == "abc"

    def test_copy_out_failure(self, package: Package, workspace: Workspace):
        """Failing to collect output should raise PersistenceError."""
        executor = DockerExecutor()
        results = [
            completed(0),
            completed(0),
            completed(0),
            completed(0),
            subprocess.CalledProcessError(1, ["docker", "cp"]),
        ]
        with patch("subprocess.run", side_effect=results):
            with pytest.raises(PersistenceError):
                executor.run_build("env-1", package, workspace)

    def test_destroy_environment(self):
        """Should force-remove the container."""
        executor = DockerExecutor()
        with patch("subprocess.run", return_value=completed()) as mock_run:
            executor.destroy_environment("env-1")
        assert mock_run.call_args[0][0] == [
            "docker",
            "rm",
            "--force",
            "--volumes",
            "env-1",
        ]

    def test_destroy_environment_failure_is_logged(self):
        """Teardown failures should not raise."""
        executor = DockerExecutor()
        error = subprocess.CalledProcessError(1, ["docker", "rm"])
        with patch("subprocess.run", side_effect=error):
            executor.destroy_environment("env-1")

    def test_unwritable_log(self, package: Package, tmp_path: Path):
        """A log that cannot be opened should raise WorkspaceError before any command."""
        ws = Workspace.under(tmp_path / "ws", log_path=tmp_path / "missing" / "abc.log")
        executor = DockerExecutor()
        with patch("subprocess.run") as mock_run:
            with pytest.raises(WorkspaceError) as exc_info:
                executor.run_build("env-1", package, ws)
        assert exc_info.value.fingerprint == "abc"
        assert exc_info.value.code == "workspace_error"
        mock_run.assert_not_called()


class TestDockerImages:
    """Tests for DockerExecutor image operations."""

    def test_inspect_image(self):
        """inspect_image should parse the runtime's JSON description."""
        result = completed()
        result.stdout = json.dumps(
            [
                {
                    "Id": "sha256:abc",
                    "Size": 2048,
                    "Created": "2024-05-01T10:00:00Z",
                    "RepoTags": ["relc-cbase:1"],
                }
            ]
        )
        with patch("subprocess.run", return_value=result) as mock_run:
            info = DockerExecutor().inspect_image("relc-cbase:1")

        assert mock_run.call_args[0][0] == ["docker", "image", "inspect", "relc-cbase:1"]
        assert info.id == "sha256:abc"
        assert info.size_bytes == 2048
        assert info.tags == ["relc-cbase:1"]

    def test_inspect_unknown_image(self):
        """An image the runtime does not know should give None."""
        error = subprocess.CalledProcessError(1, ["docker"], output="", stderr="No such image")
        with patch("subprocess.run", side_effect=error):
            assert DockerExecutor().inspect_image("nope:1") is None

    def test_inspect_without_runtime(self):
        """A missing runtime binary should raise ExecutorLaunchError."""
        with patch("subprocess.run", side_effect=FileNotFoundError("docker")):
            with pytest.raises(ExecutorLaunchError):
                DockerExecutor().inspect_image("img")

    def test_provision_environment(self, tmp_path: Path):
        """Provisioning should create build dirs, then copy in and run the script."""
        script = tmp_path / "setup.sh"
        script.write_text("apt-get install -y build-essential\n")
        log_path = tmp_path / "logs" / "create-compilation-image.log"
        with patch("subprocess.run", return_value=completed()) as mock_run:
            DockerExecutor().provision_environment("env-1", script, log_path)

        commands = [c[0][0] for c in mock_run.call_args_list]
        assert commands[0][:4] == ["docker", "exec", "env-1", "mkdir"]
        assert commands[1] == ["docker", "cp", str(script), "env-1:/tmp/setup.sh"]
        assert commands[2] == ["docker", "exec", "env-1", "bash", "/tmp/setup.sh"]
        assert "/tmp/setup.sh" in log_path.read_text()

    def test_provision_failure(self, tmp_path: Path):
        """A failing setup script should raise ExecutorLaunchError."""
        script = tmp_path / "setup.sh"
        script.write_text("exit 1\n")
        results = [completed(), completed(), subprocess.CalledProcessError(1, ["docker"])]
        with patch("subprocess.run", side_effect=results):
            with pytest.raises(ExecutorLaunchError, match="provision"):
                DockerExecutor().provision_environment(
                    "env-1", script, tmp_path / "setup.log"
                )

    def test_commit_environment(self):
        """commit_environment should commit the container under the image name."""
        with patch("subprocess.run", return_value=completed()) as mock_run:
            DockerExecutor().commit_environment("env-1", "relc-cbase:1")
        assert mock_run.call_args[0][0] == ["docker", "commit", "env-1", "relc-cbase:1"]
