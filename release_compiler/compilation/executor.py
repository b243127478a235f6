"""Build executors running package build procedures in isolation.

This module handles:
- The BuildExecutor protocol (create / run / destroy lifecycle)
- Composing the in-environment build command for a package
- A container executor driving the docker (or podman) CLI
- Capturing build output to a per-package log file
- Image lookup and commit for creating the compilation base image
"""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, TYPE_CHECKING, Protocol, runtime_checkable

from release_compiler.compilation.errors import (
    ExecutorLaunchError,
    PersistenceError,
    WorkspaceError,
)
from release_compiler.types import ExecutionResult, ImageInfo

if TYPE_CHECKING:
    from release_compiler.releases.models import Package

logger = logging.getLogger(__name__)

# Paths inside the build environment
CONTAINER_SOURCE_DIR = "/var/vcap/source"
CONTAINER_PACKAGES_DIR = "/var/vcap/packages"
CONTAINER_COMPILED_DIR = "/var/vcap/packages-compiled"

PACKAGING_SCRIPT = "packaging"

# Timeout for environment bookkeeping commands (create, copy, remove)
CONTROL_TIMEOUT = 300


@dataclass
class Workspace:
    """Host-side scratch area of one package build.

    Attributes:
        root: Workspace root directory.
        sources: The package's unpacked sources.
        dependencies: Compiled dependencies, one sub-directory per name.
        output: Destination for the compiled package.
        log_path: Build log file.
    """

    root: Path
    sources: Path
    dependencies: Path
    output: Path
    log_path: Path

    @classmethod
    def under(cls, root: Path, log_path: Path | None = None) -> Workspace:
        return cls(
            root=root,
            sources=root / "sources",
            dependencies=root / "dependencies",
            output=root / "output",
            log_path=log_path or root / "build.log",
        )

    def create(self) -> None:
        """Create the workspace directories."""
        for path in (self.sources, self.dependencies, self.output):
            path.mkdir(parents=True, exist_ok=True)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)


@runtime_checkable
class BuildExecutor(Protocol):
    """Lifecycle of a disposable build environment."""

    def create_environment(self, base_image: str) -> str:
        """Create an environment from ``base_image`` and return its handle."""
        ...

    def run_build(
        self, handle: str, package: Package, workspace: Workspace
    ) -> ExecutionResult:
        """Run the package build procedure; on success fill ``workspace.output``."""
        ...

    def destroy_environment(self, handle: str) -> None:
        """Tear the environment down."""
        ...


def compose_compile_command(package: Package) -> list[str]:
    """Compose the command running a package's build procedure.

    The release-defined ``packaging`` script runs from the package sources
    with the compile and install targets exported, the way release
    packaging scripts expect.

    Args:
        package: Package to build.

    Returns:
        Command as list of strings to run inside the environment.
    """
    compile_target = f"{CONTAINER_SOURCE_DIR}/{package.name}"
    install_target = f"{CONTAINER_COMPILED_DIR}/{package.name}"
    lines = [
        "set -e",
        f"export BOSH_COMPILE_TARGET={shlex.quote(compile_target)}",
        f"export BOSH_INSTALL_TARGET={shlex.quote(install_target)}",
        f"export BOSH_PACKAGE_NAME={shlex.quote(package.name)}",
        f"export BOSH_PACKAGE_VERSION={shlex.quote(package.version)}",
        'mkdir -p "$BOSH_INSTALL_TARGET"',
        'cd "$BOSH_COMPILE_TARGET"',
        f"bash ./{PACKAGING_SCRIPT}",
    ]
    return ["bash", "-c", "\n".join(lines)]


class DockerExecutor:
    """Build executor backed by a container runtime CLI.

    An environment is a detached container started from the base image.
    Sources and compiled dependencies are copied in, the build procedure
    runs through ``exec`` and the install target is copied back out.
    """

    def __init__(
        self,
        docker_binary: str = "docker",
        timeout: int | None = None,
        name_prefix: str = "release-compiler",
    ) -> None:
        self.docker_binary = docker_binary
        self.timeout = timeout
        self.name_prefix = name_prefix

    def _control(self, args: list[str], log_file: IO[str] | None = None) -> None:
        cmd = [self.docker_binary, *args]
        logger.debug("Running: %s", shlex.join(cmd))
        if log_file is not None:
            log_file.write(f"# {shlex.join(cmd)}\n")
            log_file.flush()
        subprocess.run(
            cmd,
            stdout=log_file if log_file is not None else subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=CONTROL_TIMEOUT,
            check=True,
        )

    def _capture(self, args: list[str]) -> str:
        cmd = [self.docker_binary, *args]
        logger.debug("Running: %s", shlex.join(cmd))
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=CONTROL_TIMEOUT,
            check=True,
        )
        return result.stdout

    def create_environment(self, base_image: str) -> str:
        """Start a detached container from ``base_image``.

        Raises:
            ExecutorLaunchError: If the container cannot be started.
        """
        name = f"{self.name_prefix}-{uuid.uuid4().hex[:12]}"
        try:
            self._control(
                ["run", "--detach", "--name", name, base_image, "sleep", "infinity"]
            )
        except subprocess.CalledProcessError as e:
            raise ExecutorLaunchError(
                f"Failed to start build environment from {base_image}: {e.stdout}"
            ) from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ExecutorLaunchError(
                f"Failed to start build environment from {base_image}: {e}"
            ) from e
        logger.debug("Started build environment %s from %s", name, base_image)
        return name

    def run_build(
        self, handle: str, package: Package, workspace: Workspace
    ) -> ExecutionResult:
        """Run the build procedure of ``package`` inside container ``handle``.

        Raises:
            WorkspaceError: If the build log cannot be opened.
            ExecutorLaunchError: If the workspace cannot be exposed to the
                container or the build cannot be started.
            PersistenceError: If the compiled output cannot be copied back.
        """
        source_target = f"{CONTAINER_SOURCE_DIR}/{package.name}"
        install_target = f"{CONTAINER_COMPILED_DIR}/{package.name}"
        cmd = [self.docker_binary, "exec", handle, *compose_compile_command(package)]
        cmd_str = shlex.join(cmd)

        started_at = datetime.now(timezone.utc)
        try:
            log_file = workspace.log_path.open("w")
        except OSError as e:
            raise WorkspaceError(
                f"Cannot open build log {workspace.log_path}: {e}",
                fingerprint=package.fingerprint,
            ) from e
        with log_file:
            log_file.write(f"# Package: {package.qualified_name}\n")
            log_file.write(f"# Fingerprint: {package.fingerprint}\n")
            log_file.write(f"# Environment: {handle}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            try:
                self._control(
                    [
                        "exec",
                        handle,
                        "mkdir",
                        "-p",
                        source_target,
                        CONTAINER_PACKAGES_DIR,
                        CONTAINER_COMPILED_DIR,
                    ],
                    log_file,
                )
                self._control(
                    ["cp", f"{workspace.sources}/.", f"{handle}:{source_target}"],
                    log_file,
                )
                self._control(
                    [
                        "cp",
                        f"{workspace.dependencies}/.",
                        f"{handle}:{CONTAINER_PACKAGES_DIR}",
                    ],
                    log_file,
                )
            except (
                OSError,
                subprocess.CalledProcessError,
                subprocess.TimeoutExpired,
            ) as e:
                raise ExecutorLaunchError(
                    f"Failed to expose workspace to {handle}: {e}",
                    fingerprint=package.fingerprint,
                ) from e

            logger.info("Executing build of %s: %s", package.qualified_name, cmd_str)
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.flush()

            error_message: str | None = None
            try:
                result = subprocess.run(
                    cmd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=self.timeout,
                    check=False,
                )
                exit_code = result.returncode
            except subprocess.TimeoutExpired:
                exit_code = -1
                error_message = f"Build timed out after {self.timeout} seconds"
                log_file.write(f"\n# TIMEOUT after {self.timeout} seconds\n")
            except OSError as e:
                raise ExecutorLaunchError(
                    f"Failed to execute build in {handle}: {e}",
                    fingerprint=package.fingerprint,
                ) from e

            finished_at = datetime.now(timezone.utc)
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n")
            log_file.flush()

            if exit_code == 0:
                try:
                    self._control(
                        ["cp", f"{handle}:{install_target}/.", str(workspace.output)],
                        log_file,
                    )
                except (
                    OSError,
                    subprocess.CalledProcessError,
                    subprocess.TimeoutExpired,
                ) as e:
                    raise PersistenceError(
                        f"Failed to collect compiled output from {handle}: {e}",
                        fingerprint=package.fingerprint,
                    ) from e

        details: dict[str, object] = {"command": cmd_str, "duration": duration}
        if error_message:
            details["error_message"] = error_message
        return ExecutionResult(
            exit_code=exit_code,
            log_path=str(workspace.log_path),
            details=details,
        )

    def destroy_environment(self, handle: str) -> None:
        """Force-remove container ``handle`` and its anonymous volumes."""
        try:
            self._control(["rm", "--force", "--volumes", handle])
        except (
            OSError,
            subprocess.CalledProcessError,
            subprocess.TimeoutExpired,
        ) as e:
            logger.warning("Failed to remove build environment %s: %s", handle, e)
        else:
            logger.debug("Removed build environment %s", handle)

    def inspect_image(self, image_name: str) -> ImageInfo | None:
        """Look up ``image_name`` in the runtime's image store.

        Returns:
            The image description, or None if the runtime does not know it.

        Raises:
            ExecutorLaunchError: If the runtime cannot be queried.
        """
        try:
            raw = self._capture(["image", "inspect", image_name])
        except subprocess.CalledProcessError:
            return None
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ExecutorLaunchError(
                f"Failed to inspect image {image_name}: {e}"
            ) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ExecutorLaunchError(
                f"Unexpected output inspecting image {image_name}: {e}"
            ) from e
        if not data:
            return None
        image = data[0]
        return ImageInfo(
            name=image_name,
            id=image.get("Id", ""),
            size_bytes=int(image.get("Size") or 0),
            created=image.get("Created", ""),
            tags=list(image.get("RepoTags") or []),
        )

    def provision_environment(
        self,
        handle: str,
        setup_script: Path | None,
        log_path: Path,
    ) -> None:
        """Prepare container ``handle`` to serve as a compilation base.

        The build directories are created and, if given, ``setup_script``
        is copied in and run with bash. Output goes to ``log_path``.

        Raises:
            ExecutorLaunchError: If any provisioning step fails.
        """
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("w") as log_file:
            try:
                self._control(
                    [
                        "exec",
                        handle,
                        "mkdir",
                        "-p",
                        CONTAINER_SOURCE_DIR,
                        CONTAINER_PACKAGES_DIR,
                        CONTAINER_COMPILED_DIR,
                    ],
                    log_file,
                )
                if setup_script is not None:
                    target = f"/tmp/{setup_script.name}"
                    self._control(["cp", str(setup_script), f"{handle}:{target}"], log_file)
                    self._control(["exec", handle, "bash", target], log_file)
            except (
                OSError,
                subprocess.CalledProcessError,
                subprocess.TimeoutExpired,
            ) as e:
                raise ExecutorLaunchError(
                    f"Failed to provision {handle}: {e}. See log: {log_path}"
                ) from e

    def commit_environment(self, handle: str, image_name: str) -> None:
        """Save the state of container ``handle`` as image ``image_name``.

        Raises:
            ExecutorLaunchError: If the commit fails.
        """
        try:
            self._control(["commit", handle, image_name])
        except subprocess.CalledProcessError as e:
            raise ExecutorLaunchError(
                f"Failed to commit {handle} as {image_name}: {e.stdout}"
            ) from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ExecutorLaunchError(
                f"Failed to commit {handle} as {image_name}: {e}"
            ) from e
        logger.debug("Committed %s as %s", handle, image_name)


__all__ = [
    "CONTAINER_COMPILED_DIR",
    "CONTAINER_PACKAGES_DIR",
    "CONTAINER_SOURCE_DIR",
    "BuildExecutor",
    "DockerExecutor",
    "Workspace",
    "compose_compile_command",
]
