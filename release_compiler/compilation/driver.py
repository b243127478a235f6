"""Single package build driver.

This module handles one package from sources to cached artifact:
- Re-checking the cache right before building
- Preparing an isolated workspace (sources, compiled dependencies, output)
- Running the build procedure in a disposable environment
- Persisting the compiled output into the cache
- Destroying or, on failure and on request, retaining the environment
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from release_compiler.compilation.errors import (
    BuildError,
    BuildProcedureError,
    ExecutorLaunchError,
    PersistenceError,
    WorkspaceError,
)
from release_compiler.compilation.executor import Workspace
from release_compiler.metrics import NullSink, stamp
from release_compiler.types import BuildOutcome, Phase

if TYPE_CHECKING:
    from release_compiler.compilation.cache import ArtifactCache
    from release_compiler.compilation.executor import BuildExecutor
    from release_compiler.metrics import EventSink
    from release_compiler.releases.models import Package

logger = logging.getLogger(__name__)

LOGS_DIR_NAME = "logs"


def unpack_sources(source: Path, destination: Path) -> None:
    """Unpack a source archive, or copy a source directory, into ``destination``.

    Raises:
        WorkspaceError: If the source is neither a directory nor a tarball.
        OSError, tarfile.TarError: If reading or writing fails.
    """
    if source.is_dir():
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
        return
    if not source.is_file():
        raise FileNotFoundError(f"Source not found: {source}")
    if not tarfile.is_tarfile(source):
        raise WorkspaceError(f"Source is not a directory or tar archive: {source}")
    with tarfile.open(source) as tar:
        tar.extractall(destination, filter="data")


class PackageBuildDriver:
    """Builds one package at a time into an artifact cache.

    Args:
        cache: Compiled package cache.
        executor: Build environment lifecycle.
        work_dir: Root for per-build workspaces and build logs.
        base_image: Image build environments are created from.
        keep_environment_on_failure: Leave the environment and workspace of
            a failed build in place for inspection.
        sink: Observability sink for the run phase.
    """

    def __init__(
        self,
        cache: ArtifactCache,
        executor: BuildExecutor,
        work_dir: Path,
        base_image: str,
        keep_environment_on_failure: bool = False,
        sink: EventSink | None = None,
    ) -> None:
        self.cache = cache
        self.executor = executor
        self.work_dir = Path(work_dir)
        self.base_image = base_image
        self.keep_environment_on_failure = keep_environment_on_failure
        self.sink = sink or NullSink()

    def log_path(self, package: Package) -> Path:
        """Return where the build log of ``package`` is written."""
        return self.work_dir / LOGS_DIR_NAME / f"{package.fingerprint}.log"

    def is_compiled(self, package: Package) -> bool:
        return self.cache.exists(package.fingerprint)

    def prepare_workspace(self, package: Package) -> Workspace:
        """Create a fresh workspace for ``package``.

        Sources are unpacked into the source view and each direct
        dependency's compiled package is copied into the dependency view
        under the dependency's name.

        Raises:
            WorkspaceError: If any part of the workspace cannot be prepared.
        """
        root: Path | None = None
        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            root = Path(tempfile.mkdtemp(prefix=f"{package.fingerprint}-", dir=self.work_dir))
            workspace = Workspace.under(root, log_path=self.log_path(package))
            workspace.create()

            if package.source is not None:
                unpack_sources(package.source, workspace.sources)

            for dep in package.dependencies:
                self.cache.materialize(
                    dep.fingerprint, workspace.dependencies / dep.name
                )
        except WorkspaceError as e:
            self._discard(root)
            e.fingerprint = package.fingerprint
            raise
        except (OSError, tarfile.TarError) as e:
            self._discard(root)
            raise WorkspaceError(
                f"Failed to prepare workspace for {package.qualified_name}: {e}",
                fingerprint=package.fingerprint,
            ) from e

        logger.debug("Prepared workspace %s for %s", root, package.qualified_name)
        return workspace

    def build(self, package: Package) -> BuildOutcome:
        """Compile ``package`` into the cache.

        Returns:
            BuildOutcome.CACHED if the artifact already existed,
            BuildOutcome.BUILT after a successful build.

        Raises:
            WorkspaceError, ExecutorLaunchError, BuildProcedureError,
            PersistenceError: If the corresponding stage fails.
        """
        try:
            compiled = self.is_compiled(package)
        except ValueError as e:
            raise WorkspaceError(str(e), fingerprint=package.fingerprint) from e
        if compiled:
            logger.info("Package %s already compiled, skipping", package.qualified_name)
            return BuildOutcome.CACHED

        workspace = self.prepare_workspace(package)
        handle: str | None = None
        succeeded = False
        try:
            try:
                handle = self.executor.create_environment(self.base_image)
            except OSError as e:
                raise ExecutorLaunchError(
                    f"Failed to create build environment: {e}"
                ) from e

            with stamp(self.sink, Phase.RUN, package):
                try:
                    result = self.executor.run_build(handle, package, workspace)
                except OSError as e:
                    raise ExecutorLaunchError(
                        f"Failed to run build procedure: {e}"
                    ) from e

            if not result.success:
                reason = result.details.get("error_message") or (
                    f"Build failed with exit code {result.exit_code}"
                )
                raise BuildProcedureError(
                    f"{reason}. See log: {result.log_path}",
                    fingerprint=package.fingerprint,
                    exit_code=result.exit_code,
                    log_path=result.log_path,
                )

            self._persist(package, workspace)
            succeeded = True
        except BuildError as e:
            if e.fingerprint is None:
                e.fingerprint = package.fingerprint
            logger.error("Compiling %s failed: %s", package.qualified_name, e)
            raise
        finally:
            self._cleanup(package, handle, workspace, succeeded)

        logger.info("Compiled %s", package.qualified_name)
        return BuildOutcome.BUILT

    def _persist(self, package: Package, workspace: Workspace) -> None:
        try:
            self.cache.persist(
                package.fingerprint,
                workspace.output,
                metadata={
                    "name": package.name,
                    "version": package.version,
                    "release": package.release_name,
                },
            )
        except (OSError, ValueError) as e:
            raise PersistenceError(
                f"Failed to store compiled package {package.qualified_name}: {e}",
                fingerprint=package.fingerprint,
            ) from e

    def _cleanup(
        self,
        package: Package,
        handle: str | None,
        workspace: Workspace,
        succeeded: bool,
    ) -> None:
        if not succeeded and self.keep_environment_on_failure:
            logger.warning(
                "Keeping build environment %s and workspace %s of %s for inspection",
                handle,
                workspace.root,
                package.qualified_name,
            )
            return
        if handle is not None:
            try:
                self.executor.destroy_environment(handle)
            except Exception as e:
                logger.warning(
                    "Failed to destroy build environment %s of %s: %s",
                    handle,
                    package.qualified_name,
                    e,
                )
        self._discard(workspace.root)

    @staticmethod
    def _discard(root: Path | None) -> None:
        if root is not None and root.exists():
            shutil.rmtree(root, ignore_errors=True)


__all__ = ["LOGS_DIR_NAME", "PackageBuildDriver", "unpack_sources"]
