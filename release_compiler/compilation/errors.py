"""Error taxonomy for package compilation.

Fatal errors (GraphError, FilterError) stop a run before any build
starts. BuildError subclasses and SkippedDueToDependencyFailure are
recorded per package and aggregated into CompilationFailedError.
Every error carries a stable ``code`` for programmatic handling.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from release_compiler.compilation.scheduler import CompilationReport


class CompilationError(Exception):
    """Base error for compilation operations."""

    def __init__(self, message: str, code: str = "compilation_error") -> None:
        super().__init__(message)
        self.code = code


class GraphError(CompilationError):
    """Raised when the package dependency graph is malformed or cyclic."""

    def __init__(
        self,
        message: str,
        cycle: list[str] | None = None,
        code: str = "graph_error",
    ) -> None:
        super().__init__(message, code=code)
        self.cycle = cycle or []


class FilterError(CompilationError):
    """Raised when a role manifest references jobs that cannot be resolved."""

    def __init__(self, message: str, code: str = "filter_error") -> None:
        super().__init__(message, code=code)


class BuildError(CompilationError):
    """Raised when building a single package fails."""

    def __init__(
        self,
        message: str,
        fingerprint: str | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message, code=code)
        self.fingerprint = fingerprint


class WorkspaceError(BuildError):
    """Raised when the build workspace cannot be prepared."""

    def __init__(self, message: str, fingerprint: str | None = None) -> None:
        super().__init__(message, fingerprint=fingerprint, code="workspace_error")


class ExecutorLaunchError(BuildError):
    """Raised when the build environment cannot be created or started."""

    def __init__(self, message: str, fingerprint: str | None = None) -> None:
        super().__init__(
            message, fingerprint=fingerprint, code="executor_launch_error"
        )


class BuildProcedureError(BuildError):
    """Raised when the package build procedure exits non-zero."""

    def __init__(
        self,
        message: str,
        fingerprint: str | None = None,
        exit_code: int | None = None,
        log_path: str | None = None,
    ) -> None:
        super().__init__(message, fingerprint=fingerprint, code="build_failed")
        self.exit_code = exit_code
        self.log_path = log_path


class PersistenceError(BuildError):
    """Raised when a compiled artifact cannot be stored in the cache."""

    def __init__(self, message: str, fingerprint: str | None = None) -> None:
        super().__init__(message, fingerprint=fingerprint, code="persistence_error")


class BaseImageError(CompilationError):
    """Raised when the compilation base image cannot be looked up or created."""

    def __init__(self, message: str, code: str = "base_image_error") -> None:
        super().__init__(message, code=code)


class SkippedDueToDependencyFailure(CompilationError):
    """Recorded for a package whose dependency failed or was skipped."""

    def __init__(self, package: str, dependency: str) -> None:
        super().__init__(
            f"Skipped {package}: dependency {dependency} did not compile",
            code="dependency_failed",
        )
        self.package = package
        self.dependency = dependency


class CompilationFailedError(CompilationError):
    """Raised after a run in which some packages failed or were skipped."""

    def __init__(self, report: CompilationReport) -> None:
        lines = [
            f"{len(report.failed)} package(s) failed, "
            f"{len(report.skipped)} skipped "
            f"(of {report.total} scheduled)"
        ]
        for name, error in report.failed.items():
            lines.append(f"  failed  {name}: {error}")
        for name, skip in report.skipped.items():
            lines.append(f"  skipped {name}: dependency {skip.dependency} did not compile")
        super().__init__("\n".join(lines), code="compilation_failed")
        self.report = report


__all__ = [
    "BaseImageError",
    "BuildError",
    "BuildProcedureError",
    "CompilationError",
    "CompilationFailedError",
    "ExecutorLaunchError",
    "FilterError",
    "GraphError",
    "PersistenceError",
    "SkippedDueToDependencyFailure",
    "WorkspaceError",
]
