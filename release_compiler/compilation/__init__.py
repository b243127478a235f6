"""Package compilation module.

This module handles:
- Dependency leveling of package sets
- Package selection and cache pruning
- Bounded-parallel level scheduling
- Single package builds in disposable environments
- The fingerprint-keyed compiled package cache
- Creation of the compilation base image
"""

from release_compiler.compilation.errors import (
    BaseImageError,
    BuildError,
    BuildProcedureError,
    CompilationError,
    CompilationFailedError,
    ExecutorLaunchError,
    FilterError,
    GraphError,
    PersistenceError,
    SkippedDueToDependencyFailure,
    WorkspaceError,
)

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

# Access submodules directly: release_compiler.compilation.service, etc.
