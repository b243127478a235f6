"""In-memory release graph models.

Releases own their packages and jobs. Packages reference their
dependencies directly, so graph walks never go through name lookups.
The orchestrator treats all of these objects as read-only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


class ReleaseLookupError(LookupError):
    """Raised when a package or job is not part of a release."""

    def __init__(self, message: str, code: str = "release_lookup_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass(eq=False)
class Package:
    """A package of a release.

    Attributes:
        name: Package name, unique within its release.
        fingerprint: Content hash identifying the package sources.
        version: Package version (usually equal to the fingerprint).
        release: Owning release, or None for detached test packages.
        dependencies: Direct dependency packages, in declaration order.
        source: Source archive or directory, if any.
    """

    name: str
    fingerprint: str
    version: str = ""
    release: Release | None = field(default=None, repr=False)
    dependencies: list[Package] = field(default_factory=list, repr=False)
    source: Path | None = None

    @property
    def release_name(self) -> str:
        return self.release.name if self.release is not None else ""

    @property
    def qualified_name(self) -> str:
        """Return ``<release>/<name>`` as used in logs and metrics."""
        return f"{self.release_name}/{self.name}"

    def __str__(self) -> str:
        return self.qualified_name


@dataclass(eq=False)
class Job:
    """A job of a release and the packages it needs at runtime."""

    name: str
    version: str = ""
    description: str = ""
    release: Release | None = field(default=None, repr=False)
    packages: list[Package] = field(default_factory=list, repr=False)


@dataclass(eq=False)
class Release:
    """A named, versioned collection of packages and jobs."""

    name: str
    version: str = ""
    packages: list[Package] = field(default_factory=list)
    jobs: list[Job] = field(default_factory=list)

    def lookup_package(self, name: str) -> Package:
        """Return the package called ``name``.

        Raises:
            ReleaseLookupError: If the release has no such package.
        """
        for pkg in self.packages:
            if pkg.name == name:
                return pkg
        raise ReleaseLookupError(f"Cannot find package {name} in release {self.name}")

    def lookup_job(self, name: str) -> Job:
        """Return the job called ``name``.

        Raises:
            ReleaseLookupError: If the release has no such job.
        """
        for job in self.jobs:
            if job.name == name:
                return job
        raise ReleaseLookupError(f"Cannot find job {name} in release {self.name}")


__all__ = ["Job", "Package", "Release", "ReleaseLookupError"]
