"""Package selection for a compilation run.

This module handles:
- Gathering packages across all loaded releases, one per fingerprint
- Narrowing them to what a role manifest's jobs need, dependencies included
- Pruning packages whose compiled artifact is already in the cache

Pruning only removes packages from the work set. Their objects stay
referenced as dependencies of the remaining packages, so dependency
levels are still computed over the complete graph.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol

from release_compiler.compilation.buckets import unique_packages
from release_compiler.compilation.errors import FilterError
from release_compiler.releases.models import ReleaseLookupError

if TYPE_CHECKING:
    from release_compiler.releases.models import Package, Release
    from release_compiler.releases.schema import RoleManifestSchema

logger = logging.getLogger(__name__)


class CompiledPackageLookup(Protocol):
    """Anything answering whether a fingerprint is compiled, e.g. ArtifactCache."""

    def exists(self, fingerprint: str) -> bool: ...


def check_unique_releases(releases: Iterable[Release]) -> None:
    """Reject release lists that load the same release twice.

    Raises:
        FilterError: If two releases share a name.
    """
    seen: set[str] = set()
    for release in releases:
        if release.name in seen:
            raise FilterError(f"release {release.name} has been loaded more than once")
        seen.add(release.name)


def _with_dependencies(
    pkg: Package, result: list[Package], seen: set[str]
) -> None:
    stack = [pkg]
    while stack:
        current = stack.pop()
        if current.fingerprint in seen:
            continue
        seen.add(current.fingerprint)
        result.append(current)
        stack.extend(reversed(current.dependencies))


def gather_packages(
    releases: list[Release],
    manifest: RoleManifestSchema | None = None,
) -> list[Package]:
    """Collect the packages a run has to consider.

    Without a manifest every package of every release is included. With a
    manifest, only the packages of the jobs its roles reference are
    included, together with all their transitive dependencies. Packages
    are deduplicated by fingerprint; the first occurrence wins.

    Args:
        releases: Loaded releases.
        manifest: Optional role manifest narrowing the selection.

    Returns:
        Packages in first-seen order.

    Raises:
        FilterError: If a release is loaded twice, or the manifest
            references a release or job that is not loaded.
    """
    check_unique_releases(releases)

    if manifest is None:
        return unique_packages(pkg for release in releases for pkg in release.packages)

    by_name = {release.name: release for release in releases}
    result: list[Package] = []
    seen: set[str] = set()

    for role in manifest.roles:
        for job_ref in role.jobs:
            release = by_name.get(job_ref.release_name)
            if release is None:
                raise FilterError(
                    f"Role {role.name} references job {job_ref.name} of "
                    f"release {job_ref.release_name}, which is not loaded"
                )
            try:
                job = release.lookup_job(job_ref.name)
            except ReleaseLookupError as e:
                raise FilterError(f"Role {role.name}: {e}") from e

            for pkg in job.packages:
                _with_dependencies(pkg, result, seen)

    logger.debug("Role manifest selects %d packages", len(result))
    return result


def remove_compiled_packages(
    packages: Iterable[Package],
    cache: CompiledPackageLookup,
) -> list[Package]:
    """Drop packages whose own compiled artifact already exists.

    The decision is made per package: a package is dropped only when its
    own fingerprint is in the cache, whatever the state of its dependencies.

    Args:
        packages: Candidate packages.
        cache: Compiled package lookup.

    Returns:
        Packages that still need to be compiled, in input order.
    """
    remaining: list[Package] = []
    for pkg in packages:
        if cache.exists(pkg.fingerprint):
            logger.info("Package %s already compiled", pkg.qualified_name)
            continue
        remaining.append(pkg)
    return remaining


__all__ = [
    "CompiledPackageLookup",
    "check_unique_releases",
    "gather_packages",
    "remove_compiled_packages",
]
