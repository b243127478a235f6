"""Dependency bucket construction.

This module partitions a package set into ordered levels:
- A package's depth is 0 without dependencies, otherwise one more than
  the deepest of its dependencies
- Packages of equal depth form one level; levels are ordered by depth
- Within a level packages are sorted by (name, fingerprint)

Depth is computed over the full dependency graph, including dependencies
that are not part of the input set (e.g. packages already in the cache),
so pruning cached packages never changes where the remaining ones land.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

from release_compiler.compilation.errors import GraphError

if TYPE_CHECKING:
    from release_compiler.releases.models import Package

logger = logging.getLogger(__name__)


def unique_packages(packages: Iterable[Package]) -> list[Package]:
    """Drop packages whose fingerprint was already seen, keeping order."""
    seen: set[str] = set()
    result: list[Package] = []
    for pkg in packages:
        if pkg.fingerprint in seen:
            continue
        seen.add(pkg.fingerprint)
        result.append(pkg)
    return result


def compute_depths(packages: Iterable[Package]) -> dict[str, int]:
    """Compute the dependency depth of every package reachable from ``packages``.

    The walk is an iterative depth-first search, so deep chains do not hit
    the interpreter recursion limit. A package met again while it is still
    on the current path closes a cycle.

    Args:
        packages: Packages to start from.

    Returns:
        Mapping of fingerprint to depth.

    Raises:
        GraphError: If the graph contains a cycle.
    """
    depths: dict[str, int] = {}

    for root in packages:
        if root.fingerprint in depths:
            continue

        path: list[Package] = [root]
        on_path: dict[str, int] = {root.fingerprint: 0}
        stack: list[tuple[Package, Iterator[Package]]] = [
            (root, iter(root.dependencies))
        ]

        while stack:
            pkg, pending = stack[-1]
            dep = next(pending, None)

            if dep is None:
                stack.pop()
                path.pop()
                del on_path[pkg.fingerprint]
                depths[pkg.fingerprint] = 1 + max(
                    (depths[d.fingerprint] for d in pkg.dependencies), default=-1
                )
                continue

            if dep.fingerprint in depths:
                continue

            if dep.fingerprint in on_path:
                cycle = path[on_path[dep.fingerprint] :] + [dep]
                description = " -> ".join(p.qualified_name for p in cycle)
                raise GraphError(
                    f"Dependency cycle detected: {description}",
                    cycle=[p.fingerprint for p in cycle],
                )

            on_path[dep.fingerprint] = len(path)
            path.append(dep)
            stack.append((dep, iter(dep.dependencies)))

    return depths


def create_dep_buckets(packages: Iterable[Package]) -> list[list[Package]]:
    """Partition packages into dependency levels.

    Every dependency of a package in level k lives in a level below k
    (or outside the input set). Packages sharing a fingerprint are built
    once; the first occurrence is kept.

    Args:
        packages: Packages to partition.

    Returns:
        Non-empty levels ordered by increasing depth.

    Raises:
        GraphError: If the graph contains a cycle.
    """
    unique = unique_packages(packages)
    depths = compute_depths(unique)

    by_depth: dict[int, list[Package]] = defaultdict(list)
    for pkg in unique:
        by_depth[depths[pkg.fingerprint]].append(pkg)

    levels = [
        sorted(by_depth[depth], key=lambda p: (p.name, p.fingerprint))
        for depth in sorted(by_depth)
    ]
    logger.debug(
        "Partitioned %d packages into %d levels: %s",
        len(unique),
        len(levels),
        [len(level) for level in levels],
    )
    return levels


def flatten_buckets(levels: list[list[Package]]) -> list[Package]:
    """Return the packages of all levels in build order."""
    return [pkg for level in levels for pkg in level]


__all__ = [
    "compute_depths",
    "create_dep_buckets",
    "flatten_buckets",
    "unique_packages",
]
