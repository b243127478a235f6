"""Compilation service.

This module provides the high-level compilation API:
- plan_compilation(): select, prune and level the packages of a run
- compile_releases(): main entry point - compile everything a run needs
- clean_cache(): drop cached packages no loaded release references

See compilation/scheduler.py for the execution model.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from release_compiler import __version__
from release_compiler.compilation.buckets import create_dep_buckets
from release_compiler.compilation.cache import ArtifactCache
from release_compiler.compilation.driver import PackageBuildDriver
from release_compiler.compilation.executor import DockerExecutor
from release_compiler.compilation.filter import (
    gather_packages,
    remove_compiled_packages,
)
from release_compiler.compilation.scheduler import BuildScheduler, CompilationReport
from release_compiler.config import get_settings
from release_compiler.metrics import CsvMetricsSink, NullSink, stamp
from release_compiler.types import Phase

if TYPE_CHECKING:
    from release_compiler.compilation.executor import BuildExecutor
    from release_compiler.compilation.filter import CompiledPackageLookup
    from release_compiler.compilation.scheduler import PackageBuilder
    from release_compiler.config import Settings
    from release_compiler.metrics import EventSink
    from release_compiler.releases.models import Package, Release
    from release_compiler.releases.schema import RoleManifestSchema

logger = logging.getLogger(__name__)


def make_sink(settings: Settings) -> EventSink:
    """Return the metrics sink configured by ``settings``."""
    if settings.metrics_path is not None:
        return CsvMetricsSink(settings.metrics_path)
    return NullSink()


def plan_compilation(
    releases: list[Release],
    cache: CompiledPackageLookup,
    manifest: RoleManifestSchema | None = None,
) -> list[list[Package]]:
    """Return the dependency levels of the packages still to compile.

    Raises:
        FilterError: If the manifest cannot be resolved.
        GraphError: If the package graph has a cycle.
    """
    packages = gather_packages(releases, manifest)
    remaining = remove_compiled_packages(packages, cache)
    logger.info(
        "%d of %d packages need compiling", len(remaining), len(packages)
    )
    return create_dep_buckets(remaining)


def compile_releases(
    releases: list[Release],
    manifest: RoleManifestSchema | None = None,
    settings: Settings | None = None,
    executor: BuildExecutor | None = None,
    builder: PackageBuilder | None = None,
    sink: EventSink | None = None,
    workers: int | None = None,
    keep_environment_on_failure: bool | None = None,
) -> CompilationReport:
    """Compile every package the releases (or the manifest) need.

    This is the main entry point for compilation. It:
    1. Gathers packages and narrows them to the manifest, if any
    2. Drops packages that are already compiled
    3. Partitions the rest into dependency levels
    4. Builds the levels with bounded parallelism

    Args:
        releases: Loaded releases.
        manifest: Optional role manifest narrowing the selection.
        settings: Application settings.
        executor: Build executor; a DockerExecutor if not given.
        builder: Package builder; a PackageBuildDriver if not given.
        sink: Metrics sink; derived from settings if not given.
        workers: Concurrency override.
        keep_environment_on_failure: Retention override.

    Returns:
        Report of a run in which nothing failed.

    Raises:
        FilterError, GraphError: Before any build starts.
        CompilationFailedError: If any package failed or was skipped.
    """
    if settings is None:
        settings = get_settings()
    if sink is None:
        sink = make_sink(settings)
    if workers is None:
        workers = settings.workers
    if keep_environment_on_failure is None:
        keep_environment_on_failure = settings.keep_environment_on_failure

    cache = ArtifactCache(settings.cache_dir)

    with stamp(sink, Phase.COMPILE):
        levels = plan_compilation(releases, cache, manifest)

        if builder is None:
            if executor is None:
                executor = DockerExecutor(
                    docker_binary=settings.docker_binary,
                    timeout=settings.build_timeout,
                )
            builder = PackageBuildDriver(
                cache=cache,
                executor=executor,
                work_dir=settings.work_dir,
                base_image=settings.effective_base_image(__version__),
                keep_environment_on_failure=keep_environment_on_failure,
                sink=sink,
            )

        scheduler = BuildScheduler(builder, workers=workers, sink=sink)
        report = scheduler.run(levels)

    logger.info(
        "Compilation finished: %d built, %d already compiled",
        len(report.built),
        len(report.cached),
    )
    return report


def clean_cache(cache: ArtifactCache, releases: list[Release]) -> list[str]:
    """Remove cached packages that no loaded release references.

    Args:
        cache: Compiled package cache.
        releases: Loaded releases.

    Returns:
        Fingerprints of the removed cache entries.
    """
    referenced = {pkg.fingerprint for release in releases for pkg in release.packages}
    removed: list[str] = []
    for entry in cache.list_entries():
        if entry in referenced:
            continue
        logger.info("Removing unreferenced cache entry %s", entry)
        cache.remove(entry)
        removed.append(entry)
    return removed


__all__ = [
    "clean_cache",
    "compile_releases",
    "make_sink",
    "plan_compilation",
]
