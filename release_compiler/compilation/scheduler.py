"""Level-by-level build scheduling.

Levels run strictly in order. Within a level up to ``workers`` builds run
concurrently on a thread pool, and the next level starts only once every
build of the current one has finished. A package whose dependency failed
or was skipped earlier in the run is skipped instead of attempted. The run
never stops at the first failure: every package whose prerequisites
succeeded is attempted, and all failures are reported together at the end.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from release_compiler.compilation.errors import (
    CompilationError,
    CompilationFailedError,
    SkippedDueToDependencyFailure,
)
from release_compiler.metrics import NullSink, emit
from release_compiler.types import BuildOutcome, EventStatus, Phase

if TYPE_CHECKING:
    from release_compiler.metrics import EventSink
    from release_compiler.releases.models import Package

logger = logging.getLogger(__name__)


class PackageBuilder(Protocol):
    """Anything that can build one package, e.g. PackageBuildDriver."""

    def build(self, package: Package) -> BuildOutcome: ...


@dataclass
class CompilationReport:
    """Per-package results of a compilation run, keyed by qualified name."""

    built: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    failed: dict[str, Exception] = field(default_factory=dict)
    skipped: dict[str, SkippedDueToDependencyFailure] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.built) + len(self.cached) + len(self.failed) + len(self.skipped)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "total": self.total,
            "built": list(self.built),
            "cached": list(self.cached),
            "failed": [
                {
                    "package": name,
                    "code": getattr(error, "code", "internal_error"),
                    "message": str(error),
                }
                for name, error in self.failed.items()
            ],
            "skipped": [
                {"package": name, "dependency": skip.dependency}
                for name, skip in self.skipped.items()
            ],
        }


class BuildScheduler:
    """Runs dependency levels through a builder with bounded parallelism.

    Args:
        builder: Builds a single package.
        workers: Maximum number of concurrent builds within a level.
        sink: Observability sink for package and wait phases.

    Raises:
        ValueError: If ``workers`` is less than 1.
    """

    def __init__(
        self,
        builder: PackageBuilder,
        workers: int = 1,
        sink: EventSink | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.builder = builder
        self.workers = workers
        self.sink = sink or NullSink()

    def run(self, levels: Sequence[Sequence[Package]]) -> CompilationReport:
        """Build every package of ``levels`` in order.

        Returns:
            Report of a run in which nothing failed.

        Raises:
            CompilationFailedError: If any package failed or was skipped;
                the error carries the full report.
        """
        report = CompilationReport()
        # fingerprint -> qualified name of the package that did not compile
        blocked: dict[str, str] = {}
        scheduled: set[str] = set()

        for index, level in enumerate(levels):
            runnable: list[Package] = []
            for pkg in level:
                if pkg.fingerprint in scheduled:
                    logger.debug("Package %s already scheduled in this run", pkg)
                    continue
                scheduled.add(pkg.fingerprint)

                culprit = self._blocked_dependency(pkg, blocked)
                if culprit is not None:
                    skip = SkippedDueToDependencyFailure(pkg.qualified_name, culprit)
                    logger.warning("%s", skip)
                    report.skipped[pkg.qualified_name] = skip
                    blocked[pkg.fingerprint] = pkg.qualified_name
                    continue
                runnable.append(pkg)

            if runnable:
                logger.info(
                    "Compiling level %d/%d: %s",
                    index + 1,
                    len(levels),
                    ", ".join(p.qualified_name for p in runnable),
                )
                self._run_level(runnable, report, blocked)

        if not report.ok:
            raise CompilationFailedError(report)
        return report

    def _run_level(
        self,
        packages: list[Package],
        report: CompilationReport,
        blocked: dict[str, str],
    ) -> None:
        pool_size = min(self.workers, len(packages))
        with ThreadPoolExecutor(
            max_workers=pool_size, thread_name_prefix="compile"
        ) as pool:
            futures: dict[Future[BuildOutcome], Package] = {}
            for pkg in packages:
                emit(self.sink, Phase.COMPILE, EventStatus.START, pkg)
                emit(self.sink, Phase.WAIT, EventStatus.START, pkg)
                futures[pool.submit(self._build_one, pkg)] = pkg

            for future in as_completed(futures):
                pkg = futures[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    if not isinstance(e, CompilationError):
                        logger.exception("Unexpected error compiling %s", pkg)
                    report.failed[pkg.qualified_name] = e
                    blocked[pkg.fingerprint] = pkg.qualified_name
                    continue

                if outcome is BuildOutcome.CACHED:
                    report.cached.append(pkg.qualified_name)
                else:
                    report.built.append(pkg.qualified_name)

    def _build_one(self, pkg: Package) -> BuildOutcome:
        emit(self.sink, Phase.WAIT, EventStatus.DONE, pkg)
        try:
            return self.builder.build(pkg)
        finally:
            emit(self.sink, Phase.COMPILE, EventStatus.DONE, pkg)

    @staticmethod
    def _blocked_dependency(pkg: Package, blocked: dict[str, str]) -> str | None:
        """Return the name of a transitive dependency that did not compile."""
        if not blocked:
            return None
        seen: set[str] = set()
        stack = list(pkg.dependencies)
        while stack:
            dep = stack.pop()
            if dep.fingerprint in seen:
                continue
            seen.add(dep.fingerprint)
            if dep.fingerprint in blocked:
                return blocked[dep.fingerprint]
            stack.extend(dep.dependencies)
        return None


__all__ = ["BuildScheduler", "CompilationReport", "PackageBuilder"]
