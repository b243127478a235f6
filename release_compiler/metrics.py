"""Phase timing events for compilation runs.

Sinks receive start/done boundaries of the run, of each package, of the
wait for a worker slot and of the executor run. Emitting is fire-and-forget:
a sink that cannot record an event logs a warning and carries on, it never
fails a build.

The CSV sink appends ``timestamp,app,series,status`` lines, e.g.::

    2024-05-01T10:00:00.000000+00:00,release-compiler,compile-packages::rel/go,start
"""

from __future__ import annotations

import csv
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from release_compiler.types import CompileEvent, EventStatus, Phase

if TYPE_CHECKING:
    from release_compiler.releases.models import Package

logger = logging.getLogger(__name__)

APP_NAME = "release-compiler"


@runtime_checkable
class EventSink(Protocol):
    """Anything with an ``emit(event)`` method that never raises."""

    def emit(self, event: CompileEvent) -> None: ...


class NullSink:
    """Sink that drops every event."""

    def emit(self, event: CompileEvent) -> None:
        return None


class RecordingSink:
    """Sink that keeps events in memory, in arrival order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[CompileEvent] = []

    def emit(self, event: CompileEvent) -> None:
        with self._lock:
            self.events.append(event)

    def series(self) -> list[tuple[str, str]]:
        """Return ``(series, status)`` pairs of the recorded events."""
        with self._lock:
            return [(e.series, e.status.value) for e in self.events]


class CsvMetricsSink:
    """Sink appending events to a CSV metrics file."""

    def __init__(self, path: Path, app: str = APP_NAME) -> None:
        self.path = Path(path)
        self.app = app
        self._lock = threading.Lock()

    def emit(self, event: CompileEvent) -> None:
        row = [event.timestamp.isoformat(), self.app, event.series, event.status.value]
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8", newline="") as f:
                    csv.writer(f).writerow(row)
        except OSError as e:
            logger.warning("Could not write metrics to %s: %s", self.path, e)


def make_event(
    phase: Phase,
    status: EventStatus,
    package: Package | None = None,
) -> CompileEvent:
    """Build an event stamped with the current UTC time."""
    return CompileEvent(
        phase=phase,
        package=package.qualified_name if package is not None else None,
        status=status,
        timestamp=datetime.now(timezone.utc),
    )


def emit(
    sink: EventSink,
    phase: Phase,
    status: EventStatus,
    package: Package | None = None,
) -> None:
    """Send one event to ``sink``, logging instead of raising on failure."""
    try:
        sink.emit(make_event(phase, status, package))
    except Exception:
        logger.warning("Metrics sink %r failed", sink, exc_info=True)


@contextmanager
def stamp(
    sink: EventSink,
    phase: Phase,
    package: Package | None = None,
) -> Iterator[None]:
    """Emit start on entry and done on exit, also when the body raises."""
    emit(sink, phase, EventStatus.START, package)
    try:
        yield
    finally:
        emit(sink, phase, EventStatus.DONE, package)


__all__ = [
    "APP_NAME",
    "CsvMetricsSink",
    "EventSink",
    "NullSink",
    "RecordingSink",
    "emit",
    "make_event",
    "stamp",
]
