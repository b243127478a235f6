"""Shared type definitions for release_compiler.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class BuildOutcome(str, Enum):
    """Outcome of a single package build attempt."""

    BUILT = "built"
    CACHED = "cached"


class EventStatus(str, Enum):
    """Boundary marker of an observability event."""

    START = "start"
    DONE = "done"


class Phase(str, Enum):
    """Phases reported to the observability sink."""

    COMPILE = "compile-packages"
    WAIT = "compile-packages::wait"
    RUN = "compile-packages::run"
    CREATE_IMAGE = "create-compilation-image"


@dataclass(frozen=True)
class CompileEvent:
    """A timestamped phase boundary.

    Attributes:
        phase: Phase the event belongs to.
        package: Qualified package name (``release/name``), or None for
            run-level events.
        status: Whether the phase starts or finishes.
        timestamp: UTC time the boundary was crossed.
    """

    phase: Phase
    package: str | None
    status: EventStatus
    timestamp: datetime

    @property
    def series(self) -> str:
        """Return the metric series name, e.g. ``compile-packages::rel/pkg``."""
        if self.package is None:
            return self.phase.value
        return f"{self.phase.value}::{self.package}"


@dataclass
class ExecutionResult:
    """Result of running a build procedure inside an environment."""

    exit_code: int
    log_path: str | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass
class ImageInfo:
    """Description of a container image known to the runtime.

    Attributes:
        name: Name the image was looked up by.
        id: Runtime image identifier.
        size_bytes: Image size in bytes.
        created: Creation time as reported by the runtime.
        tags: Repository tags of the image.
    """

    name: str
    id: str
    size_bytes: int = 0
    created: str = ""
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "id": self.id,
            "size_bytes": self.size_bytes,
            "created": self.created,
            "tags": list(self.tags),
        }


__all__ = [
    "BuildOutcome",
    "CompileEvent",
    "EventStatus",
    "ExecutionResult",
    "ImageInfo",
    "Phase",
]
