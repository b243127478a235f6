"""Compilation base image creation and lookup.

The base image is what every build environment starts from. Creating it
starts a container from a stock image, prepares the build directories,
optionally runs a setup script and commits the result under the
versioned compilation image name.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from release_compiler.compilation.errors import BaseImageError, CompilationError
from release_compiler.metrics import NullSink, stamp
from release_compiler.types import Phase

if TYPE_CHECKING:
    from release_compiler.metrics import EventSink
    from release_compiler.types import ImageInfo

logger = logging.getLogger(__name__)


@runtime_checkable
class ImageExecutor(Protocol):
    """Container runtime operations needed to create a base image."""

    def inspect_image(self, image_name: str) -> ImageInfo | None: ...

    def create_environment(self, base_image: str) -> str: ...

    def provision_environment(
        self, handle: str, setup_script: Path | None, log_path: Path
    ) -> None: ...

    def commit_environment(self, handle: str, image_name: str) -> None: ...

    def destroy_environment(self, handle: str) -> None: ...


def _release_environment(executor: ImageExecutor, handle: str, keep: bool) -> None:
    if keep:
        logger.warning(
            "Keeping container %s of failed image creation for inspection", handle
        )
        return
    try:
        executor.destroy_environment(handle)
    except Exception as e:
        logger.warning("Failed to remove container %s: %s", handle, e)


def show_base_image(executor: ImageExecutor, image_name: str) -> ImageInfo:
    """Describe the compilation base image.

    Raises:
        BaseImageError: If the image does not exist.
    """
    image = executor.inspect_image(image_name)
    if image is None:
        raise BaseImageError(f"Error looking up base image {image_name}: not found")
    return image


def create_compilation_base(
    executor: ImageExecutor,
    base_image: str,
    target_image: str,
    log_path: Path,
    setup_script: Path | None = None,
    keep_environment_on_failure: bool = False,
    sink: EventSink | None = None,
) -> ImageInfo:
    """Create the compilation base image ``target_image`` from ``base_image``.

    Args:
        executor: Container runtime operations.
        base_image: Stock image to start from.
        target_image: Name to commit the prepared image as.
        log_path: File receiving provisioning output.
        setup_script: Optional script run inside the container before commit.
        keep_environment_on_failure: Leave the container in place when
            creation fails.
        sink: Observability sink for the create-compilation-image phase.

    Returns:
        Description of the created image.

    Raises:
        BaseImageError: If the base image is missing or any step fails.
    """
    sink = sink or NullSink()
    if setup_script is not None and not setup_script.is_file():
        raise BaseImageError(f"Setup script not found: {setup_script}")

    with stamp(sink, Phase.CREATE_IMAGE):
        if executor.inspect_image(base_image) is None:
            raise BaseImageError(f"Error looking up base image {base_image}: not found")

        logger.info("Creating compilation image %s from %s", target_image, base_image)
        handle: str | None = None
        succeeded = False
        try:
            handle = executor.create_environment(base_image)
            executor.provision_environment(handle, setup_script, log_path)
            executor.commit_environment(handle, target_image)
            succeeded = True
        except (CompilationError, OSError) as e:
            raise BaseImageError(
                f"Error creating compilation base image {target_image}: {e}"
            ) from e
        finally:
            if handle is not None:
                _release_environment(
                    executor, handle, keep=not succeeded and keep_environment_on_failure
                )

        image = executor.inspect_image(target_image)
        if image is None:
            raise BaseImageError(
                f"Compilation image {target_image} missing after commit"
            )

    logger.info("Created compilation image %s (%s)", target_image, image.id)
    return image


__all__ = [
    "ImageExecutor",
    "create_compilation_base",
    "show_base_image",
]
