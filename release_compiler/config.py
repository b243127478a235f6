"""Configuration settings for release_compiler.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default compiled package cache directory."""
    return Path.home() / ".cache" / "release-compiler" / "compiled"


def _default_work_dir() -> Path:
    """Return the default scratch directory for build workspaces."""
    return Path.home() / ".cache" / "release-compiler" / "workspace"


def compilation_image_name(repository: str, version: str) -> str:
    """Return the name of the base image compilation environments start from.

    Args:
        repository: Image repository prefix.
        version: Tool version the base image was created with.

    Returns:
        Image reference such as ``release-compiler-cbase:0.1.0``.
    """
    return f"{repository}-cbase:{version}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the RELC_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="RELC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory of the compiled package cache",
    )
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        description="Root directory for per-package build workspaces",
    )
    metrics_path: Path | None = Field(
        default=None,
        description="CSV file receiving phase timing events (disabled if not set)",
    )

    # Build environment
    repository: str = Field(
        default="release-compiler",
        description="Repository prefix for the compilation base image",
    )
    base_image: str | None = Field(
        default=None,
        description="Explicit compilation base image (derived from repository if not set)",
    )
    docker_binary: str = Field(
        default="docker",
        description="Container runtime CLI used to run builds",
    )
    keep_environment_on_failure: bool = Field(
        default=False,
        description="Leave failed build environments running for inspection",
    )

    # Operational modes
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    workers: int = Field(
        default=2,
        ge=1,
        le=64,
        description="Maximum concurrent package builds",
    )

    # Timeouts (in seconds)
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for a single package build",
    )

    def effective_base_image(self, version: str) -> str:
        """Return the base image to seed build environments from."""
        if self.base_image:
            return self.base_image
        return compilation_image_name(self.repository, version)


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "Settings",
    "compilation_image_name",
    "get_settings",
    "print_settings_json",
]
