"""Pydantic models for release index and role manifest files.

A release index describes the packages and jobs of one release in a
flat YAML/JSON document. A role manifest groups jobs of the loaded
releases into roles and decides which packages a deployment needs.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

NAME_PATTERN = re.compile(r"[a-zA-Z0-9_.+\-]+")


def _validate_name(v: str, field: str = "name") -> str:
    if v in (".", "..") or not NAME_PATTERN.fullmatch(v):
        raise ValueError(
            f"{field} must contain only letters, digits, '.', '_', '+' or '-'"
            f" and not be '.' or '..', got '{v}'"
        )
    return v


class PackageSchema(BaseModel):
    """Schema for a package entry of a release index.

    Attributes:
        name: Package name, unique within the release.
        fingerprint: Content hash of the package sources.
        version: Package version; defaults to the fingerprint.
        source: Source archive or directory, relative to the index file.
        dependencies: Names of packages of the same release this one needs.
    """

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=255)]
    fingerprint: Annotated[str, Field(min_length=1, max_length=255)]
    version: str | None = Field(default=None)
    source: str | None = Field(default=None, description="Source archive or dir")
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the package name charset."""
        return _validate_name(v)

    @field_validator("fingerprint")
    @classmethod
    def validate_fingerprint(cls, v: str) -> str:
        """Fingerprints name cache directories, so they must be one path component."""
        return _validate_name(v, field="fingerprint")


class JobSchema(BaseModel):
    """Schema for a job entry of a release index."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=255)]
    version: str | None = Field(default=None)
    description: str = Field(default="")
    packages: list[str] = Field(default_factory=list)


class ReleaseSchema(BaseModel):
    """Schema for a release index file."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=255)]
    version: Annotated[str, Field(min_length=1, max_length=100)]
    packages: list[PackageSchema] = Field(default_factory=list)
    jobs: list[JobSchema] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: object) -> object:
        """Accept unquoted numeric versions from YAML."""
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @model_validator(mode="after")
    def validate_unique_names(self) -> "ReleaseSchema":
        """Package and job names must be unique within a release."""
        for kind, names in (
            ("package", [p.name for p in self.packages]),
            ("job", [j.name for j in self.jobs]),
        ):
            seen: set[str] = set()
            for name in names:
                if name in seen:
                    raise ValueError(f"duplicate {kind} name '{name}'")
                seen.add(name)
        return self


class RoleJobSchema(BaseModel):
    """Reference from a role to a job of a loaded release."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1)]
    release_name: Annotated[str, Field(min_length=1)]


class RoleSchema(BaseModel):
    """A role of a deployment and the jobs it runs."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=255)]
    jobs: list[RoleJobSchema] = Field(default_factory=list)


class RoleManifestSchema(BaseModel):
    """Schema for a role manifest file."""

    model_config = ConfigDict(extra="forbid")

    roles: list[RoleSchema] = Field(default_factory=list)


__all__ = [
    "JobSchema",
    "PackageSchema",
    "ReleaseSchema",
    "RoleJobSchema",
    "RoleManifestSchema",
    "RoleSchema",
]
