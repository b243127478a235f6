"""Release index and role manifest loading.

This module loads YAML/JSON release indexes into the in-memory release
graph and parses role manifests. Dependency names in an index are
resolved to package objects of the same release here, so the rest of
the system only ever walks object references.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from release_compiler.releases.models import Job, Package, Release
from release_compiler.releases.schema import ReleaseSchema, RoleManifestSchema

logger = logging.getLogger(__name__)


class ReleaseLoadError(ValueError):
    """Raised when a release index or role manifest cannot be loaded."""

    def __init__(self, message: str, code: str = "release_load_error") -> None:
        super().__init__(message)
        self.code = code


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _load_document(path: Path) -> dict[str, Any]:
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            return load_yaml(path)
        if suffix == ".json":
            return load_json(path)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ReleaseLoadError(f"Parse error in {path}: {e}") from e
    except ValueError as e:
        raise ReleaseLoadError(f"{path}: {e}") from e
    except OSError as e:
        raise ReleaseLoadError(f"Cannot read {path}: {e}") from e
    raise ReleaseLoadError(
        f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
    )


def build_release(schema: ReleaseSchema, base_dir: Path | None = None) -> Release:
    """Turn a validated release index into a release graph.

    Args:
        schema: Validated release index.
        base_dir: Directory relative package sources are resolved against.

    Returns:
        Release with dependency and job references resolved.

    Raises:
        ReleaseLoadError: If a dependency or job package name is unknown.
    """
    release = Release(name=schema.name, version=schema.version)

    by_name: dict[str, Package] = {}
    for pkg_schema in schema.packages:
        source: Path | None = None
        if pkg_schema.source:
            source = Path(pkg_schema.source)
            if base_dir is not None and not source.is_absolute():
                source = base_dir / source
        pkg = Package(
            name=pkg_schema.name,
            fingerprint=pkg_schema.fingerprint,
            version=pkg_schema.version or pkg_schema.fingerprint,
            release=release,
            source=source,
        )
        by_name[pkg.name] = pkg
        release.packages.append(pkg)

    # Second pass once every package object exists
    for pkg_schema in schema.packages:
        pkg = by_name[pkg_schema.name]
        for dep_name in pkg_schema.dependencies:
            dep = by_name.get(dep_name)
            if dep is None:
                raise ReleaseLoadError(
                    f"Package {pkg_schema.name} of release {schema.name} "
                    f"depends on unknown package {dep_name}"
                )
            pkg.dependencies.append(dep)

    for job_schema in schema.jobs:
        job = Job(
            name=job_schema.name,
            version=job_schema.version or "",
            description=job_schema.description,
            release=release,
        )
        for pkg_name in job_schema.packages:
            pkg = by_name.get(pkg_name)
            if pkg is None:
                raise ReleaseLoadError(
                    f"Job {job_schema.name} of release {schema.name} "
                    f"needs unknown package {pkg_name}"
                )
            job.packages.append(pkg)
        release.jobs.append(job)

    logger.debug(
        "Loaded release %s (%s): %d packages, %d jobs",
        release.name,
        release.version,
        len(release.packages),
        len(release.jobs),
    )
    return release


def load_release(path: Path) -> Release:
    """Load a release index file (YAML or JSON).

    Raises:
        ReleaseLoadError: If the file cannot be read, parsed or validated.
    """
    data = _load_document(path)
    try:
        schema = ReleaseSchema.model_validate(data)
    except ValidationError as e:
        raise ReleaseLoadError(f"Invalid release index {path}: {e}") from e
    return build_release(schema, base_dir=path.parent)


def load_releases(paths: list[Path]) -> list[Release]:
    """Load several release index files, in order."""
    return [load_release(p) for p in paths]


def load_role_manifest(path: Path) -> RoleManifestSchema:
    """Load and validate a role manifest file (YAML or JSON).

    Job references are not resolved here; the package filter resolves
    them against the loaded releases.

    Raises:
        ReleaseLoadError: If the file cannot be read, parsed or validated.
    """
    data = _load_document(path)
    try:
        return RoleManifestSchema.model_validate(data)
    except ValidationError as e:
        raise ReleaseLoadError(f"Invalid role manifest {path}: {e}") from e


__all__ = [
    "ReleaseLoadError",
    "build_release",
    "load_json",
    "load_release",
    "load_releases",
    "load_role_manifest",
    "load_yaml",
]
