"""Release graph module.

This module handles:
- In-memory release, package and job models
- Release index and role manifest schemas
- Loading release indexes and role manifests from YAML/JSON
"""

from release_compiler.releases.io import (
    ReleaseLoadError,
    build_release,
    load_release,
    load_releases,
    load_role_manifest,
)
from release_compiler.releases.models import Job, Package, Release, ReleaseLookupError
from release_compiler.releases.schema import (
    JobSchema,
    PackageSchema,
    ReleaseSchema,
    RoleJobSchema,
    RoleManifestSchema,
    RoleSchema,
)

__all__ = [
    "Job",
    "JobSchema",
    "Package",
    "PackageSchema",
    "Release",
    "ReleaseLoadError",
    "ReleaseLookupError",
    "ReleaseSchema",
    "RoleJobSchema",
    "RoleManifestSchema",
    "RoleSchema",
    "build_release",
    "load_release",
    "load_releases",
    "load_role_manifest",
]
