"""Tests for compilation/filter.py module.

Tests package gathering, role manifest narrowing and cache pruning.
"""

import pytest

from release_compiler.compilation.errors import FilterError
from release_compiler.compilation.filter import (
    check_unique_releases,
    gather_packages,
    remove_compiled_packages,
)
from release_compiler.releases.models import Job, Package, Release
from release_compiler.releases.schema import RoleManifestSchema


class FakeCache:
    """Compiled package lookup backed by a set of fingerprints."""

    def __init__(self, compiled: set[str]) -> None:
        self.compiled = compiled

    def exists(self, fingerprint: str) -> bool:
        return fingerprint in self.compiled


@pytest.fixture
def release() -> Release:
    """Create a release with two jobs.

    consul-server needs consul (-> go); ruby-app needs ruby (-> libyaml).
    """
    rel = Release(name="test-release", version="1")
    go = Package(name="go", fingerprint="go-fp", release=rel)
    consul = Package(name="consul", fingerprint="consul-fp", release=rel, dependencies=[go])
    libyaml = Package(name="libyaml", fingerprint="libyaml-fp", release=rel)
    ruby = Package(name="ruby", fingerprint="ruby-fp", release=rel, dependencies=[libyaml])
    rel.packages = [go, consul, libyaml, ruby]
    rel.jobs = [
        Job(name="consul-server", release=rel, packages=[consul]),
        Job(name="ruby-app", release=rel, packages=[ruby]),
    ]
    return rel


def manifest(*jobs: tuple[str, str]) -> RoleManifestSchema:
    """Build a single-role manifest from (job, release) pairs."""
    return RoleManifestSchema.model_validate(
        {
            "roles": [
                {
                    "name": "myrole",
                    "jobs": [{"name": j, "release_name": r} for j, r in jobs],
                }
            ]
        }
    )


class TestGatherPackages:
    """Tests for gather_packages function."""

    def test_all_packages_without_manifest(self, release: Release):
        """Without a manifest every package should be included."""
        packages = gather_packages([release])
        assert [p.name for p in packages] == ["go", "consul", "libyaml", "ruby"]

    def test_dedupes_across_releases(self):
        """Same fingerprint in two releases should be gathered once."""
        r1 = Release(name="r1")
        r2 = Release(name="r2")
        first = Package(name="go-1.4.1", fingerprint="G", release=r1)
        second = Package(name="go-1.4", fingerprint="G", release=r2)
        r1.packages = [first]
        r2.packages = [second]

        packages = gather_packages([r1, r2])
        assert packages == [first]

    def test_manifest_selects_job_packages_and_dependencies(self, release: Release):
        """A manifest should select its jobs' packages plus dependencies."""
        packages = gather_packages([release], manifest(("consul-server", "test-release")))
        assert {p.name for p in packages} == {"consul", "go"}

    def test_manifest_dedupes_shared_packages(self, release: Release):
        """Packages needed by several jobs should appear once."""
        roles = manifest(
            ("consul-server", "test-release"),
            ("ruby-app", "test-release"),
            ("consul-server", "test-release"),
        )
        packages = gather_packages([release], roles)
        assert sorted(p.name for p in packages) == ["consul", "go", "libyaml", "ruby"]

    def test_unknown_job(self, release: Release):
        """An unknown job should raise FilterError naming job and release."""
        with pytest.raises(FilterError, match="Cannot find job foo in release test-release"):
            gather_packages([release], manifest(("foo", "test-release")))

    def test_unknown_release(self, release: Release):
        """A job of a release that is not loaded should raise FilterError."""
        with pytest.raises(FilterError, match="not loaded") as exc_info:
            gather_packages([release], manifest(("consul-server", "other")))
        assert exc_info.value.code == "filter_error"

    def test_release_loaded_twice(self, release: Release):
        """Loading the same release twice should be rejected."""
        with pytest.raises(FilterError, match="loaded more than once"):
            gather_packages([release, Release(name="test-release")])


class TestCheckUniqueReleases:
    """Tests for check_unique_releases function."""

    def test_distinct_names_pass(self):
        """Distinct release names should pass."""
        check_unique_releases([Release(name="a"), Release(name="b")])

    def test_duplicate_names_fail(self):
        """Duplicate release names should fail."""
        with pytest.raises(FilterError, match="release tor has been loaded more than once"):
            check_unique_releases([Release(name="tor"), Release(name="tor")])


class TestRemoveCompiledPackages:
    """Tests for remove_compiled_packages function."""

    def test_drops_compiled(self, release: Release):
        """Compiled packages should be dropped, order preserved."""
        remaining = remove_compiled_packages(release.packages, FakeCache({"go-fp"}))
        assert [p.name for p in remaining] == ["consul", "libyaml", "ruby"]

    def test_keeps_dependency_references(self, release: Release):
        """Pruned packages should stay referenced as dependencies."""
        remaining = remove_compiled_packages(release.packages, FakeCache({"go-fp"}))
        consul = next(p for p in remaining if p.name == "consul")
        assert [d.name for d in consul.dependencies] == ["go"]

    def test_compiled_package_dropped_even_if_dependency_is_not(self, release: Release):
        """The decision is made per package."""
        remaining = remove_compiled_packages(release.packages, FakeCache({"consul-fp"}))
        assert "consul" not in [p.name for p in remaining]
        assert "go" in [p.name for p in remaining]

    def test_nothing_compiled(self, release: Release):
        """An empty cache should keep everything."""
        assert remove_compiled_packages(release.packages, FakeCache(set())) == release.packages
