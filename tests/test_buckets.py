"""Tests for compilation/buckets.py module.

Tests dependency depth computation and level partitioning.
"""

import random

import pytest

from release_compiler.compilation.buckets import (
    compute_depths,
    create_dep_buckets,
    flatten_buckets,
    unique_packages,
)
from release_compiler.compilation.errors import GraphError
from release_compiler.releases.models import Package, Release


def make_release(name: str, graph: dict[str, list[str]]) -> Release:
    """Build a release whose package fingerprints equal their names."""
    release = Release(name=name, version="1")
    by_name = {}
    for pkg_name in graph:
        pkg = Package(name=pkg_name, fingerprint=f"{pkg_name}-fp", release=release)
        by_name[pkg_name] = pkg
        release.packages.append(pkg)
    for pkg_name, deps in graph.items():
        by_name[pkg_name].dependencies = [by_name[d] for d in deps]
    return release


def names(levels: list[list[Package]]) -> list[list[str]]:
    return [[p.name for p in level] for level in levels]


class TestCreateDepBuckets:
    """Tests for create_dep_buckets function."""

    def test_empty(self):
        """No packages should give no levels."""
        assert create_dep_buckets([]) == []

    def test_chain_through_set(self):
        """A, B->C, C->A should give [[A], [C], [B]]."""
        release = make_release("r", {"A": [], "B": ["C"], "C": ["A"]})
        assert names(create_dep_buckets(release.packages)) == [["A"], ["C"], ["B"]]

    def test_release_graph(self):
        """A typical release graph should level by longest dependency path."""
        release = make_release(
            "test-release",
            {
                "ruby-2.5": ["libyaml", "openssl"],
                "consul": ["go"],
                "go": [],
                "cc": [],
                "libyaml": ["cc"],
                "openssl": ["cc"],
            },
        )
        assert names(create_dep_buckets(release.packages)) == [
            ["cc", "go"],
            ["consul", "libyaml", "openssl"],
            ["ruby-2.5"],
        ]

    def test_dependencies_precede_dependents(self):
        """Every dependency should sit in a strictly lower level."""
        release = make_release(
            "r",
            {
                "a": [],
                "b": ["a"],
                "c": ["a", "b"],
                "d": ["c"],
                "e": [],
                "f": ["e", "a"],
            },
        )
        levels = create_dep_buckets(release.packages)
        index = {p.fingerprint: i for i, level in enumerate(levels) for p in level}
        for pkg in release.packages:
            for dep in pkg.dependencies:
                assert index[dep.fingerprint] < index[pkg.fingerprint]

    def test_deterministic_across_input_order(self):
        """Input order should not change the result."""
        release = make_release(
            "r",
            {"z": [], "y": [], "x": ["z"], "w": ["y", "x"], "v": ["y"]},
        )
        expected = names(create_dep_buckets(release.packages))
        rng = random.Random(42)
        for _ in range(20):
            shuffled = list(release.packages)
            rng.shuffle(shuffled)
            assert names(create_dep_buckets(shuffled)) == expected

    def test_ties_broken_by_fingerprint(self):
        """Packages sharing a name should be ordered by fingerprint."""
        r1 = Release(name="r1")
        r2 = Release(name="r2")
        late = Package(name="go", fingerprint="fp-b", release=r1)
        early = Package(name="go", fingerprint="fp-a", release=r2)
        levels = create_dep_buckets([late, early])
        assert [p.fingerprint for p in levels[0]] == ["fp-a", "fp-b"]

    def test_duplicate_fingerprints_collapsed(self):
        """Packages with the same fingerprint should be built once."""
        r1 = Release(name="r1")
        r2 = Release(name="r2")
        first = Package(name="go-1.4.1", fingerprint="G", release=r1)
        second = Package(name="go-1.4", fingerprint="G", release=r2)
        levels = create_dep_buckets([first, second])
        assert len(levels) == 1
        assert levels[0] == [first]

    def test_depth_counts_pruned_dependencies(self):
        """Depth should include dependencies outside the input set."""
        release = make_release("r", {"a": [], "b": ["a"], "c": ["b"]})
        c = release.lookup_package("c")
        levels = create_dep_buckets([c])
        assert names(levels) == [["c"]]
        assert compute_depths([c])[c.fingerprint] == 2

    def test_empty_levels_dropped(self):
        """Levels emptied by pruning should not appear."""
        release = make_release("r", {"a": [], "b": ["a"], "c": ["b"], "d": []})
        subset = [release.lookup_package("c"), release.lookup_package("d")]
        assert names(create_dep_buckets(subset)) == [["d"], ["c"]]


class TestCycles:
    """Tests for cycle detection."""

    def test_two_package_cycle(self):
        """A -> B -> A should raise GraphError naming the cycle."""
        release = make_release("r", {"A": ["B"], "B": ["A"]})
        with pytest.raises(GraphError, match="cycle") as exc_info:
            create_dep_buckets(release.packages)
        assert exc_info.value.code == "graph_error"
        assert set(exc_info.value.cycle) == {"A-fp", "B-fp"}
        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]

    def test_self_cycle(self):
        """A package depending on itself is a cycle."""
        release = make_release("r", {"A": ["A"]})
        with pytest.raises(GraphError):
            create_dep_buckets(release.packages)

    def test_cycle_behind_acyclic_prefix(self):
        """Cycles reachable only through other packages are found."""
        release = make_release("r", {"top": ["x"], "x": ["y"], "y": ["x"]})
        with pytest.raises(GraphError) as exc_info:
            create_dep_buckets([release.lookup_package("top")])
        assert "top-fp" not in exc_info.value.cycle

    def test_diamond_is_not_a_cycle(self):
        """Shared dependencies should not be mistaken for cycles."""
        release = make_release(
            "r", {"base": [], "left": ["base"], "right": ["base"], "top": ["left", "right"]}
        )
        assert names(create_dep_buckets(release.packages)) == [
            ["base"],
            ["left", "right"],
            ["top"],
        ]


class TestDeepGraphs:
    """Tests for very deep dependency chains."""

    def test_deep_chain(self):
        """A chain deeper than the recursion limit should be leveled."""
        depth = 5000
        release = Release(name="deep")
        previous = None
        for i in range(depth):
            pkg = Package(name=f"p{i:05d}", fingerprint=f"fp{i}", release=release)
            if previous is not None:
                pkg.dependencies = [previous]
            release.packages.append(pkg)
            previous = pkg

        levels = create_dep_buckets(reversed(release.packages))
        assert len(levels) == depth
        assert levels[0][0].name == "p00000"
        assert levels[-1][0].name == f"p{depth - 1:05d}"


class TestHelpers:
    """Tests for unique_packages and flatten_buckets."""

    def test_unique_keeps_first(self):
        """unique_packages should keep the first occurrence."""
        a = Package(name="a", fingerprint="x")
        b = Package(name="b", fingerprint="x")
        c = Package(name="c", fingerprint="y")
        assert unique_packages([a, b, c]) == [a, c]

    def test_flatten(self):
        """flatten_buckets should concatenate levels in order."""
        release = make_release("r", {"a": [], "b": ["a"]})
        flat = flatten_buckets(create_dep_buckets(release.packages))
        assert [p.name for p in flat] == ["a", "b"]
