"""Tests for the check registry and selection resolution."""

import os
import sys

import pytest
from kube_health.errors import NoChecksSelectedError, UnknownCheckError, UsageError
from kube_health.registry import (
    CheckDescriptor,
    CheckRegistry,
    build_registry,
    format_listing,
    resolve_selection,
)

EXPECTED_ORDER = [
    "cluster", "nodes", "storage", "network", "security", "longhorn", "nginx", "loki",
    "cilium", "cilium-envoy", "etcd", "coredns", "metrics", "cert-manager", "hostport",
]


class TestCheckRegistry:
    """Test cases for the static registry."""

    def test_declaration_order(self):
        """list_all returns checks in declaration order."""
        registry = build_registry()
        assert [d.name for d in registry.list_all()] == EXPECTED_ORDER
        assert len(registry) == 15

    def test_list_all_is_stable(self):
        """Repeated calls give the same order."""
        registry = build_registry()
        assert registry.list_all() == registry.list_all()

    def test_resolve_known(self):
        """resolve returns the matching descriptor."""
        descriptor = build_registry().resolve("etcd")
        assert descriptor.name == "etcd"
        assert descriptor.description == "etcd Key-Value Store"

    def test_resolve_unknown(self):
        """Unknown names raise UnknownCheckError carrying the name."""
        with pytest.raises(UnknownCheckError) as exc_info:
            build_registry().resolve("bogus")
        assert exc_info.value.name == "bogus"

    def test_names_are_case_sensitive(self):
        """Check names are matched exactly."""
        with pytest.raises(UnknownCheckError):
            build_registry().resolve("Cluster")

    def test_only_cluster_is_cluster_level(self):
        """Cluster indicators are tied to the cluster check."""
        registry = build_registry()
        assert [d.name for d in registry.list_all() if d.cluster_level] == ["cluster"]

    def test_duplicate_names_rejected(self):
        """A registry cannot hold two checks with the same name."""
        with pytest.raises(ValueError):
            CheckRegistry([
                CheckDescriptor("a", "/bin/true", "A"),
                CheckDescriptor("a", "/bin/true", "Another A"),
            ])


class TestBuildRegistry:
    """Test cases for how checks are launched."""

    def test_builtin_providers_run_as_modules(self):
        """Without a checks dir each check runs its provider module."""
        descriptor = build_registry().resolve("cert-manager")
        assert descriptor.executable == sys.executable
        assert descriptor.args == ("-m", "kube_health.checks.cert_manager")

    def test_checks_dir_uses_scripts(self, tmp_path):
        """With a checks dir each check runs its script from that directory."""
        descriptor = build_registry(str(tmp_path)).resolve("hostport")
        assert descriptor.executable == os.path.join(str(tmp_path), "check-hostport-conflicts.sh")
        assert descriptor.args == ()

    def test_checks_dir_made_absolute(self, tmp_path, monkeypatch):
        """Relative directories are resolved once at build time."""
        monkeypatch.chdir(tmp_path)
        descriptor = build_registry("scripts").resolve("cluster")
        assert os.path.isabs(descriptor.executable)


class TestResolveSelection:
    """Test cases for turning CLI input into a selection."""

    def test_all_selects_everything_in_order(self):
        """--all selects every check in declaration order."""
        registry = build_registry()
        assert [d.name for d in resolve_selection(registry, True, [])] == EXPECTED_ORDER

    def test_all_ignores_names(self):
        """Names given together with --all do not change the selection."""
        registry = build_registry()
        assert resolve_selection(registry, True, ["etcd"]) == registry.list_all()

    def test_named_selection_keeps_user_order(self):
        """Explicit names run in the order given."""
        selection = resolve_selection(build_registry(), False, ["storage", "cluster"])
        assert [d.name for d in selection] == ["storage", "cluster"]

    def test_duplicates_run_once(self):
        """A repeated name is only selected the first time."""
        selection = resolve_selection(build_registry(), False, ["etcd", "nodes", "etcd"])
        assert [d.name for d in selection] == ["etcd", "nodes"]

    def test_unknown_name_fails_whole_selection(self):
        """Any unknown name fails before anything is selected."""
        with pytest.raises(UnknownCheckError) as exc_info:
            resolve_selection(build_registry(), False, ["cluster", "nope", "nodes"])
        assert exc_info.value.name == "nope"

    @pytest.mark.parametrize("names", [[], None])
    def test_no_selection(self, names):
        """Neither --all nor names is a usage error."""
        with pytest.raises(NoChecksSelectedError) as exc_info:
            resolve_selection(build_registry(), False, names)
        assert isinstance(exc_info.value, UsageError)


class TestFormatListing:
    """Test cases for the --list output."""

    def test_listing_contains_every_check(self):
        """Every check appears with its description, in order."""
        registry = build_registry()
        listing = format_listing(registry)
        positions = [listing.index(f"  {name:<15} - ") for name in EXPECTED_ORDER]
        assert positions == sorted(positions)
        assert "  cilium-envoy    - Cilium Envoy Proxy" in listing

    def test_listing_header_and_hints(self):
        listing = format_listing(build_registry(), "khc")
        assert listing.startswith("Available Health Checks:\n")
        assert "Use 'khc <check-name>' to run specific checks" in listing
        assert listing.endswith("Use 'khc --all' to run all checks\n")
