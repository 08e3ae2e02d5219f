"""Tests for plugin discovery and registry snapshots."""

from pathlib import Path

import pytest

from business_orchestrator.detection.profiles import DEFAULT_PROFILES, UNKNOWN_PROFILE
from business_orchestrator.plugins.catalog import builtin_manifests
from business_orchestrator.plugins.models import Capability, LoadingStrategy, PluginCategory, PluginManifest
from business_orchestrator.plugins.registry import PluginRegistry, RegistrySnapshot

from .helpers import make_manifest, write_manifest


class TestPluginManifest:
	"""Manifest parsing."""

	def test_kebab_case_aliases(self):
		manifest = PluginManifest.model_validate({
			"id": "crm",
			"depends-on": "core-auth, core-api",
			"loading-strategy": "on-demand",
			"capabilities": ["collections", "hooks"],
		})
		assert manifest.depends_on == ("core-auth", "core-api")
		assert manifest.loading_strategy == LoadingStrategy.ON_DEMAND
		assert manifest.capabilities == frozenset({Capability.COLLECTIONS, Capability.HOOKS})

	def test_unknown_capability_rejected(self):
		with pytest.raises(ValueError):
			PluginManifest.model_validate({"id": "x", "capabilities": ["teleport"]})

	def test_duplicate_dependencies_collapsed(self):
		manifest = make_manifest("x", depends_on=("a", "a", "b"))
		assert manifest.depends_on == ("a", "b")

	def test_supports(self):
		assert make_manifest("x").supports("cms")
		assert not make_manifest("x", supported_contexts=("salarium",)).supports("cms")

	def test_fingerprint_is_stable(self):
		assert make_manifest("x").fingerprint() == make_manifest("x").fingerprint()
		assert make_manifest("x").fingerprint() != make_manifest("x", version="2.0.0").fingerprint()


class TestRegistrySnapshot:
	"""Snapshot invariants."""

	def test_duplicate_ids_rejected(self):
		with pytest.raises(ValueError):
			RegistrySnapshot((make_manifest("a"), make_manifest("a")))

	def test_lookup_and_index(self):
		snapshot = RegistrySnapshot((make_manifest("a"), make_manifest("b")))
		assert "b" in snapshot
		assert snapshot.index_of("b") == 1
		assert snapshot.get("missing") is None
		assert snapshot.ids == ["a", "b"]
		assert len(snapshot) == 2


class TestDiscovery:
	"""Manifest discovery from search paths."""

	def test_default_catalogue(self):
		registry = PluginRegistry()
		assert registry.snapshot.ids == [m.id for m in builtin_manifests()]
		assert not registry.discovered

	def test_discover_reads_yaml(self, tmp_path: Path):
		write_manifest(tmp_path, "crm", {"name": "@paulovila/crm", "depends-on": ["core-api"]})
		registry = PluginRegistry(search_paths=[tmp_path])
		snapshot = registry.discover()
		assert registry.discovered
		manifest = snapshot.get("crm")
		assert manifest is not None
		assert manifest.depends_on == ("core-api",)
		assert snapshot.ids[-1] == "crm"

	def test_sorted_directory_order(self, tmp_path: Path):
		write_manifest(tmp_path, "zeta", {"id": "zeta"})
		write_manifest(tmp_path, "alpha", {"id": "alpha"}, filename="plugin.yml")
		snapshot = PluginRegistry(manifests=[], search_paths=[tmp_path]).discover()
		assert snapshot.ids == ["alpha", "zeta"]

	def test_invalid_manifests_skipped(self, tmp_path: Path):
		write_manifest(tmp_path, "bad-yaml", "id: [unclosed\n")
		write_manifest(tmp_path, "bad-cap", {"capabilities": ["teleport"]})
		write_manifest(tmp_path, "empty", "")
		(tmp_path / "no-manifest").mkdir()
		write_manifest(tmp_path, "good", {"version": "2.0.0"})
		snapshot = PluginRegistry(manifests=[], search_paths=[tmp_path]).discover()
		assert snapshot.ids == ["good"]

	def test_later_path_overrides_in_place(self, tmp_path: Path):
		first, second = tmp_path / "first", tmp_path / "second"
		write_manifest(first, "a", {"version": "1.0.0"})
		write_manifest(first, "b", {"version": "1.0.0"})
		write_manifest(second, "a", {"version": "2.0.0"})
		snapshot = PluginRegistry(manifests=[], search_paths=[first, second]).discover()
		assert snapshot.ids == ["a", "b"]
		assert snapshot.get("a").version == "2.0.0"

	def test_missing_search_path_ignored(self, tmp_path: Path):
		snapshot = PluginRegistry(manifests=[make_manifest("a")], search_paths=[tmp_path / "nope"]).discover()
		assert snapshot.ids == ["a"]

	def test_scan_does_not_publish(self, tmp_path: Path):
		write_manifest(tmp_path, "extra", {"category": "shared"})
		registry = PluginRegistry(search_paths=[tmp_path])
		before = registry.snapshot

		scanned = registry.scan()
		assert "extra" in scanned
		assert registry.snapshot is before
		assert not registry.discovered

		published = registry.publish(scanned)
		assert registry.snapshot is published
		assert "extra" in registry.snapshot
		assert registry.discovered

	def test_discover_publishes_new_snapshot(self, tmp_path: Path):
		registry = PluginRegistry(search_paths=[tmp_path])
		before = registry.snapshot
		after = registry.discover()
		assert after is registry.snapshot
		assert after is not before
		assert after.version == before.version + 1
		assert before.ids == after.ids


class TestRegistration:
	"""Copy-on-write registration."""

	def test_register_and_unregister(self):
		registry = PluginRegistry(manifests=[make_manifest("a")])
		old = registry.snapshot
		registry.register(make_manifest("b"))
		assert registry.snapshot.ids == ["a", "b"]
		assert old.ids == ["a"]

		assert registry.unregister("a") is True
		assert registry.unregister("a") is False
		assert registry.snapshot.ids == ["b"]

	def test_register_replaces_in_place(self):
		registry = PluginRegistry(manifests=[make_manifest("a"), make_manifest("b")])
		registry.register(make_manifest("a", version="3.0.0"))
		assert registry.snapshot.ids == ["a", "b"]
		assert registry.snapshot.get("a").version == "3.0.0"

	def test_list_plugins(self):
		registry = PluginRegistry(manifests=[make_manifest("a", capabilities={Capability.HOOKS})])
		[entry] = registry.list_plugins()
		assert entry["id"] == "a"
		assert entry["capabilities"] == ["hooks"]
		assert entry["loading_strategy"] == "eager"


class TestPluginsForContext:
	"""Tenant plugin selection."""

	def test_intellitrade(self):
		registry = PluginRegistry()
		ids = registry.plugins_for_context(DEFAULT_PROFILES["intellitrade"])
		assert ids[:3] == ["core-auth", "core-database", "core-api"]
		assert "shared-analytics" in ids
		assert "intellitrade-kyc" in ids
		assert "intellitrade-blockchain" in ids
		assert "salarium-hr" not in ids

	def test_missing_optional_plugin_skipped(self):
		registry = PluginRegistry(manifests=[
			make_manifest("core-auth"), make_manifest("core-database"), make_manifest("core-api"),
		])
		ids = registry.plugins_for_context(DEFAULT_PROFILES["latinos"])
		assert ids == ["core-auth", "core-database", "core-api"]

	def test_business_plugins_require_listing(self):
		registry = PluginRegistry(manifests=[
			make_manifest("crm", category=PluginCategory.BUSINESS, supported_contexts=("cms",)),
		])
		assert "crm" in registry.plugins_for_context(DEFAULT_PROFILES["cms"])
		assert "crm" not in registry.plugins_for_context(DEFAULT_PROFILES["salarium"])

	def test_unknown_profile(self):
		ids = PluginRegistry().plugins_for_context(UNKNOWN_PROFILE)
		assert ids == ["core-auth", "core-database"]
