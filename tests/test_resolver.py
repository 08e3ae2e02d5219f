"""Tests for dependency resolution."""

import pytest

from business_orchestrator.errors import CycleError, MissingDependencyError
from business_orchestrator.plugins.registry import PluginRegistry
from business_orchestrator.plugins.resolver import DependencyResolver

from .helpers import make_manifest, make_snapshot


def _ids(manifests) -> list[str]:
	return [m.id for m in manifests]


class TestOrdering:
	"""Topological order with a stable tie-break."""

	def test_dependency_first(self):
		"""A depends on B: B loads before A."""
		snapshot = make_snapshot(make_manifest("A", depends_on=("B",)), make_manifest("B"))
		assert _ids(DependencyResolver().resolve(["A", "B"], snapshot)) == ["B", "A"]

	def test_independent_plugins_keep_declaration_order(self):
		snapshot = make_snapshot(make_manifest("c"), make_manifest("a"), make_manifest("b"))
		assert _ids(DependencyResolver().resolve(["b", "a", "c"], snapshot)) == ["c", "a", "b"]

	def test_diamond(self):
		snapshot = make_snapshot(
			make_manifest("app", depends_on=("left", "right")),
			make_manifest("left", depends_on=("base",)),
			make_manifest("right", depends_on=("base",)),
			make_manifest("base"),
		)
		assert _ids(DependencyResolver().resolve(["app"], snapshot)) == ["base", "left", "right", "app"]

	def test_transitive_dependencies_pulled_in(self):
		snapshot = make_snapshot(make_manifest("a", depends_on=("b",)), make_manifest("b", depends_on=("c",)), make_manifest("c"))
		assert _ids(DependencyResolver().resolve(["a"], snapshot)) == ["c", "b", "a"]

	def test_deterministic(self):
		snapshot = PluginRegistry().snapshot
		resolver = DependencyResolver()
		first = _ids(resolver.resolve(snapshot.ids, snapshot))
		assert all(_ids(resolver.resolve(snapshot.ids, snapshot)) == first for _ in range(5))

	def test_builtin_catalogue_order(self):
		snapshot = PluginRegistry().snapshot
		order = _ids(DependencyResolver().resolve(["intellitrade-blockchain", "core-api"], snapshot))
		assert order == ["core-auth", "core-database", "core-api", "intellitrade-kyc", "intellitrade-blockchain"]

	def test_empty(self):
		assert DependencyResolver().resolve([], make_snapshot()) == []


class TestErrors:
	"""Missing dependencies and cycles."""

	def test_missing_dependency_named(self):
		snapshot = make_snapshot(make_manifest("A", depends_on=("ghost",)))
		with pytest.raises(MissingDependencyError) as exc_info:
			DependencyResolver().resolve(["A"], snapshot)
		assert exc_info.value.plugin_id == "A"
		assert exc_info.value.missing_id == "ghost"
		assert "ghost" in str(exc_info.value) and "A" in str(exc_info.value)
		assert exc_info.value.fatal is True

	def test_missing_requested_plugin(self):
		with pytest.raises(MissingDependencyError) as exc_info:
			DependencyResolver().resolve(["nope"], make_snapshot())
		assert exc_info.value.plugin_id is None
		assert exc_info.value.missing_id == "nope"

	def test_two_node_cycle(self):
		"""A depends on B and B on A."""
		snapshot = make_snapshot(make_manifest("A", depends_on=("B",)), make_manifest("B", depends_on=("A",)))
		with pytest.raises(CycleError) as exc_info:
			DependencyResolver().resolve(["A", "B"], snapshot)
		assert exc_info.value.members == ["A", "B"]
		assert exc_info.value.stage == "resolving"

	def test_cycle_excludes_downstream_nodes(self):
		snapshot = make_snapshot(
			make_manifest("tail", depends_on=("x",)),
			make_manifest("x", depends_on=("y",)),
			make_manifest("y", depends_on=("z",)),
			make_manifest("z", depends_on=("x",)),
			make_manifest("free"),
		)
		with pytest.raises(CycleError) as exc_info:
			DependencyResolver().resolve(["tail", "free"], snapshot)
		assert exc_info.value.members == ["x", "y", "z"]

	def test_self_dependency(self):
		snapshot = make_snapshot(make_manifest("loop", depends_on=("loop",)))
		with pytest.raises(CycleError) as exc_info:
			DependencyResolver().resolve(["loop"], snapshot)
		assert exc_info.value.members == ["loop"]
