"""
Dependency Resolver - Orders a tenant's plugins so dependencies load first.

Uses Kahn's algorithm. Plugins that become ready at the same time are taken
in registry declaration order, so a fixed input always yields the same order.
"""

import heapq
import logging
from typing import Iterable

from ..errors import CycleError, MissingDependencyError
from .models import PluginManifest
from .registry import RegistrySnapshot

logger = logging.getLogger(__name__)


class DependencyResolver:
	"""Topologically sorts plugin manifests from a registry snapshot."""

	def resolve(self, plugin_ids: Iterable[str], snapshot: RegistrySnapshot) -> list[PluginManifest]:
		"""
		Resolve a plugin set into load order.

		Transitive dependencies present in the snapshot are pulled in.

		Raises:
			MissingDependencyError: a requested or depended-on id is not registered
			CycleError: the dependency graph is not acyclic
		"""
		nodes = self._collect(plugin_ids, snapshot)

		dependents: dict[str, list[str]] = {pid: [] for pid in nodes}
		remaining_deps: dict[str, int] = {}
		for pid, manifest in nodes.items():
			remaining_deps[pid] = len(manifest.depends_on)
			for dep in manifest.depends_on:
				dependents[dep].append(pid)

		ready = [(snapshot.index_of(pid), pid) for pid, count in remaining_deps.items() if count == 0]
		heapq.heapify(ready)

		ordered: list[PluginManifest] = []
		while ready:
			_, pid = heapq.heappop(ready)
			ordered.append(nodes[pid])
			for dependent in dependents[pid]:
				remaining_deps[dependent] -= 1
				if remaining_deps[dependent] == 0:
					heapq.heappush(ready, (snapshot.index_of(dependent), dependent))

		if len(ordered) < len(nodes):
			unresolved = {pid for pid, count in remaining_deps.items() if count > 0}
			members = self._cycle_members(unresolved, nodes)
			members.sort(key=snapshot.index_of)
			logger.error(f"Dependency cycle detected: {members}")
			raise CycleError(members)

		logger.debug(f"Resolved plugin order: {[m.id for m in ordered]}")
		return ordered

	def _collect(self, plugin_ids: Iterable[str], snapshot: RegistrySnapshot) -> dict[str, PluginManifest]:
		"""Walk dependencies from the requested ids, failing on the first gap."""
		nodes: dict[str, PluginManifest] = {}
		pending: list[tuple[str | None, str]] = [(None, pid) for pid in plugin_ids]
		while pending:
			requested_by, pid = pending.pop(0)
			if pid in nodes:
				continue
			manifest = snapshot.get(pid)
			if manifest is None:
				raise MissingDependencyError(requested_by, pid)
			nodes[pid] = manifest
			pending.extend((pid, dep) for dep in manifest.depends_on)
		return nodes

	@staticmethod
	def _cycle_members(unresolved: set[str], nodes: dict[str, PluginManifest]) -> list[str]:
		"""
		Drop nodes that are only downstream of a cycle.

		A node stuck behind a cycle has no unresolved node depending on it, so
		peeling such nodes off repeatedly leaves the cycle itself.
		"""
		members = set(unresolved)
		changed = True
		while changed:
			changed = False
			depended_on = {dep for pid in members for dep in nodes[pid].depends_on if dep in members}
			leaves = members - depended_on
			if leaves:
				members -= leaves
				changed = True
		return list(members)
