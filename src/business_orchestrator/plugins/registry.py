"""
Plugin Registry - Discovers plugin manifests and publishes immutable snapshots.

Manifests are discovered from:
- Seed manifests handed to the registry (the built-in catalogue by default)
- Each configured search path: <path>/<plugin-dir>/plugin.yaml

A later search path overrides an earlier manifest with the same id. Every
change builds a brand-new snapshot and swaps it in one assignment, so readers
holding the old snapshot never observe a partial update.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Sequence

import yaml
from pydantic import ValidationError

from ..detection.profiles import BusinessProfile
from ..errors import ManifestError
from .catalog import builtin_manifests
from .models import PluginCategory, PluginManifest

logger = logging.getLogger(__name__)

MANIFEST_FILENAMES = ("plugin.yaml", "plugin.yml")


@dataclass(frozen=True)
class RegistrySnapshot:
	"""An immutable, ordered catalogue of plugin manifests."""
	manifests: tuple[PluginManifest, ...] = ()
	version: int = 0
	created_at: str = field(default_factory=lambda: datetime.now().isoformat())
	_index: Mapping[str, int] = field(default_factory=dict, repr=False, compare=False)

	def __post_init__(self) -> None:
		index: dict[str, int] = {}
		for position, manifest in enumerate(self.manifests):
			if manifest.id in index:
				raise ValueError(f"Duplicate plugin id in snapshot: {manifest.id}")
			index[manifest.id] = position
		object.__setattr__(self, "_index", MappingProxyType(index))

	def __contains__(self, plugin_id: object) -> bool:
		return plugin_id in self._index

	def __iter__(self) -> Iterator[PluginManifest]:
		return iter(self.manifests)

	def __len__(self) -> int:
		return len(self.manifests)

	def get(self, plugin_id: str) -> Optional[PluginManifest]:
		position = self._index.get(plugin_id)
		return None if position is None else self.manifests[position]

	def index_of(self, plugin_id: str) -> int:
		"""Declaration position, used as the deterministic tie-break."""
		return self._index[plugin_id]

	@property
	def ids(self) -> list[str]:
		return [m.id for m in self.manifests]


def _merge_manifests(ordered: Iterable[PluginManifest]) -> list[PluginManifest]:
	"""Keep first-seen position, let later manifests override by id."""
	merged: dict[str, PluginManifest] = {}
	for manifest in ordered:
		if manifest.id in merged:
			logger.info(f"Plugin manifest '{manifest.id}' overrides an earlier declaration")
		merged[manifest.id] = manifest
	return list(merged.values())


class PluginRegistry:
	"""Holds the current registry snapshot and rebuilds it on discovery."""

	def __init__(
		self,
		manifests: Optional[Iterable[PluginManifest]] = None,
		search_paths: Optional[Sequence[Path]] = None,
	):
		"""
		Initialize the registry.

		Args:
			manifests: Seed manifests; defaults to the built-in catalogue
			search_paths: Directories scanned by ``discover``
		"""
		self._seed = tuple(builtin_manifests() if manifests is None else manifests)
		self.search_paths = [Path(p) for p in (search_paths or [])]
		self._lock = threading.Lock()
		self._snapshot = RegistrySnapshot(tuple(_merge_manifests(self._seed)), version=1)
		self._discovered = False

	@property
	def snapshot(self) -> RegistrySnapshot:
		return self._snapshot

	@property
	def discovered(self) -> bool:
		return self._discovered

	def _publish(self, manifests: Iterable[PluginManifest]) -> RegistrySnapshot:
		with self._lock:
			snapshot = RegistrySnapshot(tuple(manifests), version=self._snapshot.version + 1)
			self._snapshot = snapshot
		return snapshot

	def scan(self, search_paths: Optional[Sequence[Path]] = None) -> RegistrySnapshot:
		"""
		Build a snapshot from seed manifests plus every search path without
		publishing it.

		Args:
			search_paths: Override the configured search paths for this pass

		Returns:
			The candidate snapshot; the current one stays in place
		"""
		paths = [Path(p) for p in search_paths] if search_paths is not None else self.search_paths
		found: list[PluginManifest] = []
		for base in paths:
			if not base.is_dir():
				logger.debug(f"Plugin search path does not exist: {base}")
				continue
			for plugin_dir in sorted(p for p in base.iterdir() if p.is_dir()):
				manifest = self._load_manifest(plugin_dir)
				if manifest:
					found.append(manifest)
					logger.debug(f"Discovered plugin manifest: {manifest.id} ({plugin_dir})")

		return RegistrySnapshot(
			tuple(_merge_manifests([*self._seed, *found])),
			version=self._snapshot.version + 1,
		)

	def publish(self, snapshot: RegistrySnapshot) -> RegistrySnapshot:
		"""Swap in a snapshot built by ``scan``."""
		published = self._publish(snapshot.manifests)
		self._discovered = True
		logger.info(f"Discovered {len(published)} plugins (snapshot v{published.version})")
		return published

	def discover(self, search_paths: Optional[Sequence[Path]] = None) -> RegistrySnapshot:
		"""Scan the search paths and publish the result at once."""
		return self.publish(self.scan(search_paths))

	def _load_manifest(self, plugin_dir: Path) -> Optional[PluginManifest]:
		"""Parse a plugin directory's manifest; invalid manifests are skipped."""
		manifest_file = next(
			(plugin_dir / name for name in MANIFEST_FILENAMES if (plugin_dir / name).exists()),
			None,
		)
		if manifest_file is None:
			logger.warning(f"No plugin manifest in {plugin_dir}")
			return None

		try:
			data = yaml.safe_load(manifest_file.read_text(encoding="utf-8"))
		except yaml.YAMLError as e:
			logger.error(str(ManifestError(f"Invalid YAML in {manifest_file}: {e}")))
			return None

		if not isinstance(data, dict):
			logger.warning(str(ManifestError(f"Empty or malformed manifest: {manifest_file}")))
			return None

		data.setdefault("id", plugin_dir.name)
		try:
			return PluginManifest.model_validate(data)
		except ValidationError as e:
			logger.error(str(ManifestError(f"Rejected manifest {manifest_file}: {e}")))
			return None

	def register(self, manifest: PluginManifest) -> RegistrySnapshot:
		"""Add or replace a manifest, publishing a new snapshot."""
		current = list(self._snapshot.manifests)
		if manifest.id in self._snapshot:
			current[self._snapshot.index_of(manifest.id)] = manifest
		else:
			current.append(manifest)
		snapshot = self._publish(current)
		logger.info(f"Registered plugin: {manifest.id}")
		return snapshot

	def unregister(self, plugin_id: str) -> bool:
		if plugin_id not in self._snapshot:
			return False
		self._publish(m for m in self._snapshot.manifests if m.id != plugin_id)
		logger.info(f"Unregistered plugin: {plugin_id}")
		return True

	def plugins_for_context(
		self,
		profile: BusinessProfile,
		snapshot: Optional[RegistrySnapshot] = None,
	) -> list[str]:
		"""
		Plugin ids a tenant activates.

		Required plugins are always requested (the resolver reports any that
		are missing). Optional plugins are requested only when registered.
		Business plugins naming the tenant in supported_contexts are added.
		"""
		snapshot = snapshot or self._snapshot
		requested = list(profile.required_plugins)
		for plugin_id in profile.optional_plugins:
			manifest = snapshot.get(plugin_id)
			if manifest is None:
				logger.info(f"Optional plugin '{plugin_id}' not registered, skipping for {profile.context}")
			elif manifest.supports(profile.context):
				requested.append(plugin_id)
		for manifest in snapshot:
			if manifest.category == PluginCategory.BUSINESS and profile.context in manifest.supported_contexts:
				requested.append(manifest.id)
		return list(dict.fromkeys(requested))

	def list_plugins(self) -> list[dict]:
		"""Summaries of every manifest in the current snapshot."""
		return [
			{
				"id": m.id,
				"name": m.display_name,
				"version": m.version,
				"category": m.category.value,
				"loading_strategy": m.loading_strategy.value,
				"depends_on": list(m.depends_on),
				"capabilities": sorted(c.value for c in m.capabilities),
				"source_origin": m.source_origin,
			}
			for m in self._snapshot
		]
