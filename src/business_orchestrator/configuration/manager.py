"""
Configuration Manager - Builds, merges, validates and caches tenant config.

The cache is keyed by a hash of (tenant, ordered plugin ids). Concurrent
requests for a key that is being computed share the one computation. An
expired entry keeps being served while a single background refresh runs.
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, Union

from ..detection.profiles import BusinessProfile
from ..errors import CacheStaleWarning, ConfigValidationError
from ..logging_config import log_event
from ..plugins.models import PluginManifest
from .merge import ConfigFragment, MergedConfig, MergeStrategy, merge_fragments
from .schema import DEFAULT_SCHEMA, ConfigSchema

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0
DEFAULT_BASE_URL = "http://localhost:3000"

FragmentSource = Union[Sequence[ConfigFragment], Callable[[], Sequence[ConfigFragment]]]


@dataclass(frozen=True)
class _CacheEntry:
	value: MergedConfig
	context: str
	expires_at: float


class ConfigurationManager:
	"""Merges base, tenant and plugin fragments into one validated config."""

	def __init__(
		self,
		schema: Optional[ConfigSchema] = DEFAULT_SCHEMA,
		strategy: Union[MergeStrategy, str] = MergeStrategy.DEEP,
		ttl: float = DEFAULT_TTL,
		base_url: str = DEFAULT_BASE_URL,
		clock: Callable[[], float] = time.monotonic,
	):
		"""
		Initialize the manager.

		Args:
			schema: Schema every merged config must satisfy; None disables validation
			strategy: Default merge strategy
			ttl: Seconds a cached config stays fresh
			base_url: Server URL used when a tenant has no domain
			clock: Monotonic time source
		"""
		self.schema = schema
		self.strategy = MergeStrategy(strategy)
		self.ttl = ttl
		self.base_url = base_url
		self._clock = clock
		self._cache: dict[str, _CacheEntry] = {}
		self._inflight: dict[str, asyncio.Future] = {}
		self.hits = 0
		self.misses = 0
		self.stale_hits = 0

	# -- merging ------------------------------------------------------------

	def merge(
		self,
		fragments: Sequence[ConfigFragment],
		strategy: Union[MergeStrategy, str, None] = None,
		cache_key: Optional[str] = None,
	) -> MergedConfig:
		"""
		Merge and validate a fragment set.

		Raises:
			ConfigValidationError: the merged result violates the schema
		"""
		start = time.monotonic()
		merged = merge_fragments(fragments, strategy or self.strategy, cache_key=cache_key)
		if self.schema is not None:
			try:
				self.schema.validate(merged.data)
			except ConfigValidationError as e:
				log_event(
					logger, logging.ERROR, "Configuration validation failed",
					path=e.path, expected=e.expected, actual=e.actual, schema=self.schema.name,
				)
				raise
		log_event(
			logger, logging.DEBUG, "Configuration merged",
			strategy=merged.strategy.value, fragments=len(merged.fragments),
			digest=merged.digest[:12], merge_ms=round((time.monotonic() - start) * 1000, 3),
		)
		return merged

	# -- fragment assembly --------------------------------------------------

	def base_fragment(self) -> ConfigFragment:
		return ConfigFragment.base("base", {
			"server_url": self.base_url,
			"cors": [],
			"collections": [],
			"globals": [],
			"plugins": [],
			"admin": {"meta": {"title_suffix": ""}},
		})

	def tenant_fragment(self, profile: BusinessProfile) -> ConfigFragment:
		"""Settings a tenant contributes: URLs, identity, branding, security."""
		settings = profile.settings
		features = settings.get("features", {})
		return ConfigFragment.tenant(f"tenant:{profile.context}", {
			"server_url": profile.server_url(self.base_url),
			"cors": profile.cors_origins(),
			"business": {
				"context": profile.context,
				"name": profile.name,
				"features": features,
			},
			"branding": settings.get("branding", {}),
			"security": settings.get("security", {}),
			"globals": [{
				"slug": "business-config",
				"read_only": True,
				"defaults": {"context": profile.context, "name": profile.name, "features": features},
			}],
			"admin": {"meta": {"title_suffix": f" - {profile.name}"}},
		})

	def plugin_fragment(self, manifest: PluginManifest) -> ConfigFragment:
		data = dict(manifest.config)
		data["plugins"] = [manifest.id]
		return ConfigFragment.plugin(
			f"plugin:{manifest.id}", data, append_keys=(*manifest.append_keys, "plugins"),
		)

	def build_fragments(
		self,
		profile: BusinessProfile,
		manifests: Iterable[PluginManifest],
		extra: Iterable[ConfigFragment] = (),
	) -> list[ConfigFragment]:
		"""Base, then tenant, then each plugin in load order, then ``extra``."""
		fragments = [self.base_fragment(), self.tenant_fragment(profile)]
		fragments.extend(self.plugin_fragment(m) for m in manifests)
		fragments.extend(extra)
		return fragments

	# -- caching ------------------------------------------------------------

	@staticmethod
	def cache_key(context: str, plugin_ids: Iterable[str]) -> str:
		payload = "\x1f".join([context, *plugin_ids])
		return hashlib.sha256(payload.encode("utf-8")).hexdigest()

	async def get_or_merge(
		self,
		context: str,
		plugin_ids: Sequence[str],
		fragments: FragmentSource,
		strategy: Union[MergeStrategy, str, None] = None,
	) -> MergedConfig:
		"""
		Cached merge for a (tenant, plugin set) pair.

		Args:
			context: Tenant identifier
			plugin_ids: Ordered plugin ids
			fragments: Fragments, or a callable building them on a cache miss
			strategy: Merge strategy override

		Returns:
			MergedConfig, possibly stale while a refresh is in flight
		"""
		key = self.cache_key(context, plugin_ids)
		entry = self._cache.get(key)

		if entry is not None and self._clock() < entry.expires_at:
			self.hits += 1
			log_event(logger, logging.DEBUG, "Config cache hit", context=context, key=key[:12])
			return entry.value

		if entry is not None:
			self.stale_hits += 1
			if key not in self._inflight:
				warning = CacheStaleWarning(f"Cached configuration for {context} expired; refreshing")
				log_event(logger, logging.INFO, str(warning), context=context, key=key[:12])
				task = asyncio.ensure_future(self._compute(key, context, fragments, strategy))
				task.add_done_callback(self._report_refresh)
				self._inflight[key] = task
			return entry.value

		inflight = self._inflight.get(key)
		if inflight is not None:
			log_event(logger, logging.DEBUG, "Config cache miss coalesced", context=context, key=key[:12])
			return await asyncio.shield(inflight)

		self.misses += 1
		log_event(logger, logging.DEBUG, "Config cache miss", context=context, key=key[:12])
		task = asyncio.ensure_future(self._compute(key, context, fragments, strategy))
		self._inflight[key] = task
		return await asyncio.shield(task)

	async def _compute(
		self,
		key: str,
		context: str,
		fragments: FragmentSource,
		strategy: Union[MergeStrategy, str, None],
	) -> MergedConfig:
		try:
			resolved = fragments() if callable(fragments) else fragments
			merged = self.merge(resolved, strategy, cache_key=key)
			self._cache[key] = _CacheEntry(merged, context, self._clock() + self.ttl)
			return merged
		finally:
			self._inflight.pop(key, None)

	@staticmethod
	def _report_refresh(task: asyncio.Future) -> None:
		if task.cancelled():
			return
		error = task.exception()
		if error is not None:
			logger.error(f"Background configuration refresh failed, serving stale value: {error}")

	def cached(self, context: str, plugin_ids: Sequence[str]) -> Optional[MergedConfig]:
		entry = self._cache.get(self.cache_key(context, plugin_ids))
		return entry.value if entry else None

	def invalidate(self, context: Optional[str] = None) -> int:
		"""Drop cached configs for one tenant, or all. Returns count removed."""
		keys = [k for k, e in self._cache.items() if context is None or e.context == context]
		for key in keys:
			del self._cache[key]
		if keys:
			logger.info(f"Invalidated {len(keys)} cached configuration(s) for {context or 'all tenants'}")
		return len(keys)

	def stats(self) -> dict:
		return {
			"entries": len(self._cache),
			"hits": self.hits,
			"misses": self.misses,
			"stale_hits": self.stale_hits,
			"inflight": len(self._inflight),
		}
