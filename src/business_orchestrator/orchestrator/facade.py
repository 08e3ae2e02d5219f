"""
Orchestrator Facade - Runs detection, discovery, resolution, loading and merging
as one pipeline and publishes the result per tenant.

Published results are frozen and replaced by a single assignment, so a request
reading a tenant's result never sees a half-built one. A failed pipeline leaves
the previously published result in place.
"""

import asyncio
import dataclasses
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

from ..config import OrchestratorConfig, get_config
from ..configuration.manager import ConfigurationManager
from ..configuration.merge import MergedConfig, MergeStrategy
from ..detection.detector import ContextDetector
from ..detection.models import DetectionResult, RuntimeSignals
from ..detection.profiles import BusinessProfile, default_profiles, load_profiles
from ..errors import OrchestrationError, SecurityError
from ..logging_config import log_event
from ..plugins.loader import LoadResult, PluginFactory, PluginLoader, PluginSet
from ..plugins.models import LoadingStrategy, PluginManifest
from ..plugins.registry import PluginRegistry
from ..plugins.resolver import DependencyResolver
from ..plugins.security import SecurityPolicy
from .state import OrchestratorState, PipelineRun

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 50


@dataclass(frozen=True)
class OrchestrationResult:
	"""Everything a host needs to serve one tenant."""
	context: str
	detection: DetectionResult
	plugin_order: tuple[str, ...]
	merged_config: MergedConfig
	stage_timings: Mapping[str, float] = field(default_factory=dict)
	load_result: Optional[LoadResult] = field(default=None, compare=False, repr=False)
	created_at: str = field(default_factory=lambda: datetime.now().isoformat())

	def __post_init__(self) -> None:
		object.__setattr__(self, "plugin_order", tuple(self.plugin_order))
		object.__setattr__(self, "stage_timings", MappingProxyType(dict(self.stage_timings)))

	@property
	def plugins(self) -> Optional[PluginSet]:
		return self.load_result.plugin_set if self.load_result else None

	def summary(self) -> dict[str, Any]:
		return {
			"context": self.context,
			"detection": self.detection.to_dict(),
			"plugin_order": list(self.plugin_order),
			"config_digest": self.merged_config.digest,
			"stage_timings": dict(self.stage_timings),
			"created_at": self.created_at,
		}


class OrchestratorFacade:
	"""
	Single entry point for tenant orchestration.

	``initialize`` and ``reload`` drive the facade's lifecycle state machine.
	``resolve_for_request`` answers from the published result when one exists
	and otherwise runs its own pipeline; requests for the same tenant share one
	pipeline while different tenants resolve concurrently.
	"""

	def __init__(
		self,
		config: Optional[OrchestratorConfig] = None,
		detector: Optional[ContextDetector] = None,
		registry: Optional[PluginRegistry] = None,
		resolver: Optional[DependencyResolver] = None,
		loader: Optional[PluginLoader] = None,
		config_manager: Optional[ConfigurationManager] = None,
		policy: Optional[SecurityPolicy] = None,
		loading_strategy: Optional[LoadingStrategy] = None,
		history_size: int = DEFAULT_HISTORY_SIZE,
	):
		"""
		Initialize the facade. Collaborators not given are built from ``config``.

		Args:
			config: Orchestrator settings; defaults are used when omitted
			detector: Business context detector
			registry: Plugin registry
			resolver: Dependency resolver
			loader: Plugin loader
			config_manager: Configuration manager
			policy: Security policy applied while loading
			loading_strategy: Force one strategy for every plugin
			history_size: Number of finished pipeline summaries kept
		"""
		self.config = config if config is not None else OrchestratorConfig()
		cfg = self.config

		self.detector = detector or ContextDetector(
			profiles=default_profiles(),
			fallback=cfg.fallback_context,
			enabled_methods=cfg.enabled_methods,
			custom_rule_priority=cfg.custom_rule_priority,
		)
		self.registry = registry or PluginRegistry(search_paths=cfg.effective_search_paths)
		self.resolver = resolver or DependencyResolver()
		self.loader = loader or PluginLoader(
			timeout=cfg.plugin_timeout,
			timeout_fatal=cfg.timeout_fatal,
			budget=cfg.performance_budget,
			max_concurrency=cfg.max_concurrency,
		)
		self.config_manager = config_manager or ConfigurationManager(
			strategy=MergeStrategy(cfg.merge_strategy),
			ttl=cfg.cache_ttl,
			base_url=cfg.base_url,
		)
		self.policy = policy or SecurityPolicy.from_config(cfg)
		if loading_strategy is None and cfg.loading_strategy:
			loading_strategy = LoadingStrategy(cfg.loading_strategy)
		self.loading_strategy = loading_strategy

		self._published: dict[str, OrchestrationResult] = {}
		self._tenant_locks: dict[str, asyncio.Lock] = {}
		self._lifecycle = PipelineRun(label="lifecycle")
		self._lifecycle_lock = asyncio.Lock()
		self._history: deque[dict] = deque(maxlen=history_size)
		self._last_error: Optional[OrchestrationError] = None

	@classmethod
	def from_config(
		cls,
		config: Optional[OrchestratorConfig] = None,
		factories: Optional[Mapping[str, PluginFactory]] = None,
	) -> "OrchestratorFacade":
		"""Build a facade from config, layering the tenant profile file over the defaults."""
		config = config or get_config()
		detector = ContextDetector(
			profiles=load_profiles(config.profiles_file),
			fallback=config.fallback_context,
			enabled_methods=config.enabled_methods,
			custom_rule_priority=config.custom_rule_priority,
		)
		loader = PluginLoader(
			factories=factories,
			timeout=config.plugin_timeout,
			timeout_fatal=config.timeout_fatal,
			budget=config.performance_budget,
			max_concurrency=config.max_concurrency,
		)
		return cls(config=config, detector=detector, loader=loader)

	# -- accessors ----------------------------------------------------------

	@property
	def state(self) -> OrchestratorState:
		return self._lifecycle.state

	@property
	def last_error(self) -> Optional[OrchestrationError]:
		return self._last_error

	@property
	def history(self) -> list[dict]:
		"""Summaries of finished pipelines, oldest first."""
		return list(self._history)

	def snapshot(self, context: str) -> Optional[OrchestrationResult]:
		"""The published result for a tenant, if any."""
		return self._published.get(context)

	def published_contexts(self) -> list[str]:
		return list(self._published)

	# -- pipeline entry points ----------------------------------------------

	async def initialize(self, signals: Optional[RuntimeSignals] = None) -> OrchestrationResult:
		"""
		Run the full pipeline for the detected tenant and publish the result.

		Raises:
			OrchestrationError: a stage failed fatally; earlier results stay published
		"""
		signals = signals or RuntimeSignals.from_environ()
		async with self._lifecycle_lock:
			return await self._execute(self._lifecycle, signals)

	async def reload(self, signals: Optional[RuntimeSignals] = None) -> OrchestrationResult:
		"""
		Rediscover plugins, drop the tenant's cached config and rebuild.

		The new result replaces the published one only if every stage succeeds.
		"""
		signals = signals or RuntimeSignals.from_environ()
		async with self._lifecycle_lock:
			return await self._execute(self._lifecycle, signals, rediscover=True, invalidate=True)

	async def resolve_for_request(self, signals: RuntimeSignals) -> OrchestrationResult:
		"""Result for one inbound request, reusing the tenant's published result when present."""
		detection = self.detector.detect(signals)
		context = detection.context

		published = self._published.get(context)
		if published is not None:
			return dataclasses.replace(published, detection=detection)

		lock = self._tenant_locks.setdefault(context, asyncio.Lock())
		async with lock:
			# Another request may have published while this one waited
			published = self._published.get(context)
			if published is not None:
				return dataclasses.replace(published, detection=detection)
			run = PipelineRun(label=f"request:{context}")
			return await self._execute(run, signals, detection=detection)

	# -- pipeline -----------------------------------------------------------

	async def _execute(
		self,
		run: PipelineRun,
		signals: RuntimeSignals,
		detection: Optional[DetectionResult] = None,
		rediscover: bool = False,
		invalidate: bool = False,
	) -> OrchestrationResult:
		run.begin()
		try:
			if detection is None:
				detection = self.detector.detect(signals)
			context = detection.context
			run.context = context
			profile = self.detector.profile(context)
			if invalidate:
				self.config_manager.invalidate(context)

			run.transition(OrchestratorState.DISCOVERING)
			# A scanned snapshot is published only once the whole pipeline succeeds
			scanned = None
			if rediscover or not self.registry.discovered:
				scanned = await asyncio.to_thread(self.registry.scan)
				snapshot = scanned
			else:
				snapshot = self.registry.snapshot

			run.transition(OrchestratorState.RESOLVING)
			plugin_ids = self.registry.plugins_for_context(profile, snapshot)
			manifests = self.resolver.resolve(plugin_ids, snapshot)

			run.transition(OrchestratorState.LOADING)
			load_result = await self.loader.load(
				manifests,
				strategy=self.loading_strategy,
				policy=self.policy,
				business_context=context,
			)
			self._check_required(profile, manifests, load_result)

			run.transition(OrchestratorState.CONFIGURING_MERGE)
			available = [m for m in manifests if m.id in load_result.plugin_order]
			merged = await self.config_manager.get_or_merge(
				context,
				load_result.plugin_order,
				lambda: self.config_manager.build_fragments(profile, available),
			)
			run.complete()
		except Exception as e:
			stage = run.fail(e)
			error = OrchestrationError(stage, e, context=run.context)
			self._last_error = error
			self._history.append(run.summary())
			log_event(
				logger, logging.ERROR, str(error),
				run=run.label, stage=stage, context=run.context, error_type=type(e).__name__,
			)
			raise error from e

		result = OrchestrationResult(
			context=context,
			detection=detection,
			plugin_order=load_result.plugin_order,
			merged_config=merged,
			stage_timings=run.stage_timings,
			load_result=load_result,
		)
		if scanned is not None:
			self.registry.publish(scanned)
		self._published[context] = result
		self._history.append(run.summary())
		log_event(
			logger, logging.INFO, f"Orchestration ready for {context}",
			run=run.label, plugins=len(result.plugin_order),
			config_digest=merged.digest[:12], total_ms=round(run.total_time * 1000, 1),
		)
		return result

	@staticmethod
	def _check_required(
		profile: BusinessProfile,
		manifests: Sequence[PluginManifest],
		load_result: LoadResult,
	) -> None:
		"""
		Fail the tenant when a required plugin was rejected by the security
		policy, or was excluded because something it depends on was.
		"""
		rejected = set(load_result.rejected)
		if not rejected:
			return
		errors = {e.plugin_id: e for e in load_result.errors if isinstance(e, SecurityError)}
		by_id = {m.id: m for m in manifests}

		for plugin_id in profile.required_plugins:
			if plugin_id in rejected:
				raise errors[plugin_id]
			pending = list(by_id[plugin_id].depends_on) if plugin_id in by_id else []
			seen: set[str] = set()
			while pending:
				dep = pending.pop()
				if dep in seen:
					continue
				seen.add(dep)
				if dep in rejected:
					raise SecurityError(plugin_id, f"depends on rejected plugin {dep}")
				if dep in by_id:
					pending.extend(by_id[dep].depends_on)
