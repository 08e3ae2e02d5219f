"""
Plugin Loader - Instantiates resolved plugins under a loading strategy.

Eager plugins are instantiated during ``load``. Each one starts as soon as all
of its dependencies have finished, so plugins with no dependency edge between
them run concurrently and one plugin's failure or timeout only affects the
plugins that depend on it. Lazy and on-demand plugins are handed back in a
``PluginSet`` and instantiated on first use.
"""

import asyncio
import importlib
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Union

from ..errors import (
	OrchestratorError,
	PluginLoadError,
	PluginTimeoutError,
	SandboxViolationError,
	SecurityError,
)
from ..logging_config import log_event
from .models import Capability, LoadingStrategy, PluginManifest
from .security import SecurityPolicy, policy_or_default

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_BUDGET = 5.0


class PluginStatus(str, Enum):
	"""Outcome of loading one plugin."""
	LOADED = "loaded"
	DEFERRED = "deferred"
	FAILED = "failed"
	TIMED_OUT = "timed_out"
	REJECTED = "rejected"
	SKIPPED = "skipped"


AVAILABLE = (PluginStatus.LOADED, PluginStatus.DEFERRED)


@dataclass(frozen=True)
class PluginContext:
	"""What a plugin factory is given while it instantiates."""
	manifest: PluginManifest
	business_context: str
	capabilities: frozenset[Capability]
	sandboxed: bool = False

	def has(self, capability: Union[Capability, str]) -> bool:
		return Capability(capability) in self.capabilities

	def require(self, capability: Union[Capability, str]) -> None:
		"""Raise unless the capability was granted to this plugin."""
		if not self.has(capability):
			raise SandboxViolationError(self.manifest.id, Capability(capability).value)


@dataclass(frozen=True)
class StaticPlugin:
	"""Default instance for plugins that ship no factory."""
	manifest: PluginManifest
	business_context: str
	capabilities: frozenset[Capability]


PluginFactory = Callable[[PluginContext], Union[Any, Awaitable[Any]]]


@dataclass
class PluginRecord:
	"""Load outcome for a single plugin."""
	plugin_id: str
	status: PluginStatus
	instance: Any = None
	error: Optional[str] = None
	load_time: float = 0.0


class PluginSet:
	"""
	The plugins admitted for one tenant, with deferred instantiation.

	Lazy plugins are instantiated by ``acquire`` the first time one of their
	capabilities is requested; on-demand plugins only by ``instantiate``.
	Dependencies are always instantiated first.
	"""

	def __init__(
		self,
		loader: "PluginLoader",
		manifests: Sequence[PluginManifest],
		strategies: Mapping[str, LoadingStrategy],
		records: dict[str, PluginRecord],
		business_context: str,
		policy: SecurityPolicy,
	):
		self._loader = loader
		self._manifests = {m.id: m for m in manifests}
		self._order = [m.id for m in manifests]
		self._strategies = dict(strategies)
		self._records = records
		self._locks = {pid: asyncio.Lock() for pid in self._order}
		self.business_context = business_context
		self.policy = policy

	def status(self, plugin_id: str) -> Optional[PluginStatus]:
		record = self._records.get(plugin_id)
		return record.status if record else None

	def is_loaded(self, plugin_id: str) -> bool:
		return self.status(plugin_id) == PluginStatus.LOADED

	def get(self, plugin_id: str) -> Any:
		"""Instance of a loaded plugin, or None."""
		record = self._records.get(plugin_id)
		return record.instance if record and record.status == PluginStatus.LOADED else None

	@property
	def loaded(self) -> dict[str, Any]:
		return {
			pid: self._records[pid].instance
			for pid in self._order
			if self._records[pid].status == PluginStatus.LOADED
		}

	async def instantiate(self, plugin_id: str) -> Any:
		"""
		Instantiate a deferred plugin (and its dependencies) now.

		Raises:
			KeyError: plugin is not part of this set
			LookupError: plugin (or a dependency) is unavailable
		"""
		record = self._records.get(plugin_id)
		if record is None:
			raise KeyError(f"Plugin not in set: {plugin_id}")
		if record.status == PluginStatus.LOADED:
			return record.instance
		if record.status != PluginStatus.DEFERRED:
			raise LookupError(f"Plugin {plugin_id} is unavailable ({record.status.value})")

		async with self._locks[plugin_id]:
			record = self._records[plugin_id]
			if record.status == PluginStatus.LOADED:
				return record.instance

			manifest = self._manifests[plugin_id]
			for dep in manifest.depends_on:
				try:
					await self.instantiate(dep)
				except LookupError as e:
					self._records[plugin_id] = PluginRecord(plugin_id, PluginStatus.SKIPPED, error=str(e))
					raise LookupError(f"Plugin {plugin_id} skipped: dependency {dep} unavailable") from e

			record = await self._loader._instantiate(manifest, self.business_context, self.policy)
			self._records[plugin_id] = record
			if record.status != PluginStatus.LOADED:
				raise LookupError(f"Plugin {plugin_id} failed to instantiate ({record.status.value}): {record.error}")
			return record.instance

	async def acquire(self, capability: Union[Capability, str]) -> Any:
		"""
		Instance of the first plugin, in load order, declaring ``capability``.

		Lazy plugins are instantiated on this first access. On-demand plugins
		are never picked here.
		"""
		wanted = Capability(capability)
		for pid in self._order:
			if wanted not in self._manifests[pid].capabilities:
				continue
			status = self.status(pid)
			if status == PluginStatus.LOADED:
				return self._records[pid].instance
			if status == PluginStatus.DEFERRED and self._strategies[pid] == LoadingStrategy.LAZY:
				logger.info(f"Lazy-loading plugin {pid} for capability '{wanted.value}'")
				return await self.instantiate(pid)
		raise LookupError(f"No available plugin provides capability '{wanted.value}'")


@dataclass
class LoadResult:
	"""Report of one load phase."""
	plugin_order: tuple[str, ...]
	records: dict[str, PluginRecord]
	plugin_set: PluginSet
	elapsed: float = 0.0
	budget_exceeded: bool = False
	errors: list[OrchestratorError] = field(default_factory=list)

	def _with_status(self, status: PluginStatus) -> list[str]:
		return [pid for pid, record in self.records.items() if record.status == status]

	@property
	def loaded(self) -> list[str]:
		return self._with_status(PluginStatus.LOADED)

	@property
	def deferred(self) -> list[str]:
		return self._with_status(PluginStatus.DEFERRED)

	@property
	def failed(self) -> list[str]:
		return self._with_status(PluginStatus.FAILED)

	@property
	def timed_out(self) -> list[str]:
		return self._with_status(PluginStatus.TIMED_OUT)

	@property
	def rejected(self) -> list[str]:
		return self._with_status(PluginStatus.REJECTED)

	@property
	def skipped(self) -> list[str]:
		return self._with_status(PluginStatus.SKIPPED)

	@property
	def load_times(self) -> dict[str, float]:
		return {pid: r.load_time for pid, r in self.records.items() if r.status == PluginStatus.LOADED}


class PluginLoader:
	"""
	Loads plugins in resolved order with timeouts and a security policy.

	Factories are looked up by plugin id, then by the manifest entry point
	(``module:attribute``). Plugins with neither get a ``StaticPlugin``.
	"""

	def __init__(
		self,
		factories: Optional[Mapping[str, PluginFactory]] = None,
		timeout: float = DEFAULT_TIMEOUT,
		timeout_fatal: bool = False,
		budget: float = DEFAULT_BUDGET,
		max_concurrency: Optional[int] = None,
	):
		"""
		Initialize the loader.

		Args:
			factories: Plugin id -> factory callable (sync or async)
			timeout: Per-plugin instantiation timeout in seconds
			timeout_fatal: Raise on timeout instead of skipping the plugin
			budget: Wall-clock budget for the eager load phase in seconds
			max_concurrency: Cap on plugins instantiating at once
		"""
		self.factories: dict[str, PluginFactory] = dict(factories or {})
		self.timeout = timeout
		self.timeout_fatal = timeout_fatal
		self.budget = budget
		self.max_concurrency = max_concurrency
		self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

	def register_factory(self, plugin_id: str, factory: PluginFactory) -> None:
		self.factories[plugin_id] = factory

	async def load(
		self,
		manifests: Sequence[PluginManifest],
		strategy: Optional[LoadingStrategy] = None,
		policy: Optional[SecurityPolicy] = None,
		business_context: str = "unknown",
	) -> LoadResult:
		"""
		Load plugins that arrive in dependency order.

		Args:
			manifests: Output of the dependency resolver
			strategy: Force one strategy for every plugin; None uses each manifest's own
			policy: Security policy; the permissive default when omitted
			business_context: Tenant the plugins are loaded for

		Returns:
			LoadResult describing every plugin's outcome

		Raises:
			PluginLoadError: a non-sandboxed plugin raised while instantiating
			PluginTimeoutError: a plugin timed out and timeouts are fatal
		"""
		start = time.monotonic()
		policy = policy_or_default(policy)
		records: dict[str, PluginRecord] = {}
		errors: list[OrchestratorError] = []
		excluded: set[str] = set()

		for manifest in manifests:
			blocked = next((dep for dep in manifest.depends_on if dep in excluded), None)
			if blocked:
				records[manifest.id] = PluginRecord(
					manifest.id, PluginStatus.SKIPPED, error=f"dependency {blocked} was excluded",
				)
				excluded.add(manifest.id)
				continue
			try:
				policy.verify(manifest)
			except SecurityError as e:
				log_event(logger, logging.ERROR, str(e), plugin=manifest.id, reason=e.reason)
				records[manifest.id] = PluginRecord(manifest.id, PluginStatus.REJECTED, error=str(e))
				errors.append(e)
				excluded.add(manifest.id)

		admitted = [m for m in manifests if m.id not in excluded]
		strategies = {m.id: strategy or m.loading_strategy for m in admitted}

		# Anything an eager plugin depends on must be instantiated eagerly too
		eager: set[str] = set()
		for manifest in reversed(admitted):
			if strategies[manifest.id] == LoadingStrategy.EAGER or manifest.id in eager:
				eager.add(manifest.id)
				eager.update(manifest.depends_on)

		tasks: dict[str, asyncio.Task] = {}
		for manifest in admitted:
			if manifest.id in eager:
				tasks[manifest.id] = asyncio.create_task(
					self._load_after_dependencies(manifest, tasks, records, business_context, policy)
				)
			else:
				records[manifest.id] = PluginRecord(manifest.id, PluginStatus.DEFERRED)

		outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)
		fatal = [o for o in outcomes if isinstance(o, BaseException)]
		if fatal:
			raise fatal[0]

		for record in records.values():
			if record.status == PluginStatus.TIMED_OUT:
				errors.append(PluginTimeoutError(record.plugin_id, self.timeout))

		elapsed = time.monotonic() - start
		budget_exceeded = elapsed > self.budget
		if budget_exceeded:
			log_event(
				logger, logging.WARNING, "Plugin loading exceeded performance budget",
				elapsed_ms=round(elapsed * 1000, 1), budget_ms=round(self.budget * 1000, 1),
			)

		ordered = {m.id: None for m in manifests}
		records = {pid: records[pid] for pid in ordered}
		plugin_order = tuple(pid for pid, r in records.items() if r.status in AVAILABLE)
		plugin_set = PluginSet(self, admitted, strategies, records, business_context, policy)

		log_event(
			logger, logging.INFO, "Plugin orchestration completed",
			context=business_context,
			loaded=sum(1 for r in records.values() if r.status == PluginStatus.LOADED),
			deferred=sum(1 for r in records.values() if r.status == PluginStatus.DEFERRED),
			excluded=len(records) - len(plugin_order),
			elapsed_ms=round(elapsed * 1000, 1),
		)
		return LoadResult(
			plugin_order=plugin_order,
			records=records,
			plugin_set=plugin_set,
			elapsed=elapsed,
			budget_exceeded=budget_exceeded,
			errors=errors,
		)

	async def _load_after_dependencies(
		self,
		manifest: PluginManifest,
		tasks: Mapping[str, asyncio.Task],
		records: dict[str, PluginRecord],
		business_context: str,
		policy: SecurityPolicy,
	) -> bool:
		for dep in manifest.depends_on:
			try:
				ok = await tasks[dep]
			except OrchestratorError:
				ok = False
			if not ok:
				records[manifest.id] = PluginRecord(
					manifest.id, PluginStatus.SKIPPED, error=f"dependency {dep} did not load",
				)
				logger.warning(f"Skipping plugin {manifest.id}: dependency {dep} did not load")
				return False

		record = await self._instantiate(manifest, business_context, policy)
		records[manifest.id] = record
		return record.status == PluginStatus.LOADED

	async def _instantiate(
		self,
		manifest: PluginManifest,
		business_context: str,
		policy: SecurityPolicy,
	) -> PluginRecord:
		"""Run one plugin's factory under the per-plugin timeout."""
		plugin_context = PluginContext(
			manifest=manifest,
			business_context=business_context,
			capabilities=policy.granted_capabilities(manifest),
			sandboxed=policy.sandbox,
		)
		start = time.monotonic()
		try:
			if self._semaphore is not None:
				async with self._semaphore:
					instance = await asyncio.wait_for(self._call_factory(plugin_context), timeout=self.timeout)
			else:
				instance = await asyncio.wait_for(self._call_factory(plugin_context), timeout=self.timeout)
		except asyncio.TimeoutError:
			load_time = time.monotonic() - start
			error = PluginTimeoutError(manifest.id, self.timeout, fatal=self.timeout_fatal)
			log_event(logger, logging.WARNING, str(error), plugin=manifest.id, fatal=self.timeout_fatal)
			if self.timeout_fatal:
				raise error
			return PluginRecord(manifest.id, PluginStatus.TIMED_OUT, error=str(error), load_time=load_time)
		except Exception as e:
			load_time = time.monotonic() - start
			if policy.sandbox:
				log_event(
					logger, logging.ERROR, f"Sandboxed plugin {manifest.id} failed to load",
					plugin=manifest.id, error=str(e),
				)
				return PluginRecord(manifest.id, PluginStatus.FAILED, error=str(e), load_time=load_time)
			raise PluginLoadError(manifest.id, e) from e

		load_time = time.monotonic() - start
		log_event(
			logger, logging.INFO, f"Plugin loaded: {manifest.id}",
			plugin=manifest.id, version=manifest.version, load_ms=round(load_time * 1000, 3),
		)
		return PluginRecord(manifest.id, PluginStatus.LOADED, instance=instance, load_time=load_time)

	async def _call_factory(self, plugin_context: PluginContext) -> Any:
		factory = self._resolve_factory(plugin_context.manifest)
		if inspect.iscoroutinefunction(factory):
			return await factory(plugin_context)
		result = await asyncio.to_thread(factory, plugin_context)
		if inspect.isawaitable(result):
			result = await result
		return result

	def _resolve_factory(self, manifest: PluginManifest) -> PluginFactory:
		factory = self.factories.get(manifest.id)
		if factory is not None:
			return factory
		if manifest.entry_point:
			module_name, _, attr = manifest.entry_point.partition(":")
			module = importlib.import_module(module_name)
			return getattr(module, attr or "plugin")
		return _static_factory


def _static_factory(plugin_context: PluginContext) -> StaticPlugin:
	return StaticPlugin(
		manifest=plugin_context.manifest,
		business_context=plugin_context.business_context,
		capabilities=plugin_context.capabilities,
	)
