"""
Error taxonomy for the orchestration pipeline.

Each stage classifies its own failures as fatal or recoverable before they
reach the facade. Fatal errors abort the run and leave the last published
snapshot in place; recoverable ones are logged and the run continues.
"""

from typing import Iterable, Optional


class OrchestratorError(Exception):
	"""Base class for all pipeline errors."""

	fatal: bool = True
	stage: Optional[str] = None

	def __init__(self, message: str, *, fatal: Optional[bool] = None, stage: Optional[str] = None):
		super().__init__(message)
		if fatal is not None:
			self.fatal = fatal
		if stage is not None:
			self.stage = stage


class DetectionAmbiguityError(OrchestratorError):
	"""No detection strategy matched; the fallback context applies."""

	fatal = False
	stage = "detecting"


class ManifestError(OrchestratorError):
	"""A plugin manifest failed validation at discovery time."""

	fatal = False
	stage = "discovering"


class MissingDependencyError(OrchestratorError):
	"""A plugin references an id absent from the registry snapshot."""

	stage = "resolving"

	def __init__(self, plugin_id: Optional[str], missing_id: str):
		self.plugin_id = plugin_id
		self.missing_id = missing_id
		if plugin_id is None:
			message = f"Requested plugin not found in registry: {missing_id}"
		else:
			message = f"Missing dependency: {missing_id} for plugin: {plugin_id}"
		super().__init__(message)


class CycleError(OrchestratorError):
	"""The dependency graph contains a cycle."""

	stage = "resolving"

	def __init__(self, members: Iterable[str]):
		self.members = list(members)
		super().__init__(f"Circular dependency detected among plugins: {', '.join(self.members)}")


class PluginTimeoutError(OrchestratorError):
	"""A plugin did not finish instantiating within its budget."""

	fatal = False
	stage = "loading"

	def __init__(self, plugin_id: str, timeout: float, fatal: bool = False):
		self.plugin_id = plugin_id
		self.timeout = timeout
		super().__init__(f"Plugin {plugin_id} exceeded load timeout of {timeout:.3f}s", fatal=fatal)


class SecurityError(OrchestratorError):
	"""A plugin failed source or signature verification."""

	stage = "loading"

	def __init__(self, plugin_id: str, reason: str):
		self.plugin_id = plugin_id
		self.reason = reason
		super().__init__(f"Security check failed for plugin {plugin_id}: {reason}")


class SandboxViolationError(OrchestratorError):
	"""A sandboxed plugin asked for a capability it was not granted."""

	stage = "loading"

	def __init__(self, plugin_id: str, capability: str):
		self.plugin_id = plugin_id
		self.capability = capability
		super().__init__(f"Plugin {plugin_id} is not granted capability '{capability}'")


class PluginLoadError(OrchestratorError):
	"""A non-sandboxed plugin raised during instantiation."""

	stage = "loading"

	def __init__(self, plugin_id: str, cause: BaseException):
		self.plugin_id = plugin_id
		self.cause = cause
		super().__init__(f"Plugin {plugin_id} failed to load: {cause}")


class ConfigValidationError(OrchestratorError):
	"""The merged configuration does not satisfy the declared schema."""

	stage = "configuring_merge"

	def __init__(self, path: str, expected: str, actual: Optional[str] = None):
		self.path = path
		self.expected = expected
		self.actual = actual
		message = f"Invalid configuration at {path}: expected {expected}"
		if actual is not None:
			message += f", got {actual}"
		super().__init__(message)


class CacheStaleWarning(OrchestratorError):
	"""A cached configuration expired and is being recomputed."""

	fatal = False
	stage = "configuring_merge"


class InvalidTransitionError(RuntimeError):
	"""The orchestrator state machine was asked to make an illegal move."""


class OrchestrationError(Exception):
	"""Structured failure handed to the host: the failing stage and its cause."""

	def __init__(self, stage: str, cause: BaseException, context: Optional[str] = None):
		self.stage = stage
		self.cause = cause
		self.context = context
		label = f" for {context}" if context else ""
		super().__init__(f"Orchestration failed at {stage}{label}: {cause}")
