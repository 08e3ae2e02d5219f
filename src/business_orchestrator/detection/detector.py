"""
Context Detector - Turns runtime signals into a single business context.

Detection runs an ordered list of independent strategies. The first strategy
that names a known tenant wins, regardless of the confidence other strategies
might have reported. Default order:
- environment (BUSINESS_MODE / BUSINESS_CONTEXT and per-tenant env tables)
- explicit x-business-context header
- domain (request domain or Host header)
- port
- custom rules registered at runtime
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional

from ..errors import DetectionAmbiguityError
from ..logging_config import log_event
from .models import UNKNOWN_CONTEXT, DetectionMethod, DetectionResult, RuntimeSignals, no_match
from .profiles import UNKNOWN_PROFILE, BusinessProfile, default_profiles

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.1
ERROR_CONFIDENCE = 0.0

BUSINESS_ENV_VARS = ("BUSINESS_MODE", "BUSINESS_CONTEXT")
BUSINESS_HEADER = "x-business-context"

DEFAULT_PRIORITIES: dict[str, int] = {
	"environment": 10,
	"header": 20,
	"domain": 30,
	"port": 40,
}
DEFAULT_CUSTOM_PRIORITY = 50


@dataclass(frozen=True)
class CustomRule:
	"""A caller-supplied predicate mapping signals to a tenant."""
	name: str
	predicate: Callable[[RuntimeSignals], bool]
	context: str
	confidence: float = 0.75
	priority: Optional[int] = None

	def __post_init__(self) -> None:
		if not 0.0 <= self.confidence <= 1.0:
			raise ValueError(f"Rule '{self.name}' confidence must be within [0, 1]")


StrategyFn = Callable[[RuntimeSignals, Mapping[str, BusinessProfile]], DetectionResult]


@dataclass(frozen=True)
class _Strategy:
	name: str
	method: DetectionMethod
	priority: int
	order: int
	run: StrategyFn


def detect_by_environment(signals: RuntimeSignals, profiles: Mapping[str, BusinessProfile]) -> DetectionResult:
	"""Explicit business variables first, then each tenant's env table."""
	env = signals.environment
	for variable in BUSINESS_ENV_VARS:
		value = env.get(variable)
		if value and value in profiles:
			return DetectionResult(
				context=value,
				method=DetectionMethod.ENVIRONMENT,
				confidence=0.95,
				metadata={"variable": variable, "value": value},
			)

	for context, profile in profiles.items():
		for variable, expected in profile.env_vars.items():
			if env.get(variable) == expected:
				return DetectionResult(
					context=context,
					method=DetectionMethod.ENVIRONMENT,
					confidence=0.9,
					metadata={"variable": variable, "value": expected},
				)

	return no_match(DetectionMethod.ENVIRONMENT)


def detect_by_header(signals: RuntimeSignals, profiles: Mapping[str, BusinessProfile]) -> DetectionResult:
	value = signals.header(BUSINESS_HEADER) or signals.header("business-context")
	if value and value in profiles:
		return DetectionResult(
			context=value,
			method=DetectionMethod.HEADER,
			confidence=0.9,
			metadata={"header": BUSINESS_HEADER, "value": value},
		)
	return no_match(DetectionMethod.HEADER)


def _request_domain(signals: RuntimeSignals) -> tuple[Optional[str], str]:
	if signals.domain:
		return signals.domain, "domain"
	host = signals.header("host")
	if host:
		return host.split(":", 1)[0], "host_header"
	return None, ""


def detect_by_domain(signals: RuntimeSignals, profiles: Mapping[str, BusinessProfile]) -> DetectionResult:
	"""Configured domain substrings (0.85), then a subdomain naming a tenant (0.7)."""
	domain, source = _request_domain(signals)
	if not domain:
		return no_match(DetectionMethod.DOMAIN)

	normalized = domain.strip().lower()
	for context, profile in profiles.items():
		for pattern in profile.domains:
			if pattern.lower() in normalized:
				return DetectionResult(
					context=context,
					method=DetectionMethod.DOMAIN,
					confidence=0.85,
					metadata={"domain": normalized, "matched_pattern": pattern, "source": source},
				)

	subdomain, dot, _ = normalized.partition(".")
	if dot and subdomain in profiles:
		return DetectionResult(
			context=subdomain,
			method=DetectionMethod.DOMAIN,
			confidence=0.7,
			metadata={"domain": normalized, "subdomain": subdomain, "source": source},
		)

	return no_match(DetectionMethod.DOMAIN)


def detect_by_port(signals: RuntimeSignals, profiles: Mapping[str, BusinessProfile]) -> DetectionResult:
	if signals.port is None:
		return no_match(DetectionMethod.PORT)
	for context, profile in profiles.items():
		if signals.port in profile.ports:
			return DetectionResult(
				context=context,
				method=DetectionMethod.PORT,
				confidence=0.8,
				metadata={"port": signals.port, "business_ports": list(profile.ports)},
			)
	return no_match(DetectionMethod.PORT)


def _rule_strategy(rule: CustomRule) -> StrategyFn:
	def run(signals: RuntimeSignals, profiles: Mapping[str, BusinessProfile]) -> DetectionResult:
		if rule.context in profiles and rule.predicate(signals):
			return DetectionResult(
				context=rule.context,
				method=DetectionMethod.CUSTOM,
				confidence=rule.confidence,
				metadata={"rule": rule.name},
			)
		return no_match(DetectionMethod.CUSTOM)
	return run


_BUILTINS: tuple[tuple[str, DetectionMethod, StrategyFn], ...] = (
	("environment", DetectionMethod.ENVIRONMENT, detect_by_environment),
	("header", DetectionMethod.HEADER, detect_by_header),
	("domain", DetectionMethod.DOMAIN, detect_by_domain),
	("port", DetectionMethod.PORT, detect_by_port),
)


class ContextDetector:
	"""
	Resolves runtime signals to one business context.

	The profile table and rule list are public and may be changed at runtime.
	Writers replace them wholesale, so a concurrent ``detect`` always sees a
	consistent table.
	"""

	def __init__(
		self,
		profiles: Optional[Mapping[str, BusinessProfile]] = None,
		fallback: str = UNKNOWN_CONTEXT,
		enabled_methods: Optional[Iterable[str]] = None,
		priorities: Optional[Mapping[str, int]] = None,
		custom_rule_priority: int = DEFAULT_CUSTOM_PRIORITY,
		rules: Iterable[CustomRule] = (),
	):
		self._profiles: dict[str, BusinessProfile] = dict(profiles if profiles is not None else default_profiles())
		self._profiles.pop(UNKNOWN_CONTEXT, None)
		if fallback != UNKNOWN_CONTEXT and fallback not in self._profiles:
			raise ValueError(f"Fallback context '{fallback}' is not a known business context")
		self.fallback = fallback
		self._enabled = frozenset(enabled_methods) if enabled_methods is not None else frozenset(
			[*DEFAULT_PRIORITIES, "custom"]
		)
		self._priorities = {**DEFAULT_PRIORITIES, **(priorities or {})}
		self.custom_rule_priority = custom_rule_priority
		self._rules: tuple[CustomRule, ...] = ()
		self._lock = threading.Lock()
		for rule in rules:
			self.add_rule(rule)

	# -- detection ----------------------------------------------------------

	def strategies(self) -> list[str]:
		"""Names of the active strategies in evaluation order."""
		return [s.name for s in self._ordered_strategies()]

	def _ordered_strategies(self) -> list[_Strategy]:
		entries: list[_Strategy] = []
		for order, (name, method, fn) in enumerate(_BUILTINS):
			if name in self._enabled:
				entries.append(_Strategy(name, method, self._priorities[name], order, fn))
		if "custom" in self._enabled:
			for order, rule in enumerate(self._rules, start=len(_BUILTINS)):
				priority = rule.priority if rule.priority is not None else self.custom_rule_priority
				entries.append(_Strategy(f"rule:{rule.name}", DetectionMethod.CUSTOM, priority, order, _rule_strategy(rule)))
		return sorted(entries, key=lambda s: (s.priority, s.order))

	def detect(self, signals: RuntimeSignals) -> DetectionResult:
		"""Return the first strategy match, or the fallback context."""
		start = time.monotonic()
		profiles = self._profiles
		current = None
		try:
			for strategy in self._ordered_strategies():
				current = strategy.name
				result = strategy.run(signals, profiles)
				if result.matched:
					log_event(
						logger, logging.INFO, f"Business context detected: {result.context}",
						method=result.method.value,
						confidence=result.confidence,
						strategy=strategy.name,
						detection_ms=round((time.monotonic() - start) * 1000, 3),
					)
					return result
		except Exception as e:
			log_event(
				logger, logging.ERROR, "Business detection failed",
				exc_info=True, strategy=current, error=str(e),
			)
			return DetectionResult(
				context=self.fallback,
				method=DetectionMethod.FALLBACK,
				confidence=ERROR_CONFIDENCE,
				metadata={"error": str(e), "strategy": current},
			)

		ambiguity = DetectionAmbiguityError(f"No business context detected, using fallback: {self.fallback}")
		log_event(
			logger, logging.WARNING, str(ambiguity),
			detection_ms=round((time.monotonic() - start) * 1000, 3),
		)
		return DetectionResult(
			context=self.fallback,
			method=DetectionMethod.FALLBACK,
			confidence=FALLBACK_CONFIDENCE,
			metadata={"reason": "fallback"},
		)

	# -- tenant table -------------------------------------------------------

	def supported_contexts(self) -> list[str]:
		return [*self._profiles, UNKNOWN_CONTEXT]

	def is_valid_context(self, context: str) -> bool:
		return context == UNKNOWN_CONTEXT or context in self._profiles

	def profile(self, context: str) -> Optional[BusinessProfile]:
		if context == UNKNOWN_CONTEXT:
			return UNKNOWN_PROFILE
		return self._profiles.get(context)

	@property
	def profiles(self) -> dict[str, BusinessProfile]:
		return dict(self._profiles)

	def register_profile(self, profile: BusinessProfile) -> None:
		"""Add or replace a tenant."""
		if profile.context == UNKNOWN_CONTEXT:
			raise ValueError(f"'{UNKNOWN_CONTEXT}' is reserved")
		with self._lock:
			self._profiles = {**self._profiles, profile.context: profile}
		logger.info(f"Registered business profile: {profile.context}")

	def _update_profile(self, context: str, **changes) -> None:
		with self._lock:
			current = self._profiles.get(context)
			if current is None:
				raise KeyError(f"Unknown business context: {context}")
			self._profiles = {**self._profiles, context: current.model_copy(update=changes)}
		logger.info(f"Updated business configuration for {context}: {changes}")

	def add_domain(self, context: str, domain: str) -> None:
		current = self._require(context)
		self._update_profile(context, domains=(*current.domains, domain))

	def replace_domains(self, context: str, domains: Iterable[str]) -> None:
		self._require(context)
		self._update_profile(context, domains=tuple(domains))

	def add_port(self, context: str, port: int) -> None:
		current = self._require(context)
		self._update_profile(context, ports=(*current.ports, port))

	def replace_ports(self, context: str, ports: Iterable[int]) -> None:
		self._require(context)
		self._update_profile(context, ports=tuple(ports))

	def set_env_var(self, context: str, variable: str, value: str) -> None:
		current = self._require(context)
		self._update_profile(context, env_vars={**current.env_vars, variable: value})

	def _require(self, context: str) -> BusinessProfile:
		profile = self._profiles.get(context)
		if profile is None:
			raise KeyError(f"Unknown business context: {context}")
		return profile

	# -- rules and methods --------------------------------------------------

	@property
	def rules(self) -> list[CustomRule]:
		return list(self._rules)

	def add_rule(self, rule: CustomRule) -> None:
		"""Register a custom rule; a rule with the same name is replaced in place."""
		if rule.context not in self._profiles:
			raise ValueError(f"Rule '{rule.name}' targets unknown business context: {rule.context}")
		with self._lock:
			names = [r.name for r in self._rules]
			if rule.name in names:
				rules = list(self._rules)
				rules[names.index(rule.name)] = rule
				self._rules = tuple(rules)
			else:
				self._rules = (*self._rules, rule)
		logger.info(f"Registered detection rule '{rule.name}' -> {rule.context}")

	def remove_rule(self, name: str) -> bool:
		with self._lock:
			remaining = tuple(r for r in self._rules if r.name != name)
			removed = len(remaining) != len(self._rules)
			self._rules = remaining
		return removed

	def set_enabled_methods(self, methods: Iterable[str]) -> None:
		self._enabled = frozenset(methods)
		logger.info(f"Updated enabled detection methods: {sorted(self._enabled)}")

	def set_priority(self, strategy: str, priority: int) -> None:
		"""Move a built-in strategy in the evaluation order."""
		if strategy not in DEFAULT_PRIORITIES:
			raise KeyError(f"Unknown detection strategy: {strategy}")
		self._priorities = {**self._priorities, strategy: priority}

	def describe(self) -> dict:
		"""Current detection configuration."""
		return {
			"fallback_context": self.fallback,
			"enabled_methods": sorted(self._enabled),
			"strategies": self.strategies(),
			"businesses": {
				context: {
					"domains": list(p.domains),
					"ports": list(p.ports),
					"env_vars": dict(p.env_vars),
				}
				for context, p in self._profiles.items()
			},
		}
