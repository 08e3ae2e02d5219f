"""Value types for business context detection."""

import os
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

UNKNOWN_CONTEXT = "unknown"


class DetectionMethod(str, Enum):
	"""How a business context was determined."""
	ENVIRONMENT = "environment"
	HEADER = "header"
	DOMAIN = "domain"
	PORT = "port"
	CUSTOM = "custom"
	FALLBACK = "fallback"


def _freeze(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
	return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class RuntimeSignals:
	"""Inputs a detector may look at. Built per call and never mutated."""
	domain: Optional[str] = None
	port: Optional[int] = None
	headers: Mapping[str, str] = field(default_factory=dict)
	environment: Mapping[str, str] = field(default_factory=dict)

	def __post_init__(self) -> None:
		object.__setattr__(self, "headers", _freeze(self.headers))
		object.__setattr__(self, "environment", _freeze(self.environment))

	@classmethod
	def from_environ(
		cls,
		domain: Optional[str] = None,
		port: Optional[int] = None,
		headers: Optional[Mapping[str, str]] = None,
	) -> "RuntimeSignals":
		"""Snapshot the process environment into a signals value."""
		return cls(domain=domain, port=port, headers=headers or {}, environment=dict(os.environ))

	def header(self, name: str) -> Optional[str]:
		"""Case-insensitive header lookup."""
		wanted = name.lower()
		for key, value in self.headers.items():
			if key.lower() == wanted:
				return value
		return None


@dataclass(frozen=True)
class DetectionResult:
	"""Outcome of one detection call."""
	context: str
	method: DetectionMethod
	confidence: float
	metadata: Mapping[str, Any] = field(default_factory=dict)

	def __post_init__(self) -> None:
		if not 0.0 <= self.confidence <= 1.0:
			raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
		object.__setattr__(self, "metadata", _freeze(self.metadata))

	@property
	def matched(self) -> bool:
		return self.context != UNKNOWN_CONTEXT

	def to_dict(self) -> dict[str, Any]:
		return {
			"context": self.context,
			"method": self.method.value,
			"confidence": self.confidence,
			"metadata": dict(self.metadata),
		}


def no_match(method: DetectionMethod) -> DetectionResult:
	"""Result a strategy returns when it has nothing to say."""
	return DetectionResult(context=UNKNOWN_CONTEXT, method=method, confidence=0.0)
