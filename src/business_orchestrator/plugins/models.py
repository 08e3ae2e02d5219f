"""
Plugin Models - Pydantic schemas for plugin manifests.

A manifest is the only thing the orchestrator knows about a plugin before it
is instantiated: identity, dependencies, how and when to load it, what it may
do, where it came from, and the configuration fragment it contributes.
"""

import hashlib
import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PluginCategory(str, Enum):
	"""Organisational tier of a plugin."""
	CORE = "core"
	SHARED = "shared"
	BUSINESS = "business"


class LoadingStrategy(str, Enum):
	"""When a plugin is instantiated."""
	EAGER = "eager"
	LAZY = "lazy"
	ON_DEMAND = "on-demand"


class Capability(str, Enum):
	"""Closed set of interfaces a plugin may declare."""
	COLLECTIONS = "collections"
	GLOBALS = "globals"
	HOOKS = "hooks"
	ENDPOINTS = "endpoints"
	ADMIN = "admin"
	JOBS = "jobs"
	AUTH = "auth"
	DATABASE = "database"
	API = "api"
	ANALYTICS = "analytics"
	NOTIFICATIONS = "notifications"
	STORAGE = "storage"


class PluginManifest(BaseModel):
	"""Declaration of one plugin."""
	model_config = ConfigDict(frozen=True, populate_by_name=True)

	id: str = Field(description="Unique plugin identifier", min_length=1)
	name: str = Field(default="", description="Package name, e.g. '@paulovila/core-auth'")
	version: str = Field(default="1.0.0")
	category: PluginCategory = Field(default=PluginCategory.SHARED)
	depends_on: tuple[str, ...] = Field(default=(), alias="depends-on")
	loading_strategy: LoadingStrategy = Field(default=LoadingStrategy.EAGER, alias="loading-strategy")
	capabilities: frozenset[Capability] = Field(default_factory=frozenset)
	source_origin: str = Field(default="", alias="source-origin")
	signature: Optional[str] = Field(default=None)
	supported_contexts: tuple[str, ...] = Field(default=(), alias="supported-contexts")
	config: dict[str, Any] = Field(default_factory=dict, description="Configuration fragment contributed by the plugin")
	append_keys: tuple[str, ...] = Field(default=(), alias="append-keys")
	entry_point: Optional[str] = Field(default=None, alias="entry-point", description="module:attribute factory")

	@field_validator("depends_on", "supported_contexts", "append_keys", mode="before")
	@classmethod
	def _split_csv(cls, value: Any) -> Any:
		if isinstance(value, str):
			return tuple(v.strip() for v in value.split(",") if v.strip())
		return value

	@field_validator("depends_on")
	@classmethod
	def _no_duplicate_dependencies(cls, value: tuple[str, ...]) -> tuple[str, ...]:
		return tuple(dict.fromkeys(value))

	@property
	def display_name(self) -> str:
		return self.name or self.id

	def supports(self, context: str) -> bool:
		return not self.supported_contexts or context in self.supported_contexts

	def signing_payload(self) -> bytes:
		"""Canonical bytes covered by the manifest signature."""
		body = {
			"id": self.id,
			"version": self.version,
			"source_origin": self.source_origin,
			"depends_on": list(self.depends_on),
			"capabilities": sorted(c.value for c in self.capabilities),
			"entry_point": self.entry_point,
		}
		return json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")

	def fingerprint(self) -> str:
		return hashlib.sha256(self.signing_payload()).hexdigest()[:16]
