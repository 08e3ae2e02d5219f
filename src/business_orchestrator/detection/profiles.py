"""
Business Profiles - Pydantic schemas describing each tenant.

A profile is everything the platform knows about one business unit: how to
recognise it (domains, ports, environment variables), which plugins it
activates, and the settings it contributes to the merged configuration.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import UNKNOWN_CONTEXT

logger = logging.getLogger(__name__)

CORE_PLUGINS = ["core-auth", "core-database", "core-api"]
SHARED_PLUGINS = ["shared-analytics", "shared-notifications"]


class BusinessProfile(BaseModel):
	"""Detection rules, plugin set and settings for one tenant."""
	model_config = ConfigDict(frozen=True)

	context: str = Field(description="Tenant identifier")
	name: str = Field(description="Display name")
	domains: tuple[str, ...] = Field(default=(), description="Domain patterns for detection")
	ports: tuple[int, ...] = Field(default=(), description="Listening ports for detection")
	env_vars: dict[str, str] = Field(default_factory=dict, description="Environment variables for detection")
	required_plugins: tuple[str, ...] = Field(default=())
	optional_plugins: tuple[str, ...] = Field(default=())
	settings: dict[str, Any] = Field(default_factory=dict, description="Features, branding and security")

	def server_url(self, default: str = "http://localhost:3000") -> str:
		"""Public URL derived from the first domain and port."""
		if not self.domains:
			return default
		domain = self.domains[0]
		protocol = "http" if "localhost" in domain else "https"
		port = f":{self.ports[0]}" if self.ports else ""
		return f"{protocol}://{domain}{port}"

	def cors_origins(self) -> list[str]:
		"""Allowed origins for every known domain and local port."""
		return [
			*(f"https://{d}" for d in self.domains),
			*(f"http://{d}" for d in self.domains),
			*(f"http://localhost:{p}" for p in self.ports),
			*(f"https://localhost:{p}" for p in self.ports),
		]


def _profile(
	context: str,
	name: str,
	port: int,
	features: dict[str, bool],
	branding: tuple[str, str],
	security: tuple[bool, int, int],
	optional: list[str],
) -> BusinessProfile:
	primary, secondary = branding
	two_factor, session_timeout, max_attempts = security
	return BusinessProfile(
		context=context,
		name=name,
		domains=(f"{context}.paulovila.org", f"{context}.localhost"),
		ports=(port,),
		env_vars={"BUSINESS_MODE": context, "BUSINESS_CONTEXT": context},
		required_plugins=tuple(CORE_PLUGINS),
		optional_plugins=tuple(optional),
		settings={
			"features": features,
			"branding": {
				"primary_color": primary,
				"secondary_color": secondary,
				"logo": f"/assets/{context}-logo.png",
			},
			"security": {
				"require_two_factor": two_factor,
				"session_timeout": session_timeout,
				"max_login_attempts": max_attempts,
			},
		},
	)


DEFAULT_PROFILES: dict[str, BusinessProfile] = {
	"intellitrade": _profile(
		"intellitrade", "IntelliTrade", 3004,
		{"kyc": True, "blockchain": True, "trading": False, "analytics": True},
		("#1a365d", "#2d3748"), (True, 3600000, 5), SHARED_PLUGINS,
	),
	"salarium": _profile(
		"salarium", "Salarium", 3005,
		{"hr": True, "payroll": True, "recruitment": True, "analytics": True},
		("#2b6cb0", "#3182ce"), (False, 7200000, 3), SHARED_PLUGINS,
	),
	"latinos": _profile(
		"latinos", "Latinos", 3003,
		{"trading": True, "market_data": True, "bot_engine": True, "analytics": True},
		("#c53030", "#e53e3e"), (True, 1800000, 5), ["shared-analytics"],
	),
	"capacita": _profile(
		"capacita", "Capacita", 3007,
		{"training": True, "avatar_engine": True, "skill_evaluator": True, "analytics": True},
		("#38a169", "#48bb78"), (False, 3600000, 3), SHARED_PLUGINS,
	),
	"cms": _profile(
		"cms", "CMS Admin", 3006,
		{"user_management": True, "plugin_manager": True, "system_monitoring": True, "analytics": True},
		("#805ad5", "#9f7aea"), (True, 7200000, 3), ["shared-analytics"],
	),
}

UNKNOWN_PROFILE = BusinessProfile(
	context=UNKNOWN_CONTEXT,
	name="Unknown Business",
	required_plugins=("core-auth", "core-database"),
	settings={
		"features": {},
		"branding": {
			"primary_color": "#718096",
			"secondary_color": "#a0aec0",
			"logo": "/assets/default-logo.png",
		},
		"security": {
			"require_two_factor": False,
			"session_timeout": 3600000,
			"max_login_attempts": 3,
		},
	},
)


def default_profiles() -> dict[str, BusinessProfile]:
	"""Fresh copy of the built-in tenant table."""
	return dict(DEFAULT_PROFILES)


def load_profiles(path: Path, base: dict[str, BusinessProfile] | None = None) -> dict[str, BusinessProfile]:
	"""
	Load tenant profiles from a YAML file, layered over ``base``.

	Expected format:
	```
	businesses:
	  latinos:
	    ports: [3013]
	  newco:
	    name: NewCo
	    domains: [newco.example.com]
	```

	Entries for an existing tenant update only the keys they name. Invalid
	entries are logged and skipped.
	"""
	profiles = dict(base if base is not None else DEFAULT_PROFILES)
	if not path.exists():
		return profiles

	try:
		data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
	except yaml.YAMLError as e:
		logger.error(f"Invalid YAML in {path}: {e}")
		return profiles

	if not isinstance(data, dict):
		logger.error(f"Profiles file {path} must be a mapping, got {type(data).__name__}")
		return profiles
	businesses = data.get("businesses") or {}
	if not isinstance(businesses, dict):
		logger.error(f"'businesses' in {path} must be a mapping, got {type(businesses).__name__}")
		return profiles

	for context, overrides in businesses.items():
		if context == UNKNOWN_CONTEXT:
			logger.warning(f"Ignoring profile for reserved context '{UNKNOWN_CONTEXT}' in {path}")
			continue
		if overrides is not None and not isinstance(overrides, dict):
			logger.error(f"Invalid profile '{context}' in {path}: expected a mapping, got {type(overrides).__name__}")
			continue
		current = profiles.get(context)
		payload = current.model_dump() if current else {"context": context, "name": context.title()}
		payload.update(overrides or {})
		payload["context"] = context
		try:
			profiles[context] = BusinessProfile.model_validate(payload)
		except ValidationError as e:
			logger.error(f"Invalid profile '{context}' in {path}: {e}")
			continue
		logger.info(f"Loaded business profile: {context}")

	return profiles
