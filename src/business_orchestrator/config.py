"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import platformdirs

APP_NAME = "business-orchestrator"
APP_AUTHOR = "business-orchestrator"

ENV_PREFIX = "BUSINESS_ORCHESTRATOR_"


@dataclass
class OrchestratorConfig:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	log_dir: Path = field(init=False)
	profiles_file: Path = field(init=False)
	plugins_dir: Path = field(init=False)

	# Detection
	fallback_context: str = "unknown"
	enabled_methods: list[str] = field(
		default_factory=lambda: ["environment", "header", "domain", "port", "custom"]
	)
	custom_rule_priority: int = 50

	# Plugin discovery and loading
	search_paths: list[Path] = field(default_factory=list)
	loading_strategy: Optional[str] = None
	plugin_timeout: float = 30.0
	timeout_fatal: bool = False
	performance_budget: float = 5.0
	max_concurrency: Optional[int] = None

	# Security
	verify_signatures: bool = False
	allowed_sources: list[str] = field(default_factory=lambda: ["@paulovila"])
	signing_key: str = ""
	sandbox: bool = False

	# Configuration merging
	merge_strategy: str = "deep"
	cache_ttl: float = 300.0
	base_url: str = "http://localhost:3000"

	# Logging
	log_level: str = "INFO"
	log_format: str = "text"

	def __post_init__(self) -> None:
		self.log_dir = self.data_dir / "logs"
		self.profiles_file = self.config_dir / "businesses.yaml"
		self.plugins_dir = self.data_dir / "plugins"

	@property
	def effective_search_paths(self) -> list[Path]:
		"""Configured search paths, defaulting to the data plugins directory."""
		return list(self.search_paths) or [self.plugins_dir]

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


_PATH_FIELDS = {"config_dir", "data_dir"}
_BOOL_FIELDS = {"timeout_fatal", "verify_signatures", "sandbox"}
_FLOAT_FIELDS = {"plugin_timeout", "performance_budget", "cache_ttl"}
_INT_FIELDS = {"custom_rule_priority", "max_concurrency"}
_LIST_FIELDS = {"enabled_methods", "allowed_sources"}


def _coerce_env_value(attr: str, raw: str):
	"""Convert a raw environment string to the type of the target field."""
	if attr in _PATH_FIELDS:
		return Path(raw)
	if attr in _BOOL_FIELDS:
		return raw.strip().lower() in ("1", "true", "yes", "on")
	if attr in _FLOAT_FIELDS:
		return float(raw)
	if attr in _INT_FIELDS:
		return int(raw)
	if attr in _LIST_FIELDS:
		return [item.strip() for item in raw.split(",") if item.strip()]
	if attr == "search_paths":
		return [Path(p) for p in raw.split(os.pathsep) if p]
	return raw


def _apply_env_overrides(config: OrchestratorConfig) -> OrchestratorConfig:
	"""Apply BUSINESS_ORCHESTRATOR_* environment variable overrides."""
	env_map = {
		f"{ENV_PREFIX}CONFIG_DIR": "config_dir",
		f"{ENV_PREFIX}DATA_DIR": "data_dir",
		f"{ENV_PREFIX}FALLBACK_CONTEXT": "fallback_context",
		f"{ENV_PREFIX}ENABLED_METHODS": "enabled_methods",
		f"{ENV_PREFIX}SEARCH_PATHS": "search_paths",
		f"{ENV_PREFIX}LOADING_STRATEGY": "loading_strategy",
		f"{ENV_PREFIX}PLUGIN_TIMEOUT": "plugin_timeout",
		f"{ENV_PREFIX}TIMEOUT_FATAL": "timeout_fatal",
		f"{ENV_PREFIX}PERFORMANCE_BUDGET": "performance_budget",
		f"{ENV_PREFIX}MAX_CONCURRENCY": "max_concurrency",
		f"{ENV_PREFIX}VERIFY_SIGNATURES": "verify_signatures",
		f"{ENV_PREFIX}ALLOWED_SOURCES": "allowed_sources",
		f"{ENV_PREFIX}SIGNING_KEY": "signing_key",
		f"{ENV_PREFIX}SANDBOX": "sandbox",
		f"{ENV_PREFIX}MERGE_STRATEGY": "merge_strategy",
		f"{ENV_PREFIX}CACHE_TTL": "cache_ttl",
		f"{ENV_PREFIX}BASE_URL": "base_url",
		f"{ENV_PREFIX}LOG_LEVEL": "log_level",
		f"{ENV_PREFIX}LOG_FORMAT": "log_format",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, _coerce_env_value(attr, val))
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: OrchestratorConfig) -> OrchestratorConfig:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if not hasattr(config, key):
			continue
		if key in _PATH_FIELDS:
			setattr(config, key, Path(os.path.expanduser(val)))
		elif key == "search_paths":
			setattr(config, key, [Path(os.path.expanduser(p)) for p in val])
		else:
			setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> OrchestratorConfig:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = OrchestratorConfig()
	config = _apply_env_overrides(config)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: OrchestratorConfig | None = None


def get_config() -> OrchestratorConfig:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
