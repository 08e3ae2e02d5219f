"""Shared test fixtures and helpers for business-orchestrator tests."""

from pathlib import Path
from typing import Any, Optional

import yaml

from business_orchestrator.detection.models import RuntimeSignals
from business_orchestrator.plugins.models import LoadingStrategy, PluginCategory, PluginManifest
from business_orchestrator.plugins.registry import RegistrySnapshot


def make_manifest(
	plugin_id: str,
	depends_on: tuple[str, ...] = (),
	strategy: LoadingStrategy = LoadingStrategy.EAGER,
	**kwargs: Any,
) -> PluginManifest:
	"""Minimal manifest with sensible defaults."""
	kwargs.setdefault("category", PluginCategory.SHARED)
	kwargs.setdefault("source_origin", "@paulovila")
	return PluginManifest(id=plugin_id, depends_on=depends_on, loading_strategy=strategy, **kwargs)


def make_snapshot(*manifests: PluginManifest) -> RegistrySnapshot:
	return RegistrySnapshot(tuple(manifests), version=1)


def signals(
	domain: Optional[str] = None,
	port: Optional[int] = None,
	headers: Optional[dict[str, str]] = None,
	env: Optional[dict[str, str]] = None,
) -> RuntimeSignals:
	"""Signals that never read the real process environment."""
	return RuntimeSignals(domain=domain, port=port, headers=headers or {}, environment=env or {})


def write_manifest(base: Path, directory: str, data: Any, filename: str = "plugin.yaml") -> Path:
	"""Write a plugin manifest under ``base/directory``."""
	plugin_dir = base / directory
	plugin_dir.mkdir(parents=True, exist_ok=True)
	path = plugin_dir / filename
	if isinstance(data, str):
		path.write_text(data)
	else:
		path.write_text(yaml.safe_dump(data))
	return path
