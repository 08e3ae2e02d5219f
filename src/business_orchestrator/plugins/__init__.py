"""Plugins module - Manifests, discovery, dependency ordering and loading."""

from .loader import LoadResult, PluginContext, PluginLoader, PluginSet, PluginStatus, StaticPlugin
from .models import Capability, LoadingStrategy, PluginCategory, PluginManifest
from .registry import PluginRegistry, RegistrySnapshot
from .resolver import DependencyResolver
from .security import SecurityPolicy, sign_manifest

__all__ = [
	"Capability",
	"LoadingStrategy",
	"PluginCategory",
	"PluginManifest",
	"PluginRegistry",
	"RegistrySnapshot",
	"DependencyResolver",
	"PluginLoader",
	"PluginContext",
	"PluginSet",
	"PluginStatus",
	"StaticPlugin",
	"LoadResult",
	"SecurityPolicy",
	"sign_manifest",
]
