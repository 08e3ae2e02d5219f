"""Configuration module - Fragment merging, validation and caching."""

from .manager import ConfigurationManager
from .merge import ConfigFragment, FragmentTier, MergedConfig, MergeStrategy, merge_fragments
from .schema import DEFAULT_SCHEMA, PERMISSIVE_SCHEMA, ConfigSchema

__all__ = [
	"ConfigurationManager",
	"ConfigFragment",
	"FragmentTier",
	"MergedConfig",
	"MergeStrategy",
	"merge_fragments",
	"ConfigSchema",
	"DEFAULT_SCHEMA",
	"PERMISSIVE_SCHEMA",
]
