"""
Configuration fragments and merge strategies.

Fragments are applied in precedence order: base < tenant < plugin, and in
declaration order within each tier. Later fragments win.

Strategies:
- deep: recursive key-wise merge; arrays are replaced unless the later
  fragment lists the key's dotted path in ``append_keys``
- shallow: only top-level keys merge; nested values are replaced wholesale
- replace: the highest-precedence fragment is the whole configuration
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

from .tree import digest, freeze, get_path, is_map, is_sequence, normalize, thaw


class FragmentTier(int, Enum):
	"""Who contributed a fragment; higher tiers take precedence."""
	BASE = 0
	TENANT = 1
	PLUGIN = 2


class MergeStrategy(str, Enum):
	DEEP = "deep"
	SHALLOW = "shallow"
	REPLACE = "replace"


@dataclass(frozen=True)
class ConfigFragment:
	"""A named, immutable piece of configuration."""
	name: str
	tier: FragmentTier
	data: Mapping[str, Any]
	append_keys: frozenset[str] = field(default_factory=frozenset)

	def __post_init__(self) -> None:
		if not is_map(self.data):
			raise TypeError(f"Fragment '{self.name}' must be a mapping")
		object.__setattr__(self, "data", freeze(normalize(self.data, f"${self.name}")))
		object.__setattr__(self, "append_keys", frozenset(self.append_keys))

	@classmethod
	def base(cls, name: str, data: Mapping[str, Any], append_keys: Iterable[str] = ()) -> "ConfigFragment":
		return cls(name, FragmentTier.BASE, data, frozenset(append_keys))

	@classmethod
	def tenant(cls, name: str, data: Mapping[str, Any], append_keys: Iterable[str] = ()) -> "ConfigFragment":
		return cls(name, FragmentTier.TENANT, data, frozenset(append_keys))

	@classmethod
	def plugin(cls, name: str, data: Mapping[str, Any], append_keys: Iterable[str] = ()) -> "ConfigFragment":
		return cls(name, FragmentTier.PLUGIN, data, frozenset(append_keys))


@dataclass(frozen=True)
class MergedConfig:
	"""The immutable result of merging a fragment set."""
	data: Mapping[str, Any]
	digest: str
	strategy: MergeStrategy
	fragments: tuple[str, ...]
	cache_key: Optional[str] = None

	def to_dict(self) -> dict[str, Any]:
		return thaw(self.data)

	def get(self, dotted: str, default: Any = None) -> Any:
		return get_path(self.data, dotted, default)


def precedence_order(fragments: Sequence[ConfigFragment]) -> list[ConfigFragment]:
	"""Stable sort by tier; declaration order is kept within a tier."""
	return sorted(fragments, key=lambda f: f.tier)


def _deep_merge(base: dict, override: Mapping[str, Any], append_keys: frozenset[str], path: str = "") -> dict:
	result = dict(base)
	for key, value in override.items():
		key_path = f"{path}.{key}" if path else key
		current = result.get(key)
		if is_map(current) and is_map(value):
			result[key] = _deep_merge(current, value, append_keys, key_path)
		elif is_sequence(current) and is_sequence(value) and key_path in append_keys:
			result[key] = [*current, *thaw(value)]
		else:
			result[key] = thaw(value)
	return result


def merge_fragments(
	fragments: Sequence[ConfigFragment],
	strategy: MergeStrategy | str = MergeStrategy.DEEP,
	cache_key: Optional[str] = None,
) -> MergedConfig:
	"""Combine fragments under ``strategy``. Validation is the caller's job."""
	strategy = MergeStrategy(strategy)
	ordered = precedence_order(fragments)

	merged: dict[str, Any] = {}
	if strategy == MergeStrategy.REPLACE:
		if ordered:
			merged = thaw(ordered[-1].data)
	elif strategy == MergeStrategy.SHALLOW:
		for fragment in ordered:
			merged.update(thaw(fragment.data))
	else:
		for fragment in ordered:
			merged = _deep_merge(merged, fragment.data, fragment.append_keys)

	return MergedConfig(
		data=freeze(merged),
		digest=digest(merged),
		strategy=strategy,
		fragments=tuple(f.name for f in ordered),
		cache_key=cache_key,
	)
