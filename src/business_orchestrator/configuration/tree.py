"""
Normalized configuration trees.

Every configuration value is one of three shapes: a map with string keys, a
sequence, or a scalar (str, int, float, bool, None). Merging operates only on
these shapes, so no object inspection is needed. Frozen trees use read-only
mappings and tuples so a published configuration cannot be changed in place.
"""

import hashlib
import json
from types import MappingProxyType
from typing import Any, Mapping, Union

Scalar = Union[str, int, float, bool, None]
SCALAR_TYPES = (str, int, float, bool, type(None))


class TreeError(TypeError):
	"""A value cannot be represented as a configuration tree."""

	def __init__(self, path: str, value: Any):
		self.path = path
		super().__init__(f"Unsupported configuration value at {path}: {type(value).__name__}")


def is_map(value: Any) -> bool:
	return isinstance(value, Mapping)


def is_sequence(value: Any) -> bool:
	return isinstance(value, (list, tuple))


def normalize(value: Any, path: str = "$") -> Any:
	"""Deep-copy ``value`` into plain dicts, lists and scalars."""
	if is_map(value):
		result = {}
		for key, child in value.items():
			if not isinstance(key, str):
				raise TreeError(f"{path}.<key>", key)
			result[key] = normalize(child, f"{path}.{key}")
		return result
	if is_sequence(value):
		return [normalize(child, f"{path}[{i}]") for i, child in enumerate(value)]
	if isinstance(value, SCALAR_TYPES):
		return value
	raise TreeError(path, value)


def freeze(value: Any) -> Any:
	"""Read-only view of a normalized tree."""
	if is_map(value):
		return MappingProxyType({key: freeze(child) for key, child in value.items()})
	if is_sequence(value):
		return tuple(freeze(child) for child in value)
	return value


def thaw(value: Any) -> Any:
	"""Mutable deep copy of a (possibly frozen) tree."""
	if is_map(value):
		return {key: thaw(child) for key, child in value.items()}
	if is_sequence(value):
		return [thaw(child) for child in value]
	return value


def canonical_json(value: Any) -> str:
	return json.dumps(thaw(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def digest(value: Any) -> str:
	"""Stable content hash of a tree."""
	return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


def get_path(tree: Any, dotted: str, default: Any = None) -> Any:
	"""Look up ``a.b.c`` in a tree."""
	node = tree
	for part in dotted.split("."):
		if not is_map(node) or part not in node:
			return default
		node = node[part]
	return node
