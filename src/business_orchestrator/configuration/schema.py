"""
Declared shape of a merged configuration.

Schemas use a small JSON-schema subset: ``type``, ``required``,
``properties``, ``additionalProperties``, ``items`` and ``enum``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import ConfigValidationError
from .tree import is_map, is_sequence

logger = logging.getLogger(__name__)

_TYPE_CHECKS = {
	"string": lambda v: isinstance(v, str),
	"number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
	"integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
	"boolean": lambda v: isinstance(v, bool),
	"array": is_sequence,
	"object": is_map,
	"null": lambda v: v is None,
}


def _type_name(value: Any) -> str:
	if is_map(value):
		return "object"
	if is_sequence(value):
		return "array"
	if isinstance(value, bool):
		return "boolean"
	if isinstance(value, int):
		return "integer"
	if isinstance(value, float):
		return "number"
	if isinstance(value, str):
		return "string"
	if value is None:
		return "null"
	return type(value).__name__


def _describe(schema: dict[str, Any]) -> str:
	"""Human-readable expected shape for error messages."""
	expected = schema.get("type", "any")
	if isinstance(expected, list):
		expected = " | ".join(expected)
	if "enum" in schema:
		expected = f"one of {schema['enum']}"
	if expected == "object" and schema.get("required"):
		expected = f"object with keys {schema['required']}"
	if expected == "array" and "items" in schema:
		expected = f"array of {_describe(schema['items'])}"
	return expected


@dataclass(frozen=True)
class ConfigSchema:
	"""A schema a merged configuration must satisfy."""
	name: str
	json_schema: dict[str, Any] = field(default_factory=dict)

	def validate(self, tree: Any) -> None:
		"""
		Check ``tree`` against the schema.

		Raises:
			ConfigValidationError: naming the first offending path
		"""
		self._check(tree, self.json_schema, "$")

	def is_valid(self, tree: Any) -> tuple[bool, Optional[str]]:
		try:
			self.validate(tree)
		except ConfigValidationError as e:
			return False, str(e)
		return True, None

	def _check(self, value: Any, schema: dict[str, Any], path: str) -> None:
		expected = schema.get("type")
		if expected:
			allowed = expected if isinstance(expected, list) else [expected]
			checks = [_TYPE_CHECKS.get(t) for t in allowed]
			# Unknown type names are not enforced
			if all(checks) and not any(check(value) for check in checks):
				raise ConfigValidationError(path, _describe(schema), _type_name(value))

		if "enum" in schema and value not in schema["enum"]:
			raise ConfigValidationError(path, _describe(schema), repr(value))

		if is_map(value):
			for key in schema.get("required", []):
				if key not in value:
					raise ConfigValidationError(f"{path}.{key}", "required key", "missing")
			properties = schema.get("properties", {})
			for key, child in value.items():
				if key in properties:
					self._check(child, properties[key], f"{path}.{key}")
				elif schema.get("additionalProperties") is False:
					raise ConfigValidationError(f"{path}.{key}", "no additional keys", "unexpected key")

		if is_sequence(value) and "items" in schema:
			for i, child in enumerate(value):
				self._check(child, schema["items"], f"{path}[{i}]")


PERMISSIVE_SCHEMA = ConfigSchema(name="permissive", json_schema={"type": "object"})

DEFAULT_SCHEMA = ConfigSchema(
	name="business_config",
	json_schema={
		"type": "object",
		"required": ["server_url", "business", "collections"],
		"properties": {
			"server_url": {"type": "string"},
			"cors": {"type": "array", "items": {"type": "string"}},
			"business": {
				"type": "object",
				"required": ["context", "name"],
				"properties": {
					"context": {"type": "string"},
					"name": {"type": "string"},
					"features": {"type": "object"},
				},
			},
			"collections": {
				"type": "array",
				"items": {
					"type": "object",
					"required": ["slug"],
					"properties": {"slug": {"type": "string"}},
				},
			},
			"globals": {"type": "array", "items": {"type": "object", "required": ["slug"]}},
			"admin": {"type": "object"},
			"plugins": {"type": "array", "items": {"type": "string"}},
		},
	},
)
