"""Tests for merged configuration validation."""

import pytest

from business_orchestrator.configuration.schema import DEFAULT_SCHEMA, PERMISSIVE_SCHEMA, ConfigSchema
from business_orchestrator.errors import ConfigValidationError


def _valid_config() -> dict:
	return {
		"server_url": "https://cms.paulovila.org:3006",
		"cors": ["https://cms.paulovila.org"],
		"business": {"context": "cms", "name": "CMS Admin", "features": {}},
		"collections": [{"slug": "users"}],
		"globals": [{"slug": "business-config"}],
		"admin": {},
		"plugins": ["core-auth"],
	}


class TestDefaultSchema:
	"""The built-in schema for merged business configuration."""

	def test_valid(self):
		DEFAULT_SCHEMA.validate(_valid_config())

	def test_missing_required_key(self):
		config = _valid_config()
		del config["server_url"]
		with pytest.raises(ConfigValidationError) as exc_info:
			DEFAULT_SCHEMA.validate(config)
		assert exc_info.value.path == "$.server_url"

	def test_wrong_type_names_path_and_shape(self):
		config = _valid_config()
		config["collections"] = [{"slug": "users"}, {"slug": 42}]
		with pytest.raises(ConfigValidationError) as exc_info:
			DEFAULT_SCHEMA.validate(config)
		assert exc_info.value.path == "$.collections[1].slug"
		assert exc_info.value.expected == "string"
		assert exc_info.value.actual == "integer"
		assert exc_info.value.fatal is True

	def test_nested_required(self):
		config = _valid_config()
		config["business"] = {"context": "cms"}
		with pytest.raises(ConfigValidationError) as exc_info:
			DEFAULT_SCHEMA.validate(config)
		assert exc_info.value.path == "$.business.name"

	def test_frozen_trees_validate(self):
		from business_orchestrator.configuration.tree import freeze

		DEFAULT_SCHEMA.validate(freeze(_valid_config()))

	def test_permissive(self):
		PERMISSIVE_SCHEMA.validate({"anything": [1, 2]})
		with pytest.raises(ConfigValidationError):
			PERMISSIVE_SCHEMA.validate([1, 2])


class TestKeywords:
	"""Supported schema keywords."""

	def test_enum(self):
		schema = ConfigSchema("s", {"properties": {"mode": {"enum": ["a", "b"]}}})
		schema.validate({"mode": "a"})
		ok, message = schema.is_valid({"mode": "c"})
		assert ok is False
		assert "$.mode" in message

	def test_additional_properties(self):
		schema = ConfigSchema("s", {"type": "object", "properties": {"a": {}}, "additionalProperties": False})
		schema.validate({"a": 1})
		with pytest.raises(ConfigValidationError) as exc_info:
			schema.validate({"a": 1, "b": 2})
		assert exc_info.value.path == "$.b"

	def test_union_types(self):
		schema = ConfigSchema("s", {"type": ["string", "null"]})
		schema.validate(None)
		schema.validate("x")
		assert schema.is_valid(1) == (False, "Invalid configuration at $: expected string | null, got integer")

	def test_bool_is_not_a_number(self):
		schema = ConfigSchema("s", {"type": "number"})
		schema.validate(1.5)
		with pytest.raises(ConfigValidationError):
			schema.validate(True)
