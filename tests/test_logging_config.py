"""Tests for logging setup and structured records."""

import io
import json
import logging
from pathlib import Path

from business_orchestrator.logging_config import StructuredFormatter, log_event, setup_logging


def _record(message: str = "hello", **fields) -> logging.LogRecord:
	record = logging.LogRecord("business_orchestrator.test", logging.INFO, __file__, 1, message, None, None)
	if fields:
		record.fields = fields
	return record


class TestStructuredFormatter:
	"""Rendering of structured fields."""

	def test_text_appends_sorted_fields(self):
		formatter = StructuredFormatter("%(message)s")
		text = formatter.format(_record(context="latinos", confidence=0.95))
		assert text == "hello | confidence=0.95 context=latinos"

	def test_text_without_fields(self):
		formatter = StructuredFormatter("%(message)s")
		assert formatter.format(_record()) == "hello"

	def test_json_output(self):
		formatter = StructuredFormatter(json_output=True)
		entry = json.loads(formatter.format(_record(plugin="core-auth")))
		assert entry["message"] == "hello"
		assert entry["level"] == "info"
		assert entry["logger"] == "business_orchestrator.test"
		assert entry["data"] == {"plugin": "core-auth"}


class TestSetupLogging:
	"""Handler installation."""

	def test_console_and_file_handlers(self, tmp_path: Path):
		stream = io.StringIO()
		logger = setup_logging("DEBUG", log_dir=tmp_path, name="bo_test_handlers", stream=stream)
		try:
			assert logger.level == logging.DEBUG
			assert len(logger.handlers) == 2
			log_event(logger, logging.INFO, "Stage transition", stage="loading")
			assert "Stage transition | stage=loading" in stream.getvalue()
			assert (tmp_path / "bo_test_handlers.log").exists()
		finally:
			for handler in list(logger.handlers):
				handler.close()
				logger.removeHandler(handler)

	def test_no_duplicate_handlers(self):
		stream = io.StringIO()
		logger = setup_logging("INFO", name="bo_test_dupes", stream=stream)
		try:
			setup_logging("INFO", name="bo_test_dupes", stream=stream)
			assert len(logger.handlers) == 1
		finally:
			for handler in list(logger.handlers):
				logger.removeHandler(handler)
