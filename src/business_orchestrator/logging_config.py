"""Centralized logging configuration for business-orchestrator.

Every pipeline stage reports through the standard ``logging`` module. Structured
fields ride along on each record under the ``fields`` attribute so an external
sink (any ``logging.Handler``) can consume them without parsing messages.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

ROOT_LOGGER = "business_orchestrator"


class StructuredFormatter(logging.Formatter):
	"""Render a record plus its structured fields as text or a JSON line."""

	def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, json_output: bool = False):
		super().__init__(fmt=fmt, datefmt=datefmt)
		self.json_output = json_output

	def format(self, record: logging.LogRecord) -> str:
		fields = getattr(record, "fields", None) or {}
		if self.json_output:
			entry = {
				"timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
				"level": record.levelname.lower(),
				"logger": record.name,
				"message": record.getMessage(),
			}
			if fields:
				entry["data"] = fields
			if record.exc_info:
				entry["exception"] = self.formatException(record.exc_info)
			return json.dumps(entry, default=str, sort_keys=True)

		text = super().format(record)
		if fields:
			rendered = " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
			text = f"{text} | {rendered}"
		return text


def setup_logging(
	level: Optional[str] = None,
	log_dir: Optional[Path] = None,
	log_format: str = "text",
	name: str = ROOT_LOGGER,
	stream: Optional[TextIO] = None,
) -> logging.Logger:
	"""
	Set up logging with console and file handlers.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to env var or INFO.
		log_dir: Directory for the rotating log file; console only when omitted
		log_format: "text" or "json"
		name: Logger name
		stream: Console stream; stdout when omitted

	Returns:
		Configured logger
	"""
	level = level or os.getenv("LOG_LEVEL", "INFO")
	log_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(name)
	logger.setLevel(log_level)

	# Avoid duplicate handlers
	if logger.handlers:
		return logger

	json_output = log_format == "json"
	console_handler = logging.StreamHandler(stream or sys.stdout)
	console_handler.setLevel(log_level)
	console_handler.setFormatter(StructuredFormatter(
		"%(asctime)s [%(levelname)s] %(message)s",
		datefmt="%H:%M:%S",
		json_output=json_output,
	))
	logger.addHandler(console_handler)

	if log_dir is not None:
		log_path = Path(log_dir)
		log_path.mkdir(parents=True, exist_ok=True)
		file_handler = RotatingFileHandler(
			log_path / f"{name}.log",
			maxBytes=10 * 1024 * 1024,  # 10 MB
			backupCount=5,
		)
		file_handler.setLevel(logging.DEBUG)
		file_handler.setFormatter(StructuredFormatter(
			"%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
			datefmt="%Y-%m-%d %H:%M:%S",
			json_output=json_output,
		))
		logger.addHandler(file_handler)

	return logger


def log_event(
	logger: logging.Logger,
	level: int,
	message: str,
	exc_info: Any = None,
	**fields: Any,
) -> None:
	"""Emit a log record carrying a structured field map."""
	logger.log(level, message, exc_info=exc_info, extra={"fields": fields})
