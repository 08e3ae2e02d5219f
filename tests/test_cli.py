"""Tests for the CLI module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from business_orchestrator.cli import _parse_pairs, main, render_detection, render_plugins
from business_orchestrator.detection.models import DetectionMethod, DetectionResult

from .helpers import write_manifest


@pytest.fixture
def cli_env(tmp_path: Path):
	"""Point the CLI at temporary directories and keep logging untouched."""
	with patch.dict(os.environ, {
		"BUSINESS_ORCHESTRATOR_DATA_DIR": str(tmp_path / "data"),
		"BUSINESS_ORCHESTRATOR_CONFIG_DIR": str(tmp_path / "config"),
	}), patch("business_orchestrator.cli.setup_logging"):
		yield tmp_path


def test_parse_pairs():
	assert _parse_pairs(["A=1", "B=x=y"], "--env") == {"A": "1", "B": "x=y"}
	assert _parse_pairs(None, "--env") == {}
	with pytest.raises(SystemExit):
		_parse_pairs(["novalue"], "--env")


def test_no_command_prints_help(cli_env):
	with pytest.raises(SystemExit) as exc_info:
		main([])
	assert exc_info.value.code == 1


def test_detect_json(cli_env, capsys):
	main(["detect", "--no-environ", "--port", "3003", "--json"])
	data = json.loads(capsys.readouterr().out)
	assert data["context"] == "latinos"
	assert data["method"] == "port"


def test_detect_env_option(cli_env, capsys):
	main(["detect", "--no-environ", "--env", "BUSINESS_MODE=salarium", "--domain", "cms.localhost", "--json"])
	assert json.loads(capsys.readouterr().out)["context"] == "salarium"


def test_detect_table(cli_env, capsys):
	main(["detect", "--no-environ", "--header", "x-business-context=cms"])
	out = capsys.readouterr().out
	assert "cms" in out
	assert "header" in out


def test_plugins_for_context(cli_env, capsys):
	main(["plugins", "--context", "salarium", "--json"])
	ids = [p["id"] for p in json.loads(capsys.readouterr().out)]
	assert "salarium-hr" in ids
	assert "intellitrade-kyc" not in ids


def test_plugins_unknown_context(cli_env):
	with pytest.raises(SystemExit) as exc_info:
		main(["plugins", "--context", "nowhere"])
	assert exc_info.value.code == 1


def test_plugins_includes_discovered(cli_env, capsys):
	write_manifest(cli_env / "data" / "plugins", "crm", {"version": "0.3.0"})
	main(["plugins", "--json"])
	plugins = {p["id"]: p for p in json.loads(capsys.readouterr().out)}
	assert plugins["crm"]["version"] == "0.3.0"


def test_resolve_json(cli_env, capsys):
	main(["resolve", "--no-environ", "--env", "BUSINESS_MODE=cms", "--json"])
	data = json.loads(capsys.readouterr().out)
	assert data["context"] == "cms"
	assert data["plugin_order"][:3] == ["core-auth", "core-database", "core-api"]
	assert data["config"]["business"]["name"] == "CMS Admin"


def test_resolve_table(cli_env, capsys):
	main(["resolve", "--no-environ", "--port", "3007"])
	out = capsys.readouterr().out
	assert "capacita" in out
	assert "capacita-training" in out


def test_resolve_failure_exits(cli_env):
	write_manifest(cli_env / "data" / "plugins", "cms-reports", {
		"category": "business", "supported-contexts": ["cms"], "depends-on": ["ghost"],
	})
	with pytest.raises(SystemExit) as exc_info:
		main(["resolve", "--no-environ", "--env", "BUSINESS_MODE=cms"])
	assert exc_info.value.code == 1


def test_render_helpers(capsys):
	from rich.console import Console

	console = Console(force_terminal=False, width=200)
	render_detection(DetectionResult("cms", DetectionMethod.PORT, 0.8, {"port": 3006}), console=console)
	render_plugins([], console=console)
	out = capsys.readouterr().out
	assert "cms" in out
	assert "No plugins registered" in out
