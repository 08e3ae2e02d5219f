"""CLI for business-orchestrator: detect, plugins and resolve commands."""

import argparse
import asyncio
import json
import os
import sys
from typing import Optional

from rich.console import Console
from rich.table import Table

from .config import load_config
from .detection.detector import ContextDetector
from .detection.models import DetectionResult, RuntimeSignals
from .detection.profiles import load_profiles
from .errors import OrchestrationError
from .logging_config import setup_logging
from .orchestrator.facade import OrchestrationResult, OrchestratorFacade
from .plugins.registry import PluginRegistry


def _parse_pairs(pairs: Optional[list[str]], option: str) -> dict[str, str]:
	"""Turn repeated KEY=VALUE options into a dict."""
	result: dict[str, str] = {}
	for pair in pairs or []:
		key, sep, value = pair.partition("=")
		if not sep or not key:
			raise SystemExit(f"{option} expects KEY=VALUE, got: {pair}")
		result[key] = value
	return result


def _signals_from_args(args: argparse.Namespace) -> RuntimeSignals:
	environment = {} if args.no_environ else dict(os.environ)
	environment.update(_parse_pairs(args.env, "--env"))
	return RuntimeSignals(
		domain=args.domain,
		port=args.port,
		headers=_parse_pairs(args.header, "--header"),
		environment=environment,
	)


def _add_signal_arguments(parser: argparse.ArgumentParser) -> None:
	parser.add_argument("--domain", type=str, default=None, help="Request domain")
	parser.add_argument("--port", type=int, default=None, help="Listening port")
	parser.add_argument("--header", action="append", metavar="KEY=VALUE", help="Request header (repeatable)")
	parser.add_argument("--env", action="append", metavar="KEY=VALUE", help="Environment variable (repeatable)")
	parser.add_argument("--no-environ", action="store_true", help="Ignore the process environment")
	parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")


def render_detection(result: DetectionResult, console: Optional[Console] = None) -> None:
	"""Render a detection result as a table."""
	console = console or Console()
	table = Table(title="Business Context", show_header=False)
	table.add_column("Field", style="bold")
	table.add_column("Value")
	table.add_row("Context", f"[cyan]{result.context}[/cyan]")
	table.add_row("Method", result.method.value)
	table.add_row("Confidence", f"{result.confidence:.2f}")
	for key, value in result.metadata.items():
		table.add_row(key, str(value))
	console.print(table)


def render_plugins(plugins: list[dict], console: Optional[Console] = None, title: str = "Plugins") -> None:
	console = console or Console()
	if not plugins:
		console.print("[dim]No plugins registered.[/dim]")
		return
	table = Table(title=title)
	table.add_column("ID", style="cyan")
	table.add_column("Version")
	table.add_column("Category")
	table.add_column("Loading")
	table.add_column("Depends On")
	table.add_column("Capabilities", style="dim")
	for plugin in plugins:
		table.add_row(
			plugin["id"],
			plugin["version"],
			plugin["category"],
			plugin["loading_strategy"],
			", ".join(plugin["depends_on"]) or "-",
			", ".join(plugin["capabilities"]) or "-",
		)
	console.print(table)


def render_orchestration(result: OrchestrationResult, console: Optional[Console] = None) -> None:
	"""Render plugin outcomes and stage timings for one orchestration."""
	console = console or Console()
	console.print(
		f"[bold]{result.context}[/bold] via {result.detection.method.value} "
		f"(confidence {result.detection.confidence:.2f})"
	)

	plugins = Table(title="Plugin Load Order")
	plugins.add_column("#", justify="right")
	plugins.add_column("Plugin", style="cyan")
	plugins.add_column("Status")
	plugins.add_column("Load Time", justify="right")
	records = result.load_result.records if result.load_result else {}
	for position, (plugin_id, record) in enumerate(records.items(), start=1):
		style = "green" if record.status.value == "loaded" else "yellow" if record.status.value == "deferred" else "red"
		plugins.add_row(
			str(position),
			plugin_id,
			f"[{style}]{record.status.value}[/{style}]",
			f"{record.load_time * 1000:.1f}ms",
		)
	console.print(plugins)

	timings = Table(title="Stage Timings")
	timings.add_column("Stage")
	timings.add_column("Duration", justify="right")
	for stage, seconds in result.stage_timings.items():
		timings.add_row(stage, f"{seconds * 1000:.1f}ms")
	console.print(timings)
	console.print(f"[dim]Config digest: {result.merged_config.digest}[/dim]")


def cmd_detect(args: argparse.Namespace) -> None:
	"""Detect the business context for the given signals."""
	config = load_config()
	detector = ContextDetector(
		profiles=load_profiles(config.profiles_file),
		fallback=config.fallback_context,
		enabled_methods=config.enabled_methods,
		custom_rule_priority=config.custom_rule_priority,
	)
	result = detector.detect(_signals_from_args(args))
	if args.json:
		print(json.dumps(result.to_dict(), indent=2))
	else:
		render_detection(result)


def cmd_plugins(args: argparse.Namespace) -> None:
	"""List discovered plugins, optionally only those a tenant activates."""
	config = load_config()
	registry = PluginRegistry(search_paths=config.effective_search_paths)
	snapshot = registry.discover()
	plugins = registry.list_plugins()
	title = "Plugins"
	if args.context:
		profiles = load_profiles(config.profiles_file)
		if args.context not in profiles:
			print(f"Unknown business context: {args.context}", file=sys.stderr)
			sys.exit(1)
		wanted = set(registry.plugins_for_context(profiles[args.context], snapshot))
		plugins = [p for p in plugins if p["id"] in wanted]
		title = f"Plugins for {args.context}"
	if args.json:
		print(json.dumps(plugins, indent=2))
	else:
		render_plugins(plugins, title=title)


def cmd_resolve(args: argparse.Namespace) -> None:
	"""Run the full orchestration pipeline and report the outcome."""
	config = load_config()
	facade = OrchestratorFacade.from_config(config)
	try:
		result = asyncio.run(facade.initialize(_signals_from_args(args)))
	except OrchestrationError as e:
		Console(stderr=True).print(f"[red]{e}[/red]")
		sys.exit(1)

	if args.json:
		payload = result.summary()
		payload["config"] = result.merged_config.to_dict()
		print(json.dumps(payload, indent=2, default=str))
	else:
		render_orchestration(result)


def main(argv: Optional[list[str]] = None) -> None:
	"""CLI entry point."""
	parser = argparse.ArgumentParser(
		prog="business-orchestrator",
		description="Multi-tenant business context detection, plugin loading and configuration merging",
	)
	parser.add_argument("--log-level", type=str, default=None, help="Override the configured log level")
	subparsers = parser.add_subparsers(dest="command")

	# detect
	detect_parser = subparsers.add_parser("detect", help="Detect the business context")
	_add_signal_arguments(detect_parser)
	detect_parser.set_defaults(func=cmd_detect)

	# plugins
	plugins_parser = subparsers.add_parser("plugins", help="List discovered plugins")
	plugins_parser.add_argument("--context", type=str, default=None, help="Only plugins this tenant activates")
	plugins_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
	plugins_parser.set_defaults(func=cmd_plugins)

	# resolve
	resolve_parser = subparsers.add_parser("resolve", help="Run the full orchestration pipeline")
	_add_signal_arguments(resolve_parser)
	resolve_parser.set_defaults(func=cmd_resolve)

	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	config = load_config()
	setup_logging(args.log_level or config.log_level, log_dir=config.log_dir, log_format=config.log_format, stream=sys.stderr)
	args.func(args)


if __name__ == "__main__":
	main()
