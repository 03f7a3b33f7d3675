"""CLI for agent-team: roster, check, report and run commands."""

import argparse
import asyncio
import json
import logging
import sys
import tomllib
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console

from .config import Config, load_config
from .engine import ClaudeCLIEngine
from .errors import TeamError
from .logging_config import setup_logging
from .models import SessionReport, Task, TaskPriority, TaskType
from .orchestrator import TeamOrchestrator
from .policy import PermissionContext, PolicyEngine
from .sink import FileReportSink
from .team import TeamSpec, default_team, load_team
from .visualizer import (
	render_cost_summary,
	render_decision,
	render_hook_metrics,
	render_report,
	render_roster,
	render_security_summary,
)

logger = logging.getLogger(__name__)


def _load_team(args: argparse.Namespace, config: Config) -> TeamSpec:
	"""Team file from --team, else the configured team file, else the built-in team. Exit 1 on a bad file."""
	if args.team:
		path = Path(args.team)
	elif config.team_file.exists():
		path = config.team_file
	else:
		return default_team()

	try:
		return load_team(path)
	except OSError as e:
		print(f"Cannot read team file {path}: {e}", file=sys.stderr)
	except tomllib.TOMLDecodeError as e:
		print(f"Malformed team file {path}: {e}", file=sys.stderr)
	except ValidationError as e:
		print(f"Invalid team file {path}:\n{e}", file=sys.stderr)
	sys.exit(1)


def _parse_task(value: str) -> Task:
	"""Parse KIND:DESCRIPTION into a Task."""
	kind, sep, description = value.partition(":")
	if not sep or not description.strip():
		raise argparse.ArgumentTypeError(f"Expected KIND:DESCRIPTION, got {value!r}")
	try:
		task_type = TaskType(kind.strip().lower())
	except ValueError:
		choices = ", ".join(t.value for t in TaskType)
		raise argparse.ArgumentTypeError(f"Unknown task kind {kind!r} (choose from {choices})")
	return Task(type=task_type, description=description.strip())


def cmd_roster(args: argparse.Namespace) -> None:
	"""Show the team roster."""
	config = load_config()
	team = _load_team(args, config)
	render_roster(team.roster(), Console(), fallback=team.fallback_member)


def cmd_check(args: argparse.Namespace) -> None:
	"""Evaluate one operation against the team's policy. Exit 1 on deny."""
	config = load_config()
	team = _load_team(args, config)

	try:
		operation_input = json.loads(args.input)
	except json.JSONDecodeError as e:
		print(f"Invalid --input JSON: {e}", file=sys.stderr)
		sys.exit(2)

	engine = PolicyEngine(team.policy.to_rules(), workspace=str(config.workspace))
	context = PermissionContext(priority=TaskPriority(args.priority)) if args.priority else None
	decision = engine.evaluate(args.kind, operation_input, context)

	console = Console()
	render_decision(args.kind, decision, console)
	if args.json:
		console.print_json(json.dumps(decision.to_dict()))

	if not decision.allowed:
		sys.exit(1)


def cmd_report(args: argparse.Namespace) -> None:
	"""Render a saved session report."""
	path = Path(args.path)
	if not path.exists():
		print(f"Report not found: {path}", file=sys.stderr)
		sys.exit(1)

	try:
		report = SessionReport.from_dict(json.loads(path.read_text(encoding="utf-8")))
	except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
		print(f"Invalid report {path}: {e}", file=sys.stderr)
		sys.exit(1)

	render_report(report, Console())


def cmd_run(args: argparse.Namespace) -> None:
	"""Start a session, run the given tasks in parallel, end the session."""
	config = load_config()
	team = _load_team(args, config)
	config.workspace.mkdir(parents=True, exist_ok=True)

	orchestrator = TeamOrchestrator.from_team(
		team,
		engine=ClaudeCLIEngine(model=args.model),
		config=config,
		sink=FileReportSink(config.workspace),
	)

	try:
		report = asyncio.run(_run_session(orchestrator, args.name, args.task, args.init))
	except TeamError as e:
		logger.error(f"Run failed: {e}")
		sys.exit(1)

	console = Console()
	render_report(report, console)
	render_cost_summary(orchestrator.costs.summary(), console)
	render_security_summary(orchestrator.policy.security_summary(), console)
	render_hook_metrics(orchestrator.hooks.metrics(), console)

	if report.failed_tasks:
		sys.exit(1)


async def _run_session(
	orchestrator: TeamOrchestrator,
	name: str,
	tasks: list[Task],
	init: bool,
) -> SessionReport:
	if init:
		await orchestrator.initialize_team()
	session_id = await orchestrator.start_session(name)
	await orchestrator.execute_parallel_tasks(session_id, tasks)
	return await orchestrator.end_session(session_id)


def main() -> None:
	"""CLI entry point."""
	load_dotenv()

	parser = argparse.ArgumentParser(
		prog="agent-team",
		description="Policy-gated orchestration for a team of Claude agents",
	)
	parser.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING or ERROR")
	subparsers = parser.add_subparsers(dest="command")

	# roster
	roster_parser = subparsers.add_parser("roster", help="Show team members")
	roster_parser.add_argument("--team", type=str, default=None, help="Team TOML file")
	roster_parser.set_defaults(func=cmd_roster)

	# check
	check_parser = subparsers.add_parser("check", help="Evaluate one operation against the policy")
	check_parser.add_argument("kind", type=str, help="Operation kind, e.g. Bash or Write")
	check_parser.add_argument("--input", type=str, default="{}", help="Operation input as JSON")
	check_parser.add_argument(
		"--priority",
		type=str,
		default=None,
		choices=[p.value for p in TaskPriority],
		help="Task priority for the default policy",
	)
	check_parser.add_argument("--team", type=str, default=None, help="Team TOML file")
	check_parser.add_argument("--json", action="store_true", help="Also print the decision as JSON")
	check_parser.set_defaults(func=cmd_check)

	# report
	report_parser = subparsers.add_parser("report", help="Render a saved session report")
	report_parser.add_argument("path", type=str, help="Path to session-<id>.json")
	report_parser.set_defaults(func=cmd_report)

	# run
	run_parser = subparsers.add_parser("run", help="Run tasks in a new session")
	run_parser.add_argument("name", type=str, help="Session name")
	run_parser.add_argument(
		"--task",
		type=_parse_task,
		action="append",
		required=True,
		help="KIND:DESCRIPTION, repeatable",
	)
	run_parser.add_argument("--team", type=str, default=None, help="Team TOML file")
	run_parser.add_argument("--model", type=str, default=None, help="Model passed to the Claude CLI")
	run_parser.add_argument("--init", action="store_true", help="Write settings and member documents first")
	run_parser.set_defaults(func=cmd_run)

	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	config = load_config()
	setup_logging(args.log_level or config.log_level, config.log_dir)
	args.func(args)
