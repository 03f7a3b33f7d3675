"""Rich views for session reports, cost and hook metrics."""

from typing import Any, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..models import SessionReport, TaskStatus
from .utils import format_cost, format_duration, rate_style, status_style


def render_report(report: SessionReport, console: Optional[Console] = None) -> None:
	"""Render a session report: summary panel plus per-task table."""
	console = console or Console()

	failed = report.failed_tasks
	lines = [
		f"[bold]{report.name}[/bold]  [dim]{report.session_id}[/dim]",
		f"Duration: {format_duration(report.duration)}",
		f"Tasks: {report.total_tasks} ({report.total_tasks - failed} completed, {failed} failed)",
		f"Cost: {format_cost(report.total_cost)}",
		f"Tokens: {report.usage.input_tokens} in / {report.usage.output_tokens} out"
		f" / {report.usage.cache_creation_input_tokens} cache write"
		f" / {report.usage.cache_read_input_tokens} cache read",
	]
	console.print(Panel("\n".join(lines), title="Session Report"))

	if not report.tasks:
		console.print("[dim]No tasks recorded.[/dim]")
		return

	table = Table(title="Tasks")
	table.add_column("Task", style="cyan")
	table.add_column("Status", justify="center")
	table.add_column("Duration", justify="right")
	table.add_column("Cost", justify="right")

	for t in report.tasks:
		style = status_style(t["status"] == TaskStatus.COMPLETED.value)
		table.add_row(
			t["task_id"],
			f"[{style}]{t['status']}[/{style}]",
			format_duration(t["duration"]),
			format_cost(t["cost"]),
		)

	console.print(table)


def render_cost_summary(summary: dict[str, Any], console: Optional[Console] = None) -> None:
	"""Render the cost ledger summary."""
	console = console or Console()

	table = Table(title="Cost Summary")
	table.add_column("Metric", style="cyan")
	table.add_column("Value", justify="right")
	table.add_row("Messages charged", str(summary["messages"]))
	table.add_row("Total cost", format_cost(summary["total_cost_usd"]))
	table.add_row("Average per message", format_cost(summary["average_cost_usd"]))
	for key in ("input_tokens", "output_tokens", "cache_creation_input_tokens", "cache_read_input_tokens"):
		table.add_row(key.replace("_", " "), str(summary[key]))

	console.print(table)


def render_hook_metrics(metrics: dict[str, Any], console: Optional[Console] = None) -> None:
	"""Render hook execution metrics."""
	console = console or Console()

	if not metrics["total_executions"]:
		console.print("[dim]No hook executions recorded yet.[/dim]")
		return

	rate = metrics["success_rate"]
	style = rate_style(rate)
	console.print(
		f"Hook executions: {metrics['total_executions']}  |  "
		f"Success: [{style}]{rate:.1f}%[/{style}]  |  "
		f"Avg: {format_duration(metrics['average_duration_ms'] / 1000)}"
	)

	table = Table(title="Hook Events")
	table.add_column("Event", style="cyan")
	table.add_column("Executions", justify="right")
	for event, count in sorted(metrics["event_breakdown"].items()):
		table.add_row(event, str(count))
	console.print(table)

	if metrics["tool_usage"]:
		tools = Table(title="Tool Usage")
		tools.add_column("Tool", style="cyan")
		tools.add_column("Completed", justify="right")
		for tool, count in sorted(metrics["tool_usage"].items(), key=lambda kv: kv[1], reverse=True):
			tools.add_row(tool, str(count))
		console.print(tools)
