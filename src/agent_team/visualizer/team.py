"""Rich views for the roster and permission decisions."""

from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..models import Member
from ..policy import PermissionDecision
from .utils import status_style, truncate


def render_roster(members: list[Member], console: Optional[Console] = None, fallback: Optional[str] = None) -> None:
	"""Render a table of team members and their tools."""
	console = console or Console()

	table = Table(title=f"Team Roster ({len(members)} members)")
	table.add_column("ID", style="cyan")
	table.add_column("Name")
	table.add_column("Role")
	table.add_column("Specialization")
	table.add_column("Tools")

	for m in members:
		member_id = f"{m.id} [dim](fallback)[/dim]" if m.id == fallback else m.id
		table.add_row(
			member_id,
			m.name,
			m.role,
			", ".join(m.specialization),
			truncate(", ".join(m.permissions), 50),
		)

	console.print(table)


def render_decision(
	operation_kind: str,
	decision: PermissionDecision,
	console: Optional[Console] = None,
) -> None:
	"""Render a single permission decision."""
	console = console or Console()
	style = status_style(decision.allowed)
	label = decision.verdict.value.upper()
	if decision.ask:
		label += " (ask)"
	if decision.interrupt:
		label += " (interrupt)"

	console.print(f"[bold cyan]{operation_kind}[/bold cyan]: [{style}]{label}[/{style}]")
	console.print(f"  Reason: {escape(decision.reason)}")
	if decision.rule:
		console.print(f"  Rule:   {escape(decision.rule)}")
	if decision.updated_input is not None:
		console.print(f"  Input:  {escape(str(decision.updated_input))}")


def render_security_summary(summary: dict[str, Any], console: Optional[Console] = None) -> None:
	"""Render audit counts and the most recent denials."""
	console = console or Console()

	console.print(
		f"Permission checks: {summary['total']}  |  "
		f"[green]allowed {summary['allowed']}[/green]  |  "
		f"[yellow]asked {summary['asked']}[/yellow]  |  "
		f"[red]denied {summary['denied']}[/red]"
	)

	if summary["operation_usage"]:
		usage = Table(title="Operation Usage")
		usage.add_column("Operation", style="cyan")
		usage.add_column("Checks", justify="right")
		for kind, count in summary["operation_usage"].items():
			usage.add_row(kind, str(count))
		console.print(usage)

	if summary["recent_denials"]:
		denials = Table(title="Recent Denials")
		denials.add_column("Time")
		denials.add_column("Operation", style="cyan")
		denials.add_column("Reason")
		for d in summary["recent_denials"]:
			denials.add_row(d["timestamp"][:19], d["operation"], truncate(d["reason"]))
		console.print(denials)
