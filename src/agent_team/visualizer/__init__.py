"""Visualizer package - Rich terminal views for the team, its decisions and reports."""

from .reports import render_cost_summary, render_hook_metrics, render_report
from .team import render_decision, render_roster, render_security_summary

__all__ = [
	"render_cost_summary",
	"render_decision",
	"render_hook_metrics",
	"render_report",
	"render_roster",
	"render_security_summary",
]
