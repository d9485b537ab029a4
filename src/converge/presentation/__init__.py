"""Presentation layer: human-readable plans, reports and graphs."""

from .plan_formatter import format_plan, format_report, format_graph

__all__ = ["format_plan", "format_report", "format_graph"]
