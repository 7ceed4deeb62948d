"""Presentation layer - human-friendly formatting."""

from .human_formatter import format_plan, format_report, format_state_entry, format_state_list

__all__ = ["format_plan", "format_report", "format_state_entry", "format_state_list"]
