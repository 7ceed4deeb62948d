"""Human-friendly output formatter - converts plans and reports to readable text."""

import json
import os
from typing import Any, Dict, List, Optional
from ..evaluation.values import KNOWN_AFTER_APPLY
from ..execution.models import ActionStatus, ApplyReport
from ..planning.models import Action, AttributeChange, Operation, Plan
from ..state.models import StateDocument


def _use_ascii(ascii_mode: Optional[bool] = None) -> bool:
    """Resolve whether to use ASCII output (checked at format time)."""
    if ascii_mode is not None:
        return bool(ascii_mode)
    return os.environ.get("CONVERGE_ASCII", "").lower() in ("1", "true", "yes")


def _box(title: str, width: int = 65, ascii_mode: bool = False) -> List[str]:
    """Return box-drawing header lines."""
    b = {"tl": "+", "tr": "+", "h": "-", "v": "|"} if ascii_mode else {"tl": "┌", "tr": "┐", "h": "─", "v": "│"}
    h = b["h"] * (width - 2)
    return [
        b["tl"] + h + b["tr"],
        f"{b['v']} {title:<{width - 4}} {b['v']}",
        ("+" if ascii_mode else "└") + h + ("+" if ascii_mode else "┘"),
        "",
    ]


def _section(title: str, width: int = 65) -> List[str]:
    """Return section divider."""
    h = "-" * width
    return [h, title.center(width), h]


def _symbol(action: Action) -> str:
    if action.replace:
        return "-/+" if action.operation == Operation.DELETE else "+/-"
    return {
        Operation.CREATE: "+",
        Operation.UPDATE: "~",
        Operation.DELETE: "-",
        Operation.NO_OP: " ",
    }[action.operation]


def _render_value(value: Any) -> str:
    if isinstance(value, str):
        text = value if "\n" not in value else value.splitlines()[0] + " ..."
        return json.dumps(text)
    return json.dumps(value, default=str)


def _format_change(change: AttributeChange, operation: Operation) -> str:
    after = _render_value(change.after) if change.known else KNOWN_AFTER_APPLY
    note = "  # forces replacement" if change.requires_replacement else ""
    if operation == Operation.CREATE and change.before is None:
        return f"      {change.name} = {after}{note}"
    if operation == Operation.DELETE:
        return f"      {change.name} = {_render_value(change.before)}"
    return f"      {change.name}: {_render_value(change.before)} -> {after}{note}"


def format_plan(plan: Plan, ascii_mode: Optional[bool] = None, show_unchanged: bool = False) -> str:
    """Render a plan: one block per changing action, then a count summary."""
    ascii_mode = _use_ascii(ascii_mode)
    title = "DESTROY PLAN" if plan.destroy else "EXECUTION PLAN"
    lines = _box(title, ascii_mode=ascii_mode)

    changing = [a for a in plan.actions if a.is_change or show_unchanged]
    if not plan.has_changes():
        lines.append("No changes. Actual state matches the configuration.")
    for action in changing:
        header = f"{_symbol(action):>3} {action.address} ({action.operation.value})"
        if action.reason:
            header += f"  # {action.reason}"
        lines.append(header)
        for change in action.diff:
            lines.append(_format_change(change, action.operation))
        lines.append("")

    if plan.targets:
        lines.append(f"Targeted: {', '.join(plan.targets)}")
    counts = plan.counts()
    lines.extend(_section("SUMMARY"))
    lines.append(
        f"Plan: {counts['create']} to create, {counts['update']} to update, "
        f"{counts['delete']} to delete, {counts['no-op']} unchanged."
    )
    return "\n".join(lines)


def format_report(report: ApplyReport, ascii_mode: Optional[bool] = None) -> str:
    """Render an apply report: failures and skips with their causes, then counts."""
    ascii_mode = _use_ascii(ascii_mode)
    ok = "[OK]" if ascii_mode else "✅"
    bad = "[X]" if ascii_mode else "❌"
    skip = "[-]" if ascii_mode else "⏭️ "

    lines = []
    for result in report.results:
        if result.status == ActionStatus.APPLIED:
            lines.append(f"{ok} {result.operation.value} {result.address}")
        elif result.status == ActionStatus.FAILED:
            attempts = f" after {result.attempts} attempts" if result.attempts > 1 else ""
            lines.append(f"{bad} {result.operation.value} {result.address} failed{attempts}: {result.error}")
        elif result.status in (ActionStatus.SKIPPED, ActionStatus.CANCELLED):
            lines.append(f"{skip} {result.operation.value} {result.address} {result.status.value}: {result.error}")

    summary = report.summary()
    lines.append("")
    lines.extend(_section("RESULT"))
    lines.append(
        f"Created: {summary['created']}, updated: {summary['updated']}, destroyed: {summary['destroyed']}, "
        f"skipped: {summary['skipped']}, failed: {summary['failed']}"
        + (f", cancelled: {summary['cancelled']}" if summary["cancelled"] else "")
    )
    if report.outputs:
        lines.append("")
        lines.append("Outputs:")
        for name, value in report.outputs.items():
            lines.append(f"  {name} = {_render_value(value)}")
    return "\n".join(lines)


def format_state_list(document: StateDocument) -> str:
    if not document.resources and not document.deposed:
        return "State is empty."
    lines = list(document.resources)
    for address, objects in document.deposed.items():
        lines.extend(f"{address} (deposed {entry.provider_id})" for entry in objects)
    return "\n".join(lines)


def format_state_entry(document: StateDocument, address: str) -> Optional[str]:
    entry = document.resources.get(address)
    if entry is None:
        return None
    data: Dict[str, Any] = {"address": address, **entry.model_dump()}
    return json.dumps(data, indent=2, default=str)
