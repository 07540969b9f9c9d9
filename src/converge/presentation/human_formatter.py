"""Human-friendly output formatter - renders plans, run reports and state as text."""

import json
import os
from typing import Any, List, Mapping, Optional
from ..execution.models import OutcomeStatus, RunReport
from ..graph.values import UNKNOWN
from ..ingest.models import ResourceAddress
from ..planning.models import Change, ChangeKind, Plan
from ..providers.base import ReplaceMode
from ..state.models import StateRecord

WIDTH = 65


def _use_ascii(ascii_mode: Optional[bool] = None) -> bool:
    """Resolve whether to use ASCII output (checked at format time)."""
    if ascii_mode is not None:
        return bool(ascii_mode)
    return os.environ.get("CONVERGE_ASCII", "").lower() in ("1", "true", "yes")


def _box(title: str, width: int = WIDTH, ascii_mode: bool = False) -> List[str]:
    """Return box-drawing header lines."""
    b = {"tl": "+", "tr": "+", "h": "-", "v": "|"} if ascii_mode else {"tl": "┌", "tr": "┐", "h": "─", "v": "│"}
    h = b["h"] * (width - 2)
    return [
        b["tl"] + h + b["tr"],
        f"{b['v']} {title:<{width - 4}} {b['v']}",
        ("+" if ascii_mode else "└") + h + ("+" if ascii_mode else "┘"),
        "",
    ]


def _section(title: str, width: int = WIDTH) -> List[str]:
    """Return section divider."""
    h = "-" * width
    return [h, title.center(width), h]


def _symbol(change: Change) -> str:
    if change.kind == ChangeKind.CREATE:
        return "+"
    if change.kind == ChangeKind.UPDATE:
        return "~"
    if change.kind == ChangeKind.DELETE:
        return "-"
    if change.kind == ChangeKind.REPLACE:
        return "+/-" if change.replace_mode == ReplaceMode.CREATE_THEN_DELETE else "-/+"
    return " "


def _describe(change: Change) -> str:
    return {
        ChangeKind.CREATE: "will be created",
        ChangeKind.UPDATE: "will be updated in-place",
        ChangeKind.REPLACE: "must be replaced",
        ChangeKind.DELETE: "will be destroyed",
        ChangeKind.NO_OP: "unchanged",
    }[change.kind]


def _render(value: Any) -> str:
    if value is UNKNOWN:
        return "(known after apply)"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (dict, list, str)):
        return json.dumps(value, default=lambda _: "(known after apply)", sort_keys=True)
    return repr(value)


def _attribute_lines(change: Change, arrow: str) -> List[str]:
    old = change.old_attributes or {}
    new = change.new_attributes or {}
    lines = []
    if change.kind == ChangeKind.CREATE:
        for key in sorted(new):
            lines.append(f"      + {key} = {_render(new[key])}")
    elif change.kind == ChangeKind.DELETE:
        for key in sorted(old):
            lines.append(f"      - {key} = {_render(old[key])}")
    else:
        for key in change.changed_keys:
            if key not in new:
                lines.append(f"      - {key} = {_render(old[key])}")
            elif key not in old:
                lines.append(f"      + {key} = {_render(new[key])}")
            else:
                lines.append(f"      ~ {key} = {_render(old[key])} {arrow} {_render(new[key])}")
    return lines


def format_plan(plan: Plan, ascii_mode: Optional[bool] = None, show_unchanged: bool = False) -> str:
    """
    Format a plan for terminal output.

    Args:
        plan: Plan to render
        ascii_mode: Force ASCII symbols (default: CONVERGE_ASCII env var)
        show_unchanged: Also list no-op resources

    Returns:
        Formatted text
    """
    ascii_mode = _use_ascii(ascii_mode)
    arrow = "->" if ascii_mode else "→"
    title = "DESTROY PLAN" if plan.destroy else "EXECUTION PLAN"
    lines = _box(title, ascii_mode=ascii_mode)

    if plan.is_empty():
        lines.append("No changes. Infrastructure matches the declarations.")
        return "\n".join(lines)

    for change in plan.changes:
        if change.kind == ChangeKind.NO_OP and not show_unchanged:
            continue
        lines.append(f"  {_symbol(change):>3} {change.address} {_describe(change)}")
        if change.kind == ChangeKind.REPLACE and change.changed_keys:
            lines.append(f"      (forced by: {', '.join(change.changed_keys)})")
        if change.deposed_provider_ids:
            lines.append(f"      (deposed objects to delete: {', '.join(change.deposed_provider_ids)})")
        lines.extend(_attribute_lines(change, arrow))
        lines.append("")

    lines.extend(_section("STAGES"))
    for index, stage in enumerate(plan.stages(), start=1):
        active = [address for address in stage if plan.get(address).kind != ChangeKind.NO_OP]
        if active:
            lines.append(f"  {index}. {', '.join(str(address) for address in active)}")
    lines.append("")
    lines.append(format_plan_summary(plan))
    return "\n".join(lines)


def format_plan_summary(plan: Plan) -> str:
    summary = plan.summary()
    return (
        f"Plan: {summary['CREATE']} to add, {summary['UPDATE']} to change, "
        f"{summary['REPLACE']} to replace, {summary['DELETE']} to destroy."
    )


def format_report(report: RunReport, ascii_mode: Optional[bool] = None) -> str:
    """Format a run report: one line per resource plus totals."""
    ascii_mode = _use_ascii(ascii_mode)
    marks = {
        OutcomeStatus.APPLIED: "[OK]" if ascii_mode else "✅",
        OutcomeStatus.NO_OP: "[--]" if ascii_mode else "➖",
        OutcomeStatus.FAILED: "[!!]" if ascii_mode else "❌",
        OutcomeStatus.SKIPPED: "[..]" if ascii_mode else "⏭️ ",
    }
    lines = _box("RUN REPORT", ascii_mode=ascii_mode)

    for address in sorted(report.outcomes):
        outcome = report.outcomes[address]
        line = f"  {marks[outcome.status]} {str(address):<40} {outcome.status.value:<8} {outcome.kind.value}"
        if outcome.attempts > 1:
            line += f" ({outcome.attempts} attempts)"
        lines.append(line)
        if outcome.status == OutcomeStatus.FAILED and outcome.reason:
            lines.append(f"       reason: {outcome.reason}")
        if outcome.status == OutcomeStatus.SKIPPED:
            if outcome.blocked_by:
                lines.append(f"       blocked by: {', '.join(str(b) for b in outcome.blocked_by)}")
            elif outcome.reason:
                lines.append(f"       reason: {outcome.reason}")

    counts = report.counts()
    lines.append("")
    if report.cancelled:
        lines.append("Run was cancelled before all changes were dispatched.")
    lines.append(
        f"Apply {'complete' if report.success else 'finished with errors'}! "
        f"{counts['APPLIED']} applied, {counts['NO_OP']} unchanged, "
        f"{counts['FAILED']} failed, {counts['SKIPPED']} skipped."
    )
    return "\n".join(lines)


def format_state(records: Mapping[ResourceAddress, StateRecord]) -> str:
    """List recorded resources, one per line."""
    if not records:
        return "State is empty."
    return "\n".join(
        f"{str(address):<45} {records[address].provider_id}" for address in sorted(records)
    )


def format_record(record: StateRecord) -> str:
    """Show one state record in detail."""
    lines = [
        f"# {record.address}",
        f"provider_id  = {record.provider_id}",
        f"updated_at   = {record.updated_at.isoformat()}",
        f"dependencies = {', '.join(record.dependencies) or '(none)'}",
    ]
    if record.deposed_provider_ids:
        lines.append(f"deposed      = {', '.join(record.deposed_provider_ids)}")
    lines += [
        "",
        "attributes:",
    ]
    for key in sorted(record.attributes):
        lines.append(f"  {key} = {_render(record.attributes[key])}")
    return "\n".join(lines)
