"""Human-friendly rendering of plans, apply reports and the dependency graph."""

import json
import os
from typing import Any, List, Optional
from ..contracts.apply_report import ApplyReport, ApplyResult
from ..contracts.plan import ActionType, Diagnostic, Plan, ReplaceOrder, ResourceChange
from ..graph.dependency_graph import DependencyGraph
from ..ingest.models import NodeStatus


def _use_ascii(ascii_mode: Optional[bool] = None) -> bool:
    """Resolve whether to use ASCII output (checked at format time)."""
    if ascii_mode is not None:
        return bool(ascii_mode)
    return os.environ.get("CONVERGE_ASCII", "").lower() in ("1", "true", "yes")


def _symbol(change: ResourceChange) -> str:
    if change.action == ActionType.REPLACE:
        return "+/-" if change.replace_order == ReplaceOrder.CREATE_BEFORE_DESTROY else "-/+"
    return {
        ActionType.CREATE: "+",
        ActionType.UPDATE: "~",
        ActionType.DELETE: "-",
        ActionType.NO_OP: " ",
    }[change.action]


def _fmt(value: Any) -> str:
    if value == "(known after apply)":
        return value
    return json.dumps(value, sort_keys=True, default=str)


def _section(title: str, width: int = 65, ascii_mode: bool = False) -> List[str]:
    h = ("-" if ascii_mode else "─") * width
    return [h, title, h]


def format_diagnostics(diagnostics: List[Diagnostic]) -> List[str]:
    lines = []
    for diagnostic in diagnostics:
        where = f" {diagnostic.address}" if diagnostic.address else ""
        if diagnostic.attribute_path:
            where += f".{diagnostic.attribute_path}"
        lines.append(f"  [{diagnostic.kind}]{where}: {diagnostic.message}")
        if diagnostic.referenced_by:
            lines.append(f"      referenced by: {', '.join(diagnostic.referenced_by)}")
    return lines


def format_plan(plan: Plan, show_unchanged: bool = False, ascii_mode: Optional[bool] = None) -> str:
    """
    Render a plan the way a reviewer reads it before approving an apply.

    Symbols: ``+`` create, ``~`` update in place, ``-/+`` destroy then create,
    ``+/-`` create then destroy, ``-`` delete.
    """
    ascii_mode = _use_ascii(ascii_mode)
    lines = _section(f"Converge plan (state serial {plan.state_serial})", ascii_mode=ascii_mode)
    lines.append("")

    if not plan.valid:
        lines.append("Validation failed; nothing will be changed:")
        lines.extend(format_diagnostics(plan.diagnostics))
        return "\n".join(lines)

    if plan.is_empty():
        lines.append("No changes. Infrastructure matches the declarations.")
        return "\n".join(lines)

    for change in plan.changes:
        if change.action == ActionType.NO_OP and not show_unchanged:
            continue
        header = f"  {_symbol(change)} {change.address}"
        if change.deposed_id:
            header += f" (deposed {change.deposed_id})"
        elif change.replace_order == ReplaceOrder.CREATE_BEFORE_DESTROY:
            header += " (create before destroy)"
        lines.append(header)

        for attribute in change.attribute_changes:
            if change.action == ActionType.CREATE:
                lines.append(f"      {attribute.name}: {_fmt(attribute.after)}")
            elif change.action == ActionType.DELETE:
                lines.append(f"      {attribute.name}: {_fmt(attribute.before)}")
            else:
                note = " (forces replacement)" if attribute.requires_replacement else ""
                lines.append(f"      {attribute.name}: {_fmt(attribute.before)} -> {_fmt(attribute.after)}{note}")

    summary = plan.summary()
    lines.append("")
    lines.append(
        f"Plan: {summary['CREATE']} to create, {summary['UPDATE']} to update, "
        f"{summary['REPLACE']} to replace, {summary['DELETE']} to delete, "
        f"{summary['NO_OP']} unchanged."
    )
    return "\n".join(lines)


def format_report(report: ApplyReport, ascii_mode: Optional[bool] = None) -> str:
    """Render an apply report: per-node outcome, then failures with their errors."""
    ascii_mode = _use_ascii(ascii_mode)
    lines = _section(f"Apply result: {report.result.value}", ascii_mode=ascii_mode)
    lines.append("")

    if report.result == ApplyResult.FAILED_VALIDATION:
        lines.append("Plan failed validation; nothing was applied:")
        lines.extend(format_diagnostics(report.diagnostics))
        return "\n".join(lines)

    marks = {
        NodeStatus.APPLIED: "ok",
        NodeStatus.NO_OP: "--",
        NodeStatus.FAILED: "FAIL",
        NodeStatus.SKIPPED: "skip",
        NodeStatus.CANCELLED: "cancel",
    }
    for address in sorted(report.nodes):
        status = report.nodes[address]
        if status == NodeStatus.NO_OP:
            continue
        lines.append(f"  [{marks.get(status, status.value)}] {address}")

    failures = [a for a in report.actions if a.status == NodeStatus.FAILED]
    if failures:
        lines.append("")
        lines.append("Failures:")
        for failure in failures:
            lines.append(f"  {failure.key} (after {failure.attempts} attempts): {failure.error}")

    counts = ", ".join(f"{count} {name.lower()}" for name, count in report.summary().items() if count)
    lines.append("")
    lines.append(f"Nodes: {counts or 'none'}")
    return "\n".join(lines)


def format_graph(graph: DependencyGraph) -> str:
    """Application order with each node's direct dependencies."""
    lines = []
    for position, address in enumerate(graph.apply_order(), start=1):
        deps = sorted(graph.dependencies(address))
        suffix = f"  <- {', '.join(deps)}" if deps else ""
        lines.append(f"{position:>3}. {address}{suffix}")
    return "\n".join(lines)
