"""Plan and apply output rendering (Terraform-style)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from graphform.core.state import to_jsonable
from graphform.engine.types import Action, Attach, Create, Delete, Detach, Replace
from graphform.output.upstream import has_outputs
from graphform.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Callable

    from graphform.core.state import Attr
    from graphform.engine.types import Plan, PlanNode


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    progress_verb: str
    done_verb: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+", "Creating", "Creation complete"),
    "update": _ActionStyle("yellow", "~", "Updating", "Update complete"),
    "replace": _ActionStyle("magenta", "-/+", "Replacing", "Replacement complete"),
    "delete": _ActionStyle("red", "-", "Destroying", "Destroy complete"),
    "noop": _ActionStyle("bright_black", " ", "Reading", "Read complete"),
}

_ACTION_DESC: dict[str, str] = {
    "create": "will be created",
    "update": "will be updated in-place",
    "replace": "must be replaced",
    "delete": "will be destroyed",
    "noop": "is up-to-date",
}

_UNKNOWN = "(known after apply)"


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _align_values(items: dict[str, str]) -> list[tuple[str, str]]:
    """Right-pad keys so ``=`` signs align."""
    if not items:
        return []
    max_key = max(len(k) for k in items)
    return [(k.ljust(max_key), v) for k, v in items.items()]


def _format_value(value: Any) -> str:
    """Format a value for display in a plan diff block."""
    if isinstance(value, Resource):
        if value.attr is None:
            return _UNKNOWN
        return f"{value.type}.{value.id}"
    if has_outputs(value):
        return _UNKNOWN
    if isinstance(value, str):
        return f'"{value}"'
    if value is None:
        return "null"
    if isinstance(value, dict | list | tuple):
        return json.dumps(to_jsonable(value), sort_keys=True)
    return str(value)


def _changed_keys(news: dict[str, Any], olds: dict[str, Any] | None) -> dict[str, str]:
    olds = olds or {}
    out: dict[str, str] = {}
    for key in sorted(set(news) | set(olds)):
        if key == "bindings":
            continue
        new = news.get(key)
        old = olds.get(key)
        if key in news and key in olds and _same(new, old):
            continue
        out[key] = f"{_format_value(old)} -> {_format_value(new)}"
    return out


def _same(new: Any, old: Any) -> bool:
    if has_outputs(new) or isinstance(new, Resource):
        return False
    return to_jsonable(new) == to_jsonable(old)


# ---------------------------------------------------------------------------
# Plan rendering
# ---------------------------------------------------------------------------


def _node_attrs(node: PlanNode) -> dict[str, str]:
    """Extract displayable ``key → formatted value`` pairs from a plan node."""
    match node:
        case Create(news=news):
            return {k: _format_value(v) for k, v in sorted(news.items())}
        case Replace(news=news, olds=olds):
            return _changed_keys(news, olds)
        case Delete():
            return {}
        case _:
            return _changed_keys(node.news, node.olds)  # type: ignore[attr-defined]


def _binding_lines(node: PlanNode) -> list[tuple[str, str]]:
    lines: list[tuple[str, str]] = []
    for bind in node.bindings:
        match bind:
            case Attach(olds=None):
                lines.append(("+", f"bind {bind.sid}"))
            case Attach():
                lines.append(("~", f"bind {bind.sid}"))
            case Detach():
                lines.append(("-", f"bind {bind.sid}"))
    return lines


def format_node(node: PlanNode, *, color: bool = True) -> str:
    """Render a single plan node as a Terraform-style block."""
    style = styler(color)
    action_val = node.action.value
    sc = {"fg": _ACTION_STYLES[action_val].color}
    symbol = _ACTION_STYLES[action_val].symbol

    desc = _ACTION_DESC[action_val]
    if isinstance(node, Replace) and node.delete_first:
        desc += " (delete before create)"
    lines = [
        style(f"  # {node.resource_type}.{node.id} {desc}", bold=True, **sc),
        style(f'  {symbol} resource "{node.resource_type}" "{node.id}" {{', **sc),
        *[
            style(f"      {symbol} {k} = {v}", **sc)
            for k, v in _align_values(_node_attrs(node))
        ],
        *[style(f"      {sym} {text}", **sc) for sym, text in _binding_lines(node)],
        style("    }", **sc),
    ]
    return "\n".join(lines)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the full plan output with per-node diff blocks."""
    blocks = [
        format_node(node, color=color)
        for _, node in sorted(plan.nodes.items())
        if node.action is not Action.NOOP
    ]
    if not blocks:
        return "No changes. Resources are up-to-date."
    return "\n\n".join(blocks)


def format_refresh(changed: dict[str, Attr | None], *, color: bool = True) -> str:
    """Render the outputs that drifted since the last apply."""
    style = styler(color)
    if not changed:
        return "No drift detected."
    lines = []
    for rid, attr in sorted(changed.items()):
        if attr is None:
            lines.append(style(f"  - {rid} no longer exists", fg="red"))
        else:
            lines.append(style(f"  ~ {rid} = {_format_value(attr)}", fg="yellow"))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

_PLAN_VERBS = ("to add", "to change", "to replace", "to destroy")
_APPLY_VERBS = ("added", "changed", "replaced", "destroyed")
_SUMMARY_COLORS = ("green", "yellow", "magenta", "red")


def _format_summary(summary: dict[str, int], verbs: tuple[str, ...], *, color: bool) -> str:
    """Build the ``N verb, N verb, ...`` part of a summary line."""
    style = styler(color)
    counts = (
        summary.get("create", 0),
        summary.get("update", 0),
        summary.get("replace", 0),
        summary.get("delete", 0),
    )
    parts = [
        style(f"{n} {verb}", fg=fg) if n and color else f"{n} {verb}"
        for n, verb, fg in zip(counts, verbs, _SUMMARY_COLORS, strict=True)
    ]
    return ", ".join(parts)


def format_plan_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to replace, 0 to destroy.``"""
    return f"Plan: {_format_summary(summary, _PLAN_VERBS, color=color)}."


def format_apply_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Apply complete! Resources: 2 added, 0 changed, 0 replaced, 0 destroyed.``"""
    style = styler(color)
    header = style("Apply complete!", fg="green", bold=True)
    return f"{header} Resources: {_format_summary(summary, _APPLY_VERBS, color=color)}."
