"""Dependency extraction: which resources does a value depend on?"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from graphform.output.expr import (
    All,
    Apply,
    CrossStackRef,
    Expr,
    Literal,
    Prop,
    ResourceRef,
    SideEffect,
)

if TYPE_CHECKING:
    from graphform.resources.base import Resource


def upstream(expr: Expr) -> dict[str, Resource]:
    """Return the resources an expression node depends on, keyed by id."""
    match expr:
        case ResourceRef(source=source):
            return {source.id: source}
        case Prop(parent=parent) | Apply(parent=parent) | SideEffect(parent=parent):
            return upstream(parent)
        case All(children=children):
            found: dict[str, Resource] = {}
            for child in children:
                found.update(upstream(child))
            return found
        case Literal() | CrossStackRef():
            # Cross-stack values come from the state store, not the graph.
            return {}
        case _:
            raise TypeError(f"Unknown expression node: {type(expr).__name__}")


def upstream_of(value: Any) -> dict[str, Resource]:
    """Return every resource referenced anywhere inside ``value``.

    Walks expressions, resources embedded directly in data, and plain
    containers (mappings, lists, tuples, sets, dataclass instances).
    """
    # Local import: resources.base builds ResourceRef nodes from this package.
    from graphform.resources.base import Resource

    if isinstance(value, Expr):
        return upstream(value)
    if isinstance(value, Resource):
        return {value.id: value}

    found: dict[str, Resource] = {}
    if isinstance(value, Mapping):
        members: Any = value.values()
    elif isinstance(value, list | tuple | set | frozenset):
        members = value
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        members = (getattr(value, f.name) for f in dataclasses.fields(value))
    else:
        return found
    for member in members:
        found.update(upstream_of(member))
    return found


def has_outputs(value: Any) -> bool:
    """Whether ``value`` still depends on some resource's output."""
    return bool(upstream_of(value))
