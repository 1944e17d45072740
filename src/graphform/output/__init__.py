"""Lazy expressions over resource outputs: nodes, dependency extraction, evaluation."""

from graphform.output.evaluate import EvalContext, evaluate, project
from graphform.output.expr import (
    All,
    Apply,
    CrossStackRef,
    Expr,
    Literal,
    Prop,
    ResourceRef,
    SideEffect,
    all_,
    is_expr,
    literal,
    ref,
)
from graphform.output.upstream import has_outputs, upstream, upstream_of

__all__ = [
    "All",
    "Apply",
    "CrossStackRef",
    "EvalContext",
    "Expr",
    "Literal",
    "Prop",
    "ResourceRef",
    "SideEffect",
    "all_",
    "evaluate",
    "has_outputs",
    "is_expr",
    "literal",
    "project",
    "ref",
    "upstream",
    "upstream_of",
]
