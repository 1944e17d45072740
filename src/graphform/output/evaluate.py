"""One-shot evaluation of expressions against resolved upstream outputs."""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from graphform.errors import InvalidReferenceError, MissingSourceError
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
    from graphform.core.store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class EvalContext:
    """Ambient context passed explicitly into evaluation.

    ``services`` is a free-form mapping that ``SideEffect`` functions may
    consult. ``store`` resolves ``CrossStackRef`` nodes; ``stack``/``stage``
    are their defaults.
    """

    stack: str
    stage: str
    store: StateStore | None = None
    services: Mapping[str, Any] = field(default_factory=dict)
    # SideEffect node -> running/finished task, so each effect runs once per context.
    _effects: dict[SideEffect, asyncio.Task[Any]] = field(
        default_factory=dict, init=False, repr=False
    )

    def run_effect(self, node: SideEffect, value: Any) -> asyncio.Task[Any]:
        task = self._effects.get(node)
        if task is None:
            task = asyncio.ensure_future(_call_effect(node, value, self))
            self._effects[node] = task
        return task


async def _call_effect(node: SideEffect, value: Any, ctx: EvalContext) -> Any:
    result = node.fn(value, ctx)
    if inspect.isawaitable(result):
        result = await result
    return result


def project(value: Any, key: str | int) -> Any:
    """Project ``key`` out of an already-resolved plain value (``None``-safe)."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        return value.get(key)
    if isinstance(key, int) and isinstance(value, list | tuple):
        return value[key] if -len(value) <= key < len(value) else None
    return getattr(value, str(key), None)


async def evaluate(
    value: Any,
    upstream: Mapping[str, Any],
    ctx: EvalContext | None = None,
) -> Any:
    """Evaluate ``value`` to a concrete value.

    ``upstream`` maps resource ids to their resolved outputs. Non-expression
    leaves pass through unchanged; containers are rebuilt member-wise.

    Raises:
        MissingSourceError: A ``ResourceRef`` names a source absent from ``upstream``.
        InvalidReferenceError: A ``CrossStackRef`` target is not in the state store.
    """
    match value:
        case Literal(value=literal_value):
            return literal_value
        case ResourceRef(source=source):
            if source.id not in upstream:
                raise MissingSourceError(source.id)
            return upstream[source.id]
        case Prop(parent=parent, key=key):
            return project(await evaluate(parent, upstream, ctx), key)
        case Apply(parent=parent, fn=fn):
            return fn(await evaluate(parent, upstream, ctx))
        case SideEffect(parent=parent):
            resolved = await evaluate(parent, upstream, ctx)
            if ctx is None:
                ctx = EvalContext(stack="", stage="")
            return await ctx.run_effect(value, resolved)
        case All(children=children):
            return list(await asyncio.gather(*(evaluate(c, upstream, ctx) for c in children)))
        case CrossStackRef():
            return await _resolve_cross_stack(value, ctx)
        case Expr():
            raise TypeError(f"Unknown expression node: {type(value).__name__}")

    if isinstance(value, Mapping):
        keys = list(value.keys())
        results = await asyncio.gather(*(evaluate(value[k], upstream, ctx) for k in keys))
        return dict(zip(keys, results, strict=True))
    if isinstance(value, list | tuple):
        results = await asyncio.gather(*(evaluate(v, upstream, ctx) for v in value))
        return list(results) if isinstance(value, list) else tuple(results)
    if isinstance(value, set | frozenset):
        results = await asyncio.gather(*(evaluate(v, upstream, ctx) for v in value))
        return type(value)(results)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        changes = {
            f.name: await evaluate(getattr(value, f.name), upstream, ctx)
            for f in dataclasses.fields(value)
            if f.init
        }
        return dataclasses.replace(value, **changes)
    return value


async def _resolve_cross_stack(node: CrossStackRef, ctx: EvalContext | None) -> Any:
    if ctx is None or ctx.store is None:
        raise InvalidReferenceError(node.stack or "", node.stage or "", node.resource_id)
    stack = node.stack or ctx.stack
    stage = node.stage or ctx.stage
    logger.debug("Resolving cross-stack reference %s/%s/%s", stack, stage, node.resource_id)
    record = ctx.store.get(stack, stage, node.resource_id)
    if record is None or record.attr is None:
        raise InvalidReferenceError(stack, stage, node.resource_id)
    return record.attr
