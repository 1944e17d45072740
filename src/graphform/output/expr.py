"""Expression nodes describing values that exist once resources finish applying.

An expression is a small acyclic tree:

- ``Literal``      : a plain value
- ``ResourceRef``  : the full output (``attr``) of a resource, with optional
                      static overrides for fields known without waiting
- ``Prop``         : field projection of another expression
- ``Apply``        : pure transform of another expression
- ``SideEffect``   : effectful transform that may consult the evaluation context
- ``All``          : fan-in of several expressions into a list
- ``CrossStackRef``: output of a resource deployed in another stack/stage

Any attribute access or item access on a node that is not one of the node's own
fields or methods builds a new ``Prop`` node, so ``bucket.out.arn`` or
``queue.out["url"]`` can be written as if the value already existed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from graphform.output.evaluate import EvalContext
    from graphform.resources.base import Resource


class Expr:
    """Base class of all expression nodes. Nodes compare and hash by identity."""

    def prop(self, key: str | int) -> Any:
        """Project a field (or index) of this expression's value."""
        return Prop(self, key)

    def apply(self, fn: Callable[[Any], Any]) -> Apply:
        """Transform the value with a pure function."""
        return Apply(self, fn)

    def effect(self, fn: Callable[[Any, EvalContext], Any | Awaitable[Any]]) -> SideEffect:
        """Transform the value with a function that may perform I/O.

        ``fn`` receives the value and the evaluation context. It must not fail.
        """
        return SideEffect(self, fn)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self.prop(name)

    def __getitem__(self, key: str | int) -> Any:
        return self.prop(key)

    def __iter__(self) -> Iterator[Any]:
        raise TypeError(f"{type(self).__name__} is not iterable; its value does not exist yet")


@dataclass(frozen=True, eq=False)
class Literal(Expr):
    value: Any


@dataclass(frozen=True, eq=False)
class ResourceRef(Expr):
    source: Resource = field(repr=False)
    stables: dict[str, Any] | None = None

    def prop(self, key: str | int) -> Any:
        # Stable fields never change across an update, so dependents can use
        # the known value directly.
        if self.stables and key in self.stables:
            return self.stables[key]
        return Prop(self, key)

    def __repr__(self) -> str:
        return f"ResourceRef({self.source.id!r})"


@dataclass(frozen=True, eq=False)
class Prop(Expr):
    parent: Expr
    key: str | int


@dataclass(frozen=True, eq=False)
class Apply(Expr):
    parent: Expr
    fn: Callable[[Any], Any] = field(repr=False)


@dataclass(frozen=True, eq=False)
class SideEffect(Expr):
    parent: Expr
    fn: Callable[[Any, EvalContext], Any] = field(repr=False)


@dataclass(frozen=True, eq=False)
class All(Expr):
    children: tuple[Expr, ...]


@dataclass(frozen=True, eq=False)
class CrossStackRef(Expr):
    resource_id: str
    stack: str | None = None
    stage: str | None = None


def is_expr(value: Any) -> bool:
    return isinstance(value, Expr)


def literal(value: Any) -> Literal:
    return Literal(value)


def all_(*exprs: Expr) -> All:
    """Combine several expressions into one whose value is the list of their values."""
    return All(tuple(exprs))


def ref(resource_id: str, *, stack: str | None = None, stage: str | None = None) -> CrossStackRef:
    """Reference the output of a resource deployed by another stack or stage.

    ``stack`` and ``stage`` default to the current stack and stage.
    """
    return CrossStackRef(resource_id, stack=stack, stage=stage)
