"""Provider hook contract.

Each resource type is backed by a ``ResourceProvider`` that knows how to read,
diff, create, update and delete it against live infrastructure. Hooks must be
safe to retry; transient faults should be raised as ``RetryableError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Literal, TypeVar

from graphform.core.naming import physical_name
from graphform.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from graphform.core.state import Attr, Props
    from graphform.engine.types import BindNode

R = TypeVar("R", bound=Resource)

DiffAction = Literal["noop", "update", "replace"]


@dataclass(frozen=True)
class ProviderContext:
    """Context passed to every provider hook."""

    stack: str
    stage: str
    resource_id: str
    instance_id: str
    services: Mapping[str, Any] = field(default_factory=dict)

    def physical_name(self, **kwargs: Any) -> str:
        """Physical name for this resource instance (see ``graphform.core.naming``)."""
        return physical_name(
            stack=self.stack,
            stage=self.stage,
            resource_id=self.resource_id,
            instance_id=self.instance_id,
            **kwargs,
        )


@dataclass(frozen=True)
class ReadRequest:
    id: str
    olds: Props | None
    output: Attr | None


@dataclass(frozen=True)
class DiffRequest:
    id: str
    olds: Props
    # May still contain unresolved expressions for outputs not yet known.
    news: Props
    output: Attr | None
    bindings: Sequence[BindNode] = ()


@dataclass(frozen=True)
class CreateRequest:
    id: str
    news: Props
    bindings: Sequence[BindNode] = ()


@dataclass(frozen=True)
class UpdateRequest:
    id: str
    news: Props
    olds: Props
    output: Attr
    bindings: Sequence[BindNode] = ()


@dataclass(frozen=True)
class DeleteRequest:
    id: str
    olds: Props | None
    output: Attr | None
    bindings: Sequence[BindNode] = ()


@dataclass(frozen=True)
class Diff:
    """Result of a provider's ``diff`` hook."""

    action: DiffAction
    # Output fields known not to change across this update.
    stables: tuple[str, ...] = ()
    # Replace by deleting the old resource before creating the new one.
    delete_first: bool = False


class ResourceProvider(Generic[R]):
    """Base class for resource providers.

    Subclass and override the hooks. ``diff`` is optional: returning ``None``
    makes the planner fall back to comparing old and new props. ``read``
    defaults to trusting the stored output.
    """

    # Output fields that never change value across an update.
    stables: ClassVar[tuple[str, ...]] = ()
    version: ClassVar[int] = 0

    async def read(self, ctx: ProviderContext, request: ReadRequest) -> Attr | None:
        """Read the live resource. Return None if it no longer exists."""
        _ = ctx
        return request.output

    async def diff(self, ctx: ProviderContext, request: DiffRequest) -> Diff | None:
        """Decide between noop, update and replace. Must not mutate anything."""
        _ = ctx, request
        return None

    async def create(self, ctx: ProviderContext, request: CreateRequest) -> Attr:
        """Create the resource. Return its output attributes."""
        raise NotImplementedError

    async def update(self, ctx: ProviderContext, request: UpdateRequest) -> Attr:
        """Update the resource in place. Return its output attributes."""
        raise NotImplementedError

    async def delete(self, ctx: ProviderContext, request: DeleteRequest) -> None:
        """Delete the resource."""
        raise NotImplementedError
