"""Base resource class."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from graphform.output.expr import ResourceRef

if TYPE_CHECKING:
    from graphform.resources.binding import Binding


class Resource(BaseModel):
    """Base class for all declared resources.

    Resources are pure data - they define the desired state. Providers know
    how to CRUD them. ``props`` may embed expressions anywhere (e.g.
    ``{"queue_url": queue.out.url}``); ``attr`` is attached by the engine once
    the resource has been applied.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    resource_type: ClassVar[str]

    id: str = Field(pattern=r"^[a-zA-Z0-9_.-]+$")
    props: dict[str, Any] = Field(default_factory=dict)
    bindings: list[Binding] = Field(default_factory=list)
    attr: dict[str, Any] | None = None

    @property
    def type(self) -> str:
        return self.resource_type

    @property
    def out(self) -> ResourceRef:
        """Expression for this resource's eventual output attributes."""
        return ResourceRef(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"
