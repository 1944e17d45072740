"""Capability bindings attached to resources.

A binding grants the resource it is attached to a capability (``action``) on
another resource. Bindings are matched across deployments by their stable
identity string (``sid``).
"""

from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from graphform.resources.base import Resource


class Capability(BaseModel):
    """An action that may be performed on a resource."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    action: str
    resource: Resource
    sid: str = ""

    @model_validator(mode="after")
    def _default_sid(self) -> Self:
        if not self.sid:
            self.sid = f"{self.action}:{self.resource.id}"
        return self

    def bind(self, **props: Any) -> Binding:
        return Binding(capability=self, props=props)


class Binding(BaseModel):
    """A capability granted to the resource carrying this binding."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    capability: Capability
    props: dict[str, Any] = Field(default_factory=dict)

    @property
    def sid(self) -> str:
        return self.capability.sid

    @property
    def resource(self) -> Resource:
        return self.capability.resource


Resource.model_rebuild()
Capability.model_rebuild()
Binding.model_rebuild()
