"""Persisted resource lifecycle records.

Each status has its own record shape:

    creating -> created
    created <-> updating <-> updated
    (created|updated) -> deleting -> (removed)
    (created|updated) -> replacing -> replaced -> created

``created``/``updated``/``replaced`` always carry both ``props`` and ``attr``;
``creating`` carries ``props`` but never ``attr``.
"""

from __future__ import annotations

import dataclasses
import json
import secrets
from collections.abc import Mapping
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_serializer

from graphform.output.expr import Expr
from graphform.resources import Resource

if TYPE_CHECKING:
    from graphform.resources.binding import Binding

Props = dict[str, Any]
Attr = dict[str, Any]

STABLE_STATUSES: frozenset[str] = frozenset({"created", "updated", "replaced"})


def new_instance_id() -> str:
    """Random token (16 bytes, hex) used to seed physical names; changes only on replace."""
    return secrets.token_hex(16)


def canonical_json(obj: Any) -> str:
    # Stable encoding for comparisons. `default=str` keeps it robust for
    # datetimes/paths/etc while staying deterministic enough for our use.
    return json.dumps(to_jsonable(obj), sort_keys=True, separators=(",", ":"), default=str)


def to_jsonable(value: Any) -> Any:
    """Convert a props/attr value into JSON-friendly data.

    Resources embedded in data are stored as ``{id, type, props, attr}`` only.
    """
    if isinstance(value, Resource):
        return {
            "id": value.id,
            "type": value.type,
            "props": to_jsonable(value.props),
            "attr": to_jsonable(value.attr),
        }
    if isinstance(value, Expr):
        return repr(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, set | frozenset):
        items = [to_jsonable(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True, default=str))
    if isinstance(value, list | tuple):
        return [to_jsonable(v) for v in value]
    return value


class _Record(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @field_serializer("props", "attr", check_fields=False)
    def _serialize_data(self, value: Any) -> Any:
        return to_jsonable(value)


class BindingRecord(_Record):
    """A capability binding as attached to a resource at its last apply."""

    sid: str
    action: str
    resource_id: str
    props: Props = Field(default_factory=dict)
    attr: Any = None

    @classmethod
    def from_binding(cls, binding: Binding, attr: Any = None) -> BindingRecord:
        return cls(
            sid=binding.sid,
            action=binding.capability.action,
            resource_id=binding.resource.id,
            props=dict(binding.props),
            attr=attr,
        )


class _BaseState(_Record):
    resource_type: str
    # Stable across creates, updates, deletes and replaces.
    logical_id: str
    instance_id: str = Field(default_factory=new_instance_id)
    provider_version: int = 0
    # Logical ids of resources that depend on this one.
    downstream: list[str] = Field(default_factory=list)
    bindings: list[BindingRecord] = Field(default_factory=list)


class AppliedSnapshot(_Record):
    """Props and attr that were last applied successfully."""

    props: Props
    attr: Attr


class CreatingState(_BaseState):
    status: Literal["creating"] = "creating"
    props: Props
    attr: None = None


class CreatedState(_BaseState):
    status: Literal["created"] = "created"
    props: Props
    attr: Attr


class UpdatingState(_BaseState):
    status: Literal["updating"] = "updating"
    props: Props
    old: AppliedSnapshot

    @property
    def attr(self) -> Attr:
        return self.old.attr


class UpdatedState(_BaseState):
    status: Literal["updated"] = "updated"
    props: Props
    attr: Attr


class DeletingState(_BaseState):
    status: Literal["deleting"] = "deleting"
    props: Props | None = None
    attr: Attr | None = None


PriorState = Annotated[
    CreatingState | CreatedState | UpdatingState | UpdatedState | DeletingState,
    Field(discriminator="status"),
]


class ReplacingState(_BaseState):
    status: Literal["replacing"] = "replacing"
    # Desired props of the replacement.
    props: Props
    # The record of the resource being replaced.
    old: PriorState
    delete_first: bool = False
    # The replacement may already exist; its attrs are unknown until read.
    attr: None = None


class ReplacedState(_BaseState):
    status: Literal["replaced"] = "replaced"
    props: Props
    # Output of the replacement.
    attr: Attr
    old: PriorState
    delete_first: bool = False


ResourceState = Annotated[
    CreatingState
    | CreatedState
    | UpdatingState
    | UpdatedState
    | DeletingState
    | ReplacingState
    | ReplacedState,
    Field(discriminator="status"),
]

ResourceStateAdapter: TypeAdapter[ResourceState] = TypeAdapter(ResourceState)


def dump_state(record: _BaseState) -> str:
    return json.dumps(record.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"


def load_state(payload: str | bytes) -> ResourceState:
    return ResourceStateAdapter.validate_json(payload)


def is_stable(record: _BaseState) -> bool:
    return record.status in STABLE_STATUSES  # type: ignore[attr-defined]


def stable_props(record: _BaseState) -> Props | None:
    """Props that were last applied successfully, if any."""
    match record:
        case CreatedState() | UpdatedState() | ReplacedState():
            return record.props
        case UpdatingState(old=old):
            return old.props
        case ReplacingState(old=old):
            return stable_props(old)
        case DeletingState(props=props):
            return props
        case _:
            return None
