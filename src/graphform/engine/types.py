"""Engine types (plan nodes, plan, apply result)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Literal

if TYPE_CHECKING:
    from graphform.core.state import Attr, BindingRecord, Props, ResourceState
    from graphform.engine.provider import ResourceProvider
    from graphform.resources.base import Resource
    from graphform.resources.binding import Binding

Phase = Literal["update", "destroy"]


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    NOOP = "noop"
    DELETE = "delete"


# --- Capability-binding nodes ----------------------------------------------


@dataclass
class Attach:
    """Attach a binding. ``olds`` is set when a binding with the same sid changed."""

    binding: Binding
    olds: BindingRecord | None = None
    action: ClassVar[str] = "attach"

    @property
    def sid(self) -> str:
        return self.binding.sid


@dataclass
class Detach:
    """Detach a binding that is no longer declared."""

    record: BindingRecord
    action: ClassVar[str] = "detach"

    @property
    def sid(self) -> str:
        return self.record.sid


@dataclass
class NoopBind:
    binding: Binding
    record: BindingRecord
    action: ClassVar[str] = "noop"

    @property
    def sid(self) -> str:
        return self.binding.sid


BindNode = Attach | Detach | NoopBind


# --- Resource plan nodes -----------------------------------------------------


@dataclass(kw_only=True)
class PlanNode:
    id: str
    resource_type: str
    provider: ResourceProvider[Any] = field(repr=False)
    bindings: list[BindNode] = field(default_factory=list, repr=False)
    # Ids this node must wait for (upstream resources).
    dependencies: list[str] = field(default_factory=list)
    # Ids that depend on this node.
    downstream: list[str] = field(default_factory=list)
    # Prior persisted record, if any.
    state: ResourceState | None = field(default=None, repr=False)

    action: ClassVar[Action]


@dataclass(kw_only=True)
class Create(PlanNode):
    resource: Resource = field(repr=False)
    news: Props
    # Output recovered from an interrupted create, if the provider still sees it.
    attr: Attr | None = None

    action: ClassVar[Action] = Action.CREATE


@dataclass(kw_only=True)
class Update(PlanNode):
    resource: Resource = field(repr=False)
    news: Props
    olds: Props
    output: Attr

    action: ClassVar[Action] = Action.UPDATE


@dataclass(kw_only=True)
class Replace(PlanNode):
    resource: Resource = field(repr=False)
    news: Props
    olds: Props | None
    output: Attr | None
    delete_first: bool = False

    action: ClassVar[Action] = Action.REPLACE


@dataclass(kw_only=True)
class NoopUpdate(PlanNode):
    resource: Resource = field(repr=False)
    news: Props
    olds: Props
    output: Attr

    action: ClassVar[Action] = Action.NOOP


@dataclass(kw_only=True)
class Delete(PlanNode):
    olds: Props | None
    output: Attr | None

    action: ClassVar[Action] = Action.DELETE


ResourceNode = Create | Update | Replace | NoopUpdate


@dataclass
class Plan:
    stack: str
    stage: str
    phase: Phase
    resources: dict[str, ResourceNode] = field(default_factory=dict)
    deletions: dict[str, Delete] = field(default_factory=dict)

    @property
    def nodes(self) -> dict[str, ResourceNode | Delete]:
        merged: dict[str, ResourceNode | Delete] = dict(self.resources)
        merged.update(self.deletions)
        return merged

    def actions(self) -> dict[str, str]:
        """resource id -> action name, in id order."""
        return {rid: node.action.value for rid, node in sorted(self.nodes.items())}

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for node in self.nodes.values():
            counts[node.action.value] += 1
        return counts

    def has_changes(self) -> bool:
        return any(node.action is not Action.NOOP for node in self.nodes.values())


@dataclass
class ApplyResult:
    """Outcome of an apply: what committed, what failed, what never ran."""

    applied: dict[str, Action] = field(default_factory=dict)
    failed: dict[str, BaseException] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    outputs: dict[str, Attr | None] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for action in self.applied.values():
            counts[action.value] += 1
        return counts
