"""Apply operations.

Apply runs a graph of operations: one per plan node, plus a barrier that keeps
deletions after every create/update/replace and a finalize operation per
replacement that removes the replaced physical resource once dependents point
at the new one. Each operation commits its state transition as soon as the
provider call succeeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from graphform.core.state import (
    AppliedSnapshot,
    BindingRecord,
    CreatedState,
    CreatingState,
    DeletingState,
    ReplacedState,
    ReplacingState,
    UpdatedState,
    UpdatingState,
    new_instance_id,
)
from graphform.engine.provider import (
    CreateRequest,
    DeleteRequest,
    ProviderContext,
    UpdateRequest,
)
from graphform.engine.retry import retry
from graphform.engine.types import Action, Attach, NoopBind
from graphform.output.evaluate import evaluate

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from graphform.core.state import Attr, Props, ResourceState
    from graphform.core.store import StateStore
    from graphform.engine.provider import ResourceProvider
    from graphform.engine.retry import RetryPolicy
    from graphform.engine.types import BindNode, Create, Delete, NoopUpdate, Replace, Update
    from graphform.output.evaluate import EvalContext
    from graphform.resources.base import Resource

logger = logging.getLogger(__name__)


@dataclass
class ApplyContext:
    """Everything operations share during one apply."""

    stack: str
    stage: str
    store: StateStore
    eval_ctx: EvalContext
    retry_policy: RetryPolicy
    services: Mapping[str, Any] = field(default_factory=dict)
    # resource id -> committed output
    outputs: dict[str, Attr | None] = field(default_factory=dict)

    def provider_ctx(self, resource_id: str, instance_id: str) -> ProviderContext:
        return ProviderContext(
            stack=self.stack,
            stage=self.stage,
            resource_id=resource_id,
            instance_id=instance_id,
            services=self.services,
        )

    def commit(self, record: ResourceState) -> ResourceState:
        logger.debug("Commit %s -> %s", record.logical_id, record.status)
        return self.store.set(self.stack, self.stage, record.logical_id, record)

    def remove(self, resource_id: str) -> None:
        logger.debug("Remove %s", resource_id)
        self.store.delete(self.stack, self.stage, resource_id)

    async def call(self, label: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        return await retry(fn, self.retry_policy, label=label)

    async def resolve_props(self, resource: Resource) -> Props:
        """Evaluate a resource's props against the outputs committed so far."""
        return await evaluate(resource.props, self.outputs, self.eval_ctx)

    def attach(self, resource: Resource, attr: Attr | None) -> None:
        resource.attr = attr
        self.outputs[resource.id] = attr


def binding_records(bindings: list[BindNode]) -> list[BindingRecord]:
    """Binding records to persist after a successful create/update."""
    records: list[BindingRecord] = []
    for node in bindings:
        match node:
            case NoopBind(record=record):
                records.append(record)
            case Attach(binding=binding):
                records.append(BindingRecord.from_binding(binding))
            case _:
                # Detached bindings are dropped from the record.
                pass
    return records


class Operation(Protocol):
    key: str
    # Operations that must have succeeded before this one runs.
    deps: list[str]
    # Operations that must have finished (successfully or not) before this one runs.
    after: list[str]
    # Resource id reported in the apply result; None for internal nodes.
    resource_id: str | None
    action: Action | None

    async def run(self, ctx: ApplyContext) -> Attr | None:
        """Execute this operation and return the resource's output, if any."""


@dataclass
class BarrierOperation:
    """A no-op node used to enforce ordering between operation phases."""

    key: str
    deps: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)
    resource_id: str | None = None
    action: Action | None = None

    async def run(self, ctx: ApplyContext) -> Attr | None:
        _ = ctx
        return None


def _provider(node: Any) -> ResourceProvider[Any]:
    return node.provider


@dataclass
class CreateOperation:
    key: str
    node: Create
    deps: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)
    action: Action | None = Action.CREATE

    @property
    def resource_id(self) -> str:
        return self.node.id

    async def run(self, ctx: ApplyContext) -> Attr | None:
        node = self.node
        provider = _provider(node)
        news = await ctx.resolve_props(node.resource)
        instance_id = node.state.instance_id if node.state is not None else new_instance_id()
        base: dict[str, Any] = {
            "resource_type": node.resource_type,
            "logical_id": node.id,
            "instance_id": instance_id,
            "provider_version": provider.version,
            "downstream": node.downstream,
        }
        ctx.commit(CreatingState(**base, props=news))

        pctx = ctx.provider_ctx(node.id, instance_id)
        if node.attr is not None and node.state is not None:
            # Found a resource left behind by an interrupted create; converge it.
            prior_props = node.state.props or {}
            request = UpdateRequest(
                id=node.id, news=news, olds=prior_props, output=node.attr, bindings=node.bindings
            )
            attr = await ctx.call(f"update {node.id}", lambda: provider.update(pctx, request))
        else:
            create = CreateRequest(id=node.id, news=news, bindings=node.bindings)
            attr = await ctx.call(f"create {node.id}", lambda: provider.create(pctx, create))

        ctx.commit(
            CreatedState(**base, props=news, attr=attr, bindings=binding_records(node.bindings))
        )
        ctx.attach(node.resource, attr)
        return attr


@dataclass
class UpdateOperation:
    key: str
    node: Update
    deps: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)
    action: Action | None = Action.UPDATE

    @property
    def resource_id(self) -> str:
        return self.node.id

    async def run(self, ctx: ApplyContext) -> Attr | None:
        node = self.node
        provider = _provider(node)
        prior = node.state
        assert prior is not None
        news = await ctx.resolve_props(node.resource)
        base: dict[str, Any] = {
            "resource_type": node.resource_type,
            "logical_id": node.id,
            "instance_id": prior.instance_id,
            "provider_version": provider.version,
            "downstream": node.downstream,
        }
        if not isinstance(prior, ReplacedState):
            snapshot = AppliedSnapshot(props=node.olds, attr=node.output)
            ctx.commit(UpdatingState(**base, props=news, old=snapshot, bindings=prior.bindings))

        pctx = ctx.provider_ctx(node.id, prior.instance_id)
        request = UpdateRequest(
            id=node.id, news=news, olds=node.olds, output=node.output, bindings=node.bindings
        )
        attr = await ctx.call(f"update {node.id}", lambda: provider.update(pctx, request))

        bindings = binding_records(node.bindings)
        if isinstance(prior, ReplacedState):
            # The replaced resource is still cleaned up by its finalize operation.
            ctx.commit(
                ReplacedState(
                    **base,
                    props=news,
                    attr=attr,
                    old=prior.old,
                    delete_first=prior.delete_first,
                    bindings=bindings,
                )
            )
        else:
            ctx.commit(UpdatedState(**base, props=news, attr=attr, bindings=bindings))
        ctx.attach(node.resource, attr)
        return attr


@dataclass
class ReplaceOperation:
    key: str
    node: Replace
    deps: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)
    action: Action | None = Action.REPLACE

    @property
    def resource_id(self) -> str:
        return self.node.id

    def _replaced_record(self) -> Any:
        """The record of the generation being replaced."""
        prior = self.node.state
        match prior:
            case ReplacingState(old=old):
                return old
            case CreatingState():
                # An interrupted create the provider still reports.
                return CreatedState(
                    **prior.model_dump(exclude={"status", "props", "attr"}),
                    props=prior.props,
                    attr=self.node.output or {},
                )
            case _:
                return prior

    async def run(self, ctx: ApplyContext) -> Attr | None:
        node = self.node
        provider = _provider(node)
        prior = node.state
        assert prior is not None

        if isinstance(prior, ReplacedState):
            # Replacement exists already; only the finalize step remains.
            logger.debug("%s: replacement already created, resuming cleanup", node.id)
            ctx.attach(node.resource, prior.attr)
            return prior.attr

        news = await ctx.resolve_props(node.resource)
        old = self._replaced_record()
        instance_id = (
            prior.instance_id if isinstance(prior, ReplacingState) else new_instance_id()
        )
        base: dict[str, Any] = {
            "resource_type": node.resource_type,
            "logical_id": node.id,
            "instance_id": instance_id,
            "provider_version": provider.version,
            "downstream": node.downstream,
        }
        ctx.commit(
            ReplacingState(
                **base, props=news, old=old, delete_first=node.delete_first, bindings=old.bindings
            )
        )

        if node.delete_first:
            await _delete_generation(ctx, provider, node.id, old, node.bindings)

        pctx = ctx.provider_ctx(node.id, instance_id)
        request = CreateRequest(id=node.id, news=news, bindings=node.bindings)
        attr = await ctx.call(f"create {node.id}", lambda: provider.create(pctx, request))
        ctx.commit(
            ReplacedState(
                **base,
                props=news,
                attr=attr,
                old=old,
                delete_first=node.delete_first,
                bindings=binding_records(node.bindings),
            )
        )
        ctx.attach(node.resource, attr)
        return attr


async def _delete_generation(
    ctx: ApplyContext,
    provider: ResourceProvider[Any],
    resource_id: str,
    record: Any,
    bindings: Any = (),
) -> None:
    """Delete the physical resource described by a replaced record."""
    if record.attr is None:
        return
    pctx = ctx.provider_ctx(resource_id, record.instance_id)
    request = DeleteRequest(
        id=resource_id, olds=record.props, output=record.attr, bindings=tuple(bindings)
    )
    await ctx.call(f"delete {resource_id}", lambda: provider.delete(pctx, request))


@dataclass
class FinalizeReplaceOperation:
    """Delete the replaced generation and settle the record as ``created``."""

    key: str
    node: Replace | Update
    deps: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)
    resource_id: str | None = None
    action: Action | None = None

    async def run(self, ctx: ApplyContext) -> Attr | None:
        node = self.node
        record = ctx.store.get(ctx.stack, ctx.stage, node.id)
        if not isinstance(record, ReplacedState):
            return None
        if not record.delete_first:
            await _delete_generation(ctx, _provider(node), node.id, record.old)
        ctx.commit(
            CreatedState(
                **record.model_dump(exclude={"status", "old", "delete_first", "props", "attr"}),
                props=record.props,
                attr=record.attr,
            )
        )
        return record.attr


@dataclass
class NoopOperation:
    key: str
    node: NoopUpdate
    deps: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)
    action: Action | None = Action.NOOP

    @property
    def resource_id(self) -> str:
        return self.node.id

    async def run(self, ctx: ApplyContext) -> Attr | None:
        node = self.node
        prior = node.state
        if prior is not None and list(prior.downstream) != list(node.downstream):
            ctx.commit(prior.model_copy(update={"downstream": list(node.downstream)}))
        ctx.attach(node.resource, node.output)
        return node.output


@dataclass
class DeleteOperation:
    key: str
    node: Delete
    deps: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)
    action: Action | None = Action.DELETE

    @property
    def resource_id(self) -> str:
        return self.node.id

    async def run(self, ctx: ApplyContext) -> Attr | None:
        node = self.node
        provider = _provider(node)
        prior = node.state
        assert prior is not None

        # A replacement that never finished still owns the previous generation.
        if isinstance(prior, ReplacingState | ReplacedState) and not prior.delete_first:
            await _delete_generation(ctx, provider, node.id, prior.old)

        if not isinstance(prior, DeletingState):
            ctx.commit(
                DeletingState(
                    **prior.model_dump(
                        exclude={"status", "props", "attr", "old", "delete_first"}
                    ),
                    props=node.olds,
                    attr=node.output,
                )
            )

        if node.output is not None:
            pctx = ctx.provider_ctx(node.id, prior.instance_id)
            request = DeleteRequest(
                id=node.id, olds=node.olds, output=node.output, bindings=node.bindings
            )
            await ctx.call(f"delete {node.id}", lambda: provider.delete(pctx, request))
        else:
            logger.debug("%s: no live resource found, dropping record", node.id)

        ctx.remove(node.id)
        return None
