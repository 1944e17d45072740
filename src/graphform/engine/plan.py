"""Plan engine: decide per-resource actions against persisted state.

Planning performs no mutations. It reads the state store, resolves every
declared resource's inputs as far as they are known at plan time, asks each
provider's ``diff`` hook (or falls back to comparing props) and refuses to
delete resources that surviving resources still depend on.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from graphform.core.state import (
    CreatedState,
    CreatingState,
    DeletingState,
    ReplacedState,
    ReplacingState,
    UpdatedState,
    UpdatingState,
    canonical_json,
    is_stable,
    stable_props,
)
from graphform.engine.graph import DependencyGraph
from graphform.engine.provider import Diff, DiffRequest, ProviderContext, ReadRequest
from graphform.engine.types import (
    Attach,
    Create,
    Delete,
    Detach,
    NoopBind,
    NoopUpdate,
    Plan,
    Replace,
    Update,
)
from graphform.errors import (
    CannotReplacePartiallyReplacedResource,
    DeleteResourceHasDownstreamDependencies,
    DuplicateResourceError,
)
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
)
from graphform.output.upstream import upstream_of
from graphform.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Sequence

    from graphform.core.state import Attr, BindingRecord, Props, ResourceState
    from graphform.core.store import StateStore
    from graphform.engine.provider import ResourceProvider
    from graphform.engine.registry import ProviderRegistry
    from graphform.engine.types import BindNode, Phase, ResourceNode
    from graphform.resources.binding import Binding

logger = logging.getLogger(__name__)


def discover(resources: Sequence[Resource]) -> dict[str, Resource]:
    """Expand declared resources into every resource they transitively reference.

    The first object seen for an id wins; a different object under the same id
    raises ``DuplicateResourceError``.
    """
    found: dict[str, Resource] = {}

    def visit(resource: Resource) -> None:
        existing = found.get(resource.id)
        if existing is not None:
            if existing is not resource:
                raise DuplicateResourceError(resource.id)
            return
        found[resource.id] = resource
        for dep in dependencies_of(resource).values():
            visit(dep)

    for r in resources:
        visit(r)
    return found


def dependencies_of(resource: Resource) -> dict[str, Resource]:
    """Resources ``resource`` depends on: referenced by its props or bound capabilities."""
    deps = dict(upstream_of(resource.props))
    for binding in resource.bindings:
        deps[binding.resource.id] = binding.resource
        deps.update(upstream_of(binding.props))
    return deps


def is_unresolved(value: Any) -> bool:
    """Whether ``value`` still contains an output that is unknown at plan time."""
    if isinstance(value, Expr):
        return True
    if isinstance(value, Resource):
        return value.attr is None
    if isinstance(value, Mapping):
        return any(is_unresolved(v) for v in value.values())
    if isinstance(value, list | tuple | set | frozenset):
        return any(is_unresolved(v) for v in value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return any(is_unresolved(getattr(value, f.name)) for f in dataclasses.fields(value))
    return False


def _without_bindings(props: Any) -> Any:
    if isinstance(props, Mapping):
        return {k: v for k, v in props.items() if k != "bindings"}
    return props


def props_changed(olds: Props | None, news: Props) -> bool:
    """Deep-equality fallback used when a provider has no ``diff`` hook."""
    if is_unresolved(news):
        return True
    return canonical_json(_without_bindings(olds or {})) != canonical_json(
        _without_bindings(news)
    )


def _binding_changed(record: BindingRecord, binding: Binding) -> bool:
    return (
        record.action != binding.capability.action
        or record.resource_id != binding.resource.id
        or canonical_json(record.props) != canonical_json(binding.props)
    )


def diff_bindings(resource: Resource, old: ResourceState | None) -> list[BindNode]:
    """Match declared bindings against the stored ones by sid.

    Bindings present in the stored record but no longer declared become
    ``Detach`` nodes.
    """
    previous = {b.sid: b for b in old.bindings} if old is not None else {}
    nodes: list[BindNode] = []
    for binding in resource.bindings:
        record = previous.pop(binding.sid, None)
        if record is None:
            nodes.append(Attach(binding))
        elif _binding_changed(record, binding):
            nodes.append(Attach(binding, olds=record))
        else:
            nodes.append(NoopBind(binding, record))
    nodes.extend(Detach(record) for record in previous.values())
    return nodes


def downstream_index(records: Mapping[str, ResourceState]) -> dict[str, list[str]]:
    """Map resource id -> ids of persisted resources that depend on it.

    Combines each record's stored ``downstream`` list with the dependents
    implied by stored capability bindings.
    """
    index: dict[str, set[str]] = {}
    for rid, record in records.items():
        index.setdefault(rid, set()).update(record.downstream)
        for binding in record.bindings:
            index.setdefault(binding.resource_id, set()).add(record.logical_id)
    return {rid: sorted(ids) for rid, ids in index.items()}


class Planner:
    """Compute a ``Plan`` for one stack/stage."""

    def __init__(
        self,
        *,
        stack: str,
        stage: str,
        store: StateStore,
        registry: ProviderRegistry,
        services: Mapping[str, Any] | None = None,
    ) -> None:
        self._stack = stack
        self._stage = stage
        self._store = store
        self._registry = registry
        self._services = dict(services or {})
        self._records: dict[str, ResourceState] = {}
        self._dependencies: dict[str, list[str]] = {}
        self._downstream: dict[str, list[str]] = {}
        self._tasks: dict[str, asyncio.Task[tuple[ResourceNode, Any]]] = {}
        self._eval_ctx = self._new_eval_ctx()

    def _new_eval_ctx(self) -> EvalContext:
        return EvalContext(
            stack=self._stack, stage=self._stage, store=self._store, services=self._services
        )

    def _provider_ctx(self, resource_id: str, instance_id: str) -> ProviderContext:
        return ProviderContext(
            stack=self._stack,
            stage=self._stage,
            resource_id=resource_id,
            instance_id=instance_id,
            services=self._services,
        )

    def _load_records(self) -> dict[str, ResourceState]:
        records: dict[str, ResourceState] = {}
        for rid in self._store.list(self._stack, self._stage):
            record = self._store.get(self._stack, self._stage, rid)
            if record is not None:
                records[rid] = record
        return records

    async def plan(self, resources: Sequence[Resource], *, phase: Phase = "update") -> Plan:
        logger.info(
            "Planning %s/%s: %d declared resources (phase=%s)",
            self._stack,
            self._stage,
            len(resources),
            phase,
        )
        self._records = self._load_records()
        self._tasks = {}
        self._eval_ctx = self._new_eval_ctx()

        discovered = discover(resources) if phase == "update" else {}
        for r in discovered.values():
            self._registry.get(r.type)  # fail early if unknown

        self._dependencies = {
            rid: sorted(dependencies_of(r)) for rid, r in discovered.items()
        }
        graph = DependencyGraph(discovered, self._dependencies)
        graph.topological_order()  # raises on cycles
        self._downstream = {rid: sorted(ids) for rid, ids in graph.dependents().items()}

        planned = await self._plan_all(discovered)
        plan = Plan(stack=self._stack, stage=self._stage, phase=phase, resources=planned)

        index = downstream_index(self._records)
        for rid in sorted(self._records):
            if rid in planned:
                continue
            plan.deletions[rid] = await self._plan_delete(self._records[rid], index.get(rid, []))

        for rid, deletion in sorted(plan.deletions.items()):
            blocking = [d for d in deletion.downstream if d in plan.resources]
            if blocking:
                raise DeleteResourceHasDownstreamDependencies(rid, blocking)

        logger.info("Plan summary: %s", plan.summary())
        return plan

    async def _plan_all(self, discovered: Mapping[str, Resource]) -> dict[str, ResourceNode]:
        tasks = [self._planned(r) for r in discovered.values()]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        return {rid: self._tasks[rid].result()[0] for rid in discovered}

    def _planned(self, resource: Resource) -> asyncio.Task[tuple[ResourceNode, Any]]:
        task = self._tasks.get(resource.id)
        if task is None:
            task = asyncio.ensure_future(self._plan_resource(resource))
            self._tasks[resource.id] = task
        return task

    async def _output_of(self, resource: Resource) -> Any:
        _, output = await self._planned(resource)
        return output

    # --- plan-time input resolution ---------------------------------------

    async def _resolve_input(self, value: Any) -> Any:
        if isinstance(value, Expr):
            return await self._resolve_expr(value)
        if isinstance(value, Resource):
            output = await self._output_of(value)
            attr = None if isinstance(output, Expr) else output
            return value.model_copy(update={"attr": attr})
        if isinstance(value, Mapping):
            keys = list(value.keys())
            results = await asyncio.gather(*(self._resolve_input(value[k]) for k in keys))
            return dict(zip(keys, results, strict=True))
        if isinstance(value, list | tuple):
            results = await asyncio.gather(*(self._resolve_input(v) for v in value))
            return list(results) if isinstance(value, list) else tuple(results)
        if isinstance(value, set | frozenset):
            results = await asyncio.gather(*(self._resolve_input(v) for v in value))
            return type(value)(results)
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            changes = {
                f.name: await self._resolve_input(getattr(value, f.name))
                for f in dataclasses.fields(value)
                if f.init
            }
            return dataclasses.replace(value, **changes)
        return value

    async def _resolve_expr(self, expr: Expr) -> Any:
        match expr:
            case Literal(value=literal_value):
                return literal_value
            case ResourceRef(source=source):
                return await self._output_of(source)
            case Prop(parent=parent, key=key):
                resolved = await self._resolve_expr(parent)
                if isinstance(resolved, Expr):
                    return resolved.prop(key)
                return project(resolved, key)
            case Apply(parent=parent, fn=fn):
                resolved = await self._resolve_expr(parent)
                return expr if is_unresolved(resolved) else fn(resolved)
            case SideEffect(parent=parent):
                resolved = await self._resolve_expr(parent)
                if is_unresolved(resolved):
                    return expr
                return await self._eval_ctx.run_effect(expr, resolved)
            case All(children=children):
                return list(await asyncio.gather(*(self._resolve_expr(c) for c in children)))
            case CrossStackRef():
                return await evaluate(expr, {}, self._eval_ctx)
            case _:
                raise TypeError(f"Unknown expression node: {type(expr).__name__}")

    # --- per-resource decisions --------------------------------------------

    async def _diff(
        self,
        provider: ResourceProvider[Any],
        resource: Resource,
        old: ResourceState,
        *,
        olds: Props,
        news: Props,
        output: Attr | None,
        bindings: list[BindNode],
    ) -> tuple[Diff, bool]:
        """Return the diff and whether the provider decided it."""
        ctx = self._provider_ctx(resource.id, old.instance_id)
        request = DiffRequest(id=resource.id, olds=olds, news=news, output=output, bindings=bindings)
        diff = await provider.diff(ctx, request)
        if diff is not None:
            return diff, True
        return Diff("update" if props_changed(olds, news) else "noop"), False

    async def _read(
        self, provider: ResourceProvider[Any], record: ResourceState
    ) -> Attr | None:
        ctx = self._provider_ctx(record.logical_id, record.instance_id)
        request = ReadRequest(id=record.logical_id, olds=record.props, output=record.attr)
        return await provider.read(ctx, request)

    async def _plan_resource(self, resource: Resource) -> tuple[ResourceNode, Any]:
        """Plan one resource: return its node and its plan-time output.

        The plan-time output is the stored ``attr`` when the resource is known
        not to change, a ``ResourceRef`` carrying only the stable fields when
        it is being updated, and the bare ``ResourceRef`` otherwise.
        """
        rid = resource.id
        provider = self._registry.provider(resource.type)
        news = await self._resolve_input(resource.props)
        old = self._records.get(rid)
        bindings = diff_bindings(resource, old)
        ref = resource.out
        common: dict[str, Any] = {
            "id": rid,
            "resource_type": resource.type,
            "provider": provider,
            "bindings": bindings,
            "dependencies": self._dependencies.get(rid, []),
            "downstream": self._downstream.get(rid, []),
            "state": old,
            "resource": resource,
            "news": news,
        }

        if old is None:
            logger.debug("%s: no prior state -> create", rid)
            return Create(**common), ref

        if isinstance(old, CreatingState):
            attr = await self._read(provider, old)
            if attr is None:
                logger.debug("%s: interrupted create, nothing found -> create", rid)
                return Create(**common), ref
            diff, _ = await self._diff(
                provider, resource, old, olds=old.props, news=news, output=attr, bindings=bindings
            )
            if diff.action == "replace":
                logger.debug("%s: interrupted create, incompatible change -> replace", rid)
                return (
                    Replace(**common, olds=old.props, output=attr, delete_first=diff.delete_first),
                    ref,
                )
            logger.debug("%s: interrupted create, resource found -> create", rid)
            return Create(**common, attr=attr), ref

        olds = stable_props(old) or {}
        # A replacing record resumes against the generation it replaces.
        output = old.old.attr if isinstance(old, ReplacingState) else old.attr
        diff, decided_by_provider = await self._diff(
            provider, resource, old, olds=olds, news=news, output=output, bindings=bindings
        )
        action = diff.action
        if action == "noop" and any(not isinstance(b, NoopBind) for b in bindings):
            action = "update"

        node = self._decide(old, action, diff, common, olds=olds, output=output)
        logger.debug("%s: %s state, diff=%s -> %s", rid, old.status, diff.action, node.action.value)

        stables = list(provider.stables)
        if decided_by_provider:
            stables.extend(diff.stables)

        def with_stables(attr: Attr | None) -> Any:
            if not stables:
                return ref
            return ResourceRef(resource, {s: (attr or {}).get(s) for s in stables})

        if diff.action == "replace":
            plan_output: Any = ref
        elif diff.action == "update":
            plan_output = with_stables(output)
        elif is_stable(old):
            plan_output = old.attr
        else:
            plan_output = ref
        return node, plan_output

    def _decide(
        self,
        old: ResourceState,
        action: str,
        diff: Diff,
        common: dict[str, Any],
        *,
        olds: Props,
        output: Attr | None,
    ) -> ResourceNode:
        rid = common["id"]
        match old:
            case UpdatingState():
                if action == "replace":
                    return Replace(
                        **common, olds=olds, output=output, delete_first=diff.delete_first
                    )
                return Update(**common, olds=olds, output=output or {})
            case ReplacingState():
                if action == "replace":
                    raise CannotReplacePartiallyReplacedResource(rid)
                return Replace(**common, olds=olds, output=output, delete_first=old.delete_first)
            case ReplacedState():
                if action == "replace":
                    raise CannotReplacePartiallyReplacedResource(rid)
                if action == "update":
                    # Update the replacement, then finish cleaning up the old one.
                    return Update(**common, olds=olds, output=old.attr)
                return Replace(**common, olds=olds, output=old.attr, delete_first=old.delete_first)
            case DeletingState():
                if action == "replace":
                    raise CannotReplacePartiallyReplacedResource(rid)
                # Unclear whether the delete went through; re-create with the same instance id.
                return Create(**common)
            case CreatedState() | UpdatedState():
                if action == "replace":
                    return Replace(
                        **common, olds=olds, output=old.attr, delete_first=diff.delete_first
                    )
                if action == "update":
                    return Update(**common, olds=olds, output=old.attr)
                return NoopUpdate(**common, olds=olds, output=old.attr)
            case _:
                raise TypeError(f"Unexpected state for {rid}: {old.status}")

    async def _plan_delete(self, record: ResourceState, dependents: list[str]) -> Delete:
        rid = record.logical_id
        provider = self._registry.provider(record.resource_type)
        attr = record.attr
        if attr is None:
            attr = await self._read(provider, record)
        logger.debug("%s: no longer declared -> delete", rid)
        return Delete(
            id=rid,
            resource_type=record.resource_type,
            provider=provider,
            bindings=[Detach(b) for b in record.bindings],
            downstream=dependents,
            state=record,
            olds=record.props,
            output=attr,
        )
