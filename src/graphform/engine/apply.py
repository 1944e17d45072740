"""Apply/destroy executor: run a plan's operations concurrently in dependency order."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Literal

from graphform.core.state import ReplacedState
from graphform.engine.graph import DependencyGraph
from graphform.engine.operations import (
    ApplyContext,
    BarrierOperation,
    CreateOperation,
    DeleteOperation,
    FinalizeReplaceOperation,
    NoopOperation,
    ReplaceOperation,
    UpdateOperation,
)
from graphform.engine.retry import RetryPolicy
from graphform.engine.types import (
    Action,
    ApplyResult,
    Create,
    NoopUpdate,
    Replace,
    Update,
)
from graphform.errors import ApplyError
from graphform.output.evaluate import EvalContext

if TYPE_CHECKING:
    from collections.abc import Mapping

    from graphform.core.store import StateStore
    from graphform.engine.operations import Operation
    from graphform.engine.types import Plan

logger = logging.getLogger(__name__)

ProgressEvent = Literal["start", "done", "failed"]
ProgressCallback = Callable[[str, Action, ProgressEvent], None]

BARRIER_KEY = "#barrier"


def finalize_key(resource_id: str) -> str:
    return f"{resource_id}#finalize"


def build_operations(plan: Plan) -> dict[str, Operation]:
    """Build the operation graph for a plan.

    - create/update/replace/noop wait for the resources they reference
    - deletes wait for their dependents' deletes (reverse order)
    - every delete and replacement cleanup runs after all other resource nodes
    """
    ops: dict[str, Operation] = {}
    resource_ids = set(plan.resources)
    delete_ids = set(plan.deletions)

    for rid, node in plan.resources.items():
        deps = [d for d in node.dependencies if d in resource_ids]
        op: Operation
        match node:
            case Create():
                op = CreateOperation(key=rid, node=node, deps=deps)
            case Update():
                op = UpdateOperation(key=rid, node=node, deps=deps)
            case Replace():
                op = ReplaceOperation(key=rid, node=node, deps=deps)
            case NoopUpdate():
                op = NoopOperation(key=rid, node=node, deps=deps)
            case _:
                raise ValueError(f"Unknown plan node for {rid}: {node!r}")
        ops[rid] = op

    finalizers: list[str] = []
    for rid, node in plan.resources.items():
        replacing = isinstance(node, Replace) or (
            isinstance(node, Update) and isinstance(node.state, ReplacedState)
        )
        if not replacing:
            continue
        key = finalize_key(rid)
        # Dependents must point at the replacement before the old generation goes away.
        deps = [rid, *(d for d in node.downstream if d in resource_ids)]
        ops[key] = FinalizeReplaceOperation(key=key, node=node, deps=deps, after=[BARRIER_KEY])
        finalizers.append(key)

    for rid, node in plan.deletions.items():
        deps = [d for d in node.downstream if d in delete_ids]
        ops[rid] = DeleteOperation(key=rid, node=node, deps=deps, after=[BARRIER_KEY, *finalizers])

    if resource_ids and (delete_ids or finalizers):
        ops[BARRIER_KEY] = BarrierOperation(key=BARRIER_KEY, after=sorted(resource_ids))
    else:
        for op in ops.values():
            op.after = [k for k in op.after if k != BARRIER_KEY]

    return ops


class Executor:
    """Turn a plan into ordered, retried, partially-failable provider calls."""

    def __init__(
        self,
        *,
        stack: str,
        stage: str,
        store: StateStore,
        concurrency: int = 8,
        retry_policy: RetryPolicy | None = None,
        services: Mapping[str, Any] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._stack = stack
        self._stage = stage
        self._store = store
        self._concurrency = concurrency
        self._retry_policy = retry_policy or RetryPolicy()
        self._services = dict(services or {})

    async def apply(self, plan: Plan, *, progress: ProgressCallback | None = None) -> ApplyResult:
        """Apply ``plan``.

        Raises:
            ApplyError: One or more nodes failed. Carries the partial result;
                nodes that committed before the failure keep their new state.
        """
        ops = build_operations(plan)
        dep_map = {k: [*op.deps, *op.after] for k, op in ops.items()}
        order = DependencyGraph(ops.keys(), dep_map).topological_order()
        logger.info("Applying %d operations for %s/%s", len(ops), self._stack, self._stage)

        ctx = ApplyContext(
            stack=self._stack,
            stage=self._stage,
            store=self._store,
            eval_ctx=EvalContext(
                stack=self._stack, stage=self._stage, store=self._store, services=self._services
            ),
            retry_policy=self._retry_policy,
            services=self._services,
        )
        result = ApplyResult()
        semaphore = asyncio.Semaphore(self._concurrency)
        tasks: dict[str, asyncio.Task[bool]] = {}

        async def run(op: Operation) -> bool:
            strict = await asyncio.gather(*(tasks[d] for d in op.deps))
            await asyncio.gather(*(tasks[d] for d in op.after))
            if not all(strict):
                logger.debug("Skipping %s: a dependency did not apply", op.key)
                if op.key != BARRIER_KEY:
                    result.skipped.append(op.key)
                return False

            async with semaphore:
                if progress and op.action is not None:
                    progress(op.key, op.action, "start")
                try:
                    output = await op.run(ctx)
                except Exception as e:
                    logger.error("Apply failed on %s: %s", op.key, e)
                    result.failed[op.key] = e
                    if progress and op.action is not None:
                        progress(op.key, op.action, "failed")
                    return False

            if op.action is not None and op.resource_id is not None:
                result.applied[op.resource_id] = op.action
                if op.action is not Action.DELETE:
                    result.outputs[op.resource_id] = output
                if progress:
                    progress(op.key, op.action, "done")
            return True

        for key in order:
            tasks[key] = asyncio.ensure_future(run(ops[key]))
        try:
            await asyncio.gather(*tasks.values())
        except BaseException:
            for task in tasks.values():
                task.cancel()
            raise

        result.skipped.sort()
        logger.info(
            "Apply finished: %d applied, %d failed, %d skipped",
            len(result.applied),
            len(result.failed),
            len(result.skipped),
        )
        if result.failed:
            raise ApplyError(result)
        return result
