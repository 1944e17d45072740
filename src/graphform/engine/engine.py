"""Plan/apply engine."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from graphform.core.state import is_stable
from graphform.engine.apply import Executor
from graphform.engine.plan import Planner
from graphform.engine.provider import ProviderContext, ReadRequest
from graphform.errors import ApplyCanceled

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from graphform.core.state import Attr, ResourceState
    from graphform.core.store import StateStore
    from graphform.engine.apply import ProgressCallback
    from graphform.engine.registry import ProviderRegistry
    from graphform.engine.retry import RetryPolicy
    from graphform.engine.types import ApplyResult, Plan
    from graphform.resources.base import Resource

logger = logging.getLogger(__name__)


class Engine:
    """Terraform-like plan/apply engine for one stack and stage."""

    def __init__(
        self,
        *,
        stack: str,
        stage: str,
        store: StateStore,
        registry: ProviderRegistry,
        concurrency: int = 8,
        retry_policy: RetryPolicy | None = None,
        services: Mapping[str, Any] | None = None,
    ) -> None:
        self._stack = stack
        self._stage = stage
        self._store = store
        self._registry = registry
        self._concurrency = concurrency
        self._retry_policy = retry_policy
        self._services = dict(services or {})

    @property
    def stack(self) -> str:
        return self._stack

    @property
    def stage(self) -> str:
        return self._stage

    @property
    def store(self) -> StateStore:
        return self._store

    async def plan(self, resources: Sequence[Resource], *, destroy: bool = False) -> Plan:
        planner = Planner(
            stack=self._stack,
            stage=self._stage,
            store=self._store,
            registry=self._registry,
            services=self._services,
        )
        with self._store.lock(self._stack, self._stage):
            return await planner.plan(resources, phase="destroy" if destroy else "update")

    async def apply(self, plan: Plan, *, progress: ProgressCallback | None = None) -> ApplyResult:
        executor = Executor(
            stack=self._stack,
            stage=self._stage,
            store=self._store,
            concurrency=self._concurrency,
            retry_policy=self._retry_policy,
            services=self._services,
        )
        with self._store.lock(self._stack, self._stage):
            try:
                return await executor.apply(plan, progress=progress)
            except (KeyboardInterrupt, asyncio.CancelledError) as e:  # pragma: no cover
                raise ApplyCanceled("Apply canceled") from e

    async def deploy(
        self, resources: Sequence[Resource], *, progress: ProgressCallback | None = None
    ) -> ApplyResult:
        """Plan and apply ``resources`` in one go."""
        plan = await self.plan(resources)
        return await self.apply(plan, progress=progress)

    async def destroy(self, *, progress: ProgressCallback | None = None) -> ApplyResult:
        """Delete every resource recorded for this stack and stage."""
        plan = await self.plan([], destroy=True)
        return await self.apply(plan, progress=progress)

    async def refresh(self, *, persist: bool = False) -> dict[str, Attr | None]:
        """Re-read the output of every settled resource from its provider.

        Returns resource id -> fresh output for every resource whose output
        changed (``None`` when the provider reports it gone). With ``persist``
        the changes are written back; vanished resources are dropped.
        """
        logger.debug("Refreshing state for %s/%s", self._stack, self._stage)
        changed: dict[str, Attr | None] = {}
        with self._store.lock(self._stack, self._stage):
            for rid in self._store.list(self._stack, self._stage):
                record = self._store.get(self._stack, self._stage, rid)
                if record is None or not is_stable(record):
                    continue
                attr = await self._read(record)
                if attr == record.attr:
                    continue
                changed[rid] = attr
                if not persist:
                    continue
                if attr is None:
                    self._store.delete(self._stack, self._stage, rid)
                else:
                    self._store.set(
                        self._stack, self._stage, rid, record.model_copy(update={"attr": attr})
                    )
        logger.debug("State refreshed, %d changed", len(changed))
        return changed

    async def _read(self, record: ResourceState) -> Attr | None:
        provider = self._registry.provider(record.resource_type)
        ctx = ProviderContext(
            stack=self._stack,
            stage=self._stage,
            resource_id=record.logical_id,
            instance_id=record.instance_id,
            services=self._services,
        )
        return await provider.read(
            ctx, ReadRequest(id=record.logical_id, olds=record.props, output=record.attr)
        )

    def stacks(self) -> list[str]:
        return self._store.list_stacks()

    def stages(self) -> list[str]:
        return self._store.list_stages(self._stack)

    def resources(self) -> dict[str, ResourceState]:
        """Persisted records for this stack and stage, by resource id."""
        records: dict[str, ResourceState] = {}
        for rid in self._store.list(self._stack, self._stage):
            record = self._store.get(self._stack, self._stage, rid)
            if record is not None:
                records[rid] = record
        return records
