from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest

from graphform.core.naming import physical_name
from graphform.core.state import (
    CreatedState,
    CreatingState,
    DeletingState,
    ReplacedState,
    ReplacingState,
    UpdatedState,
)
from graphform.engine.apply import BARRIER_KEY, Executor, build_operations, finalize_key
from graphform.engine.engine import Engine
from graphform.engine.registry import ProviderRegistry
from graphform.engine.retry import NO_RETRY, RetryPolicy
from graphform.engine.types import Action
from graphform.errors import ApplyError, RetryableError
from graphform.resources.binding import Capability
from tests.unit.fakes import Bucket, FakeCloud, FakeProvider, Queue

if TYPE_CHECKING:
    from graphform.core.state import Attr
    from graphform.core.store import InMemoryStateStore
    from graphform.engine.provider import CreateRequest, ProviderContext


def _record(store: InMemoryStateStore, rid: str) -> Any:
    return store.get("app", "dev", rid)


class TestBuildOperations:
    @pytest.mark.asyncio
    async def test_creates_only_need_no_barrier(self, engine: Engine) -> None:
        bucket = Bucket(id="b")
        ops = build_operations(await engine.plan([Queue(id="q", props={"t": bucket.out.arn})]))
        assert set(ops) == {"b", "q"}
        assert ops["q"].deps == ["b"]
        assert ops["q"].after == []

    @pytest.mark.asyncio
    async def test_deletes_wait_for_barrier_and_dependents(self, engine: Engine) -> None:
        bucket = Bucket(id="b", props={"region": "us"})
        await engine.deploy([Queue(id="q", props={"t": bucket.out.arn}), Bucket(id="x")])

        bucket = Bucket(id="b", props={"region": "eu"})
        ops = build_operations(await engine.plan([Queue(id="q", props={"t": bucket.out.arn})]))
        assert set(ops) == {"b", "q", "x", finalize_key("b"), BARRIER_KEY}
        assert ops[BARRIER_KEY].after == ["b", "q"]
        assert ops[finalize_key("b")].deps == ["b", "q"]
        assert ops["x"].after == [BARRIER_KEY, finalize_key("b")]

    @pytest.mark.asyncio
    async def test_destroy_orders_deletes_in_reverse(self, engine: Engine) -> None:
        bucket = Bucket(id="b")
        await engine.deploy([Queue(id="q", props={"t": bucket.out.arn})])
        ops = build_operations(await engine.plan([], destroy=True))
        assert set(ops) == {"b", "q"}
        assert ops["b"].deps == ["q"]
        assert ops["b"].after == []


class TestDeploy:
    @pytest.mark.asyncio
    async def test_creates_in_dependency_order(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        bucket = Bucket(id="b", props={"size": 1})
        queue = Queue(id="q", props={"target": bucket.out.arn})
        result = await engine.deploy([queue])

        assert cloud.calls == [("create", "b"), ("create", "q")]
        assert result.applied == {"b": Action.CREATE, "q": Action.CREATE}
        assert result.ok
        assert bucket.attr is not None
        assert queue.attr is not None
        assert queue.attr["target"] == bucket.attr["arn"]
        assert result.outputs["q"] == queue.attr

        b_record = _record(store, "b")
        assert isinstance(b_record, CreatedState)
        assert b_record.downstream == ["q"]
        assert b_record.props == {"size": 1}
        assert _record(store, "q").props == {"target": bucket.attr["arn"]}

    @pytest.mark.asyncio
    async def test_update(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        await engine.deploy([Bucket(id="b", props={"size": 1})])
        instance = _record(store, "b").instance_id

        result = await engine.deploy([Bucket(id="b", props={"size": 2})])
        assert result.applied == {"b": Action.UPDATE}
        record = _record(store, "b")
        assert isinstance(record, UpdatedState)
        assert record.props == {"size": 2}
        assert record.attr["size"] == 2
        assert record.instance_id == instance
        assert cloud.calls[-1] == ("update", "b")

    @pytest.mark.asyncio
    async def test_noop_calls_nothing(self, engine: Engine, cloud: FakeCloud) -> None:
        await engine.deploy([Bucket(id="b")])
        calls = list(cloud.calls)
        bucket = Bucket(id="b")
        result = await engine.deploy([bucket])
        assert cloud.calls == calls
        assert result.applied == {"b": Action.NOOP}
        assert bucket.attr is not None

    @pytest.mark.asyncio
    async def test_progress_events(self, engine: Engine) -> None:
        events: list[tuple[str, Action, str]] = []
        await engine.deploy(
            [Bucket(id="a"), Bucket(id="b")],
            progress=lambda key, action, event: events.append((key, action, event)),
        )
        assert sorted(events) == [
            ("a", Action.CREATE, "done"),
            ("a", Action.CREATE, "start"),
            ("b", Action.CREATE, "done"),
            ("b", Action.CREATE, "start"),
        ]


    @pytest.mark.asyncio
    async def test_set_props_are_evaluated(
        self, engine: Engine, store: InMemoryStateStore
    ) -> None:
        bucket = Bucket(id="b")
        queue = Queue(id="q", props={"targets": {bucket.out.arn}})
        await engine.deploy([queue])

        assert bucket.attr is not None
        assert queue.attr is not None
        assert queue.attr["targets"] == {bucket.attr["arn"]}
        assert _record(store, "q").props == {"targets": {bucket.attr["arn"]}}


class TestReplace:
    @pytest.mark.asyncio
    async def test_create_before_delete(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        bucket = Bucket(id="b", props={"region": "us"})
        await engine.deploy([Queue(id="q", props={"target": bucket.out.arn})])
        old = _record(store, "b")
        cloud.calls.clear()

        bucket = Bucket(id="b", props={"region": "eu"})
        queue = Queue(id="q", props={"target": bucket.out.arn})
        result = await engine.deploy([queue])

        assert cloud.calls == [("create", "b"), ("update", "q"), ("delete", "b")]
        assert result.applied == {"b": Action.REPLACE, "q": Action.UPDATE}
        record = _record(store, "b")
        assert isinstance(record, CreatedState)
        assert record.instance_id != old.instance_id
        assert set(cloud.objects) == {record.attr["name"], _record(store, "q").attr["name"]}
        assert queue.attr is not None
        assert queue.attr["target"] == record.attr["arn"]

    @pytest.mark.asyncio
    async def test_delete_first(self, store: InMemoryStateStore, cloud: FakeCloud) -> None:
        registry = ProviderRegistry()
        registry.register(Bucket, FakeProvider(cloud, replace_on=("region",), delete_first=True))
        engine = Engine(
            stack="app", stage="dev", store=store, registry=registry, retry_policy=NO_RETRY
        )
        await engine.deploy([Bucket(id="b", props={"region": "us"})])
        cloud.calls.clear()

        await engine.deploy([Bucket(id="b", props={"region": "eu"})])
        assert cloud.calls == [("delete", "b"), ("create", "b")]
        assert isinstance(_record(store, "b"), CreatedState)
        assert len(cloud.objects) == 1

    @pytest.mark.asyncio
    async def test_failed_cleanup_is_finished_next_time(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        await engine.deploy([Bucket(id="b", props={"region": "us"})])
        cloud.fail("delete", "b", RuntimeError("still in use"))

        with pytest.raises(ApplyError) as exc_info:
            await engine.deploy([Bucket(id="b", props={"region": "eu"})])
        assert set(exc_info.value.result.failed) == {finalize_key("b")}
        assert exc_info.value.result.applied == {"b": Action.REPLACE}
        assert isinstance(_record(store, "b"), ReplacedState)
        assert len(cloud.objects) == 2

        cloud.calls.clear()
        result = await engine.deploy([Bucket(id="b", props={"region": "eu"})])
        assert result.applied == {"b": Action.REPLACE}
        assert cloud.calls == [("delete", "b")]
        assert isinstance(_record(store, "b"), CreatedState)
        assert len(cloud.objects) == 1


class TestDestroy:
    @pytest.mark.asyncio
    async def test_deletes_dependents_first(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        bucket = Bucket(id="b")
        await engine.deploy([Queue(id="q", props={"target": bucket.out.arn})])
        cloud.calls.clear()

        result = await engine.destroy()
        assert cloud.calls == [("delete", "q"), ("delete", "b")]
        assert result.applied == {"b": Action.DELETE, "q": Action.DELETE}
        assert "b" not in result.outputs
        assert store.list("app", "dev") == []
        assert cloud.objects == {}

    @pytest.mark.asyncio
    async def test_vanished_resource_only_drops_the_record(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        store.set(
            "app", "dev", "b", CreatingState(resource_type="test_bucket", logical_id="b", props={})
        )
        result = await engine.destroy()
        assert result.applied == {"b": Action.DELETE}
        assert cloud.calls == []
        assert store.get("app", "dev", "b") is None

    @pytest.mark.asyncio
    async def test_failed_delete_leaves_deleting_record(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        await engine.deploy([Bucket(id="b")])
        cloud.fail("delete", "b", RuntimeError("denied"))
        with pytest.raises(ApplyError):
            await engine.destroy()
        assert isinstance(_record(store, "b"), DeletingState)

        await engine.destroy()
        assert store.list("app", "dev") == []


    @pytest.mark.asyncio
    async def test_interrupted_replace_deletes_both_generations(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        def live(instance_id: str) -> dict[str, str]:
            name = physical_name(
                stack="app", stage="dev", resource_id="b", instance_id=instance_id
            )
            cloud.objects[name] = {"name": name, "arn": f"arn:{name}"}
            return cloud.objects[name]

        old = CreatedState(
            resource_type="test_bucket",
            logical_id="b",
            instance_id="old0",
            props={"region": "us"},
            attr=live("old0"),
        )
        live("new1")
        store.set(
            "app",
            "dev",
            "b",
            ReplacingState(
                resource_type="test_bucket",
                logical_id="b",
                instance_id="new1",
                props={"region": "eu"},
                old=old,
            ),
        )

        result = await engine.destroy()
        assert result.applied == {"b": Action.DELETE}
        assert cloud.calls == [("delete", "b"), ("delete", "b")]
        assert cloud.objects == {}
        assert store.get("app", "dev", "b") is None


class TestFailures:
    @pytest.mark.asyncio
    async def test_dependents_are_skipped_and_siblings_continue(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        cloud.fail("create", "b", RuntimeError("quota exceeded"))
        bucket = Bucket(id="b")
        queue = Queue(id="q", props={"target": bucket.out.arn})

        with pytest.raises(ApplyError) as exc_info:
            await engine.deploy([queue, Bucket(id="other")])

        result = exc_info.value.result
        assert set(result.failed) == {"b"}
        assert str(result.failed["b"]) == "quota exceeded"
        assert result.skipped == ["q"]
        assert result.applied == {"other": Action.CREATE}
        assert not result.ok
        assert isinstance(_record(store, "b"), CreatingState)
        assert _record(store, "q") is None
        assert isinstance(_record(store, "other"), CreatedState)

    @pytest.mark.asyncio
    async def test_unrelated_deletes_still_run(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        await engine.deploy([Bucket(id="gone")])
        cloud.fail("create", "b", RuntimeError("boom"))
        with pytest.raises(ApplyError) as exc_info:
            await engine.deploy([Bucket(id="b")])
        assert exc_info.value.result.applied == {"gone": Action.DELETE}
        assert _record(store, "gone") is None

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(
        self, store: InMemoryStateStore, registry: ProviderRegistry, cloud: FakeCloud
    ) -> None:
        engine = Engine(
            stack="app",
            stage="dev",
            store=store,
            registry=registry,
            retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0),
        )
        cloud.fail("create", "b", RetryableError("throttled"), RetryableError("throttled"))
        result = await engine.deploy([Bucket(id="b")])
        assert result.applied == {"b": Action.CREATE}
        assert cloud.calls == [("create", "b")] * 3

    @pytest.mark.asyncio
    async def test_interrupted_create_converges_the_found_resource(
        self, engine: Engine, store: InMemoryStateStore, cloud: FakeCloud
    ) -> None:
        record = CreatingState(resource_type="test_bucket", logical_id="b", props={"size": 1})
        store.set("app", "dev", "b", record)
        name = physical_name(
            stack="app", stage="dev", resource_id="b", instance_id=record.instance_id
        )
        cloud.objects[name] = {"name": name, "arn": f"arn:{name}", "size": 1}

        await engine.deploy([Bucket(id="b", props={"size": 2})])
        assert cloud.calls == [("update", "b")]
        stored = _record(store, "b")
        assert isinstance(stored, CreatedState)
        assert stored.instance_id == record.instance_id
        assert cloud.objects[name]["size"] == 2


class TestBindingsApply:
    @pytest.mark.asyncio
    async def test_binding_records_follow_declarations(
        self, engine: Engine, store: InMemoryStateStore
    ) -> None:
        bucket = Bucket(id="b")
        cap = Capability(action="read", resource=bucket)
        await engine.deploy([Queue(id="q", bindings=[cap.bind(prefix="logs/")])])
        (binding,) = _record(store, "q").bindings
        assert (binding.sid, binding.resource_id, binding.props) == (
            "read:b",
            "b",
            {"prefix": "logs/"},
        )

        await engine.deploy([bucket, Queue(id="q")])
        assert _record(store, "q").bindings == []


class _SlowProvider(FakeProvider):
    def __init__(self, cloud: FakeCloud) -> None:
        super().__init__(cloud)
        self.in_flight = 0
        self.peak = 0

    async def create(self, ctx: ProviderContext, request: CreateRequest) -> Attr:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0)
        try:
            return await super().create(ctx, request)
        finally:
            self.in_flight -= 1


@pytest.mark.parametrize(("concurrency", "peak"), [(1, 1), (4, 4)])
@pytest.mark.asyncio
async def test_concurrency_is_bounded(
    store: InMemoryStateStore, cloud: FakeCloud, concurrency: int, peak: int
) -> None:
    provider = _SlowProvider(cloud)
    registry = ProviderRegistry()
    registry.register(Bucket, provider)
    engine = Engine(
        stack="app",
        stage="dev",
        store=store,
        registry=registry,
        concurrency=concurrency,
        retry_policy=NO_RETRY,
    )
    await engine.deploy([Bucket(id=f"b{i}") for i in range(6)])
    assert provider.peak == peak


def test_executor_rejects_zero_concurrency(store: InMemoryStateStore) -> None:
    with pytest.raises(ValueError, match="concurrency"):
        Executor(stack="app", stage="dev", store=store, concurrency=0)
