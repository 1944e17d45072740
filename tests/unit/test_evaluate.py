from __future__ import annotations

import pytest

from graphform.core.state import CreatedState, CreatingState
from graphform.core.store import InMemoryStateStore
from graphform.errors import InvalidReferenceError, MissingSourceError
from graphform.output.evaluate import EvalContext, evaluate, project
from graphform.output.expr import all_, literal, ref
from tests.unit.fakes import Bucket


@pytest.mark.asyncio
async def test_literal_and_plain_values() -> None:
    assert await evaluate(literal(3), {}) == 3
    assert await evaluate({"a": [1, (2, 3)]}, {}) == {"a": [1, (2, 3)]}


@pytest.mark.asyncio
async def test_resource_ref_and_projection() -> None:
    bucket = Bucket(id="b")
    upstream = {"b": {"arn": "arn:b", "tags": ["x", "y"]}}
    assert await evaluate(bucket.out, upstream) == upstream["b"]
    assert await evaluate(bucket.out.arn, upstream) == "arn:b"
    assert await evaluate(bucket.out.tags[1], upstream) == "y"
    assert await evaluate(bucket.out.missing, upstream) is None


@pytest.mark.asyncio
async def test_containers_are_rebuilt_member_wise() -> None:
    bucket = Bucket(id="b")
    value = {"arn": bucket.out.arn, "list": [bucket.out.arn.apply(len)], "tuple": (1,)}
    result = await evaluate(value, {"b": {"arn": "arn:b"}})
    assert result == {"arn": "arn:b", "list": [5], "tuple": (1,)}


@pytest.mark.asyncio
async def test_sets_are_rebuilt_member_wise() -> None:
    bucket = Bucket(id="b")
    upstream = {"b": {"arn": "arn:b"}}
    assert await evaluate({bucket.out.arn, "static"}, upstream) == {"arn:b", "static"}
    assert await evaluate(frozenset({bucket.out.arn}), upstream) == frozenset({"arn:b"})


@pytest.mark.asyncio
async def test_all_evaluates_children_in_order() -> None:
    a, b = Bucket(id="a"), Bucket(id="b")
    result = await evaluate(all_(b.out.arn, a.out.arn), {"a": {"arn": 1}, "b": {"arn": 2}})
    assert result == [2, 1]


@pytest.mark.asyncio
async def test_missing_source_raises() -> None:
    with pytest.raises(MissingSourceError) as exc_info:
        await evaluate(Bucket(id="b").out.arn, {})
    assert exc_info.value.source_id == "b"


@pytest.mark.asyncio
async def test_side_effect_runs_once_per_context() -> None:
    calls: list[str] = []

    async def lookup(value: str, ctx: EvalContext) -> str:
        calls.append(value)
        return f"{ctx.services['prefix']}{value}"

    bucket = Bucket(id="b")
    effect = bucket.out.arn.effect(lookup)
    ctx = EvalContext(stack="app", stage="dev", services={"prefix": "resolved:"})
    result = await evaluate([effect, effect], {"b": {"arn": "arn:b"}}, ctx)
    assert result == ["resolved:arn:b", "resolved:arn:b"]
    assert calls == ["arn:b"]

    await evaluate(effect, {"b": {"arn": "arn:b"}}, EvalContext(stack="app", stage="dev"))
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_sync_side_effect() -> None:
    effect = literal(2).effect(lambda v, ctx: v * 10)
    assert await evaluate(effect, {}) == 20


@pytest.mark.asyncio
async def test_cross_stack_ref_reads_the_store() -> None:
    store = InMemoryStateStore()
    store.set(
        "network",
        "dev",
        "vpc",
        CreatedState(
            resource_type="vpc", logical_id="vpc", props={}, attr={"vpc_id": "vpc-123"}
        ),
    )
    ctx = EvalContext(stack="app", stage="dev", store=store)
    assert await evaluate(ref("vpc", stack="network").vpc_id, {}, ctx) == "vpc-123"


@pytest.mark.asyncio
async def test_cross_stack_ref_defaults_to_current_stage() -> None:
    store = InMemoryStateStore()
    ctx = EvalContext(stack="app", stage="prod", store=store)
    with pytest.raises(InvalidReferenceError) as exc_info:
        await evaluate(ref("vpc", stack="network"), {}, ctx)
    assert (exc_info.value.stack, exc_info.value.stage) == ("network", "prod")
    assert "Have you deployed 'prod' of 'network'?" in str(exc_info.value)


@pytest.mark.asyncio
async def test_cross_stack_ref_to_a_resource_without_output() -> None:
    store = InMemoryStateStore()
    store.set(
        "network", "dev", "vpc", CreatingState(resource_type="vpc", logical_id="vpc", props={})
    )
    ctx = EvalContext(stack="app", stage="dev", store=store)
    with pytest.raises(InvalidReferenceError) as exc_info:
        await evaluate(ref("vpc", stack="network").vpc_id, {}, ctx)
    assert exc_info.value.resource_id == "vpc"


@pytest.mark.asyncio
async def test_cross_stack_ref_without_store() -> None:
    with pytest.raises(InvalidReferenceError):
        await evaluate(ref("vpc"), {})


def test_project_is_none_safe() -> None:
    assert project(None, "a") is None
    assert project({"a": 1}, "a") == 1
    assert project([1, 2], 5) is None
    assert project([1, 2], -1) == 2
