from __future__ import annotations

import pytest

from graphform.engine.provider import ResourceProvider
from graphform.engine.registry import ProviderRegistry
from graphform.errors import UnknownResourceTypeError
from graphform.resources.base import Resource
from tests.unit.fakes import Bucket, FakeCloud, FakeProvider, Queue


def test_register_and_lookup() -> None:
    registry = ProviderRegistry()
    provider = FakeProvider(FakeCloud())
    registry.register(Bucket, provider)

    registration = registry.get("test_bucket")
    assert registration.model is Bucket
    assert registration.provider is provider
    assert registry.provider("test_bucket") is provider
    assert "test_bucket" in registry
    assert "test_queue" not in registry


def test_types_are_sorted() -> None:
    registry = ProviderRegistry()
    registry.register(Queue, FakeProvider(FakeCloud()))
    registry.register(Bucket, FakeProvider(FakeCloud()))
    assert registry.types() == ["test_bucket", "test_queue"]


def test_unknown_type_raises() -> None:
    with pytest.raises(UnknownResourceTypeError, match="nope"):
        ProviderRegistry().get("nope")


def test_duplicate_registration_raises() -> None:
    registry = ProviderRegistry()
    registry.register(Bucket, FakeProvider(FakeCloud()))
    with pytest.raises(ValueError, match="already registered"):
        registry.register(Bucket, FakeProvider(FakeCloud()))


def test_model_without_resource_type_raises() -> None:
    class Untyped(Resource):
        pass

    with pytest.raises(ValueError, match="resource_type"):
        ProviderRegistry().register(Untyped, ResourceProvider())
