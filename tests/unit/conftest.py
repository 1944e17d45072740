"""Shared fixtures for unit tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from graphform.config import load
from graphform.core.store import InMemoryStateStore
from graphform.engine.engine import Engine
from graphform.engine.registry import ProviderRegistry
from graphform.engine.retry import NO_RETRY
from tests.unit.fakes import Bucket, FakeCloud, FakeProvider, Queue

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from graphform.config.schema import Config

_GRAPHFORM_ENV_VARS = ("GRAPHFORM_STAGE", "GRAPHFORM_STATE_ROOT", "GRAPHFORM_LOG")


@pytest.fixture(autouse=True)
def _clean_graphform_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove GRAPHFORM_* env vars so unit tests don't leak host config."""
    for var in _GRAPHFORM_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "graphform.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "graphform.yaml")

    return _make


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def bucket_provider(cloud: FakeCloud) -> FakeProvider:
    return FakeProvider(cloud, replace_on=("region",))


@pytest.fixture
def queue_provider(cloud: FakeCloud) -> FakeProvider:
    return FakeProvider(cloud)


@pytest.fixture
def registry(bucket_provider: FakeProvider, queue_provider: FakeProvider) -> ProviderRegistry:
    reg = ProviderRegistry()
    reg.register(Bucket, bucket_provider)
    reg.register(Queue, queue_provider)
    return reg


@pytest.fixture
def engine(store: InMemoryStateStore, registry: ProviderRegistry) -> Engine:
    return Engine(stack="app", stage="dev", store=store, registry=registry, retry_policy=NO_RETRY)
