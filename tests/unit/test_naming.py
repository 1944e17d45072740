from __future__ import annotations

from graphform.core.naming import physical_name
from graphform.engine.provider import ProviderContext

_ZERO = "00" * 16


def test_default_prefix_and_suffix() -> None:
    name = physical_name(stack="app", stage="dev", resource_id="bucket", instance_id=_ZERO)
    assert name == "app-bucket-dev-aaaaaaaaaaaaaaaa"


def test_same_instance_same_name() -> None:
    kw = {"stack": "app", "stage": "dev", "resource_id": "b", "instance_id": "ab" * 16}
    assert physical_name(**kw) == physical_name(**kw)


def test_new_instance_new_name() -> None:
    a = physical_name(stack="app", stage="dev", resource_id="b", instance_id=_ZERO)
    b = physical_name(stack="app", stage="dev", resource_id="b", instance_id="ff" * 16)
    assert a != b
    assert a.rsplit("-", 1)[0] == b.rsplit("-", 1)[0]


def test_truncates_prefix_never_suffix() -> None:
    name = physical_name(
        stack="app", stage="dev", resource_id="bucket", instance_id=_ZERO, max_length=20
    )
    assert name == "app-aaaaaaaaaaaaaaaa"


def test_sanitizes_and_lowercases() -> None:
    name = physical_name(
        stack="App", stage="dev", resource_id="my_bucket.v2", instance_id=_ZERO, lowercase=True
    )
    assert name == "app-my-bucket-v2-dev-aaaaaaaaaaaaaaaa"


def test_custom_prefix_and_suffix_length() -> None:
    name = physical_name(
        stack="app",
        stage="dev",
        resource_id="b",
        instance_id=_ZERO,
        prefix="logs-",
        suffix_length=8,
    )
    assert name == "logs-aaaaaaaa"


def test_provider_context_uses_its_instance() -> None:
    ctx = ProviderContext(stack="app", stage="dev", resource_id="bucket", instance_id=_ZERO)
    assert ctx.physical_name() == "app-bucket-dev-aaaaaaaaaaaaaaaa"
    assert ctx.physical_name(delimiter="_").startswith("app_bucket_dev_")
