"""Resource type registry for provider dispatch."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from graphform.errors import UnknownResourceTypeError

if TYPE_CHECKING:
    from graphform.engine.provider import ResourceProvider
    from graphform.resources.base import Resource


@dataclass(frozen=True)
class ProviderRegistration:
    resource_type: str
    model: type[Resource]
    provider: ResourceProvider[Any]


class ProviderRegistry:
    """Registry mapping resource_type -> (model, provider), built at startup."""

    def __init__(self) -> None:
        self._registrations: dict[str, ProviderRegistration] = {}

    def register(self, model: type[Resource], provider: ResourceProvider[Any]) -> None:
        resource_type = getattr(model, "resource_type", None)
        if not isinstance(resource_type, str) or not resource_type:
            raise ValueError("Resource model must define a non-empty classvar `resource_type`")

        if resource_type in self._registrations:
            raise ValueError(f"Resource type already registered: {resource_type}")

        self._registrations[resource_type] = ProviderRegistration(
            resource_type=resource_type,
            model=model,
            provider=provider,
        )

    def get(self, resource_type: str) -> ProviderRegistration:
        try:
            return self._registrations[resource_type]
        except KeyError as e:
            raise UnknownResourceTypeError(resource_type) from e

    def provider(self, resource_type: str) -> ResourceProvider[Any]:
        return self.get(resource_type).provider

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._registrations

    def types(self) -> list[str]:
        return sorted(self._registrations)
