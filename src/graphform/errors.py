"""Error types."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from graphform.engine.types import ApplyResult


class GraphformError(Exception):
    """Base exception for all graphform errors."""


class ConfigError(GraphformError):
    """Raised for configuration loading / validation errors."""


class MissingSourceError(GraphformError):
    """An expression references a resource absent from the resolved upstream set."""

    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source {source_id} not found")
        self.source_id = source_id


class InvalidReferenceError(GraphformError):
    """A cross-stack reference points at an undeployed stack, stage or resource."""

    def __init__(self, stack: str, stage: str, resource_id: str) -> None:
        super().__init__(
            f"Reference to '{resource_id}' in stack '{stack}' and stage '{stage}' not found. "
            f"Have you deployed '{stage}' of '{stack}'?"
        )
        self.stack = stack
        self.stage = stage
        self.resource_id = resource_id


class StateStoreError(GraphformError):
    """Raised on unexpected state backend failures (never for 'not found')."""


class StateLockError(StateStoreError):
    """Raised when the state lock cannot be acquired or released."""


class UnknownResourceTypeError(GraphformError):
    """Raised when a resource type has no registered provider."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateResourceError(GraphformError):
    """Raised when two different resources are declared with the same id."""

    def __init__(self, resource_id: str) -> None:
        super().__init__(f"Duplicate resource id: {resource_id}")
        self.resource_id = resource_id


class DependencyCycleError(GraphformError):
    """Raised when dependencies contain a cycle."""

    def __init__(self, resource_ids: list[str]) -> None:
        msg = "Dependency cycle detected"
        if resource_ids:
            msg += f": {', '.join(resource_ids)}"
        super().__init__(msg)
        self.resource_ids = resource_ids


class DeleteResourceHasDownstreamDependencies(GraphformError):
    """A resource scheduled for deletion is still needed by surviving resources."""

    def __init__(self, resource_id: str, dependencies: list[str]) -> None:
        super().__init__(
            f"Resource {resource_id} has downstream dependencies: {', '.join(dependencies)}"
        )
        self.resource_id = resource_id
        self.dependencies = dependencies


class CannotReplacePartiallyReplacedResource(GraphformError):
    """A resource whose previous replacement never finished must be replaced again."""

    def __init__(self, resource_id: str) -> None:
        super().__init__(
            f"Resource '{resource_id}' did not finish being replaced in a previous deployment "
            "and is expected to be replaced again in this deployment. "
            "Revert its properties and try again after a successful deployment."
        )
        self.resource_id = resource_id


class RetryableError(GraphformError):
    """Raised by provider hooks for transient faults that are safe to retry."""


class RetryExhaustedError(GraphformError):
    """Raised when a retried call or poll loop runs out of attempts."""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        msg = f"Gave up after {attempts} attempts"
        if last_error is not None:
            msg += f": {last_error}"
        super().__init__(msg)
        self.attempts = attempts
        self.last_error = last_error


class ApplyError(GraphformError):
    """Raised when one or more nodes of a plan failed to apply.

    Carries the partial result (what was applied, what failed and what was
    never attempted) so callers can inspect progress.
    """

    def __init__(self, result: ApplyResult) -> None:
        self.result = result
        failed = ", ".join(sorted(result.failed))
        super().__init__(f"Apply failed on {failed}")


class ApplyCanceled(GraphformError):
    """Raised when an apply is canceled (e.g., Ctrl-C)."""
