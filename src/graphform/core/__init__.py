"""Persisted resource state and its stores."""

from graphform.core.lock import StateLock
from graphform.core.naming import physical_name
from graphform.core.state import (
    AppliedSnapshot,
    BindingRecord,
    CreatedState,
    CreatingState,
    DeletingState,
    ReplacedState,
    ReplacingState,
    ResourceState,
    UpdatedState,
    UpdatingState,
    new_instance_id,
    stable_props,
)
from graphform.core.store import InMemoryStateStore, LocalStateStore, StateStore

__all__ = [
    "AppliedSnapshot",
    "BindingRecord",
    "CreatedState",
    "CreatingState",
    "DeletingState",
    "InMemoryStateStore",
    "LocalStateStore",
    "ReplacedState",
    "ReplacingState",
    "ResourceState",
    "StateLock",
    "StateStore",
    "UpdatedState",
    "UpdatingState",
    "new_instance_id",
    "physical_name",
    "stable_props",
]
