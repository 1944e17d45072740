"""Plan and apply engine."""

from graphform.engine.apply import Executor, ProgressCallback
from graphform.engine.engine import Engine
from graphform.engine.graph import DependencyGraph
from graphform.engine.plan import Planner
from graphform.engine.provider import (
    CreateRequest,
    DeleteRequest,
    Diff,
    DiffRequest,
    ProviderContext,
    ReadRequest,
    ResourceProvider,
    UpdateRequest,
)
from graphform.engine.registry import ProviderRegistration, ProviderRegistry
from graphform.engine.retry import RetryPolicy, poll_until, retry
from graphform.engine.types import (
    Action,
    ApplyResult,
    Attach,
    Create,
    Delete,
    Detach,
    NoopBind,
    NoopUpdate,
    Plan,
    Replace,
    Update,
)

__all__ = [
    "Action",
    "ApplyResult",
    "Attach",
    "Create",
    "CreateRequest",
    "Delete",
    "DeleteRequest",
    "DependencyGraph",
    "Detach",
    "Diff",
    "DiffRequest",
    "Engine",
    "Executor",
    "NoopBind",
    "NoopUpdate",
    "Plan",
    "Planner",
    "ProgressCallback",
    "ProviderContext",
    "ProviderRegistration",
    "ProviderRegistry",
    "ReadRequest",
    "Replace",
    "ResourceProvider",
    "RetryPolicy",
    "Update",
    "UpdateRequest",
    "poll_until",
    "retry",
]
