"""Loading the user program that declares a stack's resources."""

from __future__ import annotations

import importlib
import importlib.metadata
import importlib.util
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from graphform.engine.registry import ProviderRegistry
from graphform.errors import ConfigError
from graphform.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import ModuleType

ENTRY_POINT_GROUP = "graphform.programs"


class ProgramLoadError(ConfigError):
    """Raised when the program cannot be resolved or returns something invalid."""


@dataclass
class Program:
    """What a program callable returns: the desired graph and how to provision it."""

    resources: list[Resource]
    registry: ProviderRegistry
    # Made available to side-effecting expressions and provider hooks.
    services: dict[str, Any] = field(default_factory=dict)


def _load_local_module(module_path: str, config_dir: Path) -> ModuleType:
    """Load a Python module from a file relative to *config_dir*."""
    parts = module_path.split(".")
    candidates = [
        config_dir / Path(*parts).with_suffix(".py"),
        config_dir / Path(*parts) / "__init__.py",
    ]
    file_path = next((p for p in candidates if p.exists()), None)
    if file_path is None:
        raise ProgramLoadError(f"Module '{module_path}' not found relative to {config_dir}")

    spec = importlib.util.spec_from_file_location(module_path, file_path)
    if spec is None or spec.loader is None:
        raise ProgramLoadError(f"Failed to create module spec for '{file_path}'")
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def resolve_callable(call: str, config_dir: Path) -> Callable[..., Program]:
    """Resolve a *call* string to a Python callable.

    Resolution order:

    1. No ``:``: entry-point lookup (group ``graphform.programs``).
    2. Has ``:``: split into ``module_path:function_name``.
       a. Try ``importlib.import_module`` (installed packages).
       b. Fall back to ``spec_from_file_location`` (local files relative to *config_dir*).
    """
    if ":" not in call:
        eps = list(importlib.metadata.entry_points(group=ENTRY_POINT_GROUP, name=call))
        if not eps:
            raise ProgramLoadError(
                f"No entry point found for '{call}' in group '{ENTRY_POINT_GROUP}'"
            )
        return eps[0].load()

    module_path, _, function_name = call.rpartition(":")
    if not module_path or not function_name:
        raise ProgramLoadError(
            f"Invalid call syntax '{call}': expected 'module.path:function_name'"
        )

    try:
        mod = importlib.import_module(module_path)
    except ModuleNotFoundError:
        mod = _load_local_module(module_path, config_dir)

    obj = getattr(mod, function_name, None)
    if not callable(obj):
        raise ProgramLoadError(
            f"'{call}' is not a callable attribute"
            if obj is not None
            else f"Module has no attribute '{function_name}' (from '{call}')"
        )
    return obj


def load_program(call: str, config_dir: Path, kwargs: dict[str, Any] | None = None) -> Program:
    """Resolve and call the program, validating what it returns."""
    fn = resolve_callable(call, config_dir)
    try:
        result = fn(**(kwargs or {}))
    except ProgramLoadError:
        raise
    except Exception as exc:
        raise ProgramLoadError(f"Program '{call}' raised {type(exc).__name__}: {exc}") from exc

    if not isinstance(result, Program):
        raise ProgramLoadError(f"Program '{call}' must return a Program")
    if not all(isinstance(r, Resource) for r in result.resources):
        raise ProgramLoadError(f"Program '{call}' returned a non-Resource in its resources")
    return result
