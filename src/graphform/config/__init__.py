"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

from graphform.config.loader import load_config
from graphform.config.program import Program, ProgramLoadError, load_program
from graphform.config.schema import Config, ExecutionConfig, Settings, StateConfig
from graphform.core.store import InMemoryStateStore, LocalStateStore
from graphform.engine.engine import Engine
from graphform.errors import ConfigError

if TYPE_CHECKING:
    from pathlib import Path

    from graphform.core.state import Attr
    from graphform.core.store import StateStore
    from graphform.engine.apply import ProgressCallback
    from graphform.engine.types import ApplyResult, Plan

__all__ = [
    "Config",
    "ConfigError",
    "ExecutionConfig",
    "Program",
    "ProgramLoadError",
    "Project",
    "Settings",
    "StateConfig",
    "apply",
    "load",
    "load_config",
    "open_project",
    "plan",
    "plan_and_apply",
    "refresh",
]


@dataclass
class Project:
    """A loaded configuration, its program and the engine that provisions it."""

    config: Config
    program: Program
    engine: Engine


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def store_from_config(config: Config) -> StateStore:
    match config.state.backend:
        case "local":
            return LocalStateStore(config.state_root)
        case "memory":
            return InMemoryStateStore()
        case other:
            raise ConfigError(f"Unknown state backend: {other}")


def _engine_from_config(config: Config, program: Program) -> Engine:
    """Build an ``Engine`` from a ``Config`` and the program's registry."""
    return Engine(
        stack=config.stack,
        stage=config.stage,
        store=store_from_config(config),
        registry=program.registry,
        concurrency=config.execution.concurrency,
        retry_policy=config.execution.retry_policy(),
        services=program.services,
    )


def open_project(path: Path | str) -> Project:
    """Load the configuration at *path*, run its program and build the engine."""
    config = load_config(path)
    program = load_program(config.program, config.config_dir, config.with_)
    return Project(config=config, program=program, engine=_engine_from_config(config, program))


def plan(project: Project, *, destroy: bool = False) -> Plan:
    """Plan changes for the given project."""
    resources = [] if destroy else project.program.resources
    return asyncio.run(project.engine.plan(resources, destroy=destroy))


def apply(
    plan_obj: Plan, project: Project, *, progress: ProgressCallback | None = None
) -> ApplyResult:
    """Apply a previously computed plan."""
    return asyncio.run(project.engine.apply(plan_obj, progress=progress))


def plan_and_apply(project: Project, *, destroy: bool = False) -> ApplyResult:
    """Plan and apply in one step."""
    plan_obj = plan(project, destroy=destroy)
    return apply(plan_obj, project)


def refresh(project: Project, *, persist: bool = False) -> dict[str, Attr | None]:
    """Re-read outputs from providers; returns what drifted."""
    return asyncio.run(project.engine.refresh(persist=persist))
