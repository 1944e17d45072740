"""Tests for the synchronous project API in ``graphform.config``."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from graphform.config import (
    ProgramLoadError,
    apply,
    load,
    open_project,
    plan,
    plan_and_apply,
    refresh,
    store_from_config,
)
from graphform.core.state import CreatedState
from graphform.core.store import InMemoryStateStore, LocalStateStore
from graphform.engine.types import Action
from tests.unit.fakes import write_project

if TYPE_CHECKING:
    from pathlib import Path


class TestStoreFromConfig:
    def test_local_backend(self, tmp_path: Path):
        config = load(write_project(tmp_path))
        store = store_from_config(config)
        assert isinstance(store, LocalStateStore)
        assert store.root == tmp_path / ".graphform"

    def test_memory_backend(self, tmp_path: Path):
        config = load(write_project(tmp_path, backend="memory"))
        assert isinstance(store_from_config(config), InMemoryStateStore)


class TestOpenProject:
    def test_builds_engine_for_stack_and_stage(self, tmp_path: Path):
        project = open_project(write_project(tmp_path, count=2))

        assert project.config.stack == "demo"
        assert project.engine.stack == "demo"
        assert project.engine.stage == "dev"
        assert [r.id for r in project.program.resources] == ["topic0", "topic1"]

    def test_accepts_directory(self, tmp_path: Path):
        write_project(tmp_path)
        assert open_project(tmp_path).config.program == "demo_program:build"

    def test_program_errors_propagate(self, tmp_path: Path):
        write_project(tmp_path)
        config_file = tmp_path / "graphform.yaml"
        config_file.write_text("stack: demo\nprogram: demo_program:broken\n")
        with pytest.raises(ProgramLoadError, match="cannot build"):
            open_project(config_file)


class TestPlanApply:
    def test_plan_then_apply(self, tmp_path: Path):
        project = open_project(write_project(tmp_path, count=2))

        plan_obj = plan(project)
        assert plan_obj.actions() == {"topic0": "create", "topic1": "create"}

        result = apply(plan_obj, project)
        assert result.ok
        assert result.applied == {"topic0": Action.CREATE, "topic1": Action.CREATE}

        record = project.engine.store.get("demo", "dev", "topic0")
        assert isinstance(record, CreatedState)
        assert record.props == {"index": 0}
        assert record.attr["arn"].startswith("arn:demo-topic0-dev-")

    def test_second_run_is_noop(self, tmp_path: Path):
        config_file = write_project(tmp_path)
        plan_and_apply(open_project(config_file))

        assert not plan(open_project(config_file)).has_changes()

    def test_progress_callback(self, tmp_path: Path):
        project = open_project(write_project(tmp_path))
        events: list[tuple[str, str]] = []

        def progress(key: str, _action: Action, event: str) -> None:
            events.append((key, event))

        apply(plan(project), project, progress=progress)
        assert ("topic0", "start") in events
        assert ("topic0", "done") in events

    def test_destroy(self, tmp_path: Path):
        config_file = write_project(tmp_path, count=2)
        plan_and_apply(open_project(config_file))

        project = open_project(config_file)
        destroy_plan = plan(project, destroy=True)
        assert destroy_plan.actions() == {"topic0": "delete", "topic1": "delete"}

        result = apply(destroy_plan, project)
        assert result.summary()["delete"] == 2
        assert project.engine.resources() == {}

    def test_shrinking_the_program_deletes_orphans(self, tmp_path: Path):
        config_file = write_project(tmp_path, count=2)
        plan_and_apply(open_project(config_file))

        write_project(tmp_path, count=1)
        assert plan(open_project(config_file)).actions() == {
            "topic0": "noop",
            "topic1": "delete",
        }

    def test_refresh_without_drift(self, tmp_path: Path):
        config_file = write_project(tmp_path)
        plan_and_apply(open_project(config_file))

        assert refresh(open_project(config_file)) == {}
