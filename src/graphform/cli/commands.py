"""CLI command implementations."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from graphform.cli import app
from graphform.cli.errors import handle_error

if TYPE_CHECKING:
    from graphform.config import Project
    from graphform.engine.types import ApplyResult, Plan

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file or its directory."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

DEFAULT_CONFIG = Path("graphform.yaml")

state_app = typer.Typer(help="Inspect persisted resource state.", no_args_is_help=True)
app.add_typer(state_app, name="state")


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _apply_with_progress(plan_obj: Plan, project: Project, *, color: bool) -> ApplyResult:
    """Apply a plan with a Rich progress bar and per-resource status lines."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from graphform.cli.formatting import _ACTION_STYLES
    from graphform.config import apply
    from graphform.engine.types import Action

    console = Console(no_color=not color)
    actionable = [n for n in plan_obj.nodes.values() if n.action is not Action.NOOP]

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=len(actionable))

        def on_progress(key: str, action: Action, event: str) -> None:
            if action is Action.NOOP:
                return
            s = _ACTION_STYLES[action.value]
            match event:
                case "start":
                    progress.update(task, description=f"{key}: {s.progress_verb}...")
                case "done":
                    progress.console.print(f"  {key}: {s.done_verb}")
                    progress.advance(task)
                case "failed":
                    progress.console.print(f"  {key}: failed")
                    progress.advance(task)

        return apply(plan_obj, project, progress=on_progress)


def _confirm_and_apply(
    plan_obj: Plan,
    project: Project,
    *,
    color: bool,
    auto_approve: bool,
    confirm_msg: str,
    empty_msg: str,
) -> None:
    """Shared flow: show plan -> confirm -> apply with progress -> print summary.

    Exits with code 0 if no actionable changes.
    """
    from graphform.cli.formatting import format_apply_summary, format_plan, format_plan_summary

    if not plan_obj.has_changes():
        typer.echo(empty_msg)
        raise typer.Exit(0)

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm(confirm_msg, abort=True)
        except typer.Abort as e:
            typer.echo("Apply canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        result = _apply_with_progress(plan_obj, project, color=color)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo()
    typer.echo(format_apply_summary(result.summary(), color=color))


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    destroy: Annotated[
        bool,
        typer.Option("--destroy", help="Plan the deletion of every managed resource."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """Show changes required by the current configuration."""
    from graphform.cli.formatting import format_plan, format_plan_summary
    from graphform.config import open_project
    from graphform.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        project = open_project(config)
        plan_obj = plan_fn(project, destroy=destroy)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))

    if plan_obj.has_changes():
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Apply the changes required by the current configuration."""
    from graphform.config import open_project
    from graphform.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        project = open_project(config)
        plan_obj = plan_fn(project)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        project,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you want to apply these changes?",
        empty_msg="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Destroy all managed resources."""
    from graphform.config import open_project
    from graphform.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        project = open_project(config)
        plan_obj = plan_fn(project, destroy=True)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        project,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you really want to destroy all resources?",
        empty_msg="No resources to destroy.",
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Re-read resource outputs from their providers."""
    from graphform.cli.formatting import format_refresh
    from graphform.config import open_project
    from graphform.config import refresh as refresh_fn

    color = _use_color(no_color)
    try:
        project = open_project(config)
        changed = refresh_fn(project)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not changed:
        typer.echo("No changes. State is up-to-date.")
        raise typer.Exit(0)

    typer.echo(format_refresh(changed, color=color))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm("Do you want to update the state?", abort=True)
        except typer.Abort as e:
            typer.echo("Refresh canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        changed = refresh_fn(project, persist=True)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    count = len(changed)
    typer.echo(f"State refreshed. {count} resource{'s' if count != 1 else ''} updated.")


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Validate the configuration and program without touching providers."""
    from graphform.cli.formatting import styler
    from graphform.config import open_project

    color = _use_color(no_color)
    try:
        project = open_project(config)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    count = len(project.program.resources)
    typer.echo(
        styler(color)(
            f"Configuration is valid. {count} resource{'s' if count != 1 else ''} declared.",
            fg="green",
        )
    )


@state_app.command(name="list")
def state_list(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """List the resources recorded for the configured stack and stage."""
    from graphform.config import load, store_from_config

    color = _use_color(no_color)
    try:
        cfg = load(config)
        store = store_from_config(cfg)
        records = [
            (rid, store.get(cfg.stack, cfg.stage, rid)) for rid in store.list(cfg.stack, cfg.stage)
        ]
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not records:
        typer.echo(f"No resources recorded for {cfg.stack}/{cfg.stage}.")
        return
    for rid, record in records:
        if record is None:
            continue
        typer.echo(f"{rid}\t{record.resource_type}\t{record.status}")


@state_app.command(name="show")
def state_show(
    resource_id: Annotated[str, typer.Argument(help="Logical id of the resource.")],
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Print the persisted record of one resource as JSON."""
    from graphform.config import load, store_from_config
    from graphform.core.state import dump_state

    color = _use_color(no_color)
    try:
        cfg = load(config)
        record = store_from_config(cfg).get(cfg.stack, cfg.stage, resource_id)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if record is None:
        typer.echo(f"No state recorded for '{resource_id}'.", err=True)
        raise typer.Exit(1)
    typer.echo(dump_state(record), nl=False)
