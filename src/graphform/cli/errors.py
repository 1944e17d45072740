"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from graphform.errors import (
        ApplyCanceled,
        ApplyError,
        CannotReplacePartiallyReplacedResource,
        ConfigError,
        DeleteResourceHasDownstreamDependencies,
        DependencyCycleError,
        InvalidReferenceError,
        StateStoreError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, DeleteResourceHasDownstreamDependencies):
        _err(f"Cannot delete {exc.resource_id}: still used by", fg=fg)
        for dep in exc.dependencies:
            _err(f"  - {dep}", fg=fg)
    elif isinstance(exc, CannotReplacePartiallyReplacedResource | DependencyCycleError):
        _err(f"Plan failed: {exc}", fg=fg)
    elif isinstance(exc, InvalidReferenceError):
        _err(f"Invalid reference: {exc}", fg=fg)
    elif isinstance(exc, StateStoreError):
        _err(f"State error: {exc}", fg=fg)
    elif isinstance(exc, ApplyError):
        result = exc.result
        _err("Apply failed:", fg=fg)
        for key, error in sorted(result.failed.items()):
            _err(f"  - {key}: {error}", fg=fg)
        if result.skipped:
            _err(f"  Not attempted: {', '.join(result.skipped)}", fg=fg)
        s = result.summary()
        parts = [
            f"{n} {verb}"
            for n, verb in (
                (s["create"], "added"),
                (s["update"], "changed"),
                (s["replace"], "replaced"),
                (s["delete"], "destroyed"),
            )
            if n
        ]
        if parts:
            _err(f"  Partial result: {', '.join(parts)}.", fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
