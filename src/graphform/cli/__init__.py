"""graphform command line interface."""

from __future__ import annotations

import logging
import sys

import typer

from graphform import __version__
from graphform.config.schema import Settings

app = typer.Typer(
    name="graphform",
    help="Plan and apply a graph of resources against persisted state.",
    no_args_is_help=True,
    add_completion=False,
)

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_VERBOSITY = {1: logging.INFO, 2: logging.DEBUG}
_LEVEL_NAMES = ("CRITICAL", "DEBUG", "ERROR", "INFO", "WARNING")


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(f"graphform {__version__}")
    raise typer.Exit


def _log_level(verbose: int) -> int | None:
    """``GRAPHFORM_LOG`` wins over ``-v`` flags; ``None`` leaves logging alone."""
    name = (Settings().log or "").upper()
    if not name:
        return _VERBOSITY.get(min(verbose, 2)) if verbose else None
    if name not in _LEVEL_NAMES:
        print(
            f"WARNING: invalid GRAPHFORM_LOG level '{name}', "
            f"expected one of {', '.join(_LEVEL_NAMES)}; defaulting to INFO",
            file=sys.stderr,
        )
        return logging.INFO
    return logging.getLevelName(name)


def _configure_logging(verbose: int) -> None:
    """Route graphform's loggers to stderr; other libraries stay at WARNING."""
    level = _log_level(verbose)
    if level is None:
        return
    logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    logging.getLogger("graphform").setLevel(level)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase log verbosity (-v info, -vv debug).",
    ),
) -> None:
    _ = version
    _configure_logging(verbose)


from graphform.cli import commands as _commands  # noqa: E402, F401
