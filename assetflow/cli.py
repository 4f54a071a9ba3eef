"""Command-line interface for Assetflow.

This module defines the CLI commands using the Click framework. Every command
runs a task of the default graph for the project in the current directory.

Commands:
- build: Regenerate every output once.
- images: Copy images only.
- watch / default: Build, then serve with live reload and rerun tasks on change.
- clean / cleancss: Delete generated markup / stylesheets.
- showcase: Regenerate the examples index page.
- svg-hb (alias svg-partials): Regenerate SVG template partials (not part of build).
- run: Run any tasks in series.
- tasks: List the registered tasks.

Running ``assetflow`` without a command is the same as ``assetflow default``.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import click

from . import __version__
from .config import load_config
from .graph import TaskFailed, TaskGraph, TaskGraphError
from .logging_setup import setup_logging


def _load_graph(port: int | None = None, ws_port: int | None = None) -> TaskGraph:
    project_root = Path.cwd()
    config = load_config(project_root)
    if port is not None:
        config["port"] = port
        if ws_port is None:
            config["ws_port"] = None
    if ws_port is not None:
        config["ws_port"] = ws_port

    from .tasks import create_default_graph

    return create_default_graph(project_root, config)


def _run(names: Sequence[str], graph: TaskGraph | None = None) -> None:
    """Run tasks in series and turn failures into a non-zero exit status."""
    graph = graph or _load_graph()
    try:
        for name in names:
            graph.run(name)
    except TaskGraphError as exc:
        raise click.ClickException(str(exc)) from None
    except TaskFailed as exc:
        project_root = graph.context.project_root
        click.echo(click.style(f"Task failed: {exc.task}", fg="red", bold=True), err=True)
        for error in exc.errors:
            try:
                rel_path = error.source_path.relative_to(project_root)
            except ValueError:
                rel_path = error.source_path
            click.echo(click.style(f"  File: {rel_path}", fg="yellow"), err=True)
            click.echo(click.style(f"  Error: {error.message}", fg="white"), err=True)
        raise SystemExit(1) from None


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="assetflow")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Assetflow static-site asset pipeline."""
    setup_logging(verbose)
    if ctx.invoked_subcommand is None:
        _run(["default"])


@cli.command()
def build():
    """Build everything once."""
    _run(["build"])


@cli.command()
def images():
    """Copy images only."""
    _run(["images"])


def _watch_options(func):
    func = click.option(
        "--ws-port",
        type=int,
        required=False,
        help="Port for the live reload websocket (overrides assetflow.yaml ws_port)",
    )(func)
    func = click.option(
        "--port",
        type=int,
        required=False,
        help="Port to serve the output on (overrides assetflow.yaml)",
    )(func)
    return func


@cli.command()
@_watch_options
def watch(port: int | None, ws_port: int | None):
    """Build, then watch sources with live reload."""
    _run(["watch"], _load_graph(port, ws_port))


@cli.command()
@_watch_options
def default(port: int | None, ws_port: int | None):
    """Alias for watch."""
    _run(["default"], _load_graph(port, ws_port))


@cli.command()
def clean():
    """Delete generated markup."""
    _run(["clean"])


@cli.command()
def cleancss():
    """Delete generated stylesheets."""
    _run(["cleancss"])


@cli.command()
def showcase():
    """Regenerate the examples index page."""
    _run(["showcase"])


@cli.command("svg-hb")
def svg_hb():
    """Regenerate SVG template partials (not part of build)."""
    _run(["svg-hb"])


cli.add_command(svg_hb, name="svg-partials")


@cli.command("run")
@click.argument("names", nargs=-1, required=True)
def run_tasks(names: tuple[str, ...]):
    """Run the named tasks in series."""
    _run(names)


@cli.command("tasks")
def list_tasks():
    """List the registered tasks."""
    graph = _load_graph()
    width = max(len(name) for name in graph.tasks)
    for name in sorted(graph.tasks):
        task = graph.tasks[name]
        description = task.description.splitlines()[0] if task.description else ""
        click.echo(f"{name.ljust(width)}  {description}")


def main():
    """Entry point for the CLI application."""
    cli()
