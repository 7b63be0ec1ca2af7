"""MindCache CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from mindcache.cli.init import init_cmd
from mindcache.cli.remove import delete_cmd
from mindcache.cli.save import save_cmd
from mindcache.cli.search import search_cmd
from mindcache.cli.status import list_cmd, stats_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("mindcache")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"mindcache {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="mindcache",
    help=(
        "MindCache — local-first content library with semantic search.\n\n"
        "  mindcache save    Store content and index it.\n"
        "  mindcache search  Find saved content by meaning and keywords."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """MindCache — local-first content library with semantic search."""


app.command("init")(init_cmd)
app.command("save")(save_cmd)
app.command("search")(search_cmd)
app.command("delete")(delete_cmd)
app.command("list")(list_cmd)
app.command("stats")(stats_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed MindCache version."""
    typer.echo(f"mindcache {_installed_version()}")


if __name__ == "__main__":
    app()
