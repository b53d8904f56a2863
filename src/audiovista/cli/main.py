"""
Main CLI entry point for audiovista.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.panel import Panel

from audiovista import __version__
from audiovista.cli.commands.api import api_app
from audiovista.cli.commands.audio import app as audio_app

console = Console()

app = typer.Typer(
    name="audiovista",
    help="Audio cache and streaming engine",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Add subcommands
app.add_typer(api_app, name="api", help="API server management commands")
app.add_typer(audio_app, name="audio", help="Audio cache commands")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(
        Panel(
            f"[bold blue]audiovista[/bold blue] v{__version__}",
            title="Version",
            border_style="blue",
        )
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", "-v", help="Show version and exit"
    ),
) -> None:
    """
    audiovista - audio cache and streaming engine.

    Downloads audio tracks into a size-bounded local cache and serves them,
    or proxies the remote media, to feed reader clients.
    """
    if version:
        console.print(f"audiovista v{__version__}")
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print("[yellow]Use 'audiovista --help' for available commands[/yellow]")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
