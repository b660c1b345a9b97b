"""Main CLI application for Arena."""

import typer
from rich.console import Console

from arena import __version__
from arena.cli.api import call
from arena.cli.commands import battle, combatant, leaderboard, queue
from arena.utils.config import config
from arena.utils.log import setup_logging

# Create main app
app = typer.Typer(
    name="arena",
    help="Arena - battle, matchmaking and ranking client",
    no_args_is_help=True,
)

# Register sub-commands
app.add_typer(combatant.app, name="combatant", help="Create and manage combatants")
app.add_typer(queue.app, name="queue", help="Matchmaking queue")
app.add_typer(battle.app, name="battle", help="Turn-based and text battles")
app.add_typer(leaderboard.app, name="leaderboard", help="Leaderboard and rankings")

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Arena - fight, climb the ladder."""
    setup_logging("DEBUG" if verbose else config.log_level)


@app.command("version")
def show_version() -> None:
    """Show version information."""
    console.print(f"Arena v{__version__}")


@app.command("status")
def server_status() -> None:
    """Check that the server is reachable."""
    data = call("GET", "/health")
    if data:
        console.print(f"[green]Server is {data.get('status', 'up')}[/green]")


@app.command("computers")
def list_computers() -> None:
    """List the computer opponents."""
    data = call("GET", "/computers")
    for computer in data or []:
        console.print(
            f"#{computer['id']:<4} [bold]{computer['name']}[/bold] "
            f"{computer['archetype']} [cyan]{computer['rating']}[/cyan]"
        )


if __name__ == "__main__":
    app()
