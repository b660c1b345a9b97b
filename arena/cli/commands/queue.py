"""CLI commands for the matchmaking queue."""

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from arena.cli.api import call
from arena.cli.ui.displays import display_match_result
from arena.core.matchmaking import MatchPreference

app = typer.Typer(name="queue", help="Matchmaking queue")
console = Console()

AccountOption = typer.Option(..., "--account", "-a", envvar="ARENA_ACCOUNT", help="Your account id")


@app.command("join")
def join_queue(
    combatant_id: int = typer.Argument(...),
    preference: MatchPreference = typer.Option(MatchPreference.RANDOM, "--preference", "-p"),
    account: str = AccountOption,
) -> None:
    """Look for an opponent, or wait in the queue."""
    data = call(
        "POST", "/queue", account,
        json={"combatant_id": combatant_id, "preference": preference.value},
    )
    if data:
        display_match_result(data)


@app.command("leave")
def leave_queue(
    combatant_id: int = typer.Argument(...),
    account: str = AccountOption,
) -> None:
    """Stop waiting for an opponent."""
    if call("DELETE", f"/queue/{combatant_id}", account) is not None:
        console.print("[green]Left the queue.[/green]")


@app.command("stats")
def queue_stats() -> None:
    """Show who is waiting and for how long."""
    data = call("GET", "/queue/stats")
    if data is None:
        return
    console.print(f"Waiting: [bold]{data['size']}[/bold]  Avg wait: {data['average_wait_seconds']:.0f}s")
    if data["entries"]:
        table = Table(box=box.SIMPLE)
        table.add_column("Combatant", justify="right")
        table.add_column("Rating", justify="right", style="cyan")
        table.add_column("Preference")
        table.add_column("Waiting", justify="right")
        for entry in data["entries"]:
            table.add_row(
                str(entry["combatant_id"]),
                str(entry["rating"]),
                entry["preference"],
                f"{entry['wait_seconds']}s",
            )
        console.print(table)
