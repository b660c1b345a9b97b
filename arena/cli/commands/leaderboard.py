"""CLI commands for the leaderboard."""

import typer
from rich.console import Console

from arena.cli.api import call
from arena.cli.ui.displays import display_leaderboard, display_ranking

app = typer.Typer(name="leaderboard", help="Leaderboard and rankings")
console = Console()


@app.command("show")
def show_leaderboard(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries to show"),
    offset: int = typer.Option(0, "--offset", "-o", help="Offset for pagination"),
) -> None:
    """Display the global leaderboard."""
    entries = call("GET", "/leaderboard", params={"limit": limit, "offset": offset})
    if entries is None:
        return
    if not entries:
        console.print("[dim]Leaderboard is empty.[/dim]")
        return
    display_leaderboard(entries)
    console.print(f"[dim]Showing {len(entries)} entries (offset {offset})[/dim]")


@app.command("nearby")
def nearby(
    combatant_id: int = typer.Argument(...),
    range_: int = typer.Option(5, "--range", "-r", help="Places above and below"),
) -> None:
    """Show the combatants ranked around you."""
    entries = call("GET", f"/leaderboard/{combatant_id}/nearby", params={"range": range_})
    if entries:
        display_leaderboard(entries, title="Nearby", highlight=combatant_id)


@app.command("me")
def my_ranking(combatant_id: int = typer.Argument(...)) -> None:
    """Show a combatant's ranking."""
    entry = call("GET", f"/rankings/{combatant_id}")
    if entry:
        display_ranking(entry)


@app.command("stats")
def ranking_stats() -> None:
    """Show ranking totals."""
    data = call("GET", "/rankings/stats")
    if data:
        console.print(
            f"Players [bold]{data['players']}[/bold] | avg rating {data['average_rating']:.0f} | "
            f"top rating {data['top_rating']} | battles {data['total_battles']}"
        )
