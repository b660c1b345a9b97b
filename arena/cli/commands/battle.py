"""CLI commands for battles.

All battle interactions go through the Arena server. The CLI acts as
a thin client that sends requests and renders the results.
"""

from typing import Optional

import typer
from rich.console import Console

from arena.cli.api import call
from arena.cli.ui.displays import display_battle, display_match_result, display_replay

app = typer.Typer(name="battle", help="Turn-based and text battles")
console = Console()

AccountOption = typer.Option(..., "--account", "-a", envvar="ARENA_ACCOUNT", help="Your account id")


@app.command("challenge")
def challenge(
    combatant_id: int = typer.Argument(..., help="Your combatant"),
    target_id: int = typer.Argument(..., help="Combatant to challenge"),
    account: str = AccountOption,
) -> None:
    """Challenge an online or computer combatant directly."""
    data = call(
        "POST", "/challenge", account,
        json={"combatant_id": combatant_id, "target_id": target_id},
    )
    if data:
        display_match_result(data)


@app.command("show")
def show_battle(battle_id: int = typer.Argument(...)) -> None:
    """Show a battle."""
    data = call("GET", f"/battles/{battle_id}")
    if data:
        display_battle(data)


@app.command("act")
def act(
    battle_id: int = typer.Argument(...),
    combatant_id: int = typer.Argument(...),
    ability: Optional[int] = typer.Option(None, "--ability", "-s", help="Use an ability by id"),
    defend: bool = typer.Option(False, "--defend", "-d", help="Guard against the next hit"),
    account: str = AccountOption,
) -> None:
    """Take your turn: attack by default, or use an ability, or defend."""
    if ability is not None and defend:
        console.print("[red]Choose either --ability or --defend, not both.[/red]")
        raise typer.Exit(1)

    if ability is not None:
        command = {"kind": "ability", "ability_id": ability}
    elif defend:
        command = {"kind": "defend"}
    else:
        command = {"kind": "attack"}

    data = call(
        "POST", f"/battles/{battle_id}/actions", account,
        json={"combatant_id": combatant_id, "command": command},
    )
    if data:
        for action in data["applied"]:
            console.print(f"[bold]>[/bold] {action['message']}")
        display_battle(data["battle"], last_actions=0)


@app.command("surrender")
def surrender(
    battle_id: int = typer.Argument(...),
    combatant_id: int = typer.Argument(...),
    account: str = AccountOption,
) -> None:
    """Concede a running battle."""
    data = call(
        "POST", f"/battles/{battle_id}/surrender", account,
        json={"combatant_id": combatant_id},
    )
    if data:
        display_battle(data, last_actions=0)


@app.command("text")
def text_battle(
    combatant_id: int = typer.Argument(..., help="Your combatant"),
    opponent_id: int = typer.Argument(..., help="Opponent combatant"),
    text: str = typer.Argument(..., help="Your battle line (max 100 characters)"),
    opponent_text: Optional[str] = typer.Option(None, "--opponent-text", help="Opponent's line"),
    account: str = AccountOption,
) -> None:
    """Fight a one-shot battle decided by a judge."""
    data = call(
        "POST", "/battles/text", account,
        json={
            "combatant_id": combatant_id,
            "text": text,
            "opponent_id": opponent_id,
            "opponent_text": opponent_text,
        },
    )
    if data:
        display_battle(data)


@app.command("replay")
def replay(battle_id: int = typer.Argument(...)) -> None:
    """Replay a settled battle."""
    data = call("GET", f"/battles/{battle_id}/replay")
    if data:
        display_replay(data)


@app.command("stats")
def battle_stats() -> None:
    """Show battle totals."""
    data = call("GET", "/battles/stats")
    if data:
        console.print(
            f"Total [bold]{data['total']}[/bold] | waiting {data['waiting']} | "
            f"in progress {data['in_progress']} | finished {data['finished']} | "
            f"cancelled {data['cancelled']} | avg turns {data['average_turns']:.1f}"
        )
