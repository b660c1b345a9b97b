"""CLI commands for managing combatants."""

import typer
from rich.console import Console

from arena.cli.api import call
from arena.cli.ui.displays import display_combatant
from arena.core.combatant import Archetype

app = typer.Typer(name="combatant", help="Create and manage combatants")
console = Console()

AccountOption = typer.Option(..., "--account", "-a", envvar="ARENA_ACCOUNT", help="Your account id")


@app.command("create")
def create_combatant(
    name: str = typer.Argument(..., help="Combatant name"),
    archetype: Archetype = typer.Option(Archetype.WARRIOR, "--archetype", "-t"),
    account: str = AccountOption,
) -> None:
    """Create a new combatant."""
    data = call("POST", "/combatants", account, json={"name": name, "archetype": archetype.value})
    if data:
        console.print(f"[green]Created {data['name']} (#{data['id']})[/green]")
        display_combatant(data)


@app.command("list")
def list_combatants(account: str = AccountOption) -> None:
    """List your combatants."""
    data = call("GET", "/combatants", account)
    if data is None:
        return
    if not data:
        console.print("[dim]No combatants yet. Create one with 'arena combatant create'.[/dim]")
        return
    for combatant in data:
        console.print(
            f"#{combatant['id']:<4} [bold]{combatant['name']}[/bold] "
            f"{combatant['archetype']} Lv{combatant['level']} [cyan]{combatant['rating']}[/cyan]"
        )


@app.command("show")
def show_combatant(combatant_id: int = typer.Argument(...)) -> None:
    """Show a combatant."""
    data = call("GET", f"/combatants/{combatant_id}")
    if data:
        display_combatant(data)


@app.command("rename")
def rename_combatant(
    combatant_id: int = typer.Argument(...),
    name: str = typer.Argument(...),
    account: str = AccountOption,
) -> None:
    """Rename a combatant."""
    data = call("PATCH", f"/combatants/{combatant_id}", account, json={"name": name})
    if data:
        console.print(f"[green]Renamed to {data['name']}[/green]")


@app.command("delete")
def delete_combatant(
    combatant_id: int = typer.Argument(...),
    account: str = AccountOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a combatant and its history."""
    if not yes and not typer.confirm(f"Delete combatant #{combatant_id}?"):
        raise typer.Abort()
    if call("DELETE", f"/combatants/{combatant_id}", account) is not None:
        console.print(f"[green]Deleted combatant #{combatant_id}[/green]")


@app.command("online")
def set_online(
    combatant_id: int = typer.Argument(...),
    offline: bool = typer.Option(False, "--offline", help="Go offline instead"),
    account: str = AccountOption,
) -> None:
    """Mark a combatant as available for direct challenges."""
    data = call("PUT", f"/combatants/{combatant_id}/presence", account, json={"online": not offline})
    if data:
        state = "online" if data["is_online"] else "offline"
        console.print(f"{data['name']} is now {state}.")


@app.command("learn")
def learn_ability(
    combatant_id: int = typer.Argument(...),
    ability_id: int = typer.Argument(...),
    account: str = AccountOption,
) -> None:
    """Teach a combatant a new ability."""
    data = call("POST", f"/combatants/{combatant_id}/abilities", account, json={"ability_id": ability_id})
    if data:
        display_combatant(data)


@app.command("train")
def level_up_ability(
    combatant_id: int = typer.Argument(...),
    ability_id: int = typer.Argument(...),
    account: str = AccountOption,
) -> None:
    """Raise the level of a known ability."""
    data = call("POST", f"/combatants/{combatant_id}/abilities/{ability_id}/level-up", account)
    if data:
        display_combatant(data)
