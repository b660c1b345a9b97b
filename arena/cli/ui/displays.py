"""Rich display components for the CLI.

All renderers take the JSON payloads returned by the service.
"""

from datetime import datetime
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from arena.utils.helpers import format_datetime, xp_to_next_level

console = Console()


FORM_COLORS = {
    "winning": "green",
    "losing": "red",
    "stable": "yellow",
    "new": "dim",
}

TIER_COLORS = {
    "Bronze": "dark_orange3",
    "Silver": "white",
    "Gold": "gold1",
    "Platinum": "cyan",
    "Diamond": "bright_blue",
    "Master": "magenta",
    "Grandmaster": "bold red",
}


def _bar(current: int, maximum: int, width: int = 20, color: str = "green") -> str:
    if maximum <= 0:
        return ""
    filled = round(width * max(0, current) / maximum)
    return f"[{color}]{'#' * filled}[/{color}][dim]{'-' * (width - filled)}[/dim] {current}/{maximum}"


def _streak_label(streak: dict[str, Any] | None) -> str:
    if not streak or not streak.get("kind") or not streak.get("count"):
        return "-"
    return f"{streak['kind'][0].upper()}{streak['count']}"


def display_combatant(data: dict[str, Any]) -> None:
    """Show a combatant card with stats and abilities."""
    xp_in_level, xp_needed = xp_to_next_level(data["experience"])
    created = data.get("created_at")
    if isinstance(created, str):
        created = datetime.fromisoformat(created.replace("Z", "+00:00"))
    lines = [
        f"[bold]{data['name']}[/bold]  (#{data['id']}, {data['archetype']})",
        f"Level {data['level']}  XP {xp_in_level}/{xp_needed}  Rating [cyan]{data['rating']}[/cyan]",
        "",
        f"HP   {_bar(data['health'], data['max_health'])}",
        f"Mana {_bar(data['mana'], data['max_mana'], color='blue')}",
        f"Offense {data['offense']}  Defense {data['defense']}  Speed {data['speed']}",
    ]
    abilities = data.get("abilities") or []
    if abilities:
        lines.append("")
        lines.append("[bold]Abilities[/bold]")
        for learned in abilities:
            ability = learned["ability"]
            lines.append(
                f"  {ability['id']:>2}. {ability['name']} Lv{learned['level']} "
                f"[dim]({ability['category']}, {ability['cost']} mana, cd {ability['cooldown']})[/dim]"
            )
    lines.append("")
    lines.append(f"[dim]Joined {format_datetime(created)}[/dim]")
    online = "[green]online[/green]" if data.get("is_online") else "[dim]offline[/dim]"
    console.print(Panel("\n".join(lines), title=f"Combatant {online}", border_style="cyan"))


def display_battle(data: dict[str, Any], last_actions: int = 6) -> None:
    """Show the state of a battle and its most recent actions."""
    a, b = data["side_a"], data["side_b"]
    status = data["status"]
    header = f"Battle #{data['id']} [bold]{a['name']}[/bold] vs [bold]{b['name']}[/bold]"

    table = Table(box=box.SIMPLE, show_header=True)
    table.add_column("Side")
    table.add_column("Health")
    table.add_column("Mana")
    table.add_column("Rating", justify="right")
    for side in (a, b):
        marker = " <" if data.get("current_turn_id") == side["combatant_id"] else ""
        rating = str(side["rating"])
        if side.get("rating_before") is not None and side.get("rating_after") is not None:
            delta = side["rating_after"] - side["rating_before"]
            color = "green" if delta >= 0 else "red"
            rating = f"{side['rating_after']} [{color}]({delta:+d})[/{color}]"
        table.add_row(
            f"{side['name']}{marker}",
            _bar(side["health"], side["max_health"], width=12),
            _bar(side["mana"], side["max_mana"], width=8, color="blue"),
            rating,
        )

    console.print(Panel(header, subtitle=f"{status} | turn {data['turn_count']}", border_style="yellow"))
    console.print(table)

    if data.get("mode") == "text":
        console.print(f"[bold]{a['name']}:[/bold] {data.get('text_a')}  [cyan]{data.get('score_a')}[/cyan]")
        console.print(f"[bold]{b['name']}:[/bold] {data.get('text_b')}  [cyan]{data.get('score_b')}[/cyan]")
        if data.get("judge_reason"):
            console.print(f"[dim]Judge ({data.get('judge_source')}): {data['judge_reason']}[/dim]")

    actions = data.get("actions") or []
    for action in (actions[-last_actions:] if last_actions > 0 else []):
        console.print(f"  [dim]{action['turn_number']:>2}.[/dim] {action['message']}")

    if status == "finished":
        winner_id = data.get("winner_id")
        if winner_id is None:
            console.print("[bold yellow]Draw![/bold yellow]")
        else:
            winner = a if a["combatant_id"] == winner_id else b
            console.print(f"[bold green]{winner['name']} wins![/bold green] ({data.get('ended_by')})")


def display_match_result(data: dict[str, Any]) -> None:
    outcome = data["outcome"]
    opponent = data.get("opponent")
    if outcome == "matched":
        console.print(f"[green]Matched with {opponent['name']} ({opponent['rating']})![/green]")
        display_battle(data["battle"])
    elif outcome == "enqueued_with_practice":
        console.print("[yellow]Waiting in the queue.[/yellow]")
        console.print(
            f"Practice opponent available: [bold]{opponent['name']}[/bold] "
            f"(#{opponent['combatant_id']}, {opponent['rating']})"
        )
        console.print(f"[dim]arena battle text {opponent['combatant_id']} \"<your battle line>\"[/dim]")
    else:
        console.print("[yellow]Waiting in the queue.[/yellow]")


def display_leaderboard(entries: list[dict[str, Any]], title: str = "Leaderboard", highlight: int | None = None) -> None:
    """Show leaderboard rows."""
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Combatant", style="bold")
    table.add_column("Rating", justify="right", style="cyan")
    table.add_column("Tier")
    table.add_column("W", justify="right", style="green")
    table.add_column("L", justify="right", style="red")
    table.add_column("D", justify="right")
    table.add_column("Win%", justify="right")
    table.add_column("Form")
    table.add_column("Streak", justify="right")

    for entry in entries:
        rank = entry["rank"]
        rank_num = str(rank)
        if rank == 1:
            rank_num = "[bold gold1]1[/bold gold1]"
        elif rank == 2:
            rank_num = "[bold grey70]2[/bold grey70]"
        elif rank == 3:
            rank_num = "[bold dark_orange3]3[/bold dark_orange3]"

        name = entry["name"]
        if highlight is not None and entry["combatant_id"] == highlight:
            name = f"[reverse]{name}[/reverse]"
        tier = entry.get("tier", "")
        form = entry.get("recent_form", "new")
        table.add_row(
            rank_num,
            name,
            str(entry["rating"]),
            f"[{TIER_COLORS.get(tier, 'white')}]{tier}[/]",
            str(entry["wins"]),
            str(entry["losses"]),
            str(entry["draws"]),
            f"{entry['win_rate']:.1f}%" if entry.get("total_battles") else "-",
            f"[{FORM_COLORS.get(form, 'white')}]{form}[/]",
            _streak_label(entry.get("streak")),
        )
    console.print(table)


def display_ranking(entry: dict[str, Any]) -> None:
    console.print(
        Panel(
            f"[bold]{entry['name']}[/bold]\n\n"
            f"Rank       : #{entry['rank']}\n"
            f"Rating     : [cyan]{entry['rating']}[/cyan] ({entry.get('tier', '')})\n"
            f"Record     : [green]{entry['wins']}W[/green] / [red]{entry['losses']}L[/red] / "
            f"{entry['draws']}D  ({entry['total_battles']} total)\n"
            f"Win Rate   : {entry['win_rate']:.2f}%\n"
            f"Form       : {entry.get('recent_form', 'new')}\n"
            f"Streak     : {_streak_label(entry.get('streak'))}",
            title="Ranking",
            border_style="cyan",
        )
    )


def display_replay(data: dict[str, Any]) -> None:
    console.print(Panel(
        f"[bold]{data['title']}[/bold]\n"
        f"Turns {data['total_turns']} | Duration {data['duration']}s | Winner {data.get('winner_id') or 'draw'}",
        title=f"Replay of battle #{data['battle_id']}",
        border_style="magenta",
    ))
    for action in data.get("data", {}).get("actions", []):
        console.print(f"  [dim]{action['turn_number']:>2}.[/dim] {action['message']}")
