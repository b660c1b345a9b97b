"""SQLModel tables for the arena store.

Combatants, their abilities, queue entries, battles, actions, rankings
and replays. All writes go through ``arena.data.store.ArenaStore``.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import JSON, Column, Field, SQLModel

from arena.utils.helpers import utc_now


# ---------------------------------------------------------------------------
# Combatants and abilities
# ---------------------------------------------------------------------------

class CombatantRecord(SQLModel, table=True):
    """A named fighter owned by one account."""

    __tablename__ = "combatants"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    account_id: str = Field(index=True)
    name: str
    archetype: str = "warrior"
    is_computer: bool = False
    is_online: bool = False
    battle_line: str | None = None  # Canned line for one-shot text battles
    created_at: datetime = Field(default_factory=utc_now)

    # Stats
    level: int = 1
    health: int = 100
    max_health: int = 100
    mana: int = 50
    max_mana: int = 50
    offense: int = 10
    defense: int = 8
    speed: int = 10
    experience: int = 0
    rating: int = 1200


class AbilityRecord(SQLModel, table=True):
    """Global ability template, mirrored from the catalog."""

    __tablename__ = "abilities"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str = ""
    cost: int = 0
    damage: int = 0
    heal_amount: int = 0
    cooldown: int = 0
    category: str = "offense"


class LoadoutRecord(SQLModel, table=True):
    """A combatant's level-scaled reference to an ability."""

    __tablename__ = "combatant_abilities"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("combatant_id", "ability_id"),)

    id: int | None = Field(default=None, primary_key=True)
    combatant_id: int = Field(foreign_key="combatants.id", index=True)
    ability_id: int = Field(foreign_key="abilities.id")
    level: int = 1


# ---------------------------------------------------------------------------
# Matchmaking queue
# ---------------------------------------------------------------------------

class QueueEntry(SQLModel, table=True):
    """An open request to be matched. One per combatant."""

    __tablename__ = "queue_entries"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    combatant_id: int = Field(foreign_key="combatants.id", unique=True)
    rating: int
    preference: str = "random"
    enqueued_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Battles
# ---------------------------------------------------------------------------

class BattleRecord(SQLModel, table=True):
    """One battle between two combatants, live or settled."""

    __tablename__ = "battles"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    mode: str = "turn"  # BattleMode value
    status: str = Field(default="waiting", index=True)  # BattleStatus value
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    settled_at: datetime | None = None

    combatant_a_id: int = Field(foreign_key="combatants.id", index=True)
    combatant_b_id: int = Field(foreign_key="combatants.id", index=True)

    # Turn tracking: even turn_count -> A acts, odd -> B acts
    turn_count: int = 0

    # Per-side modifiers and cooldowns (BattleRuntime as JSON)
    state_json: dict = Field(default_factory=dict, sa_column=Column(JSON))

    # Result
    winner_id: int | None = None
    ended_by: str | None = None  # "knockout", "turn_cap", "surrender", "judgment"
    a_rating_before: int | None = None
    a_rating_after: int | None = None
    b_rating_before: int | None = None
    b_rating_after: int | None = None

    # One-shot text battles
    text_a: str | None = None
    text_b: str | None = None
    score_a: int | None = None
    score_b: int | None = None
    judge_reason: str | None = None
    judge_source: str | None = None


class ActionRecord(SQLModel, table=True):
    """An append-only log row for one applied action."""

    __tablename__ = "battle_actions"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    battle_id: int = Field(foreign_key="battles.id", index=True)
    actor_id: int = Field(foreign_key="combatants.id")
    target_id: int | None = None
    kind: str  # ActionKind value
    ability_id: int | None = None
    damage: int = 0
    healing: int = 0
    resource_spent: int = 0
    turn_number: int
    message: str = ""
    created_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Rankings and replays
# ---------------------------------------------------------------------------

class RankingRecord(SQLModel, table=True):
    """Incrementally maintained win/loss/draw totals for one combatant."""

    __tablename__ = "rankings"  # type: ignore[assignment]

    combatant_id: int = Field(foreign_key="combatants.id", primary_key=True)
    wins: int = 0
    losses: int = 0
    draws: int = 0
    rating: int = Field(default=1200, index=True)
    updated_at: datetime = Field(default_factory=utc_now)


class ReplayRecord(SQLModel, table=True):
    """Snapshot of a settled battle and its actions."""

    __tablename__ = "replays"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    battle_id: int = Field(foreign_key="battles.id", unique=True)
    title: str = ""
    replay_data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    duration: int = 0  # Seconds from creation to settlement
    winner_id: int | None = None
    total_turns: int = 0
    created_at: datetime = Field(default_factory=utc_now)
