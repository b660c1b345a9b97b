"""Ranking table over settled battles.

Totals are maintained incrementally by settlement (``rankings`` rows);
recent form and streaks are read from battle history on demand.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy import and_, func, or_
from sqlmodel import Session, select

from arena.core.errors import ValidationError
from arena.core.rating import compute_tier
from arena.data.server_models import BattleRecord, CombatantRecord, RankingRecord
from arena.data.store import ArenaStore
from arena.utils.config import Config, config


class RecentForm(str, Enum):
    WINNING = "winning"
    LOSING = "losing"
    STABLE = "stable"
    NEW = "new"


class Outcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"


class Streak(BaseModel):
    kind: Outcome | None = None  # WIN or LOSS; None when there is no streak
    count: int = 0

    def label(self) -> str:
        if self.kind is None or self.count == 0:
            return "-"
        return f"{self.kind.value[0].upper()}{self.count}"


class RankingEntry(BaseModel):
    rank: int
    combatant_id: int
    name: str
    level: int
    is_computer: bool = False
    wins: int = 0
    losses: int = 0
    draws: int = 0
    rating: int
    win_rate: float = 0.0  # Percent, two decimals
    total_battles: int = 0
    recent_form: RecentForm = RecentForm.NEW
    streak: Streak = Field(default_factory=Streak)
    tier: str = ""


class RankingStats(BaseModel):
    players: int = 0
    average_rating: float = 0.0
    top_rating: int = 0
    total_battles: int = 0


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def classify_form(results: list[Outcome], total_battles: int, window: int = 5) -> RecentForm:
    """Classify the newest ``window`` results.

    Fewer than ``window`` battles in total is ``new``; otherwise all but
    one of the window being wins (losses) is ``winning`` (``losing``).
    """
    if total_battles < window or len(results) < window:
        return RecentForm.NEW
    recent = results[:window]
    threshold = window - 1
    if sum(1 for r in recent if r == Outcome.WIN) >= threshold:
        return RecentForm.WINNING
    if sum(1 for r in recent if r == Outcome.LOSS) >= threshold:
        return RecentForm.LOSING
    return RecentForm.STABLE


def compute_streak(results: list[Outcome]) -> Streak:
    """Count identical results from the newest backwards. A draw ends it."""
    if not results or results[0] == Outcome.DRAW:
        return Streak()
    kind = results[0]
    count = 0
    for result in results:
        if result != kind:
            break
        count += 1
    return Streak(kind=kind, count=count)


def win_rate(wins: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(wins / total * 100, 2)


def outcome_for(battle: BattleRecord, combatant_id: int) -> Outcome:
    if battle.winner_id is None:
        return Outcome.DRAW
    if battle.winner_id == combatant_id:
        return Outcome.WIN
    return Outcome.LOSS


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------

class RankingTable:
    """Read-side queries: leaderboard, nearby ranks, form and streaks."""

    def __init__(self, store: ArenaStore, settings: Config | None = None):
        self.store = store
        self.settings = settings or config

    def _ordered(self):
        return (
            select(RankingRecord, CombatantRecord)
            .where(RankingRecord.combatant_id == CombatantRecord.id)
            .order_by(
                RankingRecord.rating.desc(),
                RankingRecord.wins.desc(),
                RankingRecord.combatant_id.asc(),
            )
        )

    def _results(self, session: Session, combatant_id: int, limit: int) -> list[Outcome]:
        return [
            outcome_for(b, combatant_id)
            for b in self.store.settled_battles(session, combatant_id, limit)
        ]

    def _entry(self, session: Session, rank: int, row: RankingRecord, record: CombatantRecord) -> RankingEntry:
        total = row.wins + row.losses + row.draws
        window = self.settings.recent_form_window
        results = self._results(session, record.id, max(window, self.settings.streak_window))
        return RankingEntry(
            rank=rank,
            combatant_id=record.id,
            name=record.name,
            level=record.level,
            is_computer=record.is_computer,
            wins=row.wins,
            losses=row.losses,
            draws=row.draws,
            rating=row.rating,
            win_rate=win_rate(row.wins, total),
            total_battles=total,
            recent_form=classify_form(results, total, window),
            streak=compute_streak(results),
            tier=compute_tier(row.rating),
        )

    def _rank_of(self, session: Session, row: RankingRecord) -> int:
        ahead = session.exec(
            select(func.count()).select_from(RankingRecord).where(
                or_(
                    RankingRecord.rating > row.rating,
                    and_(RankingRecord.rating == row.rating, RankingRecord.wins > row.wins),
                    and_(
                        RankingRecord.rating == row.rating,
                        RankingRecord.wins == row.wins,
                        RankingRecord.combatant_id < row.combatant_id,
                    ),
                )
            )
        ).one()
        return ahead + 1

    def leaderboard(self, limit: int = 10, offset: int = 0) -> list[RankingEntry]:
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative.")
        with self.store.transaction() as session:
            rows = session.exec(self._ordered().offset(offset).limit(limit)).all()
            return [
                self._entry(session, offset + i + 1, row, record)
                for i, (row, record) in enumerate(rows)
            ]

    def entry(self, combatant_id: int) -> RankingEntry:
        with self.store.transaction() as session:
            record = self.store.combatant(session, combatant_id)
            row = self.store.ranking(session, combatant_id)
            return self._entry(session, self._rank_of(session, row), row, record)

    def nearby(self, combatant_id: int, range_: int = 5) -> list[RankingEntry]:
        """Entries ranked within ``range_`` places of the combatant, inclusive."""
        if range_ < 0:
            raise ValidationError("range must be non-negative.")
        with self.store.transaction() as session:
            self.store.combatant(session, combatant_id)
            row = self.store.ranking(session, combatant_id)
            rank = self._rank_of(session, row)
            start = max(1, rank - range_)
            end = rank + range_
            rows = session.exec(self._ordered().offset(start - 1).limit(end - start + 1)).all()
            return [
                self._entry(session, start + i, r, record)
                for i, (r, record) in enumerate(rows)
            ]

    def recent_form(self, combatant_id: int) -> RecentForm:
        window = self.settings.recent_form_window
        with self.store.transaction() as session:
            self.store.combatant(session, combatant_id)
            row = self.store.ranking(session, combatant_id)
            total = row.wins + row.losses + row.draws
            return classify_form(self._results(session, combatant_id, window), total, window)

    def streak(self, combatant_id: int) -> Streak:
        with self.store.transaction() as session:
            self.store.combatant(session, combatant_id)
            return compute_streak(
                self._results(session, combatant_id, self.settings.streak_window)
            )

    def stats(self) -> RankingStats:
        with self.store.transaction() as session:
            players, average, top = session.exec(
                select(
                    func.count(RankingRecord.combatant_id),
                    func.avg(RankingRecord.rating),
                    func.max(RankingRecord.rating),
                )
            ).one()
            return RankingStats(
                players=players or 0,
                average_rating=round(float(average or 0.0), 2),
                top_rating=top or 0,
                total_battles=self.store.count_battles(session, "finished"),
            )
