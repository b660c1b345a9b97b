"""Matchmaking queue.

Pairs waiting combatants by preference, or leaves the caller waiting and
offers a computer opponent to practise against in the meantime. Search and
removal run under the engine's pairing lock and inside one transaction, so
two requests can never claim the same waiting entry.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field
from sqlmodel import Session

from arena.core.battle import BattleEngine, BattleView
from arena.core.errors import NotFoundError, StateConflictError, ValidationError
from arena.core.events import ArenaEvent, EventType
from arena.data.server_models import CombatantRecord, QueueEntry
from arena.utils.helpers import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class MatchPreference(str, Enum):
    RANDOM = "random"  # Longest-waiting entry
    SIMILAR_RATING = "similar_rating"  # Closest rating within the band
    LEADERBOARD = "leaderboard"  # Highest rating above our own


class MatchOutcome(str, Enum):
    MATCHED = "matched"
    ENQUEUED_WITH_PRACTICE = "enqueued_with_practice"
    ENQUEUED = "enqueued"


class OpponentView(BaseModel):
    combatant_id: int
    name: str
    rating: int
    is_computer: bool = False
    battle_line: str | None = None


class MatchResult(BaseModel):
    """Either a live battle against a matched opponent, or a queue entry.

    While enqueued a computer opponent may be offered for a practice text
    battle. The queue entry stays live so a later human request can still
    match it.
    """

    outcome: MatchOutcome
    opponent: OpponentView | None = None
    battle: BattleView | None = None


class QueueEntryView(BaseModel):
    combatant_id: int
    rating: int
    preference: MatchPreference
    enqueued_at: datetime
    wait_seconds: int = 0


class QueueStats(BaseModel):
    size: int = 0
    average_wait_seconds: float = 0.0
    entries: list[QueueEntryView] = Field(default_factory=list)


def pick_candidate(
    entries: list[QueueEntry],
    rating: int,
    preference: MatchPreference,
    band: int,
) -> QueueEntry | None:
    """Choose the waiting entry to pair with, or None.

    ``entries`` must already exclude the requester and be ordered oldest
    first; that order breaks every tie.
    """
    if not entries:
        return None
    if preference == MatchPreference.RANDOM:
        return entries[0]
    if preference == MatchPreference.SIMILAR_RATING:
        in_band = [e for e in entries if abs(e.rating - rating) <= band]
        if not in_band:
            return None
        return min(in_band, key=lambda e: abs(e.rating - rating))
    if preference == MatchPreference.LEADERBOARD:
        above = [e for e in entries if e.rating > rating]
        if not above:
            return None
        # max() keeps the first of equal ratings, i.e. the oldest
        return max(above, key=lambda e: e.rating)
    raise ValidationError(f"Unknown match preference: {preference}")


def _opponent(record: CombatantRecord) -> OpponentView:
    return OpponentView(
        combatant_id=record.id,
        name=record.name,
        rating=record.rating,
        is_computer=record.is_computer,
        battle_line=record.battle_line,
    )


class Matchmaker:
    """Queue operations on top of a ``BattleEngine``."""

    def __init__(self, engine: BattleEngine, rng: random.Random | None = None):
        self.engine = engine
        self.store = engine.store
        self.settings = engine.settings
        self.rng = rng or engine.rng

    async def request_match(
        self,
        combatant_id: int,
        preference: MatchPreference = MatchPreference.RANDOM,
    ) -> MatchResult:
        """Match against a waiting combatant, or join the queue.

        Raises:
            ValidationError: computer combatants cannot queue.
            StateConflictError: already queued or already in a battle.
        """
        events: list[ArenaEvent] = []
        try:
            async with self.engine.pairing_lock:
                with self.store.transaction() as session:
                    result = self._request_in_session(session, combatant_id, preference, events)
        except (StateConflictError, ValidationError) as exc:
            await self.engine.events.publish(ArenaEvent(
                event_type=EventType.QUEUE_ERROR,
                combatant_ids=[combatant_id],
                payload={"error": exc.message},
            ))
            raise
        await self.engine.events.publish_all(events)
        return result

    def _request_in_session(
        self,
        session: Session,
        combatant_id: int,
        preference: MatchPreference,
        events: list[ArenaEvent],
    ) -> MatchResult:
        me = self.store.combatant(session, combatant_id)
        if me.is_computer:
            raise ValidationError("Computer combatants cannot join the queue.")
        if self.store.active_battle(session, combatant_id) is not None:
            raise StateConflictError(f"Combatant {combatant_id} is already in a battle.")
        if self.store.queue_entry(session, combatant_id) is not None:
            raise StateConflictError(f"Combatant {combatant_id} is already in the queue.")

        me.is_online = True
        session.add(me)

        waiting = [e for e in self.store.queue_entries(session) if e.combatant_id != combatant_id]
        candidate = pick_candidate(
            waiting, me.rating, preference, self.settings.similar_rating_band
        )

        if candidate is not None:
            opponent = self.store.combatant(session, candidate.combatant_id)
            session.delete(candidate)
            session.flush()

            battle = self.engine.create_in_session(session, candidate.combatant_id, combatant_id)
            events.append(ArenaEvent(
                event_type=EventType.BATTLE_MATCHED,
                battle_id=battle.id,
                combatant_ids=[candidate.combatant_id, combatant_id],
                payload={"preference": preference.value},
            ))
            self.engine.start_in_session(session, battle, events)
            logger.info(
                "Matched %d with %d (%s) in battle %d",
                combatant_id, candidate.combatant_id, preference.value, battle.id,
            )
            return MatchResult(
                outcome=MatchOutcome.MATCHED,
                opponent=_opponent(opponent),
                battle=self.engine.build_view(session, battle),
            )

        session.add(QueueEntry(
            combatant_id=combatant_id,
            rating=me.rating,
            preference=preference.value,
        ))
        session.flush()
        logger.info("Combatant %d joined the queue (%s)", combatant_id, preference.value)

        if self.settings.practice_opponents:
            computers = self.store.computers(session)
            if computers:
                practice = self.rng.choice(computers)
                return MatchResult(
                    outcome=MatchOutcome.ENQUEUED_WITH_PRACTICE,
                    opponent=_opponent(practice),
                )
        return MatchResult(outcome=MatchOutcome.ENQUEUED)

    async def cancel(self, combatant_id: int) -> None:
        """Leave the queue. Raises ``NotFoundError`` when not queued."""
        async with self.engine.pairing_lock:
            with self.store.transaction() as session:
                self.store.combatant(session, combatant_id)
                entry = self.store.queue_entry(session, combatant_id)
                if entry is None:
                    raise NotFoundError(f"Combatant {combatant_id} is not in the queue.")
                session.delete(entry)
        logger.info("Combatant %d left the queue", combatant_id)

    async def direct_challenge(self, challenger_id: int, target_id: int) -> MatchResult:
        """Start a battle against a specific combatant, skipping the queue.

        The target must be a computer combatant or online. Either side's
        queue entry is withdrawn.
        """
        events: list[ArenaEvent] = []
        try:
            async with self.engine.pairing_lock:
                with self.store.transaction() as session:
                    challenger = self.store.combatant(session, challenger_id)
                    target = self.store.combatant(session, target_id)
                    if challenger.is_computer:
                        raise ValidationError("Computer combatants cannot issue challenges.")
                    if challenger_id == target_id:
                        raise ValidationError("A combatant cannot challenge itself.")
                    if not (target.is_computer or target.is_online):
                        raise StateConflictError(f"{target.name} is not available for a challenge.")

                    for cid in (challenger_id, target_id):
                        entry = self.store.queue_entry(session, cid)
                        if entry is not None:
                            session.delete(entry)
                    session.flush()

                    battle = self.engine.create_in_session(session, challenger_id, target_id)
                    events.append(ArenaEvent(
                        event_type=EventType.BATTLE_MATCHED,
                        battle_id=battle.id,
                        combatant_ids=[challenger_id, target_id],
                        payload={"challenge": True},
                    ))
                    self.engine.start_in_session(session, battle, events)
                    result = MatchResult(
                        outcome=MatchOutcome.MATCHED,
                        opponent=_opponent(target),
                        battle=self.engine.build_view(session, battle),
                    )
        except (StateConflictError, ValidationError) as exc:
            await self.engine.events.publish(ArenaEvent(
                event_type=EventType.QUEUE_ERROR,
                combatant_ids=[challenger_id],
                payload={"error": exc.message},
            ))
            raise
        await self.engine.events.publish_all(events)
        logger.info("Combatant %d challenged %d", challenger_id, target_id)
        return result

    def queue_stats(self) -> QueueStats:
        now = utc_now()
        with self.store.transaction() as session:
            entries = [
                QueueEntryView(
                    combatant_id=e.combatant_id,
                    rating=e.rating,
                    preference=MatchPreference(e.preference),
                    enqueued_at=e.enqueued_at,
                    wait_seconds=max(0, int((now - ensure_utc(e.enqueued_at)).total_seconds())),
                )
                for e in self.store.queue_entries(session)
            ]
        average = sum(e.wait_seconds for e in entries) / len(entries) if entries else 0.0
        return QueueStats(size=len(entries), average_wait_seconds=round(average, 2), entries=entries)

    def is_queued(self, combatant_id: int) -> bool:
        with self.store.transaction() as session:
            return self.store.queue_entry(session, combatant_id) is not None
