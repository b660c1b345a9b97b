"""Async battle state machine.

Handles the full lifecycle of a battle between two combatants:
    create -> start -> act (alternating turns) -> finish -> settle

Every state change happens inside one store transaction, so an action,
its termination check and the settlement that may follow (ratings,
experience, rankings, replay) either all commit or all roll back.
Actions on the same battle are serialized with a per-battle lock; actions
on different battles never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from sqlmodel import Session

from arena.core import rating
from arena.core.ai import choose_command
from arena.core.errors import NotFoundError, StateConflictError, ValidationError
from arena.core.events import ArenaEvent, EventBus, EventType
from arena.core.locks import KeyedLock
from arena.core.resolver import (
    ActionKind,
    Attack,
    CombatModifiers,
    CombatRules,
    Defend,
    Surrender,
    UseAbility,
    resolve,
)
from arena.core.combatant import CombatantStats
from arena.core.scoring import ContentScorer, FallbackJudge, Judgment
from arena.data.server_models import ActionRecord, BattleRecord, CombatantRecord, ReplayRecord
from arena.data.store import ArenaStore, record_to_stats
from arena.utils.config import Config, config
from arena.utils.helpers import calculate_level, ensure_utc, utc_now

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class BattleStatus(str, Enum):
    """Lifecycle status of a battle."""

    WAITING = "waiting"  # Created, not started
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"  # Settled with a winner or a draw
    CANCELLED = "cancelled"  # Called off before it started


TERMINAL_STATUSES = {BattleStatus.FINISHED, BattleStatus.CANCELLED}


class BattleMode(str, Enum):
    TURN = "turn"  # Turn-based combat
    TEXT = "text"  # One-shot judged text battle


class EndReason(str, Enum):
    KNOCKOUT = "knockout"
    TURN_CAP = "turn_cap"
    SURRENDER = "surrender"
    JUDGMENT = "judgment"


# ---------------------------------------------------------------------------
# Per-battle runtime state (stored as JSON on the battle row)
# ---------------------------------------------------------------------------

class SideState(BaseModel):
    modifiers: CombatModifiers = Field(default_factory=CombatModifiers)
    # ability id -> turn_count at which it is usable again
    cooldowns: dict[str, int] = Field(default_factory=dict)

    def is_ready(self, ability_id: int, turn_count: int) -> bool:
        return turn_count >= self.cooldowns.get(str(ability_id), 0)


class BattleRuntime(BaseModel):
    a: SideState = Field(default_factory=SideState)
    b: SideState = Field(default_factory=SideState)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

class ActionView(BaseModel):
    turn_number: int
    actor_id: int
    target_id: int | None = None
    kind: ActionKind
    ability_id: int | None = None
    damage: int = 0
    healing: int = 0
    resource_spent: int = 0
    message: str = ""


class SideView(BaseModel):
    combatant_id: int
    name: str
    health: int
    max_health: int
    mana: int
    max_mana: int
    rating: int
    is_computer: bool = False
    rating_before: int | None = None
    rating_after: int | None = None

    @property
    def rating_change(self) -> int:
        if self.rating_before is None or self.rating_after is None:
            return 0
        return self.rating_after - self.rating_before


class BattleView(BaseModel):
    """Battle as seen by the presentation layer."""

    id: int
    mode: BattleMode
    status: BattleStatus
    turn_count: int
    current_turn_id: int | None = None
    side_a: SideView
    side_b: SideView
    winner_id: int | None = None
    ended_by: EndReason | None = None
    created_at: datetime
    started_at: datetime | None = None
    settled_at: datetime | None = None
    actions: list[ActionView] = Field(default_factory=list)

    # Text battles
    text_a: str | None = None
    text_b: str | None = None
    score_a: int | None = None
    score_b: int | None = None
    judge_reason: str | None = None
    judge_source: str | None = None

    @property
    def is_draw(self) -> bool:
        return self.status == BattleStatus.FINISHED and self.winner_id is None


class TurnResult(BaseModel):
    """Outcome of ``act``: the actions applied by this call and the new state."""

    battle: BattleView
    applied: list[ActionView] = Field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.battle.status == BattleStatus.FINISHED


class ReplayView(BaseModel):
    battle_id: int
    title: str
    duration: int
    total_turns: int
    winner_id: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class BattleStats(BaseModel):
    total: int = 0
    waiting: int = 0
    in_progress: int = 0
    finished: int = 0
    cancelled: int = 0
    average_turns: float = 0.0


class Termination(BaseModel):
    winner_id: int | None
    reason: EndReason


# ---------------------------------------------------------------------------
# Termination rules
# ---------------------------------------------------------------------------

def evaluate_termination(
    a: CombatantStats,
    b: CombatantStats,
    turn_count: int,
    turn_cap: int,
) -> Termination | None:
    """Decide whether a battle is over after an action.

    Both down is a draw, one down loses, and at the turn cap the higher
    health ratio wins with an exact tie being a draw.
    """
    if a.is_down and b.is_down:
        return Termination(winner_id=None, reason=EndReason.KNOCKOUT)
    if a.is_down:
        return Termination(winner_id=b.combatant_id, reason=EndReason.KNOCKOUT)
    if b.is_down:
        return Termination(winner_id=a.combatant_id, reason=EndReason.KNOCKOUT)
    if turn_count >= turn_cap:
        # Cross-multiply to compare health ratios exactly
        left = a.health * b.max_health
        right = b.health * a.max_health
        if left > right:
            return Termination(winner_id=a.combatant_id, reason=EndReason.TURN_CAP)
        if right > left:
            return Termination(winner_id=b.combatant_id, reason=EndReason.TURN_CAP)
        return Termination(winner_id=None, reason=EndReason.TURN_CAP)
    return None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class BattleEngine:
    """Authoritative battle lifecycle over an ``ArenaStore``."""

    def __init__(
        self,
        store: ArenaStore,
        settings: Config | None = None,
        rng: random.Random | None = None,
        events: EventBus | None = None,
        judge: FallbackJudge | None = None,
    ):
        self.store = store
        self.settings = settings or config
        self.rng = rng or random.Random()
        self.events = events or EventBus()
        self.judge = judge or FallbackJudge(None, ContentScorer(self.rng))
        self.rules = CombatRules(
            attack_variance=self.settings.attack_variance,
            ability_level_bonus=self.settings.ability_level_bonus,
            defend_reduction=self.settings.defend_reduction,
            buff_multiplier=self.settings.buff_multiplier,
            debuff_multiplier=self.settings.debuff_multiplier,
        )
        self.battle_locks = KeyedLock()
        # Serializes anything that checks and claims combatants for a battle
        self.pairing_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def create(self, combatant_a_id: int, combatant_b_id: int) -> BattleView:
        """Create a battle in ``waiting``.

        Raises:
            ValidationError: both ids name the same combatant.
            NotFoundError: either combatant does not exist.
            StateConflictError: either combatant is queued or already in a battle.
        """
        async with self.pairing_lock:
            with self.store.transaction() as session:
                battle = self.create_in_session(session, combatant_a_id, combatant_b_id)
                view = self.build_view(session, battle)
        logger.info("Created battle %d: %d vs %d", view.id, combatant_a_id, combatant_b_id)
        return view

    async def start(self, battle_id: int) -> BattleView:
        """Move a waiting battle to ``in_progress`` with both sides fully restored."""
        events: list[ArenaEvent] = []
        async with self.battle_locks.hold(battle_id):
            with self.store.transaction() as session:
                battle = self.store.battle(session, battle_id, for_update=True)
                self.start_in_session(session, battle, events)
                view = self.build_view(session, battle)
        await self.events.publish_all(events)
        return view

    async def act(
        self,
        battle_id: int,
        combatant_id: int,
        command: Attack | UseAbility | Defend | Surrender,
    ) -> TurnResult:
        """Apply one command for the combatant whose turn it is.

        When the turn passes to a computer combatant its reply is played in
        the same call. Rejected commands leave the battle untouched.
        """
        if isinstance(command, Surrender):
            view = await self.surrender(battle_id, combatant_id)
            return TurnResult(battle=view, applied=view.actions[-1:])

        events: list[ArenaEvent] = []
        async with self.battle_locks.hold(battle_id):
            with self.store.transaction() as session:
                battle = self.store.battle(session, battle_id, for_update=True)
                if battle.status != BattleStatus.IN_PROGRESS.value:
                    raise StateConflictError(
                        f"Battle {battle_id} is {battle.status}, not in progress."
                    )
                self._require_participant(battle, combatant_id)
                if self._current_actor(battle) != combatant_id:
                    raise StateConflictError(f"It is not combatant {combatant_id}'s turn.")

                applied = [self._apply(session, battle, combatant_id, command, events)]
                applied.extend(self._play_computer_turns(session, battle, events))
                view = self.build_view(session, battle)
        await self.events.publish_all(events)
        return TurnResult(battle=view, applied=[self._action_view(a) for a in applied])

    async def surrender(self, battle_id: int, combatant_id: int) -> BattleView:
        """Concede a running battle. The opponent wins and is the only one rewarded.

        Raises:
            StateConflictError: the battle is not in progress (including a
                second surrender on a battle that is already finished).
        """
        events: list[ArenaEvent] = []
        async with self.battle_locks.hold(battle_id):
            with self.store.transaction() as session:
                battle = self.store.battle(session, battle_id, for_update=True)
                if battle.status != BattleStatus.IN_PROGRESS.value:
                    raise StateConflictError(
                        f"Battle {battle_id} is {battle.status}; only a running battle can be surrendered."
                    )
                self._require_participant(battle, combatant_id)
                opponent_id = self._opponent(battle, combatant_id)

                battle.turn_count += 1
                session.add(ActionRecord(
                    battle_id=battle.id,
                    actor_id=combatant_id,
                    target_id=opponent_id,
                    kind=ActionKind.SURRENDER.value,
                    turn_number=battle.turn_count,
                    message="Surrendered.",
                ))
                session.flush()
                self._settle(
                    session, battle, opponent_id, EndReason.SURRENDER, events, surrendered=True
                )
                view = self.build_view(session, battle)
        await self.events.publish_all(events)
        logger.info("Combatant %d surrendered battle %d", combatant_id, battle_id)
        return view

    async def cancel(self, battle_id: int) -> BattleView:
        """Call off a battle that has not started."""
        async with self.battle_locks.hold(battle_id):
            with self.store.transaction() as session:
                battle = self.store.battle(session, battle_id, for_update=True)
                if battle.status != BattleStatus.WAITING.value:
                    raise StateConflictError(
                        f"Battle {battle_id} is {battle.status}; only a waiting battle can be cancelled."
                    )
                battle.status = BattleStatus.CANCELLED.value
                battle.updated_at = utc_now()
                session.add(battle)
                session.flush()
                view = self.build_view(session, battle)
        logger.info("Cancelled battle %d", battle_id)
        return view

    async def text_battle(
        self,
        combatant_a_id: int,
        text_a: str,
        combatant_b_id: int,
        text_b: str | None = None,
    ) -> BattleView:
        """Judge two battle lines and settle the result as a finished battle.

        A computer opponent without a line uses its canned battle line. The
        judge runs before any write; its outcome is settled like any other
        battle.
        """
        if combatant_a_id == combatant_b_id:
            raise ValidationError("A combatant cannot battle itself.")
        text_a = self._clean_text(text_a)

        with self.store.transaction() as session:
            a = self.store.combatant(session, combatant_a_id)
            b = self.store.combatant(session, combatant_b_id)
            if text_b is None:
                if not b.is_computer or not b.battle_line:
                    raise ValidationError("Both combatants must submit a battle line.")
                text_b = b.battle_line
            for record in (a, b):
                if not record.is_computer:
                    self._require_free(session, record.id, allow_queued=True)
        text_b = self._clean_text(text_b)

        judgment = await self.judge.judge(text_a, text_b)

        events: list[ArenaEvent] = []
        async with self.pairing_lock:
            with self.store.transaction() as session:
                for cid in (combatant_a_id, combatant_b_id):
                    if not self.store.combatant(session, cid).is_computer:
                        self._require_free(session, cid, allow_queued=True)
                battle = self._record_judgment(
                    session, combatant_a_id, text_a, combatant_b_id, text_b, judgment
                )
                winner_id = combatant_a_id if judgment.winner == "player1" else combatant_b_id
                self._settle(session, battle, winner_id, EndReason.JUDGMENT, events)
                view = self.build_view(session, battle)
        await self.events.publish_all(events)
        logger.info(
            "Text battle %d judged by %s: winner %d (%d-%d)",
            view.id, judgment.source, winner_id, judgment.score1, judgment.score2,
        )
        return view

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, battle_id: int) -> BattleView:
        with self.store.transaction() as session:
            return self.build_view(session, self.store.battle(session, battle_id))

    def active_battle(self, combatant_id: int) -> BattleView | None:
        with self.store.transaction() as session:
            self.store.combatant(session, combatant_id)
            battle = self.store.active_battle(session, combatant_id)
            return self.build_view(session, battle) if battle else None

    def replay(self, battle_id: int) -> ReplayView:
        with self.store.transaction() as session:
            self.store.battle(session, battle_id)
            record = self.store.replay(session, battle_id)
            if record is None:
                raise NotFoundError(f"Battle {battle_id} has no replay yet.")
            return ReplayView(
                battle_id=record.battle_id,
                title=record.title,
                duration=record.duration,
                total_turns=record.total_turns,
                winner_id=record.winner_id,
                data=record.replay_data,
                created_at=record.created_at,
            )

    def stats(self) -> BattleStats:
        with self.store.transaction() as session:
            stats = BattleStats(
                total=self.store.count_battles(session),
                waiting=self.store.count_battles(session, BattleStatus.WAITING.value),
                in_progress=self.store.count_battles(session, BattleStatus.IN_PROGRESS.value),
                finished=self.store.count_battles(session, BattleStatus.FINISHED.value),
                cancelled=self.store.count_battles(session, BattleStatus.CANCELLED.value),
            )
            stats.average_turns = self.store.average_turns(session, BattleMode.TURN.value)
            return stats

    # ------------------------------------------------------------------
    # Session-level building blocks (shared with matchmaking)
    # ------------------------------------------------------------------

    def create_in_session(self, session: Session, combatant_a_id: int, combatant_b_id: int) -> BattleRecord:
        if combatant_a_id == combatant_b_id:
            raise ValidationError("A combatant cannot battle itself.")
        for cid in (combatant_a_id, combatant_b_id):
            self.store.combatant(session, cid)
            self._require_free(session, cid)

        battle = BattleRecord(
            mode=BattleMode.TURN.value,
            status=BattleStatus.WAITING.value,
            combatant_a_id=combatant_a_id,
            combatant_b_id=combatant_b_id,
            state_json=BattleRuntime().model_dump(mode="json"),
        )
        session.add(battle)
        session.flush()
        return battle

    def start_in_session(self, session: Session, battle: BattleRecord, events: list[ArenaEvent]) -> None:
        if battle.status != BattleStatus.WAITING.value:
            raise StateConflictError(
                f"Battle {battle.id} is {battle.status}; only a waiting battle can be started."
            )
        for cid in (battle.combatant_a_id, battle.combatant_b_id):
            record = self.store.combatant(session, cid)
            record.health = record.max_health
            record.mana = record.max_mana
            session.add(record)

        now = utc_now()
        battle.status = BattleStatus.IN_PROGRESS.value
        battle.started_at = now
        battle.updated_at = now
        battle.turn_count = 0
        battle.state_json = BattleRuntime().model_dump(mode="json")
        session.add(battle)
        session.flush()
        events.append(ArenaEvent(
            event_type=EventType.BATTLE_STARTED,
            battle_id=battle.id,
            combatant_ids=[battle.combatant_a_id, battle.combatant_b_id],
            payload={"first_turn_id": battle.combatant_a_id},
        ))
        logger.info("Started battle %d", battle.id)

        self._play_computer_turns(session, battle, events)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _clean_text(self, text: str | None) -> str:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Battle line cannot be empty.")
        if len(text) > self.settings.text_max_length:
            raise ValidationError(
                f"Battle line cannot exceed {self.settings.text_max_length} characters."
            )
        return text

    def _require_free(self, session: Session, combatant_id: int, allow_queued: bool = False) -> None:
        if self.store.active_battle(session, combatant_id) is not None:
            raise StateConflictError(f"Combatant {combatant_id} is already in a battle.")
        if not allow_queued and self.store.queue_entry(session, combatant_id) is not None:
            raise StateConflictError(f"Combatant {combatant_id} is waiting in the queue.")

    @staticmethod
    def _require_participant(battle: BattleRecord, combatant_id: int) -> None:
        if combatant_id not in (battle.combatant_a_id, battle.combatant_b_id):
            raise ValidationError(
                f"Combatant {combatant_id} is not a participant in battle {battle.id}."
            )

    @staticmethod
    def _current_actor(battle: BattleRecord) -> int:
        if battle.turn_count % 2 == 0:
            return battle.combatant_a_id
        return battle.combatant_b_id

    @staticmethod
    def _opponent(battle: BattleRecord, combatant_id: int) -> int:
        if combatant_id == battle.combatant_a_id:
            return battle.combatant_b_id
        return battle.combatant_a_id

    def _apply(
        self,
        session: Session,
        battle: BattleRecord,
        actor_id: int,
        command: Attack | UseAbility | Defend,
        events: list[ArenaEvent],
    ) -> ActionRecord:
        """Resolve one command, write its effects and check for the end."""
        target_id = self._opponent(battle, actor_id)
        actor = self.store.combatant(session, actor_id)
        target = self.store.combatant(session, target_id)

        runtime = BattleRuntime.model_validate(battle.state_json or {})
        actor_is_a = actor_id == battle.combatant_a_id
        actor_side = runtime.a if actor_is_a else runtime.b
        target_side = runtime.b if actor_is_a else runtime.a

        ability = None
        ability_level = 1
        if isinstance(command, UseAbility):
            learned = self.store.learned_ability(session, actor_id, command.ability_id)
            if not actor_side.is_ready(command.ability_id, battle.turn_count):
                raise StateConflictError(f"{learned.ability.name} is still on cooldown.")
            ability, ability_level = learned.ability, learned.level

        outcome = resolve(
            command,
            record_to_stats(actor),
            record_to_stats(target),
            self.rng,
            ability=ability,
            ability_level=ability_level,
            actor_mods=actor_side.modifiers,
            defender_mods=target_side.modifiers,
            rules=self.rules,
        )

        # Stats
        target.health = max(0, target.health - outcome.damage)
        actor.health = min(actor.max_health, actor.health + outcome.healing)
        actor.mana = max(0, actor.mana - outcome.resource_spent)
        session.add(actor)
        session.add(target)

        # Modifiers: consume before granting so a fresh flag survives
        if outcome.consumed_actor_modifiers:
            actor_side.modifiers.empowered = False
            actor_side.modifiers.weakened = False
        if outcome.consumed_target_guard:
            target_side.modifiers.guarding = False
        if outcome.actor_guards:
            actor_side.modifiers.guarding = True
        if outcome.actor_empowered:
            actor_side.modifiers.empowered = True
        if outcome.target_weakened:
            target_side.modifiers.weakened = True
        if ability is not None and ability.cooldown > 0:
            actor_side.cooldowns[str(ability.id)] = battle.turn_count + 2 * (ability.cooldown + 1)

        action = ActionRecord(
            battle_id=battle.id,
            actor_id=actor_id,
            target_id=target_id,
            kind=outcome.kind.value,
            ability_id=outcome.ability_id,
            damage=outcome.damage,
            healing=outcome.healing,
            resource_spent=outcome.resource_spent,
            turn_number=battle.turn_count + 1,
            message=outcome.message,
        )
        session.add(action)

        battle.turn_count += 1
        battle.state_json = runtime.model_dump(mode="json")
        battle.updated_at = utc_now()
        session.add(battle)
        session.flush()

        events.append(ArenaEvent(
            event_type=EventType.BATTLE_UPDATED,
            battle_id=battle.id,
            combatant_ids=[battle.combatant_a_id, battle.combatant_b_id],
            payload=self._action_view(action).model_dump(mode="json"),
        ))

        a, b = (actor, target) if actor_is_a else (target, actor)
        termination = evaluate_termination(
            record_to_stats(a), record_to_stats(b), battle.turn_count, self.settings.turn_cap
        )
        if termination is not None:
            self._settle(session, battle, termination.winner_id, termination.reason, events)
        return action

    def _play_computer_turns(
        self, session: Session, battle: BattleRecord, events: list[ArenaEvent]
    ) -> list[ActionRecord]:
        played: list[ActionRecord] = []
        while battle.status == BattleStatus.IN_PROGRESS.value:
            actor = self.store.combatant(session, self._current_actor(battle))
            if not actor.is_computer:
                break
            runtime = BattleRuntime.model_validate(battle.state_json or {})
            side = runtime.a if actor.id == battle.combatant_a_id else runtime.b
            command = choose_command(
                record_to_stats(actor),
                self.store.loadout(session, actor.id),
                lambda ability_id: side.is_ready(ability_id, battle.turn_count),
                self.rules,
            )
            played.append(self._apply(session, battle, actor.id, command, events))
        return played

    def _record_judgment(
        self,
        session: Session,
        combatant_a_id: int,
        text_a: str,
        combatant_b_id: int,
        text_b: str,
        judgment: Judgment,
    ) -> BattleRecord:
        now = utc_now()
        battle = BattleRecord(
            mode=BattleMode.TEXT.value,
            status=BattleStatus.IN_PROGRESS.value,
            combatant_a_id=combatant_a_id,
            combatant_b_id=combatant_b_id,
            started_at=now,
            turn_count=1,
            state_json={},
            text_a=text_a,
            text_b=text_b,
            score_a=judgment.score1,
            score_b=judgment.score2,
            judge_reason=judgment.reason,
            judge_source=judgment.source,
        )
        session.add(battle)
        session.flush()
        return battle

    def _settle(
        self,
        session: Session,
        battle: BattleRecord,
        winner_id: int | None,
        reason: EndReason,
        events: list[ArenaEvent],
        surrendered: bool = False,
    ) -> None:
        """Finish the battle and write ratings, experience, rankings and replay."""
        a = self.store.combatant(session, battle.combatant_a_id)
        b = self.store.combatant(session, battle.combatant_b_id)
        k = self.settings.k_factor
        floor = self.settings.rating_floor

        if winner_id is None:
            new_a, new_b = rating.update_draw(a.rating, b.rating, k)
        elif winner_id == a.id:
            new_a, new_b = rating.update(a.rating, b.rating, k)
        else:
            new_b, new_a = rating.update(b.rating, a.rating, k)

        now = utc_now()
        battle.a_rating_before, battle.b_rating_before = a.rating, b.rating
        a.rating, b.rating = max(floor, new_a), max(floor, new_b)
        battle.a_rating_after, battle.b_rating_after = a.rating, b.rating
        battle.status = BattleStatus.FINISHED.value
        battle.winner_id = winner_id
        battle.ended_by = reason.value
        battle.settled_at = now
        battle.updated_at = now

        # Experience
        if winner_id is None:
            self._grant_xp(a, self.settings.draw_xp)
            self._grant_xp(b, self.settings.draw_xp)
        elif surrendered:
            self._grant_xp(a if winner_id == a.id else b, self.settings.surrender_xp)
        else:
            winner, loser = (a, b) if winner_id == a.id else (b, a)
            self._grant_xp(winner, self.settings.winner_xp)
            self._grant_xp(loser, self.settings.loser_xp)

        # Rankings
        for record in (a, b):
            row = self.store.ranking(session, record.id)
            if winner_id is None:
                row.draws += 1
            elif winner_id == record.id:
                row.wins += 1
            else:
                row.losses += 1
            row.rating = record.rating
            row.updated_at = now
            session.add(row)

            # Practice text battles settle while the combatant stays queued
            entry = self.store.queue_entry(session, record.id)
            if entry is not None:
                entry.rating = record.rating
                session.add(entry)

        session.add(a)
        session.add(b)
        session.add(battle)
        session.flush()

        self._write_replay(session, battle, a, b)

        events.append(ArenaEvent(
            event_type=EventType.BATTLE_ENDED,
            battle_id=battle.id,
            combatant_ids=[a.id, b.id],
            payload={
                "winner_id": winner_id,
                "ended_by": reason.value,
                "rating_changes": {
                    str(a.id): battle.a_rating_after - battle.a_rating_before,
                    str(b.id): battle.b_rating_after - battle.b_rating_before,
                },
            },
        ))
        logger.info(
            "Settled battle %d (%s): winner %s, ratings %d->%d / %d->%d",
            battle.id, reason.value, winner_id,
            battle.a_rating_before, battle.a_rating_after,
            battle.b_rating_before, battle.b_rating_after,
        )

    @staticmethod
    def _grant_xp(record: CombatantRecord, amount: int) -> None:
        record.experience += amount
        record.level = max(record.level, calculate_level(record.experience))

    def _write_replay(
        self, session: Session, battle: BattleRecord, a: CombatantRecord, b: CombatantRecord
    ) -> None:
        actions = [self._action_view(r) for r in self.store.actions(session, battle.id)]
        duration = int(
            (ensure_utc(battle.settled_at) - ensure_utc(battle.created_at)).total_seconds()
        )
        snapshot = self.build_view(session, battle)
        session.add(ReplayRecord(
            battle_id=battle.id,
            title=f"{a.name} vs {b.name}",
            replay_data={
                "battle": snapshot.model_dump(mode="json", exclude={"actions"}),
                "actions": [action.model_dump(mode="json") for action in actions],
                "metadata": {
                    "duration": max(0, duration),
                    "total_turns": battle.turn_count,
                    "winner_id": battle.winner_id,
                },
            },
            duration=max(0, duration),
            winner_id=battle.winner_id,
            total_turns=battle.turn_count,
        ))
        session.flush()

    @staticmethod
    def _action_view(record: ActionRecord) -> ActionView:
        return ActionView(
            turn_number=record.turn_number,
            actor_id=record.actor_id,
            target_id=record.target_id,
            kind=ActionKind(record.kind),
            ability_id=record.ability_id,
            damage=record.damage,
            healing=record.healing,
            resource_spent=record.resource_spent,
            message=record.message,
        )

    def _side(self, record: CombatantRecord, before: int | None, after: int | None) -> SideView:
        return SideView(
            combatant_id=record.id,
            name=record.name,
            health=record.health,
            max_health=record.max_health,
            mana=record.mana,
            max_mana=record.max_mana,
            rating=record.rating,
            is_computer=record.is_computer,
            rating_before=before,
            rating_after=after,
        )

    def build_view(self, session: Session, battle: BattleRecord) -> BattleView:
        a = self.store.combatant(session, battle.combatant_a_id)
        b = self.store.combatant(session, battle.combatant_b_id)
        current = None
        if battle.status == BattleStatus.IN_PROGRESS.value:
            current = self._current_actor(battle)
        return BattleView(
            id=battle.id,
            mode=BattleMode(battle.mode),
            status=BattleStatus(battle.status),
            turn_count=battle.turn_count,
            current_turn_id=current,
            side_a=self._side(a, battle.a_rating_before, battle.a_rating_after),
            side_b=self._side(b, battle.b_rating_before, battle.b_rating_after),
            winner_id=battle.winner_id,
            ended_by=EndReason(battle.ended_by) if battle.ended_by else None,
            created_at=battle.created_at,
            started_at=battle.started_at,
            settled_at=battle.settled_at,
            actions=[self._action_view(r) for r in self.store.actions(session, battle.id)],
            text_a=battle.text_a,
            text_b=battle.text_b,
            score_a=battle.score_a,
            score_b=battle.score_b,
            judge_reason=battle.judge_reason,
            judge_source=battle.judge_source,
        )
