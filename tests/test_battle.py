"""Tests for the battle state machine."""

import asyncio
import random

import pytest
from sqlalchemy.exc import OperationalError

from arena.core.battle import (
    BattleEngine,
    BattleMode,
    BattleStatus,
    EndReason,
    evaluate_termination,
)
from arena.core.combatant import Archetype, CombatantStats
from arena.core.errors import (
    NotFoundError,
    PersistenceError,
    ResourceError,
    StateConflictError,
    ValidationError,
)
from arena.core.events import EventType
from arena.core.resolver import ActionKind, Attack, Defend, Surrender, UseAbility
from arena.core.scoring import ContentScorer, FallbackJudge, Judgment
from arena.utils.config import Config
from tests.conftest import FixedRng


async def _started(engine, a, b):
    view = await engine.create(a, b)
    return await engine.start(view.id)


@pytest.fixture
def set_battle(store):
    """Overwrite stored battle fields directly."""

    def _set(battle_id, **fields):
        with store.transaction() as session:
            battle = store.battle(session, battle_id)
            for key, value in fields.items():
                setattr(battle, key, value)
            session.add(battle)

    return _set


@pytest.fixture
def pair(make_combatant):
    return make_combatant("Ash", "acct-1"), make_combatant("Gary", "acct-2")


def _stats(cid, health, max_health=100):
    return CombatantStats(
        combatant_id=cid, health=health, max_health=max_health,
        mana=0, max_mana=0, offense=10, defense=10,
    )


class TestEvaluateTermination:
    def test_running(self):
        assert evaluate_termination(_stats(1, 50), _stats(2, 50), 10, 50) is None

    def test_knockout(self):
        result = evaluate_termination(_stats(1, 0), _stats(2, 5), 3, 50)
        assert result.winner_id == 2
        assert result.reason == EndReason.KNOCKOUT

    def test_double_knockout_is_draw(self):
        result = evaluate_termination(_stats(1, 0), _stats(2, 0), 3, 50)
        assert result.winner_id is None

    def test_turn_cap_compares_ratios(self):
        # 30/60 is a higher ratio than 40/100
        result = evaluate_termination(_stats(1, 30, 60), _stats(2, 40, 100), 50, 50)
        assert result.winner_id == 1
        assert result.reason == EndReason.TURN_CAP

    def test_turn_cap_exact_tie(self):
        result = evaluate_termination(_stats(1, 50, 100), _stats(2, 60, 120), 50, 50)
        assert result.winner_id is None
        assert result.reason == EndReason.TURN_CAP


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_is_waiting(self, battle_engine, pair):
        view = await battle_engine.create(*pair)
        assert view.status == BattleStatus.WAITING
        assert view.mode == BattleMode.TURN
        assert view.turn_count == 0
        assert view.current_turn_id is None

    @pytest.mark.asyncio
    async def test_start_restores_and_gives_first_turn(self, battle_engine, pair, set_stats):
        a, b = pair
        view = await battle_engine.create(a, b)
        set_stats(a, health=3, mana=0)
        started = await battle_engine.start(view.id)
        assert started.status == BattleStatus.IN_PROGRESS
        assert started.side_a.health == started.side_a.max_health == 120
        assert started.side_a.mana == 30
        assert started.current_turn_id == a
        assert started.started_at is not None

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, battle_engine, pair):
        view = await _started(battle_engine, *pair)
        with pytest.raises(StateConflictError):
            await battle_engine.start(view.id)

    @pytest.mark.asyncio
    async def test_create_rejects_self(self, battle_engine, pair):
        with pytest.raises(ValidationError):
            await battle_engine.create(pair[0], pair[0])

    @pytest.mark.asyncio
    async def test_create_rejects_unknown(self, battle_engine, pair):
        with pytest.raises(NotFoundError):
            await battle_engine.create(pair[0], 9999)

    @pytest.mark.asyncio
    async def test_create_rejects_busy_combatant(self, battle_engine, pair, make_combatant):
        await battle_engine.create(*pair)
        third = make_combatant("Misty", "acct-3")
        with pytest.raises(StateConflictError):
            await battle_engine.create(pair[0], third)

    @pytest.mark.asyncio
    async def test_cancel_waiting(self, battle_engine, pair):
        view = await battle_engine.create(*pair)
        cancelled = await battle_engine.cancel(view.id)
        assert cancelled.status == BattleStatus.CANCELLED
        # Participants are free again
        assert battle_engine.active_battle(pair[0]) is None
        await battle_engine.create(*pair)

    @pytest.mark.asyncio
    async def test_cancel_only_waiting(self, battle_engine, pair):
        view = await _started(battle_engine, *pair)
        with pytest.raises(StateConflictError):
            await battle_engine.cancel(view.id)

    @pytest.mark.asyncio
    async def test_unknown_battle(self, battle_engine):
        with pytest.raises(NotFoundError):
            battle_engine.get(424242)
        with pytest.raises(NotFoundError):
            await battle_engine.start(424242)

    @pytest.mark.asyncio
    async def test_active_battle(self, battle_engine, pair):
        assert battle_engine.active_battle(pair[0]) is None
        view = await battle_engine.create(*pair)
        assert battle_engine.active_battle(pair[1]).id == view.id


class TestActions:
    @pytest.mark.asyncio
    async def test_attack_alternates_turns(self, battle_engine, pair):
        a, b = pair
        view = await _started(battle_engine, a, b)
        result = await battle_engine.act(view.id, a, Attack())
        assert len(result.applied) == 1
        action = result.applied[0]
        assert action.actor_id == a
        assert action.turn_number == 1
        assert action.damage >= 1
        assert result.battle.turn_count == 1
        assert result.battle.current_turn_id == b
        assert result.battle.side_b.health == 120 - action.damage

    @pytest.mark.asyncio
    async def test_out_of_turn(self, battle_engine, pair):
        view = await _started(battle_engine, *pair)
        with pytest.raises(StateConflictError):
            await battle_engine.act(view.id, pair[1], Attack())
        assert battle_engine.get(view.id).turn_count == 0

    @pytest.mark.asyncio
    async def test_non_participant(self, battle_engine, pair, make_combatant):
        view = await _started(battle_engine, *pair)
        outsider = make_combatant("Brock", "acct-9")
        with pytest.raises(ValidationError):
            await battle_engine.act(view.id, outsider, Attack())

    @pytest.mark.asyncio
    async def test_act_before_start(self, battle_engine, pair):
        view = await battle_engine.create(*pair)
        with pytest.raises(StateConflictError):
            await battle_engine.act(view.id, pair[0], Attack())

    @pytest.mark.asyncio
    async def test_ability_spends_mana(self, battle_engine, pair):
        a, _ = pair
        view = await _started(battle_engine, *pair)
        result = await battle_engine.act(view.id, a, UseAbility(ability_id=2))
        assert result.applied[0].kind == ActionKind.ABILITY
        assert result.applied[0].resource_spent == 10
        assert result.battle.side_a.mana == 20

    @pytest.mark.asyncio
    async def test_ability_not_known(self, battle_engine, pair):
        view = await _started(battle_engine, *pair)
        with pytest.raises(NotFoundError):
            await battle_engine.act(view.id, pair[0], UseAbility(ability_id=5))

    @pytest.mark.asyncio
    async def test_insufficient_mana_leaves_battle_untouched(self, battle_engine, make_combatant, set_stats):
        mage = make_combatant("Merlin", "acct-1", Archetype.MAGE)
        other = make_combatant("Morgana", "acct-2")
        view = await _started(battle_engine, mage, other)
        set_stats(mage, mana=0)
        with pytest.raises(ResourceError):
            await battle_engine.act(view.id, mage, UseAbility(ability_id=5))
        after = battle_engine.get(view.id)
        assert after.turn_count == 0
        assert after.actions == []
        assert after.side_b.health == 120

    @pytest.mark.asyncio
    async def test_cooldown(self, battle_engine, pair):
        a, b = pair
        view = await _started(battle_engine, a, b)
        await battle_engine.act(view.id, a, UseAbility(ability_id=2))
        await battle_engine.act(view.id, b, Attack())
        with pytest.raises(StateConflictError):
            await battle_engine.act(view.id, a, UseAbility(ability_id=2))
        # Other commands are still accepted
        result = await battle_engine.act(view.id, a, Attack())
        assert result.battle.turn_count == 3

    @pytest.mark.asyncio
    async def test_guard_halves_next_hit_only(self, store, settings, pair):
        engine = BattleEngine(store, settings, FixedRng(1.0))
        a, b = pair
        view = await _started(engine, a, b)
        await engine.act(view.id, a, Defend())
        guarded = await engine.act(view.id, b, Attack())
        # Warrior offense 15 against defense 12 is 9, halved to 4
        assert guarded.applied[0].damage == 4
        await engine.act(view.id, a, Attack())
        plain = await engine.act(view.id, b, Attack())
        assert plain.applied[0].damage == 9

    @pytest.mark.asyncio
    async def test_knockout_settles(self, battle_engine, pair, set_stats, store):
        a, b = pair
        view = await _started(battle_engine, a, b)
        set_stats(b, health=1)
        result = await battle_engine.act(view.id, a, Attack())
        assert result.finished
        battle = result.battle
        assert battle.winner_id == a
        assert battle.ended_by == EndReason.KNOCKOUT
        assert battle.side_b.health == 0
        assert battle.side_a.rating_after == 1216
        assert battle.side_b.rating_after == 1184
        assert battle.side_a.rating_change == 16
        with store.transaction() as session:
            winner = store.combatant(session, a)
            loser = store.combatant(session, b)
            assert (winner.experience, winner.level) == (100, 2)
            assert (loser.experience, loser.level) == (50, 1)
            assert store.ranking(session, a).wins == 1
            assert store.ranking(session, b).losses == 1

    @pytest.mark.asyncio
    async def test_no_actions_after_finish(self, battle_engine, pair, set_stats):
        a, b = pair
        view = await _started(battle_engine, a, b)
        set_stats(b, health=1)
        await battle_engine.act(view.id, a, Attack())
        with pytest.raises(StateConflictError):
            await battle_engine.act(view.id, b, Attack())

    @pytest.mark.asyncio
    async def test_concurrent_actions_serialize(self, battle_engine, pair):
        a, _ = pair
        view = await _started(battle_engine, *pair)
        results = await asyncio.gather(
            battle_engine.act(view.id, a, Attack()),
            battle_engine.act(view.id, a, Attack()),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], StateConflictError)
        assert battle_engine.get(view.id).turn_count == 1


class TestSettlementFailure:
    @pytest.mark.asyncio
    async def test_failed_write_rolls_back_knockout(self, battle_engine, pair, set_stats, store, monkeypatch):
        a, b = pair
        view = await _started(battle_engine, a, b)
        set_stats(b, health=1)

        def broken_replay(*args, **kwargs):
            raise OperationalError("INSERT INTO replays", {}, Exception("disk I/O error"))

        monkeypatch.setattr(battle_engine, "_write_replay", broken_replay)
        with pytest.raises(PersistenceError):
            await battle_engine.act(view.id, a, Attack())

        battle = battle_engine.get(view.id)
        assert battle.status == BattleStatus.IN_PROGRESS
        assert battle.winner_id is None
        assert battle.turn_count == 0
        assert battle.side_b.health == 1
        with store.transaction() as session:
            assert store.combatant(session, a).rating == 1200
            assert store.combatant(session, a).experience == 0
            assert store.ranking(session, a).wins == 0
            assert store.actions(session, view.id) == []

    @pytest.mark.asyncio
    async def test_battle_can_finish_after_failed_write(self, battle_engine, pair, set_stats, monkeypatch):
        a, b = pair
        view = await _started(battle_engine, a, b)
        set_stats(b, health=1)

        def broken_replay(*args, **kwargs):
            raise OperationalError("INSERT INTO replays", {}, Exception("disk I/O error"))

        monkeypatch.setattr(battle_engine, "_write_replay", broken_replay)
        with pytest.raises(PersistenceError):
            await battle_engine.act(view.id, a, Attack())
        monkeypatch.undo()

        result = await battle_engine.act(view.id, a, Attack())
        assert result.finished
        assert result.battle.winner_id == a


class TestRatingFloor:
    @pytest.mark.asyncio
    async def test_loser_rating_is_floored(self, store, events, pair, set_stats):
        settings = Config(oracle_enabled=False, rating_floor=1190)
        rng = random.Random(1)
        engine = BattleEngine(store, settings, rng, events, FallbackJudge(None, ContentScorer(rng)))
        a, b = pair
        view = await _started(engine, a, b)
        set_stats(b, health=1)
        result = await engine.act(view.id, a, Attack())
        assert result.battle.side_a.rating_after == 1216
        assert result.battle.side_b.rating_after == 1190
        with store.transaction() as session:
            assert store.combatant(session, b).rating == 1190
            assert store.ranking(session, b).rating == 1190

    @pytest.mark.asyncio
    async def test_default_floor_leaves_update_alone(self, battle_engine, pair, set_stats):
        a, b = pair
        view = await _started(battle_engine, a, b)
        set_stats(b, health=1)
        result = await battle_engine.act(view.id, a, Attack())
        assert result.battle.side_b.rating_after == 1184


class TestTurnCap:
    @pytest.mark.asyncio
    async def test_higher_health_ratio_wins(self, battle_engine, pair, set_stats, set_battle):
        a, b = pair
        view = await _started(battle_engine, a, b)
        set_stats(a, health=40, max_health=100)
        set_stats(b, health=60, max_health=100)
        set_battle(view.id, turn_count=49)
        result = await battle_engine.act(view.id, b, Defend())
        battle = result.battle
        assert battle.status == BattleStatus.FINISHED
        assert battle.ended_by == EndReason.TURN_CAP
        assert battle.winner_id == b
        assert battle.side_b.rating_after == 1216
        assert battle.side_a.rating_after == 1184

    @pytest.mark.asyncio
    async def test_equal_ratio_is_draw(self, battle_engine, pair, set_stats, set_battle, store):
        a, b = pair
        view = await _started(battle_engine, a, b)
        set_stats(a, health=50, max_health=100)
        set_stats(b, health=50, max_health=100)
        set_battle(view.id, turn_count=49)
        result = await battle_engine.act(view.id, b, Defend())
        battle = result.battle
        assert battle.is_draw
        assert battle.side_a.rating_after == 1200
        assert battle.side_b.rating_after == 1200
        with store.transaction() as session:
            assert store.combatant(session, a).experience == 75
            assert store.combatant(session, b).experience == 75
            assert store.ranking(session, a).draws == 1


class TestSurrender:
    @pytest.mark.asyncio
    async def test_opponent_wins(self, battle_engine, pair, store):
        a, b = pair
        view = await _started(battle_engine, a, b)
        result = await battle_engine.surrender(view.id, a)
        assert result.status == BattleStatus.FINISHED
        assert result.winner_id == b
        assert result.ended_by == EndReason.SURRENDER
        assert result.actions[-1].kind == ActionKind.SURRENDER
        with store.transaction() as session:
            assert store.combatant(session, b).experience == 50
            assert store.combatant(session, a).experience == 0

    @pytest.mark.asyncio
    async def test_second_surrender_conflicts(self, battle_engine, pair):
        a, b = pair
        view = await _started(battle_engine, a, b)
        first = await battle_engine.surrender(view.id, a)
        with pytest.raises(StateConflictError):
            await battle_engine.surrender(view.id, b)
        again = battle_engine.get(view.id)
        assert again.side_a.rating == first.side_a.rating == 1184
        assert again.side_b.rating == first.side_b.rating == 1216

    @pytest.mark.asyncio
    async def test_surrender_through_act(self, battle_engine, pair):
        a, b = pair
        view = await _started(battle_engine, a, b)
        # Surrender is allowed out of turn
        result = await battle_engine.act(view.id, b, Surrender())
        assert result.finished
        assert result.battle.winner_id == a
        assert result.applied[0].kind == ActionKind.SURRENDER

    @pytest.mark.asyncio
    async def test_waiting_battle_cannot_be_surrendered(self, battle_engine, pair):
        view = await battle_engine.create(*pair)
        with pytest.raises(StateConflictError):
            await battle_engine.surrender(view.id, pair[0])


class TestComputerOpponent:
    @pytest.mark.asyncio
    async def test_computer_replies_in_same_call(self, battle_engine, make_combatant, computer_id):
        human = make_combatant()
        view = await _started(battle_engine, human, computer_id)
        result = await battle_engine.act(view.id, human, Attack())
        assert len(result.applied) == 2
        assert result.applied[1].actor_id == computer_id
        assert result.battle.current_turn_id == human
        assert result.battle.turn_count == 2

    @pytest.mark.asyncio
    async def test_computer_opens_when_first(self, battle_engine, make_combatant, computer_id):
        human = make_combatant()
        view = await _started(battle_engine, computer_id, human)
        assert view.turn_count == 1
        assert view.current_turn_id == human
        assert view.actions[0].actor_id == computer_id


class TestTextBattle:
    @pytest.mark.asyncio
    async def test_computer_uses_battle_line(self, store, settings, rng, make_combatant, computer_id):
        class _Oracle:
            async def try_judge(self, text1, text2):
                return Judgment(winner="player2", score1=20, score2=80, reason="Sharper", source="oracle")

        engine = BattleEngine(store, settings, rng, judge=FallbackJudge(_Oracle(), ContentScorer(rng)))
        human = make_combatant()
        view = await engine.text_battle(human, "  I will win!  ", computer_id)
        assert view.mode == BattleMode.TEXT
        assert view.status == BattleStatus.FINISHED
        assert view.ended_by == EndReason.JUDGMENT
        assert view.turn_count == 1
        assert view.text_a == "I will win!"
        assert view.text_b.startswith("I shall conquer")
        assert view.winner_id == computer_id
        assert (view.score_a, view.score_b) == (20, 80)
        assert view.judge_source == "oracle"
        assert view.side_b.rating_after > view.side_b.rating_before

    @pytest.mark.asyncio
    async def test_two_humans(self, battle_engine, pair):
        a, b = pair
        view = await battle_engine.text_battle(a, "For glory!", b, "Victory is mine, champion!")
        assert view.status == BattleStatus.FINISHED
        assert view.winner_id in (a, b)
        assert view.judge_source == "heuristic"
        assert battle_engine.replay(view.id).total_turns == 1

    @pytest.mark.asyncio
    async def test_human_opponent_needs_text(self, battle_engine, pair):
        with pytest.raises(ValidationError):
            await battle_engine.text_battle(pair[0], "hello", pair[1])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "x" * 101])
    async def test_invalid_text(self, battle_engine, make_combatant, computer_id, text):
        with pytest.raises(ValidationError):
            await battle_engine.text_battle(make_combatant(), text, computer_id)

    @pytest.mark.asyncio
    async def test_busy_combatant(self, battle_engine, pair, computer_id):
        await battle_engine.create(*pair)
        with pytest.raises(StateConflictError):
            await battle_engine.text_battle(pair[0], "hello", computer_id)


class TestReplayAndStats:
    @pytest.mark.asyncio
    async def test_replay_written_on_settle(self, battle_engine, pair):
        a, b = pair
        view = await _started(battle_engine, a, b)
        await battle_engine.act(view.id, a, Attack())
        await battle_engine.surrender(view.id, b)
        replay = battle_engine.replay(view.id)
        assert replay.title == "Ash vs Gary"
        assert replay.total_turns == 2
        assert replay.winner_id == a
        assert len(replay.data["actions"]) == 2
        assert replay.data["metadata"]["winner_id"] == a
        assert replay.data["battle"]["status"] == "finished"

    @pytest.mark.asyncio
    async def test_no_replay_before_finish(self, battle_engine, pair):
        view = await battle_engine.create(*pair)
        with pytest.raises(NotFoundError):
            battle_engine.replay(view.id)

    @pytest.mark.asyncio
    async def test_stats(self, battle_engine, pair, make_combatant):
        a, b = pair
        finished = await _started(battle_engine, a, b)
        await battle_engine.surrender(finished.id, a)
        await battle_engine.create(make_combatant("C", "acct-3"), make_combatant("D", "acct-4"))
        stats = battle_engine.stats()
        assert stats.total == 2
        assert stats.finished == 1
        assert stats.waiting == 1
        assert stats.in_progress == 0
        assert stats.average_turns == 1.0


class TestEvents:
    @pytest.mark.asyncio
    async def test_lifecycle_events(self, battle_engine, pair, received, set_stats):
        a, b = pair
        view = await _started(battle_engine, a, b)
        set_stats(b, health=1)
        await battle_engine.act(view.id, a, Attack())
        kinds = [event.event_type for event in received]
        assert kinds == [EventType.BATTLE_STARTED, EventType.BATTLE_UPDATED, EventType.BATTLE_ENDED]
        ended = received[-1]
        assert ended.battle_id == view.id
        assert ended.payload["winner_id"] == a
        assert ended.payload["rating_changes"] == {str(a): 16, str(b): -16}

    @pytest.mark.asyncio
    async def test_rejected_action_publishes_nothing(self, battle_engine, pair, received):
        view = await _started(battle_engine, *pair)
        received.clear()
        with pytest.raises(StateConflictError):
            await battle_engine.act(view.id, pair[1], Attack())
        assert received == []
