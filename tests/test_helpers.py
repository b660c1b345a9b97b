"""Tests for helper utilities, the event bus, keyed locks and the computer policy."""

import asyncio
from datetime import datetime, timezone

import pytest

from arena.core.abilities import ABILITY_CATALOG, LearnedAbility
from arena.core.ai import choose_command
from arena.core.combatant import CombatantStats
from arena.core.events import ArenaEvent, EventBus, EventType
from arena.core.locks import KeyedLock
from arena.core.resolver import Attack, UseAbility
from arena.utils.helpers import (
    calculate_level,
    ensure_utc,
    format_datetime,
    utc_now,
    xp_for_level,
    xp_to_next_level,
)


class TestUtcNow:
    """Tests for utc_now function."""

    def test_is_aware(self):
        """Returns a timezone-aware UTC datetime."""
        assert utc_now().tzinfo == timezone.utc


class TestEnsureUtc:
    def test_naive_gets_utc(self):
        naive = datetime(2024, 1, 1, 12, 0)
        assert ensure_utc(naive) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_aware_untouched(self):
        aware = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert ensure_utc(aware) is aware


class TestLevels:
    """Tests for the experience curve."""

    @pytest.mark.parametrize("xp,level", [(0, 1), (99, 1), (100, 2), (299, 2), (300, 3)])
    def test_calculate_level(self, xp, level):
        assert calculate_level(xp) == level

    def test_xp_for_level(self):
        assert xp_for_level(1) == 0
        assert xp_for_level(3) == 300

    def test_xp_to_next_level(self):
        assert xp_to_next_level(150) == (50, 200)


class TestFormatDatetime:
    def test_none(self):
        assert format_datetime(None) == "-"

    def test_format(self):
        assert format_datetime(datetime(2024, 3, 5, 9, 7)) == "2024-03-05 09:07"


class TestEventBus:
    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        bus = EventBus()
        seen = []

        async def async_handler(event):
            seen.append(("async", event.event_type))

        bus.subscribe(lambda event: seen.append(("sync", event.event_type)))
        bus.subscribe(async_handler)
        await bus.publish(ArenaEvent(event_type=EventType.BATTLE_STARTED, battle_id=1))
        assert seen == [("sync", EventType.BATTLE_STARTED), ("async", EventType.BATTLE_STARTED)]

    @pytest.mark.asyncio
    async def test_failing_handler_is_skipped(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        await bus.publish(ArenaEvent(event_type=EventType.BATTLE_ENDED))
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append)
        bus.unsubscribe(seen.append)
        await bus.publish(ArenaEvent(event_type=EventType.QUEUE_ERROR))
        assert seen == []


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_serializes(self):
        locks = KeyedLock()
        order = []

        async def worker(name):
            async with locks.hold("battle-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_keys_overlap(self):
        locks = KeyedLock()
        order = []

        async def worker(key):
            async with locks.hold(key):
                order.append(f"{key}-in")
                await asyncio.sleep(0.01)
                order.append(f"{key}-out")

        await asyncio.gather(worker(1), worker(2))
        assert order[:2] == ["1-in", "2-in"]


def _computer(health=100, mana=50):
    return CombatantStats(
        combatant_id=1, name="Bot", health=health, max_health=100,
        mana=mana, max_mana=50, offense=10, defense=5, is_computer=True,
    )


def _loadout(*ability_ids):
    return [LearnedAbility(ability=ABILITY_CATALOG[i]) for i in ability_ids]


class TestComputerPolicy:
    def test_heals_when_low(self):
        command = choose_command(_computer(health=20), _loadout(1, 3, 5), lambda _: True)
        assert command == UseAbility(ability_id=3)

    def test_strongest_offense_when_healthy(self):
        command = choose_command(_computer(), _loadout(1, 3, 5, 6), lambda _: True)
        assert command == UseAbility(ability_id=5)

    def test_skips_unaffordable_and_cooling_down(self):
        command = choose_command(_computer(mana=19), _loadout(5, 6), lambda ability_id: ability_id != 6)
        assert isinstance(command, Attack)

    def test_attacks_without_abilities(self):
        assert isinstance(choose_command(_computer(), [], lambda _: True), Attack)
