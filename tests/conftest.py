"""Shared fixtures for Arena tests."""

import random

import pytest
from sqlmodel import create_engine
from sqlmodel.pool import StaticPool
from typer.testing import CliRunner

from arena.core.battle import BattleEngine
from arena.core.combatant import Archetype, CombatantStats
from arena.core.events import EventBus
from arena.core.matchmaking import Matchmaker
from arena.core.ranking import RankingTable
from arena.core.registry import CombatantRegistry
from arena.core.scoring import ContentScorer, FallbackJudge
from arena.data.store import ArenaStore
from arena.utils.config import Config


class FixedRng:
    """Stand-in for ``random.Random`` with fixed rolls."""

    def __init__(self, value: float = 1.0):
        self.value = value

    def uniform(self, a, b):
        return self.value

    def choice(self, seq):
        return seq[0]


# ---------------------------------------------------------------------------
# Stats fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def attacker():
    return CombatantStats(
        combatant_id=1, name="Attacker", health=100, max_health=100,
        mana=50, max_mana=50, offense=20, defense=10,
    )


@pytest.fixture
def defender():
    return CombatantStats(
        combatant_id=2, name="Defender", health=100, max_health=100,
        mana=50, max_mana=50, offense=10, defense=10,
    )


# ---------------------------------------------------------------------------
# Store and engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return Config(oracle_enabled=False)


@pytest.fixture
def db_engine():
    """Fresh in-memory SQLite database for each test."""
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
def store(db_engine):
    store = ArenaStore(engine=db_engine)
    store.init_schema()
    return store


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def received(events):
    """Every event published during the test."""
    seen = []
    events.subscribe(seen.append)
    return seen


@pytest.fixture
def battle_engine(store, settings, rng, events):
    return BattleEngine(
        store,
        settings,
        rng,
        events,
        FallbackJudge(None, ContentScorer(rng)),
    )


@pytest.fixture
def registry(store, settings):
    return CombatantRegistry(store, settings)


@pytest.fixture
def matchmaker(battle_engine):
    return Matchmaker(battle_engine)


@pytest.fixture
def rankings(store, settings):
    return RankingTable(store, settings)


@pytest.fixture
def make_combatant(registry):
    """Factory creating a human combatant and returning its id."""

    def _make(name="Fighter", account="acct-1", archetype=Archetype.WARRIOR):
        return registry.create(account, name, archetype).id

    return _make


@pytest.fixture
def set_stats(store):
    """Overwrite stored combatant fields directly."""

    def _set(combatant_id, **fields):
        with store.transaction() as session:
            record = store.combatant(session, combatant_id)
            for key, value in fields.items():
                setattr(record, key, value)
            session.add(record)

    return _set


@pytest.fixture
def computer_id(registry):
    """Id of the first seeded computer opponent."""
    return registry.computers()[0].id


# CLI fixtures
@pytest.fixture
def cli_runner():
    return CliRunner()
