"""Tests for the ranking table."""

import pytest
import pytest_asyncio

from arena.core.errors import NotFoundError, ValidationError
from arena.core.ranking import (
    Outcome,
    RecentForm,
    Streak,
    classify_form,
    compute_streak,
    win_rate,
)

W, L, D = Outcome.WIN, Outcome.LOSS, Outcome.DRAW


class TestClassifyForm:
    def test_new_below_window(self):
        assert classify_form([W, W, W], 3) == RecentForm.NEW

    def test_winning(self):
        assert classify_form([W, W, L, W, W], 12) == RecentForm.WINNING

    def test_losing(self):
        assert classify_form([L, L, L, D, L], 7) == RecentForm.LOSING

    def test_stable(self):
        assert classify_form([W, L, W, L, D], 5) == RecentForm.STABLE

    def test_only_newest_window_counts(self):
        assert classify_form([L, L, L, L, L, W, W, W], 8) == RecentForm.LOSING


class TestStreak:
    def test_win_streak(self):
        assert compute_streak([W, W, L, W]) == Streak(kind=W, count=2)

    def test_loss_streak(self):
        assert compute_streak([L, L, L]) == Streak(kind=L, count=3)

    def test_draw_ends_streak(self):
        assert compute_streak([D, W, W]).count == 0
        assert compute_streak([W, D, W]).count == 1

    def test_empty(self):
        assert compute_streak([]) == Streak()

    def test_label(self):
        assert Streak(kind=W, count=4).label() == "W4"
        assert Streak().label() == "-"


class TestWinRate:
    def test_percent_with_two_decimals(self):
        assert win_rate(1, 3) == 33.33

    def test_no_battles(self):
        assert win_rate(0, 0) == 0.0


async def _win_by_surrender(engine, winner, loser):
    view = await engine.create(winner, loser)
    await engine.start(view.id)
    await engine.surrender(view.id, loser)


@pytest.fixture
def hero(make_combatant):
    return make_combatant("Hero", "acct-hero")


@pytest_asyncio.fixture
async def five_wins(battle_engine, make_combatant, hero):
    opponents = []
    for i in range(5):
        opponent = make_combatant(f"Rookie {i}", f"acct-{i}")
        await _win_by_surrender(battle_engine, hero, opponent)
        opponents.append(opponent)
    return opponents


class TestLeaderboard:
    def test_seeded_computers_are_ranked(self, rankings):
        board = rankings.leaderboard()
        assert [e.rank for e in board] == [1, 2, 3, 4, 5]
        assert board[0].name == "AI_DaVinci"
        assert board[0].rating == 1350
        assert board[0].tier == "Gold"
        assert board[0].recent_form == RecentForm.NEW

    def test_ordering(self, rankings, make_combatant):
        for i in range(3):
            make_combatant(f"Player {i}", f"acct-{i}")
        board = rankings.leaderboard(limit=100)
        keys = [(-e.rating, -e.wins, e.combatant_id) for e in board]
        assert keys == sorted(keys)

    def test_equal_ratings_ordered_by_id(self, rankings, make_combatant):
        first = make_combatant("First", "acct-1")
        second = make_combatant("Second", "acct-2")
        ids = [e.combatant_id for e in rankings.leaderboard(limit=100)]
        assert ids.index(first) < ids.index(second)

    def test_offset(self, rankings):
        page = rankings.leaderboard(limit=2, offset=1)
        assert [e.rank for e in page] == [2, 3]

    @pytest.mark.parametrize("limit,offset", [(0, 0), (-1, 0), (10, -1)])
    def test_invalid_paging(self, rankings, limit, offset):
        with pytest.raises(ValidationError):
            rankings.leaderboard(limit, offset)

    def test_entry_rank_matches_leaderboard(self, rankings, make_combatant):
        make_combatant("Player", "acct-1")
        for entry in rankings.leaderboard(limit=100):
            assert rankings.entry(entry.combatant_id).rank == entry.rank

    def test_unknown_combatant(self, rankings):
        with pytest.raises(NotFoundError):
            rankings.entry(9999)


class TestAfterBattles:
    @pytest.mark.asyncio
    async def test_win_record(self, rankings, hero, five_wins):
        entry = rankings.entry(hero)
        assert (entry.wins, entry.losses, entry.draws) == (5, 0, 0)
        assert entry.total_battles == 5
        assert entry.win_rate == 100.0
        assert entry.rating > 1200
        assert entry.recent_form == RecentForm.WINNING
        assert entry.streak == Streak(kind=W, count=5)

    @pytest.mark.asyncio
    async def test_form_and_streak_queries(self, rankings, hero, five_wins):
        assert rankings.recent_form(hero) == RecentForm.WINNING
        assert rankings.streak(hero).label() == "W5"
        loser = five_wins[0]
        assert rankings.recent_form(loser) == RecentForm.NEW
        assert rankings.streak(loser) == Streak(kind=L, count=1)

    @pytest.mark.asyncio
    async def test_ranks_stay_consistent(self, rankings, five_wins):
        board = rankings.leaderboard(limit=100)
        assert [e.rank for e in board] == list(range(1, len(board) + 1))
        for entry in board:
            assert rankings.entry(entry.combatant_id).rank == entry.rank

    @pytest.mark.asyncio
    async def test_nearby_window(self, rankings, hero, five_wins):
        rank = rankings.entry(hero).rank
        assert rank >= 2
        window = rankings.nearby(hero, 1)
        assert [e.rank for e in window] == [rank - 1, rank, rank + 1]
        assert window[1].combatant_id == hero

    @pytest.mark.asyncio
    async def test_stats(self, rankings, five_wins):
        stats = rankings.stats()
        assert stats.players == 5 + 6
        assert stats.total_battles == 5
        assert stats.top_rating == 1350


class TestNearby:
    def test_window_clamped_at_top(self, rankings):
        top = rankings.leaderboard(limit=1)[0]
        window = rankings.nearby(top.combatant_id, 2)
        assert [e.rank for e in window] == [1, 2, 3]

    def test_zero_range(self, rankings):
        top = rankings.leaderboard(limit=1)[0]
        assert [e.combatant_id for e in rankings.nearby(top.combatant_id, 0)] == [top.combatant_id]

    def test_unknown(self, rankings):
        with pytest.raises(NotFoundError):
            rankings.nearby(9999)
