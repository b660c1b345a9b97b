"""Elo rating helpers.

Pure functions: no persistence access, no randomness.
"""

DEFAULT_RATING = 1200
K_FACTOR = 32


def expected_score(rating: int, opponent_rating: int) -> float:
    """Probability that ``rating`` beats ``opponent_rating`` under the logistic model."""
    return 1.0 / (1.0 + 10 ** ((opponent_rating - rating) / 400))


def _adjust(rating: int, opponent_rating: int, actual: float, k: int) -> int:
    new_rating = round(rating + k * (actual - expected_score(rating, opponent_rating)))
    return max(0, new_rating)


def update(winner_rating: int, loser_rating: int, k: int = K_FACTOR) -> tuple[int, int]:
    """Return (winner_new, loser_new) after a decisive result.

    >>> update(1200, 1200)
    (1216, 1184)
    """
    return (
        _adjust(winner_rating, loser_rating, 1.0, k),
        _adjust(loser_rating, winner_rating, 0.0, k),
    )


def update_draw(rating_a: int, rating_b: int, k: int = K_FACTOR) -> tuple[int, int]:
    """Return (a_new, b_new) after a draw. Equal ratings are left unchanged."""
    return (
        _adjust(rating_a, rating_b, 0.5, k),
        _adjust(rating_b, rating_a, 0.5, k),
    )


def compute_tier(rating: int) -> str:
    """Derive a display tier label from a rating."""
    if rating < 1100:
        return "Bronze"
    if rating < 1300:
        return "Silver"
    if rating < 1500:
        return "Gold"
    if rating < 1700:
        return "Platinum"
    if rating < 1900:
        return "Diamond"
    if rating < 2100:
        return "Master"
    return "Grandmaster"
