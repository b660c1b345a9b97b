"""Judging for one-shot text battles.

Two free-text battle lines go in, a ``Judgment`` comes out. The heuristic
``ContentScorer`` is always available. ``FallbackJudge`` puts an optional
external judge in front of it and falls back to the heuristic whenever the
external judge reports ``DependencyUnavailable`` or fails outright.
"""

from __future__ import annotations

import logging
import random
from typing import Literal, Protocol

from pydantic import BaseModel

from arena.core.errors import DependencyUnavailable

logger = logging.getLogger(__name__)

Side = Literal["player1", "player2"]


class Judgment(BaseModel):
    """Result of judging two battle lines."""

    winner: Side
    score1: int
    score2: int
    reason: str
    source: str = "heuristic"  # "heuristic" or "oracle"


class Judge(Protocol):
    """Anything that can try to judge two texts."""

    async def try_judge(self, text1: str, text2: str) -> Judgment:
        """Judge the texts or raise ``DependencyUnavailable``."""
        ...


# ---------------------------------------------------------------------------
# Heuristic scorer
# ---------------------------------------------------------------------------

POWER_WORDS = [
    "victory", "conquer", "strongest", "invincible", "legend",
    "master", "champion", "hero", "genius",
]
EMOTIONAL_WORDS = ["passion", "fighting spirit", "will", "resolve", "determination", "conviction"]


class ScoreBreakdown(BaseModel):
    length: float = 0.0
    power: float = 0.0
    exclamation: float = 0.0
    diversity: float = 0.0
    jitter: float = 0.0

    @property
    def total(self) -> float:
        return self.length + self.power + self.exclamation + self.diversity + self.jitter


class ContentScorer:
    """Weighted-heuristic scorer for battle lines.

    Points come from length (capped), power vocabulary, exclamation marks,
    lexical diversity and a small random jitter that keeps exact ties rare.
    """

    def __init__(self, rng: random.Random | None = None, jitter: float = 5.0):
        self.rng = rng or random.Random()
        self.jitter = jitter

    def breakdown(self, text: str) -> ScoreBreakdown:
        lowered = text.lower()
        power = sum(3 for word in POWER_WORDS if word in lowered)
        power += sum(2 for word in EMOTIONAL_WORDS if word in lowered)
        return ScoreBreakdown(
            length=min(len(text) / 10, 10),
            power=power,
            exclamation=text.count("!") * 1.5,
            diversity=len(set(text.split())) * 0.5,
            jitter=self.rng.uniform(0, self.jitter),
        )

    def judge(self, text1: str, text2: str) -> Judgment:
        b1 = self.breakdown(text1)
        b2 = self.breakdown(text2)
        score1, score2 = b1.total, b2.total

        winner: Side
        if score1 > score2:
            winner = "player1"
        elif score2 > score1:
            winner = "player2"
        else:
            winner = self.rng.choice(["player1", "player2"])

        reasons = []
        if b1.power != b2.power:
            reasons.append("powerful vocabulary")
        if b1.diversity != b2.diversity:
            reasons.append("richer wording")
        if b1.exclamation != b2.exclamation:
            reasons.append("passionate delivery")
        if reasons:
            reason = f"Decided on {', '.join(reasons)} and overall impact"
        else:
            reason = "Decided on overall expressiveness and impact"

        return Judgment(
            winner=winner,
            score1=max(0, round(score1)),
            score2=max(0, round(score2)),
            reason=reason,
            source="heuristic",
        )

    async def try_judge(self, text1: str, text2: str) -> Judgment:
        return self.judge(text1, text2)


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

class FallbackJudge:
    """Try ``primary`` first; use ``fallback`` when it is unavailable."""

    def __init__(self, primary: Judge | None, fallback: ContentScorer):
        self.primary = primary
        self.fallback = fallback

    async def judge(self, text1: str, text2: str) -> Judgment:
        if self.primary is None:
            return self.fallback.judge(text1, text2)
        try:
            return await self.primary.try_judge(text1, text2)
        except DependencyUnavailable as exc:
            logger.warning("Judging oracle unavailable, using heuristic scorer: %s", exc.message)
            return self.fallback.judge(text1, text2)
        except Exception:
            logger.exception("Judging oracle failed, using heuristic scorer")
            return self.fallback.judge(text1, text2)
