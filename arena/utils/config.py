"""Configuration management for Arena."""

import os
from pathlib import Path

from pydantic import BaseModel


def _default_database_url() -> str:
    return os.getenv(
        "ARENA_DATABASE_URL",
        f"sqlite:///{Path.home() / '.arena' / 'arena.db'}",
    )


class Config(BaseModel):
    """Application configuration."""

    # Paths
    data_dir: Path = Path.home() / ".arena"

    # Persistence
    database_url: str = _default_database_url()

    # Ratings
    k_factor: int = 32
    default_rating: int = 1200
    rating_floor: int = 0  # Applied when ratings are written back

    # Combat
    turn_cap: int = 50
    attack_variance: tuple[float, float] = (0.8, 1.2)
    ability_level_bonus: int = 5
    defend_reduction: float = 0.5  # Incoming damage multiplier while guarding
    buff_multiplier: float = 1.5
    debuff_multiplier: float = 0.5

    # Experience rewards
    winner_xp: int = 100
    loser_xp: int = 50
    draw_xp: int = 75
    surrender_xp: int = 50  # Winner only

    # Matchmaking
    similar_rating_band: int = 100
    practice_opponents: bool = True  # Offer a computer opponent while queued
    computer_prefix: str = "AI_"

    # One-shot text battles
    text_max_length: int = 100

    # Ranking
    recent_form_window: int = 5
    streak_window: int = 20

    # Judging oracle (Ollama-compatible HTTP API)
    oracle_enabled: bool = True
    oracle_url: str = os.getenv("ARENA_ORACLE_URL", "http://localhost:11434")
    oracle_model: str = os.getenv("ARENA_ORACLE_MODEL", "gemma3:latest")
    oracle_timeout: float = 10.0
    oracle_probe_interval: float = 30.0  # Seconds a liveness probe result is reused

    # Client / service
    server_url: str = os.getenv("ARENA_SERVER_URL", "http://localhost:8000")
    log_level: str = os.getenv("ARENA_LOG_LEVEL", "INFO")

    def ensure_dirs(self) -> None:
        """Create necessary directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


# Global config instance
config = Config()
