"""Arena - turn-based duels, matchmaking and skill ratings."""

__version__ = "0.1.0"
