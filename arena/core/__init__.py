"""Core battle, matchmaking and ranking logic."""
