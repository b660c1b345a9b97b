"""Persistence and outbound service clients for Arena."""
