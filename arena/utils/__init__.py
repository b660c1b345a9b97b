"""Utility modules for Arena."""
