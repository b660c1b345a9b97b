"""Command-line client for the Arena service."""
