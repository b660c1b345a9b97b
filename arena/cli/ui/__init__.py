"""Rich rendering for CLI output."""
