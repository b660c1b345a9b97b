"""Helper utilities for Arena."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get the current UTC datetime."""
    return datetime.now(timezone.utc)


def calculate_level(xp: int) -> int:
    """Calculate level from accumulated experience.

    Each level requires ``level * 100`` more XP than the previous one.
    """
    level = 1
    xp_required = 0
    while True:
        xp_for_next = level * 100
        if xp < xp_required + xp_for_next:
            break
        xp_required += xp_for_next
        level += 1
        if level >= 100:
            break
    return level


def xp_for_level(level: int) -> int:
    """Total XP needed to reach a level."""
    return sum(lvl * 100 for lvl in range(1, level))


def xp_to_next_level(current_xp: int) -> tuple[int, int]:
    """Calculate XP progress to next level.

    Returns:
        Tuple of (current_xp_in_level, xp_needed_for_level)
    """
    level = calculate_level(current_xp)
    xp_in_level = current_xp - xp_for_level(level)
    return xp_in_level, level * 100


def format_datetime(dt: datetime | None) -> str:
    """Format datetime for display."""
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M")


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
