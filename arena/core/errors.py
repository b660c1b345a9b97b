"""Error taxonomy for the battle engine.

Every engine operation raises one of these to its immediate caller.
``DependencyUnavailable`` is always recovered inside the engine and
never reaches a caller.
"""


class ArenaError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(ArenaError):
    """Malformed input, rejected before any state change."""


class StateConflictError(ArenaError):
    """The battle or queue is in the wrong state for the operation."""


class NotFoundError(ArenaError):
    """Unknown combatant, battle or ability id."""


class ResourceError(ArenaError):
    """Not enough mana to pay for an ability."""


# Name used by the combat rules for a failed ability payment
InsufficientResource = ResourceError


class DependencyUnavailable(ArenaError):
    """An optional external service could not be reached."""


class PersistenceError(ArenaError):
    """The store failed; the operation was rolled back."""
