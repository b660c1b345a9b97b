"""Combatant stat snapshots, archetypes and the computer roster."""

from enum import Enum

from pydantic import BaseModel


class Archetype(str, Enum):
    """Starting class of a combatant."""

    WARRIOR = "warrior"
    MAGE = "mage"
    ARCHER = "archer"


class BaseStats(BaseModel):
    """Archetype starting stats."""

    max_health: int
    max_mana: int
    offense: int
    defense: int
    speed: int


ARCHETYPE_STATS: dict[Archetype, BaseStats] = {
    Archetype.WARRIOR: BaseStats(max_health=120, max_mana=30, offense=15, defense=12, speed=8),
    Archetype.MAGE: BaseStats(max_health=80, max_mana=80, offense=8, defense=6, speed=12),
    Archetype.ARCHER: BaseStats(max_health=100, max_mana=50, offense=12, defense=8, speed=15),
}

# Ability ids every new combatant of an archetype starts with (level 1)
ARCHETYPE_LOADOUTS: dict[Archetype, list[int]] = {
    Archetype.WARRIOR: [1, 2, 4, 10],
    Archetype.MAGE: [1, 3, 5, 9, 11],
    Archetype.ARCHER: [1, 2, 6],
}


class CombatantStats(BaseModel):
    """A combatant's battle-relevant numbers at one point in time.

    The resolver only ever reads these; the battle engine writes the
    results back to the store.
    """

    combatant_id: int
    name: str = ""
    level: int = 1
    health: int
    max_health: int
    mana: int
    max_mana: int
    offense: int
    defense: int
    speed: int = 10
    rating: int = 1200
    is_computer: bool = False

    @property
    def health_ratio(self) -> float:
        if self.max_health <= 0:
            return 0.0
        return self.health / self.max_health

    @property
    def is_down(self) -> bool:
        return self.health <= 0

    @property
    def missing_health(self) -> int:
        return max(0, self.max_health - self.health)


# ---------------------------------------------------------------------------
# Computer roster
# ---------------------------------------------------------------------------

class ComputerProfile(BaseModel):
    """A predetermined computer-controlled opponent."""

    username: str
    name: str
    archetype: Archetype
    rating: int
    battle_line: str


COMPUTER_ROSTER: list[ComputerProfile] = [
    ComputerProfile(
        username="AI_Napoleon",
        name="Napoleon Bonaparte",
        archetype=Archetype.WARRIOR,
        rating=1250,
        battle_line="I shall conquer this battlefield as I conquered Europe!",
    ),
    ComputerProfile(
        username="AI_Einstein",
        name="Albert Einstein",
        archetype=Archetype.MAGE,
        rating=1300,
        battle_line="E=mc2, but in this battle, Victory = Strategy x Intelligence squared",
    ),
    ComputerProfile(
        username="AI_Sherlock",
        name="Sherlock Holmes",
        archetype=Archetype.ARCHER,
        rating=1200,
        battle_line="Elementary, my dear opponent. Your defeat is already deduced.",
    ),
    ComputerProfile(
        username="AI_Cleopatra",
        name="Cleopatra",
        archetype=Archetype.MAGE,
        rating=1150,
        battle_line="The Queen of Egypt shall not be defeated by mere mortals!",
    ),
    ComputerProfile(
        username="AI_DaVinci",
        name="Leonardo da Vinci",
        archetype=Archetype.ARCHER,
        rating=1350,
        battle_line="My genius spans art and war. Prepare for a masterpiece of defeat!",
    ),
]
