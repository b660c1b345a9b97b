"""Ability model and the default ability catalog."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class AbilityCategory(str, Enum):
    """What an ability does when it resolves."""

    OFFENSE = "offense"  # Damage, mitigated by defense
    HEAL = "heal"  # Restores the caster's health
    DEFENSE = "defense"  # Guards against the next incoming hit
    BUFF = "buff"  # Strengthens the caster's next damaging action
    DEBUFF = "debuff"  # Weakens the target's next damaging action


class Ability(BaseModel):
    """A named, cost-gated effect template. Immutable at runtime."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str = ""
    cost: int = 0  # Mana
    damage: int = 0
    heal_amount: int = 0
    cooldown: int = 0  # Own turns before it can be used again
    category: AbilityCategory = AbilityCategory.OFFENSE

    @property
    def base_amount(self) -> int:
        """Base damage for offense abilities, base healing for heal abilities."""
        if self.category == AbilityCategory.HEAL:
            return self.heal_amount
        return self.damage

    def amount_at(self, level: int, level_bonus: int = 5) -> int:
        """Damage or healing at a given ability level."""
        return max(0, self.base_amount + (max(1, level) - 1) * level_bonus)


class LearnedAbility(BaseModel):
    """A combatant's level-scaled reference to a catalog ability."""

    ability: Ability
    level: int = 1


# ---------------------------------------------------------------------------
# Default catalog
# ---------------------------------------------------------------------------

ABILITY_CATALOG: dict[int, Ability] = {
    a.id: a
    for a in [
        Ability(id=1, name="Strike", description="A plain weapon strike.",
                cost=0, damage=15, cooldown=0, category=AbilityCategory.OFFENSE),
        Ability(id=2, name="Heavy Blow", description="A crushing physical hit.",
                cost=10, damage=25, cooldown=2, category=AbilityCategory.OFFENSE),
        Ability(id=3, name="Heal", description="Restores health.",
                cost=15, heal_amount=30, cooldown=3, category=AbilityCategory.HEAL),
        Ability(id=4, name="Guard Stance", description="Halves the next hit taken.",
                cost=5, cooldown=2, category=AbilityCategory.DEFENSE),
        Ability(id=5, name="Fireball", description="Hurls a ball of flame.",
                cost=20, damage=30, cooldown=3, category=AbilityCategory.OFFENSE),
        Ability(id=6, name="Ice Spear", description="Launches a spear of ice.",
                cost=18, damage=28, cooldown=3, category=AbilityCategory.OFFENSE),
        Ability(id=7, name="Lightning Bolt", description="Calls down lightning.",
                cost=22, damage=32, cooldown=4, category=AbilityCategory.OFFENSE),
        Ability(id=8, name="Healing Potion", description="Powerful restorative magic.",
                cost=25, heal_amount=50, cooldown=4, category=AbilityCategory.HEAL),
        Ability(id=9, name="Magic Shield", description="Conjures a protective barrier.",
                cost=12, cooldown=3, category=AbilityCategory.DEFENSE),
        Ability(id=10, name="Berserk", description="The next attack hits 50% harder.",
                cost=15, cooldown=5, category=AbilityCategory.BUFF),
        Ability(id=11, name="Hex", description="The target's next attack hits half as hard.",
                cost=12, cooldown=4, category=AbilityCategory.DEBUFF),
    ]
}
