"""Combat commands and the action resolver.

A command is one of a closed set of variants (attack, ability, defend,
surrender). ``resolve`` computes what a command does to the two
combatants without touching either of them; the battle engine applies
the returned ``ActionOutcome``. Randomness always comes in as a
parameter so every roll is replayable.
"""

from __future__ import annotations

import math
import random
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from arena.core.abilities import Ability, AbilityCategory
from arena.core.combatant import CombatantStats
from arena.core.errors import ResourceError, ValidationError


class ActionKind(str, Enum):
    """Kinds of recorded battle actions."""

    ATTACK = "attack"
    ABILITY = "ability"
    DEFEND = "defend"
    SURRENDER = "surrender"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class Attack(BaseModel):
    kind: Literal["attack"] = "attack"


class UseAbility(BaseModel):
    kind: Literal["ability"] = "ability"
    ability_id: int


class Defend(BaseModel):
    kind: Literal["defend"] = "defend"


class Surrender(BaseModel):
    kind: Literal["surrender"] = "surrender"


BattleCommand = Annotated[
    Union[Attack, UseAbility, Defend, Surrender],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Modifiers and outcome
# ---------------------------------------------------------------------------

class CombatModifiers(BaseModel):
    """Short-lived flags a side carries between turns."""

    guarding: bool = False  # Next incoming damage is reduced
    empowered: bool = False  # Next outgoing damage is boosted
    weakened: bool = False  # Next outgoing damage is reduced


class CombatRules(BaseModel):
    """Numeric knobs the resolver needs."""

    attack_variance: tuple[float, float] = (0.8, 1.2)
    ability_level_bonus: int = 5
    defend_reduction: float = 0.5
    buff_multiplier: float = 1.5
    debuff_multiplier: float = 0.5


class ActionOutcome(BaseModel):
    """Effect of one resolved command. All numbers are non-negative integers."""

    kind: ActionKind
    ability_id: int | None = None
    damage: int = 0
    healing: int = 0
    resource_spent: int = 0

    # Modifier bookkeeping for the engine
    actor_guards: bool = False
    actor_empowered: bool = False
    target_weakened: bool = False
    consumed_actor_modifiers: bool = False  # Actor's empowered/weakened were used up
    consumed_target_guard: bool = False

    message: str = ""


# ---------------------------------------------------------------------------
# Damage helpers
# ---------------------------------------------------------------------------

def mitigate(raw_damage: int, defense: int) -> int:
    """Apply defender mitigation. A landed hit always deals at least 1."""
    return max(1, raw_damage - defense // 2)


def _scale_outgoing(raw: int, mods: CombatModifiers, rules: CombatRules) -> int:
    if mods.empowered:
        raw = math.floor(raw * rules.buff_multiplier)
    if mods.weakened:
        raw = math.floor(raw * rules.debuff_multiplier)
    return raw


def _land_hit(
    raw: int,
    defender: CombatantStats,
    actor_mods: CombatModifiers,
    defender_mods: CombatModifiers,
    rules: CombatRules,
) -> tuple[int, bool]:
    """Return (final damage, whether the defender's guard was used)."""
    damage = mitigate(_scale_outgoing(raw, actor_mods, rules), defender.defense)
    if defender_mods.guarding:
        return max(1, math.floor(damage * rules.defend_reduction)), True
    return damage, False


# ---------------------------------------------------------------------------
# Per-variant resolvers
# ---------------------------------------------------------------------------

def resolve_attack(
    actor: CombatantStats,
    defender: CombatantStats,
    rng: random.Random,
    actor_mods: CombatModifiers,
    defender_mods: CombatModifiers,
    rules: CombatRules,
) -> ActionOutcome:
    low, high = rules.attack_variance
    raw = math.floor(actor.offense * rng.uniform(low, high))
    damage, guard_used = _land_hit(raw, defender, actor_mods, defender_mods, rules)
    return ActionOutcome(
        kind=ActionKind.ATTACK,
        damage=damage,
        consumed_actor_modifiers=actor_mods.empowered or actor_mods.weakened,
        consumed_target_guard=guard_used,
        message=f"{actor.name} attacks {defender.name} for {damage} damage.",
    )


def resolve_ability(
    ability: Ability,
    ability_level: int,
    actor: CombatantStats,
    defender: CombatantStats,
    actor_mods: CombatModifiers,
    defender_mods: CombatModifiers,
    rules: CombatRules,
) -> ActionOutcome:
    if actor.mana < ability.cost:
        raise ResourceError(
            f"{actor.name} needs {ability.cost} mana for {ability.name} "
            f"but has {actor.mana}."
        )

    outcome = ActionOutcome(
        kind=ActionKind.ABILITY,
        ability_id=ability.id,
        resource_spent=ability.cost,
    )
    amount = ability.amount_at(ability_level, rules.ability_level_bonus)

    if ability.category == AbilityCategory.OFFENSE:
        damage, guard_used = _land_hit(amount, defender, actor_mods, defender_mods, rules)
        outcome.damage = damage
        outcome.consumed_actor_modifiers = actor_mods.empowered or actor_mods.weakened
        outcome.consumed_target_guard = guard_used
        outcome.message = f"{actor.name} uses {ability.name} on {defender.name} for {damage} damage."
    elif ability.category == AbilityCategory.HEAL:
        # Healing ignores mitigation and never overfills
        outcome.healing = min(amount, actor.missing_health)
        outcome.message = f"{actor.name} uses {ability.name} and recovers {outcome.healing} health."
    elif ability.category == AbilityCategory.DEFENSE:
        outcome.actor_guards = True
        outcome.message = f"{actor.name} uses {ability.name} and braces for impact."
    elif ability.category == AbilityCategory.BUFF:
        outcome.actor_empowered = True
        outcome.message = f"{actor.name} uses {ability.name} and grows stronger."
    elif ability.category == AbilityCategory.DEBUFF:
        outcome.target_weakened = True
        outcome.message = f"{actor.name} uses {ability.name} on {defender.name}."
    return outcome


def resolve_defend(actor: CombatantStats) -> ActionOutcome:
    return ActionOutcome(
        kind=ActionKind.DEFEND,
        actor_guards=True,
        message=f"{actor.name} takes a defensive stance.",
    )


def resolve(
    command: Attack | UseAbility | Defend | Surrender,
    actor: CombatantStats,
    defender: CombatantStats,
    rng: random.Random,
    *,
    ability: Ability | None = None,
    ability_level: int = 1,
    actor_mods: CombatModifiers | None = None,
    defender_mods: CombatModifiers | None = None,
    rules: CombatRules | None = None,
) -> ActionOutcome:
    """Compute the effect of ``command`` by ``actor`` against ``defender``.

    Raises:
        ResourceError: the actor cannot pay for the ability.
        ValidationError: the command cannot be resolved (surrender, or an
            ability command without its ability).
    """
    actor_mods = actor_mods or CombatModifiers()
    defender_mods = defender_mods or CombatModifiers()
    rules = rules or CombatRules()

    if isinstance(command, Attack):
        return resolve_attack(actor, defender, rng, actor_mods, defender_mods, rules)
    if isinstance(command, UseAbility):
        if ability is None or ability.id != command.ability_id:
            raise ValidationError(f"Ability {command.ability_id} was not supplied.")
        return resolve_ability(
            ability, ability_level, actor, defender, actor_mods, defender_mods, rules
        )
    if isinstance(command, Defend):
        return resolve_defend(actor)
    if isinstance(command, Surrender):
        raise ValidationError("Surrender ends the battle and has no combat effect.")
    raise ValidationError(f"Unknown command: {command!r}")
