"""Turn policy for computer-controlled combatants."""

from __future__ import annotations

from typing import Callable

from arena.core.abilities import AbilityCategory, LearnedAbility
from arena.core.combatant import CombatantStats
from arena.core.resolver import Attack, CombatRules, UseAbility

LOW_HEALTH_RATIO = 0.3


def choose_command(
    actor: CombatantStats,
    loadout: list[LearnedAbility],
    is_ready: Callable[[int], bool],
    rules: CombatRules | None = None,
) -> Attack | UseAbility:
    """Pick a command for a computer combatant.

    Heals when below 30% health and a heal is affordable and ready,
    otherwise uses the hardest-hitting ready offense ability it can pay
    for, otherwise attacks.
    """
    rules = rules or CombatRules()
    usable = [
        learned for learned in loadout
        if learned.ability.cost <= actor.mana and is_ready(learned.ability.id)
    ]

    if actor.health_ratio < LOW_HEALTH_RATIO and actor.missing_health > 0:
        heals = [la for la in usable if la.ability.category == AbilityCategory.HEAL]
        if heals:
            best = max(heals, key=lambda la: la.ability.amount_at(la.level, rules.ability_level_bonus))
            return UseAbility(ability_id=best.ability.id)

    offense = [la for la in usable if la.ability.category == AbilityCategory.OFFENSE]
    if offense:
        best = max(
            offense,
            key=lambda la: (la.ability.amount_at(la.level, rules.ability_level_bonus), -la.ability.id),
        )
        if best.ability.amount_at(best.level, rules.ability_level_bonus) > actor.offense:
            return UseAbility(ability_id=best.ability.id)
    return Attack()
