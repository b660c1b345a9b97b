"""Combatant management owned by an account.

Creation from an archetype, renames, presence, ability loadouts and
deletion. Everything here runs in a single store transaction per call.
"""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import BaseModel, Field

from arena.core.abilities import LearnedAbility
from arena.core.combatant import Archetype
from arena.core.errors import NotFoundError, StateConflictError, ValidationError
from arena.data.server_models import CombatantRecord, LoadoutRecord
from arena.data.store import ArenaStore
from arena.utils.config import Config, config

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 50
MAX_ABILITY_LEVEL = 10


class CombatantView(BaseModel):
    """A combatant as shown to its owner and to the presentation layer."""

    id: int
    account_id: str
    name: str
    archetype: Archetype
    is_computer: bool = False
    is_online: bool = False
    level: int = 1
    experience: int = 0
    health: int
    max_health: int
    mana: int
    max_mana: int
    offense: int
    defense: int
    speed: int
    rating: int
    created_at: datetime
    abilities: list[LearnedAbility] = Field(default_factory=list)


class CombatantRegistry:
    """Create, inspect and edit combatants."""

    def __init__(self, store: ArenaStore, settings: Config | None = None):
        self.store = store
        self.settings = settings or config

    def _view(self, session, record: CombatantRecord) -> CombatantView:
        return CombatantView(
            id=record.id,
            account_id=record.account_id,
            name=record.name,
            archetype=Archetype(record.archetype),
            is_computer=record.is_computer,
            is_online=record.is_online,
            level=record.level,
            experience=record.experience,
            health=record.health,
            max_health=record.max_health,
            mana=record.mana,
            max_mana=record.max_mana,
            offense=record.offense,
            defense=record.defense,
            speed=record.speed,
            rating=record.rating,
            created_at=record.created_at,
            abilities=self.store.loadout(session, record.id),
        )

    def _clean_name(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name cannot be empty.")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Name cannot exceed {MAX_NAME_LENGTH} characters.")
        if name.startswith(self.settings.computer_prefix):
            raise ValidationError(
                f"Names starting with '{self.settings.computer_prefix}' are reserved."
            )
        return name

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, account_id: str, name: str, archetype: Archetype = Archetype.WARRIOR) -> CombatantView:
        if not account_id:
            raise ValidationError("An account id is required.")
        name = self._clean_name(name)
        with self.store.transaction() as session:
            record = self.store.insert_combatant(
                session,
                account_id=account_id,
                name=name,
                archetype=archetype,
                rating=self.settings.default_rating,
            )
            view = self._view(session, record)
        logger.info("Created %s combatant %s (%d) for %s", archetype.value, name, view.id, account_id)
        return view

    def get(self, combatant_id: int) -> CombatantView:
        with self.store.transaction() as session:
            return self._view(session, self.store.combatant(session, combatant_id))

    def list_for_account(self, account_id: str) -> list[CombatantView]:
        with self.store.transaction() as session:
            records = self.store.combatants_for_account(session, account_id)
            return [self._view(session, r) for r in records]

    def computers(self) -> list[CombatantView]:
        with self.store.transaction() as session:
            return [self._view(session, r) for r in self.store.computers(session)]

    def rename(self, combatant_id: int, name: str) -> CombatantView:
        name = self._clean_name(name)
        with self.store.transaction() as session:
            record = self.store.combatant(session, combatant_id)
            if record.is_computer:
                raise ValidationError("Computer combatants cannot be renamed.")
            record.name = name
            session.add(record)
            session.flush()
            return self._view(session, record)

    def set_presence(self, combatant_id: int, online: bool) -> CombatantView:
        with self.store.transaction() as session:
            record = self.store.combatant(session, combatant_id)
            if not record.is_computer:
                record.is_online = online
                session.add(record)
                session.flush()
            return self._view(session, record)

    def delete(self, combatant_id: int) -> None:
        """Delete a combatant with its queue entry, loadout, ranking and history.

        Raises:
            StateConflictError: the combatant is in a waiting or running battle.
        """
        with self.store.transaction() as session:
            record = self.store.combatant(session, combatant_id)
            if record.is_computer:
                raise ValidationError("Computer combatants cannot be deleted.")
            if self.store.active_battle(session, combatant_id) is not None:
                raise StateConflictError(
                    f"Combatant {combatant_id} is in a battle and cannot be deleted."
                )
            self.store.delete_combatant(session, record)
        logger.info("Deleted combatant %d", combatant_id)

    # ------------------------------------------------------------------
    # Loadout
    # ------------------------------------------------------------------

    def learn_ability(self, combatant_id: int, ability_id: int) -> CombatantView:
        with self.store.transaction() as session:
            record = self.store.combatant(session, combatant_id)
            self.store.ability(session, ability_id)
            if self.store.loadout_row(session, combatant_id, ability_id) is not None:
                raise StateConflictError(f"Ability {ability_id} is already known.")
            session.add(LoadoutRecord(combatant_id=combatant_id, ability_id=ability_id, level=1))
            session.flush()
            return self._view(session, record)

    def level_up_ability(self, combatant_id: int, ability_id: int) -> CombatantView:
        with self.store.transaction() as session:
            record = self.store.combatant(session, combatant_id)
            link = self.store.loadout_row(session, combatant_id, ability_id)
            if link is None:
                raise NotFoundError(
                    f"Combatant {combatant_id} does not know ability {ability_id}."
                )
            if link.level >= MAX_ABILITY_LEVEL:
                raise ValidationError(f"Ability is already at level {MAX_ABILITY_LEVEL}.")
            link.level += 1
            session.add(link)
            session.flush()
            return self._view(session, record)
