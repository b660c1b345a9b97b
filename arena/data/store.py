"""Transactional access to the arena tables.

``ArenaStore`` owns the SQLAlchemy engine. Every engine operation opens one
``transaction()`` and does all of its reads and writes through the session
it yields, so a failure anywhere rolls the whole write-set back.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event, func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from arena.core.abilities import ABILITY_CATALOG, Ability, AbilityCategory, LearnedAbility
from arena.core.combatant import (
    ARCHETYPE_LOADOUTS,
    ARCHETYPE_STATS,
    COMPUTER_ROSTER,
    Archetype,
    CombatantStats,
)
from arena.core.errors import ArenaError, NotFoundError, PersistenceError
from arena.data.server_models import (
    AbilityRecord,
    ActionRecord,
    BattleRecord,
    CombatantRecord,
    LoadoutRecord,
    QueueEntry,
    RankingRecord,
    ReplayRecord,
)
from arena.utils.config import config

logger = logging.getLogger(__name__)

COMPUTER_ACCOUNT = "computer"

# Battle statuses that still hold their participants
ACTIVE_STATUSES = ("waiting", "in_progress")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def record_to_stats(record: CombatantRecord) -> CombatantStats:
    return CombatantStats(
        combatant_id=record.id,
        name=record.name,
        level=record.level,
        health=record.health,
        max_health=record.max_health,
        mana=record.mana,
        max_mana=record.max_mana,
        offense=record.offense,
        defense=record.defense,
        speed=record.speed,
        rating=record.rating,
        is_computer=record.is_computer,
    )


def record_to_ability(record: AbilityRecord) -> Ability:
    return Ability(
        id=record.id,
        name=record.name,
        description=record.description,
        cost=record.cost,
        damage=record.damage,
        heal_amount=record.heal_amount,
        cooldown=record.cooldown,
        category=AbilityCategory(record.category),
    )


class ArenaStore:
    """SQLModel-backed store for combatants, battles, queue and rankings."""

    def __init__(self, database_url: str | None = None, *, engine: Engine | None = None):
        if engine is None:
            url = database_url or config.database_url
            connect_args = {}
            if url.startswith("sqlite"):
                connect_args["check_same_thread"] = False
                if database_url is None:
                    config.ensure_dirs()
            engine = create_engine(url, connect_args=connect_args)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        self.engine = engine

    # ------------------------------------------------------------------
    # Schema and seed data
    # ------------------------------------------------------------------

    def init_schema(self) -> None:
        """Create tables and seed the ability catalog and computer roster."""
        SQLModel.metadata.create_all(self.engine)
        with self.transaction() as session:
            for ability in ABILITY_CATALOG.values():
                if session.get(AbilityRecord, ability.id) is None:
                    session.add(AbilityRecord(
                        id=ability.id,
                        name=ability.name,
                        description=ability.description,
                        cost=ability.cost,
                        damage=ability.damage,
                        heal_amount=ability.heal_amount,
                        cooldown=ability.cooldown,
                        category=ability.category.value,
                    ))
            session.flush()

            for profile in COMPUTER_ROSTER:
                existing = session.exec(
                    select(CombatantRecord).where(
                        CombatantRecord.is_computer == True,  # noqa: E712
                        CombatantRecord.name == profile.username,
                    )
                ).first()
                if existing is None:
                    self.insert_combatant(
                        session,
                        account_id=COMPUTER_ACCOUNT,
                        name=profile.username,
                        archetype=profile.archetype,
                        is_computer=True,
                        rating=profile.rating,
                        battle_line=profile.battle_line,
                    )

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session; commit on success, roll back on any error.

        Storage failures are raised as ``PersistenceError``. Engine errors
        raised inside the block pass through unchanged.
        """
        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except ArenaError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Store transaction failed: %s", exc)
            raise PersistenceError("The store could not complete the operation.") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Combatants
    # ------------------------------------------------------------------

    def insert_combatant(
        self,
        session: Session,
        *,
        account_id: str,
        name: str,
        archetype: Archetype,
        rating: int,
        is_computer: bool = False,
        battle_line: str | None = None,
    ) -> CombatantRecord:
        """Insert a combatant with archetype stats, loadout and ranking row."""
        base = ARCHETYPE_STATS[archetype]
        record = CombatantRecord(
            account_id=account_id,
            name=name,
            archetype=archetype.value,
            is_computer=is_computer,
            is_online=is_computer,
            battle_line=battle_line,
            health=base.max_health,
            max_health=base.max_health,
            mana=base.max_mana,
            max_mana=base.max_mana,
            offense=base.offense,
            defense=base.defense,
            speed=base.speed,
            rating=rating,
        )
        session.add(record)
        session.flush()

        for ability_id in ARCHETYPE_LOADOUTS[archetype]:
            session.add(LoadoutRecord(combatant_id=record.id, ability_id=ability_id, level=1))
        session.add(RankingRecord(combatant_id=record.id, rating=record.rating))
        session.flush()
        return record

    def combatant(self, session: Session, combatant_id: int) -> CombatantRecord:
        record = session.get(CombatantRecord, combatant_id)
        if record is None:
            raise NotFoundError(f"Combatant {combatant_id} not found.")
        return record

    def combatants_for_account(self, session: Session, account_id: str) -> list[CombatantRecord]:
        return list(session.exec(
            select(CombatantRecord)
            .where(CombatantRecord.account_id == account_id)
            .order_by(CombatantRecord.id)
        ).all())

    def computers(self, session: Session) -> list[CombatantRecord]:
        return list(session.exec(
            select(CombatantRecord)
            .where(CombatantRecord.is_computer == True)  # noqa: E712
            .order_by(CombatantRecord.id)
        ).all())

    def delete_combatant(self, session: Session, record: CombatantRecord) -> None:
        """Remove a combatant and every row that references it."""
        cid = record.id
        for model, column in (
            (QueueEntry, QueueEntry.combatant_id),
            (LoadoutRecord, LoadoutRecord.combatant_id),
            (RankingRecord, RankingRecord.combatant_id),
        ):
            for row in session.exec(select(model).where(column == cid)).all():
                session.delete(row)
        session.flush()

        battles = session.exec(
            select(BattleRecord).where(
                or_(BattleRecord.combatant_a_id == cid, BattleRecord.combatant_b_id == cid)
            )
        ).all()
        for battle in battles:
            for row in session.exec(
                select(ActionRecord).where(ActionRecord.battle_id == battle.id)
            ).all():
                session.delete(row)
            for row in session.exec(
                select(ReplayRecord).where(ReplayRecord.battle_id == battle.id)
            ).all():
                session.delete(row)
            session.flush()
            session.delete(battle)
        session.flush()
        session.delete(record)
        session.flush()

    # ------------------------------------------------------------------
    # Abilities
    # ------------------------------------------------------------------

    def ability(self, session: Session, ability_id: int) -> Ability:
        record = session.get(AbilityRecord, ability_id)
        if record is None:
            raise NotFoundError(f"Ability {ability_id} not found.")
        return record_to_ability(record)

    def loadout_row(self, session: Session, combatant_id: int, ability_id: int) -> LoadoutRecord | None:
        return session.exec(
            select(LoadoutRecord).where(
                LoadoutRecord.combatant_id == combatant_id,
                LoadoutRecord.ability_id == ability_id,
            )
        ).first()

    def loadout(self, session: Session, combatant_id: int) -> list[LearnedAbility]:
        rows = session.exec(
            select(LoadoutRecord, AbilityRecord)
            .where(LoadoutRecord.combatant_id == combatant_id)
            .where(LoadoutRecord.ability_id == AbilityRecord.id)
            .order_by(AbilityRecord.id)
        ).all()
        return [
            LearnedAbility(ability=record_to_ability(ability), level=link.level)
            for link, ability in rows
        ]

    def learned_ability(self, session: Session, combatant_id: int, ability_id: int) -> LearnedAbility:
        link = self.loadout_row(session, combatant_id, ability_id)
        if link is None:
            raise NotFoundError(f"Combatant {combatant_id} does not know ability {ability_id}.")
        return LearnedAbility(ability=self.ability(session, ability_id), level=link.level)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def queue_entry(self, session: Session, combatant_id: int) -> QueueEntry | None:
        return session.exec(
            select(QueueEntry).where(QueueEntry.combatant_id == combatant_id)
        ).first()

    def queue_entries(self, session: Session) -> list[QueueEntry]:
        return list(session.exec(
            select(QueueEntry).order_by(QueueEntry.enqueued_at, QueueEntry.id)
        ).all())

    # ------------------------------------------------------------------
    # Battles
    # ------------------------------------------------------------------

    def battle(self, session: Session, battle_id: int, *, for_update: bool = False) -> BattleRecord:
        statement = select(BattleRecord).where(BattleRecord.id == battle_id)
        if for_update:
            statement = statement.with_for_update()
        record = session.exec(statement).first()
        if record is None:
            raise NotFoundError(f"Battle {battle_id} not found.")
        return record

    def active_battle(self, session: Session, combatant_id: int) -> BattleRecord | None:
        """The combatant's non-terminal battle, if any."""
        return session.exec(
            select(BattleRecord).where(
                BattleRecord.status.in_(ACTIVE_STATUSES),
                or_(
                    BattleRecord.combatant_a_id == combatant_id,
                    BattleRecord.combatant_b_id == combatant_id,
                ),
            )
        ).first()

    def actions(self, session: Session, battle_id: int) -> list[ActionRecord]:
        return list(session.exec(
            select(ActionRecord)
            .where(ActionRecord.battle_id == battle_id)
            .order_by(ActionRecord.turn_number, ActionRecord.id)
        ).all())

    def settled_battles(self, session: Session, combatant_id: int, limit: int) -> list[BattleRecord]:
        """Most recent settled battles for a combatant, newest first."""
        return list(session.exec(
            select(BattleRecord)
            .where(
                BattleRecord.status == "finished",
                or_(
                    BattleRecord.combatant_a_id == combatant_id,
                    BattleRecord.combatant_b_id == combatant_id,
                ),
            )
            .order_by(BattleRecord.settled_at.desc(), BattleRecord.id.desc())
            .limit(limit)
        ).all())

    def count_battles(self, session: Session, status: str | None = None) -> int:
        statement = select(func.count()).select_from(BattleRecord)
        if status is not None:
            statement = statement.where(BattleRecord.status == status)
        return session.exec(statement).one()

    def average_turns(self, session: Session, mode: str) -> float:
        value = session.exec(
            select(func.avg(BattleRecord.turn_count)).where(
                BattleRecord.status == "finished",
                BattleRecord.mode == mode,
            )
        ).one()
        return round(float(value or 0.0), 2)

    def replay(self, session: Session, battle_id: int) -> ReplayRecord | None:
        return session.exec(
            select(ReplayRecord).where(ReplayRecord.battle_id == battle_id)
        ).first()

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------

    def ranking(self, session: Session, combatant_id: int) -> RankingRecord:
        """Ranking row for a combatant, created on first use."""
        row = session.get(RankingRecord, combatant_id)
        if row is None:
            record = self.combatant(session, combatant_id)
            row = RankingRecord(combatant_id=combatant_id, rating=record.rating)
            session.add(row)
            session.flush()
        return row
