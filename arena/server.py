"""FastAPI service exposing the arena engine.

The identity provider sits in front of this service and forwards the
caller's account as the ``X-Account-Id`` header, which is trusted as-is.
"""

from __future__ import annotations

import logging
import random
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from arena.core.abilities import ABILITY_CATALOG, Ability
from arena.core.battle import BattleEngine, BattleStats, BattleView, ReplayView, TurnResult
from arena.core.combatant import Archetype
from arena.core.errors import (
    ArenaError,
    NotFoundError,
    PersistenceError,
    ResourceError,
    StateConflictError,
    ValidationError,
)
from arena.core.events import EventBus
from arena.core.matchmaking import Matchmaker, MatchPreference, MatchResult, QueueStats
from arena.core.ranking import RankingEntry, RankingStats, RankingTable
from arena.core.registry import CombatantRegistry, CombatantView
from arena.core.resolver import BattleCommand
from arena.core.scoring import ContentScorer, FallbackJudge
from arena.data.oracle import OllamaJudge
from arena.data.store import ArenaStore
from arena.utils.config import Config, config
from arena.utils.log import setup_logging

logger = logging.getLogger(__name__)

app = FastAPI(title="Arena Battle Service")


# ---------------------------------------------------------------------------
# Service container
# ---------------------------------------------------------------------------

class ArenaServices:
    """Everything a request handler needs, wired around one store."""

    def __init__(
        self,
        store: ArenaStore,
        settings: Config | None = None,
        rng: random.Random | None = None,
        judge: FallbackJudge | None = None,
        events: EventBus | None = None,
    ):
        self.store = store
        self.settings = settings or config
        self.rng = rng or random.Random()
        self.events = events or EventBus()
        if judge is None:
            oracle = None
            if self.settings.oracle_enabled:
                oracle = OllamaJudge(
                    self.settings.oracle_url,
                    self.settings.oracle_model,
                    timeout=self.settings.oracle_timeout,
                    probe_interval=self.settings.oracle_probe_interval,
                )
            judge = FallbackJudge(oracle, ContentScorer(self.rng))
        self.engine = BattleEngine(store, self.settings, self.rng, self.events, judge)
        self.registry = CombatantRegistry(store, self.settings)
        self.matchmaker = Matchmaker(self.engine)
        self.rankings = RankingTable(store, self.settings)


def build_services(
    database_url: str | None = None,
    *,
    engine: Engine | None = None,
    settings: Config | None = None,
    rng: random.Random | None = None,
    judge: FallbackJudge | None = None,
) -> ArenaServices:
    store = ArenaStore(database_url, engine=engine)
    store.init_schema()
    return ArenaServices(store, settings=settings, rng=rng, judge=judge)


_services: ArenaServices | None = None


def _get_services() -> ArenaServices:
    global _services
    if _services is None:
        setup_logging(config.log_level)
        _services = build_services()
    return _services


Services = Annotated[ArenaServices, Depends(_get_services)]


def _get_account(x_account_id: Annotated[str | None, Header()] = None) -> str:
    if not x_account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Account-Id header",
        )
    return x_account_id


Account = Annotated[str, Depends(_get_account)]


def _owned(services: ArenaServices, account_id: str, combatant_id: int) -> CombatantView:
    combatant = services.registry.get(combatant_id)
    if combatant.account_id != account_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Combatant belongs to another account",
        )
    return combatant


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: list[tuple[type[ArenaError], int]] = [
    (ValidationError, 422),
    (ResourceError, 400),
    (NotFoundError, 404),
    (StateConflictError, 409),
]


@app.exception_handler(ArenaError)
async def arena_error_handler(request: Request, exc: ArenaError) -> JSONResponse:
    if isinstance(exc, PersistenceError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Something went wrong, please try again."},
        )
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return JSONResponse(status_code=code, content={"detail": exc.message})
    logger.error("Unmapped engine error on %s: %s", request.url.path, exc.message)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Something went wrong, please try again."},
    )


# --- Request models ---


class CombatantCreate(BaseModel):
    name: str
    archetype: Archetype = Archetype.WARRIOR


class RenameRequest(BaseModel):
    name: str


class PresenceRequest(BaseModel):
    online: bool


class LearnRequest(BaseModel):
    ability_id: int


class QueueRequest(BaseModel):
    combatant_id: int
    preference: MatchPreference = MatchPreference.RANDOM


class ChallengeRequest(BaseModel):
    combatant_id: int
    target_id: int


class BattleCreate(BaseModel):
    combatant_id: int
    opponent_id: int


class ActionRequest(BaseModel):
    combatant_id: int
    command: BattleCommand


class SurrenderRequest(BaseModel):
    combatant_id: int


class TextBattleRequest(BaseModel):
    combatant_id: int
    text: str
    opponent_id: int
    opponent_text: str | None = None


# --- App Endpoints ---


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/abilities", response_model=list[Ability])
async def list_abilities(services: Services):
    with services.store.transaction() as session:
        return [services.store.ability(session, ability_id) for ability_id in ABILITY_CATALOG]


@app.get("/computers", response_model=list[CombatantView])
async def list_computers(services: Services):
    return services.registry.computers()


# --- Combatants ---


@app.post("/combatants", response_model=CombatantView, status_code=status.HTTP_201_CREATED)
async def create_combatant(body: CombatantCreate, services: Services, account: Account):
    return services.registry.create(account, body.name, body.archetype)


@app.get("/combatants", response_model=list[CombatantView])
async def my_combatants(services: Services, account: Account):
    return services.registry.list_for_account(account)


@app.get("/combatants/{combatant_id}", response_model=CombatantView)
async def get_combatant(combatant_id: int, services: Services):
    return services.registry.get(combatant_id)


@app.patch("/combatants/{combatant_id}", response_model=CombatantView)
async def rename_combatant(combatant_id: int, body: RenameRequest, services: Services, account: Account):
    _owned(services, account, combatant_id)
    return services.registry.rename(combatant_id, body.name)


@app.delete("/combatants/{combatant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_combatant(combatant_id: int, services: Services, account: Account):
    _owned(services, account, combatant_id)
    services.registry.delete(combatant_id)


@app.put("/combatants/{combatant_id}/presence", response_model=CombatantView)
async def set_presence(combatant_id: int, body: PresenceRequest, services: Services, account: Account):
    _owned(services, account, combatant_id)
    return services.registry.set_presence(combatant_id, body.online)


@app.post("/combatants/{combatant_id}/abilities", response_model=CombatantView)
async def learn_ability(combatant_id: int, body: LearnRequest, services: Services, account: Account):
    _owned(services, account, combatant_id)
    return services.registry.learn_ability(combatant_id, body.ability_id)


@app.post("/combatants/{combatant_id}/abilities/{ability_id}/level-up", response_model=CombatantView)
async def level_up_ability(combatant_id: int, ability_id: int, services: Services, account: Account):
    _owned(services, account, combatant_id)
    return services.registry.level_up_ability(combatant_id, ability_id)


# --- Queue ---


@app.post("/queue", response_model=MatchResult)
async def join_queue(body: QueueRequest, services: Services, account: Account):
    _owned(services, account, body.combatant_id)
    return await services.matchmaker.request_match(body.combatant_id, body.preference)


@app.get("/queue/stats", response_model=QueueStats)
async def queue_stats(services: Services):
    return services.matchmaker.queue_stats()


@app.delete("/queue/{combatant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def leave_queue(combatant_id: int, services: Services, account: Account):
    _owned(services, account, combatant_id)
    await services.matchmaker.cancel(combatant_id)


@app.post("/challenge", response_model=MatchResult)
async def challenge(body: ChallengeRequest, services: Services, account: Account):
    _owned(services, account, body.combatant_id)
    return await services.matchmaker.direct_challenge(body.combatant_id, body.target_id)


# --- Battles ---


@app.get("/battles/stats", response_model=BattleStats)
async def battle_stats(services: Services):
    return services.engine.stats()


@app.post("/battles/text", response_model=BattleView)
async def text_battle(body: TextBattleRequest, services: Services, account: Account):
    _owned(services, account, body.combatant_id)
    return await services.engine.text_battle(
        body.combatant_id, body.text, body.opponent_id, body.opponent_text
    )


@app.post("/battles", response_model=BattleView, status_code=status.HTTP_201_CREATED)
async def create_battle(body: BattleCreate, services: Services, account: Account):
    _owned(services, account, body.combatant_id)
    return await services.engine.create(body.combatant_id, body.opponent_id)


@app.get("/battles/{battle_id}", response_model=BattleView)
async def get_battle(battle_id: int, services: Services):
    return services.engine.get(battle_id)


def _participant_owner(services: ArenaServices, account: str, battle: BattleView) -> None:
    for side in (battle.side_a, battle.side_b):
        if services.registry.get(side.combatant_id).account_id == account:
            return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not a participant in this battle",
    )


@app.post("/battles/{battle_id}/start", response_model=BattleView)
async def start_battle(battle_id: int, services: Services, account: Account):
    _participant_owner(services, account, services.engine.get(battle_id))
    return await services.engine.start(battle_id)


@app.post("/battles/{battle_id}/cancel", response_model=BattleView)
async def cancel_battle(battle_id: int, services: Services, account: Account):
    _participant_owner(services, account, services.engine.get(battle_id))
    return await services.engine.cancel(battle_id)


@app.post("/battles/{battle_id}/actions", response_model=TurnResult)
async def submit_action(battle_id: int, body: ActionRequest, services: Services, account: Account):
    _owned(services, account, body.combatant_id)
    return await services.engine.act(battle_id, body.combatant_id, body.command)


@app.post("/battles/{battle_id}/surrender", response_model=BattleView)
async def surrender(battle_id: int, body: SurrenderRequest, services: Services, account: Account):
    _owned(services, account, body.combatant_id)
    return await services.engine.surrender(battle_id, body.combatant_id)


@app.get("/battles/{battle_id}/replay", response_model=ReplayView)
async def get_replay(battle_id: int, services: Services):
    return services.engine.replay(battle_id)


# --- Rankings ---


@app.get("/leaderboard", response_model=list[RankingEntry])
async def leaderboard(
    services: Services,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    return services.rankings.leaderboard(limit, offset)


@app.get("/leaderboard/{combatant_id}/nearby", response_model=list[RankingEntry])
async def nearby(
    combatant_id: int,
    services: Services,
    range_: Annotated[int, Query(alias="range", ge=0, le=50)] = 5,
):
    return services.rankings.nearby(combatant_id, range_)


@app.get("/rankings/stats", response_model=RankingStats)
async def ranking_stats(services: Services):
    return services.rankings.stats()


@app.get("/rankings/{combatant_id}", response_model=RankingEntry)
async def ranking_entry(combatant_id: int, services: Services):
    return services.rankings.entry(combatant_id)
