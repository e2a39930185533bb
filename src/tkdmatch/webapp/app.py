"""FastAPI web application for the tkdmatch match core."""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from starlette.concurrency import run_in_threadpool

from tkdmatch.exceptions import (
    ConflictStateError,
    DuplicateEventError,
    InvalidInputError,
    NotFoundError,
)
from tkdmatch.ingest import ScoringIngest
from tkdmatch.match_service import MatchService
from tkdmatch.medals import MedalService
from tkdmatch.models import (
    ActionSource,
    ActionType,
    MatchAction,
    MatchResult,
    ResultStatus,
    ResultType,
    ScheduleCommand,
    VictoryType,
    naive_utc,
)
from tkdmatch.pool_service import PoolService
from tkdmatch.storage import DatabaseManager

logger = logging.getLogger(__name__)


# ============================================================================
# Request bodies
# ============================================================================


class GenerateBracketRequest(BaseModel):
    session_id: Optional[int] = None
    mat: int = Field(1, ge=1)
    base_match_number: Optional[int] = Field(None, ge=1)


class GeneratePoolMatchesRequest(BaseModel):
    session_id: Optional[int] = None
    mat: int = Field(1, ge=1)


class PoolCompetitorRequest(BaseModel):
    competitor_id: int


class ActionRequest(BaseModel):
    action: ActionType
    round: Optional[int] = Field(None, ge=0)
    round_time: Optional[str] = None
    home_score: int = 0
    away_score: int = 0
    home_penalties: int = 0
    away_penalties: int = 0
    hitlevel: Optional[int] = None
    source: Optional[ActionSource] = None
    competitor_id: Optional[int] = None
    description: Optional[str] = None
    timestamp: Optional[datetime] = None
    position: Optional[int] = None

    @field_validator("timestamp")
    @classmethod
    def to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(value)


class ResultRequest(BaseModel):
    status: ResultStatus
    home_score: int = Field(ge=0)
    away_score: int = Field(ge=0)
    home_penalties: int = Field(0, ge=0)
    away_penalties: int = Field(0, ge=0)
    decision: Optional[VictoryType] = None
    home_type: Optional[ResultType] = None
    away_type: Optional[ResultType] = None
    round: Optional[int] = None
    position: Optional[int] = None
    description: Optional[str] = None


class CommandRequest(BaseModel):
    scheduled_start: Optional[datetime] = None


class RefereesRequest(BaseModel):
    cr: Optional[int] = None
    j1: Optional[int] = None
    j2: Optional[int] = None
    j3: Optional[int] = None
    rj: Optional[int] = None
    ta: Optional[int] = None


class EquipmentRequest(BaseModel):
    competitor_id: int
    chest_sensor_id: str
    head_sensor_id: str
    device_type: Optional[str] = None


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=status_code)


def create_app(
    db_manager: Optional[DatabaseManager] = None,
    config: Optional[dict[str, Any]] = None,
) -> FastAPI:
    """Build the application.

    Args:
        db_manager: Database to serve (created from config when omitted)
        config: Validated configuration from config_loader

    Returns:
        FastAPI application
    """
    config = config or {}
    if db_manager is None:
        db_manager = DatabaseManager(config.get("database", ".tkdmatch/tkdmatch.sqlite"))
    db_manager.create_tables()

    match_service = MatchService(
        db_manager,
        duplicate_window_ms=config.get("duplicate_window_ms", 1000),
        base_match_number=config.get("base_match_number", 101),
    )
    pool_service = PoolService(db_manager, default_tie_break=config.get("tie_break"))
    medal_service = MedalService(db_manager)
    ingest = ScoringIngest(match_service)

    app = FastAPI(title="tkdmatch")
    app.state.match_service = match_service
    app.state.pool_service = pool_service
    app.state.ingest = ingest

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, exc)

    @app.exception_handler(InvalidInputError)
    async def invalid_input_handler(request: Request, exc: InvalidInputError):
        return _error(400, exc)

    @app.exception_handler(ConflictStateError)
    async def conflict_handler(request: Request, exc: ConflictStateError):
        return _error(409, exc)

    # ------------------------------------------------------------------
    # Generation and standings
    # ------------------------------------------------------------------

    @app.post("/events/{event_id}/bracket")
    def generate_bracket(event_id: int, body: GenerateBracketRequest):
        """Generate the first-round bracket matches of an event."""
        matches = match_service.generate_bracket(
            event_id, body.session_id, body.mat, body.base_match_number
        )
        return {"event_id": event_id, "matches": [asdict(m) for m in matches]}

    @app.post("/pools/{pool_id}/matches")
    def generate_pool_matches(pool_id: int, body: GeneratePoolMatchesRequest):
        """Generate the round-robin matches of a pool."""
        matches = pool_service.generate_pool_matches(pool_id, body.session_id, body.mat)
        return {"pool_id": pool_id, "matches": [asdict(m) for m in matches]}

    @app.post("/pools/{pool_id}/competitors")
    def add_pool_competitor(pool_id: int, body: PoolCompetitorRequest):
        standing = pool_service.add_competitor(pool_id, body.competitor_id)
        return asdict(standing)

    @app.delete("/pools/{pool_id}/competitors/{competitor_id}")
    def remove_pool_competitor(pool_id: int, competitor_id: int):
        deleted = pool_service.remove_competitor(pool_id, competitor_id)
        return {"pool_id": pool_id, "competitor_id": competitor_id, "deleted_matches": deleted}

    @app.post("/pools/{pool_id}/standings")
    def recompute_standings(pool_id: int):
        """Recompute pool standings from official results."""
        standings = pool_service.recompute_standings(pool_id)
        return {"pool_id": pool_id, "standings": [asdict(s) for s in standings]}

    @app.get("/pools/{pool_id}/standings")
    def get_standings(pool_id: int):
        standings = pool_service.get_standings(pool_id)
        return {"pool_id": pool_id, "standings": [asdict(s) for s in standings]}

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    @app.get("/matches/{match_id}")
    def get_match(match_id: int):
        return asdict(match_service.get_match(match_id))

    @app.get("/matches/{match_id}/actions")
    def get_actions(match_id: int):
        return [asdict(a) for a in match_service.get_actions(match_id)]

    @app.post("/matches/{match_id}/actions")
    def record_action(match_id: int, body: ActionRequest):
        """Record a scoring or timing action."""
        try:
            action = match_service.record_action(match_id, MatchAction(**body.model_dump()))
        except DuplicateEventError as e:
            return {"status": "DUPLICATE", "detail": str(e)}
        return {"status": "RECORDED", "action": asdict(action)}

    @app.post("/matches/{match_id}/results")
    def submit_result(match_id: int, body: ResultRequest):
        """Submit a result snapshot."""
        result = match_service.submit_result(match_id, MatchResult(**body.model_dump()))
        return asdict(result)

    @app.get("/matches/{match_id}/results")
    def get_results(match_id: int):
        return [asdict(r) for r in match_service.get_results(match_id)]

    @app.post("/matches/{match_id}/commands/{command}")
    def apply_command(match_id: int, command: ScheduleCommand, body: Optional[CommandRequest] = None):
        """Apply an administrative schedule command."""
        scheduled_start = body.scheduled_start if body else None
        return asdict(match_service.apply_command(match_id, command, scheduled_start))

    @app.delete("/matches/{match_id}")
    def delete_match(match_id: int):
        match_service.delete_match(match_id)
        return {"match_id": match_id, "deleted": True}

    @app.put("/matches/{match_id}/referees")
    def assign_referees(match_id: int, body: RefereesRequest):
        return match_service.assign_referees(match_id, **body.model_dump())

    @app.put("/matches/{match_id}/equipment")
    def assign_equipment(match_id: int, body: EquipmentRequest):
        match_service.assign_equipment(match_id, **body.model_dump())
        return {"match_id": match_id, "competitor_id": body.competitor_id}

    # ------------------------------------------------------------------
    # Medals
    # ------------------------------------------------------------------

    @app.get("/events/{event_id}/medals")
    def event_medals(event_id: int):
        return [asdict(m) for m in medal_service.event_medals(event_id)]

    @app.get("/competitions/{competition_id}/medals")
    def medal_table(competition_id: int):
        """Medal table of a competition by country."""
        rows = medal_service.medal_table(competition_id)
        return [{**asdict(r), "total": r.total} for r in rows]

    # ------------------------------------------------------------------
    # PSS transport
    # ------------------------------------------------------------------

    @app.websocket("/pss")
    async def pss_socket(websocket: WebSocket):
        """Receive PSS events and answer each one with its ingest outcome."""
        await websocket.accept()
        logger.info("PSS connection opened")
        try:
            while True:
                raw = await websocket.receive_text()
                outcome = await run_in_threadpool(ingest.ingest, raw)
                await websocket.send_json({"outcome": outcome.value})
        except WebSocketDisconnect:
            logger.info("PSS connection closed")

    return app
