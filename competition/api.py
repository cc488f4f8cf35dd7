"""
REST API for the competition engine.
Thin wrappers around the services; error kinds map to HTTP status codes here.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Callable, Generator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from competition.auth import ROLE_ADMIN, ROLE_REVIEWER, ROLE_TEAM, decode_token
from competition.config import CORS_ORIGINS, configure_logging
from competition.errors import (
    CompetitionError,
    ConcurrencyConflict,
    InvalidTransition,
    NotFound,
    PreconditionNotMet,
    ValidationFailed,
)
from competition.models import (
    CardEvent,
    LineupOutcome,
    OverridePolicy,
    ReviewOutcome,
    Side,
    StandingsMode,
    SuspensionStatus,
)
from competition.persistence import (
    MatchRepository,
    SeasonPlayerRepository,
    SeasonRepository,
    get_connection,
    init_db,
    transaction,
)
from competition.persistence.db import get_db_path
from competition.rules import SeasonRules
from competition.services import (
    LineupService,
    MatchLifecycle,
    RegistrationService,
    SchedulingService,
    StandingsCalculator,
    SuspensionLedger,
)

logger = logging.getLogger(__name__)


@contextmanager
def db_conn() -> Generator:
    """Yield a DB connection, ensure close on exit."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


# ---------- Lifespan ----------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    configure_logging()
    init_db(db_path=get_db_path())
    yield


# ---------- FastAPI app ----------
app = FastAPI(
    title="Competition Engine API",
    description="Season registration, match lifecycle, lineups, suspensions and standings",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_ERROR: dict[type, int] = {
    NotFound: 404,
    InvalidTransition: 409,
    ConcurrencyConflict: 409,
    PreconditionNotMet: 422,
    ValidationFailed: 422,
}


@app.exception_handler(CompetitionError)
async def competition_error_handler(request: Request, exc: CompetitionError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status, content=exc.to_dict())


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"kind": "BAD_REQUEST", "message": str(exc)})


# ---------- Services ----------
_ledger = SuspensionLedger()
_registrations = RegistrationService()
_lineups = LineupService(_ledger)
_lifecycle = MatchLifecycle(_lineups, _ledger)
_standings = StandingsCalculator()
_scheduling = SchedulingService(_registrations)


# ---------- Auth ----------
security = HTTPBearer(auto_error=False)


def _get_claims(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> dict[str, Any] | None:
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


def require_role(*roles: str) -> Callable[..., dict[str, Any]]:
    """Dependency: a valid token whose role is one of roles (admin always passes)."""
    allowed = set(roles) | {ROLE_ADMIN}

    def dependency(claims: dict[str, Any] | None = Depends(_get_claims)) -> dict[str, Any]:
        if claims is None:
            raise HTTPException(status_code=401, detail="Login required")
        if claims["role"] not in allowed:
            raise HTTPException(status_code=403, detail=f"Requires role: {', '.join(sorted(allowed))}")
        return claims

    return dependency


# ---------- Request models ----------


class CreateSeasonRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    required_team_count: int = Field(..., ge=2)
    rules: dict[str, Any] | None = Field(None, description="Season rules; omitted keys use defaults")
    lot_seed: int | None = Field(None, description="Recorded seed for final-mode lots")


class InviteRequest(BaseModel):
    team_id: str


class RespondRequest(BaseModel):
    accept: bool
    note: str | None = None


class SubmitRegistrationRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class ReviewRegistrationRequest(BaseModel):
    outcome: ReviewOutcome
    note: str | None = None


class SeasonPlayerRequest(BaseModel):
    season_team_id: str
    player_id: str
    is_foreign: bool = False
    status: str = Field("approved", pattern="^(pending|approved|rejected)$")


class ScheduleRequest(BaseModel):
    start: datetime
    interval_days: int = Field(7, ge=1)
    double_round_robin: bool = False


class OfficialsRequest(BaseModel):
    complete: bool
    missing_roles: list[str] = Field(default_factory=list)
    expected_version: int | None = None


class TransitionRequest(BaseModel):
    expected_version: int | None = None


class ResultRequest(BaseModel):
    home_score: int = Field(..., ge=0)
    away_score: int = Field(..., ge=0)
    expected_version: int | None = None
    note: str | None = None


class LineupRequest(BaseModel):
    starters: list[str] | None = None
    substitutes: list[str] | None = None
    formation: str | None = None
    kit_type: str | None = None
    expected_version: int | None = None


class LineupReviewRequest(BaseModel):
    outcome: LineupOutcome
    reason: str | None = None
    expected_version: int | None = None


class UnlockRequest(BaseModel):
    note: str | None = None
    expected_version: int | None = None


class CardRequest(BaseModel):
    player_id: str
    team_id: str
    card_type: str = Field(..., pattern="^(yellow|red)$")
    minute: int = Field(..., ge=0, le=150)


class ManualSuspensionRequest(BaseModel):
    player_id: str
    team_id: str
    matches_banned: int = Field(..., ge=1)
    notes: str | None = None
    trigger_match_id: str | None = None


class CancelSuspensionRequest(BaseModel):
    note: str | None = None


class RecomputeRequest(BaseModel):
    mode: StandingsMode = StandingsMode.LIVE
    overrides: OverridePolicy = Field(..., description="preserve or discard manual adjustments")


class AdjustRequest(BaseModel):
    delta: dict[str, int]
    note: str | None = None


class ResetRequest(BaseModel):
    note: str | None = None


# ---------- Seasons ----------


@app.post("/seasons")
def create_season(req: CreateSeasonRequest, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    rules = SeasonRules.from_dict(req.rules)
    with db_conn() as conn:
        with transaction(conn):
            season = SeasonRepository().create(
                conn, req.name, req.required_team_count, rules=rules, lot_seed=req.lot_seed
            )
    logger.info("Season %s created (%s)", season.id, season.name)
    return {**season.to_dict(), "rules": rules.to_dict()}


@app.get("/seasons/{season_id}")
def get_season(season_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        repo = SeasonRepository()
        season = repo.get(conn, season_id)
        if season is None:
            raise NotFound("season", season_id)
        return {**season.to_dict(), "rules": repo.get_rules(conn, season_id).to_dict()}


@app.get("/seasons/{season_id}/readiness")
def get_readiness(season_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        return _registrations.scheduling_readiness(conn, season_id)


@app.post("/seasons/{season_id}/players")
def add_season_player(
    season_id: str, req: SeasonPlayerRequest, _: dict = Depends(require_role(ROLE_ADMIN))
) -> dict[str, Any]:
    """Roster collaborator input: record an approved (or pending) season player."""
    with db_conn() as conn:
        reg = _registrations.get(conn, req.season_team_id)
        if reg.season_id != season_id:
            raise NotFound("season_team", req.season_team_id)
        with transaction(conn):
            player = SeasonPlayerRepository().add(
                conn, season_id, req.season_team_id, req.player_id, req.is_foreign, req.status
            )
        return player.to_dict()


# ---------- Registrations ----------


@app.post("/seasons/{season_id}/registrations")
def invite_team(season_id: str, req: InviteRequest, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return _registrations.invite(conn, season_id, req.team_id).to_dict()


@app.get("/seasons/{season_id}/registrations")
def list_registrations(season_id: str, status: str | None = None) -> dict[str, Any]:
    with db_conn() as conn:
        regs = _registrations.list_registrations(conn, season_id, status)
        return {"registrations": [r.to_dict() for r in regs]}


@app.post("/seasons/{season_id}/registrations/send-invitations")
def send_invitations(season_id: str, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        sent = _registrations.send_invitations(conn, season_id)
        return {"sent": [r.to_dict() for r in sent]}


@app.get("/registrations/{registration_id}")
def get_registration(registration_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        reg = _registrations.get(conn, registration_id)
        return {
            **reg.to_dict(),
            "history": [h.to_dict() for h in _registrations.history(conn, registration_id)],
        }


@app.post("/registrations/{registration_id}/respond")
def respond_registration(
    registration_id: str, req: RespondRequest, _: dict = Depends(require_role(ROLE_TEAM))
) -> dict[str, Any]:
    with db_conn() as conn:
        return _registrations.respond(conn, registration_id, req.accept, req.note).to_dict()


@app.post("/registrations/{registration_id}/submit")
def submit_registration(
    registration_id: str, req: SubmitRegistrationRequest, _: dict = Depends(require_role(ROLE_TEAM))
) -> dict[str, Any]:
    with db_conn() as conn:
        return _registrations.submit(conn, registration_id, req.payload).to_dict()


@app.post("/registrations/{registration_id}/review")
def review_registration(
    registration_id: str, req: ReviewRegistrationRequest, _: dict = Depends(require_role(ROLE_REVIEWER))
) -> dict[str, Any]:
    with db_conn() as conn:
        return _registrations.review(conn, registration_id, req.outcome, req.note).to_dict()


# ---------- Schedule & matches ----------


@app.post("/seasons/{season_id}/schedule")
def generate_schedule(season_id: str, req: ScheduleRequest, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        matches = _scheduling.generate_season_schedule(
            conn, season_id, req.start, interval_days=req.interval_days, double_round_robin=req.double_round_robin
        )
        return {"matches": [m.to_dict() for m in matches]}


@app.get("/seasons/{season_id}/matches")
def list_matches(season_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        matches = MatchRepository().list_by_season(conn, season_id)
        return {
            "matches": [m.to_dict() for m in matches],
            "status_counts": _lifecycle.season_status_counts(conn, season_id),
        }


@app.post("/seasons/{season_id}/auto-prepare")
def auto_prepare(season_id: str, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return {"prepared": [m.to_dict() for m in _lifecycle.auto_prepare(conn, season_id)]}


@app.get("/matches/{match_id}")
def get_match(match_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        match = _lifecycle.get(conn, match_id)
        return {
            **match.to_dict(),
            "history": [h.to_dict() for h in _lifecycle.history(conn, match_id)],
        }


@app.get("/matches/{match_id}/can-enter/{target}")
def can_enter(match_id: str, target: str) -> dict[str, Any]:
    with db_conn() as conn:
        return _lifecycle.can_enter(conn, match_id, target)


@app.post("/matches/{match_id}/officials-started")
def officials_started(match_id: str, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return _lifecycle.officials_assignment_started(conn, match_id).to_dict()


@app.put("/matches/{match_id}/officials")
def update_officials(match_id: str, req: OfficialsRequest, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return _lifecycle.update_officials(
            conn, match_id, req.complete, req.missing_roles, expected_version=req.expected_version
        ).to_dict()


@app.post("/matches/{match_id}/ready")
def mark_ready(match_id: str, req: TransitionRequest | None = None, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return _lifecycle.ready(conn, match_id, expected_version=req.expected_version if req else None).to_dict()


@app.post("/matches/{match_id}/kickoff")
def kickoff(match_id: str, req: TransitionRequest | None = None, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return _lifecycle.kickoff(conn, match_id, expected_version=req.expected_version if req else None).to_dict()


@app.post("/matches/{match_id}/finish")
def finish_match(match_id: str, req: ResultRequest, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return _lifecycle.finish(
            conn, match_id, req.home_score, req.away_score, expected_version=req.expected_version
        ).to_dict()


@app.post("/matches/{match_id}/reports/{kind}")
def record_report(match_id: str, kind: str, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return _lifecycle.record_report(conn, match_id, kind).to_dict()


@app.post("/matches/{match_id}/complete")
def complete_match(match_id: str, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return _lifecycle.complete(conn, match_id).to_dict()


@app.post("/matches/{match_id}/correct-result")
def correct_result(match_id: str, req: ResultRequest, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return _lifecycle.correct_result(conn, match_id, req.home_score, req.away_score, req.note).to_dict()


# ---------- Lineups ----------


@app.get("/matches/{match_id}/lineups/{side}")
def get_lineup(match_id: str, side: Side) -> dict[str, Any]:
    with db_conn() as conn:
        lineup = _lineups.get(conn, match_id, side)
        return {
            **lineup.to_dict(),
            "history": [h.to_dict() for h in _lineups.history(conn, match_id, side)],
        }


@app.put("/matches/{match_id}/lineups/{side}")
def save_lineup_draft(
    match_id: str, side: Side, req: LineupRequest, _: dict = Depends(require_role(ROLE_TEAM))
) -> dict[str, Any]:
    with db_conn() as conn:
        return _lineups.save_draft(
            conn, match_id, side, req.starters or [], req.substitutes or [],
            formation=req.formation, kit_type=req.kit_type, expected_version=req.expected_version,
        ).to_dict()


@app.post("/matches/{match_id}/lineups/{side}/validate")
def validate_lineup(match_id: str, side: Side, req: LineupRequest) -> dict[str, Any]:
    with db_conn() as conn:
        return _lineups.validate(conn, match_id, side, req.starters or [], req.substitutes or []).to_dict()


@app.post("/matches/{match_id}/lineups/{side}/submit")
def submit_lineup(
    match_id: str, side: Side, req: LineupRequest, _: dict = Depends(require_role(ROLE_TEAM))
) -> dict[str, Any]:
    with db_conn() as conn:
        return _lineups.submit(
            conn, match_id, side, req.starters, req.substitutes,
            formation=req.formation, kit_type=req.kit_type, expected_version=req.expected_version,
        ).to_dict()


@app.post("/matches/{match_id}/lineups/{side}/review")
def review_lineup(
    match_id: str, side: Side, req: LineupReviewRequest, _: dict = Depends(require_role(ROLE_REVIEWER))
) -> dict[str, Any]:
    with db_conn() as conn:
        return _lineups.review(
            conn, match_id, side, req.outcome, req.reason, expected_version=req.expected_version
        ).to_dict()


@app.post("/matches/{match_id}/lineups/{side}/unlock")
def unlock_lineup(
    match_id: str, side: Side, req: UnlockRequest | None = None, _: dict = Depends(require_role(ROLE_ADMIN))
) -> dict[str, Any]:
    with db_conn() as conn:
        return _lineups.unlock(
            conn, match_id, side,
            note=req.note if req else None,
            expected_version=req.expected_version if req else None,
        ).to_dict()


# ---------- Cards & suspensions ----------


@app.post("/matches/{match_id}/cards")
def record_card(match_id: str, req: CardRequest, _: dict = Depends(require_role(ROLE_REVIEWER))) -> dict[str, Any]:
    event = CardEvent(
        match_id=match_id, player_id=req.player_id, team_id=req.team_id,
        card_type=req.card_type, minute=req.minute,
    )
    with db_conn() as conn:
        return _ledger.record_card(conn, event).to_dict()


@app.post("/seasons/{season_id}/suspensions/recalculate")
def recalculate_suspensions(season_id: str, _: dict = Depends(require_role(ROLE_REVIEWER))) -> dict[str, Any]:
    with db_conn() as conn:
        return {"suspensions": [s.to_dict() for s in _ledger.recalculate(conn, season_id)]}


@app.get("/seasons/{season_id}/suspensions")
def list_suspensions(
    season_id: str, status: SuspensionStatus | None = None, player_id: str | None = None
) -> dict[str, Any]:
    with db_conn() as conn:
        items = _ledger.list_suspensions(conn, season_id, status=status, player_id=player_id)
        return {"suspensions": [s.to_dict() for s in items]}


@app.post("/seasons/{season_id}/suspensions")
def add_manual_suspension(
    season_id: str, req: ManualSuspensionRequest, _: dict = Depends(require_role(ROLE_ADMIN))
) -> dict[str, Any]:
    with db_conn() as conn:
        return _ledger.add_manual_suspension(
            conn, season_id, req.player_id, req.team_id, req.matches_banned,
            notes=req.notes, trigger_match_id=req.trigger_match_id,
        ).to_dict()


@app.post("/suspensions/{key}/cancel")
def cancel_suspension(key: str, req: CancelSuspensionRequest, _: dict = Depends(require_role(ROLE_ADMIN))) -> dict[str, Any]:
    with db_conn() as conn:
        return _ledger.cancel_suspension(conn, key, req.note).to_dict()


@app.get("/seasons/{season_id}/players/{player_id}/eligibility")
def player_eligibility(season_id: str, player_id: str, match_id: str = Query(...)) -> dict[str, Any]:
    with db_conn() as conn:
        return _ledger.is_suspended(conn, season_id, player_id, match_id)


@app.get("/seasons/{season_id}/cards/summary")
def card_summary(season_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        return {"players": _ledger.card_summary(conn, season_id)}


# ---------- Standings ----------


@app.post("/seasons/{season_id}/standings/recompute")
def recompute_standings(season_id: str, req: RecomputeRequest, claims: dict[str, Any] | None = Depends(_get_claims)) -> dict[str, Any]:
    if req.overrides == OverridePolicy.DISCARD and (claims is None or claims["role"] != ROLE_ADMIN):
        raise HTTPException(status_code=403, detail="Discarding standings overrides requires role: admin")
    with db_conn() as conn:
        table = _standings.recompute(conn, season_id, req.mode, req.overrides)
        return {"mode": req.mode.value, "standings": [r.to_dict() for r in table]}


@app.get("/seasons/{season_id}/standings")
def get_standings(season_id: str, mode: StandingsMode = StandingsMode.LIVE) -> dict[str, Any]:
    with db_conn() as conn:
        table = _standings.get_table(conn, season_id, mode)
        return {"mode": mode.value, "standings": [r.to_dict() for r in table]}


@app.post("/seasons/{season_id}/standings/{season_team_id}/reset")
def reset_team_standing(
    season_id: str, season_team_id: str, req: ResetRequest, _: dict = Depends(require_role(ROLE_ADMIN))
) -> dict[str, Any]:
    with db_conn() as conn:
        return _standings.reset_team(conn, season_id, season_team_id, req.note).to_dict()


@app.post("/seasons/{season_id}/standings/{season_team_id}/adjust")
def adjust_team_standing(
    season_id: str, season_team_id: str, req: AdjustRequest, _: dict = Depends(require_role(ROLE_ADMIN))
) -> dict[str, Any]:
    with db_conn() as conn:
        return _standings.adjust_team(conn, season_id, season_team_id, req.delta, req.note).to_dict()


# ---------- Run with: uvicorn competition.api:app --reload ----------
