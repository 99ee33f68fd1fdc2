"""Challenge API endpoints — 6 routes.

Challenges (3), Settlement (2), Leaderboard (1).
ChallengeError subclasses raised by the services are turned into
{"success": false, "error": ...} responses by the global error handler.
"""

from __future__ import annotations

import secrets
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Security
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pfc.challenges.exceptions import ChallengeValidationError, SettlementError
from pfc.challenges.leaderboard import build_leaderboard
from pfc.challenges.schemas import (
    ChallengeActionRequest,
    ChallengeActionResponse,
    ChallengeListResponse,
    ChallengeResponse,
    CreateChallengeRequest,
    DueChallengeResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    LeaderboardType,
    SettleRequest,
    SettlementBatchResponse,
    SettlementDiscoveryResponse,
)
from pfc.challenges.settlement import SettlementEngine
from pfc.challenges.state_machine import ChallengeService
from pfc.challenges.store import ChallengeStore
from pfc.config import Settings, get_settings
from pfc.dependencies import (
    get_challenge_service,
    get_challenge_store,
    get_settlement_engine,
    get_user_directory,
)
from pfc.users.directory import UserDirectory

router = APIRouter(prefix="/api/v1", tags=["Challenges"])

_bearer = HTTPBearer(auto_error=False)


# ── Helpers ──


def bearer_matches(credentials: HTTPAuthorizationCredentials | None, secret: str) -> bool:
    """Constant-time comparison of a bearer token against a configured secret."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        return False
    return secrets.compare_digest(credentials.credentials.encode(), secret.encode())


async def settlement_response(
    engine: SettlementEngine,
    challenge_id: str | None = None,
    **extra,
) -> SettlementBatchResponse | JSONResponse:
    """Run the engine and shape the batch result; a selection failure fails the whole batch."""
    try:
        batch = await engine.run(challenge_id)
    except SettlementError as exc:
        content = {
            "success": False,
            "error": str(exc),
            "settled_count": 0,
            "failed_count": 0,
        }
        for key, value in extra.items():
            content[key] = value.isoformat() if isinstance(value, datetime) else value
        return JSONResponse(status_code=500, content=content)
    return SettlementBatchResponse.build(batch, **extra)


async def require_settle_token(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    settings: Settings = Depends(get_settings),
) -> None:
    """Manual settlement is open unless PFC_SETTLE_TOKEN is set."""
    if settings.settle_token and not bearer_matches(credentials, settings.settle_token):
        raise HTTPException(status_code=401, detail="Unauthorized")


# ── Challenges (3) ──


@router.get("/challenges", response_model=ChallengeListResponse)
async def list_challenges(
    user_id: str | None = Query(None),
    status: str | None = Query(None),
    type: str | None = Query(None),
    service: ChallengeService = Depends(get_challenge_service),
):
    """A user's challenges, split into pending invites, active and completed."""
    if not user_id:
        raise ChallengeValidationError("User ID required")

    listing = await service.list_for_user(user_id, status=status, type_=type)
    return ChallengeListResponse(
        challenges=[ChallengeResponse.build(c, p) for c, p in listing.challenges],
        pending_invites=[ChallengeResponse.build(c, p) for c, p in listing.pending_invites],
        active_challenges=[ChallengeResponse.build(c, p) for c, p in listing.active],
        completed_challenges=[ChallengeResponse.build(c, p) for c, p in listing.completed],
    )


@router.post("/challenges", response_model=ChallengeActionResponse)
async def create_challenge(
    body: CreateChallengeRequest,
    service: ChallengeService = Depends(get_challenge_service),
):
    """Create a challenge against the index or another user."""
    result = await service.create(
        challenger_id=body.challenger_id,
        challenger_portfolio_id=body.challenger_portfolio_id,
        type_=body.type,
        timeframe=body.timeframe,
        opponent_id=body.opponent_id,
        opponent_portfolio_id=body.opponent_portfolio_id,
    )
    return ChallengeActionResponse(challenge=ChallengeResponse.build(result.challenge), message=result.message)


@router.put("/challenges", response_model=ChallengeActionResponse)
async def update_challenge(
    body: ChallengeActionRequest,
    service: ChallengeService = Depends(get_challenge_service),
):
    """Accept, decline or cancel a pending challenge."""
    if not body.challenge_id or not body.action or not body.user_id:
        raise ChallengeValidationError("Missing required fields")

    if body.action == "accept":
        result = await service.accept(body.challenge_id, body.user_id, body.portfolio_id)
    elif body.action == "decline":
        result = await service.decline(body.challenge_id, body.user_id)
    elif body.action == "cancel":
        result = await service.cancel(body.challenge_id, body.user_id)
    else:
        raise ChallengeValidationError("Invalid action")

    return ChallengeActionResponse(challenge=ChallengeResponse.build(result.challenge), message=result.message)


# ── Settlement (2) ──


@router.post("/challenges/settle", dependencies=[Depends(require_settle_token)])
async def settle_challenges(
    body: SettleRequest | None = None,
    engine: SettlementEngine = Depends(get_settlement_engine),
):
    """Settle all overdue active challenges, or only `challenge_id`."""
    return await settlement_response(engine, body.challenge_id if body else None)


@router.get("/challenges/settle", dependencies=[Depends(require_settle_token)])
async def check_settlement(
    auto_settle: bool = Query(False),
    engine: SettlementEngine = Depends(get_settlement_engine),
):
    """List challenges awaiting settlement; settle them too with auto_settle=true."""
    if auto_settle:
        return await settlement_response(engine, pending_settlement=0)

    try:
        due = await engine.find_due()
    except SettlementError as exc:
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    return SettlementDiscoveryResponse(
        pending_settlement=len(due),
        challenges=[
            DueChallengeResponse(id=c.id, type=c.type, challenger_id=c.challenger_id, end_date=c.end_date)
            for c in due
        ],
    )


# ── Leaderboard (1) ──


@router.get("/challenges/leaderboard", response_model=LeaderboardResponse)
async def challenge_leaderboard(
    limit: int = Query(10, ge=1, le=100),
    type: LeaderboardType = Query("all"),
    store: ChallengeStore = Depends(get_challenge_store),
    directory: UserDirectory = Depends(get_user_directory),
):
    """Users ranked by challenge wins, then win rate, then XP earned."""
    completed = await store.list_completed(None if type == "all" else type)
    user_ids = {c.challenger_id for c in completed} | {c.opponent_id for c in completed if c.opponent_id}
    profiles = await directory.profiles(user_ids)

    entries, total = build_leaderboard(completed, profiles, limit)
    return LeaderboardResponse(
        leaderboard=[
            LeaderboardEntryResponse(
                rank=e.rank,
                user_id=e.user_id,
                username=e.username,
                avatar_url=e.avatar_url,
                wins=e.wins,
                losses=e.losses,
                draws=e.draws,
                total_challenges=e.total_challenges,
                win_rate=e.win_rate,
                xp_earned=e.xp_earned,
                index_wins=e.index_wins,
                user_wins=e.user_wins,
            )
            for e in entries
        ],
        total_participants=total,
    )
