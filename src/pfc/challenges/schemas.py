"""Pydantic request/response models for challenge endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from pfc.challenges.settlement import SettlementBatchResult
from pfc.challenges.state_machine import ChallengeParticipants
from pfc.db.models import Challenge


# ── Requests ──


class CreateChallengeRequest(BaseModel):
    challenger_id: str | None = None
    challenger_portfolio_id: str | None = None
    type: str | None = None
    timeframe: str | None = None
    opponent_id: str | None = None
    opponent_portfolio_id: str | None = None


class ChallengeActionRequest(BaseModel):
    challenge_id: str | None = None
    action: str | None = None
    user_id: str | None = None
    portfolio_id: str | None = None


class SettleRequest(BaseModel):
    challenge_id: str | None = None


# ── Challenges ──


class ChallengeResponse(BaseModel):
    id: str
    type: str
    status: str
    challenger_id: str
    challenger_portfolio_id: str
    opponent_id: str | None = None
    opponent_portfolio_id: str | None = None
    timeframe: str
    start_date: datetime | None = None
    end_date: datetime | None = None
    challenger_start_value: float | None = None
    challenger_end_value: float | None = None
    opponent_start_value: float | None = None
    opponent_end_value: float | None = None
    challenger_return_percent: float | None = None
    opponent_return_percent: float | None = None
    winner_id: str | None = None
    xp_awarded: int | None = None
    created_at: datetime | None = None
    settled_at: datetime | None = None

    challenger_username: str | None = None
    challenger_avatar: str | None = None
    challenger_portfolio_name: str | None = None
    opponent_username: str | None = None
    opponent_avatar: str | None = None
    opponent_portfolio_name: str | None = None

    @classmethod
    def build(
        cls,
        challenge: Challenge,
        participants: ChallengeParticipants | None = None,
    ) -> ChallengeResponse:
        p = participants or ChallengeParticipants()
        return cls(
            id=challenge.id,
            type=challenge.type,
            status=challenge.status,
            challenger_id=challenge.challenger_id,
            challenger_portfolio_id=challenge.challenger_portfolio_id,
            opponent_id=challenge.opponent_id,
            opponent_portfolio_id=challenge.opponent_portfolio_id,
            timeframe=challenge.timeframe,
            start_date=challenge.start_date,
            end_date=challenge.end_date,
            challenger_start_value=challenge.challenger_start_value,
            challenger_end_value=challenge.challenger_end_value,
            opponent_start_value=challenge.opponent_start_value,
            opponent_end_value=challenge.opponent_end_value,
            challenger_return_percent=challenge.challenger_return_percent,
            opponent_return_percent=challenge.opponent_return_percent,
            winner_id=challenge.winner_id,
            xp_awarded=challenge.xp_awarded,
            created_at=challenge.created_at,
            settled_at=challenge.settled_at,
            challenger_username=p.challenger_username,
            challenger_avatar=p.challenger_avatar,
            challenger_portfolio_name=p.challenger_portfolio_name,
            opponent_username=p.opponent_username,
            opponent_avatar=p.opponent_avatar,
            opponent_portfolio_name=p.opponent_portfolio_name,
        )


class ChallengeListResponse(BaseModel):
    success: bool = True
    challenges: list[ChallengeResponse]
    pending_invites: list[ChallengeResponse]
    active_challenges: list[ChallengeResponse]
    completed_challenges: list[ChallengeResponse]


class ChallengeActionResponse(BaseModel):
    success: bool = True
    challenge: ChallengeResponse
    message: str


# ── Settlement ──


class SettlementFailureResponse(BaseModel):
    id: str
    error: str


class SettlementBatchResponse(BaseModel):
    success: bool = True
    message: str
    settled_count: int
    failed_count: int
    settled: list[str]
    skipped: list[str]
    failed: list[SettlementFailureResponse]
    pending_settlement: int | None = None
    timestamp: datetime | None = None

    @classmethod
    def build(cls, batch: SettlementBatchResult, **extra) -> SettlementBatchResponse:
        if batch.settled_count or batch.failed_count or batch.skipped:
            message = f"Settled {batch.settled_count} challenge(s)"
        else:
            message = "No challenges to settle"
        return cls(
            message=message,
            settled_count=batch.settled_count,
            failed_count=batch.failed_count,
            settled=batch.settled,
            skipped=batch.skipped,
            failed=[SettlementFailureResponse(id=f.challenge_id, error=f.error) for f in batch.failed],
            **extra,
        )


class DueChallengeResponse(BaseModel):
    id: str
    type: str
    challenger_id: str
    end_date: datetime | None = None


class SettlementDiscoveryResponse(BaseModel):
    success: bool = True
    pending_settlement: int
    challenges: list[DueChallengeResponse]


# ── Leaderboard ──


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    username: str
    avatar_url: str | None = None
    wins: int
    losses: int
    draws: int
    total_challenges: int
    win_rate: float
    xp_earned: int
    index_wins: int
    user_wins: int


class LeaderboardResponse(BaseModel):
    success: bool = True
    leaderboard: list[LeaderboardEntryResponse]
    total_participants: int


LeaderboardType = Literal["all", "vs_index", "vs_user"]
