"""Challenge state machine — create, accept, decline, cancel.

State progression: pending -> {active, declined, cancelled}; active -> completed.
Every other state is terminal. Pending-only transitions are written with a
conditional update, so a concurrent accept/cancel on the same invite loses
cleanly with a state error instead of overwriting.

Rules:
- A user holds at most `challenge_max_active` pending + active challenges
  (checked at creation for the challenger, at acceptance for the opponent)
- Creating or accepting requires an XP balance covering the stake; nothing
  is deducted up front
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from pfc.challenges import messages
from pfc.challenges.constants import (
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_DECLINED,
    STATUS_PENDING,
    TIMEFRAME_DAYS,
    TYPE_VS_INDEX,
    TYPE_VS_USER,
    VALID_TYPES,
    timeframe_days,
)
from pfc.challenges.exceptions import (
    ActiveChallengeCapExceeded,
    ChallengeAuthorizationError,
    ChallengeNotFound,
    ChallengeStateError,
    ChallengeValidationError,
    InsufficientXP,
)
from pfc.challenges.ledger import XPLedger
from pfc.challenges.scoring import stake_for
from pfc.challenges.store import ChallengeStore
from pfc.config import Settings
from pfc.db.models import Challenge
from pfc.notifications.dispatcher import NotificationDispatcher
from pfc.users.directory import UserDirectory

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[str, list[str]] = {
    STATUS_PENDING: [STATUS_ACTIVE, STATUS_DECLINED, STATUS_CANCELLED],
    STATUS_ACTIVE: [STATUS_COMPLETED],
    STATUS_COMPLETED: [],
    STATUS_DECLINED: [],
    STATUS_CANCELLED: [],
}


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a state transition. Raises ChallengeStateError if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise ChallengeStateError(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChallengeActionResult:
    challenge: Challenge
    message: str


@dataclass
class ChallengeParticipants:
    """Display metadata for both sides of a challenge."""

    challenger_username: str | None = None
    challenger_avatar: str | None = None
    challenger_portfolio_name: str | None = None
    opponent_username: str | None = None
    opponent_avatar: str | None = None
    opponent_portfolio_name: str | None = None


AnnotatedChallenge = tuple[Challenge, ChallengeParticipants]


@dataclass
class ChallengeListing:
    challenges: list[AnnotatedChallenge] = field(default_factory=list)
    pending_invites: list[AnnotatedChallenge] = field(default_factory=list)
    active: list[AnnotatedChallenge] = field(default_factory=list)
    completed: list[AnnotatedChallenge] = field(default_factory=list)


class ChallengeService:
    """Validates and executes challenge lifecycle actions."""

    def __init__(
        self,
        store: ChallengeStore,
        ledger: XPLedger,
        directory: UserDirectory,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.directory = directory
        self.dispatcher = dispatcher
        self.settings = settings
        self.clock = clock

    # ── Helpers ──

    def _stake(self, challenge_type: str) -> int:
        return stake_for(
            challenge_type,
            self.settings.challenge_xp_vs_index,
            self.settings.challenge_xp_vs_user,
        )

    def _activation_values(self, timeframe: str) -> dict:
        now = self.clock()
        days = timeframe_days(timeframe, self.settings.challenge_default_timeframe_days)
        baseline = self.settings.challenge_baseline_value
        return {
            "status": STATUS_ACTIVE,
            "start_date": now,
            "end_date": now + timedelta(days=days),
            "challenger_start_value": baseline,
            "opponent_start_value": baseline,
        }

    async def _check_cap(self, user_id: str) -> None:
        open_count = await self.store.count_open(user_id)
        if open_count >= self.settings.challenge_max_active:
            raise ActiveChallengeCapExceeded(self.settings.challenge_max_active)

    async def _get_for_action(self, challenge_id: str, user_id: str) -> Challenge:
        challenge = await self.store.get(challenge_id)
        if challenge is None:
            raise ChallengeNotFound("Challenge not found")
        if user_id not in (challenge.challenger_id, challenge.opponent_id):
            raise ChallengeAuthorizationError("Not authorized to modify this challenge")
        return challenge

    async def _transition(self, challenge: Challenge, target: str, values: dict, error: str) -> Challenge:
        if challenge.status != STATUS_PENDING:
            raise ChallengeStateError(error)
        validate_transition(challenge.status, target)

        updated = await self.store.transition(challenge.id, STATUS_PENDING, {"status": target, **values})
        if updated is None:
            # Someone else moved it out of pending between our read and write
            raise ChallengeStateError(error)
        return updated

    # ── Actions ──

    async def create(
        self,
        challenger_id: str | None,
        challenger_portfolio_id: str | None,
        type_: str | None,
        timeframe: str | None,
        opponent_id: str | None = None,
        opponent_portfolio_id: str | None = None,
    ) -> ChallengeActionResult:
        """Create a challenge. vs_index starts immediately; vs_user waits for acceptance."""
        if not challenger_id or not challenger_portfolio_id or not type_ or not timeframe:
            raise ChallengeValidationError("Missing required fields")
        if type_ not in VALID_TYPES:
            raise ChallengeValidationError("Invalid challenge type")
        if timeframe not in TIMEFRAME_DAYS:
            raise ChallengeValidationError("Invalid timeframe")
        if type_ == TYPE_VS_USER and (not opponent_id or not opponent_portfolio_id):
            raise ChallengeValidationError("User challenges require an opponent")
        if type_ == TYPE_VS_USER and opponent_id == challenger_id:
            raise ChallengeValidationError("You cannot challenge yourself")

        balance = await self.ledger.balance(challenger_id)
        if balance is None:
            raise ChallengeNotFound("User not found")

        await self._check_cap(challenger_id)

        required = self._stake(type_)
        if balance < required:
            raise InsufficientXP(required)

        is_index = type_ == TYPE_VS_INDEX
        challenge = Challenge(
            id=str(uuid.uuid4()),
            type=type_,
            status=STATUS_PENDING,
            challenger_id=challenger_id,
            challenger_portfolio_id=challenger_portfolio_id,
            opponent_id=None if is_index else opponent_id,
            opponent_portfolio_id=None if is_index else opponent_portfolio_id,
            timeframe=timeframe,
            created_at=self.clock(),
        )
        if is_index:
            for key, value in self._activation_values(timeframe).items():
                setattr(challenge, key, value)

        challenge = await self.store.insert(challenge)
        logger.info("Challenge %s created (%s, %s) by %s", challenge.id, type_, challenge.status, challenger_id)

        if is_index:
            return ChallengeActionResult(
                challenge,
                f"Challenge started! Track your performance against the {self.settings.benchmark_name}.",
            )

        challenger_name = await self.directory.display_name(challenger_id)
        await self.dispatcher.enqueue(
            opponent_id,
            messages.CHALLENGE_RECEIVED,
            messages.received_message(challenger_name),
            {"challenge_id": challenge.id, "challenger_id": challenger_id},
        )
        return ChallengeActionResult(challenge, "Challenge sent! Waiting for opponent to accept.")

    async def accept(
        self,
        challenge_id: str,
        user_id: str,
        portfolio_id: str | None = None,
    ) -> ChallengeActionResult:
        """Opponent accepts a pending invite; the challenge window starts now."""
        challenge = await self._get_for_action(challenge_id, user_id)
        if user_id != challenge.opponent_id:
            raise ChallengeAuthorizationError("Only the opponent can accept a challenge")
        if challenge.status != STATUS_PENDING:
            raise ChallengeStateError("Challenge is not pending")

        required = self._stake(challenge.type)
        balance = await self.ledger.balance(user_id)
        if balance is None or balance < required:
            raise InsufficientXP(required, accepting=True)

        await self._check_cap(user_id)

        values = self._activation_values(challenge.timeframe)
        values.pop("status")
        values["opponent_portfolio_id"] = portfolio_id or challenge.opponent_portfolio_id
        updated = await self._transition(challenge, STATUS_ACTIVE, values, "Challenge is not pending")
        logger.info("Challenge %s accepted by %s", challenge_id, user_id)

        accepter_name = await self.directory.display_name(user_id)
        await self.dispatcher.enqueue(
            challenge.challenger_id,
            messages.CHALLENGE_ACCEPTED,
            messages.accepted_message(accepter_name),
            {"challenge_id": challenge_id},
        )
        return ChallengeActionResult(updated, "Challenge accepted! The competition has begun.")

    async def decline(self, challenge_id: str, user_id: str) -> ChallengeActionResult:
        challenge = await self._get_for_action(challenge_id, user_id)
        if user_id != challenge.opponent_id:
            raise ChallengeAuthorizationError("Only the opponent can decline a challenge")

        updated = await self._transition(challenge, STATUS_DECLINED, {}, "Challenge is not pending")
        logger.info("Challenge %s declined by %s", challenge_id, user_id)

        decliner_name = await self.directory.display_name(user_id)
        await self.dispatcher.enqueue(
            challenge.challenger_id,
            messages.CHALLENGE_DECLINED,
            messages.declined_message(decliner_name),
            {"challenge_id": challenge_id},
        )
        return ChallengeActionResult(updated, "Challenge declined.")

    async def cancel(self, challenge_id: str, user_id: str) -> ChallengeActionResult:
        challenge = await self._get_for_action(challenge_id, user_id)
        if user_id != challenge.challenger_id:
            raise ChallengeAuthorizationError("Only the challenger can cancel")

        updated = await self._transition(
            challenge, STATUS_CANCELLED, {}, "Can only cancel pending challenges",
        )
        logger.info("Challenge %s cancelled by %s", challenge_id, user_id)
        return ChallengeActionResult(updated, "Challenge cancelled.")

    # ── Queries ──

    async def list_for_user(
        self,
        user_id: str,
        status: str | None = None,
        type_: str | None = None,
    ) -> ChallengeListing:
        """All of a user's challenges with counterpart display metadata."""
        challenges = await self.store.list_for_user(user_id, status=status, type_=type_)

        user_ids = {c.challenger_id for c in challenges} | {c.opponent_id for c in challenges if c.opponent_id}
        portfolio_ids = {c.challenger_portfolio_id for c in challenges} | {
            c.opponent_portfolio_id for c in challenges if c.opponent_portfolio_id
        }
        profiles = await self.directory.profiles(user_ids)
        portfolios = await self.directory.portfolio_names(portfolio_ids)

        listing = ChallengeListing()
        for c in challenges:
            challenger = profiles.get(c.challenger_id)
            participants = ChallengeParticipants(
                challenger_username=challenger.username if challenger else None,
                challenger_avatar=challenger.avatar_url if challenger else None,
                challenger_portfolio_name=portfolios.get(c.challenger_portfolio_id),
            )
            if c.opponent_id:
                opponent = profiles.get(c.opponent_id)
                participants.opponent_username = opponent.username if opponent else None
                participants.opponent_avatar = opponent.avatar_url if opponent else None
                if c.opponent_portfolio_id:
                    participants.opponent_portfolio_name = portfolios.get(c.opponent_portfolio_id)
            elif c.type == TYPE_VS_INDEX:
                participants.opponent_username = self.settings.benchmark_name
                participants.opponent_portfolio_name = f"{self.settings.benchmark_symbol} Index"

            item = (c, participants)
            listing.challenges.append(item)
            if c.status == STATUS_PENDING and c.opponent_id == user_id:
                listing.pending_invites.append(item)
            elif c.status == STATUS_ACTIVE:
                listing.active.append(item)
            elif c.status == STATUS_COMPLETED:
                listing.completed.append(item)

        return listing
