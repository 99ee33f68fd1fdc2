"""Settlement engine — turns overdue active challenges into completed ones.

Pipeline per challenge:
1. Resolve the [start, end] evaluation window (date-only)
2. Ask the performance oracle for both sides' returns (timeout/no data -> 0%)
3. Score: strictly greater return wins, equal returns draw
4. Conditional terminal write plus XP deltas, in one transaction
   (only if the challenge is still active)
5. Notify participants (best-effort)

The conditional write in step 4 is what makes settlement exactly-once. The
manual endpoint, the cron endpoint and the arq job can all select the same
challenge; only one of them gets a row back from the update, the others
record it as already settled and move no XP.

Items are independent and run concurrently on a bounded pool. One item
failing never aborts the batch; it stays active and overdue, so the next
run picks it up again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

import structlog

from pfc.challenges import messages
from pfc.challenges.constants import STATUS_COMPLETED, TYPE_VS_INDEX
from pfc.challenges.exceptions import SettlementError
from pfc.challenges.ledger import settlement_deltas
from pfc.challenges.oracle import PerformanceOracle
from pfc.challenges.scoring import ChallengeOutcome, determine_outcome, outcome_for, stake_for
from pfc.challenges.store import ChallengeStore
from pfc.config import Settings
from pfc.db.models import Challenge
from pfc.notifications.dispatcher import NotificationDispatcher
from pfc.users.directory import UserDirectory

logger = structlog.get_logger()

ITEM_SETTLED = "settled"
ITEM_ALREADY_SETTLED = "already_settled"
ITEM_FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SettlementItemResult:
    challenge_id: str
    status: str
    error: str | None = None
    winner_id: str | None = None
    xp_awarded: int = 0


@dataclass
class SettlementFailure:
    challenge_id: str
    error: str


@dataclass
class SettlementBatchResult:
    settled: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[SettlementFailure] = field(default_factory=list)

    @property
    def settled_count(self) -> int:
        return len(self.settled)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def add(self, item: SettlementItemResult) -> None:
        if item.status == ITEM_SETTLED:
            self.settled.append(item.challenge_id)
        elif item.status == ITEM_ALREADY_SETTLED:
            self.skipped.append(item.challenge_id)
        else:
            self.failed.append(SettlementFailure(item.challenge_id, item.error or "Unknown error"))


class SettlementEngine:
    """Selects due challenges and settles each one exactly once."""

    def __init__(
        self,
        store: ChallengeStore,
        oracle: PerformanceOracle,
        directory: UserDirectory,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.directory = directory
        self.dispatcher = dispatcher
        self.settings = settings
        self.clock = clock

    async def find_due(self, challenge_id: str | None = None) -> list[Challenge]:
        """Active challenges whose window has elapsed, without settling them."""
        try:
            return await self.store.select_due(self.clock(), challenge_id)
        except Exception as exc:
            logger.error("settlement_selection_failed", error=str(exc), exc_info=exc)
            raise SettlementError(f"Failed to select challenges to settle: {exc}") from exc

    async def run(self, challenge_id: str | None = None) -> SettlementBatchResult:
        """Settle every due challenge (or just one). Raises SettlementError only if selection fails."""
        due = await self.find_due(challenge_id)
        batch = SettlementBatchResult()
        if not due:
            return batch

        semaphore = asyncio.Semaphore(max(1, self.settings.settlement_concurrency))

        async def _bounded(challenge: Challenge) -> SettlementItemResult:
            async with semaphore:
                return await self._settle_isolated(challenge)

        for item in await asyncio.gather(*(_bounded(c) for c in due)):
            batch.add(item)

        logger.info(
            "settlement_batch_complete",
            selected=len(due),
            settled=batch.settled_count,
            skipped=len(batch.skipped),
            failed=batch.failed_count,
        )
        return batch

    async def _settle_isolated(self, challenge: Challenge) -> SettlementItemResult:
        try:
            return await self.settle_challenge(challenge)
        except Exception as exc:
            logger.error(
                "challenge_settlement_failed",
                challenge_id=challenge.id,
                error=str(exc),
                exc_info=exc,
            )
            return SettlementItemResult(challenge.id, ITEM_FAILED, error=f"Error settling challenge {challenge.id}: {exc}")

    async def settle_challenge(self, challenge: Challenge) -> SettlementItemResult:
        """Run the full pipeline for one challenge. Exceptions propagate."""
        start, end = self._window(challenge)

        challenger_return = await self._portfolio_return(challenge.challenger_portfolio_id, start, end, challenge.id)
        if challenge.type == TYPE_VS_INDEX:
            opponent_return = await self._bounded_return(
                self.oracle.benchmark_return(self.settings.benchmark_symbol, start, end),
                self.settings.benchmark_symbol,
                challenge.id,
            )
        else:
            opponent_return = await self._portfolio_return(challenge.opponent_portfolio_id, start, end, challenge.id)

        baseline = self.settings.challenge_baseline_value
        outcome = determine_outcome(
            challenge_type=challenge.type,
            challenger_id=challenge.challenger_id,
            opponent_id=challenge.opponent_id,
            challenger_return=challenger_return,
            opponent_return=opponent_return,
            stake=stake_for(challenge.type, self.settings.challenge_xp_vs_index, self.settings.challenge_xp_vs_user),
            challenger_start_value=challenge.challenger_start_value or baseline,
            opponent_start_value=challenge.opponent_start_value or baseline,
        )

        deltas = settlement_deltas(
            challenge.type,
            challenge.challenger_id,
            challenge.opponent_id,
            outcome.winner_id,
            outcome.xp_awarded,
        )
        updated = await self.store.settle(
            challenge.id,
            {
                "status": STATUS_COMPLETED,
                "challenger_end_value": outcome.challenger_end_value,
                "opponent_end_value": outcome.opponent_end_value,
                "challenger_return_percent": challenger_return,
                "opponent_return_percent": opponent_return,
                "winner_id": outcome.winner_id,
                "xp_awarded": outcome.xp_awarded,
                "settled_at": self.clock(),
            },
            deltas,
        )
        if updated is None:
            logger.info("challenge_already_settled", challenge_id=challenge.id)
            return SettlementItemResult(challenge.id, ITEM_ALREADY_SETTLED)

        await self._notify(challenge, outcome)

        logger.info(
            "challenge_settled",
            challenge_id=challenge.id,
            type=challenge.type,
            challenger_return=challenger_return,
            opponent_return=opponent_return,
            winner_id=outcome.winner_id,
            xp_awarded=outcome.xp_awarded,
        )
        return SettlementItemResult(
            challenge.id,
            ITEM_SETTLED,
            winner_id=outcome.winner_id,
            xp_awarded=outcome.xp_awarded,
        )

    # ── Pipeline steps ──

    def _window(self, challenge: Challenge) -> tuple[date, date]:
        today = self.clock().date()
        if challenge.start_date is None or challenge.end_date is None:
            # Active challenges always get both dates at activation
            logger.error(
                "challenge_missing_window",
                challenge_id=challenge.id,
                start_date=str(challenge.start_date),
                end_date=str(challenge.end_date),
            )
        start = challenge.start_date.date() if challenge.start_date else today
        end = challenge.end_date.date() if challenge.end_date else today
        return start, end

    async def _portfolio_return(
        self,
        portfolio_id: str | None,
        start: date,
        end: date,
        challenge_id: str,
    ) -> float:
        if not portfolio_id:
            logger.warning("challenge_portfolio_missing", challenge_id=challenge_id)
            return 0.0
        return await self._bounded_return(
            self.oracle.portfolio_return(portfolio_id, start, end),
            portfolio_id,
            challenge_id,
        )

    async def _bounded_return(
        self,
        call: Awaitable[float | None],
        subject: str,
        challenge_id: str,
    ) -> float:
        """Await an oracle call with a timeout. Timeout and no data both mean 0%."""
        try:
            value = await asyncio.wait_for(call, timeout=self.settings.oracle_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("oracle_timeout", subject=subject, challenge_id=challenge_id)
            return 0.0
        if value is None:
            logger.info("oracle_no_data", subject=subject, challenge_id=challenge_id)
            return 0.0
        return float(value)

    async def _notify(self, challenge: Challenge, outcome: ChallengeOutcome) -> None:
        try:
            if challenge.type == TYPE_VS_INDEX:
                recipients = [(challenge.challenger_id, self.settings.benchmark_name)]
            else:
                profiles = await self.directory.profiles([challenge.challenger_id, challenge.opponent_id])
                challenger = profiles.get(challenge.challenger_id)
                opponent = profiles.get(challenge.opponent_id)
                recipients = [
                    (challenge.challenger_id, opponent.username if opponent else "opponent"),
                    (challenge.opponent_id, challenger.username if challenger else "opponent"),
                ]

            for user_id, counterpart in recipients:
                outcome_name = outcome_for(user_id, outcome.winner_id)
                await self.dispatcher.enqueue(
                    user_id,
                    messages.RESULT_TYPES[outcome_name],
                    messages.result_message(outcome_name, counterpart, outcome.xp_awarded),
                    {
                        "challenge_id": challenge.id,
                        "xp_amount": outcome.xp_awarded,
                        "outcome": outcome_name,
                    },
                )
        except Exception as exc:
            logger.warning("challenge_notification_failed", challenge_id=challenge.id, error=str(exc))
