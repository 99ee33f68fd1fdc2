"""XP ledger — the only place challenge settlement moves XP balances.

Rules:
- Balances are floored at zero: apply() stores max(0, balance + delta)
- vs_user transfers are zero-sum between the two participants
- vs_index only moves the challenger's balance; the index has no account
- Draws move nothing (no ledger calls at all)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pfc.challenges.constants import TYPE_VS_INDEX
from pfc.db.models import User

logger = logging.getLogger(__name__)


def settlement_deltas(
    challenge_type: str,
    challenger_id: str,
    opponent_id: str | None,
    winner_id: str | None,
    xp_awarded: int,
) -> list[tuple[str, int]]:
    """Return the (user_id, delta) pairs a settled challenge applies."""
    if winner_id is None or xp_awarded <= 0:
        return []

    challenger_won = winner_id == challenger_id

    if challenge_type == TYPE_VS_INDEX:
        return [(challenger_id, xp_awarded if challenger_won else -xp_awarded)]

    if opponent_id is None:
        logger.error("vs_user challenge without opponent reached the ledger (winner=%s)", winner_id)
        return []

    if challenger_won:
        return [(challenger_id, xp_awarded), (opponent_id, -xp_awarded)]
    return [(opponent_id, xp_awarded), (challenger_id, -xp_awarded)]


class XPLedger(ABC):
    """Owns each user's XP balance."""

    @abstractmethod
    async def balance(self, user_id: str) -> int | None:
        """Current balance, or None if the user does not exist."""
        ...

    @abstractmethod
    async def apply(self, user_id: str, delta: int) -> int | None:
        """Apply a signed delta with a floor of zero. Returns the new balance."""
        ...


async def apply_delta(db: AsyncSession, user_id: str, delta: int) -> int | None:
    """Floored balance update inside the caller's transaction. Does not commit."""
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            xp=func.greatest(0, User.xp + delta),
            updated_at=datetime.now(timezone.utc),
        )
        .returning(User.xp)
    )
    new_balance = result.scalar_one_or_none()
    if new_balance is None:
        logger.warning("XP delta %+d for unknown user %s ignored", delta, user_id)
    return new_balance


class SqlXPLedger(XPLedger):
    """Ledger backed by users.xp.

    The floor is applied inside a single UPDATE so concurrent settlements
    touching the same user serialize on the row lock. Settlement itself
    goes through SqlChallengeStore.settle, which runs apply_delta in the
    same transaction as the terminal challenge write.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def balance(self, user_id: str) -> int | None:
        async with self._session_factory() as db:
            result = await db.execute(select(User.xp).where(User.id == user_id))
            return result.scalar_one_or_none()

    async def apply(self, user_id: str, delta: int) -> int | None:
        async with self._session_factory() as db:
            new_balance = await apply_delta(db, user_id, delta)
            await db.commit()
        return new_balance
