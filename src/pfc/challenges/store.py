"""Challenge persistence.

Pending-stage status changes go through transition(), a conditional
single-row update: it only applies if the row is still in the expected
status and returns None otherwise. Two writers racing on the same challenge
therefore cannot both win.

Settlement goes through settle(), which makes the same conditional write
from active and applies the XP deltas in one transaction. Either the
challenge completes and every balance moves, or nothing changes and the
challenge stays active for the next run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pfc.challenges.constants import OPEN_STATUSES, STATUS_ACTIVE, STATUS_COMPLETED
from pfc.challenges.ledger import apply_delta
from pfc.db.models import Challenge


class ChallengeStore(ABC):
    """Owns the persisted Challenge records."""

    @abstractmethod
    async def insert(self, challenge: Challenge) -> Challenge:
        ...

    @abstractmethod
    async def get(self, challenge_id: str) -> Challenge | None:
        ...

    @abstractmethod
    async def count_open(self, user_id: str) -> int:
        """Pending + active challenges where the user is either participant."""
        ...

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        status: str | None = None,
        type_: str | None = None,
    ) -> list[Challenge]:
        """Challenges where the user is either participant, newest first."""
        ...

    @abstractmethod
    async def select_due(self, now: datetime, challenge_id: str | None = None) -> list[Challenge]:
        """Active challenges whose end date has passed."""
        ...

    @abstractmethod
    async def list_completed(self, type_: str | None = None) -> list[Challenge]:
        ...

    @abstractmethod
    async def transition(
        self,
        challenge_id: str,
        expected_status: str,
        values: dict[str, Any],
    ) -> Challenge | None:
        """Apply values only if status is still expected_status.

        Returns the updated challenge, or None when nothing matched.
        """
        ...

    @abstractmethod
    async def settle(
        self,
        challenge_id: str,
        values: dict[str, Any],
        deltas: list[tuple[str, int]],
    ) -> Challenge | None:
        """Complete an active challenge and apply its XP deltas atomically.

        Returns None, with no balance touched, when the challenge is no
        longer active.
        """
        ...


class SqlChallengeStore(ChallengeStore):
    """PostgreSQL-backed store. One short-lived session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(self, challenge: Challenge) -> Challenge:
        async with self._session_factory() as db:
            db.add(challenge)
            await db.commit()
        return challenge

    async def get(self, challenge_id: str) -> Challenge | None:
        async with self._session_factory() as db:
            result = await db.execute(select(Challenge).where(Challenge.id == challenge_id))
            return result.scalar_one_or_none()

    async def count_open(self, user_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count())
                .select_from(Challenge)
                .where(
                    or_(Challenge.challenger_id == user_id, Challenge.opponent_id == user_id),
                    Challenge.status.in_(OPEN_STATUSES),
                )
            )
            return result.scalar_one()

    async def list_for_user(
        self,
        user_id: str,
        status: str | None = None,
        type_: str | None = None,
    ) -> list[Challenge]:
        q = select(Challenge).where(
            or_(Challenge.challenger_id == user_id, Challenge.opponent_id == user_id)
        )
        if status:
            q = q.where(Challenge.status == status)
        if type_:
            q = q.where(Challenge.type == type_)
        q = q.order_by(Challenge.created_at.desc())

        async with self._session_factory() as db:
            result = await db.execute(q)
            return list(result.scalars().all())

    async def select_due(self, now: datetime, challenge_id: str | None = None) -> list[Challenge]:
        q = select(Challenge).where(
            Challenge.status == STATUS_ACTIVE,
            Challenge.end_date <= now,
        )
        if challenge_id:
            q = q.where(Challenge.id == challenge_id)
        q = q.order_by(Challenge.end_date)

        async with self._session_factory() as db:
            result = await db.execute(q)
            return list(result.scalars().all())

    async def list_completed(self, type_: str | None = None) -> list[Challenge]:
        q = select(Challenge).where(Challenge.status == STATUS_COMPLETED)
        if type_:
            q = q.where(Challenge.type == type_)

        async with self._session_factory() as db:
            result = await db.execute(q)
            return list(result.scalars().all())

    async def transition(
        self,
        challenge_id: str,
        expected_status: str,
        values: dict[str, Any],
    ) -> Challenge | None:
        async with self._session_factory() as db:
            result = await db.execute(
                update(Challenge)
                .where(Challenge.id == challenge_id, Challenge.status == expected_status)
                .values(**values)
                .returning(Challenge)
                .execution_options(synchronize_session=False)
            )
            updated = result.scalar_one_or_none()
            await db.commit()
            return updated

    async def settle(
        self,
        challenge_id: str,
        values: dict[str, Any],
        deltas: list[tuple[str, int]],
    ) -> Challenge | None:
        async with self._session_factory() as db:
            result = await db.execute(
                update(Challenge)
                .where(Challenge.id == challenge_id, Challenge.status == STATUS_ACTIVE)
                .values(**values)
                .returning(Challenge)
                .execution_options(synchronize_session=False)
            )
            settled = result.scalar_one_or_none()
            if settled is None:
                await db.rollback()
                return None

            # Fixed lock order across concurrent settlements sharing a user
            for user_id, delta in sorted(deltas):
                await apply_delta(db, user_id, delta)
            await db.commit()
            return settled
