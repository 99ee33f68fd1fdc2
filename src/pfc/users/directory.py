"""Read-only lookups of user and portfolio display data."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pfc.db.models import Portfolio, User


@dataclass(frozen=True)
class UserProfile:
    id: str
    username: str
    avatar_url: str | None = None


class UserDirectory(ABC):
    """Display metadata for challenge participants."""

    @abstractmethod
    async def profiles(self, user_ids: Iterable[str]) -> dict[str, UserProfile]:
        ...

    @abstractmethod
    async def portfolio_names(self, portfolio_ids: Iterable[str]) -> dict[str, str]:
        ...

    async def display_name(self, user_id: str | None) -> str | None:
        """Username for one user, or None if unknown."""
        if not user_id:
            return None
        profile = (await self.profiles([user_id])).get(user_id)
        return profile.username if profile else None


class SqlUserDirectory(UserDirectory):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def profiles(self, user_ids: Iterable[str]) -> dict[str, UserProfile]:
        ids = {uid for uid in user_ids if uid}
        if not ids:
            return {}
        async with self._session_factory() as db:
            result = await db.execute(
                select(User.id, User.username, User.avatar_url).where(User.id.in_(ids))
            )
            return {
                row.id: UserProfile(id=row.id, username=row.username, avatar_url=row.avatar_url)
                for row in result.all()
            }

    async def portfolio_names(self, portfolio_ids: Iterable[str]) -> dict[str, str]:
        ids = {pid for pid in portfolio_ids if pid}
        if not ids:
            return {}
        async with self._session_factory() as db:
            result = await db.execute(
                select(Portfolio.id, Portfolio.name).where(Portfolio.id.in_(ids))
            )
            return {row.id: row.name for row in result.all()}
