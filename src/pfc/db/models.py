"""ORM models for users, portfolios, challenges and notifications.

Tables are created by the Alembic migrations in alembic/versions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pfc.db.base import Base


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table. Registration and auth live elsewhere."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    portfolios: Mapped[list[Portfolio]] = relationship("Portfolio", back_populates="user")


class Portfolio(Base):
    """A user's staked portfolio. Holdings are managed by the portfolio service."""

    __tablename__ = "portfolios"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())

    user: Mapped[User] = relationship("User", back_populates="portfolios")


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class Challenge(Base):
    """An XP stake on a portfolio's return against the index or another user."""

    __tablename__ = "challenges"
    __table_args__ = (
        Index("idx_challenges_status_end_date", "status", "end_date"),
        Index("idx_challenges_challenger", "challenger_id"),
        Index("idx_challenges_opponent", "opponent_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    challenger_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    challenger_portfolio_id: Mapped[str] = mapped_column(String(36), nullable=False)
    opponent_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    opponent_portfolio_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    timeframe: Mapped[str] = mapped_column(String(4), nullable=False)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    challenger_start_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    opponent_start_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    challenger_end_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    opponent_end_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    challenger_return_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    opponent_return_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    winner_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    xp_awarded: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted user notifications."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict, server_default="{}")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
