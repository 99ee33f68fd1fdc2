"""Notification dispatch.

A notification is:
1. Persisted in the notifications table (read=false)
2. Pushed to the user's live connections via Redis pub/sub (ws:user:{id})

Dispatch is fire-and-forget. Nothing here raises to the caller; a failed
insert or publish is logged and dropped so it can never fail a challenge
action or a settlement.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pfc.db.models import Notification

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Enqueue one message for one user."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None,
        redis: Any | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis

    async def enqueue(
        self,
        user_id: str,
        type_: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        try:
            notification = await self._persist(user_id, type_, message, data or {})
        except Exception:
            logger.warning("Failed to persist %s notification for user %s", type_, user_id, exc_info=True)
            return

        if self._redis is None or notification is None:
            return

        ws_payload = {
            "event": "notification",
            "data": {
                "id": str(notification.id),
                "type": notification.type,
                "message": notification.message,
                "timestamp": notification.created_at.isoformat() if notification.created_at else None,
                "read": False,
                "data": notification.data,
            },
        }
        try:
            await self._redis.publish(f"ws:user:{user_id}", json.dumps(ws_payload))
        except Exception:
            logger.warning("Failed to push notification via WebSocket", exc_info=True)

    async def _persist(
        self,
        user_id: str,
        type_: str,
        message: str,
        data: dict[str, Any],
    ) -> Notification | None:
        if self._session_factory is None:
            return None

        notification = Notification(
            user_id=user_id,
            type=type_,
            message=message,
            read=False,
            data=data,
            created_at=datetime.now(timezone.utc),
        )
        async with self._session_factory() as db:
            db.add(notification)
            await db.commit()
        return notification
