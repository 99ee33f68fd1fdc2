"""Scheduled settlement entry point for external cron callers.

Point any HTTP scheduler at /api/v1/cron/settle-challenges with
`Authorization: Bearer $PFC_CRON_SECRET`. GET and POST behave the same.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pfc.challenges.router import bearer_matches, settlement_response
from pfc.challenges.settlement import SettlementEngine
from pfc.config import Settings, get_settings
from pfc.dependencies import get_settlement_engine

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/cron", tags=["Cron"])

_bearer = HTTPBearer(auto_error=False)


async def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.cron_secret:
        raise HTTPException(status_code=503, detail="Cron secret not configured")
    if not bearer_matches(credentials, settings.cron_secret):
        logger.warning("cron_unauthorized")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route(
    "/settle-challenges",
    methods=["GET", "POST"],
    dependencies=[Depends(require_cron_secret)],
)
async def cron_settle_challenges(
    engine: SettlementEngine = Depends(get_settlement_engine),
):
    """Settle every overdue active challenge."""
    return await settlement_response(engine, timestamp=datetime.now(timezone.utc))
