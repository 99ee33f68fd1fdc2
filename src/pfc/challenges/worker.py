"""Challenge settlement arq worker — hourly scheduled settlement.

Run with: arq pfc.challenges.worker.SettlementWorkerSettings
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron

from pfc.challenges.exceptions import SettlementError
from pfc.config import get_settings
from pfc.database import close_db, init_db
from pfc.dependencies import build_settlement_engine, close_oracle

logger = logging.getLogger(__name__)


async def settle_due_challenges(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Scheduled arq task: settle every overdue active challenge."""
    engine = build_settlement_engine(get_settings(), ctx.get("redis"))
    try:
        batch = await engine.run()
    except SettlementError:
        logger.exception("Scheduled settlement could not select challenges")
        return {"settled": 0, "failed": 0, "error": "selection_failed"}

    for failure in batch.failed:
        logger.error("Challenge %s failed to settle: %s", failure.challenge_id, failure.error)
    if batch.settled_count or batch.failed_count:
        logger.info(
            "Scheduled settlement: %d settled, %d skipped, %d failed",
            batch.settled_count, len(batch.skipped), batch.failed_count,
        )
    return {"settled": batch.settled_count, "failed": batch.failed_count}


async def settlement_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Settlement worker started")


async def settlement_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_oracle()
    await close_db()
    logger.info("Settlement worker shut down")


class SettlementWorkerSettings:
    """arq worker settings for scheduled challenge settlement."""

    functions = [settle_due_challenges]
    cron_jobs = [
        cron(settle_due_challenges, minute=get_settings().settlement_cron_minute, run_at_startup=True),
    ]
    on_startup = settlement_startup
    on_shutdown = settlement_shutdown
    max_jobs = 1  # one batch at a time per worker
    job_timeout = 600
