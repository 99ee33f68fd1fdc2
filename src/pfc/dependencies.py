"""Shared FastAPI dependencies and service wiring.

Routers never construct collaborators themselves; they depend on the
providers below, which tests replace through app.dependency_overrides.
"""

from __future__ import annotations

from fastapi import Depends

from pfc.challenges.ledger import SqlXPLedger, XPLedger
from pfc.challenges.oracle import HttpPerformanceOracle, PerformanceOracle
from pfc.challenges.settlement import SettlementEngine
from pfc.challenges.state_machine import ChallengeService
from pfc.challenges.store import ChallengeStore, SqlChallengeStore
from pfc.config import Settings, get_settings
from pfc.database import get_session_factory
from pfc.notifications.dispatcher import NotificationDispatcher
from pfc.redis_client import get_redis
from pfc.users.directory import SqlUserDirectory, UserDirectory

_oracle: HttpPerformanceOracle | None = None


def get_oracle(settings: Settings = Depends(get_settings)) -> PerformanceOracle:
    """Process-wide oracle client (one httpx connection pool)."""
    global _oracle  # noqa: PLW0603
    if _oracle is None:
        _oracle = HttpPerformanceOracle(
            settings.oracle_base_url,
            timeout_seconds=settings.oracle_timeout_seconds,
            max_attempts=settings.oracle_max_attempts,
        )
    return _oracle


async def close_oracle() -> None:
    global _oracle  # noqa: PLW0603
    if _oracle is not None:
        await _oracle.aclose()
        _oracle = None


def get_challenge_store() -> ChallengeStore:
    return SqlChallengeStore(get_session_factory())


def get_xp_ledger() -> XPLedger:
    return SqlXPLedger(get_session_factory())


def get_user_directory() -> UserDirectory:
    return SqlUserDirectory(get_session_factory())


def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(get_session_factory(), get_redis())


def get_challenge_service(
    store: ChallengeStore = Depends(get_challenge_store),
    ledger: XPLedger = Depends(get_xp_ledger),
    directory: UserDirectory = Depends(get_user_directory),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
) -> ChallengeService:
    return ChallengeService(store, ledger, directory, dispatcher, settings)


def get_settlement_engine(
    store: ChallengeStore = Depends(get_challenge_store),
    oracle: PerformanceOracle = Depends(get_oracle),
    directory: UserDirectory = Depends(get_user_directory),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
) -> SettlementEngine:
    return SettlementEngine(store, oracle, directory, dispatcher, settings)


def build_settlement_engine(settings: Settings, redis: object | None = None) -> SettlementEngine:
    """Wire a settlement engine outside a request (arq worker)."""
    factory = get_session_factory()
    return SettlementEngine(
        store=SqlChallengeStore(factory),
        oracle=get_oracle(settings),
        directory=SqlUserDirectory(factory),
        dispatcher=NotificationDispatcher(factory, redis),
        settings=settings,
    )
