"""Shared test fixtures.

Services are wired to the in-memory fakes in tests/fakes.py; the API
client swaps the same fakes in through app.dependency_overrides, so no
database, Redis or market-data service is needed.

The `sql_session_factory` fixture is the exception: it migrates and cleans
the PostgreSQL database at PFC_DATABASE_URL, and skips when none is
reachable.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pfc.challenges.settlement import SettlementEngine
from pfc.challenges.state_machine import ChallengeService
from pfc.config import Settings, get_settings
from pfc.database import close_db, get_session_factory, init_db
from pfc.db.models import User
from pfc.dependencies import (
    get_challenge_store,
    get_dispatcher,
    get_oracle,
    get_user_directory,
    get_xp_ledger,
)
from pfc.main import create_app
from pfc.users.directory import UserProfile
from tests.fakes import (
    NOW,
    FakeChallengeStore,
    FakeDirectory,
    FakeLedger,
    FakeOracle,
    RecordingDispatcher,
)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        log_format="console",
        oracle_timeout_seconds=0.2,
        settlement_concurrency=4,
        cron_secret="cron-test-secret",
        settle_token="",
    )


@pytest.fixture
def store(ledger) -> FakeChallengeStore:
    return FakeChallengeStore(ledger)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger({"alice": 1000, "bob": 1000, "carol": 1000})


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory(
        [
            UserProfile("alice", "alice", "https://cdn.example/alice.png"),
            UserProfile("bob", "bob"),
            UserProfile("carol", "carol"),
        ],
        portfolios={"pf-alice": "Alice Growth", "pf-bob": "Bob Value", "pf-carol": "Carol Income"},
    )


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def service(store, ledger, directory, dispatcher, settings, clock) -> ChallengeService:
    return ChallengeService(store, ledger, directory, dispatcher, settings, clock=clock)


@pytest.fixture
def engine(store, oracle, directory, dispatcher, settings, clock) -> SettlementEngine:
    return SettlementEngine(store, oracle, directory, dispatcher, settings, clock=clock)


@pytest_asyncio.fixture
async def client(store, oracle, ledger, directory, dispatcher, settings) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the app with every collaborator replaced by a fake."""
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_challenge_store] = lambda: store
    app.dependency_overrides[get_oracle] = lambda: oracle
    app.dependency_overrides[get_xp_ledger] = lambda: ledger
    app.dependency_overrides[get_user_directory] = lambda: directory
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def _ensure_migrations() -> None:
    """Ensure Alembic migrations are applied. Runs synchronously."""
    import subprocess
    import sys

    # Use the alembic from the same Python environment as the test runner
    alembic_cmd = [sys.executable, "-m", "alembic", "upgrade", "head"]
    subprocess.run(
        alembic_cmd,
        check=True,
        capture_output=True,
        cwd=Path(__file__).resolve().parents[1],
    )


@pytest_asyncio.fixture
async def sql_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a migrated, emptied database seeded with alice, bob and carol."""
    await init_db(get_settings().database_url)
    factory = get_session_factory()
    try:
        async with factory() as session:
            await session.execute(text("SELECT 1"))
    except (OSError, SQLAlchemyError):
        await close_db()
        pytest.skip("PostgreSQL not available")

    _ensure_migrations()

    async with factory() as session:
        for table in ["notifications", "challenges", "portfolios", "users"]:
            await session.execute(text(f"TRUNCATE TABLE {table} CASCADE"))  # noqa: S608
        session.add_all([User(id=uid, username=uid, xp=1000) for uid in ("alice", "bob", "carol")])
        await session.commit()

    yield factory

    await close_db()
