"""In-memory collaborators for service and API tests.

Each fake honours the contract of the ABC it replaces: the conditional
updates in FakeChallengeStore.transition and .settle, settle applying its
XP deltas all-or-nothing, and the zero floor in FakeLedger. The SQL
implementations are covered against PostgreSQL in
tests/integration/test_sql_persistence.py.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Any

from pfc.challenges.constants import OPEN_STATUSES, STATUS_ACTIVE, STATUS_COMPLETED, TYPE_VS_INDEX
from pfc.challenges.ledger import XPLedger
from pfc.challenges.oracle import OracleError, PerformanceOracle
from pfc.challenges.store import ChallengeStore
from pfc.db.models import Challenge
from pfc.notifications.dispatcher import NotificationDispatcher
from pfc.users.directory import UserDirectory, UserProfile

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_challenge(**overrides: Any) -> Challenge:
    """An overdue active vs_index challenge unless overridden."""
    values: dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "type": TYPE_VS_INDEX,
        "status": STATUS_ACTIVE,
        "challenger_id": "alice",
        "challenger_portfolio_id": "pf-alice",
        "opponent_id": None,
        "opponent_portfolio_id": None,
        "timeframe": "1W",
        "start_date": NOW - timedelta(days=8),
        "end_date": NOW - timedelta(days=1),
        "challenger_start_value": 10_000.0,
        "opponent_start_value": 10_000.0,
        "challenger_end_value": None,
        "opponent_end_value": None,
        "challenger_return_percent": None,
        "opponent_return_percent": None,
        "winner_id": None,
        "xp_awarded": None,
        "created_at": NOW - timedelta(days=8),
        "settled_at": None,
    }
    values.update(overrides)
    return Challenge(**values)


class FakeChallengeStore(ChallengeStore):
    def __init__(self, ledger: FakeLedger | None = None, challenges: Iterable[Challenge] = ()) -> None:
        self.ledger = ledger if ledger is not None else FakeLedger()
        self.rows: dict[str, Challenge] = {c.id: c for c in challenges}
        self.transitions: list[tuple[str, str, dict[str, Any]]] = []
        self.settlements: list[tuple[str, list[tuple[str, int]]]] = []
        self.fail_select = False
        self.fail_settle_for: set[str] = set()

    def add(self, challenge: Challenge) -> Challenge:
        self.rows[challenge.id] = challenge
        return challenge

    async def insert(self, challenge: Challenge) -> Challenge:
        self.rows[challenge.id] = challenge
        return challenge

    async def get(self, challenge_id: str) -> Challenge | None:
        return self.rows.get(challenge_id)

    async def count_open(self, user_id: str) -> int:
        return sum(
            1 for c in self.rows.values()
            if c.status in OPEN_STATUSES and user_id in (c.challenger_id, c.opponent_id)
        )

    async def list_for_user(
        self,
        user_id: str,
        status: str | None = None,
        type_: str | None = None,
    ) -> list[Challenge]:
        rows = [
            c for c in self.rows.values()
            if user_id in (c.challenger_id, c.opponent_id)
            and (not status or c.status == status)
            and (not type_ or c.type == type_)
        ]
        return sorted(rows, key=lambda c: c.created_at, reverse=True)

    async def select_due(self, now: datetime, challenge_id: str | None = None) -> list[Challenge]:
        if self.fail_select:
            raise ConnectionError("database unavailable")
        rows = [
            c for c in self.rows.values()
            if c.status == STATUS_ACTIVE
            and c.end_date is not None
            and c.end_date <= now
            and (not challenge_id or c.id == challenge_id)
        ]
        return sorted(rows, key=lambda c: c.end_date)

    async def list_completed(self, type_: str | None = None) -> list[Challenge]:
        return [
            c for c in self.rows.values()
            if c.status == STATUS_COMPLETED and (not type_ or c.type == type_)
        ]

    async def transition(
        self,
        challenge_id: str,
        expected_status: str,
        values: dict[str, Any],
    ) -> Challenge | None:
        row = self.rows.get(challenge_id)
        if row is None or row.status != expected_status:
            return None
        for key, value in values.items():
            setattr(row, key, value)
        self.transitions.append((challenge_id, expected_status, values))
        return row

    async def settle(
        self,
        challenge_id: str,
        values: dict[str, Any],
        deltas: list[tuple[str, int]],
    ) -> Challenge | None:
        if challenge_id in self.fail_settle_for:
            raise ConnectionError("write failed")
        row = self.rows.get(challenge_id)
        if row is None or row.status != STATUS_ACTIVE:
            return None

        staged = self.ledger.stage(deltas)
        for key, value in values.items():
            setattr(row, key, value)
        self.ledger.commit(staged, deltas)
        self.settlements.append((challenge_id, deltas))
        return row


class FakeLedger(XPLedger):
    """Balances in a dict. Users in `fail_for` make any delta touching them raise."""

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self.balances: dict[str, int] = dict(balances or {})
        self.calls: list[tuple[str, int]] = []
        self.fail_for: set[str] = set()

    def stage(self, deltas: list[tuple[str, int]]) -> dict[str, int]:
        """New balances for a set of deltas, without applying them."""
        staged: dict[str, int] = {}
        for user_id, delta in deltas:
            if user_id in self.fail_for:
                raise ConnectionError(f"balance update failed for {user_id}")
            if user_id in self.balances:
                staged[user_id] = max(0, staged.get(user_id, self.balances[user_id]) + delta)
        return staged

    def commit(self, staged: dict[str, int], deltas: list[tuple[str, int]]) -> None:
        self.balances.update(staged)
        self.calls.extend(deltas)

    async def balance(self, user_id: str) -> int | None:
        return self.balances.get(user_id)

    async def apply(self, user_id: str, delta: int) -> int | None:
        staged = self.stage([(user_id, delta)])
        self.commit(staged, [(user_id, delta)])
        return staged.get(user_id)


class FakeDirectory(UserDirectory):
    def __init__(
        self,
        profiles: Iterable[UserProfile] = (),
        portfolios: dict[str, str] | None = None,
    ) -> None:
        self._profiles = {p.id: p for p in profiles}
        self._portfolios = dict(portfolios or {})

    async def profiles(self, user_ids: Iterable[str]) -> dict[str, UserProfile]:
        return {uid: self._profiles[uid] for uid in user_ids if uid in self._profiles}

    async def portfolio_names(self, portfolio_ids: Iterable[str]) -> dict[str, str]:
        return {pid: self._portfolios[pid] for pid in portfolio_ids if pid in self._portfolios}


class RecordingDispatcher(NotificationDispatcher):
    """Captures notifications instead of persisting them."""

    def __init__(self, fail: bool = False) -> None:
        super().__init__(None)
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def enqueue(
        self,
        user_id: str,
        type_: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        if self.fail:
            raise ConnectionError("notification outbox down")
        self.sent.append({"user_id": user_id, "type": type_, "message": message, "data": data or {}})

    def for_user(self, user_id: str) -> list[dict[str, Any]]:
        return [n for n in self.sent if n["user_id"] == user_id]


class FakeOracle(PerformanceOracle):
    """Returns per portfolio id / benchmark symbol.

    Subjects in `errors` raise OracleError; subjects in `delays` sleep first.
    Unknown subjects answer None (no data).
    """

    def __init__(
        self,
        returns: dict[str, float | None] | None = None,
        errors: Iterable[str] = (),
        delays: dict[str, float] | None = None,
    ) -> None:
        self.returns: dict[str, float | None] = dict(returns or {})
        self.errors = set(errors)
        self.delays = dict(delays or {})
        self.calls: list[tuple[str, date, date]] = []

    async def _answer(self, subject: str, start: date, end: date) -> float | None:
        self.calls.append((subject, start, end))
        await asyncio.sleep(self.delays.get(subject, 0))
        if subject in self.errors:
            raise OracleError(f"oracle unavailable for {subject}")
        return self.returns.get(subject)

    async def portfolio_return(self, portfolio_id: str, start: date, end: date) -> float | None:
        return await self._answer(portfolio_id, start, end)

    async def benchmark_return(self, symbol: str, start: date, end: date) -> float | None:
        return await self._answer(symbol, start, end)
