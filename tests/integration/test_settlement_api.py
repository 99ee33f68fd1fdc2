"""Integration tests for the manual and cron settlement endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from tests.fakes import make_challenge

pytestmark = pytest.mark.asyncio

CRON_HEADERS = {"Authorization": "Bearer cron-test-secret"}


class TestManualSettlementAPI:
    """POST/GET /api/v1/challenges/settle."""

    async def test_settle_all(self, client: AsyncClient, store, oracle, ledger):
        c = store.add(make_challenge())
        oracle.returns.update({"pf-alice": 4.2, "SPY": 1.1})

        resp = await client.post("/api/v1/challenges/settle")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["message"] == "Settled 1 challenge(s)"
        assert data["settled"] == [c.id]
        assert data["settled_count"] == 1
        assert data["failed"] == []
        assert ledger.balances["alice"] == 1100

    async def test_settle_one(self, client: AsyncClient, store):
        target = store.add(make_challenge())
        other = store.add(make_challenge())

        resp = await client.post("/api/v1/challenges/settle", json={"challenge_id": target.id})
        assert resp.json()["settled"] == [target.id]
        assert other.status == "active"

    async def test_nothing_due(self, client: AsyncClient):
        resp = await client.post("/api/v1/challenges/settle")
        data = resp.json()
        assert data["message"] == "No challenges to settle"
        assert data["settled_count"] == 0

    async def test_idempotent(self, client: AsyncClient, store, oracle, ledger):
        store.add(make_challenge())
        oracle.returns.update({"pf-alice": 1.0})

        await client.post("/api/v1/challenges/settle")
        resp = await client.post("/api/v1/challenges/settle")

        assert resp.json()["settled_count"] == 0
        assert ledger.calls == [("alice", 100)]

    async def test_partial_failure(self, client: AsyncClient, store, oracle):
        good = store.add(make_challenge(challenger_portfolio_id="pf-good"))
        bad = store.add(make_challenge(challenger_portfolio_id="pf-bad"))
        oracle.errors.add("pf-bad")

        resp = await client.post("/api/v1/challenges/settle")
        data = resp.json()
        assert resp.status_code == 200
        assert data["settled"] == [good.id]
        assert data["failed_count"] == 1
        assert data["failed"][0]["id"] == bad.id

    async def test_selection_failure(self, client: AsyncClient, store):
        store.fail_select = True
        resp = await client.post("/api/v1/challenges/settle")
        assert resp.status_code == 500
        data = resp.json()
        assert data["success"] is False
        assert data["settled_count"] == 0
        assert data["error"].startswith("Failed to select challenges")

    async def test_discovery(self, client: AsyncClient, store):
        c = store.add(make_challenge())

        resp = await client.get("/api/v1/challenges/settle")
        data = resp.json()
        assert data["pending_settlement"] == 1
        assert data["challenges"][0]["id"] == c.id
        assert data["challenges"][0]["challenger_id"] == "alice"
        assert c.status == "active"

    async def test_auto_settle(self, client: AsyncClient, store):
        c = store.add(make_challenge())

        resp = await client.get("/api/v1/challenges/settle", params={"auto_settle": "true"})
        data = resp.json()
        assert data["settled"] == [c.id]
        assert data["pending_settlement"] == 0

    async def test_settle_token_enforced(self, client: AsyncClient, settings):
        settings.settle_token = "manual-secret"

        assert (await client.post("/api/v1/challenges/settle")).status_code == 401
        resp = await client.post(
            "/api/v1/challenges/settle",
            headers={"Authorization": "Bearer manual-secret"},
        )
        assert resp.status_code == 200


class TestCronSettlementAPI:
    """GET/POST /api/v1/cron/settle-challenges."""

    async def test_get_settles(self, client: AsyncClient, store):
        c = store.add(make_challenge())

        resp = await client.get("/api/v1/cron/settle-challenges", headers=CRON_HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["settled"] == [c.id]
        assert data["timestamp"] is not None

    async def test_post_settles(self, client: AsyncClient, store):
        store.add(make_challenge())
        resp = await client.post("/api/v1/cron/settle-challenges", headers=CRON_HEADERS)
        assert resp.json()["settled_count"] == 1

    async def test_wrong_secret(self, client: AsyncClient, store):
        c = store.add(make_challenge())
        resp = await client.get(
            "/api/v1/cron/settle-challenges",
            headers={"Authorization": "Bearer nope"},
        )
        assert resp.status_code == 401
        assert resp.json() == {"detail": "Unauthorized"}
        assert c.status == "active"

    async def test_missing_header(self, client: AsyncClient):
        resp = await client.get("/api/v1/cron/settle-challenges")
        assert resp.status_code == 401

    async def test_secret_not_configured(self, client: AsyncClient, settings):
        settings.cron_secret = ""
        resp = await client.get("/api/v1/cron/settle-challenges", headers=CRON_HEADERS)
        assert resp.status_code == 503
        assert resp.json() == {"detail": "Cron secret not configured"}

    async def test_selection_failure_keeps_timestamp(self, client: AsyncClient, store):
        store.fail_select = True
        resp = await client.get("/api/v1/cron/settle-challenges", headers=CRON_HEADERS)
        assert resp.status_code == 500
        data = resp.json()
        assert data["success"] is False
        assert "timestamp" in data
