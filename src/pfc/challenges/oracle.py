"""Performance oracle — percentage returns for portfolios and benchmarks.

The return math lives in the market-data service; this module only asks
for a number. None means "no data" (unknown portfolio, no prices in the
window) and settles as 0%. OracleError means the service itself could not
be reached, which fails the settlement item instead.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import date

import httpx
import structlog

logger = structlog.get_logger()


class OracleError(RuntimeError):
    """The performance oracle could not answer."""


class PerformanceOracle(ABC):
    """Source of percentage returns over a date window."""

    @abstractmethod
    async def portfolio_return(self, portfolio_id: str, start: date, end: date) -> float | None:
        ...

    @abstractmethod
    async def benchmark_return(self, symbol: str, start: date, end: date) -> float | None:
        ...


class HttpPerformanceOracle(PerformanceOracle):
    """Oracle client for the market-data service's /returns endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        max_attempts: int = 2,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max(1, max_attempts)
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def portfolio_return(self, portfolio_id: str, start: date, end: date) -> float | None:
        return await self._fetch(f"/returns/portfolio/{portfolio_id}", start, end)

    async def benchmark_return(self, symbol: str, start: date, end: date) -> float | None:
        return await self._fetch(f"/returns/benchmark/{symbol}", start, end)

    async def _fetch(self, path: str, start: date, end: date) -> float | None:
        url = f"{self.base_url}{path}"
        params = {"start": start.isoformat(), "end": end.isoformat()}
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._client.get(url, params=params)
            except httpx.TransportError as exc:
                last_error = exc
                logger.warning("oracle_request_failed", url=url, attempt=attempt, error=str(exc))
                await asyncio.sleep(0.2 * attempt)
                continue

            if response.status_code == 404:
                return None
            if response.status_code >= 500:
                last_error = OracleError(f"{url} answered {response.status_code}")
                logger.warning("oracle_server_error", url=url, attempt=attempt, status=response.status_code)
                await asyncio.sleep(0.2 * attempt)
                continue
            if response.status_code != 200:
                raise OracleError(f"{url} answered {response.status_code}")

            value = response.json().get("return_percent")
            return float(value) if value is not None else None

        raise OracleError(f"Performance oracle unavailable for {path}: {last_error}")
