from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import pytest

from ingestion.errors import RemoteFetchError
from ingestion.fetchers.base import BaseFetcher, Observation
from storage.cache_store import CacheStore


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, hours: float) -> None:
        self.now += timedelta(hours=hours)


class StubFetcher(BaseFetcher):
    """
    In-memory fetcher: series_code -> {year: value}.
    Years in failing_years raise RemoteFetchError; fail_all raises on every call.
    """

    provider_name = "stub"

    def __init__(
        self,
        series: Optional[dict[str, dict[int, float]]] = None,
        failing_years: Iterable[int] = (),
        fail_all: bool = False,
    ):
        self.series = series or {}
        self.failing_years = set(failing_years)
        self.fail_all = fail_all
        self.calls: list[tuple[str, str, int, int]] = []

    async def fetch_series(self, region_code, series_code, start_year, end_year):
        self.calls.append((region_code, series_code, start_year, end_year))
        await asyncio.sleep(0)
        if self.fail_all or start_year in self.failing_years:
            raise RemoteFetchError(503, "HTTP 503", region_code, series_code)
        data = self.series.get(series_code, {})
        return [
            Observation(year=y, value=v)
            for y, v in sorted(data.items())
            if start_year <= y <= end_year
        ]

    async def health_check(self) -> bool:
        return not self.fail_all


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock):
    s = CacheStore(":memory:", ttl_hours=24, clock=clock).open()
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def make_fetcher():
    return StubFetcher
