"""
World Bank Open Data API fetcher.

Endpoint: https://api.worldbank.org/v2/country/{code}/indicator/{series}
Docs: https://datahelpdesk.worldbank.org/knowledgebase/articles/889392

The API answers with a two-element JSON array: [metadata, records]. For
unknown series or empty ranges the second element is missing or null,
which we treat as "no data" rather than an error. One country and one
series over ~35 years fits in a single page, so no page walking is done.

Composite regions (e.g. BRICS) are requested as a semicolon-separated
country list; rows are then collapsed to one unweighted mean per year.
The mean covers whichever members reported that year, and coverage varies
by year and by series. A derived metric built from two composite series can
therefore average different country sets in its numerator and denominator.

Values that are null or not finite (the API occasionally emits "NaN") are
dropped.
"""
from __future__ import annotations

import logging
import math
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx
import polars as pl
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ingestion.errors import RemoteFetchError
from ingestion.fetchers.base import BaseFetcher, FetchLogEntry, Observation

logger = logging.getLogger(__name__)

WB_BASE_URL = "https://api.worldbank.org/v2"
WB_PAGE_SIZE = 1000

FetchLogSink = Callable[[FetchLogEntry], None]


def _is_retryable(exc: BaseException) -> bool:
    """Retry on network errors, throttling and server-side failures only."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, httpx.TransportError)


class WorldBankFetcher(BaseFetcher):
    """Fetches annual series from the World Bank Open Data API."""

    provider_name = "world_bank"

    def __init__(
        self,
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_backoff: float = 0.5,
        fetch_log: Optional[FetchLogSink] = None,
        base_url: str = WB_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_backoff = retry_backoff
        self._fetch_log = fetch_log
        self._base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def health_check(self) -> bool:
        """Ping the World Bank API."""
        try:
            async with self._client() as client:
                resp = await client.get(
                    f"{self._base_url}/country/US/indicator/NY.GDP.MKTP.KD.ZG",
                    params={"format": "json", "per_page": 1},
                )
                return resp.status_code == 200
        except Exception as exc:
            logger.error("World Bank health check failed: %s", exc)
            return False

    async def fetch_series(
        self,
        region_code: str,
        series_code: str,
        start_year: int,
        end_year: int,
    ) -> list[Observation]:
        """
        Fetch a World Bank series for a region over [start_year, end_year].

        Raises RemoteFetchError on non-2xx responses, network errors,
        timeouts and bodies that are not JSON. Exactly one fetch log
        entry is written per call, whatever the outcome.
        """
        url = f"{self._base_url}/country/{region_code}/indicator/{series_code}"
        params = {
            "format": "json",
            "date": f"{start_year}:{end_year}",
            "per_page": WB_PAGE_SIZE,
        }

        started = time.perf_counter()
        try:
            status, payload = await self._request(url, params, region_code, series_code)
            observations = self._parse(payload)
        except RemoteFetchError as exc:
            self._record(
                region_code, series_code, 0, exc.status, started, exc.message,
            )
            logger.error(
                "World Bank fetch failed for %s/%s: %s",
                region_code, series_code, exc.message,
            )
            raise

        self._record(region_code, series_code, len(observations), status, started, None)
        if observations:
            logger.info(
                "World Bank: %s/%s → %d observations",
                region_code, series_code, len(observations),
            )
        else:
            logger.warning("No data returned for %s / %s", region_code, series_code)
        return observations

    async def _request(
        self,
        url: str,
        params: dict,
        region_code: str,
        series_code: str,
    ) -> tuple[int, object]:
        """GET with retry. Translates httpx failures into RemoteFetchError."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._retry_backoff, max=8),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async with self._client() as client:
                async for attempt in retrying:
                    with attempt:
                        resp = await client.get(url, params=params)
                        resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            raise RemoteFetchError(
                code, f"HTTP {code}", region_code, series_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteFetchError(
                0, str(exc) or type(exc).__name__, region_code, series_code,
            ) from exc

        try:
            payload = resp.json()
        except ValueError as exc:
            raise RemoteFetchError(
                resp.status_code, "invalid JSON payload", region_code, series_code,
            ) from exc
        return resp.status_code, payload

    @staticmethod
    def _parse(payload: object) -> list[Observation]:
        """Extract (year, value) points, dropping null values."""
        # [metadata, records]; records can be None or missing
        if not isinstance(payload, list) or len(payload) < 2:
            return []
        records = payload[1]
        if not isinstance(records, list):
            return []

        rows: list[dict] = []
        for record in records:
            if not isinstance(record, dict) or record.get("value") is None:
                continue
            try:
                year = int(record["date"])
                value = float(record["value"])
            except (KeyError, TypeError, ValueError):
                continue
            if not math.isfinite(value):
                continue
            country = record.get("country") or {}
            rows.append({
                "country": country.get("id", "") if isinstance(country, dict) else "",
                "year": year,
                "value": value,
            })

        if not rows:
            return []

        df = pl.DataFrame(rows)
        if df["country"].n_unique() > 1:
            df = df.group_by("year").agg(pl.col("value").mean())
        df = df.sort("year")

        return [
            Observation(year=row["year"], value=row["value"])
            for row in df.select(["year", "value"]).to_dicts()
        ]

    def _record(
        self,
        region_code: str,
        series_code: str,
        records: int,
        status: int,
        started: float,
        error: Optional[str],
    ) -> None:
        """Write one fetch log entry. Never raises."""
        if self._fetch_log is None:
            return
        entry = FetchLogEntry(
            indicator_id=series_code,
            region_id=region_code,
            records_fetched=records,
            http_status=status,
            response_time_ms=int((time.perf_counter() - started) * 1000),
            error_message=error,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        try:
            self._fetch_log(entry)
        except Exception as exc:
            logger.warning(
                "Could not write fetch log for %s/%s: %s",
                region_code, series_code, exc,
            )
