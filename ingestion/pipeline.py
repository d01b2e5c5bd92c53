"""
Refresh pipeline — the entry point for every indicator read.

Each read checks the cache store's freshness for the keys it touches,
refreshes stale keys lazily (World Bank fetch, or the derived calculator
for calculated indicators), then serves rows from the store. When a
refresh fails and fallback is enabled, that key is served from sample
data for this request only; the cache is left as it was.

Per key:
  EMPTY → FRESH → (TTL elapses) → STALE → FRESH
  STALE → refresh fails, fallback on  → served from sample data, cache unchanged
  STALE → refresh fails, fallback off → RemoteFetchError, cache unchanged

At most one refresh per key runs at a time; concurrent readers of the
same stale key wait for it and then read the refreshed rows.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from config.settings import (
    INDICATORS,
    REGIONS,
    Indicator,
    PipelineConfig,
    Region,
    get_indicator,
    get_region,
)
from ingestion.derived import DerivedMetricCalculator
from ingestion.errors import NotFoundError, RemoteFetchError
from ingestion.fetchers.base import BaseFetcher, Observation
from ingestion.fetchers.world_bank import WorldBankFetcher
from ingestion.sample_data import SampleDataFallback
from models.growth import compound_growth_rate
from storage.cache_store import CacheStore, DataPoint, cache_key

logger = logging.getLogger(__name__)

# Outcomes of _ensure_fresh
CACHED = "cached"
REFRESHED = "refreshed"
FALLBACK = "fallback"


def _require_id(name: str, value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string, got {value!r}")
    return value


def _require_year(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer year, got {value!r}")
    return value


class IndicatorPipeline:
    """
    Cache-fronted access to indicator series.

    Usage:
        config = PipelineConfig(cache_ttl_hours=24)
        pipeline = IndicatorPipeline.from_config(config)
        try:
            points = await pipeline.get_series("gdp_per_capita", ["USA", "EUU"])
            latest = await pipeline.get_latest_value("CHN", "rd_expenditure")
            cagr = await pipeline.get_growth_rate("USA", "gdp_per_capita", 2000, 2020)
        finally:
            pipeline.close()
    """

    def __init__(
        self,
        store: CacheStore,
        config: Optional[PipelineConfig] = None,
        fetcher: Optional[BaseFetcher] = None,
        sample: Optional[SampleDataFallback] = None,
        derived: Optional[DerivedMetricCalculator] = None,
    ):
        self._config = config or PipelineConfig()
        self._store = store
        self._fetcher = fetcher or WorldBankFetcher(
            timeout=self._config.request_timeout,
            max_attempts=self._config.max_attempts,
            retry_backoff=self._config.retry_backoff,
            fetch_log=store.log_fetch,
        )
        self._derived = derived or DerivedMetricCalculator(
            self._fetcher, throttle=self._config.derived_throttle,
        )
        self._sample = sample or SampleDataFallback()
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_loop: Optional[asyncio.AbstractEventLoop] = None
        self._initialized = False

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        fetcher: Optional[BaseFetcher] = None,
    ) -> "IndicatorPipeline":
        """Open a cache store at config.db_path and build a pipeline around it."""
        store = CacheStore(config.db_path, ttl_hours=config.cache_ttl_hours).open()
        return cls(store, config=config, fetcher=fetcher)

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def close(self) -> None:
        self._store.close()

    # ─── Read Operations ──────────────────────────────────────────────────────

    async def get_series(self, indicator_id: str, region_ids: list[str]) -> list[DataPoint]:
        """Series for one indicator across regions, each region's rows by year ascending."""
        _require_id("indicator_id", indicator_id)
        if isinstance(region_ids, str) or not region_ids:
            raise ValueError("region_ids must be a non-empty list of region ids")
        for region_id in region_ids:
            _require_id("region_id", region_id)

        if not self._config.use_live_source:
            logger.debug("Using sample data for %s", indicator_id)
            return self._sample.series(indicator_id, list(region_ids))

        results: list[DataPoint] = []
        for region_id in region_ids:
            outcome = await self._ensure_fresh(region_id, indicator_id)
            if outcome == FALLBACK:
                results.extend(self._sample.points(region_id, indicator_id))
            else:
                results.extend(self._store.query_data_points(region_id, indicator_id))
        return results

    async def get_latest_value(self, region_id: str, indicator_id: str) -> Optional[float]:
        """Value at the most recent cached year, or None when the key has no rows."""
        _require_id("region_id", region_id)
        _require_id("indicator_id", indicator_id)

        if not self._config.use_live_source:
            return self._sample.latest_value(region_id, indicator_id)

        if await self._ensure_fresh(region_id, indicator_id) == FALLBACK:
            return self._sample.latest_value(region_id, indicator_id)
        latest = self._store.query_latest(region_id, indicator_id)
        return latest.value if latest is not None else None

    async def get_growth_rate(
        self,
        region_id: str,
        indicator_id: str,
        start_year: int,
        end_year: int,
    ) -> Optional[float]:
        """
        Compound annual growth between the values stored at exactly
        start_year and end_year. None when either is missing, the start
        value is not positive, or the years are equal.
        """
        _require_id("region_id", region_id)
        _require_id("indicator_id", indicator_id)
        _require_year("start_year", start_year)
        _require_year("end_year", end_year)

        if not self._config.use_live_source:
            return self._sample.growth_rate(region_id, indicator_id, start_year, end_year)

        self._resolve(region_id, indicator_id)
        if start_year == end_year:
            return None

        if await self._ensure_fresh(region_id, indicator_id) == FALLBACK:
            return self._sample.growth_rate(region_id, indicator_id, start_year, end_year)
        return compound_growth_rate(
            self._store.query_value(region_id, indicator_id, start_year),
            self._store.query_value(region_id, indicator_id, end_year),
            start_year,
            end_year,
        )

    # ─── Refresh ──────────────────────────────────────────────────────────────

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self._store.initialize()
            self._initialized = True

    def _resolve(self, region_id: str, indicator_id: str) -> tuple[Region, Indicator]:
        region = get_region(region_id)
        if region is None:
            raise NotFoundError("region", region_id)
        indicator = get_indicator(indicator_id)
        if indicator is None:
            raise NotFoundError("indicator", indicator_id)
        return region, indicator

    def _lock_for(self, key: str) -> asyncio.Lock:
        """Per-key refresh lock. Locks bind to one event loop, so a new loop gets new locks."""
        loop = asyncio.get_running_loop()
        if loop is not self._locks_loop:
            self._locks = {}
            self._locks_loop = loop
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _ensure_fresh(self, region_id: str, indicator_id: str) -> str:
        """Refresh the key if stale. Returns CACHED, REFRESHED or FALLBACK."""
        self._resolve(region_id, indicator_id)
        self._ensure_initialized()

        if self._store.is_fresh(region_id, indicator_id):
            logger.debug("Cache hit for %s-%s", region_id, indicator_id)
            return CACHED

        key = cache_key(region_id, indicator_id)
        async with self._lock_for(key):
            # Another reader may have refreshed while we waited
            if self._store.is_fresh(region_id, indicator_id):
                return CACHED

            logger.info("Cache miss for %s, refreshing...", key)
            try:
                await self.refresh(region_id, indicator_id)
            except RemoteFetchError as exc:
                if not self._config.fallback_on_failure:
                    raise
                logger.warning(
                    "Falling back to sample data for %s: %s", key, exc,
                )
                return FALLBACK
        return REFRESHED

    async def refresh(self, region_id: str, indicator_id: str) -> int:
        """
        Fetch a key from the remote source and replace its cached rows.

        Returns the number of rows stored. Raises NotFoundError for
        unknown ids and RemoteFetchError when the source fails; in both
        cases the cache is untouched.
        """
        region, indicator = self._resolve(region_id, indicator_id)
        self._ensure_initialized()
        start, end = self._config.start_year, self._config.end_year

        points: list[Observation]
        if indicator.calculation_method == "calculated":
            derived = await self._derived.compute_derived_series(
                region.remote_code, indicator, start, end,
            )
            points = derived.points
        else:
            if not indicator.remote_series_code:
                raise ValueError(f"{indicator.id} has no remote series code")
            points = await self._fetcher.fetch_series(
                region.remote_code, indicator.remote_series_code, start, end,
            )

        return self._store.save_refresh(region.id, indicator.id, points)

    async def warm_cache(
        self,
        region_ids: Optional[Iterable[str]] = None,
        indicator_ids: Optional[Iterable[str]] = None,
        force: bool = False,
    ) -> dict[str, str]:
        """
        Bring every (region, indicator) pair up to date concurrently.

        Returns {cache_key: outcome} where outcome is "cached", "refreshed",
        "fallback" or "error: <message>".
        """
        regions = list(region_ids) if region_ids is not None else [r.id for r in REGIONS]
        indicators = list(indicator_ids) if indicator_ids is not None else [i.id for i in INDICATORS]
        self._ensure_initialized()

        pairs = [(r, i) for r in regions for i in indicators]
        if force:
            for region_id, indicator_id in pairs:
                self._store.invalidate(region_id, indicator_id)

        started = datetime.now(timezone.utc)
        logger.info("=" * 70)
        logger.info("CACHE WARM START: %d keys", len(pairs))
        logger.info("=" * 70)

        outcomes = await asyncio.gather(
            *(self._ensure_fresh(r, i) for r, i in pairs),
            return_exceptions=True,
        )

        summary: dict[str, str] = {}
        for (region_id, indicator_id), outcome in zip(pairs, outcomes):
            key = cache_key(region_id, indicator_id)
            if isinstance(outcome, BaseException):
                logger.error("FAIL: %s — %s", key, outcome)
                summary[key] = f"error: {outcome}"
            else:
                summary[key] = outcome

        elapsed = (datetime.now(timezone.utc) - started).total_seconds()
        logger.info(
            "CACHE WARM COMPLETE: %d refreshed, %d cached, %d fallback, %d errors in %.1f seconds",
            sum(1 for v in summary.values() if v == REFRESHED),
            sum(1 for v in summary.values() if v == CACHED),
            sum(1 for v in summary.values() if v == FALLBACK),
            sum(1 for v in summary.values() if v.startswith("error")),
            elapsed,
        )
        return summary
