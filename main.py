"""
Trajectory indicator cache — command line entry point.

Usage:
    # Create the database, seed catalogs, check World Bank connectivity
    python main.py init

    # Refresh every region × indicator that is stale (or all, with --force)
    python main.py warm [--force]

    # Read through the cache
    python main.py series gdp_per_capita USA EUU
    python main.py latest CHN rd_expenditure
    python main.py growth USA gdp_per_capita 2000 2020

    # Freshness table and recent remote calls
    python main.py status
    python main.py status --invalidate USA gdp_per_capita

Configuration comes from the environment: USE_LIVE_SOURCE,
FALLBACK_ON_FAILURE, CACHE_TTL_HOURS, TRAJECTORY_DB_PATH.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import polars as pl

# Allow running from repo root without installing the package
sys.path.insert(0, str(Path(__file__).parent))

from config.settings import PipelineConfig
from ingestion.fetchers.world_bank import WorldBankFetcher
from ingestion.pipeline import IndicatorPipeline

logger = logging.getLogger("main")


async def run_init(pipeline: IndicatorPipeline) -> int:
    """Create schema and seed, then ping the API."""
    seeded = pipeline.store.initialize()
    counts = pipeline.store.catalog_counts()
    logger.info(
        "Database ready at %s (%s): %d regions, %d indicators",
        pipeline.config.db_path, "seeded" if seeded else "already seeded",
        counts["regions"], counts["indicators"],
    )
    fetcher = WorldBankFetcher(timeout=pipeline.config.request_timeout)
    if await fetcher.health_check():
        logger.info("World Bank API reachable")
        return 0
    logger.warning("World Bank API unreachable — reads will use sample data if fallback is on")
    return 1


async def run_warm(pipeline: IndicatorPipeline, force: bool) -> int:
    summary = await pipeline.warm_cache(force=force)
    print(pl.DataFrame({
        "cache_key": list(summary.keys()),
        "outcome": list(summary.values()),
    }))
    return 1 if any(v.startswith("error") for v in summary.values()) else 0


async def run_series(pipeline: IndicatorPipeline, indicator_id: str, region_ids: list[str]) -> int:
    points = await pipeline.get_series(indicator_id, region_ids)
    if not points:
        print("No data available.")
        return 0
    print(pl.DataFrame([vars(p) for p in points]))
    return 0


async def run_latest(pipeline: IndicatorPipeline, region_id: str, indicator_id: str) -> int:
    value = await pipeline.get_latest_value(region_id, indicator_id)
    print(f"{region_id} {indicator_id}: {value if value is not None else 'n/a'}")
    return 0


async def run_growth(
    pipeline: IndicatorPipeline,
    region_id: str,
    indicator_id: str,
    start_year: int,
    end_year: int,
) -> int:
    rate = await pipeline.get_growth_rate(region_id, indicator_id, start_year, end_year)
    if rate is None:
        print(f"{region_id} {indicator_id} {start_year}-{end_year}: no result")
    else:
        print(f"{region_id} {indicator_id} {start_year}-{end_year}: {rate * 100:.2f}% per year")
    return 0


def run_status(pipeline: IndicatorPipeline, invalidate: list[str] | None) -> int:
    store = pipeline.store
    store.initialize()
    if invalidate:
        region_id, indicator_id = invalidate
        if store.invalidate(region_id, indicator_id):
            logger.info("Invalidated %s-%s", region_id, indicator_id)
        else:
            logger.warning("%s-%s has never been cached", region_id, indicator_id)

    now = store.now()
    rows = [
        {
            "region_id": f.region_id,
            "indicator_id": f.indicator_id,
            "records": f.record_count,
            "last_fetch": f.last_fetched_at.isoformat(timespec="seconds"),
            "expires": f.expires_at.isoformat(timespec="seconds"),
            "fresh": f.is_fresh(now),
        }
        for f in store.all_freshness()
    ]
    print(pl.DataFrame(rows) if rows else "Cache is empty.")

    fetches = store.recent_fetches(limit=10)
    if fetches:
        print("\nRecent remote calls:")
        print(pl.DataFrame([vars(f) for f in fetches]))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Trajectory indicator cache")
    sub = parser.add_subparsers(dest="mode", required=True)

    sub.add_parser("init", help="Create and seed the cache database")

    warm = sub.add_parser("warm", help="Refresh all stale keys")
    warm.add_argument("--force", action="store_true", help="Invalidate every key first")

    series = sub.add_parser("series", help="Series for an indicator across regions")
    series.add_argument("indicator_id")
    series.add_argument("region_ids", nargs="+")

    latest = sub.add_parser("latest", help="Most recent value for a region")
    latest.add_argument("region_id")
    latest.add_argument("indicator_id")

    growth = sub.add_parser("growth", help="Compound annual growth rate between two years")
    growth.add_argument("region_id")
    growth.add_argument("indicator_id")
    growth.add_argument("start_year", type=int)
    growth.add_argument("end_year", type=int)

    status = sub.add_parser("status", help="Show cache freshness")
    status.add_argument(
        "--invalidate", nargs=2, metavar=("REGION_ID", "INDICATOR_ID"),
        help="Mark one key invalid so the next read refreshes it",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    config = PipelineConfig.from_env()
    pipeline = IndicatorPipeline.from_config(config)
    try:
        if args.mode == "init":
            return asyncio.run(run_init(pipeline))
        if args.mode == "warm":
            return asyncio.run(run_warm(pipeline, args.force))
        if args.mode == "series":
            return asyncio.run(run_series(pipeline, args.indicator_id, args.region_ids))
        if args.mode == "latest":
            return asyncio.run(run_latest(pipeline, args.region_id, args.indicator_id))
        if args.mode == "growth":
            return asyncio.run(run_growth(
                pipeline, args.region_id, args.indicator_id, args.start_year, args.end_year,
            ))
        return run_status(pipeline, args.invalidate)
    finally:
        pipeline.close()


if __name__ == "__main__":
    sys.exit(main())
