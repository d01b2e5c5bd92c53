from __future__ import annotations

import pytest

from config.settings import INDICATORS, REGIONS
from ingestion.errors import PersistenceError
from ingestion.fetchers.base import FetchLogEntry, Observation
from storage.cache_store import CacheStore


def _points(*pairs) -> list[Observation]:
    return [Observation(year=y, value=v) for y, v in pairs]


# ── Schema and seeding ───────────────────────────────────────────────────────

def test_initialize_seeds_catalogs_once(clock):
    """Initializing twice leaves exactly one row per region and indicator."""
    store = CacheStore(":memory:", clock=clock).open()
    assert store.initialize() is True
    assert store.initialize() is False
    assert store.catalog_counts() == {"regions": len(REGIONS), "indicators": len(INDICATORS)}
    store.close()


def test_data_survives_reopen(tmp_path, clock):
    db_path = tmp_path / "nested" / "trajectory.db"
    with CacheStore(db_path, clock=clock) as store:
        store.initialize()
        store.save_refresh("USA", "gdp_per_capita", _points((2020, 60000.0), (2021, 63000.0)))

    with CacheStore(db_path, clock=clock) as reopened:
        assert reopened.initialize() is False
        assert [p.year for p in reopened.query_data_points("USA", "gdp_per_capita")] == [2020, 2021]
        assert reopened.is_fresh("USA", "gdp_per_capita")


def test_closed_store_raises_persistence_error():
    store = CacheStore(":memory:")
    with pytest.raises(PersistenceError):
        store.query_data_points("USA", "gdp_per_capita")


# ── Freshness ────────────────────────────────────────────────────────────────

def test_never_fetched_key_is_not_fresh(store):
    assert store.freshness("USA", "gdp_per_capita") is None
    assert store.is_fresh("USA", "gdp_per_capita") is False


def test_fresh_after_refresh_until_ttl_elapses(store, clock):
    store.save_refresh("USA", "gdp_per_capita", _points((2020, 1.0)))
    assert store.is_fresh("USA", "gdp_per_capita")

    clock.advance(hours=23.9)
    assert store.is_fresh("USA", "gdp_per_capita")

    clock.advance(hours=0.2)
    assert not store.is_fresh("USA", "gdp_per_capita")


def test_update_freshness_overwrites_row(store, clock):
    store.update_freshness("CHN", "rd_expenditure", 10)
    first = store.freshness("CHN", "rd_expenditure")
    clock.advance(hours=30)
    store.update_freshness("CHN", "rd_expenditure", 12)
    second = store.freshness("CHN", "rd_expenditure")

    assert second.record_count == 12
    assert second.is_valid
    assert second.last_fetched_at > first.last_fetched_at
    assert second.expires_at - second.last_fetched_at == store.ttl
    assert len(store.all_freshness()) == 1


def test_invalidate_forces_staleness(store):
    store.save_refresh("EUU", "capital_formation", _points((2020, 21.0)))
    assert store.invalidate("EUU", "capital_formation") is True
    assert not store.is_fresh("EUU", "capital_formation")
    assert store.invalidate("EUU", "rd_expenditure") is False


def test_save_refresh_records_inserted_count(store):
    count = store.save_refresh("USA", "real_gdp_growth", _points((2019, 2.3), (2020, -2.8)))
    assert count == 2
    assert store.freshness("USA", "real_gdp_growth").record_count == 2


# ── Replace and queries ──────────────────────────────────────────────────────

def test_replace_is_full_overwrite(store):
    store.replace_data_points("USA", "gdp_per_capita", _points((2018, 1.0), (2019, 2.0), (2020, 3.0)))
    store.replace_data_points("USA", "gdp_per_capita", _points((2021, 4.0)))
    assert [p.year for p in store.query_data_points("USA", "gdp_per_capita")] == [2021]


def test_failed_replace_keeps_prior_rows(store):
    """A duplicate year violates the key; the transaction rolls back."""
    store.save_refresh("USA", "gdp_per_capita", _points((2019, 1.0), (2020, 2.0), (2021, 3.0)))
    before = store.freshness("USA", "gdp_per_capita")

    with pytest.raises(PersistenceError):
        store.save_refresh("USA", "gdp_per_capita", _points((2022, 4.0), (2022, 5.0)))

    rows = store.query_data_points("USA", "gdp_per_capita")
    assert [p.value for p in rows] == [1.0, 2.0, 3.0]
    assert store.freshness("USA", "gdp_per_capita") == before


def test_query_orders_by_year_and_tags_source(store):
    store.save_refresh("CHN", "gdp_per_capita", _points((2021, 3.0), (2019, 1.0), (2020, 2.0)))
    rows = store.query_data_points("CHN", "gdp_per_capita")
    assert [p.year for p in rows] == [2019, 2020, 2021]
    assert {p.source_tag for p in rows} == {"worldbank"}
    assert {(p.region_id, p.indicator_id) for p in rows} == {("CHN", "gdp_per_capita")}


def test_query_latest_and_value(store):
    store.save_refresh("EUU", "rd_expenditure", _points((2015, 2.0), (2022, 2.3), (2018, 2.1)))
    latest = store.query_latest("EUU", "rd_expenditure")
    assert latest.year == 2022
    assert latest.value == 2.3
    assert store.query_value("EUU", "rd_expenditure", 2018) == 2.1
    assert store.query_value("EUU", "rd_expenditure", 2017) is None
    assert store.query_latest("EUU", "capital_formation") is None


# ── Fetch log ────────────────────────────────────────────────────────────────

def test_log_fetch_appends(store):
    for status in (200, 503):
        store.log_fetch(FetchLogEntry(
            indicator_id="NY.GDP.PCAP.PP.KD", region_id="US", records_fetched=0,
            http_status=status, response_time_ms=12, error_message=None,
            timestamp="2025-01-01T00:00:00+00:00",
        ))
    recent = store.recent_fetches()
    assert [e.http_status for e in recent] == [503, 200]
