"""
Cache store — SQLite persistence for indicator data points.

Tables:
  - regions         reference catalog, seeded once
  - indicators      reference catalog, seeded once
  - data_points     one row per (region, indicator, year)
  - cache_metadata  one freshness row per (region, indicator)
  - fetch_log       append-only record of remote calls

A refresh replaces a key's rows and its freshness row inside a single
transaction, so readers never see a half-written set and data rows never
exist without freshness metadata.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from config.settings import INDICATORS, REGIONS
from ingestion.errors import PersistenceError
from ingestion.fetchers.base import FetchLogEntry, Observation

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS regions (
    id           TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    remote_code  TEXT NOT NULL,
    color        TEXT
);

CREATE TABLE IF NOT EXISTS indicators (
    id                  TEXT PRIMARY KEY,
    internal_id         TEXT NOT NULL UNIQUE,
    name                TEXT NOT NULL,
    unit                TEXT,
    description         TEXT,
    category            TEXT,
    remote_series_code  TEXT,
    calculation_method  TEXT NOT NULL DEFAULT 'direct'
);

CREATE TABLE IF NOT EXISTS data_points (
    region_id     TEXT NOT NULL,
    indicator_id  TEXT NOT NULL,
    year          INTEGER NOT NULL,
    value         REAL NOT NULL,
    source_tag    TEXT NOT NULL,
    UNIQUE (region_id, indicator_id, year)
);

CREATE TABLE IF NOT EXISTS cache_metadata (
    cache_key      TEXT PRIMARY KEY,
    region_id      TEXT NOT NULL,
    indicator_id   TEXT NOT NULL,
    last_fetch     INTEGER NOT NULL,
    cache_expires  INTEGER NOT NULL,
    record_count   INTEGER NOT NULL,
    is_valid       INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS fetch_log (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    indicator_id      TEXT NOT NULL,
    region_id         TEXT NOT NULL,
    records_fetched   INTEGER NOT NULL,
    status            INTEGER NOT NULL,
    response_time_ms  INTEGER NOT NULL,
    error_message     TEXT,
    timestamp         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_data_points_key
    ON data_points (region_id, indicator_id, year);
"""


@dataclass(frozen=True)
class DataPoint:
    """One cached (or sample) value for a region, indicator and year."""
    region_id: str
    indicator_id: str
    year: int
    value: float
    source_tag: str


@dataclass(frozen=True)
class CacheFreshness:
    """Freshness metadata for one cache key."""
    region_id: str
    indicator_id: str
    last_fetched_at: datetime
    expires_at: datetime
    record_count: int
    is_valid: bool

    def is_fresh(self, now: datetime) -> bool:
        return self.is_valid and now < self.expires_at


def cache_key(region_id: str, indicator_id: str) -> str:
    return f"{region_id}-{indicator_id}"


def _to_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


def _from_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheStore:
    """
    Persistent cache for indicator series.

    Usage:
        with CacheStore("data/trajectory.db", ttl_hours=24) as store:
            store.initialize()
            if not store.is_fresh("USA", "gdp_per_capita"):
                store.save_refresh("USA", "gdp_per_capita", points)
            rows = store.query_data_points("USA", "gdp_per_capita")
    """

    def __init__(
        self,
        db_path: Union[str, Path] = MEMORY_DB,
        ttl_hours: float = 24.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._db_path = str(db_path)
        self._ttl = timedelta(hours=ttl_hours)
        self._clock = clock or _utcnow
        self._conn: Optional[sqlite3.Connection] = None

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def open(self) -> "CacheStore":
        if self._conn is not None:
            return self
        try:
            if self._db_path != MEMORY_DB:
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._db_path)
            conn.row_factory = sqlite3.Row
            if self._db_path != MEMORY_DB:
                conn.execute("PRAGMA journal_mode=WAL;")
        except sqlite3.Error as exc:
            raise PersistenceError("open", cause=exc) from exc
        self._conn = conn
        logger.debug("Cache store opened: %s", self._db_path)
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Cache store closed: %s", self._db_path)

    def __enter__(self) -> "CacheStore":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def now(self) -> datetime:
        return self._clock()

    @property
    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("access", cause=RuntimeError("store is not open"))
        return self._conn

    def initialize(self) -> bool:
        """
        Create tables and seed the reference catalogs.
        Idempotent; returns True only when seeding actually happened.
        """
        self.open()
        try:
            with self._db:
                self._db.executescript(SCHEMA)
            row = self._db.execute("SELECT COUNT(*) AS n FROM regions").fetchone()
            if row["n"] > 0:
                return False
            with self._db:
                self._seed()
        except sqlite3.Error as exc:
            raise PersistenceError("initialize", cause=exc) from exc
        logger.info(
            "Seeded cache store with %d regions and %d indicators",
            len(REGIONS), len(INDICATORS),
        )
        return True

    def _seed(self) -> None:
        self._db.executemany(
            "INSERT OR IGNORE INTO regions (id, name, remote_code, color) VALUES (?, ?, ?, ?)",
            [(r.id, r.display_name, r.remote_code, r.color) for r in REGIONS],
        )
        self._db.executemany(
            """
            INSERT OR IGNORE INTO indicators (
                id, internal_id, name, unit, description, category,
                remote_series_code, calculation_method
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    i.remote_series_code or i.id, i.id, i.display_name, i.unit,
                    i.description, i.category, i.remote_series_code,
                    i.calculation_method,
                )
                for i in INDICATORS
            ],
        )

    def catalog_counts(self) -> dict[str, int]:
        """Row counts of the reference tables."""
        try:
            return {
                table: self._db.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()["n"]
                for table in ("regions", "indicators")
            }
        except sqlite3.Error as exc:
            raise PersistenceError("catalog_counts", cause=exc) from exc

    # ─── Freshness ────────────────────────────────────────────────────────────

    def freshness(self, region_id: str, indicator_id: str) -> Optional[CacheFreshness]:
        try:
            row = self._db.execute(
                "SELECT * FROM cache_metadata WHERE cache_key = ?",
                (cache_key(region_id, indicator_id),),
            ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError("freshness", region_id, indicator_id, exc) from exc
        return self._freshness_from_row(row) if row is not None else None

    def all_freshness(self) -> list[CacheFreshness]:
        try:
            rows = self._db.execute(
                "SELECT * FROM cache_metadata ORDER BY region_id, indicator_id"
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError("all_freshness", cause=exc) from exc
        return [self._freshness_from_row(row) for row in rows]

    @staticmethod
    def _freshness_from_row(row: sqlite3.Row) -> CacheFreshness:
        return CacheFreshness(
            region_id=row["region_id"],
            indicator_id=row["indicator_id"],
            last_fetched_at=_from_ms(row["last_fetch"]),
            expires_at=_from_ms(row["cache_expires"]),
            record_count=row["record_count"],
            is_valid=bool(row["is_valid"]),
        )

    def is_fresh(self, region_id: str, indicator_id: str) -> bool:
        """valid = is_valid and now < expires_at; False when never fetched."""
        info = self.freshness(region_id, indicator_id)
        if info is None:
            return False
        return info.is_fresh(self.now())

    def update_freshness(self, region_id: str, indicator_id: str, record_count: int) -> None:
        try:
            with self._db:
                self._write_freshness(region_id, indicator_id, record_count)
        except sqlite3.Error as exc:
            raise PersistenceError("update_freshness", region_id, indicator_id, exc) from exc

    def _write_freshness(self, region_id: str, indicator_id: str, record_count: int) -> None:
        now = self.now()
        self._db.execute(
            """
            INSERT OR REPLACE INTO cache_metadata (
                cache_key, region_id, indicator_id, last_fetch,
                cache_expires, record_count, is_valid
            ) VALUES (?, ?, ?, ?, ?, ?, 1)
            """,
            (
                cache_key(region_id, indicator_id), region_id, indicator_id,
                _to_ms(now), _to_ms(now + self._ttl), record_count,
            ),
        )

    def invalidate(self, region_id: str, indicator_id: str) -> bool:
        """Force the next read of this key to refresh. Returns False if the key was never cached."""
        try:
            with self._db:
                cur = self._db.execute(
                    "UPDATE cache_metadata SET is_valid = 0 WHERE cache_key = ?",
                    (cache_key(region_id, indicator_id),),
                )
        except sqlite3.Error as exc:
            raise PersistenceError("invalidate", region_id, indicator_id, exc) from exc
        return cur.rowcount > 0

    # ─── Data Points ──────────────────────────────────────────────────────────

    def replace_data_points(
        self,
        region_id: str,
        indicator_id: str,
        points: Iterable[Observation],
        source_tag: str = "worldbank",
    ) -> int:
        """Delete-then-insert in one transaction. Prior rows survive any failure."""
        try:
            with self._db:
                return self._replace_rows(region_id, indicator_id, points, source_tag)
        except sqlite3.Error as exc:
            raise PersistenceError("replace_data_points", region_id, indicator_id, exc) from exc

    def save_refresh(
        self,
        region_id: str,
        indicator_id: str,
        points: Iterable[Observation],
        source_tag: str = "worldbank",
    ) -> int:
        """Replace rows and rewrite freshness atomically. Returns rows inserted."""
        try:
            with self._db:
                count = self._replace_rows(region_id, indicator_id, points, source_tag)
                self._write_freshness(region_id, indicator_id, count)
        except sqlite3.Error as exc:
            raise PersistenceError("save_refresh", region_id, indicator_id, exc) from exc
        logger.info("Cached %d %s data points for %s", count, indicator_id, region_id)
        return count

    def _replace_rows(
        self,
        region_id: str,
        indicator_id: str,
        points: Iterable[Observation],
        source_tag: str,
    ) -> int:
        rows = [
            (region_id, indicator_id, int(p.year), float(p.value), source_tag)
            for p in points
            if p.value is not None
        ]
        self._db.execute(
            "DELETE FROM data_points WHERE region_id = ? AND indicator_id = ?",
            (region_id, indicator_id),
        )
        self._db.executemany(
            """
            INSERT INTO data_points (region_id, indicator_id, year, value, source_tag)
            VALUES (?, ?, ?, ?, ?)
            """,
            rows,
        )
        return len(rows)

    def query_data_points(self, region_id: str, indicator_id: str) -> list[DataPoint]:
        """All rows for a key, ordered by year ascending."""
        try:
            rows = self._db.execute(
                """
                SELECT * FROM data_points
                WHERE region_id = ? AND indicator_id = ?
                ORDER BY year ASC
                """,
                (region_id, indicator_id),
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError("query_data_points", region_id, indicator_id, exc) from exc
        return [self._point_from_row(row) for row in rows]

    def query_latest(self, region_id: str, indicator_id: str) -> Optional[DataPoint]:
        """The row with the greatest year, or None."""
        try:
            row = self._db.execute(
                """
                SELECT * FROM data_points
                WHERE region_id = ? AND indicator_id = ?
                ORDER BY year DESC LIMIT 1
                """,
                (region_id, indicator_id),
            ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError("query_latest", region_id, indicator_id, exc) from exc
        return self._point_from_row(row) if row is not None else None

    def query_value(self, region_id: str, indicator_id: str, year: int) -> Optional[float]:
        """The stored value at exactly this year, or None."""
        try:
            row = self._db.execute(
                """
                SELECT value FROM data_points
                WHERE region_id = ? AND indicator_id = ? AND year = ?
                """,
                (region_id, indicator_id, year),
            ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError("query_value", region_id, indicator_id, exc) from exc
        return row["value"] if row is not None else None

    @staticmethod
    def _point_from_row(row: sqlite3.Row) -> DataPoint:
        return DataPoint(
            region_id=row["region_id"],
            indicator_id=row["indicator_id"],
            year=row["year"],
            value=row["value"],
            source_tag=row["source_tag"],
        )

    # ─── Fetch Log ────────────────────────────────────────────────────────────

    def log_fetch(self, entry: FetchLogEntry) -> None:
        try:
            with self._db:
                self._db.execute(
                    """
                    INSERT INTO fetch_log (
                        indicator_id, region_id, records_fetched, status,
                        response_time_ms, error_message, timestamp
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.indicator_id, entry.region_id, entry.records_fetched,
                        entry.http_status, entry.response_time_ms,
                        entry.error_message, entry.timestamp,
                    ),
                )
        except sqlite3.Error as exc:
            raise PersistenceError("log_fetch", entry.region_id, entry.indicator_id, exc) from exc

    def recent_fetches(self, limit: int = 20) -> list[FetchLogEntry]:
        try:
            rows = self._db.execute(
                "SELECT * FROM fetch_log ORDER BY id DESC LIMIT ?", (limit,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError("recent_fetches", cause=exc) from exc
        return [
            FetchLogEntry(
                indicator_id=row["indicator_id"],
                region_id=row["region_id"],
                records_fetched=row["records_fetched"],
                http_status=row["status"],
                response_time_ms=row["response_time_ms"],
                error_message=row["error_message"],
                timestamp=row["timestamp"],
            )
            for row in rows
        ]
