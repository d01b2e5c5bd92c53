"""
Sample data fallback — deterministic synthetic series.

Served when the live source is disabled, or for a single key when its
refresh fails and fallback is enabled. Same shape as cached rows, tagged
source_tag="sample".

Each series is a base value compounded at a fixed rate, with bounded
noise, the 2008/2009 financial crisis and the 2020 COVID shock layered
on. Noise comes from a numpy generator seeded per (region, indicator), so
the same key always yields the same numbers across processes.
"""
from __future__ import annotations

import logging
import zlib
from typing import Optional

import numpy as np
import polars as pl

from config.settings import INDICATORS, REGIONS, get_indicator, get_region
from ingestion.errors import NotFoundError
from models.growth import compound_growth_rate
from storage.cache_store import DataPoint

logger = logging.getLogger(__name__)

SAMPLE_SOURCE_TAG = "sample"
SAMPLE_START_YEAR = 2000
SAMPLE_END_YEAR = 2024

BASE_VALUES: dict[str, dict[str, float]] = {
    "gdp_per_capita":     {"EUU": 28000, "USA": 45000, "CHN": 8000, "BRC": 15000},
    "real_gdp_growth":    {"EUU": 1.8,   "USA": 2.2,   "CHN": 7.5,  "BRC": 4.2},
    "rd_expenditure":     {"EUU": 2.1,   "USA": 3.2,   "CHN": 2.4,  "BRC": 1.8},
    "capital_formation":  {"EUU": 20.5,  "USA": 21.2,  "CHN": 42.8, "BRC": 28.5},
    "labor_productivity": {"EUU": 62000, "USA": 78000, "CHN": 15000, "BRC": 26000},
}

GROWTH_RATES: dict[str, dict[str, float]] = {
    "gdp_per_capita":     {"EUU": 0.015,  "USA": 0.018,  "CHN": 0.065,  "BRC": 0.035},
    "real_gdp_growth":    {"EUU": -0.002, "USA": -0.001, "CHN": -0.008, "BRC": -0.003},
    "rd_expenditure":     {"EUU": 0.025,  "USA": 0.012,  "CHN": 0.045,  "BRC": 0.018},
    "capital_formation":  {"EUU": -0.005, "USA": 0.002,  "CHN": -0.012, "BRC": 0.008},
    "labor_productivity": {"EUU": 0.012,  "USA": 0.015,  "CHN": 0.055,  "BRC": 0.025},
}


def _seed(region_id: str, indicator_id: str) -> int:
    return zlib.crc32(f"{region_id}:{indicator_id}".encode())


def generate_series(
    region_id: str,
    indicator_id: str,
    start_year: int = SAMPLE_START_YEAR,
    end_year: int = SAMPLE_END_YEAR,
) -> list[tuple[int, float]]:
    """Synthetic (year, value) pairs for one key."""
    base = BASE_VALUES[indicator_id][region_id]
    rate = GROWTH_RATES[indicator_id][region_id]
    rng = np.random.default_rng(_seed(region_id, indicator_id))

    series: list[tuple[int, float]] = []
    for year in range(start_year, end_year + 1):
        t = year - start_year
        noise = rng.random() - 0.5

        if indicator_id == "real_gdp_growth":
            # Oscillates around a slowly drifting trend
            value = base + rate * t + np.sin(t * 0.5) * 1.5 + noise * 0.8
        elif indicator_id in ("rd_expenditure", "capital_formation"):
            value = base * (1 + rate) ** t + noise * base * 0.1
        else:
            trend = base * (1 + rate) ** t
            value = trend + noise * trend * 0.05

        if year in (2008, 2009):
            if indicator_id == "gdp_per_capita":
                value *= 0.98 if region_id == "CHN" else 0.95
            elif indicator_id == "real_gdp_growth":
                value -= 2 if region_id == "CHN" else 3
        if year == 2020:
            if indicator_id == "gdp_per_capita":
                value *= 0.93
            elif indicator_id == "real_gdp_growth":
                value -= 5

        series.append((year, max(0.0, float(value))))
    return series


class SampleDataFallback:
    """In-memory sample dataset exposing the same read operations as the pipeline."""

    def __init__(
        self,
        start_year: int = SAMPLE_START_YEAR,
        end_year: int = SAMPLE_END_YEAR,
    ):
        self._start_year = start_year
        self._end_year = end_year
        self._frame: Optional[pl.DataFrame] = None

    def frame(self) -> pl.DataFrame:
        """The full dataset: every region × indicator, built once."""
        if self._frame is None:
            rows = [
                {
                    "region_id": region.id,
                    "indicator_id": indicator.id,
                    "year": year,
                    "value": value,
                    "source_tag": SAMPLE_SOURCE_TAG,
                }
                for region in REGIONS
                for indicator in INDICATORS
                for year, value in generate_series(
                    region.id, indicator.id, self._start_year, self._end_year,
                )
            ]
            self._frame = pl.DataFrame(rows).sort(["region_id", "indicator_id", "year"])
            logger.debug("Built sample dataset: %d rows", len(self._frame))
        return self._frame

    def _key_frame(self, region_id: str, indicator_id: str) -> pl.DataFrame:
        if get_region(region_id) is None:
            raise NotFoundError("region", region_id)
        if get_indicator(indicator_id) is None:
            raise NotFoundError("indicator", indicator_id)
        return self.frame().filter(
            (pl.col("region_id") == region_id) & (pl.col("indicator_id") == indicator_id)
        )

    def points(self, region_id: str, indicator_id: str) -> list[DataPoint]:
        return [DataPoint(**row) for row in self._key_frame(region_id, indicator_id).to_dicts()]

    def series(self, indicator_id: str, region_ids: list[str]) -> list[DataPoint]:
        results: list[DataPoint] = []
        for region_id in region_ids:
            results.extend(self.points(region_id, indicator_id))
        return results

    def latest_value(self, region_id: str, indicator_id: str) -> Optional[float]:
        df = self._key_frame(region_id, indicator_id)
        if df.is_empty():
            return None
        return df.sort("year").get_column("value")[-1]

    def value_at(self, region_id: str, indicator_id: str, year: int) -> Optional[float]:
        df = self._key_frame(region_id, indicator_id).filter(pl.col("year") == year)
        return df.get_column("value")[0] if not df.is_empty() else None

    def growth_rate(
        self,
        region_id: str,
        indicator_id: str,
        start_year: int,
        end_year: int,
    ) -> Optional[float]:
        return compound_growth_rate(
            self.value_at(region_id, indicator_id, start_year),
            self.value_at(region_id, indicator_id, end_year),
            start_year,
            end_year,
        )
