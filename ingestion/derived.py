"""
Derived indicators — series with no direct upstream code.

Labor productivity is GDP per capita divided by the employment rate
(a percentage, converted to a fraction). Both inputs are fetched one year
at a time so a gap or failure in one year only drops that year.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from config.settings import Indicator
from ingestion.errors import PartialDerivationGap, RemoteFetchError
from ingestion.fetchers.base import BaseFetcher, Observation

logger = logging.getLogger(__name__)


@dataclass
class DerivedSeries:
    """Points that could be computed, plus the years that were skipped."""
    points: list[Observation] = field(default_factory=list)
    gaps: list[PartialDerivationGap] = field(default_factory=list)


def productivity(numerator: float, denominator_pct: float) -> Optional[float]:
    """numerator / (denominator_pct / 100), or None when not finite or denominator <= 0."""
    rate = denominator_pct / 100.0
    if not math.isfinite(numerator) or not math.isfinite(rate) or rate <= 0:
        return None
    value = numerator / rate
    return value if math.isfinite(value) else None


class DerivedMetricCalculator:
    """Computes calculated indicators from two remote series, year by year."""

    def __init__(self, fetcher: BaseFetcher, throttle: float = 0.1):
        self._fetcher = fetcher
        self._throttle = throttle

    async def compute_derived_series(
        self,
        region_code: str,
        indicator: Indicator,
        start_year: int,
        end_year: int,
    ) -> DerivedSeries:
        """
        Compute a derived series over [start_year, end_year].

        Years with missing inputs, failed sub-fetches or non-finite results
        are recorded as gaps. If every year failed with RemoteFetchError the
        last error is raised, since nothing upstream answered.
        """
        if len(indicator.derive_from) != 2:
            raise ValueError(f"{indicator.id} has no numerator/denominator series")
        numerator_code, denominator_code = indicator.derive_from

        result = DerivedSeries()
        last_error: Optional[RemoteFetchError] = None
        failed_years = 0
        years = range(start_year, end_year + 1)

        for i, year in enumerate(years):
            if i > 0 and self._throttle > 0:
                await asyncio.sleep(self._throttle)
            try:
                numerator = await self._fetcher.fetch_series(
                    region_code, numerator_code, year, year,
                )
                denominator = await self._fetcher.fetch_series(
                    region_code, denominator_code, year, year,
                )
            except RemoteFetchError as exc:
                last_error = exc
                failed_years += 1
                result.gaps.append(PartialDerivationGap(year, f"fetch failed: {exc.message}"))
                logger.warning(
                    "Failed to derive %s for %s %d: %s",
                    indicator.id, region_code, year, exc.message,
                )
                continue

            if not numerator or not denominator:
                result.gaps.append(PartialDerivationGap(year, "missing input"))
                continue

            value = productivity(numerator[0].value, denominator[0].value)
            if value is None:
                result.gaps.append(PartialDerivationGap(year, "non-finite result"))
                continue
            result.points.append(Observation(year=year, value=value))

        if last_error is not None and failed_years == len(years):
            raise last_error

        logger.info(
            "Derived %s for %s: %d points, %d gaps",
            indicator.id, region_code, len(result.points), len(result.gaps),
        )
        return result
