"""
Base fetcher interface for remote statistics providers.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """A single (year, value) point retrieved from an external source."""
    year: int
    value: float


@dataclass(frozen=True)
class FetchLogEntry:
    """Outcome metadata for one remote call. Write-only telemetry."""
    indicator_id: str
    region_id: str
    records_fetched: int
    http_status: int
    response_time_ms: int
    error_message: Optional[str]
    timestamp: str       # ISO timestamp


class BaseFetcher(ABC):
    """Abstract base for remote series fetchers."""

    provider_name: str = "base"

    @abstractmethod
    async def fetch_series(
        self,
        region_code: str,
        series_code: str,
        start_year: int,
        end_year: int,
    ) -> list[Observation]:
        """
        Fetch one series for one region over an inclusive year range.
        Returns only points with a numeric value.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the API is reachable and responding."""
        ...
