"""
Error taxonomy for the indicator cache and refresh pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class RemoteFetchError(Exception):
    """
    Transport or HTTP-level failure from the statistics API.

    status is the HTTP status code, or 0 for network errors and timeouts.
    """

    def __init__(
        self,
        status: int,
        message: str,
        region_code: Optional[str] = None,
        series_code: Optional[str] = None,
    ):
        self.status = status
        self.message = message
        self.region_code = region_code
        self.series_code = series_code
        where = f" for {region_code}/{series_code}" if region_code else ""
        super().__init__(f"remote fetch failed{where} (status {status}): {message}")


class NotFoundError(LookupError):
    """Unknown region or indicator id."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"unknown {kind}: {identifier!r}")


class PersistenceError(Exception):
    """Cache store read/write failure. Existing rows are left intact."""

    def __init__(
        self,
        operation: str,
        region_id: Optional[str] = None,
        indicator_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.region_id = region_id
        self.indicator_id = indicator_id
        key = f" {region_id}/{indicator_id}" if region_id else ""
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"cache store {operation} failed{key}{detail}")


@dataclass(frozen=True)
class PartialDerivationGap:
    """A year skipped while computing a derived series. Not raised."""
    year: int
    reason: str
