"""
Trajectory — Configuration

Reference catalogs (regions, indicators) and the runtime configuration
for the indicator cache and refresh pipeline.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import os

# ─── Storage Paths ───────────────────────────────────────────────────────────

DATA_ROOT = Path(__file__).parent.parent / "data"
DEFAULT_DB_PATH = DATA_ROOT / "trajectory.db"


# ─── Regions ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Region:
    """A region the dashboard compares."""
    id: str
    display_name: str
    remote_code: str            # World Bank country/aggregate code
    color: str = "#6B7280"


BRICS_MEMBERS = ("BRA", "RUS", "IND", "CHN", "ZAF")

REGIONS: list[Region] = [
    Region(id="EUU", display_name="European Union", remote_code="EUU", color="#3B82F6"),
    Region(id="USA", display_name="United States", remote_code="US", color="#EF4444"),
    Region(id="CHN", display_name="China", remote_code="CN", color="#F59E0B"),
    # No World Bank aggregate exists for BRICS; the API accepts a
    # semicolon-separated country list and the fetcher averages per year.
    Region(
        id="BRC", display_name="BRICS", remote_code=";".join(BRICS_MEMBERS),
        color="#10B981",
    ),
]


# ─── Indicators ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Indicator:
    """One of the economic indicators tracked per region."""
    id: str
    display_name: str
    unit: str
    description: str
    remote_series_code: Optional[str]    # None for purely derived indicators
    calculation_method: str = "direct"   # "direct" or "calculated"
    category: str = "economic"
    derive_from: tuple[str, ...] = ()    # (numerator series, denominator series)


GDP_PER_CAPITA_SERIES = "NY.GDP.PCAP.PP.KD"
EMPLOYMENT_RATE_SERIES = "SL.EMP.TOTL.SP.ZS"

INDICATORS: list[Indicator] = [
    Indicator(
        id="gdp_per_capita", display_name="GDP per Capita (PPP)", unit="USD",
        description="Gross domestic product per capita adjusted for purchasing power parity",
        remote_series_code=GDP_PER_CAPITA_SERIES,
    ),
    Indicator(
        id="real_gdp_growth", display_name="Real GDP Growth", unit="%",
        description="Annual percentage growth rate of GDP at constant prices",
        remote_series_code="NY.GDP.MKTP.KD.ZG",
    ),
    Indicator(
        id="rd_expenditure", display_name="R&D Expenditure", unit="% of GDP",
        description="Research and development expenditure as percentage of GDP",
        remote_series_code="GB.XPD.RSDV.GD.ZS",
    ),
    Indicator(
        id="capital_formation", display_name="Capital Formation", unit="% of GDP",
        description="Gross capital formation as percentage of GDP",
        remote_series_code="NE.GDI.TOTL.ZS",
    ),
    Indicator(
        id="labor_productivity", display_name="Labor Productivity",
        unit="USD per employed person",
        description="GDP per capita divided by employment rate",
        remote_series_code=None,
        calculation_method="calculated",
        derive_from=(GDP_PER_CAPITA_SERIES, EMPLOYMENT_RATE_SERIES),
    ),
]


def get_region(region_id: str) -> Optional[Region]:
    """Look up a region by its id."""
    for region in REGIONS:
        if region.id == region_id:
            return region
    return None


def get_indicator(indicator_id: str) -> Optional[Indicator]:
    """Look up an indicator by its internal id."""
    for indicator in INDICATORS:
        if indicator.id == indicator_id:
            return indicator
    return None


def get_direct_indicators() -> list[Indicator]:
    """Indicators fetched straight from a remote series."""
    return [i for i in INDICATORS if i.calculation_method == "direct"]


def get_calculated_indicators() -> list[Indicator]:
    """Indicators computed from two other remote series."""
    return [i for i in INDICATORS if i.calculation_method == "calculated"]


# ─── Runtime Configuration ───────────────────────────────────────────────────

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass
class PipelineConfig:
    """
    Settings injected into the refresh pipeline at construction time.

    use_live_source:     False bypasses the cache entirely and serves sample data.
    fallback_on_failure: False propagates remote failures instead of serving
                         sample data for the affected key.
    """
    use_live_source: bool = True
    fallback_on_failure: bool = True
    cache_ttl_hours: float = 24.0
    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)
    request_timeout: float = 10.0
    max_attempts: int = 3
    retry_backoff: float = 0.5
    derived_throttle: float = 0.1   # seconds between per-year sub-fetch pairs
    start_year: int = 1990
    end_year: int = 2024

    def __post_init__(self) -> None:
        if self.cache_ttl_hours <= 0:
            raise ValueError("cache_ttl_hours must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.start_year > self.end_year:
            raise ValueError("start_year must not be after end_year")
        self.db_path = Path(self.db_path)

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build a config from USE_LIVE_SOURCE, FALLBACK_ON_FAILURE, CACHE_TTL_HOURS, TRAJECTORY_DB_PATH."""
        ttl = os.environ.get("CACHE_TTL_HOURS")
        db_path = os.environ.get("TRAJECTORY_DB_PATH")
        return cls(
            use_live_source=_env_flag("USE_LIVE_SOURCE", True),
            fallback_on_failure=_env_flag("FALLBACK_ON_FAILURE", True),
            cache_ttl_hours=float(ttl) if ttl else 24.0,
            db_path=Path(db_path) if db_path else DEFAULT_DB_PATH,
        )
