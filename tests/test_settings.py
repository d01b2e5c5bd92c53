from __future__ import annotations
from pathlib import Path

import pytest

from config.settings import (
    DEFAULT_DB_PATH,
    PipelineConfig,
    get_calculated_indicators,
    get_direct_indicators,
    get_indicator,
    get_region,
)
from models.growth import compound_growth_rate


def test_catalog_lookups():
    assert get_region("USA").remote_code == "US"
    assert get_region("BRC").remote_code == "BRA;RUS;IND;CHN;ZAF"
    assert get_region("XXX") is None
    assert get_indicator("rd_expenditure").remote_series_code == "GB.XPD.RSDV.GD.ZS"
    assert get_indicator("nope") is None


def test_direct_and_calculated_split():
    calculated = get_calculated_indicators()
    assert [i.id for i in calculated] == ["labor_productivity"]
    assert calculated[0].remote_series_code is None
    assert len(calculated[0].derive_from) == 2
    assert all(i.remote_series_code for i in get_direct_indicators())


def test_config_defaults():
    config = PipelineConfig()
    assert config.use_live_source is True
    assert config.fallback_on_failure is True
    assert config.cache_ttl_hours == 24.0
    assert config.request_timeout == 10.0
    assert (config.start_year, config.end_year) == (1990, 2024)
    assert config.db_path == DEFAULT_DB_PATH


def test_config_rejects_bad_values():
    with pytest.raises(ValueError):
        PipelineConfig(cache_ttl_hours=0)
    with pytest.raises(ValueError):
        PipelineConfig(max_attempts=0)
    with pytest.raises(ValueError):
        PipelineConfig(start_year=2025, end_year=2020)


def test_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("USE_LIVE_SOURCE", "false")
    monkeypatch.setenv("FALLBACK_ON_FAILURE", "0")
    monkeypatch.setenv("CACHE_TTL_HOURS", "6")
    monkeypatch.setenv("TRAJECTORY_DB_PATH", str(tmp_path / "x.db"))
    config = PipelineConfig.from_env()
    assert config.use_live_source is False
    assert config.fallback_on_failure is False
    assert config.cache_ttl_hours == 6.0
    assert config.db_path == Path(tmp_path / "x.db")


def test_config_from_env_defaults(monkeypatch):
    for name in ("USE_LIVE_SOURCE", "FALLBACK_ON_FAILURE", "CACHE_TTL_HOURS", "TRAJECTORY_DB_PATH"):
        monkeypatch.delenv(name, raising=False)
    assert PipelineConfig.from_env() == PipelineConfig()


# ── Growth rate ──────────────────────────────────────────────────────────────

def test_compound_growth_rate():
    assert compound_growth_rate(100.0, 200.0, 2000, 2020) == pytest.approx(0.0352649, abs=1e-6)
    assert compound_growth_rate(100.0, 100.0, 2000, 2010) == 0.0
    assert compound_growth_rate(200.0, 100.0, 2000, 2001) == pytest.approx(-0.5)


def test_compound_growth_rate_no_result_cases():
    assert compound_growth_rate(100.0, 200.0, 2010, 2010) is None
    assert compound_growth_rate(None, 200.0, 2000, 2020) is None
    assert compound_growth_rate(100.0, None, 2000, 2020) is None
    assert compound_growth_rate(0.0, 200.0, 2000, 2020) is None
    assert compound_growth_rate(-5.0, 200.0, 2000, 2020) is None
    assert compound_growth_rate(100.0, -50.0, 2000, 2020) is None
