from __future__ import annotations

import pytest

from config.settings import INDICATORS, REGIONS
from ingestion.errors import NotFoundError
from ingestion.sample_data import (
    SAMPLE_END_YEAR,
    SAMPLE_START_YEAR,
    SampleDataFallback,
    generate_series,
)


def test_generate_series_is_deterministic():
    """Same key → same numbers, independent of instance or call order."""
    assert generate_series("USA", "gdp_per_capita") == generate_series("USA", "gdp_per_capita")
    assert generate_series("USA", "gdp_per_capita") != generate_series("EUU", "gdp_per_capita")
    assert SampleDataFallback().points("CHN", "rd_expenditure") == \
        SampleDataFallback().points("CHN", "rd_expenditure")


def test_frame_covers_every_key():
    df = SampleDataFallback().frame()
    years = SAMPLE_END_YEAR - SAMPLE_START_YEAR + 1
    assert len(df) == len(REGIONS) * len(INDICATORS) * years
    assert set(df.columns) == {"region_id", "indicator_id", "year", "value", "source_tag"}
    assert df["value"].min() >= 0
    assert df["source_tag"].unique().to_list() == ["sample"]


def test_points_shape_matches_cached_rows():
    points = SampleDataFallback().points("BRC", "capital_formation")
    assert [p.year for p in points] == list(range(SAMPLE_START_YEAR, SAMPLE_END_YEAR + 1))
    assert {(p.region_id, p.indicator_id) for p in points} == {("BRC", "capital_formation")}


def test_covid_shock_lowers_gdp_per_capita():
    values = dict(generate_series("USA", "gdp_per_capita"))
    assert values[2020] < values[2019]


def test_latest_value_and_growth():
    sample = SampleDataFallback()
    points = sample.points("EUU", "gdp_per_capita")
    assert sample.latest_value("EUU", "gdp_per_capita") == points[-1].value
    assert sample.growth_rate("EUU", "gdp_per_capita", 2010, 2010) is None
    assert sample.growth_rate("EUU", "gdp_per_capita", 1980, 2010) is None
    assert sample.growth_rate("EUU", "gdp_per_capita", 2000, 2024) == pytest.approx(0.015, abs=0.01)


def test_series_concatenates_regions():
    points = SampleDataFallback().series("real_gdp_growth", ["USA", "CHN"])
    assert [p.region_id for p in points][:1] == ["USA"]
    assert points[-1].region_id == "CHN"


def test_unknown_ids_raise():
    sample = SampleDataFallback()
    with pytest.raises(NotFoundError):
        sample.points("XXX", "gdp_per_capita")
    with pytest.raises(NotFoundError):
        sample.latest_value("USA", "unknown")
