"""
Tests for cross-country pooling and harmonization.
"""

import pytest
import pandas as pd
import numpy as np

from studies.labor_transitions.src.country_pooler import (
    EQUAL_WEIGHT_TOTAL,
    CountryPooler,
    outcome_sample_sizes,
)
from studies.labor_transitions.src.diagnostics import PipelineError, RunDiagnostics
from studies.labor_transitions.src.regressions import OUTCOMES
from tests.fixtures.synthetic_panel import make_analysis_table

EDUCATION = ["educ_secondary_t0", "educ_tertiary_t0"]


@pytest.fixture
def frames():
    big = make_analysis_table(n=600, seed=1)
    small = make_analysis_table(n=200, seed=2)
    # Country without an education question
    small[EDUCATION] = np.nan
    return {"aaa": big, "bbb": small}


class TestCountryPooler:
    """Country tags, fixed-effect keys and equal weights."""

    @pytest.fixture
    def diagnostics(self):
        return RunDiagnostics()

    @pytest.fixture
    def pooled(self, frames, diagnostics):
        return CountryPooler(diagnostics).pool(frames, {"bbb": EDUCATION})

    def test_rows_and_country_tags(self, pooled):
        assert len(pooled) == 800
        assert pooled["country"].value_counts().to_dict() == {"aaa": 600, "bbb": 200}
        assert pooled.columns[0] == "country"

    def test_country_region_key(self, pooled):
        row = pooled.iloc[0]
        assert row["country_region"] == f"{row['country']}_{row['region_t0']}"
        assert pooled.groupby("country_region")["country"].nunique().eq(1).all()

    def test_equal_weight_sums_to_100_per_country(self, pooled):
        totals = pooled.groupby("country")["equal_weight"].sum()
        assert totals.to_numpy() == pytest.approx([EQUAL_WEIGHT_TOTAL] * 2)

    def test_equal_weight_preserves_within_country_ratios(self, pooled, frames):
        aaa = pooled[pooled["country"] == "aaa"]
        ratio = aaa["equal_weight"] / frames["aaa"]["weight"].to_numpy()
        assert ratio.to_numpy() == pytest.approx([ratio.iloc[0]] * len(aaa))

    def test_missing_covariates_nulled_to_zero(self, pooled, diagnostics):
        bbb = pooled[pooled["country"] == "bbb"]
        for col in EDUCATION:
            assert (bbb[col] == 0).all()
        assert len(diagnostics.by_code("covariate_nulled")) == 1

    def test_other_countries_untouched(self, pooled, frames):
        aaa = pooled[pooled["country"] == "aaa"]
        assert aaa["educ_secondary_t0"].tolist() == frames["aaa"]["educ_secondary_t0"].tolist()

    def test_outcome_samples_remain_non_empty(self, pooled):
        sizes = outcome_sample_sizes(pooled)

        bbb = sizes[sizes["country"] == "bbb"]
        assert sorted(bbb["outcome"]) == sorted(o.name for o in OUTCOMES)
        assert (bbb["n_obs"] > 0).all()

    def test_without_nulling_country_drops_out(self, frames):
        pooled = CountryPooler().pool(frames)
        sizes = outcome_sample_sizes(pooled)
        assert (sizes.loc[sizes["country"] == "bbb", "n_obs"] == 0).all()

    def test_inputs_not_modified(self, frames):
        before = {code: frame.copy() for code, frame in frames.items()}

        CountryPooler().pool(frames, {"bbb": EDUCATION})

        for code, frame in frames.items():
            pd.testing.assert_frame_equal(frame, before[code])

    def test_idempotent(self, frames):
        pooler = CountryPooler()
        first = pooler.pool(frames, {"bbb": EDUCATION})
        second = pooler.pool(frames, {"bbb": EDUCATION})

        assert len(first) == len(second)
        assert list(first.columns) == list(second.columns)
        pd.testing.assert_frame_equal(first, second)

    def test_harmonizes_column_sets(self, frames, diagnostics):
        frames["bbb"] = frames["bbb"].drop(columns=["health_shock_t0"])

        pooled = CountryPooler(diagnostics).pool(frames, {"bbb": ["health_shock_t0"]})

        assert (pooled.loc[pooled["country"] == "bbb", "health_shock_t0"] == 0).all()
        record = diagnostics.by_code("column_harmonized")[0]
        assert record.country == "bbb"


class TestPoolingErrors:
    """Fatal harmonization problems name the country and field."""

    def test_missing_key_column(self, frames):
        frames["bbb"] = frames["bbb"].drop(columns=["household_id"])

        with pytest.raises(PipelineError) as exc:
            CountryPooler().pool(frames)

        assert exc.value.country == "bbb"
        assert exc.value.field == "household_id"

    def test_zero_weights(self, frames):
        frames["aaa"]["weight"] = 0.0
        with pytest.raises(PipelineError, match="weight"):
            CountryPooler().pool(frames)

    def test_nothing_to_pool(self):
        with pytest.raises(PipelineError):
            CountryPooler().pool({})
