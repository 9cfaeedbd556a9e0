"""
tests/test_features.py
======================
Panel shifts, trailing windows and window-size resolution.
Run with:  python -m pytest tests/ -v
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Ensure project root is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture
def gappy_df():
    """One key observed on days 1, 2, 3 and 5 (day 4 missing)."""
    return pd.DataFrame({
        "geo_value": ["ca"] * 4,
        "time_value": [1, 2, 3, 5],
        "cases": [10.0, 20.0, 30.0, 50.0],
    })


@pytest.fixture
def panel_df():
    """Two keys, 30 daily dates, rows shuffled."""
    dates = pd.date_range("2022-01-01", periods=30, freq="D")
    rows = []
    for geo, scale in [("ca", 1.0), ("ny", 100.0)]:
        for i, d in enumerate(dates):
            rows.append({"geo_value": geo, "time_value": d, "cases": scale * (i + 1)})
    df = pd.DataFrame(rows)
    return df.sample(frac=1.0, random_state=0).reset_index(drop=True)


# ======================================================================== #
#  Shift generation                                                         #
# ======================================================================== #

class TestShifts:
    def test_gap_gives_nan_not_previous_row(self, gappy_df):
        from epicast.features import add_lags
        out = add_lags(gappy_df, "cases", [1])
        by_day = out.set_index("time_value")["lag_1_cases"]
        assert np.isnan(by_day[1])
        assert by_day[2] == 10.0
        assert by_day[3] == 20.0
        # day 4 is missing: no fallback to day 3
        assert np.isnan(by_day[5])

    def test_lag_zero_is_identity(self, gappy_df):
        from epicast.features import add_lags
        out = add_lags(gappy_df, "cases", [0])
        np.testing.assert_array_equal(out["lag_0_cases"], gappy_df["cases"])

    def test_ahead(self, gappy_df):
        from epicast.features import add_aheads
        out = add_aheads(gappy_df, "cases", [2])
        by_day = out.set_index("time_value")["ahead_2_cases"]
        assert by_day[1] == 30.0
        assert np.isnan(by_day[2])
        assert by_day[3] == 50.0
        assert np.isnan(by_day[5])

    def test_keys_do_not_leak_and_order_is_kept(self, panel_df):
        from epicast.features import add_lags
        out = add_lags(panel_df, "cases", [1, 7])
        assert list(out.index) == list(panel_df.index)
        pd.testing.assert_series_equal(out["geo_value"], panel_df["geo_value"])

        ny = out[out["geo_value"] == "ny"].sort_values("time_value")
        # cases are 100 * day index, so lag k is exactly 100 * k less
        valid = ny["lag_7_cases"].notna()
        np.testing.assert_allclose(
            ny.loc[valid, "cases"] - ny.loc[valid, "lag_7_cases"], 700.0
        )
        assert valid.sum() == 23
        first = ny.iloc[0]
        assert np.isnan(first["lag_1_cases"])

    def test_duplicate_key_time_raises(self, gappy_df):
        from epicast.features import add_lags
        dup = pd.concat([gappy_df, gappy_df.iloc[[0]]], ignore_index=True)
        with pytest.raises(ValueError, match="Duplicate"):
            add_lags(dup, "cases", [1])

    def test_missing_column_raises(self, gappy_df):
        from epicast.features import add_lags
        with pytest.raises(KeyError, match="deaths"):
            add_lags(gappy_df, "deaths", [1])

    def test_build_shifted_features_meta(self, gappy_df):
        from epicast.features import ShiftSpec, build_shifted_features
        specs = [ShiftSpec.lag("cases", [0, 1]), ShiftSpec.ahead("cases", [2])]
        out, meta = build_shifted_features(gappy_df, specs)
        assert meta["predictors"] == ["lag_1_cases", "lag_0_cases"]
        assert meta["outcomes"] == ["ahead_2_cases"]
        assert meta["n_features"] == 2
        assert all(c in out.columns for c in meta["predictors"] + meta["outcomes"])

    def test_weekly_time_unit(self):
        from epicast.features import add_lags
        df = pd.DataFrame({
            "geo_value": ["ca"] * 3,
            "time_value": pd.to_datetime(["2022-01-01", "2022-01-08", "2022-01-15"]),
            "cases": [1.0, 2.0, 3.0],
        })
        out = add_lags(df, "cases", [1], time_unit=7)
        np.testing.assert_array_equal(out["lag_1_cases"].iloc[1:], [1.0, 2.0])

    def test_string_dates_are_parsed(self):
        from epicast.features import add_lags
        df = pd.DataFrame({
            "geo_value": ["ca", "ca"],
            "time_value": ["2022-01-01", "2022-01-02"],
            "cases": [1.0, 2.0],
        })
        out = add_lags(df, "cases", [1])
        assert out["lag_1_cases"].iloc[1] == 1.0


class TestDerivedWindows:
    def test_trailing_mean_uses_observed_rows(self, gappy_df):
        from epicast.features import add_trailing_mean
        out = add_trailing_mean(gappy_df, "cases", 3)
        by_day = out.set_index("time_value")["roll_mean3_cases"]
        assert by_day[3] == pytest.approx(20.0)
        # days 3, 4, 5 with day 4 missing
        assert by_day[5] == pytest.approx(40.0)

    def test_rolling_sum(self, gappy_df):
        from epicast.features import add_rolling
        out = add_rolling(gappy_df, "cases", 2, stat="sum")
        assert out["roll_sum2_cases"].tolist() == [10.0, 30.0, 50.0, 50.0]

    def test_growth_rate(self, gappy_df):
        from epicast.features import add_growth_rate
        out = add_growth_rate(gappy_df, "cases", horizon=1)
        by_day = out.set_index("time_value")["gr_1_cases"]
        assert by_day[2] == pytest.approx(1.0)
        assert by_day[3] == pytest.approx(0.5)
        assert np.isnan(by_day[5])

    def test_unknown_stat_raises(self):
        from epicast.features import DerivedWindow
        with pytest.raises(ValueError, match="Unknown rolling stat"):
            DerivedWindow("cases", 3, "median")

    def test_lookback(self):
        from epicast.features import DerivedWindow
        assert DerivedWindow("cases", 7).lookback == 7
        assert DerivedWindow("cases", 7, "growth_rate").lookback == 14


# ======================================================================== #
#  Window-size resolution                                                   #
# ======================================================================== #

class TestWindows:
    def test_minimum_required_history(self):
        from epicast.features import ShiftSpec
        from epicast.windows import min_lookahead, min_lookback, minimum_required_history
        specs = [ShiftSpec.lag("x", [0, 7, 14]), ShiftSpec.ahead("x", [14])]
        assert min_lookback(specs) == 14
        assert min_lookahead(specs) == 14
        assert minimum_required_history(specs) == 14

    def test_required_history_includes_derived_windows(self):
        from epicast.features import DerivedWindow, ShiftSpec
        from epicast.windows import minimum_required_history
        specs = [ShiftSpec.lag("x", [0, 7]), ShiftSpec.ahead("x", [3])]
        windows = [DerivedWindow("x", 10, "growth_rate")]
        assert minimum_required_history(specs, windows) == 20

    def test_get_test_data_slice(self, panel_df):
        from epicast.features import ShiftSpec
        from epicast.windows import get_test_data
        specs = [ShiftSpec.lag("cases", [0, 7])]
        test = get_test_data(panel_df, specs)
        assert test.groupby("geo_value").size().tolist() == [8, 8]
        assert test["time_value"].min() == pd.Timestamp("2022-01-23")

    def test_get_test_data_insufficient(self, panel_df):
        from epicast.checks import InsufficientHistory
        from epicast.features import ShiftSpec
        from epicast.windows import get_test_data
        late = panel_df["time_value"] >= pd.Timestamp("2022-01-27")
        df = panel_df[(panel_df["geo_value"] == "ca") | late]
        specs = [ShiftSpec.lag("cases", [0, 7])]
        with pytest.raises(InsufficientHistory, match="ny"):
            get_test_data(df, specs)

    def test_training_window(self, gappy_df):
        from epicast.windows import training_window
        out = training_window(gappy_df, 3)
        assert out["time_value"].tolist() == [3, 5]

    def test_check_enough_train_data(self, gappy_df):
        from epicast.checks import InsufficientHistory
        from epicast.windows import check_enough_train_data
        df = gappy_df.assign(x=[1.0, np.nan, np.nan, 2.0])
        check_enough_train_data(df, ["cases"], 4)
        with pytest.raises(InsufficientHistory):
            check_enough_train_data(df, ["cases", "x"], 3)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
