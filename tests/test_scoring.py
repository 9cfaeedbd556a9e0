"""
tests/test_scoring.py
=====================
Weighted interval score, point metrics, configuration and persistence.
Run with:  python -m pytest tests/ -v
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Ensure project root is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture
def dist():
    from epicast.distributions import QuantileDistribution
    return QuantileDistribution([0.25, 0.5, 0.75], [1.0, 2.0, 4.0])


# ======================================================================== #
#  WIS                                                                      #
# ======================================================================== #

class TestWIS:
    def test_hand_computed(self, dist):
        from epicast.scoring import wis
        # losses 0.5, 0.5, 0.25 -> 2 * mean
        assert wis(dist, 3.0) == pytest.approx(2 * 1.25 / 3)

    def test_point_mass_scores_zero(self):
        from epicast.distributions import QuantileDistribution
        from epicast.scoring import wis
        d = QuantileDistribution([0.1, 0.5, 0.9], [3.0, 3.0, 3.0])
        assert wis(d, 3.0) == 0.0

    def test_single_median_is_absolute_error(self):
        from epicast.distributions import QuantileDistribution
        from epicast.scoring import wis
        d = QuantileDistribution([0.5], [2.0])
        assert wis(d, 5.0) == pytest.approx(3.0)
        assert wis(d, -1.0) == pytest.approx(3.0)

    def test_non_negative(self):
        from epicast.distributions import QuantileDistribution
        from epicast.scoring import wis
        rng = np.random.default_rng(0)
        for _ in range(50):
            values = np.sort(rng.normal(size=5))
            d = QuantileDistribution([0.1, 0.3, 0.5, 0.7, 0.9], values)
            assert wis(d, rng.normal()) >= 0.0

    def test_missing_inputs_give_nan(self, dist):
        from epicast.scoring import wis
        assert np.isnan(wis(None, 1.0))
        assert np.isnan(wis(dist, np.nan))

    def test_na_handling(self, dist):
        from epicast.checks import InvalidDistribution
        from epicast.config import NaHandling
        from epicast.scoring import wis
        levels = [0.5, 0.6]
        # 0.6 interpolates to 2.8
        expected = 2 * (0.5 * 1.0 + 0.6 * 0.2) / 2
        assert wis(dist, 3.0, levels, NaHandling.IMPUTE) == pytest.approx(expected)
        assert wis(dist, 3.0, levels, NaHandling.DROP) == pytest.approx(1.0)
        assert np.isnan(wis(dist, 3.0, levels, NaHandling.PROPAGATE))
        with pytest.raises(InvalidDistribution, match="0.6"):
            wis(dist, 3.0, levels, NaHandling.FAIL)

    def test_score_column_length_mismatch(self, dist):
        from epicast.checks import LengthMismatch
        from epicast.scoring import score_column
        with pytest.raises(LengthMismatch):
            score_column([dist, dist], [1.0])

    def test_interval_coverage(self):
        from epicast.distributions import dist_quantiles
        from epicast.scoring import interval_coverage
        dists = dist_quantiles([[0, 10], [0, 10], [0, 10], [0, 10]], [0.1, 0.9])
        assert interval_coverage(dists, [5, 11, -1, 10], level=0.8) == pytest.approx(0.5)

    def test_score_forecasts(self, dist):
        from epicast.scoring import score_forecasts
        df = pd.DataFrame({
            ".pred": [2.0, 2.0],
            ".pred_distn": pd.Series([dist, None], dtype=object),
            "actual": [3.0, 3.0],
        })
        out = score_forecasts(df, "actual")
        assert out["wis"].iloc[0] == pytest.approx(2 * 1.25 / 3)
        assert np.isnan(out["wis"].iloc[1])
        assert out["ae"].tolist() == [1.0, 1.0]


class TestPointMetrics:
    def test_compute_metrics_perfect(self):
        from epicast.scoring import compute_metrics
        y = np.array([1.0, 2.0, 3.0, 4.0])
        m = compute_metrics(y, y)
        assert m["rmse"] == pytest.approx(0.0, abs=1e-9)
        assert m["mae"] == pytest.approx(0.0, abs=1e-9)
        assert m["r2"] == pytest.approx(1.0)
        assert m["n"] == 4

    def test_compute_metrics_skips_nan(self):
        from epicast.scoring import compute_metrics
        m = compute_metrics(np.array([1.0, np.nan, 3.0]), np.array([2.0, 5.0, 3.0]))
        assert m["n"] == 2
        assert m["mae"] == pytest.approx(0.5)


# ======================================================================== #
#  Config                                                                   #
# ======================================================================== #

class TestConfig:
    def test_forecaster_config_roundtrip(self, tmp_path):
        from epicast.config import ForecasterConfig, LatencyConfig, LatencyMethod
        cfg = ForecasterConfig(
            lags=[0, 7],
            ahead=14,
            quantile_levels=[0.9, 0.1, 0.5],
            latency=LatencyConfig(method=LatencyMethod.LOCF, keys_to_ignore={"geo_value": ["pr"]}),
        )
        path = tmp_path / "cfg.json"
        cfg.save(path)
        loaded = ForecasterConfig.load(path)
        assert loaded.lags == [0, 7]
        assert loaded.ahead == 14
        assert loaded.quantile_levels == [0.1, 0.5, 0.9]
        assert loaded.latency.method == LatencyMethod.LOCF
        assert loaded.latency.keys_to_ignore == {"geo_value": ["pr"]}

    def test_invalid_levels(self):
        from epicast.config import ForecasterConfig
        with pytest.raises(ValueError, match="quantile_levels"):
            ForecasterConfig(quantile_levels=[0.5, 1.0])

    def test_negative_ahead(self):
        from epicast.config import ForecasterConfig
        with pytest.raises(ValueError, match="ahead"):
            ForecasterConfig(ahead=-1)

    def test_enums(self):
        from epicast.config import LatencyMethod, NaHandling, TailPolicy
        assert TailPolicy.CONSTANT.value == "constant"
        assert LatencyMethod("extend_ahead") == LatencyMethod.EXTEND_AHEAD
        assert NaHandling.PROPAGATE.value == "propagate"


# ======================================================================== #
#  Persistence                                                              #
# ======================================================================== #

class TestExport:
    def test_forecasts_roundtrip_csv(self, tmp_path, dist):
        from epicast.export import load_forecasts, save_forecasts
        df = pd.DataFrame({
            "geo_value": ["ca", "ny"],
            ".pred": [2.0, 3.0],
            ".pred_distn": pd.Series([dist, dist + 1], dtype=object),
        })
        path = save_forecasts(df, tmp_path / "forecasts", fmt="csv")
        assert path.endswith(".csv")
        written = pd.read_csv(path)
        assert ".pred_distn_0.5" in written.columns

        back = load_forecasts(path)
        assert list(back.columns) == ["geo_value", ".pred", ".pred_distn"]
        np.testing.assert_allclose(back.loc[1, ".pred_distn"].values, [2.0, 3.0, 5.0])
        np.testing.assert_allclose(back.loc[0, ".pred_distn"].levels, [0.25, 0.5, 0.75])

    def test_unsupported_format(self, tmp_path, dist):
        from epicast.export import save_forecasts
        with pytest.raises(ValueError, match="Unsupported"):
            save_forecasts(pd.DataFrame({"a": [1]}), tmp_path / "x", fmt="xlsx")

    def test_model_roundtrip(self, tmp_path):
        from epicast.export import load_model, save_model
        from epicast.models.engines import PointTrainer
        X = pd.DataFrame({"x": [0.0, 1.0, 2.0, 3.0]})
        trainer = PointTrainer("linear_reg")
        handle = trainer.fit(X, [1.0, 3.0, 5.0, 7.0])
        path = save_model(handle, tmp_path / "model")
        loaded = load_model(path)
        assert loaded.feature_names == ["x"]
        np.testing.assert_allclose(trainer.predict(loaded, X), [1.0, 3.0, 5.0, 7.0])

    def test_run_metadata_and_summary(self, tmp_path):
        from epicast.config import ForecasterConfig
        from epicast.export import save_run_metadata, update_summary_table
        path = save_run_metadata(
            tmp_path / "run", ForecasterConfig(), {"n_features": np.int64(3)},
            latency_table={"cases": 2}, metrics={"wis": np.float64(1.5)},
        )
        meta = json.loads(Path(path).read_text())
        assert meta["feature_meta"]["n_features"] == 3
        assert meta["latency_table"] == {"cases": 2}
        assert meta["config"]["engine"] == "linear_reg"

        update_summary_table(tmp_path, {"forecast_date": "2022-01-01", "wis": 1.0})
        table = update_summary_table(tmp_path, {"forecast_date": "2022-01-08", "wis": 2.0})
        assert len(table) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
