"""
tests/test_cli.py
=================
End-to-end runs of run_forecast.py on small CSV files.
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

COMMON = ["--outcome", "cases", "--lags", "0", "7", "--ahead", "7",
          "--levels", "0.1", "0.5", "0.9", "--csv", "--quiet"]


@pytest.fixture
def panel_csv(tmp_path):
    rng = np.random.default_rng(3)
    dates = pd.date_range("2022-01-01", periods=60, freq="D")
    frames = [
        pd.DataFrame({
            "geo_value": geo,
            "time_value": dates,
            "cases": base + 5.0 * np.arange(60) + rng.normal(0, 2.0, 60),
        })
        for geo, base in [("ca", 100.0), ("ny", 300.0)]
    ]
    df = pd.concat(frames, ignore_index=True)
    path = tmp_path / "panel.csv"
    df.to_csv(path, index=False)
    return path, df


class TestRunForecast:
    def test_snapshot_forecast(self, panel_csv, tmp_path):
        from run_forecast import main
        path, _ = panel_csv
        out_dir = tmp_path / "runs"
        out = main([str(path), *COMMON, "--output-dir", str(out_dir)])
        assert len(out) == 2
        run_dir = out_dir / "fc_20220301"
        assert (run_dir / "forecasts.csv").exists()
        assert (run_dir / "metadata.json").exists()
        assert (out_dir / "summary_results.csv").exists()

    def test_backtest_with_scores(self, panel_csv, tmp_path):
        from run_forecast import main
        _, df = panel_csv
        archive = df.assign(version=df["time_value"] + pd.Timedelta(days=1))
        path = tmp_path / "archive.csv"
        archive.to_csv(path, index=False)
        out = main([
            str(path), *COMMON, "--output-dir", str(tmp_path / "runs"),
            "--backtest", "2022-02-10", "2022-02-17", "--actuals",
        ])
        assert len(out) == 4
        assert out["wis"].notna().all()
        assert (out["wis"] >= 0).all()

    def test_config_with_custom_time_column(self, panel_csv, tmp_path):
        from epicast.config import ForecasterConfig
        from run_forecast import main
        _, df = panel_csv
        path = tmp_path / "dated.csv"
        df.rename(columns={"time_value": "date"}).to_csv(path, index=False)
        cfg_path = tmp_path / "cfg.json"
        ForecasterConfig(
            lags=[0, 7], ahead=7, quantile_levels=[0.1, 0.5, 0.9], time_col="date"
        ).save(cfg_path)
        out = main([
            str(path), "--outcome", "cases", "--config", str(cfg_path),
            "--csv", "--quiet", "--output-dir", str(tmp_path / "runs"),
        ])
        assert len(out) == 2
        assert (out["target_date"] == pd.Timestamp("2022-03-08")).all()

    def test_backtest_needs_versions(self, panel_csv, tmp_path):
        from run_forecast import main
        path, _ = panel_csv
        with pytest.raises(SystemExit):
            main([str(path), *COMMON, "--output-dir", str(tmp_path), "--backtest", "2022-02-10"])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
