#!/usr/bin/env python3
"""
run_forecast.py
===============
Command-line entry point: forecast a panel CSV, or backtest a versioned one.

Usage
-----
  # Forecast from a snapshot (geo_value, time_value, <outcome>, ...)
  python run_forecast.py data/cases.csv --outcome cases

  # Custom config from JSON
  python run_forecast.py data/cases.csv --outcome cases --config cfg.json

  # Version-aware backtest (input also carries a `version` column)
  python run_forecast.py data/archive.csv --outcome cases \\
      --backtest 2022-02-01 2022-02-08 --actuals

Flow
----
::

  read CSV  ──→  ForecasterConfig (JSON or flags)
       │
       ▼
  ArxForecaster.forecast            (or backtest over archive vintages)
       │
       ▼
  forecasts.parquet  +  metadata.json  +  summary_results.csv
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import pandas as pd

# Ensure the project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from epicast.archive import EpiArchive
from epicast.config import (
    DEFAULT_QUANTILE_LEVELS,
    VERSION_COL,
    ForecasterConfig,
    LatencyConfig,
    LatencyMethod,
)
from epicast.export import save_forecasts, save_run_metadata, update_summary_table
from epicast.forecaster import ArxForecaster, backtest
from epicast.scoring import score_forecasts


# ======================================================================== #
#  CLI                                                                      #
# ======================================================================== #

def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Panel quantile forecaster",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("data", type=str, help="Input CSV (snapshot or archive).")
    parser.add_argument("--outcome", type=str, required=True, help="Column to forecast.")
    parser.add_argument(
        "--predictors", type=str, nargs="+", default=None,
        help="Predictor columns (default: the outcome only).",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to a ForecasterConfig JSON.")
    parser.add_argument("--lags", type=int, nargs="+", default=[0, 7, 14])
    parser.add_argument("--ahead", type=int, default=7)
    parser.add_argument("--levels", type=float, nargs="+", default=DEFAULT_QUANTILE_LEVELS)
    parser.add_argument("--engine", type=str, default="linear_reg")
    parser.add_argument("--forecast-date", type=str, default=None)
    parser.add_argument(
        "--latency", type=str, default=None,
        choices=[m.value for m in LatencyMethod],
        help="Adjust for reporting latency with this method.",
    )
    parser.add_argument(
        "--backtest", type=str, nargs="+", default=None, metavar="DATE",
        help="Forecast dates for a version-aware backtest (needs a version column).",
    )
    parser.add_argument(
        "--actuals", action="store_true",
        help="Score backtest forecasts against the latest archive values.",
    )
    parser.add_argument("--output-dir", type=str, default="runs")
    parser.add_argument("--csv", action="store_true", help="Write CSV instead of Parquet.")
    parser.add_argument("--quiet", action="store_true")
    return parser.parse_args(argv)


def build_config(args) -> ForecasterConfig:
    if args.config:
        cfg = ForecasterConfig.load(args.config)
        print(f"Loaded config from {args.config}")
        return cfg
    return ForecasterConfig(
        lags=args.lags,
        ahead=args.ahead,
        quantile_levels=args.levels,
        engine=args.engine,
        forecast_date=args.forecast_date,
        latency=LatencyConfig(method=LatencyMethod(args.latency)) if args.latency else None,
    )


def main(argv=None) -> pd.DataFrame:
    args = parse_args(argv)
    cfg = build_config(args)
    verbose = not args.quiet
    fmt = "csv" if args.csv else "parquet"
    data = pd.read_csv(args.data, parse_dates=[cfg.time_col])

    if verbose:
        print("\nForecast Configuration:")
        print(f"  Input        : {args.data}  ({len(data):,} rows)")
        print(f"  Outcome      : {args.outcome}")
        print(f"  Lags / ahead : {cfg.lags} / {cfg.ahead}")
        print(f"  Engine       : {cfg.engine}")
        print(f"  Levels       : {cfg.quantile_levels}")
        print(f"  Latency      : {cfg.latency.method.value if cfg.latency else 'none'}")
        print()

    archive = None
    if VERSION_COL in data.columns:
        data[VERSION_COL] = pd.to_datetime(data[VERSION_COL])
        archive = EpiArchive(data, cfg.key_cols, cfg.time_col)

    output_dir = Path(args.output_dir)
    if args.backtest:
        if archive is None:
            raise SystemExit(f"--backtest needs a '{VERSION_COL}' column in {args.data}")
        dates = [pd.Timestamp(d) for d in args.backtest]
        out = backtest(archive, args.outcome, cfg, dates, args.predictors, verbose=verbose)
        if args.actuals and not out.empty:
            latest = archive.as_of()[cfg.key_cols + [cfg.time_col, args.outcome]]
            latest = latest.rename(columns={cfg.time_col: "target_date", args.outcome: "actual"})
            out = score_forecasts(out.merge(latest, on=cfg.key_cols + ["target_date"], how="left"), "actual")
        run_dir = output_dir / "backtest"
        metrics = {"mean_wis": float(out["wis"].mean())} if "wis" in out.columns else {}
        save_forecasts(out, run_dir / "forecasts", fmt=fmt)
        save_run_metadata(run_dir, cfg, {}, metrics=metrics, extra={"forecast_dates": args.backtest})
        update_summary_table(output_dir, {"run": "backtest", "n_forecasts": len(out), **metrics})
    else:
        snapshot = archive.as_of() if archive is not None else data
        forecaster = ArxForecaster(cfg, verbose=verbose)
        out = forecaster.forecast(snapshot, args.outcome, args.predictors, archive=archive)
        fdate = pd.Timestamp(out["forecast_date"].iloc[0]).strftime("%Y%m%d")
        run_dir = output_dir / f"fc_{fdate}"
        save_forecasts(out, run_dir / "forecasts", fmt=fmt)
        save_run_metadata(run_dir, cfg, forecaster.feature_meta_, forecaster.latency_table_)
        update_summary_table(output_dir, {"run": run_dir.name, "n_forecasts": len(out)})

    if verbose:
        print(f"\n{'=' * 60}")
        print("  FORECASTS")
        print(f"{'=' * 60}")
        print(out.drop(columns=[".pred_distn"]).to_string(index=False))
        print(f"\nResults saved to: {run_dir}")
    return out


if __name__ == "__main__":
    main()
