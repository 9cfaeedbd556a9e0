"""
epicast.forecaster
==================
Autoregressive forecaster: glue between the panel shift generator, a
trainer and the quantile-distribution output.

The runner does:

.. code-block:: text

    (optional) latency table → adjust shifts / carry values forward
    lags + ahead (+ trailing means) → drop incomplete rows → training window
    fit trainer
    trailing slice at the reference time → prediction rows → predict
    point → residual quantiles   |   quantile engine → distributions
    clip (nonneg) → one row per key

Public API
----------
residual_quantiles(point, residuals, quantile_levels, ...)  → [QuantileDistribution]
ArxForecaster(config).forecast(df, outcome, predictors)     → DataFrame
backtest(archive, outcome, config, forecast_dates)          → DataFrame
"""

from __future__ import annotations

import time
import warnings
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .archive import EpiArchive
from .checks import assert_columns_present, assert_no_nan_in_features
from .config import DISTN_COL, PRED_COL, ForecasterConfig, LatencyMethod
from .distributions import QuantileDistribution
from .features import (
    DerivedWindow,
    ShiftSpec,
    build_shifted_features,
    resolve_time_unit,
    time_values,
)
from .latency import (
    LatencyTable,
    adjust_specs_for_latency,
    compute_latency,
    extend_to_date,
    locf_fill,
    snapshot_latency,
)
from .models.engines import Trainer, make_trainer
from .windows import check_enough_train_data, get_test_data, training_window


# ======================================================================== #
#  Residual quantiles                                                       #
# ======================================================================== #

def residual_quantiles(
    point: Sequence[float],
    residuals: Sequence[float],
    quantile_levels: Sequence[float],
    symmetrize: bool = True,
    pred_keys: Optional[Sequence[Any]] = None,
    residual_keys: Optional[Sequence[Any]] = None,
) -> List[Optional[QuantileDistribution]]:
    """
    Turn point predictions into distributions from training residuals.

    Each row gets ``point + quantile(residuals, level)`` for every level.
    With *symmetrize* the residuals are mirrored (``r ∪ -r``) so the
    intervals are centred on the point prediction.  With keys, residuals
    are pooled per key; keys without residuals fall back to all residuals.

    Rows with a missing point prediction get ``None``.
    """
    levels = np.asarray(sorted(set(quantile_levels)), dtype=np.float64)
    r_all = np.asarray(residuals, dtype=np.float64)
    keep = ~np.isnan(r_all)
    r_all = r_all[keep]
    if r_all.size == 0:
        raise ValueError("No finite residuals to build quantiles from.")

    def _offsets(r: np.ndarray) -> np.ndarray:
        if symmetrize:
            r = np.concatenate([r, -r])
        return np.quantile(r, levels)

    pooled = _offsets(r_all)
    by_key: Dict[Any, np.ndarray] = {}
    if pred_keys is not None and residual_keys is not None:
        rk = pd.Series(np.asarray(list(residual_keys), dtype=object)[keep])
        for key, idx in rk.groupby(rk).groups.items():
            by_key[key] = _offsets(r_all[np.asarray(idx)])
        keys = list(pred_keys)
    else:
        keys = [None] * len(point)

    out: List[Optional[QuantileDistribution]] = []
    for p, key in zip(np.asarray(point, dtype=np.float64), keys):
        if np.isnan(p):
            out.append(None)
            continue
        out.append(QuantileDistribution.from_unsorted(levels, p + by_key.get(key, pooled)))
    return out


# ======================================================================== #
#  ARX forecaster                                                           #
# ======================================================================== #

class ArxForecaster:
    """
    Direct autoregressive forecaster with optional exogenous predictors.

    Parameters
    ----------
    config : ForecasterConfig
        Lags, ahead, levels, engine, training window, latency handling.
    trainer : Trainer, optional
        Overrides the engine named in *config*.
    verbose : bool
        Print progress lines.

    Attributes (after ``forecast``)
    -------------------------------
    handle_ : ModelHandle
    latency_table_ : dict or None
    feature_meta_ : dict
    specs_ : list of ShiftSpec
    """

    def __init__(
        self,
        config: ForecasterConfig,
        trainer: Optional[Trainer] = None,
        verbose: bool = False,
    ):
        self.cfg = config
        self.trainer = trainer or make_trainer(config.engine, config.quantile_levels)
        self.verbose = verbose
        self.handle_ = None
        self.latency_table_: Optional[LatencyTable] = None
        self.feature_meta_: Dict[str, Any] = {}
        self.specs_: List[ShiftSpec] = []

    # ------------------------------------------------------------------ #
    #  Main entry point                                                    #
    # ------------------------------------------------------------------ #

    def forecast(
        self,
        df: pd.DataFrame,
        outcome: str,
        predictors: Optional[Sequence[str]] = None,
        archive: Optional[EpiArchive] = None,
    ) -> pd.DataFrame:
        """
        Fit on *df* and forecast every key at the forecast date.

        Parameters
        ----------
        df : pd.DataFrame
            Panel snapshot (key columns, time column, outcome, predictors).
        outcome : str
        predictors : list of str, optional
            Defaults to ``[outcome]``.
        archive : EpiArchive, optional
            Versioned history used to estimate latency.

        Returns
        -------
        pd.DataFrame
            Key columns, ``forecast_date``, ``target_date``, ``.pred``,
            ``.pred_distn``.
        """
        t0 = time.time()
        cfg = self.cfg
        keys, tcol = list(cfg.key_cols), cfg.time_col
        predictors = list(predictors) if predictors else [outcome]
        assert_columns_present(df, keys + [tcol, outcome] + predictors)

        times = time_values(df, tcol)
        unit = resolve_time_unit(times, cfg.time_unit_days)
        df = df.assign(**{tcol: times})
        forecast_date = self._forecast_date(times)

        windows = [DerivedWindow(outcome, w, "mean") for w in cfg.smoothing_windows]
        specs = [ShiftSpec.lag(predictors, cfg.lags)]
        if windows:
            specs.append(ShiftSpec.lag([w.name for w in windows], [0]))
        specs.append(ShiftSpec.ahead(outcome, [cfg.ahead]))

        # 1. Latency.  Training always uses the observed rows; only the
        # prediction frame is extended or filled up to the forecast date.
        reference_time = times.max()
        pred_df = df
        if cfg.latency is not None:
            table = self._latency_table(df, outcome, predictors, forecast_date, archive)
            self.latency_table_ = table
            if cfg.latency.method == LatencyMethod.LOCF:
                pred_df = locf_fill(df, predictors, forecast_date, keys, tcol, unit)
                reference_time = forecast_date
            else:
                # derived windows inherit the latency of their source column
                shifts = {**{w.name: table.get(w.column, 0) for w in windows}, **table}
                specs = adjust_specs_for_latency(
                    specs, shifts, cfg.latency.method, cfg.latency.sign_shift
                )
                if cfg.latency.method == LatencyMethod.EXTEND_LAGS:
                    # lags already reach back past the unreported tail
                    pred_df = extend_to_date(df, forecast_date, keys, tcol, unit)
                    reference_time = forecast_date
            self._log(f"  Latency table: {table}")
        self.specs_ = specs

        # 2. Training rows
        feats, meta = build_shifted_features(df, specs, keys, tcol, unit, windows)
        self.feature_meta_ = meta
        x_cols, y_col = meta["predictors"], meta["outcomes"][0]
        train = feats.dropna(subset=x_cols + [y_col])
        train = training_window(train, cfg.n_training, keys, tcol, unit)
        if cfg.check_enough_data_n is not None:
            check_enough_train_data(train, x_cols + [y_col], cfg.check_enough_data_n, keys)
        if train.empty:
            raise ValueError("No complete training rows after shifting.")
        assert_no_nan_in_features(train, x_cols, "training")
        self._log(f"  Training rows: {len(train):,}  features: {len(x_cols)}")

        # 3. Fit
        self.handle_ = self.trainer.fit(train[x_cols], train[y_col])

        # 4. Prediction rows
        test = get_test_data(pred_df, specs, reference_time, windows, keys, tcol, unit)
        test_feats, _ = build_shifted_features(test, specs, keys, tcol, unit, windows)
        latest = test_feats[test_feats[tcol] == reference_time]
        complete = latest.dropna(subset=x_cols)
        if len(complete) < len(latest):
            dropped = latest.loc[~latest.index.isin(complete.index), keys]
            warnings.warn(
                f"{len(dropped)} key(s) have missing predictors at {reference_time} "
                f"and are not forecast: {dropped.to_dict('records')}"
            )
        if complete.empty:
            raise ValueError(f"No key has complete predictors at {reference_time}.")

        # 5. Predict
        preds = self.trainer.predict(self.handle_, complete[x_cols])
        if self.trainer.kind == "quantile":
            dists = list(preds)
            point = np.array([d.median() for d in dists])
        else:
            point = np.asarray(preds, dtype=np.float64)
            fitted = self.trainer.predict(self.handle_, train[x_cols])
            residuals = train[y_col].to_numpy(dtype=np.float64) - fitted
            dists = residual_quantiles(
                point, residuals, cfg.quantile_levels, cfg.symmetrize
            )

        if cfg.nonneg:
            point = np.clip(point, 0.0, None)
            dists = [d if d is None else d.clip(lower=0.0) for d in dists]

        target_date = (
            pd.Timestamp(cfg.target_date) if cfg.target_date and isinstance(unit, pd.Timedelta)
            else forecast_date + cfg.ahead * unit
        )
        out = complete[keys].reset_index(drop=True)
        out["forecast_date"] = forecast_date
        out["target_date"] = target_date
        out[PRED_COL] = point
        out[DISTN_COL] = pd.Series(dists, dtype=object)

        self._log(f"  ✓ Forecast {len(out)} key(s) in {time.time() - t0:.1f}s")
        return out

    # ------------------------------------------------------------------ #
    #  Helpers                                                             #
    # ------------------------------------------------------------------ #

    def _forecast_date(self, times: pd.Series):
        if self.cfg.forecast_date is None:
            return times.max()
        if np.issubdtype(times.dtype, np.integer):
            return int(self.cfg.forecast_date)
        return pd.Timestamp(self.cfg.forecast_date)

    def _latency_table(
        self,
        df: pd.DataFrame,
        outcome: str,
        predictors: List[str],
        forecast_date: Any,
        archive: Optional[EpiArchive],
    ) -> LatencyTable:
        lc = self.cfg.latency
        columns = list(dict.fromkeys(predictors + [outcome]))
        if lc.fixed_latency is not None:
            return {c: int(lc.fixed_latency) for c in columns}
        if archive is not None:
            return compute_latency(
                archive, columns, lc.keys_to_ignore, lc.epi_keys_checked,
                time_unit=self.cfg.time_unit_days,
            )
        return snapshot_latency(
            df, columns, forecast_date, self.cfg.key_cols, self.cfg.time_col,
            lc.keys_to_ignore, lc.epi_keys_checked, self.cfg.time_unit_days,
        )

    def _log(self, msg: str) -> None:
        if self.verbose:
            print(msg)


# ======================================================================== #
#  Version-aware backtest                                                   #
# ======================================================================== #

def backtest(
    archive: EpiArchive,
    outcome: str,
    config: ForecasterConfig,
    forecast_dates: Sequence[Any],
    predictors: Optional[Sequence[str]] = None,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Forecast at each date from the archive snapshot as of that date, so no
    forecast sees data published after it was made.

    Dates whose forecast fails are skipped with a warning.
    """
    results: List[pd.DataFrame] = []
    for fdate in forecast_dates:
        snapshot = archive.as_of(fdate)
        cfg = ForecasterConfig(**{**_config_kwargs(config), "forecast_date": str(fdate)})
        forecaster = ArxForecaster(cfg, verbose=verbose)
        try:
            results.append(forecaster.forecast(snapshot, outcome, predictors, archive=None))
        except ValueError as e:
            warnings.warn(f"Forecast as of {fdate} failed: {e}")
    if not results:
        return pd.DataFrame()
    return pd.concat(results, ignore_index=True)


def _config_kwargs(config: ForecasterConfig) -> Dict[str, Any]:
    return {
        name: getattr(config, name)
        for name in config.__dataclass_fields__
        if name != "created_at"
    }
