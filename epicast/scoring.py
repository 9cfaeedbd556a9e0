"""
epicast.scoring
===============
Scores for probabilistic and point forecasts.

Metrics
-------
* **WIS** (weighted interval score), quantile form:

  .. math::
      \\mathrm{WIS}(F, y) = \\frac{2}{K} \\sum_{k=1}^{K}
          \\max\\bigl(\\tau_k (y - q_k),\\; (1 - \\tau_k)(q_k - y)\\bigr)

  This equals the interval-score average over the central intervals
  implied by symmetric level pairs plus the median absolute-error term.
  With the single level 0.5 it reduces to ``|y - median|``.  It is zero
  when ``y`` equals every stored value (a point mass at ``y``) and is
  non-negative otherwise.
* **Coverage** of a central interval.
* **MAE / RMSE / R²** for point predictions.

Public API
----------
wis(distribution, actual, levels, na_handling)   → float
score_column(dists, actuals, ...)               → np.ndarray
interval_coverage(dists, actuals, level)        → float
compute_metrics(y_true, y_pred)                 → dict
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from sklearn.metrics import (
    mean_absolute_error,
    mean_squared_error,
    r2_score,
)

from .checks import InvalidDistribution, LengthMismatch
from .config import NaHandling
from .distributions import QuantileDistribution, is_missing


# ======================================================================== #
#  Weighted interval score                                                  #
# ======================================================================== #

def wis(
    distribution: Optional[QuantileDistribution],
    actual: float,
    levels: Optional[Sequence[float]] = None,
    na_handling: NaHandling = NaHandling.IMPUTE,
) -> float:
    """
    Weighted interval score of one distribution against one actual value.

    Parameters
    ----------
    distribution : QuantileDistribution or None
        ``None`` / ``NaN`` scores as ``NaN``.
    actual : float
        Observed value; ``NaN`` scores as ``NaN``.
    levels : list of float, optional
        Score at these levels instead of the stored ones.
    na_handling : NaHandling
        What to do when a requested level is not stored: ``IMPUTE``
        (interpolate), ``DROP`` (skip it), ``PROPAGATE`` (return ``NaN``) or
        ``FAIL`` (raise `InvalidDistribution`).

    Returns
    -------
    float
    """
    if is_missing(distribution) or actual is None or np.isnan(actual):
        return float("nan")

    if levels is None:
        tau, q = distribution.levels, distribution.values
    else:
        tau = np.asarray(sorted(set(levels)), dtype=np.float64)
        stored = np.isin(tau, distribution.levels)
        handling = NaHandling(na_handling)
        if not stored.all() and handling != NaHandling.IMPUTE:
            if handling == NaHandling.PROPAGATE:
                return float("nan")
            if handling == NaHandling.FAIL:
                raise InvalidDistribution(
                    f"Levels {tau[~stored].tolist()} are not stored in {distribution!r}"
                )
            tau = tau[stored]
            if tau.size == 0:
                return float("nan")
        q = distribution.quantile_at(tau)

    return _wis_arrays(tau, np.asarray(q, dtype=np.float64), float(actual))


def _wis_arrays(tau: np.ndarray, q: np.ndarray, actual: float) -> float:
    diff = actual - q
    loss = np.maximum(tau * diff, (tau - 1.0) * diff)
    return float(2.0 * loss.mean())


def score_column(
    dists: Sequence[Optional[QuantileDistribution]],
    actuals: Sequence[float],
    levels: Optional[Sequence[float]] = None,
    na_handling: NaHandling = NaHandling.IMPUTE,
) -> np.ndarray:
    """Row-wise `wis` over a distribution column and matching actuals."""
    dists = list(dists)
    actuals = np.asarray(actuals, dtype=np.float64)
    if len(dists) != len(actuals):
        raise LengthMismatch(
            f"{len(dists)} distributions but {len(actuals)} actual values"
        )
    return np.array(
        [wis(d, a, levels, na_handling) for d, a in zip(dists, actuals)],
        dtype=np.float64,
    )


def interval_coverage(
    dists: Sequence[Optional[QuantileDistribution]],
    actuals: Sequence[float],
    level: float = 0.8,
) -> float:
    """
    Share of rows whose actual falls in the central *level* interval
    ``[q((1-level)/2), q((1+level)/2)]``.  Missing rows are ignored.
    """
    if not 0 < level < 1:
        raise ValueError(f"level must lie in (0, 1), got {level}")
    lo_p, hi_p = (1 - level) / 2, (1 + level) / 2
    hits = []
    for d, a in zip(dists, np.asarray(actuals, dtype=np.float64)):
        if is_missing(d) or np.isnan(a):
            continue
        lo, hi = d.quantile_at([lo_p, hi_p])
        hits.append(lo <= a <= hi)
    return float(np.mean(hits)) if hits else float("nan")


# ======================================================================== #
#  Point metrics                                                            #
# ======================================================================== #

def compute_metrics(
    y_true: np.ndarray,
    y_pred: np.ndarray,
) -> Dict[str, float]:
    """
    Point-forecast metrics over the rows where both values are present.

    Returns
    -------
    dict
        Keys: ``mae, rmse, r2, n``.
    """
    y_true = np.asarray(y_true, dtype=np.float64)
    y_pred = np.asarray(y_pred, dtype=np.float64)
    ok = ~(np.isnan(y_true) | np.isnan(y_pred))
    y_true, y_pred = y_true[ok], y_pred[ok]

    metrics: Dict[str, float] = {"n": int(ok.sum())}
    if metrics["n"] == 0:
        metrics.update(mae=float("nan"), rmse=float("nan"), r2=float("nan"))
        return metrics
    metrics["mae"] = float(mean_absolute_error(y_true, y_pred))
    metrics["rmse"] = float(np.sqrt(mean_squared_error(y_true, y_pred)))
    # R² needs at least two rows
    metrics["r2"] = float(r2_score(y_true, y_pred)) if len(y_true) > 1 else float("nan")
    return metrics


def score_forecasts(
    forecasts: pd.DataFrame,
    actual_col: str,
    distn_col: str = ".pred_distn",
    pred_col: Optional[str] = ".pred",
) -> pd.DataFrame:
    """Return a copy of *forecasts* with ``wis`` and ``ae`` columns added."""
    out = forecasts.copy()
    out["wis"] = score_column(out[distn_col], out[actual_col])
    if pred_col is not None and pred_col in out.columns:
        out["ae"] = (out[pred_col] - out[actual_col]).abs()
    return out
