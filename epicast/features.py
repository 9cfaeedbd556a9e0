"""
epicast.features
================
Panel shift generator: calendar-correct lag / ahead columns and trailing
window features over grouped time series.

Public API
----------
ShiftSpec.lag(columns, lags) / ShiftSpec.ahead(columns, aheads)
add_lags(df, columns, lags, ...)                → df + lag_{k}_{col}
add_aheads(df, columns, aheads, ...)            → df + ahead_{k}_{col}
build_shifted_features(df, specs, ...)          → (df, feature_meta)
add_rolling(df, column, window, stat, ...)      → df + roll_{stat}{w}_{col}
add_trailing_mean(df, column, window, ...)      → df + roll_mean{w}_{col}
add_growth_rate(df, column, horizon, ...)       → df + gr_{h}_{col}

Convention
----------
Offsets are signed time units: negative looks into the past, positive into
the future.  The value placed at row ``(key, t)`` for offset ``o`` is the
source value at row ``(key, t + o * unit)``, found by a keyed lookup on
``(key, time)``.  Row positions are never used, so a gap in a series yields
``NaN`` rather than a neighbouring row's value:

  ``lag_1`` at day 5 with day 4 missing → ``NaN`` (not the day-3 value).

Offset ``0`` is the identity lag (``lag_0_{col}``).  Rows keep their input
order; nothing is sorted or dropped here.  Ahead columns used as a training
target will be ``NaN`` on the trailing rows of each group, and the fitting
stage drops those rows.

Rolling windows include the reference time ``t``:
  ``roll_mean7`` uses ``[t-6, …, t]`` (whatever rows exist in that span).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pandas.api.types import is_datetime64_any_dtype, is_integer_dtype

from .checks import assert_columns_present, assert_unique_keys
from .config import KEY_COLS, TIME_COL

TimeUnit = Union[int, pd.Timedelta]

ROLLING_STATS = ("mean", "sum", "std", "min", "max")


# ======================================================================== #
#  Specifications                                                           #
# ======================================================================== #

@dataclass(frozen=True)
class ShiftSpec:
    """
    Source columns and the signed offsets to materialise for each.

    ``role`` is ``"predictor"`` or ``"outcome"``; it only decides which list
    of the feature metadata a column lands in.
    """
    columns: Tuple[str, ...]
    offsets: Tuple[int, ...]
    role: str = "predictor"

    def __post_init__(self):
        cols = (self.columns,) if isinstance(self.columns, str) else tuple(self.columns)
        offs = tuple(sorted({int(o) for o in self.offsets}))
        if not cols:
            raise ValueError("ShiftSpec needs at least one column.")
        if not offs:
            raise ValueError("ShiftSpec needs at least one offset.")
        if self.role not in ("predictor", "outcome"):
            raise ValueError(f"Unknown role: {self.role}")
        object.__setattr__(self, "columns", cols)
        object.__setattr__(self, "offsets", offs)

    @classmethod
    def lag(cls, columns, lags: Iterable[int], role: str = "predictor") -> "ShiftSpec":
        return cls(columns, tuple(-abs(int(k)) for k in lags), role)

    @classmethod
    def ahead(cls, columns, aheads: Iterable[int], role: str = "outcome") -> "ShiftSpec":
        return cls(columns, tuple(abs(int(k)) for k in aheads), role)

    @property
    def lags(self) -> List[int]:
        return [-o for o in self.offsets if o <= 0]

    @property
    def aheads(self) -> List[int]:
        return [o for o in self.offsets if o > 0]

    def pairs(self) -> List[Tuple[str, int]]:
        return [(c, o) for c in self.columns for o in self.offsets]

    def output_names(self) -> List[str]:
        return [shifted_name(c, o) for c, o in self.pairs()]


@dataclass(frozen=True)
class DerivedWindow:
    """
    A trailing-window feature and the history it needs.

    ``lookback`` is the number of time units before the reference time the
    feature reads: the window length for rolling statistics and twice the
    horizon for growth rates.
    """
    column: str
    window: int
    stat: str = "mean"

    def __post_init__(self):
        if self.window < 1:
            raise ValueError(f"window must be >= 1, got {self.window}")
        if self.stat not in ROLLING_STATS + ("growth_rate",):
            raise ValueError(f"Unknown rolling stat: {self.stat}")

    @property
    def lookback(self) -> int:
        return 2 * self.window if self.stat == "growth_rate" else self.window

    @property
    def name(self) -> str:
        if self.stat == "growth_rate":
            return f"gr_{self.window}_{self.column}"
        return f"roll_{self.stat}{self.window}_{self.column}"


def shifted_name(column: str, offset: int) -> str:
    """``(cases, -7) → 'lag_7_cases'``; ``(cases, 14) → 'ahead_14_cases'``."""
    if offset > 0:
        return f"ahead_{offset}_{column}"
    return f"lag_{-offset}_{column}"


# ======================================================================== #
#  Time handling                                                            #
# ======================================================================== #

def time_values(df: pd.DataFrame, time_col: str = TIME_COL) -> pd.Series:
    """Time column as integers or ``datetime64`` (dates are converted)."""
    t = df[time_col]
    if is_integer_dtype(t) or is_datetime64_any_dtype(t):
        return t
    return pd.to_datetime(t)


def resolve_time_unit(times: pd.Series, time_unit: Optional[TimeUnit] = None) -> TimeUnit:
    """
    One time unit for *times*: ``1`` for integer times, one day for dates.
    An integer *time_unit* on date times means that many days.
    """
    if is_integer_dtype(times):
        if time_unit is None:
            return 1
        if isinstance(time_unit, pd.Timedelta):
            raise TypeError("Integer time values need an integer time unit.")
        return int(time_unit)
    if time_unit is None:
        return pd.Timedelta(days=1)
    if isinstance(time_unit, (int, np.integer)):
        return pd.Timedelta(days=int(time_unit))
    return pd.Timedelta(time_unit)


# ======================================================================== #
#  Keyed lookup                                                             #
# ======================================================================== #

class _PanelIndex:
    """
    ``(key, time) → row`` mapping for one table, reused across columns.
    Lookups are hash-based (``reindex``), so gaps give ``NaN``.
    """

    def __init__(
        self,
        df: pd.DataFrame,
        key_cols: Sequence[str],
        time_col: str,
        time_unit: Optional[TimeUnit],
    ):
        assert_columns_present(df, list(key_cols) + [time_col])
        assert_unique_keys(df, key_cols, time_col)
        self.df = df
        self.keys = [df[k].to_numpy() for k in key_cols]
        self.times = time_values(df, time_col)
        self.unit = resolve_time_unit(self.times, time_unit)
        self.index = pd.MultiIndex.from_arrays(
            self.keys + [self.times.to_numpy()]
        )

    def lookup(self, column: str, offset: int) -> np.ndarray:
        src = pd.Series(self.df[column].to_numpy(), index=self.index)
        target = pd.MultiIndex.from_arrays(
            self.keys + [(self.times + offset * self.unit).to_numpy()]
        )
        return src.reindex(target).to_numpy()

    def window(self, column: str, start: int, stop: int) -> np.ndarray:
        """Matrix of lookups for offsets ``start .. stop`` (inclusive)."""
        return np.column_stack([
            self.lookup(column, o).astype(np.float64)
            for o in range(start, stop + 1)
        ])


# ======================================================================== #
#  Public entry points                                                      #
# ======================================================================== #

def build_shifted_features(
    df: pd.DataFrame,
    specs: Sequence[ShiftSpec],
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    time_unit: Optional[TimeUnit] = None,
    windows: Sequence[DerivedWindow] = (),
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Materialise every ``(column, offset)`` pair of *specs* and every derived
    window as new columns.

    Parameters
    ----------
    df : pd.DataFrame
        Panel table with *key_cols*, *time_col* and the source columns.
    specs : list of ShiftSpec
    key_cols : list of str
        Entity-key columns.
    time_col : str
    time_unit : int or pd.Timedelta, optional
        Size of one offset step.  Defaults to ``1`` for integer times and one
        day for dates.
    windows : list of DerivedWindow
        Trailing-window features, added before shifting so that they can be
        shifted in turn by naming them in a spec.

    Returns
    -------
    out : pd.DataFrame
        *df* plus the new columns, in input row order.
    feature_meta : dict
        ``{"predictors": [...], "outcomes": [...], "n_features": int, ...}``
    """
    out = df.copy()
    derived: List[str] = []
    if windows:
        pidx = _PanelIndex(out, key_cols, time_col, time_unit)
        for w in windows:
            assert_columns_present(out, [w.column])
            out[w.name] = _derived_values(pidx, w)
            derived.append(w.name)

    predictors: List[str] = []
    outcomes: List[str] = []
    pidx = _PanelIndex(out, key_cols, time_col, time_unit)
    for spec in specs:
        assert_columns_present(out, spec.columns)
        for col, offset in spec.pairs():
            name = shifted_name(col, offset)
            out[name] = pidx.lookup(col, offset)
            (outcomes if spec.role == "outcome" else predictors).append(name)

    meta = {
        "predictors": predictors,
        "outcomes": outcomes,
        "derived": derived,
        "n_features": len(predictors),
        "time_unit": str(pidx.unit),
    }
    return out, meta


def add_lags(
    df: pd.DataFrame,
    columns: Union[str, Sequence[str]],
    lags: Iterable[int],
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    time_unit: Optional[TimeUnit] = None,
) -> pd.DataFrame:
    """Add ``lag_{k}_{col}`` for every column and lag ``k >= 0``."""
    out, _ = build_shifted_features(
        df, [ShiftSpec.lag(columns, lags)], key_cols, time_col, time_unit
    )
    return out


def add_aheads(
    df: pd.DataFrame,
    columns: Union[str, Sequence[str]],
    aheads: Iterable[int],
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    time_unit: Optional[TimeUnit] = None,
) -> pd.DataFrame:
    """Add ``ahead_{k}_{col}`` for every column and ahead ``k``."""
    out, _ = build_shifted_features(
        df, [ShiftSpec.ahead(columns, aheads)], key_cols, time_col, time_unit
    )
    return out


def add_rolling(
    df: pd.DataFrame,
    column: str,
    window: int,
    stat: str = "mean",
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    time_unit: Optional[TimeUnit] = None,
) -> pd.DataFrame:
    """Add a trailing ``roll_{stat}{window}_{column}`` over ``[t-window+1, t]``."""
    out, _ = build_shifted_features(
        df, [], key_cols, time_col, time_unit,
        windows=[DerivedWindow(column, window, stat)],
    )
    return out


def add_trailing_mean(
    df: pd.DataFrame,
    column: str,
    window: int,
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    time_unit: Optional[TimeUnit] = None,
) -> pd.DataFrame:
    return add_rolling(df, column, window, "mean", key_cols, time_col, time_unit)


def add_growth_rate(
    df: pd.DataFrame,
    column: str,
    horizon: int = 7,
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    time_unit: Optional[TimeUnit] = None,
) -> pd.DataFrame:
    """
    Add ``gr_{horizon}_{column}``: relative change between the trailing
    mean over ``[t-h+1, t]`` and the one over ``[t-2h+1, t-h]``.
    """
    out, _ = build_shifted_features(
        df, [], key_cols, time_col, time_unit,
        windows=[DerivedWindow(column, horizon, "growth_rate")],
    )
    return out


# ======================================================================== #
#  Helpers                                                                  #
# ======================================================================== #

def _derived_values(pidx: _PanelIndex, w: DerivedWindow) -> np.ndarray:
    if w.stat == "growth_rate":
        h = w.window
        recent = _window_stat(pidx.window(w.column, -(h - 1), 0), "mean")
        before = _window_stat(pidx.window(w.column, -(2 * h - 1), -h), "mean")
        with np.errstate(divide="ignore", invalid="ignore"):
            gr = recent / before - 1.0
        gr[~np.isfinite(gr)] = np.nan
        return gr
    return _window_stat(pidx.window(w.column, -(w.window - 1), 0), w.stat)


def _window_stat(block: np.ndarray, stat: str) -> np.ndarray:
    """Row-wise statistic over the observed (non-NaN) cells of *block*."""
    observed = ~np.isnan(block)
    n = observed.sum(axis=1)
    out = np.full(block.shape[0], np.nan)
    has = n > 0
    if not has.any():
        return out
    sub = block[has]
    if stat == "sum":
        out[has] = np.nansum(sub, axis=1)
    elif stat == "mean":
        out[has] = np.nansum(sub, axis=1) / n[has]
    elif stat == "min":
        out[has] = np.nanmin(sub, axis=1)
    elif stat == "max":
        out[has] = np.nanmax(sub, axis=1)
    elif stat == "std":
        ok = n > 1
        idx = np.flatnonzero(has)[ok[has]]
        if idx.size:
            out[idx] = np.nanstd(block[idx], axis=1, ddof=1)
    else:
        raise ValueError(f"Unknown rolling stat: {stat}")
    return out
