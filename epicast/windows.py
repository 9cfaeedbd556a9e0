"""
epicast.windows
===============
Window-size resolution and time slicing for training / prediction.

Public API
----------
min_lookback(specs, windows)                     → int
min_lookahead(specs)                             → int
minimum_required_history(specs, windows)         → int
get_test_data(df, specs, reference_time, ...)    → trailing slice per key
check_enough_train_data(df, columns, n, ...)     → None (raises if short)
training_window(df, n_training, ...)             → most recent rows per key

Rules
-----
* ``min_lookback``  = max |offset| over lag offsets and ``lookback`` over
  derived windows.
* ``min_lookahead`` = max ahead offset.
* ``minimum_required_history`` = max(min_lookback, min_lookahead).  For lags
  ``{0, 7, 14}`` and ahead ``{14}`` this is ``14``.

The prediction slice for a reference time ``t`` spans the calendar interval
``[t - required * unit, t]`` of every key.  A key with fewer than
``required`` rows in that interval raises `InsufficientHistory`; rows are
never padded.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd

from .checks import InsufficientHistory, assert_columns_present
from .config import KEY_COLS, TIME_COL
from .features import (
    DerivedWindow,
    ShiftSpec,
    TimeUnit,
    resolve_time_unit,
    time_values,
)


# ======================================================================== #
#  1.  Window sizes                                                         #
# ======================================================================== #

def min_lookback(
    specs: Sequence[ShiftSpec],
    windows: Sequence[DerivedWindow] = (),
) -> int:
    sizes = [abs(o) for s in specs for o in s.offsets if o <= 0]
    sizes += [w.lookback for w in windows]
    return max(sizes, default=0)


def min_lookahead(specs: Sequence[ShiftSpec]) -> int:
    return max((o for s in specs for o in s.offsets if o > 0), default=0)


def minimum_required_history(
    specs: Sequence[ShiftSpec],
    windows: Sequence[DerivedWindow] = (),
) -> int:
    """
    Trailing time units of data, ending at the reference time, needed to
    compute every requested feature and target without truncation.
    """
    return max(min_lookback(specs, windows), min_lookahead(specs))


# ======================================================================== #
#  2.  Prediction-time slice                                                #
# ======================================================================== #

def get_test_data(
    df: pd.DataFrame,
    specs: Sequence[ShiftSpec],
    reference_time: Optional[Any] = None,
    windows: Sequence[DerivedWindow] = (),
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    time_unit: Optional[TimeUnit] = None,
) -> pd.DataFrame:
    """
    Slice the trailing history each key needs to predict at *reference_time*.

    Parameters
    ----------
    df : pd.DataFrame
    specs, windows :
        Everything the prediction row will be built from.
    reference_time : scalar, optional
        Defaults to the latest time in *df*.

    Returns
    -------
    pd.DataFrame
        Rows of *df* with ``reference_time - required * unit <= time <=
        reference_time``.

    Raises
    ------
    InsufficientHistory
        Naming every key with fewer than ``required`` rows in the slice.
    """
    assert_columns_present(df, list(key_cols) + [time_col])
    times = time_values(df, time_col)
    unit = resolve_time_unit(times, time_unit)
    ref = times.max() if reference_time is None else _coerce_time(reference_time, times)
    required = minimum_required_history(specs, windows)

    in_window = (times >= ref - required * unit) & (times <= ref)
    sliced = df.loc[in_window]

    if key_cols:
        all_keys = df[list(key_cols)].drop_duplicates()
        counts = (
            sliced.groupby(list(key_cols)).size().rename("n_rows").reset_index()
        )
        counts = all_keys.merge(counts, on=list(key_cols), how="left")
        counts["n_rows"] = counts["n_rows"].fillna(0).astype(int)
        short = counts[counts["n_rows"] < required]
        if not short.empty:
            raise InsufficientHistory(
                f"Prediction at {ref} needs {required} trailing time units of "
                f"data; keys with fewer rows: {short.to_dict('records')}"
            )
    elif len(sliced) < required:
        raise InsufficientHistory(
            f"Prediction at {ref} needs {required} trailing rows, "
            f"found {len(sliced)}."
        )

    return sliced


def _coerce_time(value: Any, times: pd.Series):
    if np.issubdtype(times.dtype, np.integer):
        return int(value)
    return pd.Timestamp(value)


# ======================================================================== #
#  3.  Training data guards                                                 #
# ======================================================================== #

def check_enough_train_data(
    df: pd.DataFrame,
    columns: Sequence[str],
    n: int,
    key_cols: Optional[Sequence[str]] = tuple(KEY_COLS),
) -> None:
    """
    Every key (or the whole table when *key_cols* is empty) must have at
    least *n* rows with all of *columns* observed.

    Raises
    ------
    InsufficientHistory
    """
    assert_columns_present(df, list(columns))
    complete = df[list(columns)].notna().all(axis=1)
    if key_cols:
        counts = complete.groupby([df[k] for k in key_cols]).sum()
        short = counts[counts < n]
        if not short.empty:
            raise InsufficientHistory(
                f"Fewer than {n} complete training rows for keys "
                f"{short.to_dict()} (columns {list(columns)})"
            )
    elif complete.sum() < n:
        raise InsufficientHistory(
            f"Only {int(complete.sum())} complete training rows, need {n} "
            f"(columns {list(columns)})"
        )


def training_window(
    df: pd.DataFrame,
    n_training: Optional[int],
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    time_unit: Optional[TimeUnit] = None,
) -> pd.DataFrame:
    """
    Keep the last *n_training* time units of each key's data, i.e. rows with
    ``time > max_time(key) - n_training * unit``.  ``None`` keeps all rows.
    """
    if n_training is None:
        return df
    if n_training < 1:
        raise ValueError(f"n_training must be >= 1, got {n_training}")
    times = time_values(df, time_col)
    unit = resolve_time_unit(times, time_unit)
    if key_cols:
        latest = times.groupby([df[k] for k in key_cols]).transform("max")
    else:
        latest = pd.Series(times.max(), index=df.index)
    keep = times > latest - n_training * unit
    return df.loc[keep]

