"""
epicast.latency
===============
Reporting-latency estimation and its application to forecasts.

Latency of a column is the typical number of time units between a value's
``time_value`` and the version at which it first appears.  A latency table
maps column → integer latency.

Public API
----------
compute_latency(history, columns, keys_to_ignore, epi_keys_checked)   → LatencyTable
snapshot_latency(df, columns, forecast_date, ...)                     → LatencyTable
latency_reference_dates(table, forecast_date, sign_shift, unit)       → {col: date}
adjust_specs_for_latency(specs, table, method, sign_shift)            → [ShiftSpec]
locf_fill(df, columns, forecast_date, ...)                            → DataFrame
extend_to_date(df, date, ...)                                         → DataFrame

Estimation policy
-----------------
For an archive, every ``(key, time)`` contributes one delta
``first_seen_version - time`` per column.  Deltas are summarised per group
of *epi_keys_checked* with the median (or ``"mean"`` / ``"max"``), and the
largest group summary is rounded **up** to whole time units.  An empty
*epi_keys_checked* pools all keys into one group.

Applying a table
----------------
``sign_shift`` multiplies every latency.  With ``sign_shift=1`` the
reference date of a column is ``forecast_date - latency`` and lags grow by
the latency; ``-1`` moves the other way, as needed for ahead shifts.
"""

from __future__ import annotations

import math
import warnings
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .archive import EpiArchive
from .checks import NoVersionHistory, assert_columns_present
from .config import KEY_COLS, TIME_COL, VERSION_COL, LatencyMethod
from .features import ShiftSpec, TimeUnit, resolve_time_unit, time_values

LatencyTable = Dict[str, int]

_SUMMARIES = {
    "median": lambda s: s.median(),
    "mean": lambda s: s.mean(),
    "max": lambda s: s.max(),
}


# ======================================================================== #
#  1.  Estimation                                                           #
# ======================================================================== #

def compute_latency(
    history: Union[EpiArchive, pd.DataFrame],
    columns: Sequence[str],
    keys_to_ignore: Optional[Mapping[str, Sequence[Any]]] = None,
    epi_keys_checked: Optional[Sequence[str]] = None,
    method: str = "median",
    time_unit: Optional[TimeUnit] = None,
) -> LatencyTable:
    """
    Estimate per-column latency from a versioned archive.

    Parameters
    ----------
    history : EpiArchive or pd.DataFrame
        A DataFrame must carry a ``version`` column.
    columns : list of str
        Columns to estimate.
    keys_to_ignore : mapping, optional
        ``{key_col: [values]}`` rows to exclude, e.g. ``{"geo_value": ["pr"]}``.
    epi_keys_checked : list of str, optional
        Key columns defining the groups summarised separately.  Defaults to
        the archive's key columns.
    method : str
        ``"median"`` (default), ``"mean"`` or ``"max"``.

    Returns
    -------
    dict
        ``{column: latency}``; columns never observed are omitted with a
        warning.

    Raises
    ------
    NoVersionHistory
        If *history* has no version dimension.
    """
    if method not in _SUMMARIES:
        raise ValueError(f"Unknown latency method='{method}'. Use {list(_SUMMARIES)}.")
    archive = _as_archive(history)
    if epi_keys_checked is None:
        epi_keys_checked = archive.key_cols

    seen = _drop_ignored(archive.first_seen(columns), keys_to_ignore)
    times = time_values(seen, archive.time_col)
    unit = resolve_time_unit(times, time_unit)

    table: LatencyTable = {}
    for col in columns:
        versions = seen[col]
        if is_datetime_like(times):
            versions = pd.to_datetime(versions)
        delta = _in_units(versions - times, unit)
        frame = pd.DataFrame({"delta": delta}, index=seen.index)
        frame = frame[frame["delta"].notna()]
        if frame.empty:
            warnings.warn(f"Column '{col}' never observed in archive; no latency.")
            continue
        if epi_keys_checked:
            per_group = frame["delta"].groupby(
                [seen.loc[frame.index, k] for k in epi_keys_checked]
            ).agg(_SUMMARIES[method])
            value = per_group.max()
        else:
            value = _SUMMARIES[method](frame["delta"])
        table[col] = int(math.ceil(value))
    return table


def snapshot_latency(
    df: pd.DataFrame,
    columns: Sequence[str],
    forecast_date: Any,
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    keys_to_ignore: Optional[Mapping[str, Sequence[Any]]] = None,
    epi_keys_checked: Optional[Sequence[str]] = None,
    time_unit: Optional[TimeUnit] = None,
) -> LatencyTable:
    """
    Latency of one as-of snapshot: ``forecast_date`` minus the last time
    with a non-missing value, taken as the maximum over checked key groups.
    """
    assert_columns_present(df, list(key_cols) + [time_col] + list(columns))
    df = _drop_ignored(df, keys_to_ignore)
    if epi_keys_checked is None:
        epi_keys_checked = list(key_cols)
    times = time_values(df, time_col)
    unit = resolve_time_unit(times, time_unit)
    fdate = pd.Timestamp(forecast_date) if is_datetime_like(times) else int(forecast_date)

    table: LatencyTable = {}
    for col in columns:
        observed = df[col].notna()
        if not observed.any():
            warnings.warn(f"Column '{col}' has no observed values; no latency.")
            continue
        last = times[observed]
        if epi_keys_checked:
            last = last.groupby([df.loc[observed, k] for k in epi_keys_checked]).max()
            oldest = last.min()
        else:
            oldest = last.max()
        table[col] = int(math.ceil(_in_units(pd.Series([fdate - oldest]), unit)[0]))
    return table


# ======================================================================== #
#  2.  Application                                                          #
# ======================================================================== #

def latency_reference_dates(
    table: LatencyTable,
    forecast_date: Any,
    sign_shift: int = 1,
    time_unit: TimeUnit = pd.Timedelta(days=1),
) -> Dict[str, Any]:
    """``{col: forecast_date - sign_shift * latency * unit}``."""
    if isinstance(time_unit, pd.Timedelta):
        fdate = pd.Timestamp(forecast_date)
    else:
        fdate = int(forecast_date)
    return {col: fdate - sign_shift * lat * time_unit for col, lat in table.items()}


def adjust_specs_for_latency(
    specs: Sequence[ShiftSpec],
    table: LatencyTable,
    method: LatencyMethod = LatencyMethod.EXTEND_LAGS,
    sign_shift: int = 1,
) -> List[ShiftSpec]:
    """
    Rewrite shift specifications so no feature reaches past the data that
    existed at the forecast date.

    * ``EXTEND_LAGS``  – every predictor offset of column ``c`` moves
      ``sign_shift * table[c]`` further into the past.
    * ``EXTEND_AHEAD`` – outcome offsets grow by ``sign_shift`` times the
      largest latency among the outcome columns.
    * ``LOCF``         – unchanged (use `locf_fill` on the data instead).

    Columns absent from *table* have latency 0.
    """
    method = LatencyMethod(method)
    if method == LatencyMethod.LOCF:
        return list(specs)

    adjusted: List[ShiftSpec] = []
    for spec in specs:
        if method == LatencyMethod.EXTEND_LAGS and spec.role == "predictor":
            for col in spec.columns:
                shift = sign_shift * table.get(col, 0)
                adjusted.append(
                    ShiftSpec((col,), tuple(o - shift for o in spec.offsets), spec.role)
                )
        elif method == LatencyMethod.EXTEND_AHEAD and spec.role == "outcome":
            shift = sign_shift * max((table.get(c, 0) for c in spec.columns), default=0)
            adjusted.append(
                ShiftSpec(spec.columns, tuple(o + shift for o in spec.offsets), spec.role)
            )
        else:
            adjusted.append(spec)
    return adjusted


def locf_fill(
    df: pd.DataFrame,
    columns: Sequence[str],
    forecast_date: Any,
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    time_unit: Optional[TimeUnit] = None,
) -> pd.DataFrame:
    """
    Extend every key up to *forecast_date* and carry the last observation
    of each column forward over the unreported tail.  Gaps before the last
    observation are left untouched.
    """
    assert_columns_present(df, list(columns))
    out = extend_to_date(df, forecast_date, key_cols, time_col, time_unit)

    for col in columns:
        last_obs = out[time_col].where(out[col].notna())
        last_obs = last_obs.groupby([out[k] for k in key_cols]).transform("max")
        tail = out[time_col] > last_obs
        filled = out.groupby(list(key_cols), sort=False)[col].ffill()
        out.loc[tail, col] = filled[tail]
    return out


def extend_to_date(
    df: pd.DataFrame,
    date: Any,
    key_cols: Sequence[str] = tuple(KEY_COLS),
    time_col: str = TIME_COL,
    time_unit: Optional[TimeUnit] = None,
) -> pd.DataFrame:
    """Append empty rows so every key has one row per time unit up to *date*."""
    assert_columns_present(df, list(key_cols) + [time_col])
    times = time_values(df, time_col)
    unit = resolve_time_unit(times, time_unit)
    fdate = pd.Timestamp(date) if is_datetime_like(times) else int(date)

    base = df.assign(**{time_col: times})
    latest = base.groupby(list(key_cols), sort=False)[time_col].max()
    extra = []
    for key, last in latest.items():
        steps = int(_in_units(pd.Series([fdate - last]), unit)[0])
        if steps <= 0:
            continue
        key = key if isinstance(key, tuple) else (key,)
        new_times = [last + i * unit for i in range(1, steps + 1)]
        extra.append(pd.DataFrame(
            {**{k: [v] * steps for k, v in zip(key_cols, key)}, time_col: new_times}
        ))
    out = pd.concat([base] + extra, ignore_index=True) if extra else base.copy()
    return out.sort_values(list(key_cols) + [time_col]).reset_index(drop=True)


# ======================================================================== #
#  Helpers                                                                  #
# ======================================================================== #

def _as_archive(history: Union[EpiArchive, pd.DataFrame]) -> EpiArchive:
    if isinstance(history, EpiArchive):
        return history
    if isinstance(history, pd.DataFrame):
        if VERSION_COL not in history.columns:
            raise NoVersionHistory(
                f"Input has no '{VERSION_COL}' column; latency estimation needs "
                "a versioned archive (use snapshot_latency for a single snapshot)."
            )
        return EpiArchive(history)
    raise NoVersionHistory(f"Cannot read version history from {type(history).__name__}.")


def _drop_ignored(
    df: pd.DataFrame, keys_to_ignore: Optional[Mapping[str, Sequence[Any]]]
) -> pd.DataFrame:
    if not keys_to_ignore:
        return df
    mask = pd.Series(False, index=df.index)
    for col, values in keys_to_ignore.items():
        assert_columns_present(df, [col])
        mask |= df[col].isin(list(values))
    return df.loc[~mask]


def is_datetime_like(times: pd.Series) -> bool:
    return not np.issubdtype(times.dtype, np.integer)


def _in_units(delta: pd.Series, unit: TimeUnit) -> np.ndarray:
    """Differences expressed as (float) multiples of *unit*."""
    if isinstance(unit, pd.Timedelta):
        return (pd.to_timedelta(delta) / unit).to_numpy(dtype=np.float64)
    return (delta / unit).to_numpy(dtype=np.float64)
