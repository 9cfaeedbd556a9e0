"""
epicast.pivot
=============
Reshape distribution columns to and from ordinary tabular form.

Public API
----------
pivot_quantiles_wider(df, columns, strict)                → one column per level
pivot_quantiles_longer(df, columns, ignore_length_check)  → one row per level
extrapolate_quantiles(df, column, levels, tail)           → column extended to levels

Wide form
---------
Each distinct level found in a source column becomes a new column named by
the level (``"0.25"``), or ``"{col}_{level}"`` when several source columns
are pivoted together.  Cells hold the stored value at exactly that level;
nothing is interpolated.  Rows whose level set lacks a level get ``NaN``.

Known limitation: when rows carry *partially* overlapping level sets the
result is ragged (``NaN`` wherever a row lacks a level).  This is accepted
by default; ``strict=True`` turns any disagreement into `LengthMismatch`.

Long form
---------
One output row per (input row × position), with the level and value at that
position.  By default all selected columns must hold the same number of
levels on every row.  ``ignore_length_check=True`` pairs the i-th level of
every column by **position**, regardless of whether the level values agree,
and pads shorter columns with ``NaN``.

All functions return new frames; the input is never modified.
"""

from __future__ import annotations

from typing import Dict, List, Sequence, Union

import numpy as np
import pandas as pd

from .checks import LengthMismatch, NotADistributionColumn, assert_columns_present
from .config import LEVELS_COL, VALUES_COL, TailPolicy
from .distributions import distribution_levels, is_distribution_column, is_missing

Columns = Union[str, Sequence[str]]


def _select(df: pd.DataFrame, columns: Columns) -> List[str]:
    cols = [columns] if isinstance(columns, str) else list(columns)
    if not cols:
        raise ValueError("At least one distribution column must be selected.")
    assert_columns_present(df, cols)
    bad = [c for c in cols if not is_distribution_column(df[c])]
    if bad:
        raise NotADistributionColumn(
            f"Columns {bad} do not hold quantile distributions "
            f"(dtypes: {[str(df[c].dtype) for c in bad]})"
        )
    return cols


def level_label(level: float) -> str:
    """
    Column label for a level: ``0.25 → '0.25'``.  The shortest repr of the
    float, so distinct levels never share a label.
    """
    return repr(float(level))


# ======================================================================== #
#  Wide                                                                     #
# ======================================================================== #

def pivot_quantiles_wider(
    df: pd.DataFrame,
    columns: Columns,
    strict: bool = False,
) -> pd.DataFrame:
    """
    Replace each selected distribution column by one column per level.

    Parameters
    ----------
    df : pd.DataFrame
    columns : str or list of str
        Distribution columns to pivot.
    strict : bool
        Raise `LengthMismatch` when rows of one column disagree on their
        level sets instead of filling ``NaN``.

    Returns
    -------
    pd.DataFrame
        The unselected columns followed by the level columns.

    Raises
    ------
    NotADistributionColumn
        If a selected column does not hold distributions.
    """
    cols = _select(df, columns)
    decorate = len(cols) > 1

    out = df.drop(columns=cols).copy()
    new_cols: Dict[str, np.ndarray] = {}

    for col in cols:
        series = df[col]
        all_levels = distribution_levels(series)
        if strict:
            _assert_uniform_levels(series, col, all_levels)

        position = {lv: j for j, lv in enumerate(all_levels)}
        block = np.full((len(series), len(all_levels)), np.nan)
        for i, cell in enumerate(series):
            if is_missing(cell):
                continue
            for lv, v in cell:
                block[i, position[lv]] = v

        for j, lv in enumerate(all_levels):
            name = f"{col}_{level_label(lv)}" if decorate else level_label(lv)
            new_cols[name] = block[:, j]

    clash = [c for c in new_cols if c in out.columns]
    if clash:
        raise ValueError(
            f"Pivoted level columns {clash} collide with existing columns."
        )
    return pd.concat(
        [out, pd.DataFrame(new_cols, index=df.index)], axis=1
    )


def _assert_uniform_levels(series: pd.Series, col: str, all_levels: List[float]) -> None:
    expected = np.asarray(all_levels)
    bad_rows = [
        i for i, cell in enumerate(series)
        if not is_missing(cell) and not np.array_equal(cell.levels, expected)
    ]
    if bad_rows:
        raise LengthMismatch(
            f"Column '{col}': rows {bad_rows[:10]} do not carry the full level "
            f"set {all_levels}."
        )


# ======================================================================== #
#  Long                                                                     #
# ======================================================================== #

def pivot_quantiles_longer(
    df: pd.DataFrame,
    columns: Columns,
    ignore_length_check: bool = False,
) -> pd.DataFrame:
    """
    Expand the selected distribution columns to one row per level.

    Parameters
    ----------
    df : pd.DataFrame
    columns : str or list of str
        Distribution columns to pivot.
    ignore_length_check : bool
        Pair levels by position even when columns hold different numbers of
        levels on a row; shorter columns are padded with ``NaN``.

    Returns
    -------
    pd.DataFrame
        Unselected columns (repeated) followed by ``values`` and
        ``quantile_levels`` for a single column, or ``{col}_values`` and
        ``{col}_quantile_levels`` per column when several are selected.

    Raises
    ------
    NotADistributionColumn
        If a selected column does not hold distributions.
    LengthMismatch
        If row-wise level counts differ and *ignore_length_check* is False.
    """
    cols = _select(df, columns)
    decorate = len(cols) > 1

    counts = np.column_stack([
        [0 if is_missing(cell) else len(cell) for cell in df[c]] for c in cols
    ])
    if not ignore_length_check:
        bad = np.flatnonzero(counts.min(axis=1) != counts.max(axis=1))
        if bad.size:
            detail = {
                int(i): dict(zip(cols, counts[i].tolist())) for i in bad[:5]
            }
            raise LengthMismatch(
                "Selected distribution columns hold different numbers of levels "
                f"on {bad.size} row(s), e.g. {detail}.  Pass "
                "ignore_length_check=True to pair levels by position."
            )

    n_out = counts.max(axis=1)
    out = (
        df.drop(columns=cols)
        .iloc[np.repeat(np.arange(len(df)), n_out)]
        .reset_index(drop=True)
    )

    for col in cols:
        vals_parts: List[np.ndarray] = []
        lvls_parts: List[np.ndarray] = []
        for cell, n in zip(df[col], n_out):
            if n == 0:
                continue
            v = np.full(n, np.nan)
            q = np.full(n, np.nan)
            if not is_missing(cell):
                v[: len(cell)] = cell.values
                q[: len(cell)] = cell.levels
            vals_parts.append(v)
            lvls_parts.append(q)

        vname = f"{col}_{VALUES_COL}" if decorate else VALUES_COL
        qname = f"{col}_{LEVELS_COL}" if decorate else LEVELS_COL
        out[vname] = np.concatenate(vals_parts) if vals_parts else np.array([])
        out[qname] = np.concatenate(lvls_parts) if lvls_parts else np.array([])

    return out


# ======================================================================== #
#  Extrapolation                                                            #
# ======================================================================== #

def extrapolate_quantiles(
    df: pd.DataFrame,
    column: str,
    levels: Sequence[float],
    tail: TailPolicy = TailPolicy.CONSTANT,
) -> pd.DataFrame:
    """
    Return a copy of *df* whose distribution *column* additionally carries
    *levels* (interpolated, or extrapolated per *tail*).
    """
    _select(df, column)
    out = df.copy()
    out[column] = pd.Series(
        [
            cell if is_missing(cell) else cell.extrapolate(levels, tail=tail)
            for cell in df[column]
        ],
        index=df.index,
        dtype=object,
    )
    return out
