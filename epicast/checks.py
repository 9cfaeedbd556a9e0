"""
epicast.checks
==============
Error kinds and data-shape guards shared by every module.

All failures that indicate a broken data-shape contract surface to the
caller as one of the exceptions below.  The only tolerated ambiguities
(wide pivot over rows with differing level sets, long pivot with the
length check disabled) are documented where they happen.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd


# ======================================================================== #
#  Error kinds                                                              #
# ======================================================================== #

class EpicastError(Exception):
    """Base class for every error raised by this package."""


class InvalidDistribution(EpicastError, ValueError):
    """Raised when (level, value) pairs do not form a valid distribution."""


class NotADistributionColumn(EpicastError, TypeError):
    """Raised when a selected column does not hold quantile distributions."""


class LengthMismatch(EpicastError, ValueError):
    """Raised when distribution columns disagree on per-row level counts."""


class InsufficientHistory(EpicastError, ValueError):
    """Raised when fewer trailing rows exist than a lookback requires."""


class NoVersionHistory(EpicastError, ValueError):
    """Raised when latency is requested on data without a version axis."""


# ======================================================================== #
#  Column guards                                                            #
# ======================================================================== #

def assert_columns_present(df: pd.DataFrame, columns: Iterable[str]) -> None:
    """Raise ``KeyError`` listing every column missing from *df*."""
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise KeyError(
            f"Columns {missing} not found in DataFrame columns {list(df.columns)}"
        )


def assert_unique_keys(
    df: pd.DataFrame,
    key_cols: Sequence[str],
    time_col: str,
) -> None:
    """
    ``(entity_key, time_value)`` pairs must be unique within one snapshot.

    Raises
    ------
    ValueError
        With up to five duplicated pairs in the message.
    """
    dup = df.duplicated(subset=list(key_cols) + [time_col], keep=False)
    if dup.any():
        sample = (
            df.loc[dup, list(key_cols) + [time_col]]
            .drop_duplicates()
            .head(5)
            .to_dict("records")
        )
        raise ValueError(
            f"Duplicate (key, {time_col}) pairs found ({int(dup.sum())} rows), "
            f"e.g. {sample}"
        )


# ======================================================================== #
#  Distribution guards                                                      #
# ======================================================================== #

def validate_levels_values(levels: np.ndarray, values: np.ndarray) -> None:
    """
    Check the structural invariants of one distribution.

    * same length, at least one level
    * levels strictly increasing inside (0, 1)
    * values non-decreasing (NaN values are not allowed)
    """
    errors: List[str] = []
    if levels.ndim != 1 or values.ndim != 1:
        errors.append("levels and values must be one-dimensional")
    elif len(levels) != len(values):
        errors.append(
            f"len(levels)={len(levels)} != len(values)={len(values)}"
        )
    elif len(levels) == 0:
        errors.append("at least one (level, value) pair is required")
    else:
        if np.isnan(levels).any():
            errors.append("levels contain NaN")
        elif ((levels <= 0) | (levels >= 1)).any():
            errors.append(f"levels must lie in (0, 1), got {levels.tolist()}")
        elif (np.diff(levels) <= 0).any():
            errors.append(
                f"levels must be unique and strictly increasing, got {levels.tolist()}"
            )
        if np.isnan(values).any():
            errors.append("values contain NaN")
        elif (np.diff(values) < 0).any():
            errors.append(
                f"values must be non-decreasing in level, got {values.tolist()}"
            )

    if errors:
        raise InvalidDistribution("Invalid quantile distribution: " + "; ".join(errors))


def assert_no_nan_in_features(
    df: pd.DataFrame,
    feature_cols: List[str],
    label: Optional[str] = None,
) -> None:
    """Verify that a design matrix has no NaN values."""
    nan_counts = df[feature_cols].isna().sum()
    has_nan = nan_counts[nan_counts > 0]
    if not has_nan.empty:
        where = f" ({label})" if label else ""
        raise ValueError(f"NaN values in features{where}:\n{has_nan}")
