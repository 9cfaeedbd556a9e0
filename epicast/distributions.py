"""
epicast.distributions
=====================
The quantile-distribution value type used for every probabilistic forecast.

A `QuantileDistribution` is one cell: a strictly increasing set of
probability levels in (0, 1) with non-decreasing predicted values.  A
*distribution column* is a ``pd.Series`` of ``object`` dtype holding one
such cell per row.  Cells in the same column may carry different level sets,
so the column is never treated as a rectangular matrix.

Interpolation
-------------
``quantile_at(p)`` returns stored values exactly at stored levels and
interpolates linearly between bracketing levels.  Outside the stored range
the default `TailPolicy.CONSTANT` holds the outermost value (so
``quantile_at(0)`` is the lowest and ``quantile_at(1)`` the highest stored
value).  `TailPolicy.LINEAR` instead extends the slope of the two outermost
points, which is unbounded and can be negative for count data.

Public API
----------
QuantileDistribution(levels, values)          → validated, immutable cell
QuantileDistribution.from_unsorted(...)       → sorted / de-duplicated cell
dist_quantiles(values, levels)                → distribution column
is_distribution_column(series)                → bool
"""

from __future__ import annotations

from numbers import Real
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .checks import InvalidDistribution, validate_levels_values
from .config import TailPolicy

ArrayLike = Union[Sequence[float], np.ndarray]


class QuantileDistribution:
    """
    Immutable set of ``(level, value)`` pairs for one observation.

    Parameters
    ----------
    levels : array-like of float
        Strictly increasing probabilities in (0, 1).
    values : array-like of float
        Predicted values, same length as *levels*, non-decreasing.

    Raises
    ------
    InvalidDistribution
        If lengths differ, levels are not sorted / unique / inside (0, 1),
        or values decrease.
    """

    __slots__ = ("_levels", "_values")

    def __init__(self, levels: ArrayLike, values: ArrayLike):
        lv = np.array(levels, dtype=np.float64, ndmin=1)
        vv = np.array(values, dtype=np.float64, ndmin=1)
        validate_levels_values(lv, vv)
        lv.flags.writeable = False
        vv.flags.writeable = False
        self._levels = lv
        self._values = vv

    @classmethod
    def from_unsorted(
        cls, levels: ArrayLike, values: ArrayLike
    ) -> "QuantileDistribution":
        """
        Build a distribution from raw model output.

        Pairs with a NaN value are dropped, levels are sorted, repeated
        levels keep their first value, and values are sorted so the result
        is monotone.  Used internally when quantiles come from residuals or
        from one independently fitted model per level.
        """
        lv = np.array(levels, dtype=np.float64, ndmin=1)
        vv = np.array(values, dtype=np.float64, ndmin=1)
        if lv.shape != vv.shape:
            raise InvalidDistribution(
                f"len(levels)={lv.size} != len(values)={vv.size}"
            )
        keep = ~np.isnan(vv)
        lv, vv = lv[keep], vv[keep]
        order = np.argsort(lv, kind="stable")
        lv = lv[order]
        _, first = np.unique(lv, return_index=True)
        return cls(lv[first], np.sort(vv[order][first]))

    # ------------------------------------------------------------------ #
    #  Accessors                                                           #
    # ------------------------------------------------------------------ #

    @property
    def levels(self) -> np.ndarray:
        return self._levels

    @property
    def values(self) -> np.ndarray:
        return self._values

    def __len__(self) -> int:
        return len(self._levels)

    def __iter__(self) -> Iterator[Tuple[float, float]]:
        return zip(self._levels.tolist(), self._values.tolist())

    def to_dict(self) -> Dict[float, float]:
        return dict(iter(self))

    def __repr__(self) -> str:
        pairs = ", ".join(f"{lv:g}: {v:g}" for lv, v in self)
        return f"QuantileDistribution({{{pairs}}})"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, QuantileDistribution):
            return NotImplemented
        return (
            len(self) == len(other)
            and bool(np.array_equal(self._levels, other._levels))
            and bool(np.array_equal(self._values, other._values))
        )

    def __hash__(self) -> int:
        return hash((self._levels.tobytes(), self._values.tobytes()))

    # ------------------------------------------------------------------ #
    #  Quantile lookup                                                     #
    # ------------------------------------------------------------------ #

    def quantile_at(
        self,
        level: Union[float, ArrayLike],
        tail: TailPolicy = TailPolicy.CONSTANT,
    ) -> Union[float, np.ndarray]:
        """
        Value at probability *level* (scalar or array) in [0, 1].

        Stored levels return the stored value exactly; levels in between
        are linearly interpolated; levels outside the stored range follow
        *tail*.
        """
        scalar = np.ndim(level) == 0
        p = np.array(level, dtype=np.float64, ndmin=1)
        if np.isnan(p).any() or ((p < 0) | (p > 1)).any():
            raise ValueError(f"Probability levels must lie in [0, 1], got {p.tolist()}")

        lv, vv = self._levels, self._values
        out = np.interp(p, lv, vv)

        if TailPolicy(tail) == TailPolicy.LINEAR and len(lv) > 1:
            lo = p < lv[0]
            if lo.any():
                slope = (vv[1] - vv[0]) / (lv[1] - lv[0])
                out[lo] = vv[0] + (p[lo] - lv[0]) * slope
            hi = p > lv[-1]
            if hi.any():
                slope = (vv[-1] - vv[-2]) / (lv[-1] - lv[-2])
                out[hi] = vv[-1] + (p[hi] - lv[-1]) * slope

        # exact lookups must not carry interpolation round-off
        idx = np.clip(np.searchsorted(lv, p), 0, len(lv) - 1)
        exact = lv[idx] == p
        out[exact] = vv[idx[exact]]

        return float(out[0]) if scalar else out

    def median(self) -> float:
        return self.quantile_at(0.5)

    def mean(self) -> float:
        """
        Mean of the piecewise-linear quantile function on the stored range,
        with constant tails outside it.
        """
        lv, vv = self._levels, self._values
        if len(lv) == 1:
            return float(vv[0])
        inner = np.sum(np.diff(lv) * (vv[1:] + vv[:-1]) / 2.0)
        return float(inner + vv[0] * lv[0] + vv[-1] * (1.0 - lv[-1]))

    def extrapolate(
        self,
        levels: ArrayLike,
        tail: TailPolicy = TailPolicy.CONSTANT,
    ) -> "QuantileDistribution":
        """New distribution over the union of stored and requested *levels*."""
        req = np.array(levels, dtype=np.float64, ndmin=1)
        if ((req <= 0) | (req >= 1)).any():
            raise InvalidDistribution(
                f"Requested levels must lie in (0, 1), got {req.tolist()}"
            )
        union = np.union1d(self._levels, req)
        return QuantileDistribution(union, self.quantile_at(union, tail=tail))

    # ------------------------------------------------------------------ #
    #  Scalar arithmetic                                                   #
    # ------------------------------------------------------------------ #

    def __mul__(self, other: Real) -> "QuantileDistribution":
        if not isinstance(other, Real):
            return NotImplemented
        if other >= 0:
            return QuantileDistribution(self._levels, self._values * other)
        # a negative factor mirrors the distribution
        return QuantileDistribution(
            1.0 - self._levels[::-1], self._values[::-1] * other
        )

    __rmul__ = __mul__

    def __truediv__(self, other: Real) -> "QuantileDistribution":
        if not isinstance(other, Real):
            return NotImplemented
        if other == 0:
            raise ZeroDivisionError("division of a distribution by zero")
        return self * (1.0 / other)

    def __add__(self, other: Real) -> "QuantileDistribution":
        if not isinstance(other, Real):
            return NotImplemented
        return QuantileDistribution(self._levels, self._values + other)

    __radd__ = __add__

    def __sub__(self, other: Real) -> "QuantileDistribution":
        if not isinstance(other, Real):
            return NotImplemented
        return self + (-other)

    def __neg__(self) -> "QuantileDistribution":
        return self * -1

    def clip(
        self, lower: Optional[float] = None, upper: Optional[float] = None
    ) -> "QuantileDistribution":
        """Threshold the values (e.g. ``clip(lower=0)`` for counts)."""
        return QuantileDistribution(self._levels, np.clip(self._values, lower, upper))


# ======================================================================== #
#  Distribution columns                                                     #
# ======================================================================== #

def is_missing(cell: Any) -> bool:
    """True for an empty cell (``None`` / ``NaN``)."""
    if cell is None:
        return True
    return isinstance(cell, float) and np.isnan(cell)


def dist_quantiles(
    values: Sequence[ArrayLike],
    levels: Union[ArrayLike, Sequence[ArrayLike]],
    index: Optional[pd.Index] = None,
    name: Optional[str] = None,
) -> pd.Series:
    """
    Build a distribution column.

    Parameters
    ----------
    values : sequence of array-like
        One value vector per row.
    levels : array-like or sequence of array-like
        Either one level vector broadcast to every row, or one per row.

    Examples
    --------
    >>> col = dist_quantiles([[1, 2, 3], [1, 3]], [[.25, .5, .75], [.25, .75]])
    >>> len(col[1])
    2
    """
    values = list(values)
    if len(levels) > 0 and np.ndim(levels[0]) == 0:
        per_row = [levels] * len(values)
    else:
        per_row = list(levels)
        if len(per_row) != len(values):
            raise InvalidDistribution(
                f"Got {len(values)} value vectors but {len(per_row)} level vectors"
            )
    cells = [
        QuantileDistribution(lv, vv) for lv, vv in zip(per_row, values)
    ]
    return pd.Series(cells, index=index, name=name, dtype=object)


def is_distribution_column(series: pd.Series) -> bool:
    """True if every non-missing cell is a `QuantileDistribution`."""
    if series.dtype != object:
        return False
    seen = False
    for cell in series:
        if is_missing(cell):
            continue
        if not isinstance(cell, QuantileDistribution):
            return False
        seen = True
    return seen


def distribution_levels(series: pd.Series) -> List[float]:
    """Sorted union of every level present in a distribution column."""
    found: set = set()
    for cell in series:
        if not is_missing(cell):
            found.update(cell.levels.tolist())
    return sorted(found)
