"""
epicast.config
==============
Central configuration: constants, enumerations, dataclasses and defaults.

Every forecast is fully described by a `ForecasterConfig` dataclass that
can be serialised alongside its output for reproducibility.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import json


# ---------------------------------------------------------------------------
# Column conventions
# ---------------------------------------------------------------------------
KEY_COLS: List[str] = ["geo_value"]
TIME_COL: str = "time_value"
VERSION_COL: str = "version"

# Long-pivot output names
VALUES_COL: str = "values"
LEVELS_COL: str = "quantile_levels"

# Prediction output names
PRED_COL: str = ".pred"
DISTN_COL: str = ".pred_distn"

DEFAULT_QUANTILE_LEVELS: List[float] = [0.05, 0.1, 0.25, 0.5, 0.75, 0.9, 0.95]


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class TailPolicy(str, Enum):
    """How `quantile_at` behaves outside the stored level range."""
    CONSTANT = "constant"   # hold the outermost stored value
    LINEAR = "linear"       # extend the slope of the two outermost points


class LatencyMethod(str, Enum):
    """How a latency table is applied to a forecast."""
    EXTEND_AHEAD = "extend_ahead"   # lengthen the ahead by the outcome latency
    EXTEND_LAGS = "extend_lags"     # lengthen every lag by its column latency
    LOCF = "locf"                   # carry last observation to forecast date


class NaHandling(str, Enum):
    """What `wis` does when a requested level is not stored."""
    IMPUTE = "impute"         # interpolate it
    DROP = "drop"             # score only the stored levels among those requested
    PROPAGATE = "propagate"   # return NaN
    FAIL = "fail"             # raise InvalidDistribution


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------
@dataclass
class LatencyConfig:
    """
    Parameters for latency-aware forecasting.

    ``sign_shift`` multiplies every latency before it is applied: lags look
    into the past and aheads into the future, so the two move in opposite
    calendar directions.
    """
    method: LatencyMethod = LatencyMethod.EXTEND_LAGS
    sign_shift: int = 1
    epi_keys_checked: Optional[List[str]] = None
    keys_to_ignore: Dict[str, List] = field(default_factory=dict)
    fixed_latency: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "method": self.method.value,
            "sign_shift": self.sign_shift,
            "epi_keys_checked": self.epi_keys_checked,
            "keys_to_ignore": self.keys_to_ignore,
            "fixed_latency": self.fixed_latency,
        }


@dataclass
class ForecasterConfig:
    """Master configuration for one autoregressive forecast."""

    # -- Features / target --
    lags: List[int] = field(default_factory=lambda: [0, 7, 14])
    ahead: int = 7
    smoothing_windows: List[int] = field(default_factory=list)

    # -- Probabilistic output --
    quantile_levels: List[float] = field(
        default_factory=lambda: list(DEFAULT_QUANTILE_LEVELS)
    )
    symmetrize: bool = True
    nonneg: bool = True

    # -- Training window --
    n_training: Optional[int] = None
    check_enough_data_n: Optional[int] = None

    # -- Dates --
    forecast_date: Optional[str] = None
    target_date: Optional[str] = None

    # -- Model --
    engine: str = "linear_reg"

    # -- Panel layout --
    key_cols: List[str] = field(default_factory=lambda: list(KEY_COLS))
    time_col: str = TIME_COL
    time_unit_days: int = 1

    # -- Latency --
    latency: Optional[LatencyConfig] = None

    # -- Reproducibility --
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def __post_init__(self):
        if self.ahead < 0:
            raise ValueError(f"ahead must be non-negative, got {self.ahead}")
        if any(lag < 0 for lag in self.lags):
            raise ValueError(f"lags must be non-negative, got {self.lags}")
        bad = [q for q in self.quantile_levels if not 0 < q < 1]
        if bad:
            raise ValueError(f"quantile_levels must lie in (0, 1), got {bad}")
        self.quantile_levels = sorted(set(self.quantile_levels))

    # ----- helpers -----
    def to_dict(self) -> dict:
        return {
            "lags": self.lags,
            "ahead": self.ahead,
            "smoothing_windows": self.smoothing_windows,
            "quantile_levels": self.quantile_levels,
            "symmetrize": self.symmetrize,
            "nonneg": self.nonneg,
            "n_training": self.n_training,
            "check_enough_data_n": self.check_enough_data_n,
            "forecast_date": self.forecast_date,
            "target_date": self.target_date,
            "engine": self.engine,
            "key_cols": self.key_cols,
            "time_col": self.time_col,
            "time_unit_days": self.time_unit_days,
            "latency": self.latency.to_dict() if self.latency else None,
            "created_at": self.created_at,
        }

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))

    @classmethod
    def load(cls, path: str | Path) -> "ForecasterConfig":
        raw = json.loads(Path(path).read_text())
        lat = raw.get("latency")
        if lat is not None:
            lat["method"] = LatencyMethod(lat["method"])
            raw["latency"] = LatencyConfig(**lat)
        return cls(**raw)
