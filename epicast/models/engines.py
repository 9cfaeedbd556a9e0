"""
epicast.models.engines
======================
The trainer / predictor interface the forecaster talks to.

A trainer has two capabilities:

* ``fit(X, y) → ModelHandle`` – opaque fitted state;
* ``predict(handle, X)`` – an array of point predictions, or one
  `QuantileDistribution` per row.

New backends are added by writing a class with these two methods (and a
``kind`` attribute), not by subclassing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import numpy as np
import pandas as pd

from ..distributions import QuantileDistribution
from .registry import get_engine, instantiate_model

Prediction = Union[np.ndarray, List[QuantileDistribution]]


@dataclass
class ModelHandle:
    """Fitted models keyed by level (``None`` for a single point model)."""
    engine: str
    models: Dict[Optional[float], Any]
    feature_names: List[str] = field(default_factory=list)
    n_train: int = 0


class Trainer(Protocol):
    kind: str

    def fit(self, X: pd.DataFrame, y: Sequence[float]) -> ModelHandle:
        ...

    def predict(self, handle: ModelHandle, X: pd.DataFrame) -> Prediction:
        ...


def _as_matrix(X: Union[pd.DataFrame, np.ndarray]) -> np.ndarray:
    return X.to_numpy(dtype=np.float64) if isinstance(X, pd.DataFrame) else np.asarray(X, dtype=np.float64)


def _feature_names(X: Union[pd.DataFrame, np.ndarray]) -> List[str]:
    return list(X.columns) if isinstance(X, pd.DataFrame) else []


class PointTrainer:
    """Any sklearn-compatible regressor producing one value per row."""

    kind = "point"

    def __init__(self, engine: str = "linear_reg", **params):
        self.entry = get_engine(engine)
        if self.entry["kind"] != "point":
            raise ValueError(f"Engine '{engine}' is not a point engine.")
        self.params = params

    def fit(self, X, y) -> ModelHandle:
        model = instantiate_model(self.entry, **self.params)
        model.fit(_as_matrix(X), np.asarray(y, dtype=np.float64))
        return ModelHandle(self.entry["name"], {None: model}, _feature_names(X), len(y))

    def predict(self, handle: ModelHandle, X) -> np.ndarray:
        return np.asarray(handle.models[None].predict(_as_matrix(X)), dtype=np.float64)


class QuantileTrainer:
    """
    One estimator per quantile level.  Independently fitted levels can
    cross, so each row's predictions are sorted into a monotone
    distribution.
    """

    kind = "quantile"

    def __init__(
        self,
        engine: str = "quantile_reg",
        quantile_levels: Sequence[float] = (0.1, 0.5, 0.9),
        **params,
    ):
        self.entry = get_engine(engine)
        if self.entry["kind"] != "quantile":
            raise ValueError(f"Engine '{engine}' is not a quantile engine.")
        self.quantile_levels = sorted(set(float(q) for q in quantile_levels))
        self.params = params

    def fit(self, X, y) -> ModelHandle:
        Xm = _as_matrix(X)
        ym = np.asarray(y, dtype=np.float64)
        models = {}
        for level in self.quantile_levels:
            model = instantiate_model(
                self.entry, **{**self.params, self.entry["level_param"]: level}
            )
            model.fit(Xm, ym)
            models[level] = model
        return ModelHandle(self.entry["name"], models, _feature_names(X), len(ym))

    def predict(self, handle: ModelHandle, X) -> List[QuantileDistribution]:
        Xm = _as_matrix(X)
        levels = sorted(handle.models)
        preds = np.column_stack([handle.models[lv].predict(Xm) for lv in levels])
        return [QuantileDistribution.from_unsorted(levels, row) for row in preds]


def make_trainer(
    engine: str,
    quantile_levels: Optional[Sequence[float]] = None,
    **params,
) -> Trainer:
    """Build the trainer matching *engine*'s kind."""
    entry = get_engine(engine)
    if entry["kind"] == "quantile":
        if not quantile_levels:
            raise ValueError(f"Quantile engine '{engine}' needs quantile_levels.")
        return QuantileTrainer(engine, quantile_levels, **params)
    return PointTrainer(engine, **params)
