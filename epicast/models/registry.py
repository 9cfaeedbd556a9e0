"""
epicast.models.registry
=======================
Catalogue of the regression engines a forecaster can train.

Each entry describes:
  • class path (imported lazily, so optional backends stay optional)
  • output kind (``point`` vs ``quantile``)
  • default hyperparameters
  • for quantile engines, the constructor argument that sets the level

Engines
-------
==========================  ========  =====================================
Name                        Kind      Notes
==========================  ========  =====================================
linear_reg                  point     OLS; the classic AR baseline
ridge                       point     L2-regularised OLS
random_forest               point     sklearn RandomForestRegressor
lightgbm                    point     gradient-boosted trees (lightgbm)
xgboost                     point     gradient-boosted trees (xgboost)
quantile_reg                quantile  linear quantile regression per level
gradient_boosting_quantile  quantile  sklearn GBR with quantile loss
lightgbm_quantile           quantile  lightgbm with quantile objective
==========================  ========  =====================================
"""

from __future__ import annotations

import importlib
import warnings
from typing import Any, Dict, List, Optional


# ======================================================================== #
#  Registry structure                                                       #
# ======================================================================== #

def _entry(
    cls_path: str,
    name: str,
    kind: str = "point",
    default_params: Optional[Dict] = None,
    level_param: Optional[str] = None,
    notes: str = "",
) -> Dict[str, Any]:
    return {
        "cls_path": cls_path,
        "name": name,
        "kind": kind,  # "point" | "quantile"
        "default_params": default_params or {},
        "level_param": level_param,
        "notes": notes,
    }


# ======================================================================== #
#  The registry                                                             #
# ======================================================================== #

ENGINES: Dict[str, Dict[str, Any]] = {
    e["name"]: e
    for e in [
        _entry(
            "sklearn.linear_model.LinearRegression", "linear_reg",
            notes="Residual quantiles give the predictive distribution.",
        ),
        _entry(
            "sklearn.linear_model.Ridge", "ridge",
            default_params={"alpha": 1.0},
        ),
        _entry(
            "sklearn.ensemble.RandomForestRegressor", "random_forest",
            default_params={
                "n_estimators": 300,
                "min_samples_leaf": 5,
                "n_jobs": -1,
                "random_state": 42,
            },
        ),
        _entry(
            "lightgbm.LGBMRegressor", "lightgbm",
            default_params={
                "n_estimators": 300,
                "learning_rate": 0.05,
                "num_leaves": 31,
                "random_state": 42,
                "verbosity": -1,
            },
            notes="Requires lightgbm package.",
        ),
        _entry(
            "xgboost.XGBRegressor", "xgboost",
            default_params={
                "n_estimators": 300,
                "learning_rate": 0.05,
                "max_depth": 6,
                "random_state": 42,
                "verbosity": 0,
            },
            notes="Requires xgboost package.",
        ),
        _entry(
            "sklearn.linear_model.QuantileRegressor", "quantile_reg",
            kind="quantile",
            default_params={"alpha": 0.0, "solver": "highs"},
            level_param="quantile",
            notes="One linear programme per level.",
        ),
        _entry(
            "sklearn.ensemble.GradientBoostingRegressor", "gradient_boosting_quantile",
            kind="quantile",
            default_params={
                "loss": "quantile",
                "n_estimators": 200,
                "max_depth": 3,
                "random_state": 42,
            },
            level_param="alpha",
        ),
        _entry(
            "lightgbm.LGBMRegressor", "lightgbm_quantile",
            kind="quantile",
            default_params={
                "objective": "quantile",
                "n_estimators": 300,
                "learning_rate": 0.05,
                "random_state": 42,
                "verbosity": -1,
            },
            level_param="alpha",
            notes="Requires lightgbm package.",
        ),
    ]
}


# ======================================================================== #
#  Public helpers                                                           #
# ======================================================================== #

def get_engine_registry(kinds: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """
    Return the engine entries, optionally filtered by kind.

    Parameters
    ----------
    kinds : list of str, optional
        E.g. ``['quantile']``.  None = all engines.
    """
    if kinds is None:
        return list(ENGINES.values())
    unknown = set(kinds) - {"point", "quantile"}
    if unknown:
        warnings.warn(f"Unknown engine kinds: {sorted(unknown)}")
    return [e for e in ENGINES.values() if e["kind"] in kinds]


def get_engine(name: str) -> Dict[str, Any]:
    """Look up an engine entry by its unique name."""
    try:
        return ENGINES[name]
    except KeyError:
        raise KeyError(
            f"Engine '{name}' not found in registry. Choose from {list(ENGINES)}."
        ) from None


def instantiate_model(entry: Dict[str, Any], **overrides) -> Any:
    """
    Dynamically import and instantiate an estimator from its registry entry.

    Parameters
    ----------
    entry : dict
        As returned by :func:`get_engine`.
    **overrides
        Override any default hyperparameter (e.g. the quantile level).

    Returns
    -------
    unfitted estimator
    """
    cls = _import_class(entry["cls_path"])
    params = {**entry["default_params"], **overrides}
    return cls(**params)


def _import_class(dotted_path: str):
    """Import a class from a dotted module path like 'sklearn.linear_model.Ridge'."""
    parts = dotted_path.rsplit(".", 1)
    if len(parts) != 2:
        raise ImportError(f"Invalid class path: {dotted_path}")
    module_path, class_name = parts
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ImportError(
            f"Cannot import module '{module_path}' — "
            f"is the package installed?  ({e})"
        )
    return getattr(module, class_name)
