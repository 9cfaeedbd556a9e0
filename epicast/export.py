"""
epicast.export
==============
Writing forecasts, fitted models and run metadata to disk.

Distribution columns hold Python objects, so forecasts are written in wide
form (one column per level, see `pivot_quantiles_wider`) and read back
into distribution columns with `load_forecasts`.

Folder layout
-------------
::

    runs/
        summary_results.csv           ← one row per forecast run
        fc_{forecast_date}/
            forecasts.parquet
            metadata.json
            model.joblib              (optional)
"""

from __future__ import annotations

import json
import platform
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import joblib
import numpy as np
import pandas as pd

from .config import DISTN_COL, ForecasterConfig
from .distributions import QuantileDistribution, is_distribution_column
from .models.engines import ModelHandle
from .pivot import pivot_quantiles_wider


# ======================================================================== #
#  Forecast tables                                                          #
# ======================================================================== #

def save_forecasts(
    df: pd.DataFrame,
    path: str | Path,
    fmt: str = "parquet",
    distn_col: str = DISTN_COL,
) -> str:
    """
    Save a forecast table with its distribution column pivoted wide.

    Level columns are named ``{distn_col}_{level}``.

    Returns
    -------
    str  – actual path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if distn_col in df.columns and is_distribution_column(df[distn_col]):
        wide = pivot_quantiles_wider(df, distn_col)
        levels = [c for c in wide.columns if c not in df.columns]
        df = wide.rename(columns={c: f"{distn_col}_{c}" for c in levels})

    if fmt == "parquet":
        path = path.with_suffix(".parquet")
        df.to_parquet(path, index=False)
    elif fmt == "csv":
        path = path.with_suffix(".csv")
        df.to_csv(path, index=False)
    else:
        raise ValueError(f"Unsupported format: {fmt}")

    return str(path)


def load_forecasts(path: str | Path, distn_col: str = DISTN_COL) -> pd.DataFrame:
    """Read a table written by `save_forecasts` and rebuild the distributions."""
    path = Path(path)
    df = pd.read_parquet(path) if path.suffix == ".parquet" else pd.read_csv(path)

    prefix = f"{distn_col}_"
    level_cols = [c for c in df.columns if c.startswith(prefix)]
    if not level_cols:
        return df
    levels = np.array([float(c[len(prefix):]) for c in level_cols])
    block = df[level_cols].to_numpy(dtype=np.float64)

    cells: List[Optional[QuantileDistribution]] = []
    for row in block:
        ok = ~np.isnan(row)
        cells.append(QuantileDistribution(levels[ok], row[ok]) if ok.any() else None)
    out = df.drop(columns=level_cols)
    out[distn_col] = pd.Series(cells, index=df.index, dtype=object)
    return out


# ======================================================================== #
#  Models                                                                   #
# ======================================================================== #

def save_model(handle: ModelHandle, path: str | Path) -> str:
    path = Path(path).with_suffix(".joblib")
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(handle, path)
    return str(path)


def load_model(path: str | Path) -> ModelHandle:
    handle = joblib.load(path)
    if not isinstance(handle, ModelHandle):
        raise TypeError(f"{path} does not hold a ModelHandle (got {type(handle).__name__})")
    return handle


# ======================================================================== #
#  Run metadata                                                             #
# ======================================================================== #

def save_run_metadata(
    run_dir: str | Path,
    config: ForecasterConfig,
    feature_meta: Dict,
    latency_table: Optional[Dict[str, int]] = None,
    metrics: Optional[Dict[str, Any]] = None,
    extra: Optional[Dict] = None,
) -> str:
    """
    Write ``metadata.json`` for one forecast run.

    Returns the path of the written file.
    """
    run_dir = Path(run_dir)
    run_dir.mkdir(parents=True, exist_ok=True)

    meta = {
        "timestamp": datetime.now().isoformat(),
        "config": config.to_dict(),
        "feature_meta": _make_serialisable(feature_meta),
        "latency_table": _make_serialisable(latency_table or {}),
        "metrics": _make_serialisable(metrics or {}),
        "environment": {
            "python": platform.python_version(),
            "platform": platform.platform(),
        },
    }
    if extra:
        meta.update(_make_serialisable(extra))

    out_path = run_dir / "metadata.json"
    out_path.write_text(json.dumps(meta, indent=2, default=str))
    return str(out_path)


def update_summary_table(
    output_dir: str | Path,
    row: Dict[str, Any],
    filename: str = "summary_results.csv",
) -> pd.DataFrame:
    """
    Append a result row to the summary CSV.  Creates the file if needed.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    csv_path = output_dir / filename

    new_row = pd.DataFrame([row])
    if csv_path.exists():
        combined = pd.concat([pd.read_csv(csv_path), new_row], ignore_index=True)
    else:
        combined = new_row

    combined.to_csv(csv_path, index=False)
    return combined


def _make_serialisable(obj: Any) -> Any:
    """Recursively convert numpy types for JSON serialisation."""
    if isinstance(obj, dict):
        return {str(k): _make_serialisable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_make_serialisable(v) for v in obj]
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    return obj
