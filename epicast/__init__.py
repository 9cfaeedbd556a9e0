"""
epicast — Panel forecasting core for epidemiological surveillance data.

Flow:
  versioned archive → latency table → lag / ahead shifts → training window
  → trainer fit → trailing test slice → quantile distributions → WIS

Modules
-------
config        : Constants, enums and the ForecasterConfig dataclass
checks        : Error types and table assertions
distributions : QuantileDistribution value type and distribution columns
pivot         : Wide / long reshaping of distribution columns
features      : Calendar-correct lag / ahead columns, trailing windows
windows       : Minimum history, prediction slice, training window
archive       : EpiArchive versioned data and as-of snapshots
latency       : Latency tables and latency-aware shift adjustment
scoring       : Weighted interval score, coverage, point metrics
models/       : Engine registry and trainer / predictor interface
forecaster    : ArxForecaster, residual quantiles, backtest
export        : Forecast / model / metadata persistence
"""

__version__ = "0.1.0"
