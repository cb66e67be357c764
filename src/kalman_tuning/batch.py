"""
===============================================================================
BATCH — Independent Forecasts for Many Series (e.g. Principal Components)
===============================================================================

Each series is calibrated and forecast on its own; there is no shared state,
so series are dispatched to a ProcessPoolExecutor when more than one worker
is requested. A failure in one series is recorded and never aborts the rest.
"""

from __future__ import annotations

import logging
import multiprocessing
import traceback
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from kalman_tuning.config import ForecastConfig
from kalman_tuning.forecast import ForecastResult, run_forecast

logger = logging.getLogger(__name__)

SignalTable = Union[Mapping[str, object], pd.DataFrame]


@dataclass
class BatchResult:
    results: Dict[str, ForecastResult] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    order: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def n_succeeded(self) -> int:
        return len(self.results)

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    def summary_frame(self) -> pd.DataFrame:
        """One row per series in input order; failed series carry the error text."""
        rows = []
        for name in self.order:
            if name in self.results:
                s = self.results[name].summary()
                rows.append({
                    "series": name,
                    "status": "ok",
                    "gamma": s["gamma"],
                    "sigma_w2": s["sigma_w2"],
                    "phi": s["phi"],
                    "log_likelihood": s["refit_log_likelihood"],
                    "converged": s["converged"],
                    "used_fallback": s["used_fallback"],
                    "n_obs": s["n_obs"],
                    "horizon": s["horizon"],
                    "next_mean": s["forecast_mean"][0] if s["forecast_mean"] else np.nan,
                    "next_lower": s["forecast_lower"][0] if s["forecast_lower"] else np.nan,
                    "next_upper": s["forecast_upper"][0] if s["forecast_upper"] else np.nan,
                    "error": "",
                })
            else:
                rows.append({
                    "series": name,
                    "status": "failed",
                    "error": self.failures.get(name, ""),
                })
        return pd.DataFrame(rows)


def _iter_signals(signals: SignalTable) -> List[Tuple[str, np.ndarray]]:
    if isinstance(signals, pd.DataFrame):
        return [(str(col), signals[col].to_numpy()) for col in signals.columns]
    return [(str(name), values) for name, values in signals.items()]


def _forecast_worker(
    args_tuple: Tuple[str, object, Optional[int], ForecastConfig],
) -> Tuple[str, Optional[ForecastResult], Optional[str], Optional[str]]:
    """
    Worker for one series. Module level so ProcessPoolExecutor can pickle it.

    Returns:
        (name, result, None, None) on success
        (name, None, error_message, traceback_str) on any exception
    """
    name, values, n, config = args_tuple
    try:
        return (name, run_forecast(values, n, config, name=name), None, None)
    except Exception as e:
        return (name, None, f"{type(e).__name__}: {e}", traceback.format_exc())


def forecast_many(
    signals: SignalTable,
    n: Optional[int] = None,
    config: Optional[ForecastConfig] = None,
    n_workers: Optional[int] = 1,
) -> BatchResult:
    """
    Forecast every series in `signals` independently.

    Args:
        signals: name → Signal mapping, or DataFrame with one column per series
        n: Forecast horizon (defaults to config.horizon)
        config: Shared ForecastConfig (each worker gets its own copy)
        n_workers: Process count; None uses every CPU, 1 runs in-process
    """
    config = config or ForecastConfig()
    jobs = [(name, values, n, config) for name, values in _iter_signals(signals)]
    batch = BatchResult(order=[job[0] for job in jobs])
    if not jobs:
        return batch

    if n_workers is None:
        n_workers = multiprocessing.cpu_count()
    n_workers = max(1, min(int(n_workers), len(jobs)))

    if n_workers == 1:
        outcomes = [_forecast_worker(job) for job in jobs]
    else:
        logger.info("Forecasting %d series with %d workers", len(jobs), n_workers)
        outcomes = []
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            futures = {executor.submit(_forecast_worker, job): job[0] for job in jobs}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    # Worker process died (e.g. BrokenProcessPool); the rest still count
                    outcomes.append((name, None, f"{type(e).__name__}: {e}", traceback.format_exc()))

    for name, result, error, tb_str in outcomes:
        if result is not None:
            batch.results[name] = result
        else:
            batch.failures[name] = error
            logger.warning("%s: forecast failed - %s", name, error)
            logger.debug("%s traceback:\n%s", name, tb_str)

    return batch
