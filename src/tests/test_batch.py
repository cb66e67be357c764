"""
===============================================================================
TEST: Multi-Series Batch Forecasting
===============================================================================

Independent series (e.g. principal components) are forecast separately; one
bad series must never abort the rest, and process-parallel runs must agree
with in-process runs.
"""

import os
import sys
from concurrent.futures import Future
from concurrent.futures.process import BrokenProcessPool

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import kalman_tuning.batch as batch_module
from kalman_tuning.batch import BatchResult, _forecast_worker, forecast_many
from kalman_tuning.config import ForecastConfig


@pytest.fixture
def factor_frame():
    """Three uncorrelated factor score series."""
    rng = np.random.RandomState(2024)
    n = 120
    data = {}
    for i, phi in enumerate((0.95, 0.6, 0.2), start=1):
        x = np.zeros(n)
        for t in range(1, n):
            x[t] = phi * x[t - 1] + rng.randn() * 0.3
        data[f"PC{i}"] = x + rng.randn(n) * 0.1
    return pd.DataFrame(data, index=pd.date_range("2023-01-02", periods=n, freq="B"))


class TestForecastMany:

    def test_all_series_succeed(self, factor_frame):
        batch = forecast_many(factor_frame, n=2)
        assert batch.ok
        assert batch.n_succeeded == 3
        assert batch.order == ["PC1", "PC2", "PC3"]
        for name, result in batch.results.items():
            assert result.name == name
            assert result.horizon == 2

    def test_persistence_ranking(self, factor_frame):
        """The most persistent factor gets the largest calibrated φ."""
        batch = forecast_many(factor_frame, n=1)
        phis = {name: r.calibration.phi for name, r in batch.results.items()}
        assert phis["PC1"] > phis["PC3"]

    def test_failure_isolated(self, factor_frame):
        frame = factor_frame.copy()
        frame["BROKEN"] = frame["PC1"]
        frame.loc[frame.index[5], "BROKEN"] = np.nan
        batch = forecast_many(frame, n=1)

        assert not batch.ok
        assert set(batch.results) == {"PC1", "PC2", "PC3"}
        assert "BROKEN" in batch.failures
        assert "InvalidParameter" in batch.failures["BROKEN"]

    def test_mapping_input(self, factor_frame):
        signals = {"short": [1.0], "ok": factor_frame["PC2"].to_numpy()}
        batch = forecast_many(signals, n=1)
        assert "ok" in batch.results
        assert "short" in batch.failures

    def test_non_numeric_column_isolated(self, factor_frame):
        frame = factor_frame.copy()
        frame["TEXT"] = "n/a"
        batch = forecast_many(frame, n=1)
        assert "TEXT" in batch.failures
        assert batch.n_succeeded == 3

    def test_calibration_failure_isolated(self, factor_frame):
        config = ForecastConfig(gamma0=-5.0, restarts=(), maxiter=30)
        batch = forecast_many(factor_frame[["PC1"]], n=1, config=config)
        assert "CalibrationFailed" in batch.failures["PC1"]

    def test_empty_input(self):
        batch = forecast_many({}, n=1)
        assert isinstance(batch, BatchResult)
        assert batch.ok
        assert batch.summary_frame().empty

    def test_parallel_matches_sequential(self, factor_frame):
        sequential = forecast_many(factor_frame, n=2, n_workers=1)
        parallel = forecast_many(factor_frame, n=2, n_workers=2)
        assert set(parallel.results) == set(sequential.results)
        for name in sequential.results:
            assert parallel.results[name].trace.equals(sequential.results[name].trace)
            assert (
                parallel.results[name].calibration.as_tuple()
                == sequential.results[name].calibration.as_tuple()
            )

    def test_summary_frame(self, factor_frame):
        frame = factor_frame.copy()
        frame["BROKEN"] = np.nan
        batch = forecast_many(frame, n=1)
        summary = batch.summary_frame()
        assert list(summary["series"]) == ["PC1", "PC2", "PC3", "BROKEN"]
        assert list(summary["status"]) == ["ok", "ok", "ok", "failed"]
        ok_rows = summary[summary["status"] == "ok"]
        assert (ok_rows["next_lower"] < ok_rows["next_upper"]).all()


class TestWorker:

    def test_success_tuple(self, factor_frame):
        name, result, error, tb = _forecast_worker(("PC1", factor_frame["PC1"].to_numpy(), 1, ForecastConfig()))
        assert name == "PC1"
        assert result is not None
        assert error is None and tb is None

    def test_failure_tuple(self):
        name, result, error, tb = _forecast_worker(("bad", [np.inf, 1.0], 1, ForecastConfig()))
        assert result is None
        assert error.startswith("InvalidParameter")
        assert "Traceback" in tb


class _CrashingExecutor:
    """In-process stand-in for ProcessPoolExecutor whose worker for `crash_name` dies."""

    crash_name = "PC2"

    def __init__(self, max_workers=None):
        self.max_workers = max_workers

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def submit(self, fn, job):
        future = Future()
        if job[0] == self.crash_name:
            future.set_exception(BrokenProcessPool("worker process terminated abruptly"))
        else:
            future.set_result(fn(job))
        return future


class TestUnexpectedErrors:

    def test_unexpected_exception_recorded(self, factor_frame, monkeypatch):
        real = batch_module.run_forecast

        def flaky(values, n, config, name=None):
            if name == "PC3":
                raise RuntimeError("boom")
            return real(values, n, config, name=name)

        monkeypatch.setattr(batch_module, "run_forecast", flaky)
        batch = forecast_many(factor_frame, n=1)
        assert set(batch.results) == {"PC1", "PC2"}
        assert batch.failures["PC3"] == "RuntimeError: boom"

    def test_dead_worker_does_not_discard_other_results(self, factor_frame, monkeypatch):
        monkeypatch.setattr(batch_module, "ProcessPoolExecutor", _CrashingExecutor)
        batch = forecast_many(factor_frame, n=1, n_workers=3)
        assert set(batch.results) == {"PC1", "PC3"}
        assert batch.failures["PC2"].startswith("BrokenProcessPool")
        assert list(batch.summary_frame()["status"]) == ["ok", "failed", "ok"]
