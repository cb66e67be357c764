"""
===============================================================================
KALMAN TUNING — Calibration, Forecasting and Batch Orchestration
===============================================================================

    - config.py:        ForecastConfig (prior, horizon, band level, optimizer settings)
    - calibrate.py:     maximum marginal likelihood for (γ, σ_w²)
    - forecast.py:      forecast / run_forecast / confidence_band
    - batch.py:         forecast_many over independent series (ProcessPoolExecutor)
    - reporting.py:     rich tables and atomic JSON/CSV output
    - forecast_cli.py:  `kalman-forecast` command line entry point

USAGE:
    from kalman_tuning import ForecastConfig, run_forecast

    result = run_forecast(pc1_scores, n=2, config=ForecastConfig(alpha=0.01))
    result.trace.forecast_mean, result.lower, result.upper
"""

from kalman_tuning.config import ForecastConfig
from kalman_tuning.calibrate import CalibrationResult, as_signal, calibrate, negative_log_likelihood
from kalman_tuning.forecast import ForecastResult, confidence_band, forecast, run_forecast
from kalman_tuning.batch import BatchResult, forecast_many

__all__ = [
    "ForecastConfig",
    "CalibrationResult",
    "as_signal",
    "calibrate",
    "negative_log_likelihood",
    "ForecastResult",
    "confidence_band",
    "forecast",
    "run_forecast",
    "BatchResult",
    "forecast_many",
]
