"""
===============================================================================
FORECAST PIPELINE — Calibrate, Refit, Forecast, Band
===============================================================================

    forecast(y, n)       calibrate(y) → gp_kalman.run(y, γ̂, σ̂_w², n) → FilterTrace
    run_forecast(y, n)   same, plus the CalibrationResult, refit log-likelihood
                         and confidence bands on every predictive step
    confidence_band      μ ∓ z_{1−α/2}·√Σ
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import norm

from kalman_models import gp_kalman
from kalman_models.errors import InvalidParameter
from kalman_models.kalman_core import FilterTrace, SignalLike
from kalman_models.likelihood import trace_log_likelihood
from kalman_tuning.calibrate import CalibrationResult, as_signal, calibrate
from kalman_tuning.config import ForecastConfig

logger = logging.getLogger(__name__)


def confidence_band(mu, sigma, alpha: float = 0.01) -> Tuple[np.ndarray, np.ndarray]:
    """
    Two-sided normal band of level 1−α around each (mean, variance) pair.

    Raises InvalidParameter if α ∉ (0, 1), any variance is negative, or the
    shapes of `mu` and `sigma` differ.
    """
    if not (0.0 < alpha < 1.0):
        raise InvalidParameter(f"alpha must be in (0, 1), got {alpha}")
    mu = np.asarray(mu, dtype=np.float64)
    sigma = np.asarray(sigma, dtype=np.float64)
    if mu.shape != sigma.shape:
        raise InvalidParameter(f"mean shape {mu.shape} != variance shape {sigma.shape}")
    if np.any(sigma < 0):
        raise InvalidParameter("variance must be >= 0")
    half_width = norm.ppf(1.0 - alpha / 2.0) * np.sqrt(sigma)
    return mu - half_width, mu + half_width


@dataclass(frozen=True, eq=False)
class ForecastResult:
    """Trace plus everything needed downstream for reporting."""
    trace: FilterTrace
    calibration: CalibrationResult
    log_likelihood: float
    lower: np.ndarray
    upper: np.ndarray
    alpha: float
    name: Optional[str] = None

    @property
    def horizon(self) -> int:
        return self.trace.horizon

    @property
    def forecast_mean(self) -> np.ndarray:
        return self.trace.forecast_mean

    @property
    def forecast_var(self) -> np.ndarray:
        return self.trace.forecast_var

    def to_frame(self, index: Optional[Sequence] = None) -> pd.DataFrame:
        df = self.trace.to_frame(index)
        df["lower"] = self.lower
        df["upper"] = self.upper
        return df

    def summary(self) -> Dict:
        T = self.trace.n_obs
        return {
            "name": self.name,
            "n_obs": T,
            "horizon": self.horizon,
            **self.calibration.as_dict(),
            "refit_log_likelihood": float(self.log_likelihood),
            "alpha": float(self.alpha),
            "last_filtered_mean": float(self.trace.mu_f[-1]),
            "last_filtered_var": float(self.trace.sigma_f[-1]),
            "forecast_mean": [float(v) for v in self.forecast_mean],
            "forecast_var": [float(v) for v in self.forecast_var],
            "forecast_lower": [float(v) for v in self.lower[T:]],
            "forecast_upper": [float(v) for v in self.upper[T:]],
        }


def forecast(y: SignalLike, n: Optional[int] = None, config: Optional[ForecastConfig] = None) -> FilterTrace:
    """Calibrate on `y` and return the refit trace with `n` forecast steps."""
    return run_forecast(y, n, config).trace


def run_forecast(
    y: SignalLike,
    n: Optional[int] = None,
    config: Optional[ForecastConfig] = None,
    name: Optional[str] = None,
) -> ForecastResult:
    """
    Full pipeline for one series.

    Args:
        y: Signal (finite, T ≥ 2)
        n: Forecast horizon (defaults to config.horizon)
        config: ForecastConfig
        name: Label carried on the result (series / factor name)
    """
    config = config or ForecastConfig()
    n = config.horizon if n is None else n
    obs = as_signal(y)

    cal = calibrate(obs, config)
    trace = gp_kalman.run(
        obs, cal.gamma, cal.sigma_w2,
        m0=config.m0, sigma0=config.sigma0, n=n,
        variance_floor=config.variance_floor,
    )
    ll = trace_log_likelihood(obs, trace, cal.sigma_w2, config.m0, config.sigma0)
    lower, upper = confidence_band(trace.mu_p, trace.sigma_p, config.alpha)

    logger.debug(
        "%s: γ=%g σ_w²=%g ll=%.6g horizon=%d",
        name or "series", cal.gamma, cal.sigma_w2, ll, n,
    )
    return ForecastResult(
        trace=trace,
        calibration=cal,
        log_likelihood=ll,
        lower=lower,
        upper=upper,
        alpha=config.alpha,
        name=name,
    )
