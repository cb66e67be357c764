"""
===============================================================================
KALMAN CORE — Scalar Linear-Gaussian Filter and Short-Horizon Forecaster
===============================================================================

Implements the forward pass of a scalar AR(1) state-space model:

    State equation:    x_t = φ·x_{t-1} + v_t,   v_t ~ N(0, σ_w²)
    Observation:       y_t = x_t + w_t,         w_t ~ N(0, σ_w²)
    Prior:             x_1 ~ N(m₀, Σ₀)

NOTE: the prediction step adds σ_w² (not σ_v²). σ_v² travels on
ModelParameters and is validated, but the recursion never injects it.

Recursion (t indexed from 1, stored 0-based):

    t = 1       μ_p = m₀, Σ_p = Σ₀
                μ_f = m₀ + (y₁ − m₀)·Σ₀/(Σ₀+σ_w²)
                Σ_f = Σ₀ − Σ₀²/(Σ₀+σ_w²)
    t = 2..T    μ_p = φ·μ_f[t-1],  Σ_p = φ²·Σ_f[t-1] + σ_w²
                deno = σ_w² + Σ_p
                μ_f = σ_w²·μ_p/deno + Σ_p·y_t/deno
                Σ_f = σ_w²·Σ_p/deno
    t = T+1     μ_p = φ·μ_f[T],    Σ_p = φ²·Σ_f[T] + σ_w²
    t > T+1     μ_p = φ·μ_p[t-1],  Σ_p = φ²·Σ_p[t-1] + σ_w²

The pass is a pure function of its inputs: no state survives between calls.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd

from kalman_models.errors import DegenerateLikelihood, InvalidParameter

logger = logging.getLogger(__name__)

SignalLike = Union[Sequence[float], np.ndarray, pd.Series]


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class ModelParameters:
    """
    Complete parameter set for one filter pass.

    φ and σ_v² are derived when built from (γ, σ_w²); σ_w², m₀, Σ₀ are free.
    """
    phi: float
    sigma_v2: float
    sigma_w2: float
    m0: float = 0.0
    sigma0: float = 1.0

    def validate(self) -> 'ModelParameters':
        _check_finite("phi", self.phi)
        _check_finite("m0", self.m0)
        _check_nonnegative("sigma_v2", self.sigma_v2)
        _check_nonnegative("sigma0", self.sigma0)
        _check_finite("sigma_w2", self.sigma_w2)
        if self.sigma_w2 <= 0.0:
            raise InvalidParameter(f"sigma_w2 must be > 0, got {self.sigma_w2}")
        return self

    @property
    def is_stationary(self) -> bool:
        return abs(self.phi) < 1.0


@dataclass(frozen=True, eq=False)
class FilterTrace:
    """
    Output of one forward pass.

    mu_f / sigma_f have length T. mu_p / sigma_p have length T+n: the first T
    entries are one-step-ahead predictions, the last n are pure forecasts.
    """
    mu_f: np.ndarray
    sigma_f: np.ndarray
    mu_p: np.ndarray
    sigma_p: np.ndarray

    @property
    def n_obs(self) -> int:
        return int(self.mu_f.shape[0])

    @property
    def horizon(self) -> int:
        return int(self.mu_p.shape[0] - self.mu_f.shape[0])

    @property
    def one_step_mean(self) -> np.ndarray:
        return self.mu_p[:self.n_obs]

    @property
    def one_step_var(self) -> np.ndarray:
        return self.sigma_p[:self.n_obs]

    @property
    def forecast_mean(self) -> np.ndarray:
        return self.mu_p[self.n_obs:]

    @property
    def forecast_var(self) -> np.ndarray:
        return self.sigma_p[self.n_obs:]

    def to_frame(self, index: Optional[Sequence] = None) -> pd.DataFrame:
        """
        Tabulate the trace on steps 1..T+n.

        Filtered columns are NaN on the forecast rows. A custom `index` must
        have length T+n.
        """
        n_total = self.mu_p.shape[0]
        pad = np.full(self.horizon, np.nan)
        if index is None:
            index = pd.RangeIndex(1, n_total + 1, name="t")
        elif len(index) != n_total:
            raise InvalidParameter(f"index length {len(index)} != trace length {n_total}")
        return pd.DataFrame(
            {
                "mu_filtered": np.concatenate([self.mu_f, pad]),
                "var_filtered": np.concatenate([self.sigma_f, pad]),
                "mu_predictive": self.mu_p,
                "var_predictive": self.sigma_p,
                "is_forecast": np.arange(n_total) >= self.n_obs,
            },
            index=index,
        )

    def equals(self, other: 'FilterTrace') -> bool:
        """Bit-for-bit equality of all four sequences."""
        return all(
            np.array_equal(a, b)
            for a, b in (
                (self.mu_f, other.mu_f),
                (self.sigma_f, other.sigma_f),
                (self.mu_p, other.mu_p),
                (self.sigma_p, other.sigma_p),
            )
        )


# =============================================================================
# VALIDATION
# =============================================================================

def _check_finite(name: str, value: float) -> None:
    if value is None or not math.isfinite(value):
        raise InvalidParameter(f"{name} must be finite, got {value}")


def _check_nonnegative(name: str, value: float) -> None:
    _check_finite(name, value)
    if value < 0.0:
        raise InvalidParameter(f"{name} must be >= 0, got {value}")


def _check_horizon(n: int) -> int:
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)):
        raise InvalidParameter(f"forecast horizon must be an integer, got {n!r}")
    if n < 0:
        raise InvalidParameter(f"forecast horizon must be >= 0, got {n}")
    return int(n)


def as_observations(y: SignalLike) -> np.ndarray:
    """Copy a signal into a contiguous float64 vector, rejecting gaps and empties."""
    try:
        arr = np.array(y, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidParameter(f"signal is not numeric: {e}") from e
    if arr.ndim != 1:
        raise InvalidParameter(f"signal must be 1-D, got shape {arr.shape}")
    if arr.shape[0] < 1:
        raise InvalidParameter("signal is empty")
    if not np.all(np.isfinite(arr)):
        raise InvalidParameter("signal contains NaN or infinite values")
    return np.ascontiguousarray(arr)


def _check_variances(
    sigma_f: np.ndarray,
    sigma_p: np.ndarray,
    variance_floor: Optional[float],
) -> None:
    bad = (~np.isfinite(sigma_f)) | (sigma_f < 0.0)
    bad_p = (~np.isfinite(sigma_p)) | (sigma_p < 0.0)
    if not (bad.any() or bad_p.any()):
        return
    if variance_floor is None or not (np.all(np.isfinite(sigma_f)) and np.all(np.isfinite(sigma_p))):
        first = int(np.argmax(bad)) + 1 if bad.any() else int(np.argmax(bad_p)) + 1
        raise DegenerateLikelihood(f"negative or non-finite variance at t={first}")
    logger.warning(
        "Clamping %d negative variance entries to %g",
        int(bad.sum() + bad_p.sum()), variance_floor,
    )
    # Only the offending entries move; valid variances below the floor stay put
    sigma_f[bad] = variance_floor
    sigma_p[bad_p] = variance_floor


# =============================================================================
# FORWARD PASS
# =============================================================================

def filter_and_forecast(
    y: SignalLike,
    phi: float,
    sigma_v2: float,
    sigma_w2: float,
    m0: float = 0.0,
    sigma0: float = 1.0,
    n: int = 0,
    variance_floor: Optional[float] = None,
) -> FilterTrace:
    """
    Run the forward filter over `y` and append `n` pure forecast steps.

    Args:
        y: Observed signal (length T ≥ 1, finite)
        phi: Transition coefficient φ
        sigma_v2: Process noise variance (validated, not injected)
        sigma_w2: Noise variance used in both prediction and update (> 0)
        m0: Prior mean
        sigma0: Prior variance (≥ 0)
        n: Forecast horizon beyond the last observation (≥ 0)
        variance_floor: If set, negative variances are clamped to it instead
            of raising DegenerateLikelihood

    Returns:
        FilterTrace with μ_f, Σ_f of length T and μ_p, Σ_p of length T+n
    """
    obs = as_observations(y)
    params = ModelParameters(
        phi=float(phi), sigma_v2=float(sigma_v2), sigma_w2=float(sigma_w2),
        m0=float(m0), sigma0=float(sigma0),
    ).validate()
    n = _check_horizon(n)
    return _forward(obs, params, n, variance_floor)


def filter_with_params(
    y: SignalLike,
    params: ModelParameters,
    n: int = 0,
    variance_floor: Optional[float] = None,
) -> FilterTrace:
    """Same as filter_and_forecast, taking a ModelParameters record."""
    return filter_and_forecast(
        y, params.phi, params.sigma_v2, params.sigma_w2,
        params.m0, params.sigma0, n, variance_floor,
    )


def _forward(
    obs: np.ndarray,
    params: ModelParameters,
    n: int,
    variance_floor: Optional[float],
) -> FilterTrace:
    T = obs.shape[0]
    phi = params.phi
    phi_sq = phi * phi
    r = params.sigma_w2
    m0 = params.m0
    s0 = params.sigma0

    mu_f = np.empty(T, dtype=np.float64)
    sigma_f = np.empty(T, dtype=np.float64)
    mu_p = np.empty(T + n, dtype=np.float64)
    sigma_p = np.empty(T + n, dtype=np.float64)

    # t = 1
    mu_p[0] = m0
    sigma_p[0] = s0
    mu_f[0] = m0 + (obs[0] - m0) * s0 / (s0 + r)
    sigma_f[0] = s0 - s0 * s0 / (s0 + r)

    for t in range(1, T):
        m_pred = phi * mu_f[t - 1]
        s_pred = phi_sq * sigma_f[t - 1] + r
        deno = r + s_pred
        mu_p[t] = m_pred
        sigma_p[t] = s_pred
        mu_f[t] = r * m_pred / deno + s_pred * obs[t] / deno
        sigma_f[t] = r * s_pred / deno

    if n > 0:
        mu_p[T] = phi * mu_f[T - 1]
        sigma_p[T] = phi_sq * sigma_f[T - 1] + r
        for t in range(T + 1, T + n):
            mu_p[t] = phi * mu_p[t - 1]
            sigma_p[t] = phi_sq * sigma_p[t - 1] + r

    _check_variances(sigma_f, sigma_p, variance_floor)
    return FilterTrace(mu_f=mu_f, sigma_f=sigma_f, mu_p=mu_p, sigma_p=sigma_p)


def extend_forecast(trace: FilterTrace, phi: float, sigma_w2: float, steps: int) -> FilterTrace:
    """
    Append `steps` pure-forecast steps to an existing trace.

    The first appended step uses the last filtered state when the trace has no
    forecasts yet, matching the t = T+1 rule of the forward pass, so the result
    is identical to re-running the filter with the longer horizon.
    """
    steps = _check_horizon(steps)
    _check_finite("phi", phi)
    _check_finite("sigma_w2", sigma_w2)
    if sigma_w2 <= 0.0:
        raise InvalidParameter(f"sigma_w2 must be > 0, got {sigma_w2}")

    phi_sq = phi * phi
    T = trace.n_obs
    start = trace.mu_p.shape[0]
    mu_p = np.empty(start + steps, dtype=np.float64)
    sigma_p = np.empty(start + steps, dtype=np.float64)
    mu_p[:start] = trace.mu_p
    sigma_p[:start] = trace.sigma_p

    for t in range(start, start + steps):
        if t == T:
            mu_p[t] = phi * trace.mu_f[T - 1]
            sigma_p[t] = phi_sq * trace.sigma_f[T - 1] + sigma_w2
        else:
            mu_p[t] = phi * mu_p[t - 1]
            sigma_p[t] = phi_sq * sigma_p[t - 1] + sigma_w2

    return FilterTrace(
        mu_f=trace.mu_f.copy(), sigma_f=trace.sigma_f.copy(), mu_p=mu_p, sigma_p=sigma_p,
    )
