"""
Exact marginal log-likelihood from one-step-ahead predictive distributions.

    log p(y_{1:T}) = log N(y_1; m₀, Σ₀ + σ_w²)
                   + Σ_{t=2..T} log N(y_t; μ_p[t], Σ_p[t] + σ_w²)
"""

from __future__ import annotations

import numpy as np
from scipy.stats import norm

from kalman_models.errors import DegenerateLikelihood, InvalidParameter
from kalman_models.kalman_core import FilterTrace, SignalLike, as_observations

_ON_DEGENERATE = ("raise", "neg_inf")


def pointwise_log_likelihood(
    y: SignalLike,
    mu_pred,
    sigma_pred,
    sigma_w2: float,
    m0: float = 0.0,
    sigma0: float = 1.0,
) -> np.ndarray:
    """
    Per-step log predictive densities.

    Only the first T entries of `mu_pred` / `sigma_pred` are used, so the full
    predictive arrays of a FilterTrace (length T+n) may be passed directly.
    Raises DegenerateLikelihood if any predictive variance is ≤ 0 or non-finite.
    """
    obs = as_observations(y)
    T = obs.shape[0]
    mu_pred = np.asarray(mu_pred, dtype=np.float64)
    sigma_pred = np.asarray(sigma_pred, dtype=np.float64)
    if mu_pred.shape[0] < T or sigma_pred.shape[0] < T:
        raise InvalidParameter(
            f"need {T} predictive entries, got mean={mu_pred.shape[0]} var={sigma_pred.shape[0]}"
        )

    loc = mu_pred[:T].copy()
    var = sigma_pred[:T] + sigma_w2
    loc[0] = m0
    var[0] = sigma0 + sigma_w2

    bad = ~np.isfinite(var) | (var <= 0.0)
    if bad.any():
        raise DegenerateLikelihood(
            f"predictive variance <= 0 at t={int(np.argmax(bad)) + 1}"
        )
    return norm.logpdf(obs, loc=loc, scale=np.sqrt(var))


def log_likelihood(
    y: SignalLike,
    mu_pred,
    sigma_pred,
    sigma_w2: float,
    m0: float = 0.0,
    sigma0: float = 1.0,
    on_degenerate: str = "raise",
) -> float:
    """
    Sum of the T one-step log predictive densities.

    on_degenerate="neg_inf" returns −inf instead of raising DegenerateLikelihood.
    """
    if on_degenerate not in _ON_DEGENERATE:
        raise InvalidParameter(f"on_degenerate must be one of {_ON_DEGENERATE}, got {on_degenerate!r}")
    try:
        ll = pointwise_log_likelihood(y, mu_pred, sigma_pred, sigma_w2, m0, sigma0)
    except DegenerateLikelihood:
        if on_degenerate == "neg_inf":
            return float("-inf")
        raise
    return float(np.sum(ll))


def trace_log_likelihood(
    y: SignalLike,
    trace: FilterTrace,
    sigma_w2: float,
    m0: float = 0.0,
    sigma0: float = 1.0,
    on_degenerate: str = "raise",
) -> float:
    return log_likelihood(y, trace.mu_p, trace.sigma_p, sigma_w2, m0, sigma0, on_degenerate)
