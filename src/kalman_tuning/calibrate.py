"""
===============================================================================
CALIBRATE — Marginal-Likelihood Estimation of (γ, σ_w²)
===============================================================================

Maximizes the exact log-likelihood of the GP-equivalent Kalman model over the
two hyperparameters with scipy.optimize.minimize on the negated objective.

The optimizer sees all of ℝ². Points outside the valid region (γ ≤ 0,
σ_w² ≤ 0) or with a degenerate predictive variance score a large finite
penalty, which pushes the search back inside.

Recovery policy when an attempt does not converge to a valid point:

    1. try each configured restart point in order
    2. accept the best valid result if it improves on the start point
       (reported with converged=False)
    3. otherwise apply config.on_failure:
         raise        CalibrationFailed carrying the best-effort result
         best_effort  return the best valid result, converged=False
         fallback     return the configured start point, used_fallback=True
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.optimize import minimize

from kalman_models import gp_kalman
from kalman_models.errors import CalibrationFailed, DegenerateLikelihood, InvalidParameter
from kalman_models.gp_kalman import Hyperparameters
from kalman_models.kalman_core import SignalLike, as_observations
from kalman_models.likelihood import log_likelihood
from kalman_tuning.config import ForecastConfig

logger = logging.getLogger(__name__)

# Objective value for invalid or degenerate points
PENALTY = 1e12

MIN_SIGNAL_LENGTH = 2


def as_signal(y: SignalLike, min_length: int = MIN_SIGNAL_LENGTH) -> np.ndarray:
    """Validate a signal at the pipeline boundary (finite, 1-D, T ≥ min_length)."""
    obs = as_observations(y)
    if obs.shape[0] < min_length:
        raise InvalidParameter(f"signal needs at least {min_length} observations, got {obs.shape[0]}")
    return obs


@dataclass(frozen=True)
class CalibrationResult:
    hyperparameters: Hyperparameters
    log_likelihood: float
    start_log_likelihood: float
    converged: bool
    n_iter: int
    n_evals: int
    message: str
    start: Tuple[float, float]
    attempts: int = 1
    used_fallback: bool = False

    @property
    def gamma(self) -> float:
        return self.hyperparameters.gamma

    @property
    def sigma_w2(self) -> float:
        return self.hyperparameters.sigma_w2

    @property
    def phi(self) -> float:
        return self.hyperparameters.phi

    @property
    def is_valid(self) -> bool:
        return (
            math.isfinite(self.gamma) and self.gamma > 0
            and math.isfinite(self.sigma_w2) and self.sigma_w2 > 0
            and math.isfinite(self.log_likelihood)
        )

    @property
    def improvement(self) -> float:
        """Log-likelihood gain over the configured start point."""
        return self.log_likelihood - self.start_log_likelihood

    def as_tuple(self) -> Tuple[float, float]:
        return (self.gamma, self.sigma_w2)

    def as_dict(self) -> Dict:
        return {
            "gamma": float(self.gamma),
            "sigma_w2": float(self.sigma_w2),
            "phi": float(self.phi) if self.gamma > 0 else float("nan"),
            "log_likelihood": float(self.log_likelihood),
            "start_log_likelihood": float(self.start_log_likelihood),
            "converged": bool(self.converged),
            "n_iter": int(self.n_iter),
            "n_evals": int(self.n_evals),
            "message": self.message,
            "start": [float(v) for v in self.start],
            "attempts": int(self.attempts),
            "used_fallback": bool(self.used_fallback),
        }


def negative_log_likelihood(
    params,
    y: np.ndarray,
    m0: float = 0.0,
    sigma0: float = 1.0,
    variance_floor: Optional[float] = None,
) -> float:
    """Objective: −log p(y | γ, σ_w²), or PENALTY outside the valid region."""
    gamma, sigma_w2 = float(params[0]), float(params[1])
    try:
        with np.errstate(over="ignore", under="ignore", divide="ignore", invalid="ignore"):
            trace = gp_kalman.run(y, gamma, sigma_w2, m0, sigma0, n=0, variance_floor=variance_floor)
            ll = log_likelihood(y, trace.mu_p, trace.sigma_p, sigma_w2, m0, sigma0)
    except (InvalidParameter, DegenerateLikelihood):
        return PENALTY
    if not math.isfinite(ll):
        return PENALTY
    return -ll


def _ll_from_objective(value: float) -> float:
    return -value if value < PENALTY else float("-inf")


def _run_attempt(
    obs: np.ndarray,
    start: Tuple[float, float],
    config: ForecastConfig,
    start_ll: float,
) -> CalibrationResult:
    args = (obs, config.m0, config.sigma0, config.variance_floor)
    try:
        res = minimize(
            negative_log_likelihood,
            x0=np.asarray(start, dtype=np.float64),
            args=args,
            method=config.method,
            tol=config.tol,
            options={"maxiter": config.maxiter},
        )
    except ValueError as e:
        # scipy raises ValueError for unknown methods and unusable options
        raise InvalidParameter(f"optimizer {config.method!r} rejected the problem: {e}") from e

    gamma, sigma_w2 = (float(v) for v in res.x)
    return CalibrationResult(
        hyperparameters=Hyperparameters(gamma=gamma, sigma_w2=sigma_w2),
        log_likelihood=_ll_from_objective(float(res.fun)),
        start_log_likelihood=start_ll,
        converged=bool(res.success),
        n_iter=int(getattr(res, "nit", 0) or 0),
        n_evals=int(getattr(res, "nfev", 0) or 0),
        message=str(res.message),
        start=(float(start[0]), float(start[1])),
    )


def calibrate(y: SignalLike, config: Optional[ForecastConfig] = None) -> CalibrationResult:
    """
    Estimate (γ̂, σ̂_w²) by maximum marginal likelihood.

    Args:
        y: Signal (finite, T ≥ 2)
        config: Prior, optimizer and recovery settings

    Returns:
        CalibrationResult; `converged` is False when the iteration bound was
        hit but the result was still accepted

    Raises:
        InvalidParameter: malformed signal or optimizer settings
        CalibrationFailed: no acceptable result and on_failure="raise"
    """
    config = config or ForecastConfig()
    obs = as_signal(y)

    start_ll = _ll_from_objective(
        negative_log_likelihood(config.start, obs, config.m0, config.sigma0, config.variance_floor)
    )

    starts: List[Tuple[float, float]] = [config.start] + [s for s in config.restarts if s != config.start]
    best: Optional[CalibrationResult] = None
    attempts = 0

    for start in starts:
        attempts += 1
        candidate = _run_attempt(obs, start, config, start_ll)
        logger.debug(
            "attempt %d from (γ=%g, σ_w²=%g): γ=%g σ_w²=%g ll=%.6g converged=%s (%s)",
            attempts, start[0], start[1], candidate.gamma, candidate.sigma_w2,
            candidate.log_likelihood, candidate.converged, candidate.message,
        )
        if candidate.is_valid and (best is None or candidate.log_likelihood > best.log_likelihood):
            best = candidate
        if candidate.is_valid and candidate.converged:
            break

    if best is not None:
        best = replace(best, attempts=attempts)
        if best.converged:
            return best
        if best.log_likelihood >= start_ll:
            logger.warning(
                "Optimizer did not converge after %d attempt(s); accepting best point γ=%g σ_w²=%g",
                attempts, best.gamma, best.sigma_w2,
            )
            return best

    return _apply_failure_policy(config, best, start_ll, attempts)


def _apply_failure_policy(
    config: ForecastConfig,
    best: Optional[CalibrationResult],
    start_ll: float,
    attempts: int,
) -> CalibrationResult:
    if config.on_failure == "best_effort" and best is not None:
        logger.warning("Calibration failed; returning best-effort γ=%g σ_w²=%g", best.gamma, best.sigma_w2)
        return best

    if config.on_failure == "fallback" and math.isfinite(start_ll):
        logger.warning("Calibration failed; falling back to start point %s", config.start)
        return CalibrationResult(
            hyperparameters=Hyperparameters(gamma=config.gamma0, sigma_w2=config.sigma_w0),
            log_likelihood=start_ll,
            start_log_likelihood=start_ll,
            converged=False,
            n_iter=0,
            n_evals=0,
            message="fallback to configured start point",
            start=config.start,
            attempts=attempts,
            used_fallback=True,
        )

    if best is None:
        msg = f"no valid (gamma, sigma_w2) found after {attempts} attempt(s)"
    else:
        msg = (
            f"optimizer did not converge after {attempts} attempt(s); "
            f"best gamma={best.gamma:.6g} sigma_w2={best.sigma_w2:.6g} "
            f"is worse than the start point"
        )
    raise CalibrationFailed(msg, result=best)
