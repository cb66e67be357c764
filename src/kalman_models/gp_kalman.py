"""
===============================================================================
GP-KALMAN ADAPTER — Length-Scale Reparameterization of the Scalar Filter
===============================================================================

A zero-mean Gaussian process with exponential (Ornstein-Uhlenbeck) kernel
k(s, t) = exp(−|s−t|/γ), sampled on a unit grid, is exactly an AR(1) process:

    φ    = exp(−1/γ)
    σ_v² = 1 − exp(−2/γ)

so the filter in kalman_core evaluates the GP posterior in O(T).

    γ → ∞   φ → 1   (near random walk)
    γ → 0⁺  φ → 0   (near white noise)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from kalman_models.errors import InvalidParameter
from kalman_models.kalman_core import (
    FilterTrace,
    ModelParameters,
    SignalLike,
    filter_and_forecast,
)


@dataclass(frozen=True)
class Hyperparameters:
    """The two calibrated values (γ, σ_w²)."""
    gamma: float
    sigma_w2: float

    def validate(self) -> 'Hyperparameters':
        _check_gamma(self.gamma)
        if not math.isfinite(self.sigma_w2) or self.sigma_w2 <= 0.0:
            raise InvalidParameter(f"sigma_w2 must be finite and > 0, got {self.sigma_w2}")
        return self

    @property
    def phi(self) -> float:
        return to_filter_params(self.gamma, self.sigma_w2)[0]

    def to_model_parameters(self, m0: float = 0.0, sigma0: float = 1.0) -> ModelParameters:
        phi, sigma_v2 = to_filter_params(self.gamma, self.sigma_w2)
        return ModelParameters(phi=phi, sigma_v2=sigma_v2, sigma_w2=self.sigma_w2, m0=m0, sigma0=sigma0)

    def as_dict(self) -> dict:
        return {"gamma": float(self.gamma), "sigma_w2": float(self.sigma_w2)}


def _check_gamma(gamma: float) -> None:
    if gamma is None or not math.isfinite(gamma):
        raise InvalidParameter(f"gamma must be finite, got {gamma}")
    if gamma <= 0.0:
        raise InvalidParameter(f"gamma must be > 0, got {gamma}")


def to_filter_params(gamma: float, sigma_w2: float) -> Tuple[float, float]:
    """Map (γ, σ_w²) to (φ, σ_v²). σ_w² passes through unchanged and is not checked here."""
    _check_gamma(gamma)
    phi = math.exp(-1.0 / gamma)
    sigma_v2 = -math.expm1(-2.0 / gamma)
    return phi, sigma_v2


def run(
    y: SignalLike,
    gamma: float,
    sigma_w2: float,
    m0: float = 0.0,
    sigma0: float = 1.0,
    n: int = 0,
    variance_floor: Optional[float] = None,
) -> FilterTrace:
    """Filter `y` under the GP-equivalent model and forecast `n` steps ahead."""
    phi, sigma_v2 = to_filter_params(gamma, sigma_w2)
    return filter_and_forecast(
        y, phi=phi, sigma_v2=sigma_v2, sigma_w2=sigma_w2,
        m0=m0, sigma0=sigma0, n=n, variance_floor=variance_floor,
    )
