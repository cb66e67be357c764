"""
===============================================================================
FORECAST CONFIG — Recognized Options for Calibration and Forecasting
===============================================================================

    m0, sigma0          prior mean / variance of the latent state
    horizon             default number of pure forecast steps
    alpha               band level (0.01 → 99% two-sided band)
    gamma0, sigma_w0    optimizer starting point
    method              scipy.optimize.minimize method name
    maxiter, tol        optimizer work bound and tolerance
    restarts            extra starting points tried after a failed attempt
    on_failure          "raise" | "best_effort" | "fallback"
    variance_floor      clamp negative variances instead of raising
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields, replace as _dc_replace
from typing import Any, Dict, Optional, Tuple

from kalman_models.errors import InvalidParameter

ON_FAILURE_POLICIES = ("raise", "best_effort", "fallback")

DEFAULT_GAMMA0 = 5.0
DEFAULT_SIGMA_W0 = 0.5
DEFAULT_RESTARTS: Tuple[Tuple[float, float], ...] = ((20.0, 0.1), (1.0, 1.0))


@dataclass(frozen=True)
class ForecastConfig:
    m0: float = 0.0
    sigma0: float = 1.0
    horizon: int = 2
    alpha: float = 0.01

    gamma0: float = DEFAULT_GAMMA0
    sigma_w0: float = DEFAULT_SIGMA_W0
    method: str = "Nelder-Mead"
    maxiter: int = 2000
    tol: float = 1e-8
    restarts: Tuple[Tuple[float, float], ...] = DEFAULT_RESTARTS
    on_failure: str = "raise"

    variance_floor: Optional[float] = None

    def __post_init__(self):
        if not math.isfinite(self.m0):
            raise InvalidParameter(f"m0 must be finite, got {self.m0}")
        if not math.isfinite(self.sigma0) or self.sigma0 < 0:
            raise InvalidParameter(f"sigma0 must be >= 0, got {self.sigma0}")
        if isinstance(self.horizon, bool) or not isinstance(self.horizon, int) or self.horizon < 0:
            raise InvalidParameter(f"horizon must be a non-negative integer, got {self.horizon!r}")
        if not (0.0 < self.alpha < 1.0):
            raise InvalidParameter(f"alpha must be in (0, 1), got {self.alpha}")
        if not (math.isfinite(self.gamma0) and math.isfinite(self.sigma_w0)):
            raise InvalidParameter("optimizer start point must be finite")
        if self.maxiter < 1:
            raise InvalidParameter(f"maxiter must be >= 1, got {self.maxiter}")
        if self.tol <= 0:
            raise InvalidParameter(f"tol must be > 0, got {self.tol}")
        if self.on_failure not in ON_FAILURE_POLICIES:
            raise InvalidParameter(
                f"on_failure must be one of {ON_FAILURE_POLICIES}, got {self.on_failure!r}"
            )
        if self.variance_floor is not None and not (self.variance_floor >= 0):
            raise InvalidParameter(f"variance_floor must be >= 0, got {self.variance_floor}")
        # Normalise lists (from JSON/CLI) to a hashable tuple of pairs
        try:
            restarts = tuple((float(g), float(s)) for g, s in self.restarts)
        except (TypeError, ValueError) as e:
            raise InvalidParameter(f"restarts must be (gamma, sigma_w2) pairs: {e}") from e
        object.__setattr__(self, "restarts", restarts)

    @property
    def start(self) -> Tuple[float, float]:
        return (self.gamma0, self.sigma_w0)

    @property
    def confidence(self) -> float:
        return 1.0 - self.alpha

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ForecastConfig':
        """Build from a mapping, ignoring unknown keys."""
        valid = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in valid})

    def replace(self, **overrides) -> 'ForecastConfig':
        """Copy with `overrides` applied; None values are skipped."""
        return _dc_replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["restarts"] = [list(pair) for pair in self.restarts]
        return d
