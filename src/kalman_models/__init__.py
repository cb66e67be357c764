"""
===============================================================================
KALMAN MODELS — Scalar State-Space Core for Factor Signals
===============================================================================

    - kalman_core.py: forward filter + pure forecasts (FilterTrace, ModelParameters)
    - gp_kalman.py:   (γ, σ_w²) → (φ, σ_v²) reparameterization and run()
    - likelihood.py:  exact marginal log-likelihood from one-step predictions
    - errors.py:      InvalidParameter / DegenerateLikelihood / CalibrationFailed

Every operation is a pure function of its inputs, so independent series can be
processed in parallel without shared state.

USAGE:
    from kalman_models import gp_kalman, log_likelihood

    trace = gp_kalman.run(y, gamma=5.0, sigma_w2=0.5, n=2)
    ll = log_likelihood(y, trace.mu_p, trace.sigma_p, 0.5)
"""

from kalman_models.errors import (
    CalibrationFailed,
    DegenerateLikelihood,
    InvalidParameter,
    KalmanError,
)
from kalman_models.kalman_core import (
    FilterTrace,
    ModelParameters,
    as_observations,
    extend_forecast,
    filter_and_forecast,
    filter_with_params,
)
from kalman_models.gp_kalman import Hyperparameters, to_filter_params
from kalman_models import gp_kalman
from kalman_models.likelihood import (
    log_likelihood,
    pointwise_log_likelihood,
    trace_log_likelihood,
)

__all__ = [
    "KalmanError",
    "InvalidParameter",
    "DegenerateLikelihood",
    "CalibrationFailed",
    "FilterTrace",
    "ModelParameters",
    "Hyperparameters",
    "as_observations",
    "filter_and_forecast",
    "filter_with_params",
    "extend_forecast",
    "to_filter_params",
    "gp_kalman",
    "log_likelihood",
    "pointwise_log_likelihood",
    "trace_log_likelihood",
]
