"""
Error taxonomy shared by the filter, the likelihood evaluator and the tuning layer.

    InvalidParameter      malformed or out-of-domain numeric input (fatal to the call)
    DegenerateLikelihood  predictive/filtered variance collapsed (penalised by the calibrator)
    CalibrationFailed     optimizer did not produce a usable (γ, σ_w²)
"""

from __future__ import annotations

from typing import Any, Optional


class KalmanError(Exception):
    """Base class for every error raised by the state-space stack."""


class InvalidParameter(KalmanError, ValueError):
    """Raised when a signal, parameter or horizon is outside its domain."""


class DegenerateLikelihood(KalmanError, ArithmeticError):
    """Raised when a variance is ≤ 0 or non-finite where a density is needed."""


class CalibrationFailed(KalmanError, RuntimeError):
    """
    Raised when hyperparameter calibration cannot produce a valid result.

    `result` holds the best-effort CalibrationResult (or None when no attempt
    produced a finite likelihood) so callers can decide whether to reuse it.
    """

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        self.result = result

    def __reduce__(self):
        # Keep `result` when the error crosses a process boundary
        return (self.__class__, (self.args[0], self.result))
