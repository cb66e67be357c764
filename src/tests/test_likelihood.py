"""
===============================================================================
TEST: Marginal Log-Likelihood
===============================================================================

The one-step factorization must agree with the joint Gaussian density of
y_{1:T} built from the closed-form covariance of the model:

    E[x_t]        = φ^{t-1}·m₀
    V_1           = Σ₀,   V_t = φ²·V_{t-1} + σ_w²
    Cov(x_s, x_t) = φ^{t-s}·V_s            (s ≤ t)
    Cov(y)        = Cov(x) + σ_w²·I
"""

import os
import sys

import numpy as np
import pytest
from scipy.stats import multivariate_normal, norm

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kalman_models.errors import DegenerateLikelihood, InvalidParameter
from kalman_models.kalman_core import filter_and_forecast
from kalman_models.likelihood import (
    log_likelihood,
    pointwise_log_likelihood,
    trace_log_likelihood,
)


def _joint_log_density(y, phi, sigma_w2, m0, sigma0):
    T = len(y)
    mean = np.array([phi ** t * m0 for t in range(T)])
    var = np.empty(T)
    var[0] = sigma0
    for t in range(1, T):
        var[t] = phi ** 2 * var[t - 1] + sigma_w2
    cov = np.empty((T, T))
    for s in range(T):
        for t in range(T):
            lo, hi = min(s, t), max(s, t)
            cov[s, t] = phi ** (hi - lo) * var[lo]
    cov += sigma_w2 * np.eye(T)
    return multivariate_normal(mean=mean, cov=cov).logpdf(y)


class TestFactorization:

    @pytest.mark.parametrize("seed", range(12))
    def test_matches_joint_gaussian(self, seed):
        rng = np.random.RandomState(seed)
        T = rng.randint(2, 6)
        y = rng.randn(T)
        phi = rng.uniform(-0.95, 0.99)
        sigma_w2 = 10 ** rng.uniform(-2, 0.5)
        m0 = rng.randn()
        sigma0 = rng.uniform(0.0, 3.0)

        trace = filter_and_forecast(y, phi, 0.0, sigma_w2, m0, sigma0)
        ll = log_likelihood(y, trace.mu_p, trace.sigma_p, sigma_w2, m0, sigma0)

        assert ll == pytest.approx(_joint_log_density(y, phi, sigma_w2, m0, sigma0), rel=1e-9, abs=1e-9)

    def test_single_observation(self):
        y = [0.4]
        trace = filter_and_forecast(y, 0.5, 0.0, 0.2, 0.1, 1.5)
        ll = log_likelihood(y, trace.mu_p, trace.sigma_p, 0.2, 0.1, 1.5)
        assert ll == pytest.approx(norm.logpdf(0.4, loc=0.1, scale=np.sqrt(1.7)))


class TestEvaluator:

    @pytest.fixture
    def setup(self):
        np.random.seed(3)
        y = np.random.randn(50) * 0.5
        trace = filter_and_forecast(y, 0.7, 0.0, 0.3, 0.0, 1.0, n=4)
        return y, trace

    def test_pointwise_sums_to_total(self, setup):
        y, trace = setup
        pw = pointwise_log_likelihood(y, trace.mu_p, trace.sigma_p, 0.3)
        assert pw.shape == (50,)
        assert float(np.sum(pw)) == pytest.approx(log_likelihood(y, trace.mu_p, trace.sigma_p, 0.3))

    def test_forecast_entries_ignored(self, setup):
        y, trace = setup
        short = filter_and_forecast(y, 0.7, 0.0, 0.3, 0.0, 1.0, n=0)
        assert trace_log_likelihood(y, trace, 0.3) == trace_log_likelihood(y, short, 0.3)

    def test_first_step_uses_prior_arguments(self, setup):
        y, trace = setup
        mu_p = trace.mu_p.copy()
        sigma_p = trace.sigma_p.copy()
        mu_p[0], sigma_p[0] = 999.0, 999.0
        assert log_likelihood(y, mu_p, sigma_p, 0.3, 0.0, 1.0) == log_likelihood(
            y, trace.mu_p, trace.sigma_p, 0.3, 0.0, 1.0
        )

    def test_degenerate_variance_raises(self, setup):
        y, trace = setup
        sigma_p = trace.sigma_p.copy()
        sigma_p[10] = -1.0
        with pytest.raises(DegenerateLikelihood):
            log_likelihood(y, trace.mu_p, sigma_p, 0.3)

    def test_degenerate_variance_neg_inf(self, setup):
        y, trace = setup
        sigma_p = trace.sigma_p.copy()
        sigma_p[10] = np.nan
        assert log_likelihood(y, trace.mu_p, sigma_p, 0.3, on_degenerate="neg_inf") == float("-inf")

    def test_degenerate_prior(self, setup):
        y, trace = setup
        with pytest.raises(DegenerateLikelihood):
            log_likelihood(y, trace.mu_p, trace.sigma_p, 0.3, m0=0.0, sigma0=-0.3)

    def test_too_few_predictions(self, setup):
        y, trace = setup
        with pytest.raises(InvalidParameter):
            log_likelihood(y, trace.mu_p[:10], trace.sigma_p[:10], 0.3)

    def test_unknown_policy(self, setup):
        y, trace = setup
        with pytest.raises(InvalidParameter):
            log_likelihood(y, trace.mu_p, trace.sigma_p, 0.3, on_degenerate="clamp")

    def test_better_fit_scores_higher(self):
        """A persistent series is more likely under φ near 1 than φ near 0."""
        np.random.seed(11)
        y = np.cumsum(np.random.randn(200)) * 0.2
        slow = filter_and_forecast(y, 0.99, 0.0, 0.05)
        fast = filter_and_forecast(y, 0.05, 0.0, 0.05)
        assert trace_log_likelihood(y, slow, 0.05) > trace_log_likelihood(y, fast, 0.05)
