"""
===============================================================================
GAUSSIAN — Independent Normal-Gamma Cluster
===============================================================================

Each feature is modelled as an independent normal with unknown mean and
precision under a conjugate Normal-Gamma prior:

    τ_d ~ Gamma(α₀, β₀)
    μ_d | τ_d ~ N(m₀_d, 1 / (κ₀ τ_d))

Posterior after n_d observations with sum S_d and sum of squares Q_d:

    κ_n = κ₀ + n_d
    m_n = (κ₀ m₀ + S_d) / κ_n
    α_n = α₀ + n_d / 2
    β_n = β₀ + ½ (Q_d + κ₀ m₀² − κ_n m_n²)

Posterior predictive is Student-t with 2α_n degrees of freedom, location m_n
and squared scale β_n (κ_n + 1) / (α_n κ_n).

Prior location m₀ and scale β₀ are read from the dataset (column mean and
variance) so that unstandardised data behave sensibly.
"""

import copy

import numpy as np
from scipy.special import gammaln

from .base import ClusterFamily, ClusterModel, register_family

LOG_2PI = float(np.log(2.0 * np.pi))
MIN_PRIOR_VARIANCE = 1e-6


@register_family
class GaussianCluster(ClusterModel):
    """
    Diagonal Gaussian cluster with Normal-Gamma priors per feature.

    Attributes:
        counts: Observations folded in, per feature
        sum_x: Per-feature sum of observations
        sum_sq: Per-feature sum of squared observations
    """

    family = ClusterFamily.GAUSSIAN
    kappa_0 = 0.01
    alpha_0 = 1.0

    def __init__(self, dataset: np.ndarray):
        super().__init__(dataset)
        dataset = np.asarray(dataset, dtype=float)
        self.mu_0 = np.nanmean(dataset, axis=0)
        self.beta_0 = np.maximum(np.nanvar(dataset, axis=0), MIN_PRIOR_VARIANCE)

        self.counts = np.zeros(self.n_features)
        self.sum_x = np.zeros(self.n_features)
        self.sum_sq = np.zeros(self.n_features)

    def _posterior(self):
        kappa_n = self.kappa_0 + self.counts
        mu_n = (self.kappa_0 * self.mu_0 + self.sum_x) / kappa_n
        alpha_n = self.alpha_0 + 0.5 * self.counts
        beta_n = self.beta_0 + 0.5 * (
            self.sum_sq + self.kappa_0 * self.mu_0 ** 2 - kappa_n * mu_n ** 2
        )
        # β_n ≥ β₀ analytically; guard against cancellation
        beta_n = np.maximum(beta_n, self.beta_0)
        return kappa_n, mu_n, alpha_n, beta_n

    def add(self, observation: np.ndarray, mask: np.ndarray) -> None:
        x = np.asarray(observation, dtype=float)[mask]
        self.counts[mask] += 1
        self.sum_x[mask] += x
        self.sum_sq[mask] += x * x

    def log_predictive(self, observation: np.ndarray, mask: np.ndarray) -> float:
        kappa_n, mu_n, alpha_n, beta_n = self._posterior()
        kappa_n, mu_n, alpha_n, beta_n = kappa_n[mask], mu_n[mask], alpha_n[mask], beta_n[mask]
        x = np.asarray(observation, dtype=float)[mask]

        spread = 2.0 * beta_n * (kappa_n + 1.0) / kappa_n
        log_pdf = (
            gammaln(alpha_n + 0.5)
            - gammaln(alpha_n)
            - 0.5 * (np.log(np.pi) + np.log(spread))
            - (alpha_n + 0.5) * np.log1p((x - mu_n) ** 2 / spread)
        )
        return float(np.sum(log_pdf))

    def log_marginal_features(self) -> np.ndarray:
        kappa_n, _, alpha_n, beta_n = self._posterior()
        return (
            gammaln(alpha_n)
            - gammaln(self.alpha_0)
            + self.alpha_0 * np.log(self.beta_0)
            - alpha_n * np.log(beta_n)
            + 0.5 * (np.log(self.kappa_0) - np.log(kappa_n))
            - 0.5 * self.counts * LOG_2PI
        )

    def copy(self) -> 'GaussianCluster':
        # Priors are never mutated and can be shared
        clone = copy.copy(self)
        clone.counts = self.counts.copy()
        clone.sum_x = self.sum_x.copy()
        clone.sum_sq = self.sum_sq.copy()
        return clone
