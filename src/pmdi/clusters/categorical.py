"""
===============================================================================
CATEGORICAL — Dirichlet-Multinomial Cluster
===============================================================================

Features are independent categorical variables coded as non-negative integers
0..L_d-1. Each feature carries a symmetric Dirichlet(β) prior over its levels,
so with level counts c_{d,l} and n_d members:

    log p(x_d | members) = log(c_{d,x} + β) − log(n_d + L_d β)

    log p(members_d) = lnΓ(L_d β) − lnΓ(n_d + L_d β)
                       + Σ_l [lnΓ(c_{d,l} + β) − lnΓ(β)]

The number of levels per feature is read from the dataset at construction.
"""

import copy

import numpy as np
from scipy.special import gammaln

from .base import ClusterFamily, ClusterModel, register_family


@register_family
class CategoricalCluster(ClusterModel):
    """Independent categorical features with Dirichlet priors."""

    family = ClusterFamily.CATEGORICAL
    beta = 0.5

    def __init__(self, dataset: np.ndarray):
        super().__init__(dataset)
        codes = np.asarray(dataset)
        if codes.size and (np.any(codes < 0) or np.any(codes != np.floor(codes))):
            raise ValueError("Categorical data must be coded as non-negative integers")
        self.n_levels = (codes.max(axis=0).astype(int) + 1) if codes.size else np.ones(self.n_features, dtype=int)

        self.counts = np.zeros((self.n_features, int(self.n_levels.max())))
        self.totals = np.zeros(self.n_features)
        self._feature_idx = np.arange(self.n_features)
        # Levels beyond L_d do not exist for feature d
        self._valid = np.arange(self.counts.shape[1])[None, :] < self.n_levels[:, None]

    def add(self, observation: np.ndarray, mask: np.ndarray) -> None:
        levels = np.asarray(observation).astype(int)
        self.counts[self._feature_idx[mask], levels[mask]] += 1
        self.totals[mask] += 1

    def log_predictive(self, observation: np.ndarray, mask: np.ndarray) -> float:
        levels = np.asarray(observation).astype(int)[mask]
        idx = self._feature_idx[mask]
        numerator = self.counts[idx, levels] + self.beta
        denominator = self.totals[idx] + self.n_levels[idx] * self.beta
        return float(np.sum(np.log(numerator) - np.log(denominator)))

    def log_marginal_features(self) -> np.ndarray:
        prior_mass = self.n_levels * self.beta
        level_terms = np.where(
            self._valid,
            gammaln(self.counts + self.beta) - gammaln(self.beta),
            0.0,
        ).sum(axis=1)
        return gammaln(prior_mass) - gammaln(self.totals + prior_mass) + level_terms

    def copy(self) -> 'CategoricalCluster':
        clone = copy.copy(self)
        clone.counts = self.counts.copy()
        clone.totals = self.totals.copy()
        return clone
