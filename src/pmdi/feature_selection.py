"""
===============================================================================
FEATURE SELECTION — Per-Feature Inclusion Flags
===============================================================================

Decides, per dataset and feature, whether the feature takes part in
clustering during the next sweep.

For the accepted partition of dataset k and each feature d:

    score_d = Σ_clusters log p(x_{c,d})  −  log p(x_{·,d})

where the second term is the null model: one cluster holding every
observation. A feature that the partition explains better than the null
model scores high. Flags are drawn as

    flag_d = expit(score_d) > U(0, 1)

Flags gate ClusterModel.add and ClusterModel.log_predictive. When feature
selection is disabled every flag is fixed to True.
"""

import logging
from typing import List, Sequence, Type

import numpy as np
from scipy.special import expit

from .clusters.base import ClusterModel

logger = logging.getLogger(__name__)


class FeatureSelector:
    """
    Bernoulli feature inclusion flags for every dataset.

    Args:
        datasets: Data matrices, one per dataset
        cluster_families: Cluster model class per dataset
        rng: Random generator (initial flags)
        enabled: Whether flags are sampled; if False all flags stay True
    """

    def __init__(
        self,
        datasets: Sequence[np.ndarray],
        cluster_families: Sequence[Type[ClusterModel]],
        rng: np.random.Generator,
        enabled: bool = True,
    ):
        self.datasets = [np.asarray(data) for data in datasets]
        self.cluster_families = list(cluster_families)
        self.enabled = enabled

        if enabled:
            self.flags: List[np.ndarray] = [rng.random(data.shape[1]) < 0.5 for data in self.datasets]
        else:
            self.flags = [np.ones(data.shape[1], dtype=bool) for data in self.datasets]

        self.null_log_marginal: List[np.ndarray] = []
        if enabled:
            for k in range(len(self.datasets)):
                rows = np.arange(self.datasets[k].shape[0])
                null = self._fit(k, rows)
                self.null_log_marginal.append(null.log_marginal_features())

    def _fit(self, k: int, rows: np.ndarray) -> ClusterModel:
        """Cluster model over the given rows with every feature active."""
        data = self.datasets[k]
        model = self.cluster_families[k](data)
        mask = np.ones(data.shape[1], dtype=bool)
        for i in rows:
            model.add(data[i], mask)
        return model

    def feature_scores(self, k: int, labels: np.ndarray) -> np.ndarray:
        """Per-feature log marginal of the partition minus the null model."""
        score = -self.null_log_marginal[k].copy()
        for cluster in np.unique(labels):
            members = np.flatnonzero(labels == cluster)
            score += self._fit(k, members).log_marginal_features()
        return score

    def update(self, allocations: np.ndarray, rng: np.random.Generator) -> List[np.ndarray]:
        """
        Resample every dataset's flags given the accepted allocations.

        Returns:
            The updated flags (unchanged when disabled)
        """
        if not self.enabled:
            return self.flags
        for k in range(len(self.datasets)):
            prob = expit(self.feature_scores(k, allocations[:, k]))
            self.flags[k] = prob > rng.random(len(prob))
        logger.debug(
            "Feature flags: %s",
            ", ".join(f"{int(f.sum())}/{len(f)}" for f in self.flags),
        )
        return self.flags
