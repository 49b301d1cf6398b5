"""
===============================================================================
PARTICLE — Particle State for Conditional SMC
===============================================================================

A particle is one hypothesis of the allocation path of every dataset over the
observations processed so far in the current sweep. Particle 0 is the
reference trajectory.

Particles do not own cluster statistics. They hold, per dataset, a row of N
slot ids into that dataset's ClusterRegistry; particles whose histories have
not diverged point at the same slots.

Layout:
    mapping       (K, P, N)  slot id of label n for particle p in dataset k
    trajectories  (P, n, K)  label given to each observation by each particle
    log_weights   (P,)       accumulated log incremental weights
"""

from dataclasses import dataclass, field
from typing import List

import numpy as np

from .resampling import effective_sample_size, normalized_weights


@dataclass
class ParticleSystem:
    """
    Particles of one conditional SMC sweep.

    Attributes:
        mapping: Label → slot id per dataset and particle
        trajectories: Sampled labels per particle, observation and dataset
        log_weights: Unnormalised log-weights
        ess_history: ESS recorded after every observation
        n_resamples: Resampling events this sweep
    """
    mapping: np.ndarray
    trajectories: np.ndarray
    log_weights: np.ndarray
    ess_history: List[float] = field(default_factory=list)
    n_resamples: int = 0

    @classmethod
    def empty(cls, n_particles: int, n_obs: int, n_datasets: int, n_clusters: int) -> 'ParticleSystem':
        """All labels of all particles point at slot 0."""
        return cls(
            mapping=np.zeros((n_datasets, n_particles, n_clusters), dtype=int),
            trajectories=np.zeros((n_particles, n_obs, n_datasets), dtype=int),
            log_weights=np.zeros(n_particles),
        )

    @property
    def n_particles(self) -> int:
        return len(self.log_weights)

    @property
    def weights(self) -> np.ndarray:
        """Get normalised weights."""
        return normalized_weights(self.log_weights)

    def effective_sample_size(self) -> float:
        return effective_sample_size(self.log_weights)

    def reset_weights(self) -> None:
        self.log_weights[:] = 0.0

    def reindex(self, ancestors: np.ndarray) -> None:
        """Replace every particle by its ancestor and reset weights."""
        self.mapping = self.mapping[:, ancestors, :]
        self.trajectories = self.trajectories[ancestors]
        self.reset_weights()
        self.n_resamples += 1

    def select(self, rng: np.random.Generator) -> int:
        """Draw one particle index proportionally to its normalised weight."""
        return int(rng.choice(self.n_particles, p=self.weights))
