"""
===============================================================================
SMC ENGINE — Conditional SMC Sweep over Observations
===============================================================================

One sweep of the particle Gibbs sampler: a conditional particle filter that
refreshes the allocations of every dataset, conditioned on the currently
accepted allocations (the reference trajectory carried by particle 0).

Workflow per sweep:
    1. Shuffle the observations
    2. Seed: the first ⌊ρ·n⌋−1 observations go straight to their accepted
       labels in every particle; one cluster slot per distinct label used,
       all other labels share one empty slot
    3. For each remaining observation:
        a. Mutate (per dataset):
           - score the observation under every live cluster slot
           - proposal over the N labels of each particle:
                 q_p(n) ∝ π_n · exp(log p(x | slot_p(n)))
           - log-weight += log Σ_n π_n exp(log p(x | slot_p(n)))
           - particles 1..P-1 draw a label, particle 0 takes the reference
           - copy-on-write add of the observation into the target slots
        b. Upweight: concordance reward for datasets that agree
        c. Resample when ESS ≤ threshold · P (ancestor 0 always survives)
    4. Return the particles; the caller selects one by its final weight

Particles share cluster statistics through per-dataset ClusterRegistry
arenas, so the cost of an observation is proportional to the number of
distinct clusters, not to P·N.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Type

import numpy as np

from ..clusters.base import ClusterModel
from ..hyperparameters import InferenceState
from .particle import ParticleSystem
from .registry import ClusterRegistry, RegistryError
from .resampling import (
    compute_resampling_statistics,
    conditional_systematic_resample,
    should_resample,
)
from .upweight import concordance_upweight

logger = logging.getLogger(__name__)


@dataclass
class SMCConfig:
    """
    Configuration for the conditional SMC engine.

    Attributes:
        n_particles: Number of particles P
        n_clusters: Maximum number of clusters N
        rho: Proportion of observations seeded from the reference
        ess_threshold_ratio: ESS/P ratio for resampling trigger
    """
    n_particles: int
    n_clusters: int
    rho: float
    ess_threshold_ratio: float = 0.5

    @property
    def capacity(self) -> int:
        """Bound on live cluster slots per dataset."""
        return self.n_clusters * self.n_particles + 1


class ConditionalSMC:
    """
    Conditional particle filter over the observations of K datasets.

    The engine keeps the state of the sweep in progress (particles,
    registries, observation order) so a sweep can be driven one
    observation at a time with begin() / step(), or all at once with
    sweep().
    """

    def __init__(
        self,
        datasets: Sequence[np.ndarray],
        cluster_families: Sequence[Type[ClusterModel]],
        config: SMCConfig,
    ):
        self.datasets = [np.asarray(data) for data in datasets]
        self.config = config
        self.n_obs = self.datasets[0].shape[0]
        self.n_datasets = len(self.datasets)
        self.n_seeded = int(np.floor(config.rho * self.n_obs)) - 1

        # Empty clusters are copied from one prototype per dataset
        self._prototypes = [family(data) for family, data in zip(cluster_families, self.datasets)]

        self.particles: Optional[ParticleSystem] = None
        self.registries: List[ClusterRegistry] = []
        self.order: Optional[np.ndarray] = None
        self.n_resamples = 0

    # -------------------------------------------------------------------------
    # Sweep phases
    # -------------------------------------------------------------------------

    def begin(self, state: InferenceState, feature_flags: Sequence[np.ndarray],
              rng: np.random.Generator) -> ParticleSystem:
        """Shuffle observations, reset particles and seed every dataset."""
        P, N = self.config.n_particles, self.config.n_clusters
        self.order = rng.permutation(self.n_obs)
        self.particles = ParticleSystem.empty(P, self.n_obs, self.n_datasets, N)
        self.registries = [
            ClusterRegistry(prototype.copy, self.config.capacity) for prototype in self._prototypes
        ]
        for k in range(self.n_datasets):
            self._seed(k, state, feature_flags[k])
        return self.particles

    def _seed(self, k: int, state: InferenceState, mask: np.ndarray) -> None:
        P, N = self.config.n_particles, self.config.n_clusters
        registry = self.registries[k]
        mapping = self.particles.mapping

        empty = registry.create_empty(refcount=P * N)
        mapping[k] = empty

        seeded = self.order[:self.n_seeded]
        labels = state.allocations[seeded, k]
        for label in dict.fromkeys(labels.tolist()):
            slot = registry.create_empty(refcount=P)
            registry.release(empty, P)
            mapping[k, :, label] = slot

        data = self.datasets[k]
        for i, label in zip(seeded, labels):
            self.particles.trajectories[:, i, k] = label
            registry.add(mapping[k, 0, label], data[i], mask)

    def mutate(self, k: int, i: int, state: InferenceState, mask: np.ndarray,
               rng: np.random.Generator, weights: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Allocate observation i of dataset k in every particle.

        Args:
            k: Dataset index
            i: Observation index
            state: Current hyperparameters and reference allocations
            mask: Active features of dataset k
            rng: Random generator
            weights: Normalised component weights of dataset k (π_k)

        Returns:
            Labels drawn for the observation, shape (P,)
        """
        particles = self.particles
        registry = self.registries[k]
        P = self.config.n_particles
        if weights is None:
            weights = state.mixture_weights[:, k]
        obs = self.datasets[k][i]

        log_pred = np.zeros(registry.size)
        for slot in registry.live_slots():
            log_pred[slot] = registry.log_predictive(slot, obs, mask)

        # Log-sum-exp over each particle's N candidate clusters
        scores = log_pred[particles.mapping[k]]
        max_score = scores.max(axis=1, keepdims=True)
        mass = np.exp(scores - max_score) * weights[None, :]
        total = mass.sum(axis=1)
        particles.log_weights += np.log(total) + max_score[:, 0]
        cumulative = np.cumsum(mass, axis=1) / total[:, None]

        labels = np.empty(P, dtype=int)
        labels[0] = state.allocations[i, k]
        u = rng.random(P - 1)
        labels[1:] = np.sum(cumulative[1:, :-1] <= u[:, None], axis=1)

        rows = np.arange(P)
        targets = particles.mapping[k, rows, labels]
        for slot in dict.fromkeys(targets.tolist()):
            hit = targets == slot
            new_slot = registry.write(slot, int(hit.sum()), obs, mask)
            if new_slot != slot:
                particles.mapping[k, rows[hit], labels[hit]] = new_slot

        particles.trajectories[:, i, k] = labels
        return labels

    def resample(self, rng: np.random.Generator) -> np.ndarray:
        """Conditional systematic resampling followed by registry compaction."""
        particles = self.particles
        ancestors = conditional_systematic_resample(particles.log_weights, rng)
        stats = compute_resampling_statistics(particles.log_weights, ancestors)

        particles.reindex(ancestors)
        for k, registry in enumerate(self.registries):
            particles.mapping[k] = registry.compact(particles.mapping[k])

        self.n_resamples += 1
        logger.debug(
            "Resampled: ESS %.2f, %d unique ancestors, %d dropped",
            stats["ess_before"], stats["n_unique"], stats["n_dead"],
        )
        return ancestors

    def step(self, i: int, state: InferenceState, feature_flags: Sequence[np.ndarray],
             rng: np.random.Generator) -> float:
        """
        Process one observation across all datasets.

        Returns:
            Effective sample size after upweighting (before any resampling)
        """
        P = self.config.n_particles
        pi = state.mixture_weights
        labels = np.empty((P, self.n_datasets), dtype=int)
        for k in range(self.n_datasets):
            labels[:, k] = self.mutate(k, i, state, feature_flags[k], rng, pi[:, k])

        concordance_upweight(self.particles.log_weights, labels, state.phi, state.pairs)

        ess = self.particles.effective_sample_size()
        self.particles.ess_history.append(ess)
        if should_resample(ess, P, self.config.ess_threshold_ratio):
            self.resample(rng)
        return ess

    def sweep(self, state: InferenceState, feature_flags: Sequence[np.ndarray],
              rng: np.random.Generator) -> ParticleSystem:
        """Run a complete conditional SMC sweep and return the particles."""
        self.begin(state, feature_flags, rng)
        for i in self.order[self.n_seeded:]:
            self.step(int(i), state, feature_flags, rng)
        logger.debug(
            "Sweep finished: %d resamples, min ESS %.2f",
            self.particles.n_resamples,
            min(self.particles.ess_history) if self.particles.ess_history else float("nan"),
        )
        return self.particles

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def verify_references(self) -> None:
        """
        Check every registry against the particle mapping.

        Raises:
            RegistryError: if reference counts disagree with the mapping
        """
        expected_total = self.config.n_particles * self.config.n_clusters
        for k, registry in enumerate(self.registries):
            ids, counts = np.unique(self.particles.mapping[k], return_counts=True)
            for slot, count in zip(ids, counts):
                if registry.refcount(int(slot)) != count:
                    raise RegistryError(
                        f"Dataset {k}: slot {slot} has refcount {registry.refcount(int(slot))}, "
                        f"mapping holds {count}"
                    )
            if registry.total_references() != expected_total:
                raise RegistryError(
                    f"Dataset {k}: {registry.total_references()} references, expected {expected_total}"
                )
