"""
===============================================================================
PMDI CONFIGURATION — Sampler Settings & Hyperpriors
===============================================================================

Defines the run configuration for the particle Gibbs sampler and the priors
used by the hyperparameter updates.

Validation is fail-fast: every precondition is checked before any sampling
or output happens, so a bad run never leaves a partial output file behind.

Hyperpriors:
    Mass M_k        ~ Gamma(shape=2, rate=4)     (log-scale random walk MH)
    Weights γ_nk    ~ Gamma(M_k / N, 1)
    Concordance Φ   ~ Gamma(shape=1, rate=5)
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np


# =============================================================================
# HYPERPRIORS
# =============================================================================

@dataclass
class HyperpriorConfig:
    """
    Priors and proposal scales for the hyperparameter updates.

    Attributes:
        initial_mass: Starting value of every mass parameter
        mass_shape: Gamma prior shape for the mass parameters
        mass_rate: Gamma prior rate for the mass parameters
        mass_step: Std. dev. of the log-scale random walk on the mass
        phi_shape: Gamma prior shape for the concordance parameters
        phi_rate: Gamma prior rate for the concordance parameters
    """
    initial_mass: float = 2.0
    mass_shape: float = 2.0
    mass_rate: float = 4.0
    mass_step: float = 0.5
    phi_shape: float = 1.0
    phi_rate: float = 5.0

    def validate(self) -> bool:
        """Validate configuration."""
        for name in ("initial_mass", "mass_shape", "mass_rate", "mass_step", "phi_shape", "phi_rate"):
            value = getattr(self, name)
            if not value > 0:
                raise ValueError(f"{name} must be > 0, got {value}")
        return True


# Default hyperpriors
DEFAULT_HYPERPRIORS = HyperpriorConfig()


# =============================================================================
# SAMPLER CONFIGURATION
# =============================================================================

@dataclass
class SamplerConfig:
    """
    Configuration of one particle MDI run.

    Attributes:
        max_clusters: Maximum number of clusters N per dataset
        n_particles: Number of particles P
        rho: Proportion of allocations held fixed at the start of each sweep
        iterations: Number of particle Gibbs sweeps
        thin: Record every `thin`-th sweep
        ess_threshold_ratio: Resample when ESS ≤ ratio · P
        seed: Seed for the single random stream (None = fresh entropy)
        verbose: Show a progress bar and summary table
    """
    max_clusters: int
    n_particles: int
    rho: float
    iterations: int
    thin: int = 1
    ess_threshold_ratio: float = 0.5
    seed: Optional[int] = None
    verbose: bool = False

    def n_seeded(self, n_obs: int) -> int:
        """Observations assigned directly to their accepted labels each sweep."""
        return math.floor(self.rho * n_obs) - 1

    def validate(self, n_obs: int) -> bool:
        """
        Validate configuration against the number of observations.

        Raises:
            ValueError: on the first violated precondition
        """
        if not (0 < self.rho < 1):
            raise ValueError(f"rho must be between 0 and 1, got {self.rho}")
        if not (1 < self.max_clusters <= n_obs):
            raise ValueError(
                f"Number of clusters must be greater than 1 and not greater than the "
                f"number of observations ({n_obs}), got {self.max_clusters}; "
                f"suggest using floor(log(n)) = {math.floor(math.log(n_obs)) if n_obs > 0 else 0}"
            )
        if self.n_particles <= 1:
            raise ValueError(
                f"Conditional particle filter requires 2 or more particles, got {self.n_particles}"
            )
        if self.n_seeded(n_obs) < 1:
            raise ValueError(
                f"rho * n must leave at least one seeded observation: "
                f"floor({self.rho} * {n_obs}) - 1 = {self.n_seeded(n_obs)}"
            )
        if self.iterations < 1:
            raise ValueError(f"iterations must be >= 1, got {self.iterations}")
        if self.thin < 1:
            raise ValueError(f"thin must be >= 1, got {self.thin}")
        if not (0 < self.ess_threshold_ratio <= 1):
            raise ValueError(f"ess_threshold_ratio must be in (0, 1], got {self.ess_threshold_ratio}")
        return True


def validate_datasets(
    datasets: Sequence[np.ndarray],
    cluster_families: Sequence,
    dataset_names: Optional[Sequence[str]],
) -> List[str]:
    """
    Check dataset shapes and companion lists, returning the dataset names.

    Unnamed datasets are called K1..KK.

    Raises:
        ValueError: on non-numeric data, mismatched lengths or row counts
    """
    if len(datasets) == 0:
        raise ValueError("At least one dataset is required")
    n_datasets = len(datasets)
    for k, data in enumerate(datasets):
        if np.ndim(data) != 2:
            raise ValueError(f"Dataset {k + 1} must be a 2-D matrix, got {np.ndim(data)} dimensions")
        dtype = np.asarray(data).dtype
        if not (np.issubdtype(dtype, np.number) or np.issubdtype(dtype, np.bool_)):
            raise ValueError(f"Dataset {k + 1} must be numeric, got dtype {dtype}")

    if len(cluster_families) != n_datasets:
        raise ValueError("Number of datatypes not equal to number of datasets")

    if dataset_names is None:
        dataset_names = [f"K{k + 1}" for k in range(n_datasets)]
    if len(dataset_names) != n_datasets:
        raise ValueError("Number of data names not equal to number of datasets")

    n_obs = np.shape(datasets[0])[0]
    if any(np.shape(data)[0] != n_obs for data in datasets):
        raise ValueError(
            "Datasets don't have same number of observations. Each row must correspond "
            "to the same underlying observational unit across datasets."
        )
    return list(dataset_names)
