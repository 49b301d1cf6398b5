"""
===============================================================================
RESAMPLING — Conditional SMC Resampling
===============================================================================

Resampling for a conditional particle filter, where particle 0 carries the
reference trajectory and must survive every resampling event.

1. Effective sample size from log-weights
   - ESS = (Σ e^{w−max})² / Σ e^{2(w−max)}
   - ESS = P for equal weights, → 1 as one particle dominates

2. Conditional systematic resampling
   - Single uniform offset, P equally spaced points on the weight CDF
   - Ancestor 0 forced into the output: shuffle, overwrite the first
     entry with 0, sort
   - Output is sorted, so the reference particle stays at position 0

Reference: Andrieu, Doucet & Holenstein (2010) "Particle Markov chain
Monte Carlo methods"
"""

import numpy as np


def effective_sample_size(log_weights: np.ndarray) -> float:
    """
    Compute effective sample size from unnormalised log-weights.

    Args:
        log_weights: Particle log-weights

    Returns:
        Effective sample size in [1, P]
    """
    log_weights = np.asarray(log_weights, dtype=float).flatten()
    scaled = np.exp(log_weights - np.max(log_weights))
    return float(np.sum(scaled) ** 2 / np.sum(scaled ** 2))


def normalized_weights(log_weights: np.ndarray) -> np.ndarray:
    """Normalised weights via the max-shift trick."""
    log_weights = np.asarray(log_weights, dtype=float)
    scaled = np.exp(log_weights - np.max(log_weights))
    return scaled / np.sum(scaled)


def systematic_positions(n_samples: int, rng: np.random.Generator) -> np.ndarray:
    """Draw one offset u ~ U[0, 1) and return (u + j) / n for j = 0..n-1."""
    return (rng.random() + np.arange(n_samples)) / n_samples


def conditional_systematic_resample(
    log_weights: np.ndarray,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Systematic resampling that always retains ancestor 0.

    Algorithm:
        1. Compute normalised cumulative weights C_p
        2. Points u_j = (u + j) / P, single u ~ U[0, 1)
        3. Ancestor for u_j is the smallest p with C_p ≥ u_j
        4. Shuffle ancestors, set the first to 0, sort

    Args:
        log_weights: Particle log-weights (length P)
        rng: Random generator

    Returns:
        Sorted array of P ancestor indices with ancestors[0] == 0
    """
    weights = normalized_weights(log_weights)
    n = len(weights)

    cumsum = np.cumsum(weights)
    cumsum[-1] = 1.0  # Ensure exact 1.0 due to floating point

    ancestors = np.searchsorted(cumsum, systematic_positions(n, rng), side="left")
    ancestors = np.clip(ancestors, 0, n - 1)

    # Ancestor 0 must be present and the output must stay sorted
    rng.shuffle(ancestors)
    ancestors[0] = 0
    ancestors.sort()
    return ancestors


def should_resample(ess: float, n_particles: int, threshold_ratio: float = 0.5) -> bool:
    """
    Determine if resampling should be triggered.

    Criterion: resample when ESS ≤ threshold_ratio · P
    """
    return ess <= threshold_ratio * n_particles


def compute_resampling_statistics(
    log_weights_before: np.ndarray,
    ancestors: np.ndarray,
) -> dict:
    """
    Compute statistics about a resampling operation.

    Args:
        log_weights_before: Log-weights before resampling
        ancestors: Selected ancestor indices

    Returns:
        Dictionary with resampling statistics
    """
    n = len(log_weights_before)
    counts = np.bincount(ancestors, minlength=n)

    return {
        "n_particles": n,
        "n_unique": int(np.sum(counts > 0)),
        "n_dead": int(np.sum(counts == 0)),
        "max_copies": int(np.max(counts)),
        "ess_before": effective_sample_size(log_weights_before),
    }
