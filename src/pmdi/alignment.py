"""
===============================================================================
ALIGNMENT — Cross-Dataset Label Alignment
===============================================================================

Cluster labels within one dataset are only defined up to permutation, yet the
concordance Φ_kl rewards datasets k and l for using the *same* label. After a
particle has been accepted, each dataset's labels are therefore re-permuted by
a local Metropolis scan so that they line up with the other datasets.

For dataset k, occupied label a and candidate b:

    current = Σ_{l≠k} log(1+Φ_kl) · (#{i: s_ik=a, s_il=a} + #{i: s_ik=b, s_il=b})
    swapped = Σ_{l≠k} log(1+Φ_kl) · (#{i: s_ik=a, s_il=b} + #{i: s_ik=b, s_il=a})

    accept swap a ↔ b with probability min(1, exp(swapped − current))

On acceptance the memberships of a and b and their γ entries are exchanged,
and the scan continues from the swapped state with `a` rebound to b (its
membership recomputed at once). The partition itself is unchanged, so the
likelihood of the accepted allocation is unaffected.
"""

import logging

import numpy as np

from .hyperparameters import InferenceState

logger = logging.getLogger(__name__)


def _occupied_in_order(labels: np.ndarray) -> np.ndarray:
    """Distinct labels in order of first appearance."""
    _, first = np.unique(labels, return_index=True)
    return labels[np.sort(first)]


def swap_log_ratio(
    label_rows: np.ndarray,
    candidate_rows: np.ndarray,
    label: int,
    candidate: int,
    log_phi: np.ndarray,
) -> float:
    """
    Log acceptance ratio of swapping `label` and `candidate`.

    Args:
        label_rows: Other datasets' labels for members of `label`, shape (m, K-1)
        candidate_rows: Other datasets' labels for members of `candidate`
        label: Current label
        candidate: Label it would be swapped with
        log_phi: log(1 + Φ_kl) against each other dataset, shape (K-1,)

    Returns:
        swapped − current
    """
    current = (np.sum(label_rows == label, axis=0)
               + np.sum(candidate_rows == candidate, axis=0))
    swapped = (np.sum(label_rows == candidate, axis=0)
               + np.sum(candidate_rows == label, axis=0))
    return float(np.sum((swapped - current) * log_phi))


def swap_labels(allocations: np.ndarray, gamma: np.ndarray, k: int,
                label: int, candidate: int) -> None:
    """Exchange the memberships and γ entries of two labels of dataset k, in place."""
    column = allocations[:, k]
    label_ind = column == label
    candidate_ind = column == candidate
    column[label_ind] = candidate
    column[candidate_ind] = label
    gamma[[label, candidate], k] = gamma[[candidate, label], k]


def align_dataset(
    allocations: np.ndarray,
    gamma: np.ndarray,
    k: int,
    log_phi_matrix: np.ndarray,
    rng: np.random.Generator,
) -> int:
    """
    Metropolis relabelling scan over dataset k, in place.

    Returns:
        Number of accepted swaps
    """
    n_clusters = gamma.shape[0]
    others = np.arange(allocations.shape[1]) != k
    log_phi = log_phi_matrix[k, others]
    column = allocations[:, k]
    n_swaps = 0

    for label in _occupied_in_order(column.copy()):
        label_ind = column == label
        if not label_ind.any():
            continue
        label_rows = allocations[label_ind][:, others]

        for candidate in range(n_clusters):
            if candidate == label:
                continue
            candidate_ind = column == candidate
            candidate_rows = allocations[candidate_ind][:, others]

            log_ratio = swap_log_ratio(label_rows, candidate_rows, label, candidate, log_phi)
            if rng.random() < np.exp(min(log_ratio, 0.0)):
                swap_labels(allocations, gamma, k, label, candidate)
                n_swaps += 1

                label = candidate
                label_ind = column == label
                label_rows = allocations[label_ind][:, others]
    return n_swaps


def align_labels(state: InferenceState, rng: np.random.Generator) -> int:
    """
    Align the labels of every dataset against the others, in place.

    Mutates state.allocations and state.gamma. No-op for a single dataset.

    Returns:
        Total number of accepted swaps
    """
    if state.n_datasets < 2:
        return 0
    log_phi_matrix = state.log_phi_matrix()
    n_swaps = 0
    for k in range(state.n_datasets):
        n_swaps += align_dataset(state.allocations, state.gamma, k, log_phi_matrix, rng)
    logger.debug("Label alignment accepted %d swaps", n_swaps)
    return n_swaps
