"""
Cross-dataset concordance upweighting.

After every dataset has allocated the current observation, each particle
gains log(1 + Φ_kl) for every dataset pair (k, l) whose labels agree.
"""

from typing import Sequence, Tuple

import numpy as np


def concordance_upweight(
    log_weights: np.ndarray,
    labels: np.ndarray,
    phi: np.ndarray,
    pairs: Sequence[Tuple[int, int]],
) -> np.ndarray:
    """
    Add the concordance reward to particle log-weights in place.

    Args:
        log_weights: Particle log-weights, shape (P,)
        labels: Labels of the current observation, shape (P, K)
        phi: Concordance per pair, aligned with `pairs`
        pairs: Unordered dataset pairs (k1 < k2)

    Returns:
        The updated log_weights array
    """
    if labels.shape[1] < 2:
        return log_weights
    for (k1, k2), phi_kl in zip(pairs, phi):
        log_weights += np.log1p(phi_kl) * (labels[:, k1] == labels[:, k2])
    return log_weights
