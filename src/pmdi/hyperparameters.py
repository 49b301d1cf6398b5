"""
===============================================================================
HYPERPARAMETERS — MDI Hyperparameter State & Gibbs Updates
===============================================================================

Holds every quantity shared between sweeps in an explicit InferenceState and
updates it once per sweep.

Model (Kirk et al. 2012, multiple dataset integration):

    p(c_1..c_K) ∝ Π_k γ_{c_k,k} · Π_{k<l} (1 + Φ_kl · 1[c_k = c_l])

    Z = Σ_{c_1..c_K} Π_k γ_{c_k,k} Π_{k<l} (1 + Φ_kl 1[c_k = c_l])

The normalising constant Z is handled with the auxiliary variable
v ~ Gamma(n, Z), which turns Z into an exp(−v Z) factor. Z is linear in each
γ_nk and each Φ_kl, so:

    γ_nk | ·  ~ Gamma(M_k/N + n_nk,  1 + v A_nk)
    Φ_kl | ·  ~ mixture over j of Gamma(a + j, b + v C_kl),
                j ~ C(m, j) Γ(a + j) / (b + v C_kl)^{a+j}

where n_nk counts observations with label n in dataset k, m counts
observations whose labels agree in datasets k and l, and A_nk / C_kl are the
coefficients of γ_nk / Φ_kl in Z. The mass parameters M_k are updated by a
log-scale random walk Metropolis step.

All sums over label combinations enumerate the N^K combinations explicitly.

Update order per sweep: M, γ, Φ (K > 1), Z, v.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from scipy.special import gammaln, logsumexp

from .pmdi_config import DEFAULT_HYPERPRIORS, HyperpriorConfig

logger = logging.getLogger(__name__)

EPS = np.finfo(float).eps


# =============================================================================
# LABEL COMBINATIONS
# =============================================================================

def dataset_pairs(n_datasets: int) -> List[Tuple[int, int]]:
    """
    Unordered dataset pairs (k1 < k2) in lexicographic order.

    A single dataset gets the placeholder pair (0, 0).
    """
    if n_datasets < 2:
        return [(0, 0)]
    return [(k1, k2) for k1 in range(n_datasets - 1) for k2 in range(k1 + 1, n_datasets)]


def allocation_combinations(n_clusters: int, n_datasets: int) -> np.ndarray:
    """All N^K label combinations, shape (N^K, K); column 0 varies fastest."""
    combos = np.array(list(itertools.product(range(n_clusters), repeat=n_datasets)), dtype=int)
    return combos[:, ::-1]


def concordance_index(combinations: np.ndarray, pairs: List[Tuple[int, int]]) -> np.ndarray:
    """Which pairs agree under each label combination, shape (N^K, n_pairs)."""
    if combinations.shape[1] < 2:
        return np.ones((combinations.shape[0], 1), dtype=bool)
    return np.column_stack([combinations[:, k1] == combinations[:, k2] for k1, k2 in pairs])


# =============================================================================
# STATE
# =============================================================================

@dataclass
class InferenceState:
    """
    Quantities persisting across sweeps.

    Attributes:
        mass: Mass parameter per dataset, shape (K,)
        gamma: Component weights, shape (N, K)
        phi: Concordance per dataset pair (0-valued placeholder when K = 1)
        allocations: Accepted labels, shape (n, K), 0-based
        pairs: Dataset pairs aligned with phi
        combinations: All label combinations, shape (N^K, K)
        phi_index: Pair agreement per combination, shape (N^K, n_pairs)
        Z: Partition function
        v: Auxiliary variable for Z
    """
    mass: np.ndarray
    gamma: np.ndarray
    phi: np.ndarray
    allocations: np.ndarray
    pairs: List[Tuple[int, int]]
    combinations: np.ndarray
    phi_index: np.ndarray
    Z: float = 1.0
    v: float = 1.0

    @property
    def n_obs(self) -> int:
        return self.allocations.shape[0]

    @property
    def n_datasets(self) -> int:
        return self.allocations.shape[1]

    @property
    def n_clusters(self) -> int:
        return self.gamma.shape[0]

    @property
    def mixture_weights(self) -> np.ndarray:
        """γ normalised within each dataset, shape (N, K)."""
        return self.gamma / self.gamma.sum(axis=0, keepdims=True)

    def log_phi_matrix(self) -> np.ndarray:
        """Symmetric K × K matrix of log(1 + Φ_kl), zero diagonal."""
        out = np.zeros((self.n_datasets, self.n_datasets))
        if self.n_datasets > 1:
            for (k1, k2), phi_kl in zip(self.pairs, self.phi):
                out[k1, k2] = out[k2, k1] = np.log1p(phi_kl)
        return out

    @classmethod
    def initialise(
        cls,
        n_obs: int,
        n_datasets: int,
        n_clusters: int,
        rng: np.random.Generator,
        priors: Optional[HyperpriorConfig] = None,
    ) -> 'InferenceState':
        """
        Draw initial hyperparameters and allocations.

        γ ~ Gamma(1/N, 1) + ε, Φ ~ Gamma(a_Φ, b_Φ) and each dataset's
        allocations are drawn from its normalised γ column.
        """
        priors = priors or DEFAULT_HYPERPRIORS
        pairs = dataset_pairs(n_datasets)
        combinations = allocation_combinations(n_clusters, n_datasets)

        mass = np.full(n_datasets, priors.initial_mass)
        gamma = rng.gamma(1.0 / n_clusters, 1.0, size=(n_clusters, n_datasets)) + EPS
        if n_datasets > 1:
            phi = rng.gamma(priors.phi_shape, 1.0 / priors.phi_rate, size=len(pairs))
        else:
            phi = np.zeros(1)

        allocations = np.empty((n_obs, n_datasets), dtype=int)
        for k in range(n_datasets):
            p = gamma[:, k] / gamma[:, k].sum()
            allocations[:, k] = rng.choice(n_clusters, size=n_obs, p=p)

        state = cls(
            mass=mass,
            gamma=gamma,
            phi=phi,
            allocations=allocations,
            pairs=pairs,
            combinations=combinations,
            phi_index=concordance_index(combinations, pairs),
        )
        state.Z = update_partition_function(state)
        state.v = update_v(n_obs, state.Z, rng)
        return state


# =============================================================================
# HELPERS
# =============================================================================

def _log_gamma_per_combination(state: InferenceState) -> np.ndarray:
    """log γ_{c_k,k} for every combination and dataset, shape (N^K, K)."""
    log_gamma = np.log(state.gamma)
    return log_gamma[state.combinations, np.arange(state.n_datasets)]


def _concordance_factors(state: InferenceState, exclude: Optional[int] = None) -> np.ndarray:
    """Π_pairs (1 + Φ · agreement) per combination, optionally skipping one pair."""
    factors = 1.0 + state.phi[None, :] * state.phi_index
    if exclude is not None:
        factors = np.delete(factors, exclude, axis=1)
    return np.prod(factors, axis=1)


# =============================================================================
# UPDATES
# =============================================================================

def update_partition_function(state: InferenceState) -> float:
    """Z = Σ_c Π_k γ_{c_k,k} Π_{k<l} (1 + Φ_kl 1[c_k = c_l])."""
    log_products = _log_gamma_per_combination(state).sum(axis=1)
    return float(np.sum(np.exp(log_products) * _concordance_factors(state)))


def update_v(n_obs: int, Z: float, rng: np.random.Generator) -> float:
    """v ~ Gamma(n, rate Z)."""
    return float(rng.gamma(n_obs, 1.0 / Z))


def _log_mass_target(mass: float, log_gamma: np.ndarray, n_clusters: int,
                     priors: HyperpriorConfig) -> float:
    shape = mass / n_clusters
    return float(
        (priors.mass_shape - 1.0) * np.log(mass)
        - priors.mass_rate * mass
        + np.sum((shape - 1.0) * log_gamma - gammaln(shape))
    )


def update_mass(state: InferenceState, rng: np.random.Generator,
                priors: Optional[HyperpriorConfig] = None) -> np.ndarray:
    """
    Random-walk Metropolis on log M_k for every dataset.

    Target: Gamma(a, b) prior on M_k times Π_n Gamma(γ_nk; M_k/N, 1).
    """
    priors = priors or DEFAULT_HYPERPRIORS
    log_gamma = np.log(state.gamma)
    for k in range(state.n_datasets):
        current = state.mass[k]
        proposal = current * np.exp(priors.mass_step * rng.standard_normal())
        log_ratio = (
            _log_mass_target(proposal, log_gamma[:, k], state.n_clusters, priors)
            - _log_mass_target(current, log_gamma[:, k], state.n_clusters, priors)
            + np.log(proposal) - np.log(current)
        )
        if rng.random() < np.exp(min(log_ratio, 0.0)):
            state.mass[k] = proposal
    return state.mass


def update_weights(state: InferenceState, rng: np.random.Generator) -> np.ndarray:
    """Gibbs update of the component weights γ, one dataset at a time."""
    N, K = state.n_clusters, state.n_datasets
    concord = _concordance_factors(state)

    for k in range(K):
        log_g = _log_gamma_per_combination(state)
        others = log_g.sum(axis=1) - log_g[:, k]
        coefficient = np.bincount(
            state.combinations[:, k],
            weights=np.exp(others) * concord,
            minlength=N,
        )
        counts = np.bincount(state.allocations[:, k], minlength=N)
        shape = state.mass[k] / N + counts
        rate = 1.0 + state.v * coefficient
        state.gamma[:, k] = rng.gamma(shape, 1.0 / rate) + EPS
    return state.gamma


def update_concordance(state: InferenceState, rng: np.random.Generator,
                       priors: Optional[HyperpriorConfig] = None) -> np.ndarray:
    """
    Gibbs update of every Φ_kl via the binomial expansion of (1 + Φ)^m.

    No-op for a single dataset.
    """
    if state.n_datasets < 2:
        return state.phi
    priors = priors or DEFAULT_HYPERPRIORS
    products = np.exp(_log_gamma_per_combination(state).sum(axis=1))

    for i, (k1, k2) in enumerate(state.pairs):
        agree = int(np.sum(state.allocations[:, k1] == state.allocations[:, k2]))
        rows = state.phi_index[:, i]
        coefficient = np.sum(products[rows] * _concordance_factors(state, exclude=i)[rows])
        rate = priors.phi_rate + state.v * coefficient

        j = np.arange(agree + 1)
        log_w = (
            gammaln(agree + 1) - gammaln(j + 1) - gammaln(agree - j + 1)
            + gammaln(priors.phi_shape + j)
            - (priors.phi_shape + j) * np.log(rate)
        )
        probs = np.exp(log_w - logsumexp(log_w))
        j_star = rng.choice(agree + 1, p=probs / probs.sum())
        state.phi[i] = rng.gamma(priors.phi_shape + j_star, 1.0 / rate)
    return state.phi


def update_hyperparameters(state: InferenceState, rng: np.random.Generator,
                           priors: Optional[HyperpriorConfig] = None) -> InferenceState:
    """Run one round of hyperparameter updates in place: M, γ, Φ, Z, v."""
    update_mass(state, rng, priors)
    update_weights(state, rng)
    if state.n_datasets > 1:
        update_concordance(state, rng, priors)
    state.Z = update_partition_function(state)
    state.v = update_v(state.n_obs, state.Z, rng)
    logger.debug("Hyperparameters: M=%s Φ=%s Z=%.4g v=%.4g", state.mass, state.phi, state.Z, state.v)
    return state
