"""
===============================================================================
BASE — Cluster Model Contract
===============================================================================

Every datatype the sampler can cluster is described by a cluster model: an
object holding the sufficient statistics of the observations assigned to one
cluster, able to score a new observation against them.

Capability set:
    Family(dataset)               -> empty cluster (priors may read the data)
    add(observation, mask)        -> fold one observation into the statistics
    log_predictive(obs, mask)     -> log p(obs | members), active features only
    log_marginal_features()       -> per-feature log marginal likelihood
    log_marginal()                -> sum of the above
    copy()                        -> independent value copy (no shared arrays)

The feature mask is a boolean vector over columns. Only active features are
updated by add() and scored by log_predictive(); log_marginal_features() always
reports every column.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Type

import numpy as np


class ClusterFamily(Enum):
    """Supported cluster datatypes."""
    GAUSSIAN = "gaussian"
    CATEGORICAL = "categorical"


class ClusterModel(ABC):
    """
    Sufficient statistics of a single cluster for one dataset.

    Subclasses must implement add, log_predictive, log_marginal_features
    and copy.
    """

    family: ClusterFamily

    def __init__(self, dataset: np.ndarray):
        dataset = np.asarray(dataset)
        if dataset.ndim != 2:
            raise ValueError(f"Cluster models need a 2-D dataset, got shape {dataset.shape}")
        self.n_features = dataset.shape[1]

    @abstractmethod
    def add(self, observation: np.ndarray, mask: np.ndarray) -> None:
        """Add one observation to the cluster (in place)."""

    @abstractmethod
    def log_predictive(self, observation: np.ndarray, mask: np.ndarray) -> float:
        """Log posterior predictive density of an observation."""

    @abstractmethod
    def log_marginal_features(self) -> np.ndarray:
        """Log marginal likelihood of the members, one entry per feature."""

    @abstractmethod
    def copy(self) -> 'ClusterModel':
        """Deep copy of the sufficient statistics."""

    def log_marginal(self) -> float:
        """Log marginal likelihood of the members over all features."""
        return float(np.sum(self.log_marginal_features()))


# Populated by the family modules on import
CLUSTER_FAMILIES: Dict[ClusterFamily, Type[ClusterModel]] = {}


def register_family(cls: Type[ClusterModel]) -> Type[ClusterModel]:
    """Class decorator recording a cluster model under its family."""
    CLUSTER_FAMILIES[cls.family] = cls
    return cls


def get_cluster_family(name) -> Type[ClusterModel]:
    """
    Resolve a family name ('gaussian', 'categorical') or enum to its class.

    Raises:
        ValueError: if the name is unknown
    """
    if isinstance(name, type) and issubclass(name, ClusterModel):
        return name
    try:
        family = name if isinstance(name, ClusterFamily) else ClusterFamily(str(name).lower())
    except ValueError:
        valid = ", ".join(f.value for f in ClusterFamily)
        raise ValueError(f"Unknown cluster family '{name}' (expected one of: {valid})") from None
    return CLUSTER_FAMILIES[family]
