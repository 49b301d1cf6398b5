"""
Cluster models for particle MDI.

Importing this package registers the built-in families so that
get_cluster_family('gaussian') and get_cluster_family('categorical') resolve.
"""

from .base import (
    ClusterFamily,
    ClusterModel,
    CLUSTER_FAMILIES,
    get_cluster_family,
    register_family,
)
from .gaussian import GaussianCluster
from .categorical import CategoricalCluster

__all__ = [
    'ClusterFamily',
    'ClusterModel',
    'CLUSTER_FAMILIES',
    'get_cluster_family',
    'register_family',
    'GaussianCluster',
    'CategoricalCluster',
]
