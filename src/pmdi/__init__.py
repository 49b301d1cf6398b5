"""
===============================================================================
PMDI — Particle Multiple Dataset Integration
===============================================================================

Bayesian integrative clustering of several datasets measured on the same
observational units. Each dataset gets its own mixture model; the concordance
parameters Φ reward datasets that put an observation in the same cluster.
Inference is a particle Gibbs sampler built on conditional SMC.

Usage:
    from pmdi import run

    result = run(
        [expression, mutations],
        ["gaussian", "categorical"],
        max_clusters=10,
        particles=32,
        rho=0.25,
        iterations=1000,
        output_path="output.csv",
    )
"""

from .clusters import (
    CLUSTER_FAMILIES,
    CategoricalCluster,
    ClusterFamily,
    ClusterModel,
    GaussianCluster,
    get_cluster_family,
)

from .pmdi_config import (
    DEFAULT_HYPERPRIORS,
    HyperpriorConfig,
    SamplerConfig,
    validate_datasets,
)

from .hyperparameters import (
    InferenceState,
    update_hyperparameters,
)

from .alignment import align_labels

from .feature_selection import FeatureSelector

from .output import ChainWriter, read_chain

from .sampler import (
    ParticleMDI,
    SamplerResult,
    run,
)

__all__ = [
    # Cluster models
    'CLUSTER_FAMILIES',
    'CategoricalCluster',
    'ClusterFamily',
    'ClusterModel',
    'GaussianCluster',
    'get_cluster_family',
    # Configuration
    'DEFAULT_HYPERPRIORS',
    'HyperpriorConfig',
    'SamplerConfig',
    'validate_datasets',
    # State
    'InferenceState',
    'update_hyperparameters',
    'align_labels',
    'FeatureSelector',
    # Output
    'ChainWriter',
    'read_chain',
    # Sampler
    'ParticleMDI',
    'SamplerResult',
    'run',
]

__version__ = "0.1.0"
