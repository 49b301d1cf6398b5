"""
===============================================================================
SMC — Conditional Sequential Monte Carlo for Particle Gibbs
===============================================================================

Implements the conditional particle filter used by each particle Gibbs sweep.

Key Features:
1. Reference trajectory (particle 0) fixed to the accepted allocations
2. Cluster statistics shared between particles through ref-counted slots
3. Copy-on-write only when particle histories diverge
4. ESS-triggered conditional systematic resampling
5. Cross-dataset concordance upweighting

Architecture:
    ClusterRegistry  = arena of (cluster model, refcount) slots per dataset
    ParticleSystem   = label → slot mapping, trajectories, log-weights
    ConditionalSMC   = Seed → Mutate → Upweight → Resample per observation
"""

from .registry import (
    ClusterRegistry,
    ClusterSlot,
    RegistryError,
)

from .particle import ParticleSystem

from .smc_engine import (
    ConditionalSMC,
    SMCConfig,
)

from .resampling import (
    conditional_systematic_resample,
    effective_sample_size,
    normalized_weights,
    should_resample,
)

from .upweight import concordance_upweight

__all__ = [
    # Registry
    'ClusterRegistry',
    'ClusterSlot',
    'RegistryError',
    # Particles
    'ParticleSystem',
    # Engine
    'ConditionalSMC',
    'SMCConfig',
    # Resampling
    'conditional_systematic_resample',
    'effective_sample_size',
    'normalized_weights',
    'should_resample',
    # Upweighting
    'concordance_upweight',
]
