"""
===============================================================================
SAMPLER — Particle Gibbs for Multiple Dataset Integration
===============================================================================

Runs particle MDI on K datasets that share the same observational units.

Architecture, per sweep:
    1. Update hyperparameters (M, γ, Φ, Z, v)
    2. Conditional SMC sweep over all observations and datasets
    3. Select one particle by its normalised final weight
    4. Collapse it into the allocation matrix
    5. Align labels across datasets
    6. Resample feature flags (optional)
    7. Record a row every `thin` sweeps

Output:
    Allocation CSV: mass parameters, Φ for every dataset pair, elapsed
    seconds and the flattened allocation matrix.
    Feature CSV (optional): 0/1 inclusion flag per feature per dataset.
"""

import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
from rich import box
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .alignment import align_labels
from .clusters import get_cluster_family
from .feature_selection import FeatureSelector
from .hyperparameters import InferenceState, update_hyperparameters
from .output import (
    ChainWriter,
    allocation_columns,
    allocation_row,
    feature_columns,
    feature_row,
)
from .pmdi_config import (
    DEFAULT_HYPERPRIORS,
    HyperpriorConfig,
    SamplerConfig,
    validate_datasets,
)
from .smc import ConditionalSMC, SMCConfig

logger = logging.getLogger(__name__)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class SamplerResult:
    """
    Result of a particle MDI run.

    Attributes:
        state: Final hyperparameters and allocations
        feature_flags: Final feature inclusion flags per dataset
        dataset_names: Names used in the output headers
        n_resamples: Resampling events over the whole run
        rows_written: Data rows in the allocation file
        elapsed: Wall-clock seconds
        output_path: Allocation file
        feature_path: Feature file, if feature selection was run
        swaps: Accepted label swaps per sweep
    """
    state: InferenceState
    feature_flags: List[np.ndarray]
    dataset_names: List[str]
    n_resamples: int
    rows_written: int
    elapsed: float
    output_path: str
    feature_path: Optional[str] = None
    swaps: List[int] = field(default_factory=list)


# =============================================================================
# RUN
# =============================================================================

def run(
    datasets: Sequence[np.ndarray],
    cluster_families: Sequence,
    max_clusters: int,
    particles: int,
    rho: float,
    iterations: int,
    output_path: str,
    thin: int = 1,
    feature_select_path: Optional[str] = None,
    dataset_names: Optional[Sequence[str]] = None,
    seed: Optional[int] = None,
    hyperpriors: Optional[HyperpriorConfig] = None,
    verbose: bool = False,
) -> SamplerResult:
    """
    Run particle MDI on the given datasets.

    Args:
        datasets: K data matrices with the same number of rows
        cluster_families: Cluster model per dataset ('gaussian', 'categorical',
                          a ClusterFamily or a ClusterModel subclass)
        max_clusters: Maximum number of clusters N
        particles: Number of particles P
        rho: Proportion of allocations assumed known in each sweep
        iterations: Number of sweeps
        output_path: CSV file for the chain
        thin: Store every `thin`-th sweep
        feature_select_path: CSV file for feature flags; None disables
                             feature selection
        dataset_names: Names for the output headers (default K1..KK)
        seed: Seed for the random stream
        hyperpriors: Hyperprior configuration
        verbose: Show progress and a summary table

    Returns:
        SamplerResult with the final state

    Raises:
        ValueError: on invalid inputs, before any work is done
    """
    datasets = [np.asarray(data) for data in datasets]
    names = validate_datasets(datasets, cluster_families, dataset_names)
    n_obs = datasets[0].shape[0]

    config = SamplerConfig(
        max_clusters=max_clusters,
        n_particles=particles,
        rho=rho,
        iterations=iterations,
        thin=thin,
        seed=seed,
        verbose=verbose,
    )
    config.validate(n_obs)
    priors = hyperpriors or DEFAULT_HYPERPRIORS
    priors.validate()
    families = [get_cluster_family(f) for f in cluster_families]

    return ParticleMDI(datasets, families, config, names, priors).run(output_path, feature_select_path)


class ParticleMDI:
    """
    Outer particle Gibbs loop.

    Holds the single random stream; every draw of a run goes through it.
    """

    def __init__(
        self,
        datasets: Sequence[np.ndarray],
        cluster_families: Sequence,
        config: SamplerConfig,
        dataset_names: Sequence[str],
        hyperpriors: Optional[HyperpriorConfig] = None,
    ):
        self.datasets = list(datasets)
        self.cluster_families = list(cluster_families)
        self.config = config
        self.dataset_names = list(dataset_names)
        self.priors = hyperpriors or DEFAULT_HYPERPRIORS
        self.rng = np.random.default_rng(config.seed)

        self.n_obs = self.datasets[0].shape[0]
        self.n_datasets = len(self.datasets)

        self.state = InferenceState.initialise(
            self.n_obs, self.n_datasets, config.max_clusters, self.rng, self.priors
        )
        self.engine = ConditionalSMC(
            self.datasets,
            self.cluster_families,
            SMCConfig(
                n_particles=config.n_particles,
                n_clusters=config.max_clusters,
                rho=config.rho,
                ess_threshold_ratio=config.ess_threshold_ratio,
            ),
        )
        self.selector: Optional[FeatureSelector] = None
        self.swaps: List[int] = []

    def iterate(self, flags: Sequence[np.ndarray]) -> InferenceState:
        """One particle Gibbs sweep (without output)."""
        update_hyperparameters(self.state, self.rng, self.priors)

        particles = self.engine.sweep(self.state, flags, self.rng)
        p_star = particles.select(self.rng)
        particles.reset_weights()
        self.state.allocations[:] = particles.trajectories[p_star]

        self.swaps.append(align_labels(self.state, self.rng))
        if self.selector is not None:
            self.selector.update(self.state.allocations, self.rng)
        return self.state

    def run(self, output_path: str, feature_select_path: Optional[str] = None) -> SamplerResult:
        """Run every sweep, writing the chain as it goes."""
        config = self.config
        self.selector = FeatureSelector(
            self.datasets, self.cluster_families, self.rng,
            enabled=feature_select_path is not None,
        )

        logger.info(
            "Particle MDI: %d datasets, %d observations, N=%d, P=%d, rho=%.2f, %d iterations",
            self.n_datasets, self.n_obs, config.max_clusters, config.n_particles,
            config.rho, config.iterations,
        )
        start = time.perf_counter()

        with ExitStack() as stack:
            writer = stack.enter_context(ChainWriter(
                output_path,
                allocation_columns(self.dataset_names, self.n_obs, self.state.pairs),
            ))
            feature_writer = None
            if feature_select_path is not None:
                feature_writer = stack.enter_context(ChainWriter(
                    feature_select_path,
                    feature_columns(self.dataset_names, [d.shape[1] for d in self.datasets]),
                ))
                feature_writer.write(feature_row(self.selector.flags))

            progress = None
            task = None
            if config.verbose:
                progress = stack.enter_context(Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    MofNCompleteColumn(),
                    TimeElapsedColumn(),
                    console=Console(stderr=True),
                ))
                task = progress.add_task("Particle Gibbs...", total=config.iterations)

            for it in range(1, config.iterations + 1):
                self.iterate(self.selector.flags)
                elapsed = time.perf_counter() - start

                if it % config.thin == 0:
                    writer.write(allocation_row(
                        self.state.mass, self.state.phi, elapsed, self.state.allocations
                    ))
                    if feature_writer is not None:
                        feature_writer.write(feature_row(self.selector.flags))

                logger.debug("Sweep %d done in %.2fs", it, elapsed)
                if progress is not None:
                    progress.advance(task)

        elapsed = time.perf_counter() - start
        result = SamplerResult(
            state=self.state,
            feature_flags=[f.copy() for f in self.selector.flags],
            dataset_names=self.dataset_names,
            n_resamples=self.engine.n_resamples,
            rows_written=writer.rows_written,
            elapsed=elapsed,
            output_path=str(output_path),
            feature_path=str(feature_select_path) if feature_select_path is not None else None,
            swaps=list(self.swaps),
        )
        logger.info("Finished %d iterations in %.2fs (%d resamples)",
                    config.iterations, elapsed, result.n_resamples)
        if config.verbose:
            render_summary(result)
        return result


# =============================================================================
# PRESENTATION
# =============================================================================

def render_summary(result: SamplerResult, console: Optional[Console] = None) -> None:
    """Print the final hyperparameters and cluster occupancy as a rich table."""
    console = console or Console()
    state = result.state

    table = Table(title="Particle MDI — final state", box=box.ROUNDED)
    table.add_column("Dataset", style="bold")
    table.add_column("Mass", justify="right")
    table.add_column("Occupied", justify="right")
    table.add_column("Largest cluster", justify="right")
    table.add_column("Features", justify="right")

    for k, name in enumerate(result.dataset_names):
        counts = np.bincount(state.allocations[:, k], minlength=state.n_clusters)
        flags = result.feature_flags[k]
        table.add_row(
            name,
            f"{state.mass[k]:.3f}",
            f"{int(np.sum(counts > 0))}/{state.n_clusters}",
            str(int(counts.max())),
            f"{int(flags.sum())}/{len(flags)}",
        )
    console.print(table)

    if state.n_datasets > 1:
        phi_table = Table(title="Concordance Φ", box=box.SIMPLE)
        phi_table.add_column("Pair")
        phi_table.add_column("Φ", justify="right")
        for (k1, k2), phi in zip(state.pairs, state.phi):
            phi_table.add_row(f"{result.dataset_names[k1]} – {result.dataset_names[k2]}", f"{phi:.3f}")
        console.print(phi_table)

    console.print(
        f"[dim]{result.rows_written} rows written to {result.output_path} "
        f"in {result.elapsed:.1f}s, {result.n_resamples} resampling events[/dim]"
    )
