"""
===============================================================================
OUTPUT — Sampler Output Files
===============================================================================

Writes the chain to comma-delimited files, one row per recorded sweep.

Allocation file:
    MassParameter_1,...,MassParameter_K,phi_1_2,...,phi_{K-1}_K,ll,
    {name}_n1,...,{name}_n{n}   (for every dataset, dataset-major)

    - phi_1_1 is written as a placeholder when there is a single dataset
    - ll is the elapsed time in seconds since the run started
    - allocations are 1-based labels

Feature file (optional):
    {name}_d1,...,{name}_d{D_k}   (for every dataset)
    first row holds the initial flags, then one 0/1 row per recorded sweep
"""

import logging
from pathlib import Path
from typing import IO, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def allocation_columns(
    dataset_names: Sequence[str],
    n_obs: int,
    pairs: Sequence[Tuple[int, int]],
) -> List[str]:
    """Header of the allocation file."""
    n_datasets = len(dataset_names)
    columns = [f"MassParameter_{k + 1}" for k in range(n_datasets)]
    columns += [f"phi_{k1 + 1}_{k2 + 1}" for k1, k2 in pairs]
    columns.append("ll")
    columns += [f"{name}_n{i + 1}" for name in dataset_names for i in range(n_obs)]
    return columns


def feature_columns(dataset_names: Sequence[str], n_features: Sequence[int]) -> List[str]:
    """Header of the feature selection file."""
    return [f"{name}_d{d + 1}" for name, n_d in zip(dataset_names, n_features) for d in range(n_d)]


def allocation_row(mass: np.ndarray, phi: np.ndarray, elapsed: float,
                   allocations: np.ndarray) -> list:
    """One allocation-file row; allocations are written 1-based, dataset-major."""
    labels = (np.asarray(allocations).T.ravel() + 1).tolist()
    return [float(m) for m in mass] + [float(p) for p in phi] + [float(elapsed)] + labels


def feature_row(flags: Sequence[np.ndarray]) -> list:
    return np.concatenate([np.asarray(f, dtype=int) for f in flags]).tolist()


class ChainWriter:
    """
    Append-only CSV writer: header on open, one row per write().

    Use as a context manager so the file is closed on error.
    """

    def __init__(self, path, columns: Sequence[str]):
        self.path = Path(path)
        self.columns = list(columns)
        self._handle: Optional[IO[str]] = None
        self.rows_written = 0

    def open(self) -> 'ChainWriter':
        try:
            self._handle = open(self.path, "w", newline="")
        except OSError:
            logger.error("Cannot open output file %s", self.path)
            raise
        pd.DataFrame(columns=self.columns).to_csv(self._handle, index=False)
        return self

    def write(self, row: Sequence) -> None:
        if self._handle is None:
            raise ValueError(f"Writer for {self.path} is not open")
        if len(row) != len(self.columns):
            raise ValueError(f"Row has {len(row)} fields, expected {len(self.columns)}")
        pd.DataFrame([list(row)], columns=self.columns).to_csv(
            self._handle, header=False, index=False
        )
        self.rows_written += 1

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> 'ChainWriter':
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def read_chain(path) -> pd.DataFrame:
    """Load an allocation or feature file written by ChainWriter."""
    return pd.read_csv(path)
