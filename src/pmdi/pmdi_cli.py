#!/usr/bin/env python3
"""
pmdi_cli.py — Command-line interface for particle MDI

Usage:
    python -m pmdi.pmdi_cli run data1.csv data2.csv --types gaussian,categorical
    python -m pmdi.pmdi_cli run data.csv --types gaussian --clusters 5 --particles 32
    python -m pmdi.pmdi_cli summary output.csv
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

logger = logging.getLogger("pmdi")


def _split(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


def load_dataset(path: str, index_col: bool = False) -> np.ndarray:
    """Read one data matrix from CSV; rows are observations."""
    frame = pd.read_csv(path, index_col=0 if index_col else None)
    return frame.to_numpy()


def setup_logging(quiet: bool) -> None:
    logging.basicConfig(
        level=logging.WARNING if quiet else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def cmd_run(args):
    """Run the particle Gibbs sampler."""
    from pmdi.sampler import run

    setup_logging(args.quiet)

    types = _split(args.types)
    if types is None:
        types = ["gaussian"] * len(args.data)
    names = _split(args.names)
    if names is None:
        names = [Path(p).stem for p in args.data]

    datasets = [load_dataset(p, index_col=args.index_col) for p in args.data]

    return run(
        datasets,
        types,
        max_clusters=args.clusters,
        particles=args.particles,
        rho=args.rho,
        iterations=args.iterations,
        output_path=args.output,
        thin=args.thin,
        feature_select_path=args.feature_select,
        dataset_names=names,
        seed=args.seed,
        verbose=not args.quiet,
    )


def cmd_summary(args):
    """Summarise a chain written by `run`."""
    from pmdi.output import read_chain

    chain = read_chain(args.output)
    burn = min(args.burn_in, len(chain))
    chain = chain.iloc[burn:]

    console = Console()
    console.print(f"\n[bold]Chain summary[/bold] ({args.output}, {len(chain)} rows after burn-in)\n")

    table = Table(box=box.ROUNDED)
    table.add_column("Parameter")
    table.add_column("Mean", justify="right")
    table.add_column("Std", justify="right")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")

    params = [c for c in chain.columns if c.startswith("MassParameter_") or c.startswith("phi_")]
    for name in params:
        values = chain[name]
        table.add_row(
            name,
            f"{values.mean():.3f}",
            f"{values.std():.3f}",
            f"{values.min():.3f}",
            f"{values.max():.3f}",
        )
    console.print(table)
    if "ll" in chain.columns and len(chain):
        console.print(f"\n[dim]Elapsed at last row: {chain['ll'].iloc[-1]:.1f}s[/dim]")


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Particle MDI: integrative clustering of multiple datasets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s run a.csv b.csv --types gaussian,categorical --clusters 10
    %(prog)s run a.csv --clusters 4 --particles 16 --rho 0.25 --seed 1
    %(prog)s run a.csv --feature-select features.csv
    %(prog)s summary output.csv --burn-in 100
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the particle Gibbs sampler")
    run_parser.add_argument("data", nargs="+", help="CSV data files, one per dataset")
    run_parser.add_argument("--types", type=str, help="Comma-separated datatypes (gaussian, categorical)")
    run_parser.add_argument("--clusters", "-N", type=int, default=10, help="Maximum number of clusters")
    run_parser.add_argument("--particles", "-P", type=int, default=32, help="Number of particles")
    run_parser.add_argument("--rho", type=float, default=0.25, help="Proportion of allocations held fixed")
    run_parser.add_argument("--iterations", "-n", type=int, default=1000, help="Number of sweeps")
    run_parser.add_argument("--thin", type=int, default=1, help="Record every n-th sweep")
    run_parser.add_argument("--output", "-o", type=str, default="output.csv", help="Allocation output file")
    run_parser.add_argument("--feature-select", type=str, default=None, metavar="FILE",
                            help="Enable feature selection and write flags to FILE")
    run_parser.add_argument("--names", type=str, help="Comma-separated dataset names")
    run_parser.add_argument("--seed", type=int, default=None, help="Random seed")
    run_parser.add_argument("--index-col", action="store_true", help="First CSV column is a row index")
    run_parser.add_argument("--quiet", "-q", action="store_true", help="Quiet mode")

    # Summary command
    summary_parser = subparsers.add_parser("summary", help="Summarise an output file")
    summary_parser.add_argument("output", help="Allocation output file")
    summary_parser.add_argument("--burn-in", type=int, default=0, help="Rows to discard")

    args = parser.parse_args(argv)

    if args.command == "run":
        try:
            cmd_run(args)
        except ValueError as e:
            logger.error("%s", e)
            sys.exit(2)
        except OSError as e:
            logger.error("%s", e)
            sys.exit(1)
    elif args.command == "summary":
        cmd_summary(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
