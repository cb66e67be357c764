#!/usr/bin/env python3
"""
forecast_cli.py

Calibrate and forecast every signal column of a wide CSV with the GP-equivalent
Kalman filter. Columns are expected to be prepared upstream (log returns or
principal-component scores); no cleaning is done here.

Writes results atomically to JSON (full metadata) and CSV (one row per series).
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

import pandas as pd
from rich.console import Console

from kalman_models.errors import InvalidParameter
from kalman_tuning.batch import forecast_many
from kalman_tuning.config import ON_FAILURE_POLICIES, ForecastConfig
from kalman_tuning.reporting import render_failures_table, render_forecast_table, save_results

logger = logging.getLogger("kalman_tuning.cli")


def load_signals(path: str, columns: Optional[str] = None) -> pd.DataFrame:
    """Read a wide CSV (index column + one column per signal)."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"input file not found: {path}")
    df = pd.read_csv(path, index_col=0)
    if columns:
        wanted: List[str] = [c.strip() for c in columns.split(",") if c.strip()]
        missing = [c for c in wanted if c not in df.columns]
        if missing:
            raise KeyError(f"columns not in {path}: {missing}")
        df = df[wanted]
    return df


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Calibrate (γ, σ_w²) by marginal likelihood and forecast each signal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --input factors.csv                          # All columns, default horizon
  %(prog)s --input factors.csv --columns PC1,PC2 -n 5   # Subset, 5-step forecast
  %(prog)s --input factors.csv --alpha 0.05 --workers 4 # 95%% bands, 4 processes
  %(prog)s --input factors.csv --dry-run                # Preview only
        """,
    )
    parser.add_argument("--input", required=True, help="Wide CSV of prepared signals")
    parser.add_argument("--columns", type=str, default=None, help="Comma-separated subset of columns")
    parser.add_argument("-n", "--horizon", type=int, default=None, help="Forecast steps beyond the last observation")
    parser.add_argument("--alpha", type=float, default=None, help="Band level, e.g. 0.01 for a 99%% band")
    parser.add_argument("--prior-mean", type=float, default=None, help="Prior mean m0 (default: 0)")
    parser.add_argument("--prior-var", type=float, default=None, help="Prior variance Σ0 (default: 1)")
    parser.add_argument("--gamma0", type=float, default=None, help="Optimizer start γ (default: 5)")
    parser.add_argument("--sigma-w0", type=float, default=None, help="Optimizer start σ_w² (default: 0.5)")
    parser.add_argument("--method", type=str, default=None, help="scipy.optimize.minimize method (default: Nelder-Mead)")
    parser.add_argument("--maxiter", type=int, default=None, help="Optimizer iteration bound")
    parser.add_argument("--on-failure", choices=ON_FAILURE_POLICIES, default=None,
                        help="Policy when calibration fails")
    parser.add_argument("--workers", type=int, default=1, help="Worker processes (0 = all CPUs)")
    parser.add_argument("--output-json", type=str, default=None, help="Write full results to this JSON file")
    parser.add_argument("--output-csv", type=str, default=None, help="Write one summary row per series to this CSV")
    parser.add_argument("--dry-run", action="store_true", help="List the series that would be processed")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    console = Console()

    try:
        config = ForecastConfig().replace(
            m0=args.prior_mean,
            sigma0=args.prior_var,
            horizon=args.horizon,
            alpha=args.alpha,
            gamma0=args.gamma0,
            sigma_w0=args.sigma_w0,
            method=args.method,
            maxiter=args.maxiter,
            on_failure=args.on_failure,
        )
        signals = load_signals(args.input, args.columns)
    except (InvalidParameter, FileNotFoundError, KeyError, pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        console.print(f"[bold red]✗[/] {e}")
        return 2

    console.print(f"Series to process: [bold]{len(signals.columns)}[/] from {args.input}")
    if args.dry_run:
        console.print("\n[DRY RUN MODE - No actual processing]")
        for i, name in enumerate(signals.columns, 1):
            console.print(f"  {i}. {name} ({signals[name].notna().sum()} observations)")
        return 0

    n_workers = None if args.workers == 0 else args.workers
    batch = forecast_many(signals, config.horizon, config, n_workers=n_workers)

    render_forecast_table(batch, console)
    render_failures_table(batch, console)
    save_results(batch, args.output_json, args.output_csv)
    if args.output_json:
        console.print(f"  JSON: {args.output_json}")
    if args.output_csv:
        console.print(f"  CSV:  {args.output_csv}")

    if batch.n_succeeded == 0 and batch.n_failed > 0:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
