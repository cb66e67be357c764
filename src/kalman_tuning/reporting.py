"""
===============================================================================
REPORTING — CLI Output for Batch Forecasts
===============================================================================

    - render_forecast_table(): per-series calibration + next-step forecast
    - render_failures_table(): series that could not be forecast
    - save_results(): atomic JSON (full metadata) + CSV (one row per series)
"""

from __future__ import annotations

import json
import math
import os
from typing import Optional

import numpy as np
from rich import box
from rich.console import Console
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from kalman_tuning.batch import BatchResult


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder for numpy scalars and arrays."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, np.bool_):
            return bool(obj)
        return super().default(obj)


def _finite_or_none(obj):
    """Replace NaN/±inf floats with None so the output is strict JSON."""
    if isinstance(obj, dict):
        return {k: _finite_or_none(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_finite_or_none(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return _finite_or_none(obj.tolist())
    if isinstance(obj, (float, np.floating)) and not math.isfinite(obj):
        return None
    return obj


def _fmt(value, spec: str = ".4g") -> str:
    if value is None:
        return "-"
    try:
        if not math.isfinite(value):
            return "-"
    except TypeError:
        return str(value)
    return format(value, spec)


def render_forecast_table(batch: BatchResult, console: Optional[Console] = None) -> None:
    """Render calibrated hyperparameters and the first forecast step per series."""
    console = console or Console()

    console.print()
    console.print(Rule(style="dim"))
    header = Text()
    header.append("  📈  ", style="bold bright_cyan")
    header.append("GP-KALMAN FORECASTS", style="bold bright_white")
    console.print(header)
    console.print()

    if not batch.results:
        console.print("  [yellow]No series were forecast.[/]")
        console.print()
        return

    table = Table(
        show_header=True,
        header_style="bold white",
        border_style="dim",
        box=box.ROUNDED,
        padding=(0, 1),
        row_styles=["", "on grey7"],
    )
    table.add_column("Series", justify="left", no_wrap=True)
    table.add_column("γ", justify="right")
    table.add_column("σ_w²", justify="right")
    table.add_column("φ", justify="right")
    table.add_column("log L", justify="right")
    table.add_column("Conv", justify="center")
    table.add_column("T", justify="right")
    table.add_column("μ(T+1)", justify="right")
    table.add_column("Band", justify="left", no_wrap=True)

    for name in batch.order:
        result = batch.results.get(name)
        if result is None:
            continue
        cal = result.calibration
        if cal.used_fallback:
            conv = "[yellow]fallback[/]"
        elif cal.converged:
            conv = "[bright_green]✓[/]"
        else:
            conv = "[yellow]~[/]"

        T = result.trace.n_obs
        if result.horizon > 0:
            mean_str = _fmt(result.forecast_mean[0])
            band_str = f"[{_fmt(result.lower[T])}, {_fmt(result.upper[T])}]"
        else:
            mean_str, band_str = "-", "-"

        table.add_row(
            name,
            _fmt(cal.gamma),
            _fmt(cal.sigma_w2),
            _fmt(cal.phi, ".3f"),
            _fmt(result.log_likelihood, ".2f"),
            conv,
            str(T),
            mean_str,
            f"[dim]{band_str}[/]",
        )

    console.print(table)
    level = next(iter(batch.results.values())).alpha
    legend = Text()
    legend.append("    ", style="")
    legend.append(f"Band = {100 * (1 - level):.4g}% predictive interval", style="dim")
    legend.append("   ·   ", style="dim")
    legend.append("~", style="yellow")
    legend.append(" = iteration bound reached, best point accepted", style="dim")
    console.print(legend)
    console.print()


def render_failures_table(batch: BatchResult, console: Optional[Console] = None) -> None:
    if not batch.failures:
        return
    console = console or Console()
    table = Table(
        show_header=True,
        header_style="bold white",
        border_style="dim",
        box=box.ROUNDED,
        padding=(0, 1),
    )
    table.add_column("Series", justify="left", no_wrap=True)
    table.add_column("Error", justify="left")
    for name in batch.order:
        if name in batch.failures:
            table.add_row(f"[indian_red1]{name}[/]", f"[dim]{batch.failures[name]}[/]")

    header = Text()
    header.append("  ⚠️  ", style="bold yellow")
    header.append(f"{batch.n_failed} series failed", style="bold yellow")
    console.print(header)
    console.print(table)
    console.print()


def save_results(batch: BatchResult, output_json: Optional[str], output_csv: Optional[str]) -> None:
    """Write results via temp file + os.replace so readers never see partial files."""
    if output_json:
        os.makedirs(os.path.dirname(output_json) or ".", exist_ok=True)
        payload = {
            "results": {name: _finite_or_none(r.summary()) for name, r in batch.results.items()},
            "failures": dict(batch.failures),
        }
        json_temp = output_json + ".tmp"
        with open(json_temp, "w") as f:
            json.dump(payload, f, indent=2, cls=NumpyEncoder, allow_nan=False)
        os.replace(json_temp, output_json)

    if output_csv:
        os.makedirs(os.path.dirname(output_csv) or ".", exist_ok=True)
        csv_temp = output_csv + ".tmp"
        batch.summary_frame().to_csv(csv_temp, index=False)
        os.replace(csv_temp, output_csv)
