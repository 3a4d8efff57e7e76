from __future__ import annotations
import os
import datetime as dt
from typing import List
import numpy as np
import pandas as pd


def ensure_dir(path: str):
    """Create directory (and parents) if it doesn't exist.

    Example:
        >>> ensure_dir("data/outputs/artifacts")
    """
    os.makedirs(path, exist_ok=True)


def quarter_horizons(t_max: float, n: int = 4) -> List[float]:
    """Evenly spaced evaluation horizons ending at t_max.

    Args:
        t_max: Last horizon
        n: Number of horizons

    Returns:
        [t_max / n, 2 * t_max / n, ..., t_max]

    Example:
        >>> quarter_horizons(30.0)
        [7.5, 15.0, 22.5, 30.0]
    """
    if t_max <= 0 or n < 1:
        raise ValueError(f"Need t_max > 0 and n >= 1, got t_max={t_max}, n={n}")
    return [float(t_max * k / n) for k in range(1, n + 1)]


def save_table(df: pd.DataFrame, outdir: str, name: str) -> str:
    """Write a result table as ``<outdir>/<name>.csv``.

    Returns:
        Full path to the saved CSV file

    Example:
        >>> path = save_table(result.table, "data/outputs/artifacts", "external_validation")
    """
    ensure_dir(outdir)
    path = os.path.join(outdir, f"{name}.csv")
    df.to_csv(path, index=False)
    return path


def versioned_name(base: str) -> str:
    """Append a timestamp to a name.

    Example:
        >>> versioned_name("excision")
        'excision_20250123_143052'
    """
    ts = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{base}_{ts}"


def get_output_paths(output_dir: str = "data/outputs") -> dict:
    """Output directories of a run, created if missing.

    Returns:
        Dictionary with keys:
        - base_dir: run output directory (config.json lives here)
        - artifacts: result tables
        - logs: log files
        - mlruns: local MLflow tracking store

    Example:
        >>> paths = get_output_paths("data/outputs")
        >>> paths["artifacts"]
        'data/outputs/artifacts'
    """
    paths = {
        "base_dir": output_dir,
        "artifacts": os.path.join(output_dir, "artifacts"),
        "logs": os.path.join(output_dir, "logs"),
        "mlruns": os.path.join(output_dir, "mlruns"),
    }
    for path in paths.values():
        ensure_dir(path)
    return paths


def summarize_values(values) -> dict:
    """Location and spread of a sample, ignoring NaN.

    Returns:
        Dict with mean, median, q25, q75, min, max (all NaN for an empty sample)
    """
    arr = np.asarray(values, dtype=float)
    arr = arr[~np.isnan(arr)]
    if arr.size == 0:
        return {k: np.nan for k in ("mean", "median", "q25", "q75", "min", "max")}
    return {
        "mean": float(arr.mean()),
        "median": float(np.median(arr)),
        "q25": float(np.percentile(arr, 25)),
        "q75": float(np.percentile(arr, 75)),
        "min": float(arr.min()),
        "max": float(arr.max()),
    }
