"""MLflow tracking of analysis runs.

Tracking failures never stop an analysis: every output is also written as
CSV, so the ``safe_*`` wrappers log the failure and return False.
"""
from __future__ import annotations
import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional
import numpy as np
import mlflow
import mlflow.exceptions

EXPERIMENT_NAME = "burn_survival"


def start_run(run_name: str, tracking_dir: Optional[str] = None, tags: Dict[str, str] | None = None):
    """Start an MLflow run under the ``burn_survival`` experiment.

    Args:
        run_name: Name of the run
        tracking_dir: Optional local directory for a file-based tracking store
        tags: Optional run tags

    Returns:
        Active MLflow run context manager

    Example:
        >>> with start_run("excision_seed42", tracking_dir="data/outputs/mlruns"):
        ...     safe_log_params({"split_seed": 42})
    """
    if tracking_dir is not None:
        mlflow.set_tracking_uri(Path(tracking_dir).absolute().as_uri())
    mlflow.set_experiment(EXPERIMENT_NAME)
    return mlflow.start_run(run_name=run_name, tags=tags)


def flatten_params(params: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten a nested configuration dict into dotted parameter names.

    Example:
        >>> flatten_params({"fitter": {"cv_seed": 11}, "tracking": True})
        {'fitter.cv_seed': 11, 'tracking': True}
    """
    flat = {}
    for k, v in params.items():
        key = f"{prefix}{k}"
        if isinstance(v, dict):
            flat.update(flatten_params(v, prefix=f"{key}."))
        else:
            flat[key] = v
    return flat


def _loggable_metrics(metrics: Dict[str, float]) -> Dict[str, float]:
    # NaN AUCs of unevaluable horizons stay in the CSV tables only
    return {k: float(v) for k, v in metrics.items() if v is not None and np.isfinite(v)}


def safe_log_params(params: Dict[str, Any], logger: Optional[logging.Logger] = None) -> bool:
    """Log parameters to the active run, converting unsupported values to str.

    Returns:
        True if logging succeeded, False if it failed
    """
    try:
        for k, v in params.items():
            if isinstance(v, (list, tuple)):
                v = ",".join(str(x) for x in v)
            mlflow.log_param(k, v)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow params logging failed: {e}", extra={"category": "mlflow_error"})
        return False


def safe_log_metrics(
    metrics: Dict[str, float],
    step: Optional[int] = None,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log finite metrics to the active run.

    Returns:
        True if logging succeeded, False if it failed

    Example:
        >>> safe_log_metrics({"lasso_auc_15": 0.74}, logger=logger)
        True
    """
    try:
        mlflow.log_metrics(_loggable_metrics(metrics), step=step)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow metrics logging failed: {e}", extra={"category": "mlflow_error"})
        return False


def safe_log_artifact(path: str, logger: Optional[logging.Logger] = None) -> bool:
    """Log a file to the active run if it exists.

    Returns:
        True if logging succeeded, False if the file is missing or logging failed
    """
    if not os.path.exists(path):
        if logger:
            logger.warning(f"Artifact not found, skipping: {path}")
        return False

    try:
        mlflow.log_artifact(path)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(
                f"MLflow artifact logging failed for {path}: {e}",
                extra={"category": "mlflow_error"}
            )
        return False
