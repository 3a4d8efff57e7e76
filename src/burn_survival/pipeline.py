"""End-to-end penalized Cox analysis of one burn endpoint.

Stages, in order:
1. Load the burn table and derive the three covariate views
2. PCA explained-variance curves of every view
3. Train/holdout split of the analyzed view
4. Fit the penalized Cox models on the training split
5. Internal validation (resampled time-dependent AUC) on the full view
6. External validation of the training fits on the holdout
7. Proportional-hazards check of the compared models

Every stage writes a CSV table under ``<output_dir>/artifacts``.
"""
from __future__ import annotations
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Dict, Optional
import logging
import os
import pandas as pd
from lifelines.exceptions import ConvergenceError

from burn_survival.config import PipelineConfig
from burn_survival.data import derive_views, get_endpoint, load_data
from burn_survival.exceptions import NullModelFit
from burn_survival.explore import components_for_variance, explore_views
from burn_survival.logging_config import ProgressLogger, capture_warnings
from burn_survival.models import FittedModel, build_fitter
from burn_survival.splitting import SplitAssignment, train_holdout_split
from burn_survival.timing import Timer, log_execution_time
from burn_survival.tracking import (
    flatten_params,
    safe_log_artifact,
    safe_log_metrics,
    safe_log_params,
    start_run,
)
from burn_survival.utils import get_output_paths, quarter_horizons, save_table, versioned_name
from burn_survival.validation import (
    ExternalValidationResult,
    InternalValidationResult,
    external_validate,
    internal_validate,
    ph_assumption_flags,
)


@dataclass
class AnalysisResult:
    """Everything one analysis run produced.

    Attributes:
        paths: Output directories of the run
        pca: Stacked explained-variance curves of all views
        split: Train/holdout assignment of the analyzed view
        models: Fits on the training split, by model type
        internal: Internal validation of the compared model types
        external: Holdout validation by model type (null models absent)
        status: Model type -> "ok" or "null_model" for the training fits
        artifacts: Table name -> written CSV path
    """
    paths: Dict[str, str]
    pca: pd.DataFrame
    split: SplitAssignment
    models: Dict[str, FittedModel]
    internal: InternalValidationResult
    external: Dict[str, ExternalValidationResult]
    status: Dict[str, str]
    artifacts: Dict[str, str] = field(default_factory=dict)


def _external_table(
    external: Dict[str, ExternalValidationResult], nulls: Dict[str, NullModelFit]
) -> pd.DataFrame:
    frames = []
    for model_type, result in external.items():
        table = result.table.copy()
        table["status"] = "ok"
        table["n_holdout"] = result.n_holdout
        table["n_holdout_events"] = result.n_holdout_events
        table["cindex"] = result.cindex
        frames.append(table)
    for model_type, err in nulls.items():
        frames.append(pd.DataFrame([{"model": model_type, "status": "null_model", "reason": str(err)}]))
    return pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()


@log_execution_time()
def run_analysis(config: Optional[PipelineConfig] = None, logger: Optional[logging.Logger] = None) -> AnalysisResult:
    """Run the complete analysis described by ``config``.

    Args:
        config: Pipeline configuration (defaults to PipelineConfig())
        logger: Logger to use; defaults to ``burn_survival.pipeline``

    Returns:
        AnalysisResult with every table the run wrote

    Raises:
        DataUnavailable: If the dataset cannot be loaded
        DegenerateSplit: If the split fraction leaves a side empty

    Example:
        >>> config = PipelineConfig(output_dir="data/outputs/excision", tracking=False)
        >>> result = run_analysis(config)
        >>> result.external["lasso"].table[["horizon", "auc"]]
    """
    config = config or PipelineConfig()
    logger = logger or logging.getLogger("burn_survival.pipeline")
    analysis = config.analysis

    paths = get_output_paths(config.output_dir)
    config.save(os.path.join(paths["base_dir"], "config.json"))
    artifacts = {}

    def _save(df: pd.DataFrame, name: str) -> str:
        artifacts[name] = save_table(df, paths["artifacts"], name)
        return artifacts[name]

    endpoint = get_endpoint(config.data.endpoint)
    horizons = quarter_horizons(analysis.horizon_max, analysis.n_horizons)
    logger.info(f"Endpoint: {endpoint.title} ({endpoint.time_col}, {endpoint.event_col})")
    logger.info(f"Horizons: {horizons}")
    logger.info(f"Execution: {config.execution}")

    with Timer(logger, "Data loading"):
        df = load_data(config.data.input_file, id_column=config.data.id_column)
        views = derive_views(df)
    view = views[endpoint.name]
    logger.info(f"{view.name}: {len(view.y)} patients, {view.n_events} events, {view.X.shape[1]} covariates")

    run = (
        start_run(versioned_name(endpoint.name), tracking_dir=paths["mlruns"], tags={"endpoint": endpoint.name})
        if config.tracking else nullcontext()
    )

    with run, capture_warnings(logger) as warning_logger:
        if config.tracking:
            safe_log_params(flatten_params(config.to_dict()), logger=logger)
            safe_log_params({"n_patients": len(view.y), "n_events": view.n_events}, logger=logger)

        with Timer(logger, "PCA exploration"):
            pca = explore_views(views)
            _save(pca, "pca_variance")
        for name in views:
            curve = pca[pca["view"] == name]
            logger.info(f"PCA {name}: {components_for_variance(curve, 0.9)} components reach 90% of variance")

        split = train_holdout_split(len(view.y), analysis.split_fraction, analysis.split_seed)
        logger.info(f"Split: {split.n_train} training / {split.n_holdout} holdout (seed={split.seed})")
        assignment = pd.Series("train", index=range(len(view.y)), name="set")
        assignment.iloc[split.holdout] = "holdout"
        _save(assignment.rename_axis("row").reset_index(), "split")

        X_train, y_train = view.X.iloc[split.train].reset_index(drop=True), view.y[split.train]
        X_holdout, y_holdout = view.X.iloc[split.holdout].reset_index(drop=True), view.y[split.holdout]

        model_types = list(dict.fromkeys(analysis.external_models + analysis.compare_models))
        models = {}
        status = {}
        progress = ProgressLogger(logger, total=len(model_types), desc="Model fitting")
        for model_type in model_types:
            with Timer(logging.getLogger(f"burn_survival.models.{model_type}"), f"Fit {model_type}"):
                model = build_fitter(model_type, config.fitter).fit(X_train, y_train)
            models[model_type] = model
            status[model_type] = "null_model" if model.is_null else "ok"
            progress.update(1, metrics={"alpha": model.alpha, "n_nonzero": model.n_nonzero})

        _save(pd.concat([m.coefficient_table() for m in models.values()], ignore_index=True), "coefficients")
        _save(pd.concat(
            [m.cv_curve.to_frame().assign(model=t) for t, m in models.items()], ignore_index=True
        ), "cv_curves")
        _save(pd.DataFrame([{**m.summary(), "status": status[t]} for t, m in models.items()]), "fit_summary")

        with Timer(logger, f"Internal validation ({analysis.validation_method})"):
            internal = internal_validate(
                view.X, view.y, analysis.compare_models, config.fitter,
                method=analysis.validation_method,
                n_folds=analysis.validation_folds,
                horizons=horizons,
                seed=analysis.validation_seed,
                n_repeats=analysis.n_repeats,
                n_boot=analysis.n_boot,
                execution=config.execution,
                divergence_threshold=analysis.divergence_threshold,
            )
        _save(internal.folds, "internal_validation_folds")
        summary = internal.summary.copy()
        summary.insert(1, "status", summary["model"].map(internal.status))
        for model_type, state in internal.status.items():
            if state == "null_model":
                summary = pd.concat(
                    [summary, pd.DataFrame([{"model": model_type, "status": state}])], ignore_index=True
                )
        _save(summary, "internal_validation_summary")

        external = {}
        nulls = {}
        with Timer(logger, "External validation"):
            for model_type in analysis.external_models:
                try:
                    external[model_type] = external_validate(
                        models[model_type], X_train, y_train, X_holdout, y_holdout,
                        horizons, min_events=analysis.min_events,
                    )
                except NullModelFit as e:
                    logger.warning(f"External validation skipped: {e}")
                    nulls[model_type] = e
        _save(_external_table(external, nulls), "external_validation")

        ph_frames = []
        with Timer(logger, "Proportional hazards check"):
            for model_type in analysis.compare_models:
                try:
                    ph_frames.append(ph_assumption_flags(models[model_type], X_train, y_train))
                except ConvergenceError as e:
                    logger.warning(f"{model_type}: proportional hazards check did not converge: {e}")
        _save(pd.concat(ph_frames, ignore_index=True) if ph_frames else pd.DataFrame(), "ph_assumption")

        if config.tracking:
            metrics = {}
            for model_type, result in external.items():
                metrics[f"{model_type}_holdout_cindex"] = result.cindex
                for h, auc in result.aucs().items():
                    metrics[f"{model_type}_holdout_auc_{h:g}"] = auc
            for row in internal.summary.itertuples():
                metrics[f"{row.model}_cv_auc_mean_{row.horizon:g}"] = row.mean
                metrics[f"{row.model}_cv_auc_median_{row.horizon:g}"] = row.median
            safe_log_metrics(metrics, logger=logger)
            for path in artifacts.values():
                safe_log_artifact(path, logger=logger)

    logger.info(f"Warnings by category: {warning_logger.summary() or 'none'}")
    logger.info(f"Artifacts written to {paths['artifacts']}")

    return AnalysisResult(
        paths=paths,
        pca=pca,
        split=split,
        models=models,
        internal=internal,
        external=external,
        status=status,
        artifacts=artifacts,
    )
