from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import warnings
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from lifelines import CoxPHFitter, KaplanMeierFitter
from lifelines.statistics import proportional_hazard_test

from burn_survival.config import ExecutionConfig, FitterConfig
from burn_survival.exceptions import NullModelFit, UnstableMetricWarning
from burn_survival.logging_config import ProgressLogger, log_performance
from burn_survival.metrics import compute_cindex, time_dependent_auc
from burn_survival.models import FittedModel, build_fitter
from burn_survival.splitting import event_balanced_folds
from burn_survival.utils import summarize_values

logger = logging.getLogger("burn_survival.validation")

Resample = Tuple[int, np.ndarray, np.ndarray]


@dataclass
class ExternalValidationResult:
    """Holdout performance of one fitted model.

    Attributes:
        model_type: Model type that was validated
        table: One row per requested horizon with columns model, horizon,
            auc, n_events, n_at_risk, unstable, reason, predicted_survival,
            observed_survival
        n_holdout: Holdout sample size
        n_holdout_events: Events observed in the holdout
        cindex: Uno's concordance index on the holdout (NaN if not estimable)
    """
    model_type: str
    table: pd.DataFrame
    n_holdout: int
    n_holdout_events: int
    cindex: float = np.nan

    def aucs(self) -> Dict[float, float]:
        """Mapping of horizon to AUC."""
        return dict(zip(self.table["horizon"], self.table["auc"]))


@dataclass
class InternalValidationResult:
    """Resampled time-dependent AUC of several model types.

    Attributes:
        method: Resampling scheme ("cv", "repeated_cv" or "bootstrap")
        folds: Per-resample AUCs with columns model, resample, horizon, auc,
            n_events, n_at_risk, reason
        summary: Per model type and horizon: n_resamples, mean, median, q25,
            q75, min, max, divergence, unstable
        status: Model type -> "ok" or "null_model"
        models: Full-data fits the resamples reused the hyperparameters of
    """
    method: str
    folds: pd.DataFrame
    summary: pd.DataFrame
    status: Dict[str, str] = field(default_factory=dict)
    models: Dict[str, FittedModel] = field(default_factory=dict)

    def statistic(self, model_type: str, name: str = "mean") -> Dict[float, float]:
        """Mapping of horizon to one summary statistic of a model type."""
        rows = self.summary[self.summary["model"] == model_type]
        return dict(zip(rows["horizon"], rows[name]))


def observed_survival(y, horizons: Iterable[float]) -> np.ndarray:
    """Kaplan-Meier survival of a sample at each horizon."""
    kmf = KaplanMeierFitter()
    kmf.fit(durations=y["time"], event_observed=y["event"])
    return kmf.survival_function_at_times(list(horizons)).to_numpy()


def external_validate(
    model: FittedModel,
    X_train,
    y_train,
    X_holdout,
    y_holdout,
    horizons: Sequence[float],
    min_events: int = 5,
) -> ExternalValidationResult:
    """Measure a fitted model's discrimination on a holdout set.

    The risk score is the model's linear predictor on the holdout
    covariates; censoring weights come from the training outcome. Every
    requested horizon gets a row. Horizons whose AUC is missing or rests on
    fewer than ``min_events`` holdout events are flagged ``unstable`` and
    emit an UnstableMetricWarning.

    Args:
        model: Model fitted on (X_train, y_train)
        X_train: Training covariates
        y_train: Training outcome (structured array)
        X_holdout: Holdout covariates with the training columns
        y_holdout: Holdout outcome (structured array)
        horizons: Evaluation times
        min_events: Holdout events below which a horizon is unstable

    Returns:
        ExternalValidationResult

    Raises:
        NullModelFit: If every coefficient of ``model`` is zero

    Example:
        >>> result = external_validate(model, X_tr, y_tr, X_ho, y_ho, [7.5, 15, 22.5, 30])
        >>> result.table[["horizon", "auc", "n_events"]]
    """
    if model.is_null:
        raise NullModelFit(model.model_type, model.alpha)

    horizons = [float(h) for h in horizons]
    risk = model.predict_risk(X_holdout)

    table = time_dependent_auc(y_train, y_holdout, risk, horizons)
    table.insert(0, "model", model.model_type)
    table["unstable"] = table["auc"].isna() | (table["n_events"] < min_events)
    table["predicted_survival"] = model.predict_survival_function(X_holdout, horizons).mean(axis=0)
    table["observed_survival"] = observed_survival(y_holdout, horizons)
    table = table[[
        "model", "horizon", "auc", "n_events", "n_at_risk", "unstable", "reason",
        "predicted_survival", "observed_survival",
    ]]

    for row in table.itertuples():
        if row.unstable:
            detail = row.reason or f"{row.n_events} events < {min_events}"
            warnings.warn(
                f"{model.model_type}: holdout AUC at t={row.horizon:g} is unstable ({detail})",
                UnstableMetricWarning,
            )

    try:
        cindex = compute_cindex(y_train, y_holdout, risk)
    except ValueError as e:
        logger.warning(f"{model.model_type}: holdout C-index not estimable: {e}")
        cindex = np.nan

    n_events = int(np.sum(y_holdout["event"]))
    log_performance(
        logger, f"External validation {model.model_type}",
        n_holdout=len(y_holdout),
        n_events=n_events,
        cindex=round(cindex, 4) if np.isfinite(cindex) else cindex,
        **{f"auc_{h:g}": round(a, 4) for h, a in zip(table["horizon"], table["auc"])},
    )
    return ExternalValidationResult(
        model_type=model.model_type,
        table=table.reset_index(drop=True),
        n_holdout=len(y_holdout),
        n_holdout_events=n_events,
        cindex=cindex,
    )


def make_resamples(
    y,
    method: str = "cv",
    n_folds: int = 5,
    seed: int = 42,
    n_repeats: int = 5,
    n_boot: int = 50,
) -> List[Resample]:
    """Training/evaluation index pairs of an internal validation scheme.

    - ``cv``: event-balanced k folds drawn with ``seed``
    - ``repeated_cv``: ``n_repeats`` rounds of k folds, round r drawn with ``seed + r``
    - ``bootstrap``: ``n_boot`` samples with replacement, evaluated out of bag

    Returns:
        List of (resample_id, train_indices, test_indices)
    """
    if method == "cv":
        return [(k, tr, te) for k, (tr, te) in enumerate(event_balanced_folds(y, n_folds, seed))]

    if method == "repeated_cv":
        resamples = []
        for r in range(n_repeats):
            for k, (tr, te) in enumerate(event_balanced_folds(y, n_folds, seed + r)):
                resamples.append((r * n_folds + k, tr, te))
        return resamples

    if method == "bootstrap":
        n = len(y)
        rng = np.random.default_rng(seed)
        resamples = []
        for b in range(n_boot):
            train = rng.integers(0, n, size=n)
            oob = np.setdiff1d(np.arange(n), train)
            if len(oob) == 0:
                continue
            resamples.append((b, np.sort(train), oob))
        return resamples

    raise ValueError(f"Unknown validation method {method!r}")


def evaluate_resample(
    model: FittedModel,
    X: pd.DataFrame,
    y,
    resample: Resample,
    horizons: Sequence[float],
) -> pd.DataFrame:
    """Refit ``model``'s hyperparameters on one training part and score the held-out part.

    Returns:
        time_dependent_auc table with model and resample columns prepended
    """
    resample_id, train_idx, test_idx = resample
    refit = model.refit(X.iloc[train_idx], y[train_idx])
    if refit.is_null:
        table = pd.DataFrame({
            "horizon": [float(h) for h in horizons],
            "auc": np.nan,
            "n_events": 0,
            "n_at_risk": 0,
            "reason": "null model on resample",
        })
    else:
        risk = refit.predict_risk(X.iloc[test_idx])
        table = time_dependent_auc(y[train_idx], y[test_idx], risk, horizons)
    table.insert(0, "resample", resample_id)
    table.insert(0, "model", model.model_type)
    return table


def summarize_folds(folds: pd.DataFrame, divergence_threshold: float = 0.05) -> pd.DataFrame:
    """Per model type and horizon location/spread of the resampled AUCs.

    A horizon is flagged ``unstable`` when its mean and median differ by more
    than ``divergence_threshold`` or no resample produced an AUC.
    """
    rows = []
    for (model_type, horizon), group in folds.groupby(["model", "horizon"], sort=False):
        stats = summarize_values(group["auc"])
        divergence = abs(stats["mean"] - stats["median"])
        rows.append({
            "model": model_type,
            "horizon": horizon,
            "n_resamples": int(group["auc"].notna().sum()),
            **stats,
            "divergence": divergence,
            "unstable": bool(np.isnan(divergence) or divergence > divergence_threshold),
        })
    return pd.DataFrame(rows, columns=[
        "model", "horizon", "n_resamples", "mean", "median", "q25", "q75",
        "min", "max", "divergence", "unstable",
    ])


def internal_validate(
    X: pd.DataFrame,
    y,
    model_types: Sequence[str],
    fitter_config: Optional[FitterConfig] = None,
    method: str = "cv",
    n_folds: int = 5,
    horizons: Sequence[float] = (7.5, 15.0, 22.5, 30.0),
    seed: int = 42,
    n_repeats: int = 5,
    n_boot: int = 50,
    execution: Optional[ExecutionConfig] = None,
    divergence_threshold: float = 0.05,
    models: Optional[Dict[str, FittedModel]] = None,
) -> InternalValidationResult:
    """Resampled time-dependent AUC for several penalized Cox model types.

    Each model type is fit once on all rows, selecting its hyperparameters
    by cross-validation. Every resample then refits those fixed
    hyperparameters on its training part and scores the held-out part at
    each horizon. Model types whose full-data fit is null get status
    "null_model" and no AUC rows.

    Args:
        X: Covariates
        y: Structured outcome
        model_types: Model types to compare, e.g. ("lasso", "alasso")
        fitter_config: Fitter settings
        method: "cv", "repeated_cv" or "bootstrap"
        n_folds: Folds per round for the cv schemes
        horizons: Evaluation times
        seed: Seed of the resampling scheme
        n_repeats: Rounds for "repeated_cv"
        n_boot: Resamples for "bootstrap"
        execution: Sequential or joblib-parallel resamples
        divergence_threshold: Mean/median gap flagged as unstable
        models: Optional full-data fits to reuse instead of refitting

    Returns:
        InternalValidationResult

    Example:
        >>> result = internal_validate(view.X, view.y, ["lasso", "alasso"], FitterConfig())
        >>> result.summary[["model", "horizon", "mean", "median"]]
    """
    execution = execution or ExecutionConfig()
    horizons = [float(h) for h in horizons]
    models = dict(models or {})
    resamples = make_resamples(y, method, n_folds, seed, n_repeats, n_boot)

    status = {}
    tables = []
    for model_type in model_types:
        if model_type not in models:
            models[model_type] = build_fitter(model_type, fitter_config).fit(X, y)
        model = models[model_type]

        if model.is_null:
            logger.warning(
                f"{model_type}: {NullModelFit(model_type, model.alpha)}; skipping internal validation"
            )
            status[model_type] = "null_model"
            continue
        status[model_type] = "ok"

        if execution.is_parallel():
            logger.info(f"{model_type}: {len(resamples)} resamples on {execution.n_jobs} jobs")
            results = Parallel(
                n_jobs=execution.n_jobs,
                verbose=execution.verbose,
                backend=execution.backend,
            )(
                delayed(evaluate_resample)(model, X, y, resample, horizons)
                for resample in resamples
            )
        else:
            progress = ProgressLogger(
                logger, total=len(resamples), desc=f"{model_type} {method}",
                log_interval=max(1, len(resamples) // 5),
            )
            results = []
            for resample in resamples:
                results.append(evaluate_resample(model, X, y, resample, horizons))
                progress.update(1)
        tables.extend(results)

    columns = ["model", "resample", "horizon", "auc", "n_events", "n_at_risk", "reason"]
    folds = pd.concat(tables, ignore_index=True)[columns] if tables else pd.DataFrame(columns=columns)
    summary = summarize_folds(folds, divergence_threshold)

    for row in summary.itertuples():
        log_performance(
            logger, f"Internal validation {row.model}",
            horizon=row.horizon, mean=round(row.mean, 4), median=round(row.median, 4),
        )
        if row.unstable:
            warnings.warn(
                f"{row.model}: resampled AUC at t={row.horizon:g} is unstable "
                f"(mean {row.mean:.3f}, median {row.median:.3f})",
                UnstableMetricWarning,
            )

    return InternalValidationResult(
        method=method, folds=folds, summary=summary, status=status, models=models
    )


def ph_assumption_flags(model: FittedModel, X: pd.DataFrame, y) -> pd.DataFrame:
    """Schoenfeld-residual test of proportional hazards for the selected covariates.

    Refits an unpenalized Cox model on the covariates with non-zero
    penalized coefficients and tests each of them. Low p-values point to
    covariates whose effect changes over time.

    Args:
        model: Fitted penalized model
        X: Covariates the model was fit on
        y: Structured outcome

    Returns:
        DataFrame with columns model, covariate, test_statistic, schoenfeld_p,
        sorted by p-value (empty for a null model)

    Example:
        >>> flags = ph_assumption_flags(model, view.X, view.y)
        >>> flags[flags["schoenfeld_p"] < 0.05]
    """
    columns = ["model", "covariate", "test_statistic", "schoenfeld_p"]
    selected = model.selected
    if not selected:
        return pd.DataFrame(columns=columns)

    df = X[selected].copy()
    df["time"] = y["time"]
    df["event"] = y["event"].astype(int)
    cph = CoxPHFitter()
    cph.fit(df, duration_col="time", event_col="event")
    results = proportional_hazard_test(cph, df, time_transform="rank")

    out = results.summary[["test_statistic", "p"]].rename(columns={"p": "schoenfeld_p"})
    out = out.rename_axis("covariate").reset_index()
    out.insert(0, "model", model.model_type)
    return out.sort_values("schoenfeld_p").reset_index(drop=True)[columns]
