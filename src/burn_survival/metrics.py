from __future__ import annotations
from typing import Iterable, Tuple
import numpy as np
import pandas as pd
from sksurv.metrics import concordance_index_ipcw, cumulative_dynamic_auc


def cox_partial_log_likelihood(time, event, eta) -> float:
    """Breslow partial log-likelihood of a linear predictor.

    Args:
        time: Observed times, shape (n,)
        event: Event indicators, shape (n,)
        eta: Linear predictor X @ beta, shape (n,)

    Returns:
        Partial log-likelihood (0.0 when there are no events)

    Notes:
        - Tied event times share the full risk set (Breslow approximation)
        - Computed with a log-sum-exp shift, so large predictors do not overflow
    """
    time = np.asarray(time, dtype=float)
    event = np.asarray(event, dtype=bool)
    eta = np.asarray(eta, dtype=float)
    if not event.any():
        return 0.0

    order = np.argsort(-time, kind="mergesort")
    t, e, r = time[order], event[order], eta[order]

    shift = r.max()
    cum = np.cumsum(np.exp(r - shift))
    # For tied times the risk set ends at the last member of the tie group
    last = np.searchsorted(-t, -t, side="right") - 1
    log_risk = np.log(cum[last]) + shift

    return float(np.sum(r[e] - log_risk[e]))


def compute_cindex(y_train, y_test, risk_scores, tau: float = None) -> float:
    """Calculate Uno's concordance index with IPCW adjustment.

    Args:
        y_train: Structured array from the training set, used to estimate
            the censoring distribution
        y_test: Structured array from the evaluation set
        risk_scores: Array of shape (n_test,), higher values = higher risk
        tau: Optional truncation time

    Returns:
        Concordance index between 0 and 1 (0.5 = random)

    Example:
        >>> cindex = compute_cindex(y_train, y_holdout, risk_scores)
    """
    result = concordance_index_ipcw(y_train, y_test, risk_scores, tau=tau)
    return float(result[0])


def horizon_counts(y_test, horizon: float) -> Tuple[int, int]:
    """Cases and controls of a cumulative/dynamic AUC at one horizon.

    Returns:
        Tuple (n_events, n_at_risk): events observed at or before the horizon,
        and subjects still under observation after it
    """
    time = y_test["time"]
    event = y_test["event"]
    n_events = int(np.sum(event & (time <= horizon)))
    n_at_risk = int(np.sum(time > horizon))
    return n_events, n_at_risk


def _unevaluable_reason(y_test, horizon: float, n_events: int, n_at_risk: int):
    test_time = y_test["time"]
    if horizon < test_time.min() or horizon >= test_time.max():
        return "outside follow-up"
    if n_events == 0:
        return "no events"
    if n_at_risk == 0:
        return "no controls"
    return None


def time_dependent_auc(y_train, y_test, risk_scores, horizons: Iterable[float]) -> pd.DataFrame:
    """Uno's cumulative/dynamic AUC of a risk score at each horizon.

    Each horizon is evaluated on its own, so one horizon that cannot be
    estimated does not prevent the others from being reported.

    Args:
        y_train: Structured array used to estimate the censoring distribution
        y_test: Structured array on which discrimination is measured
        risk_scores: Array of shape (n_test,), higher values = higher risk
        horizons: Time points at which to compute the AUC

    Returns:
        DataFrame with one row per requested horizon and columns:
        - horizon: the requested time point
        - auc: AUC in [0, 1], NaN when the horizon cannot be evaluated
        - n_events: cases (events at or before the horizon)
        - n_at_risk: controls (observed beyond the horizon)
        - reason: why the AUC is missing, None otherwise

    Example:
        >>> table = time_dependent_auc(y_train, y_test, risk, [7.5, 15, 22.5, 30])
        >>> table[["horizon", "auc"]]
    """
    risk_scores = np.asarray(risk_scores, dtype=float)
    rows = []
    for horizon in horizons:
        horizon = float(horizon)
        n_events, n_at_risk = horizon_counts(y_test, horizon)
        reason = _unevaluable_reason(y_test, horizon, n_events, n_at_risk)
        auc = np.nan
        if reason is None:
            try:
                aucs, _ = cumulative_dynamic_auc(y_train, y_test, risk_scores, [horizon])
                auc = float(aucs[0])
            except ValueError as e:
                # censoring distribution of y_train cannot weight every test event
                reason = f"censoring weights undefined: {e}"
        rows.append({
            "horizon": horizon,
            "auc": auc,
            "n_events": n_events,
            "n_at_risk": n_at_risk,
            "reason": reason,
        })
    return pd.DataFrame(rows, columns=["horizon", "auc", "n_events", "n_at_risk", "reason"])
