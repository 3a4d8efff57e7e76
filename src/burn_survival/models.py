"""Penalized Cox fitters: lasso, adaptive lasso, adaptive elastic net and MCP.

All fitters share one contract: standardized covariates, an alpha grid,
alpha chosen by cross-validated partial-likelihood deviance, and a
FittedModel with one coefficient per input covariate.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, Iterable, Optional, Tuple
import logging
import warnings
import numpy as np
import pandas as pd

from sklearn.preprocessing import StandardScaler
from sksurv.linear_model import CoxnetSurvivalAnalysis
from sksurv.linear_model.coxph import BreslowEstimator

from burn_survival.config import FitterConfig
from burn_survival.cv import CVCurve, cross_validate_path
from burn_survival.exceptions import NullModelWarning
from burn_survival.logging_config import log_performance
from burn_survival.splitting import event_balanced_folds

MODEL_TYPES = ("lasso", "alasso", "aenet", "mcp")

# l1_ratio of the pre-estimation step; Coxnet needs l1_ratio > 0, so "ridge" is near-ridge
INIT_L1_RATIO = {"ridge": 0.01, "enet": 0.5}

# Floor on preliminary coefficients before inverting them into adaptive weights
ADAPTIVE_EPS = 1e-6

# Floor on LLA weights so a weighted lasso is never fully unpenalized
MCP_WEIGHT_FLOOR = 1e-3


@dataclass
class FittedModel:
    """Penalized Cox model with its selected hyperparameters.

    Coefficients apply to covariates standardized with ``scaler``. Instances
    are not modified after fitting; ``refit`` returns a new instance.

    Attributes:
        model_type: One of "lasso", "alasso", "aenet", "mcp"
        alpha: Selected regularization strength
        l1_ratio: L1/L2 mixing (1.0 for lasso-type penalties)
        coef: Coefficients indexed by covariate name (standardized scale)
        scaler: StandardScaler fitted on the training covariates
        penalty_factor: Per-covariate penalty weights (normalized to sum to n_features)
        y_train: Training outcome, used for the Breslow baseline hazard
        cv_curve: Cross-validation curve the alpha was selected on
        gamma: MCP concavity (MCP only)
        baseline: Breslow estimator of the baseline hazard
        fitter: Fitter that produced the model, used by refit
    """
    model_type: str
    alpha: float
    l1_ratio: float
    coef: pd.Series
    scaler: StandardScaler
    penalty_factor: np.ndarray
    y_train: np.ndarray
    cv_curve: Optional[CVCurve] = None
    gamma: Optional[float] = None
    baseline: Optional[BreslowEstimator] = field(default=None, repr=False)
    fitter: Optional["PenalizedCoxFitter"] = field(default=None, repr=False)

    @property
    def is_null(self) -> bool:
        """True when every coefficient is exactly zero."""
        return bool(np.all(self.coef.values == 0.0))

    @property
    def n_nonzero(self) -> int:
        return int(np.count_nonzero(self.coef.values))

    @property
    def selected(self) -> list:
        """Names of covariates with non-zero coefficients."""
        return self.coef.index[self.coef.values != 0.0].tolist()

    def predict_risk(self, X) -> np.ndarray:
        """Linear predictor (log relative hazard); higher = higher risk.

        Args:
            X: Covariate matrix with the training columns

        Returns:
            Array of shape (n_samples,)
        """
        Xs = self.scaler.transform(np.asarray(X, dtype=float))
        return Xs @ self.coef.values

    def predict_survival_function(self, X, times: Iterable[float]) -> np.ndarray:
        """Predict survival probabilities at specified times.

        Uses the Breslow baseline hazard estimated on the training data.
        Survival is 1 before the first training time, and times beyond the
        last training time are evaluated at the last training time.

        Args:
            X: Covariate matrix
            times: Time points for evaluation

        Returns:
            Array with shape (n_samples, n_times) containing survival probabilities
        """
        if self.baseline is None:
            raise RuntimeError(f"{self.model_type}: model has no baseline hazard")
        times = np.asarray(list(times), dtype=float)
        unique_times = self.baseline.unique_times_
        before_start = times < unique_times[0]
        clipped = np.clip(times, unique_times[0], unique_times[-1])

        sfns = self.baseline.get_survival_function(self.predict_risk(X))
        surv = np.vstack([f(clipped) for f in sfns])
        surv[:, before_start] = 1.0
        return surv

    def coefficient_table(self) -> pd.DataFrame:
        """Coefficients on the standardized and original covariate scales.

        Returns:
            DataFrame with columns covariate, coef, coef_original,
            hazard_ratio, hazard_ratio_per_sd, penalty_factor, selected
        """
        coef_original = self.coef.values / self.scaler.scale_
        return pd.DataFrame({
            "model": self.model_type,
            "covariate": self.coef.index,
            "coef": self.coef.values,
            "coef_original": coef_original,
            "hazard_ratio": np.exp(coef_original),
            "hazard_ratio_per_sd": np.exp(self.coef.values),
            "penalty_factor": self.penalty_factor,
            "selected": self.coef.values != 0.0,
        })

    def summary(self) -> dict:
        return {
            "model": self.model_type,
            "alpha": self.alpha,
            "l1_ratio": self.l1_ratio,
            "gamma": self.gamma,
            "n_covariates": len(self.coef),
            "n_nonzero": self.n_nonzero,
            "is_null": self.is_null,
            "selected": ",".join(self.selected),
        }

    def refit(self, X, y) -> "FittedModel":
        """Refit on new data with this model's hyperparameters, without CV.

        Args:
            X: Covariate matrix with the same columns
            y: Structured array with dtype=[('event', bool), ('time', float)]

        Returns:
            New FittedModel with the same alpha, l1_ratio, penalty factors
            and gamma
        """
        if self.fitter is None:
            raise RuntimeError(f"{self.model_type}: no fitter attached, cannot refit")
        return self.fitter.fit_fixed(X, y, self)


def _normalize_penalty(weights: np.ndarray) -> np.ndarray:
    weights = np.asarray(weights, dtype=float)
    return weights * len(weights) / weights.sum()


def breslow_baseline(Xs: np.ndarray, coef: np.ndarray, y: np.ndarray) -> BreslowEstimator:
    """Breslow baseline hazard for coefficients on standardized covariates."""
    return BreslowEstimator().fit(Xs @ coef, y["event"], y["time"])


def _coef_on_grid(model: CoxnetSurvivalAnalysis, alphas: np.ndarray) -> np.ndarray:
    """Coefficients of a fitted Coxnet path at each requested alpha.

    Coxnet stops the path early once the fit saturates; alphas beyond the
    last fitted one take the last coefficients.
    """
    fitted = model.alphas_
    coefs = np.empty((model.coef_.shape[0], len(alphas)))
    for k, alpha in enumerate(alphas):
        idx = np.flatnonzero(np.isclose(fitted, alpha, rtol=1e-10, atol=0.0))
        coefs[:, k] = model.coef_[:, idx[0]] if len(idx) else model.coef_[:, -1]
    return coefs


def coxnet_path(
    Xs: np.ndarray,
    y: np.ndarray,
    alphas: np.ndarray,
    l1_ratio: float = 1.0,
    penalty_factor: Optional[np.ndarray] = None,
    max_iter: int = 100_000,
) -> np.ndarray:
    """Fit an elastic net Cox path on a fixed alpha grid.

    Args:
        Xs: Standardized covariates
        y: Structured array with dtype=[('event', bool), ('time', float)]
        alphas: Decreasing regularization grid
        l1_ratio: Balance between L1 (1.0) and L2 penalty, in (0, 1]
        penalty_factor: Per-covariate weights summing to n_features
        max_iter: Maximum coordinate descent iterations

    Returns:
        Coefficient matrix with shape (n_features, n_alphas)
    """
    model = CoxnetSurvivalAnalysis(
        l1_ratio=l1_ratio,
        alphas=np.asarray(alphas, dtype=float),
        penalty_factor=penalty_factor,
        max_iter=max_iter,
    )
    model.fit(Xs, y)
    return _coef_on_grid(model, np.asarray(alphas, dtype=float))


def mcp_coefficients(
    Xs: np.ndarray,
    y: np.ndarray,
    alpha: float,
    gamma: float = 3.0,
    lla_steps: int = 3,
    max_iter: int = 100_000,
) -> np.ndarray:
    """MCP-penalized Cox coefficients at one alpha by local linear approximation.

    The first step is a plain lasso. Each following step linearizes the
    minimax concave penalty at the current estimate, giving a weighted lasso
    with weights max(1 - |b_j| / (gamma * alpha), 0): large coefficients are
    left (almost) unpenalized and small ones keep the full lasso penalty.

    Args:
        Xs: Standardized covariates
        y: Structured array with dtype=[('event', bool), ('time', float)]
        alpha: Regularization strength
        gamma: MCP concavity, > 1
        lla_steps: Maximum number of weighted lasso fits
        max_iter: Maximum coordinate descent iterations per fit

    Returns:
        Coefficient vector of shape (n_features,)
    """
    n_features = Xs.shape[1]
    weights = np.ones(n_features)
    coef = np.zeros(n_features)
    for _ in range(lla_steps):
        # Coxnet rescales penalty factors to sum to n_features; shift that scale into alpha
        scale = weights.sum() / n_features
        model = CoxnetSurvivalAnalysis(
            l1_ratio=1.0,
            alphas=[alpha * scale],
            penalty_factor=weights / scale,
            max_iter=max_iter,
        )
        model.fit(Xs, y)
        coef = model.coef_[:, -1].copy()

        new_weights = np.maximum(1.0 - np.abs(coef) / (gamma * alpha), MCP_WEIGHT_FLOOR)
        if np.allclose(new_weights, weights):
            break
        weights = new_weights
    return coef


def mcp_path(
    Xs: np.ndarray,
    y: np.ndarray,
    alphas: np.ndarray,
    gamma: float = 3.0,
    lla_steps: int = 3,
    max_iter: int = 100_000,
) -> np.ndarray:
    """MCP coefficients for every alpha of a grid, shape (n_features, n_alphas)."""
    coefs = np.empty((Xs.shape[1], len(alphas)))
    for k, alpha in enumerate(alphas):
        coefs[:, k] = mcp_coefficients(Xs, y, alpha, gamma, lla_steps, max_iter)
    return coefs


class PenalizedCoxFitter:
    """Base class for the penalized Cox fitters.

    Every fitter standardizes the covariates, builds an alpha grid, selects
    alpha by k-fold cross-validation on event-balanced folds, and returns a
    FittedModel. A selected model with all coefficients zero is returned as
    a null model with a NullModelWarning, not raised.

    Attributes:
        name: Model type identifier
        config: Shared fitter configuration
    """

    name: str = "base"

    def __init__(self, config: Optional[FitterConfig] = None):
        self.config = config if config is not None else FitterConfig()
        self.logger = logging.getLogger(f"burn_survival.models.{self.name}")

    def fit(self, X, y) -> FittedModel:
        """Fit with cross-validated alpha selection.

        Args:
            X: Covariate DataFrame (or array) without missing values
            y: Structured array with dtype=[('event', bool), ('time', float)]

        Returns:
            FittedModel with one coefficient per covariate
        """
        raise NotImplementedError

    def fit_fixed(self, X, y, template: FittedModel) -> FittedModel:
        """Refit with the hyperparameters of ``template`` and no CV."""
        Xa, names = _as_matrix(X)
        scaler = StandardScaler().fit(Xa)
        Xs = scaler.transform(Xa)
        coef = coxnet_path(
            Xs, y, np.array([template.alpha]),
            l1_ratio=template.l1_ratio,
            penalty_factor=template.penalty_factor,
            max_iter=self.config.max_iter,
        )[:, 0]
        return FittedModel(
            model_type=self.name,
            alpha=template.alpha,
            l1_ratio=template.l1_ratio,
            coef=pd.Series(coef, index=names),
            scaler=scaler,
            penalty_factor=template.penalty_factor,
            y_train=y,
            gamma=template.gamma,
            baseline=breslow_baseline(Xs, coef, y),
            fitter=self,
        )

    def _cv_coxnet(
        self, Xa: np.ndarray, y: np.ndarray, l1_ratio: float,
        penalty_factor: np.ndarray, seed: int
    ) -> Tuple[CVCurve, np.ndarray]:
        """Cross-validate a Coxnet path whose grid comes from the full-data fit.

        Returns:
            Tuple of (CVCurve, full-data coefficient matrix aligned with the curve's alphas)
        """
        Xs = StandardScaler().fit_transform(Xa)
        full = CoxnetSurvivalAnalysis(
            l1_ratio=l1_ratio,
            n_alphas=self.config.n_alphas,
            alpha_min_ratio=self.config.alpha_min_ratio,
            penalty_factor=penalty_factor,
            max_iter=self.config.max_iter,
        )
        full.fit(Xs, y)
        alphas = np.asarray(full.alphas_, dtype=float)
        coefs = np.asarray(full.coef_)

        folds = event_balanced_folds(y, self.config.n_folds, seed)
        path_fn = partial(
            coxnet_path, l1_ratio=l1_ratio, penalty_factor=penalty_factor,
            max_iter=self.config.max_iter,
        )
        curve = cross_validate_path(
            path_fn, Xa, y, alphas, folds,
            l1_ratio=l1_ratio, n_nonzero=np.count_nonzero(coefs, axis=0),
        )
        return curve, coefs

    def _adaptive_weights(self, Xa: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Adaptive penalty weights from a cross-validated preliminary fit.

        Covariates with large preliminary coefficients get small weights;
        those near zero get large ones.
        """
        l1_ratio = INIT_L1_RATIO[self.config.init]
        uniform = np.ones(Xa.shape[1])
        curve, coefs = self._cv_coxnet(Xa, y, l1_ratio, uniform, self.config.init_seed)
        initial = coefs[:, curve.select(self.config.rule)]
        self.logger.debug(
            f"Preliminary {self.config.init} fit: alpha={curve.alphas[curve.select(self.config.rule)]:.4g}, "
            f"non-zero={np.count_nonzero(initial)}"
        )
        weights = 1.0 / np.maximum(np.abs(initial), ADAPTIVE_EPS) ** self.config.adaptive_gamma
        return _normalize_penalty(weights)

    def _finish(
        self, names, scaler: StandardScaler, Xa: np.ndarray, coef: np.ndarray, alpha: float,
        l1_ratio: float, penalty_factor: np.ndarray, y: np.ndarray,
        curve: CVCurve, gamma: Optional[float] = None
    ) -> FittedModel:
        model = FittedModel(
            model_type=self.name,
            alpha=float(alpha),
            l1_ratio=float(l1_ratio),
            coef=pd.Series(coef, index=names),
            scaler=scaler,
            penalty_factor=penalty_factor,
            y_train=y,
            cv_curve=curve,
            gamma=gamma,
            baseline=breslow_baseline(scaler.transform(Xa), coef, y),
            fitter=self,
        )
        log_performance(
            self.logger, f"{self.name} fitted",
            alpha=round(model.alpha, 6),
            l1_ratio=model.l1_ratio,
            n_nonzero=model.n_nonzero,
            cv_deviance=round(float(curve.cvm[curve.select(self.config.rule)]), 4),
        )
        if model.is_null:
            self.logger.warning(
                f"{self.name}: {self.config.rule} selected alpha={model.alpha:.4g} "
                f"with all {len(coef)} coefficients zero (null model)"
            )
            warnings.warn(
                f"{self.name}: null model selected at alpha={model.alpha:.4g}",
                NullModelWarning,
            )
        return model


def _as_matrix(X) -> Tuple[np.ndarray, list]:
    if isinstance(X, pd.DataFrame):
        return X.to_numpy(dtype=float), list(X.columns)
    Xa = np.asarray(X, dtype=float)
    return Xa, [f"x{i}" for i in range(Xa.shape[1])]


class LassoCox(PenalizedCoxFitter):
    """L1-penalized Cox regression with cross-validated alpha."""

    name = "lasso"

    def fit(self, X, y) -> FittedModel:
        Xa, names = _as_matrix(X)
        scaler = StandardScaler().fit(Xa)
        penalty_factor = np.ones(Xa.shape[1])

        curve, coefs = self._cv_coxnet(Xa, y, 1.0, penalty_factor, self.config.cv_seed)
        idx = curve.select(self.config.rule)
        return self._finish(
            names, scaler, Xa, coefs[:, idx], curve.alphas[idx], 1.0, penalty_factor, y, curve
        )


class AdaptiveLassoCox(PenalizedCoxFitter):
    """Adaptive lasso Cox regression.

    Weights come from a cross-validated preliminary fit (folds drawn with
    ``init_seed``); the weighted lasso is then cross-validated on folds drawn
    with ``cv_seed``.
    """

    name = "alasso"

    def fit(self, X, y) -> FittedModel:
        Xa, names = _as_matrix(X)
        scaler = StandardScaler().fit(Xa)
        penalty_factor = self._adaptive_weights(Xa, y)

        curve, coefs = self._cv_coxnet(Xa, y, 1.0, penalty_factor, self.config.cv_seed)
        idx = curve.select(self.config.rule)
        return self._finish(
            names, scaler, Xa, coefs[:, idx], curve.alphas[idx], 1.0, penalty_factor, y, curve
        )


class AdaptiveElasticNetCox(PenalizedCoxFitter):
    """Adaptive elastic net Cox regression.

    Uses the adaptive lasso weights with an L1/L2 penalty. The mixing
    parameter is tuned over ``l1_ratio_grid``: the grid value whose curve
    reaches the lowest cross-validated deviance wins, and alpha is chosen on
    that curve by the configured rule.
    """

    name = "aenet"

    def fit(self, X, y) -> FittedModel:
        Xa, names = _as_matrix(X)
        scaler = StandardScaler().fit(Xa)
        penalty_factor = self._adaptive_weights(Xa, y)

        best = None
        for l1_ratio in self.config.l1_ratio_grid:
            curve, coefs = self._cv_coxnet(Xa, y, l1_ratio, penalty_factor, self.config.cv_seed)
            self.logger.debug(f"l1_ratio={l1_ratio}: min CV deviance {curve.min_error:.4f}")
            if best is None or curve.min_error < best[0].min_error:
                best = (curve, coefs)

        curve, coefs = best
        idx = curve.select(self.config.rule)
        return self._finish(
            names, scaler, Xa, coefs[:, idx], curve.alphas[idx], curve.l1_ratio,
            penalty_factor, y, curve
        )


class MCPCox(PenalizedCoxFitter):
    """Minimax concave penalty Cox regression.

    Computed by local linear approximation on a geometric alpha grid that
    starts at the lasso path's largest alpha (where every coefficient is
    zero). Nearly unbiased for large coefficients while still setting small
    ones to exactly zero.
    """

    name = "mcp"

    def _grid(self, Xs: np.ndarray, y: np.ndarray) -> np.ndarray:
        lasso = CoxnetSurvivalAnalysis(
            l1_ratio=1.0, n_alphas=self.config.n_alphas,
            alpha_min_ratio=self.config.alpha_min_ratio, max_iter=self.config.max_iter,
        )
        lasso.fit(Xs, y)
        alpha_max = float(lasso.alphas_[0])
        return np.geomspace(
            alpha_max, alpha_max * self.config.alpha_min_ratio, self.config.mcp_n_alphas
        )

    def fit(self, X, y) -> FittedModel:
        Xa, names = _as_matrix(X)
        scaler = StandardScaler().fit(Xa)
        Xs = scaler.transform(Xa)
        cfg = self.config

        alphas = self._grid(Xs, y)
        path_fn = partial(
            mcp_path, gamma=cfg.mcp_gamma, lla_steps=cfg.lla_steps, max_iter=cfg.max_iter
        )
        coefs = path_fn(Xs, y, alphas)
        folds = event_balanced_folds(y, cfg.n_folds, cfg.cv_seed)
        curve = cross_validate_path(
            path_fn, Xa, y, alphas, folds,
            l1_ratio=1.0, n_nonzero=np.count_nonzero(coefs, axis=0),
        )
        idx = curve.select(cfg.rule)
        return self._finish(
            names, scaler, Xa, coefs[:, idx], alphas[idx], 1.0,
            np.ones(Xa.shape[1]), y, curve, gamma=cfg.mcp_gamma
        )

    def fit_fixed(self, X, y, template: FittedModel) -> FittedModel:
        Xa, names = _as_matrix(X)
        scaler = StandardScaler().fit(Xa)
        Xs = scaler.transform(Xa)
        coef = mcp_coefficients(
            Xs, y, template.alpha,
            gamma=template.gamma, lla_steps=self.config.lla_steps,
            max_iter=self.config.max_iter,
        )
        return FittedModel(
            model_type=self.name,
            alpha=template.alpha,
            l1_ratio=template.l1_ratio,
            coef=pd.Series(coef, index=names),
            scaler=scaler,
            penalty_factor=template.penalty_factor,
            y_train=y,
            gamma=template.gamma,
            baseline=breslow_baseline(Xs, coef, y),
            fitter=self,
        )


FITTERS = {
    "lasso": LassoCox,
    "alasso": AdaptiveLassoCox,
    "aenet": AdaptiveElasticNetCox,
    "mcp": MCPCox,
}


def build_fitter(model_type: str, config: Optional[FitterConfig] = None) -> PenalizedCoxFitter:
    """Instantiate the fitter for one model type.

    Raises:
        KeyError: If model_type is not one of lasso, alasso, aenet, mcp
    """
    try:
        return FITTERS[model_type](config)
    except KeyError:
        raise KeyError(f"Unknown model type {model_type!r}. Available: {list(FITTERS)}") from None


def build_fitters(config: Optional[FitterConfig] = None) -> Dict[str, PenalizedCoxFitter]:
    """Construct all four fitters keyed by model type.

    Example:
        >>> fitters = build_fitters(FitterConfig(cv_seed=11))
        >>> list(fitters)
        ['lasso', 'alasso', 'aenet', 'mcp']
    """
    return {name: build_fitter(name, config) for name in MODEL_TYPES}
