"""Principal component diagnostics for the covariate views.

Output is descriptive only; nothing here feeds the fitters.
"""
from __future__ import annotations
from typing import Mapping
import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from burn_survival.data import CovariateView


def cumulative_variance(X) -> pd.DataFrame:
    """Explained-variance curve of the standardized covariate matrix.

    Fits a PCA with all min(n_samples, n_features) components on the
    zero-mean, unit-variance matrix.

    Args:
        X: Numeric covariate matrix (DataFrame or array)

    Returns:
        DataFrame with columns:
        - component: 1-based component index
        - explained_variance: proportion of variance of this component
        - cumulative_variance: running sum, non-decreasing and ending at 1

    Example:
        >>> curve = cumulative_variance(view.X)
        >>> curve["cumulative_variance"].iloc[-1]
        1.0
    """
    pipe = Pipeline(
        steps=[
            ("scaler", StandardScaler()),
            ("pca", PCA(svd_solver="full")),
        ]
    )
    pipe.fit(np.asarray(X, dtype=float))
    ratios = pipe.named_steps["pca"].explained_variance_ratio_
    cumulative = np.cumsum(ratios)
    # cumsum drifts by a few ulps; pin the curve to its mathematical bounds
    cumulative = np.minimum(np.maximum.accumulate(cumulative), 1.0)

    return pd.DataFrame({
        "component": np.arange(1, len(ratios) + 1),
        "explained_variance": ratios,
        "cumulative_variance": cumulative,
    })


def explore_views(views: Mapping[str, CovariateView]) -> pd.DataFrame:
    """Stack the explained-variance curves of several views.

    Each curve is labelled with the name and title of the view it was
    computed on.

    Args:
        views: Mapping of view name to CovariateView

    Returns:
        DataFrame with columns view, title, component, explained_variance,
        cumulative_variance
    """
    frames = []
    for name, view in views.items():
        curve = cumulative_variance(view.X)
        curve.insert(0, "title", view.title)
        curve.insert(0, "view", name)
        frames.append(curve)
    return pd.concat(frames, ignore_index=True)


def components_for_variance(curve: pd.DataFrame, target: float = 0.9) -> int:
    """Smallest number of components whose cumulative variance reaches target."""
    reached = curve["cumulative_variance"].to_numpy() >= target - 1e-12
    return int(curve["component"].to_numpy()[np.argmax(reached)])
