"""Pytest configuration and shared fixtures for burn survival tests.

The real burn dataset is not part of the repository; tests run on a seeded
synthetic table with the same schema (154 patients, Obs, Z1..Z11 and three
time/event pairs) in which excision depends on treatment, burn extent and
trunk involvement.
"""
import pytest
import pandas as pd
import numpy as np
from pathlib import Path

from burn_survival.config import FitterConfig
from burn_survival.data import derive_view, EXCISION


def make_burn_table(n: int = 154, seed: int = 2024) -> pd.DataFrame:
    """Synthetic burn table with a known covariate effect on excision.

    Args:
        n: Number of patients
        seed: Random seed

    Returns:
        DataFrame with columns Obs, Z1..Z11, T1, D1, T2, D2, T3, D3
    """
    rng = np.random.default_rng(seed)
    df = pd.DataFrame({"Obs": np.arange(1, n + 1)})
    df["Z1"] = rng.integers(0, 2, n)
    df["Z2"] = rng.integers(0, 2, n)
    df["Z3"] = (rng.random(n) < 0.8).astype(int)
    df["Z4"] = rng.uniform(2, 95, n).round()
    for col, p in zip(["Z5", "Z6", "Z7", "Z8", "Z9", "Z10"], [0.3, 0.2, 0.6, 0.3, 0.3, 0.4]):
        df[col] = (rng.random(n) < p).astype(int)
    df["Z11"] = rng.integers(1, 5, n)

    def _outcome(eta, base_rate, censor_max):
        event_time = rng.exponential(1.0 / (base_rate * np.exp(eta - eta.mean())))
        censor_time = rng.uniform(10, censor_max, n)
        time = np.ceil(np.minimum(event_time, censor_time)).clip(min=1)
        return time, (event_time <= censor_time).astype(int)

    eta_excision = 1.2 * df["Z1"] + 0.03 * df["Z4"] - 0.8 * df["Z7"]
    df["T1"], df["D1"] = _outcome(eta_excision.to_numpy(), 0.05, 100)
    eta_antibiotic = 0.5 * df["Z10"] - 0.01 * df["Z4"]
    df["T2"], df["D2"] = _outcome(eta_antibiotic.to_numpy(), 0.03, 100)
    eta_infection = 0.6 * df["Z6"]
    df["T3"], df["D3"] = _outcome(eta_infection.to_numpy(), 0.01, 100)
    return df


@pytest.fixture(scope="session")
def project_root():
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def burn_table():
    """Raw synthetic burn table including the Obs identifier."""
    return make_burn_table()


@pytest.fixture(scope="session")
def burn_csv(tmp_path_factory, burn_table):
    """Path to the synthetic burn table written as CSV."""
    path = tmp_path_factory.mktemp("inputs") / "burn.csv"
    burn_table.to_csv(path, index=False)
    return path


@pytest.fixture(scope="session")
def records(burn_table):
    """Record table as returned by load_data (identifier dropped)."""
    return burn_table.drop(columns=["Obs"])


@pytest.fixture(scope="session")
def excision_view(records):
    return derive_view(records, EXCISION)


@pytest.fixture
def fast_config():
    """Fitter settings small enough for quick tests."""
    return FitterConfig(
        n_folds=5,
        n_alphas=30,
        mcp_n_alphas=10,
        lla_steps=2,
        l1_ratio_grid=(0.3, 0.7),
        cv_seed=11,
        init_seed=5,
    )


@pytest.fixture
def structured_y():
    """Small structured survival array.

    Returns:
        np.ndarray: Structured array with dtype=[('event', bool), ('time', float)]
    """
    return np.array(
        [(True, 12.5), (False, 24.0), (True, 6.0), (False, 18.0), (True, 30.0)],
        dtype=[("event", bool), ("time", float)]
    )


@pytest.fixture(autouse=True)
def cleanup_mlflow_runs():
    """Reset MLflow tracking state after each test."""
    import mlflow
    yield
    if mlflow.active_run() is not None:
        mlflow.end_run()
    mlflow.set_tracking_uri(None)
