from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Tuple
import logging
import numpy as np
import pandas as pd
from pathlib import Path

from burn_survival.exceptions import DataUnavailable

logger = logging.getLogger("burn_survival.data")

ID_COL = "Obs"

# Baseline covariates of the burn table (KMsurv::burn)
COVARIATE_COLS = [
    "Z1",   # treatment: 0 routine bathing, 1 body cleansing
    "Z2",   # gender: 0 male, 1 female
    "Z3",   # race: 0 nonwhite, 1 white
    "Z4",   # percentage of total surface area burned
    "Z5",   # burn site: head
    "Z6",   # burn site: buttock
    "Z7",   # burn site: trunk
    "Z8",   # burn site: upper leg
    "Z9",   # burn site: lower leg
    "Z10",  # burn site: respiratory tract
    "Z11",  # burn type: 1 chemical, 2 scald, 3 electric, 4 flame
]


@dataclass(frozen=True)
class Endpoint:
    """A clinical endpoint: the (time, event) column pair it is measured by.

    Attributes:
        name: Short identifier used in configs and output tables
        time_col: Column holding time to event or end of follow-up (days)
        event_col: Column holding the event indicator (1 = event observed)
        title: Human-readable label carried into report tables
    """
    name: str
    time_col: str
    event_col: str
    title: str

    @property
    def columns(self) -> Tuple[str, str]:
        return (self.time_col, self.event_col)


EXCISION = Endpoint("excision", "T1", "D1", "Time to excision")
ANTIBIOTIC = Endpoint("antibiotic", "T2", "D2", "Time to prophylactic antibiotic treatment")
INFECTION = Endpoint("infection", "T3", "D3", "Time to Staphylococcus aureus infection")

ENDPOINTS: Dict[str, Endpoint] = {
    e.name: e for e in (EXCISION, ANTIBIOTIC, INFECTION)
}

OUTCOME_COLS = [c for e in ENDPOINTS.values() for c in e.columns]
RECORD_COLS = COVARIATE_COLS + OUTCOME_COLS


@dataclass(frozen=True)
class CovariateView:
    """Covariate matrix and survival outcome for one endpoint.

    The matrix holds every record column except the endpoint's own time and
    event columns; the other endpoints' columns stay in as covariates.

    Attributes:
        endpoint: Endpoint whose outcome is modeled
        X: Numeric covariate DataFrame, one row per patient
        y: Structured array with dtype=[('event', bool), ('time', float)]
    """
    endpoint: Endpoint
    X: pd.DataFrame
    y: np.ndarray

    def __post_init__(self):
        leaked = [c for c in self.endpoint.columns if c in self.X.columns]
        if leaked:
            raise ValueError(
                f"Covariate view '{self.endpoint.name}' contains its own outcome columns {leaked}"
            )
        if len(self.X) != len(self.y):
            raise ValueError(
                f"Covariate view '{self.endpoint.name}' has {len(self.X)} rows "
                f"but {len(self.y)} outcomes"
            )

    @property
    def name(self) -> str:
        return self.endpoint.name

    @property
    def title(self) -> str:
        return self.endpoint.title

    @property
    def n_events(self) -> int:
        return int(self.y["event"].sum())


def get_endpoint(name: str) -> Endpoint:
    """Look up an endpoint by name.

    Raises:
        KeyError: If the name is not one of excision, antibiotic, infection
    """
    try:
        return ENDPOINTS[name]
    except KeyError:
        raise KeyError(
            f"Unknown endpoint {name!r}. Available: {sorted(ENDPOINTS)}"
        ) from None


def load_data(file_path: str, id_column: str = ID_COL) -> pd.DataFrame:
    """Load the burn patient table from CSV or pickle.

    Drops the identifier column and checks that every named record column is
    present and numeric. The returned frame holds only the record columns,
    in schema order.

    Args:
        file_path: Path to input file (.csv, .pkl or .pickle)
        id_column: Identifier column to drop if present

    Returns:
        DataFrame with the 17 record columns (11 covariates, 3 time/event pairs)

    Raises:
        DataUnavailable: If the file is missing, unreadable, in an unsupported
            format, or does not match the burn schema

    Example:
        >>> df = load_data("data/inputs/burn.csv")
        >>> df.shape
        (154, 17)
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise DataUnavailable(f"Data file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix not in ['.csv', '.pkl', '.pickle']:
        raise DataUnavailable(
            f"Unsupported file format: {suffix}. "
            f"Supported formats: .csv, .pkl, .pickle"
        )

    try:
        if suffix == '.csv':
            df = pd.read_csv(file_path)
        else:
            df = pd.read_pickle(file_path)
    except (OSError, ValueError, pd.errors.ParserError) as e:
        raise DataUnavailable(f"Could not read {file_path}: {e}") from e

    logger.info(f"Loaded {len(df):,} records with {len(df.columns)} columns from {file_path}")

    # R exports carry a leading unnamed row-name column
    df = df.drop(columns=[c for c in df.columns if str(c).startswith("Unnamed")])
    if id_column in df.columns:
        df = df.drop(columns=[id_column])

    missing = [c for c in RECORD_COLS if c not in df.columns]
    if missing:
        raise DataUnavailable(f"Data file {file_path} is missing columns {missing}")

    df = df[RECORD_COLS]
    non_numeric = [c for c in RECORD_COLS if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise DataUnavailable(f"Non-numeric values in columns {non_numeric}")
    if df.isnull().any().any():
        raise DataUnavailable(
            f"Missing values in columns {df.columns[df.isnull().any()].tolist()}"
        )

    return df.copy()


def to_structured_y(df: pd.DataFrame, endpoint: Endpoint = EXCISION) -> np.ndarray:
    """Create scikit-survival structured array for one endpoint.

    Args:
        df: DataFrame containing the endpoint's time and event columns
        endpoint: Endpoint whose outcome is extracted

    Returns:
        Structured numpy array with dtype=[('event', bool), ('time', float)]

    Example:
        >>> y = to_structured_y(df, EXCISION)
        >>> y.dtype.names
        ('event', 'time')
    """
    y = np.array(
        list(zip(df[endpoint.event_col].astype(bool).values,
                 df[endpoint.time_col].astype(float).values)),
        dtype=[("event", bool), ("time", float)],
    )
    return y


def derive_view(df: pd.DataFrame, endpoint: Endpoint) -> CovariateView:
    """Project the record table onto the covariate view of one endpoint.

    Records with a non-positive time for this endpoint are dropped from the
    view, since a Cox model cannot use them.

    Args:
        df: Record table from load_data
        endpoint: Endpoint to model

    Returns:
        CovariateView with the endpoint's own columns excluded
    """
    valid = df[endpoint.time_col] > 0
    if not valid.all():
        logger.warning(
            f"{endpoint.name}: removing {(~valid).sum():,} records with "
            f"{endpoint.time_col} <= 0"
        )
    data = df.loc[valid]
    covariates = [c for c in data.columns if c not in endpoint.columns]
    X = data[covariates].astype(float).reset_index(drop=True)
    y = to_structured_y(data, endpoint)
    return CovariateView(endpoint=endpoint, X=X, y=y)


def derive_views(df: pd.DataFrame) -> Dict[str, CovariateView]:
    """Derive the excision, antibiotic and infection views.

    Returns:
        Dictionary mapping endpoint name to its CovariateView
    """
    return {name: derive_view(df, endpoint) for name, endpoint in ENDPOINTS.items()}
