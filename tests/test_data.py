"""Unit tests for burn_survival.data module.

Tests loading the burn table and deriving the per-endpoint covariate views.
"""
import pytest
import numpy as np
import pandas as pd

from burn_survival.data import (
    ANTIBIOTIC,
    COVARIATE_COLS,
    ENDPOINTS,
    EXCISION,
    INFECTION,
    RECORD_COLS,
    CovariateView,
    derive_view,
    derive_views,
    get_endpoint,
    load_data,
    to_structured_y,
)
from burn_survival.exceptions import DataUnavailable


class TestLoadData:
    """Tests for load_data function."""

    def test_loads_csv_and_drops_identifier(self, burn_csv):
        """Test that the CSV loads with 154 rows and 17 record columns."""
        df = load_data(burn_csv)

        assert df.shape == (154, 17)
        assert "Obs" not in df.columns
        assert list(df.columns) == RECORD_COLS

    def test_loads_pickle(self, tmp_path, burn_table):
        """Test pickle input gives the same table as CSV."""
        path = tmp_path / "burn.pkl"
        burn_table.to_pickle(path)

        df = load_data(path)

        assert df.shape == (154, 17)
        pd.testing.assert_frame_equal(df, burn_table[RECORD_COLS])

    def test_drops_r_rowname_column(self, tmp_path, burn_table):
        """Test that an unnamed leading index column from R exports is ignored."""
        path = tmp_path / "burn_rownames.csv"
        burn_table.to_csv(path, index=True)

        df = load_data(path)

        assert df.shape == (154, 17)

    def test_missing_file_raises(self, tmp_path):
        """Test that a missing file raises DataUnavailable."""
        with pytest.raises(DataUnavailable, match="not found"):
            load_data(tmp_path / "nope.csv")

    def test_missing_file_is_file_not_found(self, tmp_path):
        """Test DataUnavailable can be caught as FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_data(tmp_path / "nope.csv")

    def test_unsupported_format_raises(self, tmp_path):
        """Test that unsupported extensions raise DataUnavailable."""
        path = tmp_path / "burn.xlsx"
        path.write_text("not a spreadsheet")

        with pytest.raises(DataUnavailable, match="Unsupported file format"):
            load_data(path)

    def test_missing_columns_raise(self, tmp_path, burn_table):
        """Test that a table without an outcome column is rejected."""
        path = tmp_path / "burn_short.csv"
        burn_table.drop(columns=["D3"]).to_csv(path, index=False)

        with pytest.raises(DataUnavailable, match="D3"):
            load_data(path)

    def test_missing_values_raise(self, tmp_path, burn_table):
        """Test that missing covariate values are rejected."""
        df = burn_table.copy()
        df.loc[3, "Z4"] = np.nan
        path = tmp_path / "burn_nan.csv"
        df.to_csv(path, index=False)

        with pytest.raises(DataUnavailable, match="Z4"):
            load_data(path)

    def test_returns_copy(self, tmp_path, burn_table):
        """Test that modifying the loaded frame does not touch the source."""
        path = tmp_path / "burn.pkl"
        burn_table.to_pickle(path)
        df = load_data(path)

        df.loc[0, "Z1"] = 99

        assert burn_table.loc[0, "Z1"] != 99


class TestStructuredY:
    """Tests for to_structured_y function."""

    def test_dtype_and_values(self, records):
        """Test field names, dtypes and values of the outcome array."""
        y = to_structured_y(records, INFECTION)

        assert y.dtype.names == ("event", "time")
        assert y["event"].dtype == bool
        np.testing.assert_array_equal(y["time"], records["T3"].to_numpy(dtype=float))
        np.testing.assert_array_equal(y["event"], records["D3"].to_numpy() == 1)


class TestDeriveViews:
    """Tests for covariate view derivation."""

    def test_three_views(self, records):
        """Test that one view per endpoint is derived."""
        views = derive_views(records)

        assert set(views) == {"excision", "antibiotic", "infection"}

    @pytest.mark.parametrize("endpoint", [EXCISION, ANTIBIOTIC, INFECTION])
    def test_view_excludes_own_outcome(self, records, endpoint):
        """Test that a view never contains its own time or event column."""
        view = derive_view(records, endpoint)

        assert endpoint.time_col not in view.X.columns
        assert endpoint.event_col not in view.X.columns
        assert view.X.shape == (154, 15)
        assert set(COVARIATE_COLS) <= set(view.X.columns)

    def test_other_outcomes_kept_as_covariates(self, records):
        """Test that the excision view keeps the antibiotic and infection columns."""
        view = derive_view(records, EXCISION)

        assert {"T2", "D2", "T3", "D3"} <= set(view.X.columns)

    def test_view_does_not_mutate_records(self, records):
        """Test that deriving a view leaves the record table intact."""
        before = records.copy()

        derive_view(records, ANTIBIOTIC)

        pd.testing.assert_frame_equal(records, before)

    def test_non_positive_times_dropped(self, records):
        """Test that records with time <= 0 are removed from the view."""
        df = records.copy()
        df.loc[[0, 1], "T1"] = 0

        view = derive_view(df, EXCISION)

        assert len(view.y) == 152
        assert len(view.X) == 152
        assert view.y["time"].min() > 0

    def test_leaking_view_rejected(self, records):
        """Test that constructing a view with its own outcome columns fails."""
        with pytest.raises(ValueError, match="own outcome"):
            CovariateView(
                endpoint=EXCISION,
                X=records.copy(),
                y=to_structured_y(records, EXCISION),
            )

    def test_view_labels(self, excision_view):
        """Test that a view carries its endpoint name and title."""
        assert excision_view.name == "excision"
        assert excision_view.title == "Time to excision"
        assert excision_view.n_events == int(excision_view.y["event"].sum())


class TestGetEndpoint:
    """Tests for endpoint lookup."""

    def test_known_endpoints(self):
        for name, endpoint in ENDPOINTS.items():
            assert get_endpoint(name) is endpoint

    def test_unknown_endpoint(self):
        with pytest.raises(KeyError, match="Unknown endpoint"):
            get_endpoint("mortality")
