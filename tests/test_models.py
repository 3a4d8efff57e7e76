"""Unit tests for burn_survival.models module.

Tests the four penalized Cox fitters and the FittedModel they return.
"""
from dataclasses import replace

import pytest
import numpy as np
import pandas as pd

from burn_survival.cv import CVCurve
from burn_survival.exceptions import NullModelWarning
from burn_survival.models import (
    MODEL_TYPES,
    AdaptiveElasticNetCox,
    AdaptiveLassoCox,
    FittedModel,
    LassoCox,
    MCPCox,
    build_fitter,
    build_fitters,
    mcp_coefficients,
)
from burn_survival.splitting import train_holdout_split


@pytest.fixture
def lasso_model(excision_view, fast_config):
    return LassoCox(fast_config).fit(excision_view.X, excision_view.y)


class TestBuildFitters:
    """Tests for fitter construction."""

    def test_all_model_types(self, fast_config):
        fitters = build_fitters(fast_config)

        assert list(fitters) == list(MODEL_TYPES)
        assert isinstance(fitters["lasso"], LassoCox)
        assert isinstance(fitters["alasso"], AdaptiveLassoCox)
        assert isinstance(fitters["aenet"], AdaptiveElasticNetCox)
        assert isinstance(fitters["mcp"], MCPCox)
        assert all(f.config is fast_config for f in fitters.values())

    def test_unknown_model_type(self):
        with pytest.raises(KeyError, match="Unknown model type"):
            build_fitter("ridge")


@pytest.mark.slow
class TestFitterContract:
    """Every fitter returns one coefficient per input covariate."""

    @pytest.mark.parametrize("model_type", MODEL_TYPES)
    def test_one_coefficient_per_covariate(self, excision_view, fast_config, model_type):
        model = build_fitter(model_type, fast_config).fit(excision_view.X, excision_view.y)

        assert isinstance(model, FittedModel)
        assert model.model_type == model_type
        assert len(model.coef) == excision_view.X.shape[1]
        assert list(model.coef.index) == list(excision_view.X.columns)
        assert model.alpha > 0
        assert np.all(np.isfinite(model.coef.values))

    @pytest.mark.parametrize("model_type", MODEL_TYPES)
    def test_fit_on_training_split(self, excision_view, fast_config, model_type):
        """Test fitting on the 138-patient training split."""
        split = train_holdout_split(len(excision_view.y), 0.9, seed=42)
        X = excision_view.X.iloc[split.train]
        y = excision_view.y[split.train]

        model = build_fitter(model_type, fast_config).fit(X, y)

        assert len(model.coef) == 15
        assert model.cv_curve is not None


class TestLassoCox:
    """Tests for LassoCox."""

    def test_selects_informative_covariates(self, lasso_model):
        """Test that the strongest simulated effects survive the penalty."""
        assert not lasso_model.is_null
        assert "Z1" in lasso_model.selected
        assert lasso_model.l1_ratio == 1.0

    def test_alpha_on_curve(self, lasso_model, fast_config):
        curve = lasso_model.cv_curve

        assert lasso_model.alpha == curve.alphas[curve.select(fast_config.rule)]

    def test_lambda_min_less_regularized(self, excision_view, fast_config):
        """Test that lambda.min never selects a larger alpha than lambda.1se."""
        fit_1se = LassoCox(fast_config).fit(excision_view.X, excision_view.y)
        fit_min = LassoCox(replace(fast_config, rule="lambda.min")).fit(excision_view.X, excision_view.y)

        assert fit_min.alpha <= fit_1se.alpha
        assert fit_min.n_nonzero >= fit_1se.n_nonzero

    def test_null_model_warns(self, excision_view, fast_config, monkeypatch):
        """Test that selecting the top of the path gives a null model and a warning."""
        # The first alpha of a Coxnet path zeroes every coefficient
        monkeypatch.setattr(CVCurve, "select", lambda self, rule="lambda.1se": 0)

        with pytest.warns(NullModelWarning):
            model = LassoCox(fast_config).fit(excision_view.X, excision_view.y)

        assert model.is_null
        assert model.n_nonzero == 0
        assert len(model.coef) == 15


class TestAdaptiveFitters:
    """Tests for the adaptive lasso and adaptive elastic net."""

    def test_adaptive_penalty_factors(self, excision_view, fast_config):
        model = AdaptiveLassoCox(fast_config).fit(excision_view.X, excision_view.y)

        assert model.penalty_factor.shape == (15,)
        assert np.isclose(model.penalty_factor.sum(), 15)
        assert np.all(model.penalty_factor > 0)
        assert not np.allclose(model.penalty_factor, 1.0)

    def test_informative_covariates_penalized_less(self, excision_view, fast_config):
        """Test that Z1 gets a smaller weight than the uninformative Z2."""
        model = AdaptiveLassoCox(fast_config).fit(excision_view.X, excision_view.y)
        weights = pd.Series(model.penalty_factor, index=model.coef.index)

        assert weights["Z1"] < weights["Z2"]

    def test_enet_init(self, excision_view, fast_config):
        config = replace(fast_config, init="enet")

        model = AdaptiveLassoCox(config).fit(excision_view.X, excision_view.y)

        assert len(model.coef) == 15

    def test_aenet_l1_ratio_from_grid(self, excision_view, fast_config):
        model = AdaptiveElasticNetCox(fast_config).fit(excision_view.X, excision_view.y)

        assert model.l1_ratio in fast_config.l1_ratio_grid
        assert model.cv_curve.l1_ratio == model.l1_ratio


class TestMCPCox:
    """Tests for MCPCox."""

    def test_reproducible(self, excision_view, fast_config):
        """Test that MCP with a fixed seed gives identical fits."""
        a = MCPCox(fast_config).fit(excision_view.X, excision_view.y)
        b = MCPCox(fast_config).fit(excision_view.X, excision_view.y)

        assert a.alpha == b.alpha
        pd.testing.assert_series_equal(a.coef, b.coef)
        np.testing.assert_array_equal(a.cv_curve.cvm, b.cv_curve.cvm)

    def test_records_gamma(self, excision_view, fast_config):
        model = MCPCox(fast_config).fit(excision_view.X, excision_view.y)

        assert model.gamma == fast_config.mcp_gamma
        assert len(model.cv_curve.alphas) == fast_config.mcp_n_alphas

    def test_large_alpha_gives_zero(self, excision_view):
        Xs = (excision_view.X - excision_view.X.mean()) / excision_view.X.std(ddof=0)

        coef = mcp_coefficients(Xs.to_numpy(), excision_view.y, alpha=10.0)

        assert np.all(coef == 0)

    def test_less_shrinkage_than_lasso(self, excision_view):
        """Test that MCP shrinks a large coefficient less than the lasso at the same alpha."""
        Xs = ((excision_view.X - excision_view.X.mean()) / excision_view.X.std(ddof=0)).to_numpy()
        alpha = 0.05

        lasso = mcp_coefficients(Xs, excision_view.y, alpha, lla_steps=1)
        mcp = mcp_coefficients(Xs, excision_view.y, alpha, gamma=3.0, lla_steps=3)

        j = int(np.argmax(np.abs(lasso)))
        assert abs(mcp[j]) >= abs(lasso[j])


class TestFittedModel:
    """Tests for FittedModel predictions and tables."""

    def test_predict_risk_shape(self, lasso_model, excision_view):
        risk = lasso_model.predict_risk(excision_view.X)

        assert risk.shape == (len(excision_view.X),)

    def test_null_model_constant_risk(self, lasso_model, excision_view):
        null = replace(lasso_model, coef=lasso_model.coef * 0.0)

        assert null.is_null
        assert np.all(null.predict_risk(excision_view.X) == 0)

    def test_survival_function(self, lasso_model, excision_view):
        """Test survival predictions lie in [0, 1] and decrease over time."""
        times = [0.5, 7.5, 15.0, 22.5, 30.0, 1e6]

        surv = lasso_model.predict_survival_function(excision_view.X.iloc[:10], times)

        assert surv.shape == (10, 6)
        assert np.all((surv >= 0) & (surv <= 1))
        assert np.all(np.diff(surv, axis=1) <= 1e-12)
        assert np.all(surv[:, 0] == 1.0)

    def test_coefficient_table(self, lasso_model):
        table = lasso_model.coefficient_table()

        assert len(table) == 15
        np.testing.assert_allclose(
            table["coef_original"], lasso_model.coef.values / lasso_model.scaler.scale_
        )
        np.testing.assert_allclose(table["hazard_ratio"], np.exp(table["coef_original"]))
        assert table["selected"].sum() == lasso_model.n_nonzero

    def test_refit_keeps_hyperparameters(self, lasso_model, excision_view):
        """Test that refit reuses alpha and penalty without cross-validation."""
        X, y = excision_view.X.iloc[:120], excision_view.y[:120]

        refit = lasso_model.refit(X, y)

        assert refit.alpha == lasso_model.alpha
        assert refit.l1_ratio == lasso_model.l1_ratio
        np.testing.assert_array_equal(refit.penalty_factor, lasso_model.penalty_factor)
        assert refit.cv_curve is None
        assert len(refit.coef) == 15

    def test_refit_on_same_data_matches(self, lasso_model, excision_view):
        refit = lasso_model.refit(excision_view.X, excision_view.y)

        np.testing.assert_allclose(refit.coef.values, lasso_model.coef.values, atol=1e-3)

    def test_summary(self, lasso_model):
        summary = lasso_model.summary()

        assert summary["model"] == "lasso"
        assert summary["n_covariates"] == 15
        assert summary["is_null"] is False
