"""Error taxonomy for the burn survival analysis.

Loading and splitting failures are fatal and raised as exceptions.
Modeling degeneracies (null models, unstable metrics) are recoverable:
fitters and validators emit warnings and annotate their results, and
validators raise ``NullModelFit`` only when asked to score a null model.
"""


class BurnSurvivalError(Exception):
    """Base class for all pipeline errors."""


class DataUnavailable(BurnSurvivalError, FileNotFoundError):
    """The fixed dataset could not be located, read, or validated."""


class DegenerateSplit(BurnSurvivalError, ValueError):
    """A split fraction produced an empty training or holdout partition."""


class NullModelFit(BurnSurvivalError):
    """A fitted model has every coefficient equal to zero.

    Attributes:
        model_type: Identifier of the model type that produced the null fit
        alpha: Regularization strength selected by cross-validation
    """

    def __init__(self, model_type: str, alpha: float):
        self.model_type = model_type
        self.alpha = alpha
        super().__init__(
            f"{model_type}: all coefficients are zero at alpha={alpha:.4g} (null model)"
        )


class NullModelWarning(UserWarning):
    """Emitted by fitters when cross-validation selects a null model."""


class UnstableMetricWarning(UserWarning):
    """Emitted when a validation horizon has too few events for a reliable AUC."""
