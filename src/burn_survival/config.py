"""Configuration for the burn survival analysis pipeline.

Groups every tunable of a run into dataclasses that serialize to JSON:
- ExecutionConfig: sequential or joblib-parallel validation resamples
- FitterConfig: cross-validation and penalty settings shared by the fitters
- DataConfig: input location and endpoint selection
- AnalysisConfig: split, seeds, horizons and validation settings
- PipelineConfig: master configuration recorded with every run
"""
from __future__ import annotations
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import os
import multiprocessing
import json


class ExecutionMode(str, Enum):
    """Execution mode for validation resamples.

    Attributes:
        PANDAS: Sequential execution in the calling process (default)
        MULTIPROCESSING: Parallel resamples using joblib
    """
    PANDAS = "pandas"
    MULTIPROCESSING = "mp"


@dataclass
class ExecutionConfig:
    """Configuration for execution mode and parallelization.

    Parallelism never changes results: folds and seeds are fixed before
    any work is dispatched.

    Attributes:
        mode: Execution mode (pandas, mp)
        n_jobs: Number of parallel jobs. -1 means use all cores, 1 means sequential
        verbose: Verbosity level for joblib (0=silent, 10=progress bar, 50=detailed)
        backend: Joblib backend ('loky', 'threading', 'multiprocessing')

    Example:
        >>> config = ExecutionConfig()
        >>> config = ExecutionConfig(mode=ExecutionMode.MULTIPROCESSING, n_jobs=-1)
    """
    mode: ExecutionMode = ExecutionMode.PANDAS
    n_jobs: int = 1
    verbose: int = 0
    backend: str = "loky"

    def __post_init__(self):
        """Validate and normalize configuration."""
        if isinstance(self.mode, str):
            self.mode = ExecutionMode(self.mode)

        if self.n_jobs == -1:
            self.n_jobs = multiprocessing.cpu_count()
        elif self.n_jobs < 1:
            raise ValueError(f"n_jobs must be -1 or positive, got {self.n_jobs}")

        if self.mode == ExecutionMode.PANDAS:
            self.n_jobs = 1

    def is_parallel(self) -> bool:
        """Check if parallel execution is enabled.

        Returns:
            True if execution mode supports parallelism and n_jobs > 1
        """
        return self.mode != ExecutionMode.PANDAS and self.n_jobs > 1

    def __str__(self) -> str:
        return (
            f"ExecutionConfig(mode={self.mode.value}, "
            f"n_jobs={self.n_jobs}, "
            f"parallel={self.is_parallel()})"
        )


def create_execution_config(
    mode: Optional[str] = None,
    n_jobs: int = -1,
    verbose: int = 0
) -> ExecutionConfig:
    """Factory function to create ExecutionConfig from CLI-style arguments.

    Args:
        mode: Execution mode string ('pandas', 'mp'). None means sequential
        n_jobs: Number of parallel jobs (-1 = all cores)
        verbose: Joblib verbosity level

    Returns:
        ExecutionConfig instance

    Example:
        >>> config = create_execution_config(mode='mp', n_jobs=4)
    """
    execution_mode = ExecutionMode.PANDAS if mode is None else ExecutionMode(mode)
    return ExecutionConfig(mode=execution_mode, n_jobs=n_jobs, verbose=verbose)


# ============================================================================
# Fitter Configuration
# ============================================================================

@dataclass
class FitterConfig:
    """Settings shared by the penalized Cox fitters.

    Attributes:
        n_folds: Number of cross-validation folds for alpha selection
        rule: Alpha selection rule, "lambda.1se" or "lambda.min"
        n_alphas: Number of alphas in the Coxnet regularization path
        alpha_min_ratio: Ratio of smallest to largest alpha in the path
        cv_seed: Seed for fold assignment of the main cross-validation
        init_seed: Seed for fold assignment of the adaptive-weight pre-estimation
        init: Pre-estimation for adaptive weights, "ridge" or "enet"
        adaptive_gamma: Exponent applied to the preliminary coefficients
        l1_ratio_grid: Candidate L1/L2 mixing values for the adaptive elastic net
        mcp_gamma: Concavity parameter of the minimax concave penalty
        mcp_n_alphas: Number of alphas in the MCP grid
        lla_steps: Weighted-lasso refits per alpha when computing MCP
        max_iter: Maximum coordinate descent iterations per Coxnet fit
    """
    n_folds: int = 5
    rule: str = "lambda.1se"
    n_alphas: int = 100
    alpha_min_ratio: float = 0.01
    cv_seed: int = 11
    init_seed: int = 5

    init: str = "ridge"
    """Pre-estimation for adaptive weights.

    - "ridge": near-ridge Coxnet (l1_ratio=0.01), keeps every covariate
    - "enet": balanced elastic net (l1_ratio=0.5), may zero out covariates
    """

    adaptive_gamma: float = 1.0
    l1_ratio_grid: tuple[float, ...] = (0.1, 0.3, 0.5, 0.7, 0.9)

    mcp_gamma: float = 3.0
    """Concavity of MCP. Must be > 1; smaller values are closer to hard thresholding."""

    mcp_n_alphas: int = 30
    lla_steps: int = 3
    max_iter: int = 100_000

    def __post_init__(self):
        if isinstance(self.l1_ratio_grid, list):
            self.l1_ratio_grid = tuple(self.l1_ratio_grid)
        if self.rule not in ("lambda.1se", "lambda.min"):
            raise ValueError(f"rule must be 'lambda.1se' or 'lambda.min', got {self.rule!r}")
        if self.init not in ("ridge", "enet"):
            raise ValueError(f"init must be 'ridge' or 'enet', got {self.init!r}")
        if self.n_folds < 2:
            raise ValueError(f"n_folds must be at least 2, got {self.n_folds}")
        if self.mcp_gamma <= 1.0:
            raise ValueError(f"mcp_gamma must be > 1, got {self.mcp_gamma}")


# ============================================================================
# Data Configuration
# ============================================================================

@dataclass
class DataConfig:
    """Configuration for data loading and endpoint selection.

    Attributes:
        input_file: Path to the burn dataset (CSV or pickle)
        endpoint: Endpoint modeled by the fitters and validators
        id_column: Identifier column dropped on load
    """
    input_file: str = "data/inputs/burn.csv"
    endpoint: str = "excision"
    id_column: str = "Obs"


# ============================================================================
# Analysis Configuration
# ============================================================================

@dataclass
class AnalysisConfig:
    """Configuration for the split, validation and reporting stages.

    Attributes:
        split_fraction: Share of rows assigned to training
        split_seed: Seed for the train/holdout split
        horizon_max: Largest evaluation horizon; horizons are its quarter-splits
        n_horizons: Number of evaluation horizons
        compare_models: Model types compared by internal validation
        external_models: Model types fit on the training split and validated externally
        validation_method: Internal validation scheme, "cv", "repeated_cv" or "bootstrap"
        validation_folds: Folds for internal validation
        validation_seed: Seed for internal validation resampling
        n_repeats: Repetitions for "repeated_cv"
        n_boot: Resamples for "bootstrap"
        min_events: Cases below which a horizon's AUC is flagged unstable
        divergence_threshold: |mean - median| above which a horizon is flagged unstable
    """
    split_fraction: float = 0.9
    split_seed: int = 42

    horizon_max: float = 30.0
    n_horizons: int = 4

    compare_models: tuple[str, ...] = ("lasso", "alasso")
    external_models: tuple[str, ...] = ("lasso", "alasso", "aenet", "mcp")

    validation_method: str = "cv"
    validation_folds: int = 5
    validation_seed: int = 42
    n_repeats: int = 5
    n_boot: int = 50

    min_events: int = 5
    divergence_threshold: float = 0.05

    def __post_init__(self):
        if isinstance(self.compare_models, list):
            self.compare_models = tuple(self.compare_models)
        if isinstance(self.external_models, list):
            self.external_models = tuple(self.external_models)
        if self.validation_method not in ("cv", "repeated_cv", "bootstrap"):
            raise ValueError(
                f"validation_method must be 'cv', 'repeated_cv' or 'bootstrap', "
                f"got {self.validation_method!r}"
            )


# ============================================================================
# Master Configuration
# ============================================================================

@dataclass
class PipelineConfig:
    """Master configuration for one analysis run.

    Serialized next to the outputs so a rerun with the same file reproduces
    the same split, folds and fits.

    Attributes:
        fitter: Penalized Cox fitter configuration
        data: Data loading configuration
        analysis: Split and validation configuration
        execution: Execution mode and parallelization configuration
        output_dir: Root directory for artifacts and logs
        tracking: Whether to log the run to MLflow
        description: Optional description of this configuration

    Example:
        >>> config = PipelineConfig()
        >>> config.save("data/outputs/config.json")
        >>> loaded = PipelineConfig.load("data/outputs/config.json")
    """
    fitter: FitterConfig = field(default_factory=FitterConfig)
    data: DataConfig = field(default_factory=DataConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)

    output_dir: str = "data/outputs"
    tracking: bool = True
    description: str = ""

    def to_dict(self) -> dict:
        """Convert configuration to a JSON-serializable dictionary."""
        def _dataclass_to_dict(obj):
            if hasattr(obj, '__dataclass_fields__'):
                return {
                    k: _dataclass_to_dict(v)
                    for k, v in obj.__dict__.items()
                }
            elif isinstance(obj, Enum):
                return obj.value
            elif isinstance(obj, tuple):
                return list(obj)
            else:
                return obj

        return _dataclass_to_dict(self)

    def save(self, path: str) -> None:
        """Save configuration to JSON file.

        Args:
            path: Path to output JSON file
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "PipelineConfig":
        """Load configuration from JSON file.

        Args:
            path: Path to input JSON file

        Returns:
            PipelineConfig instance
        """
        with open(path) as f:
            data = json.load(f)

        return cls(
            fitter=FitterConfig(**data.get('fitter', {})),
            data=DataConfig(**data.get('data', {})),
            analysis=AnalysisConfig(**data.get('analysis', {})),
            execution=ExecutionConfig(**data.get('execution', {})),
            output_dir=data.get('output_dir', "data/outputs"),
            tracking=data.get('tracking', True),
            description=data.get('description', '')
        )
