"""Main entry point for the burn survival analysis.

Fits lasso, adaptive lasso, adaptive elastic net and MCP Cox models to one
endpoint of the burn dataset and validates them internally and on a
holdout split. All settings come from a JSON config, CLI flags or both
(flags win).

Can be used as CLI or imported as a function.
"""
import argparse
import logging
import os
from typing import Optional

from burn_survival.config import PipelineConfig, create_execution_config
from burn_survival.data import ENDPOINTS
from burn_survival.exceptions import DataUnavailable, DegenerateSplit
from burn_survival.logging_config import setup_logging
from burn_survival.pipeline import run_analysis


def run_pipeline(config: Optional[PipelineConfig] = None, log_level: int = logging.INFO) -> int:
    """Run the analysis and translate fatal errors into an exit code.

    Args:
        config: Pipeline configuration. Default: PipelineConfig()
        log_level: Console log level

    Returns:
        Exit code (0 for success, 1 when the data cannot be loaded or the
        split is degenerate)

    Example:
        >>> from main import run_pipeline
        >>> run_pipeline(PipelineConfig(output_dir="data/outputs/excision", tracking=False))
        0
    """
    config = config or PipelineConfig()
    logger = setup_logging(config.output_dir, log_level=log_level)

    logger.info("=" * 70)
    logger.info(f"BURN SURVIVAL ANALYSIS - {config.data.endpoint.upper()}")
    logger.info("=" * 70)
    logger.info(f"Input file: {os.path.abspath(config.data.input_file)}")
    logger.info(f"Output dir: {os.path.abspath(config.output_dir)}")
    logger.info(
        f"Seeds:      split={config.analysis.split_seed}, cv={config.fitter.cv_seed}, "
        f"init={config.fitter.init_seed}, validation={config.analysis.validation_seed}"
    )

    try:
        result = run_analysis(config, logger=logging.getLogger("burn_survival.pipeline"))
    except DataUnavailable as e:
        logger.error(f"Data unavailable: {e}")
        return 1
    except DegenerateSplit as e:
        logger.error(f"Degenerate split: {e}")
        return 1

    for model_type, state in result.status.items():
        logger.info(f"{model_type:>6}: {state}, {result.models[model_type].n_nonzero} covariates selected")
    logger.info("=" * 70)
    logger.info("ANALYSIS COMPLETED SUCCESSFULLY")
    logger.info("=" * 70)
    return 0


def build_config(args: argparse.Namespace) -> PipelineConfig:
    """Merge a JSON config file (if any) with explicitly passed CLI flags."""
    config = PipelineConfig.load(args.config) if args.config else PipelineConfig()

    overrides = {
        (config.data, "input_file"): args.input,
        (config.data, "endpoint"): args.endpoint,
        (config.analysis, "split_fraction"): args.split_fraction,
        (config.analysis, "split_seed"): args.split_seed,
        (config.analysis, "horizon_max"): args.horizon_max,
        (config.analysis, "validation_method"): args.validation_method,
        (config.fitter, "cv_seed"): args.cv_seed,
        (config.fitter, "init_seed"): args.init_seed,
        (config, "output_dir"): args.output_dir,
    }
    for (section, name), value in overrides.items():
        if value is not None:
            setattr(section, name, value)

    if args.execution_mode is not None:
        config.execution = create_execution_config(mode=args.execution_mode, n_jobs=args.n_jobs)
    if args.no_tracking:
        config.tracking = False
    return config


def main():
    """Main execution function with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Burn survival analysis - penalized Cox models with internal and external validation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default run: excision endpoint, 90/10 split with seed 42
  python src/main.py --input data/inputs/burn.csv

  # Another endpoint and split seed, without MLflow tracking
  python src/main.py --endpoint infection --split-seed 7 --no-tracking

  # Repeated cross-validation with resamples on 4 cores
  python src/main.py --validation-method repeated_cv --execution-mode mp --n-jobs 4

  # Reproduce a previous run from its saved configuration
  python src/main.py --config data/outputs/config.json --output-dir data/outputs/rerun
        """
    )

    parser.add_argument("--input", type=str, default=None,
                        help="Path to the burn dataset (CSV or pickle). Default: data/inputs/burn.csv")
    parser.add_argument("--output-dir", type=str, default=None,
                        help="Directory for artifacts, logs and config.json. Default: data/outputs")
    parser.add_argument("--config", type=str, default=None,
                        help="JSON configuration file (as written to config.json by a previous run)")
    parser.add_argument("--endpoint", type=str, choices=sorted(ENDPOINTS), default=None,
                        help="Endpoint to model. Default: excision")
    parser.add_argument("--split-fraction", type=float, default=None,
                        help="Share of patients in the training split. Default: 0.9")
    parser.add_argument("--split-seed", type=int, default=None,
                        help="Seed of the train/holdout split. Default: 42")
    parser.add_argument("--cv-seed", type=int, default=None,
                        help="Seed of the cross-validation folds used to select alpha. Default: 11")
    parser.add_argument("--init-seed", type=int, default=None,
                        help="Seed of the folds of the adaptive-weight pre-estimation. Default: 5")
    parser.add_argument("--horizon-max", type=float, default=None,
                        help="Last evaluation horizon in days; horizons are its quarters. Default: 30")
    parser.add_argument("--validation-method", type=str, choices=["cv", "repeated_cv", "bootstrap"],
                        default=None, help="Internal validation scheme. Default: cv")
    parser.add_argument("--execution-mode", type=str, choices=["pandas", "mp"], default=None,
                        help="'pandas' (sequential) or 'mp' (joblib parallel resamples). Default: pandas")
    parser.add_argument("--n-jobs", type=int, default=-1,
                        help="Parallel jobs for --execution-mode mp. -1 means use all cores. Default: -1")
    parser.add_argument("--no-tracking", action="store_true",
                        help="Disable MLflow tracking")
    parser.add_argument("--log-level", type=str, default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Console log level. Default: INFO")

    args = parser.parse_args()
    try:
        config = build_config(args)
    except (OSError, ValueError, TypeError) as e:
        parser.error(f"invalid configuration: {e}")

    return run_pipeline(config, log_level=getattr(logging, args.log_level))


if __name__ == "__main__":
    exit(main())
