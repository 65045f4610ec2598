"""
Main pipeline orchestration for box-office revenue modelling.

This module coordinates all processing steps: loading → feature engineering →
cleaning → splitting → tuning → evaluation.
Provides progress tracking, resumable tuning, and a command-line interface.
"""

import argparse
import hashlib
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import psutil
import yaml

from .acquisition import DatasetLoader, frame_fingerprint
from .evaluation import ModelEvaluator
from .feature_utils import FeatureNameMapper, get_feature_names
from .preprocessing import FeatureEngineer
from .schema import CLEANED_COLUMNS, EvaluationReport, ModelType, TuningResult, ValidationResult
from .splitting import Fold, TrainTestSplit, create_folds, create_train_test_split
from .training import ModelTrainer
from .validation import DataValidator


logger = logging.getLogger(__name__)


class PipelineConfig:
    """Configuration manager for the revenue pipeline."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration from file or defaults."""
        self.config_path = config_path or "configs/pipeline_config.yaml"
        self.config = self._load_config()
        self._validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f) or {}

        except FileNotFoundError:
            logger.warning(f"Config file not found: {self.config_path}, using defaults")
            config = self._get_default_config()
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing config file: {e}")

        return self._apply_env_overrides(config)

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            "data_sources": {
                "movies": {"path": "data/raw/imdb_movies.csv"},
                "oscars": {"path": "data/raw/the_oscar_award.csv", "winners_only": True},
            },
            "output": {
                "cleaned_path": "data/processed/movies_cleaned.csv",
                "models_dir": "models",
                "reports_dir": "data/reports",
            },
            "quality_thresholds": {"max_missing_fraction": 0.05, "min_records": 10},
            "splitting": {"test_size": 0.2, "n_strata": 4, "random_state": 42},
            "cross_validation": {"n_folds": 10, "random_state": 42},
            "models": {
                "families": ["linear_regression", "knn", "random_forest"],
                "knn": {
                    "n_neighbors": {"min": 1, "max": 10, "levels": 10},
                    "selection": "one_std_err",
                    "prefer": "fewest",
                },
                "random_forest": {
                    "max_features": {"min": 1, "max": 8},
                    "n_estimators": {"min": 200, "max": 600},
                    "min_samples_leaf": {"min": 10, "max": 20},
                    "levels": 6,
                    "random_state": 42,
                },
            },
            "logging": {"level": "INFO", "file": "data/logs/pipeline.log"},
            "performance": {"n_jobs": 1, "show_progress": True},
        }

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        sources = config.setdefault("data_sources", {})

        if "BOXOFFICE_MOVIES_PATH" in os.environ:
            sources.setdefault("movies", {})["path"] = os.environ["BOXOFFICE_MOVIES_PATH"]

        if "BOXOFFICE_OSCARS_PATH" in os.environ:
            sources.setdefault("oscars", {})["path"] = os.environ["BOXOFFICE_OSCARS_PATH"]

        # Redirect every generated artifact under one directory
        if "BOXOFFICE_OUTPUT_DIR" in os.environ:
            output_dir = os.environ["BOXOFFICE_OUTPUT_DIR"]
            output = config.setdefault("output", {})
            output["cleaned_path"] = f"{output_dir}/processed/movies_cleaned.csv"
            output["models_dir"] = f"{output_dir}/models"
            output["reports_dir"] = f"{output_dir}/reports"
            config.setdefault("logging", {})["file"] = f"{output_dir}/logs/pipeline.log"

        if "BOXOFFICE_N_JOBS" in os.environ:
            config.setdefault("performance", {})["n_jobs"] = int(os.environ["BOXOFFICE_N_JOBS"])

        return config

    def _validate_config(self) -> None:
        """Validate configuration values."""
        required_keys = ["data_sources", "splitting", "cross_validation"]
        for key in required_keys:
            if key not in self.config:
                raise ValueError(f"Missing required config section: {key}")

        test_size = self.config["splitting"].get("test_size", 0.2)
        if not 0 < test_size < 1:
            raise ValueError("test_size must be between 0 and 1")

        if self.config["cross_validation"].get("n_folds", 10) < 2:
            raise ValueError("n_folds must be at least 2")

        max_missing = self.config.get("quality_thresholds", {}).get("max_missing_fraction", 0.05)
        if not 0 <= max_missing <= 1:
            raise ValueError("max_missing_fraction must be between 0 and 1")

        models = self.config.get("models", {})
        for name in models.get("families", []):
            ModelType(name)

        knn = models.get("knn", {})
        if knn.get("prefer", "fewest") not in ("fewest", "most"):
            raise ValueError("knn.prefer must be 'fewest' or 'most'")

        ranges = [knn.get("n_neighbors", {})]
        forest = models.get("random_forest", {})
        ranges += [forest.get(name, {}) for name in ("max_features", "n_estimators", "min_samples_leaf")]
        for bounds in ranges:
            if bounds.get("min", 0) > bounds.get("max", float("inf")):
                raise ValueError(f"Grid range min exceeds max: {bounds}")
            if bounds.get("levels", 1) < 1:
                raise ValueError(f"Grid range needs at least one level: {bounds}")
        if forest.get("levels", 6) < 1:
            raise ValueError("random_forest.levels must be at least 1")


class PipelineState:
    """Tracks pipeline execution state and progress."""

    def __init__(self):
        """Initialize pipeline state."""
        self.start_time = None
        self.end_time = None
        self.current_step = "initialized"
        self.steps_completed = []
        self.total_records = 0
        self.clean_records = 0
        self.memory_usage = {}
        self.error_log = []

    def start_step(self, step_name: str) -> None:
        """Start a pipeline step."""
        self.current_step = step_name
        logger.info(f"Starting step: {step_name}")

    def complete_step(self, step_name: str, result: Any = None) -> None:
        """Mark step as completed."""
        self.steps_completed.append(
            {
                "name": step_name,
                "completed_at": datetime.now().isoformat(),
                "result_summary": self._summarize_result(result),
            }
        )
        logger.info(f"Completed step: {step_name}")

    def _summarize_result(self, result: Any) -> str:
        """Create summary of step result."""
        if isinstance(result, ValidationResult):
            return f"Valid: {result.is_valid}, Errors: {result.error_count}, Warnings: {result.warning_count}"
        elif isinstance(result, pd.DataFrame):
            return f"Rows: {len(result)}"
        elif isinstance(result, TrainTestSplit):
            return f"Train: {result.info.train_size}, Test: {result.info.test_size}"
        elif isinstance(result, EvaluationReport):
            return f"Winner: {result.winner.value}, Test RMSE: {result.test_rmse:,.2f}"
        elif isinstance(result, dict):
            return f"Keys: {[getattr(k, 'value', k) for k in result.keys()]}"
        else:
            return str(type(result).__name__)

    def add_error(self, error: Exception, step: str) -> None:
        """Add error to log."""
        self.error_log.append(
            {"step": step, "error": str(error), "timestamp": datetime.now().isoformat()}
        )

    def update_memory_usage(self) -> None:
        """Update current memory usage."""
        process = psutil.Process()
        self.memory_usage[datetime.now().isoformat()] = {
            "memory_mb": process.memory_info().rss / 1024 / 1024,
            "memory_percent": process.memory_percent(),
        }

    def get_summary(self) -> Dict[str, Any]:
        """Get pipeline execution summary."""
        duration = None
        if self.start_time and self.end_time:
            duration = (self.end_time - self.start_time).total_seconds()

        return {
            "execution_time_seconds": duration,
            "steps_completed": len(self.steps_completed),
            "total_records": self.total_records,
            "clean_records": self.clean_records,
            "retention_rate": (
                self.clean_records / self.total_records if self.total_records > 0 else 0
            ),
            "memory_peak_mb": (
                max([m["memory_mb"] for m in self.memory_usage.values()])
                if self.memory_usage
                else 0
            ),
            "errors": len(self.error_log),
            "current_step": self.current_step,
        }


class BoxOfficePipeline:
    """Main revenue pipeline orchestrator."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize pipeline."""
        self.config = PipelineConfig(config_path)
        self.state = PipelineState()

        # Initialize components
        self.loader = DatasetLoader(self.config.config)
        self.feature_engineer = FeatureEngineer(self.config.config)
        self.validator = DataValidator(self.config.config)
        self.trainer = ModelTrainer(self.config.config)
        self.evaluator = ModelEvaluator(self.trainer)

        output = self.config.config.get("output", {})
        self.cleaned_path = Path(output.get("cleaned_path", "data/processed/movies_cleaned.csv"))
        self.reports_dir = Path(output.get("reports_dir", "data/reports"))

        # Setup logging
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Setup pipeline logging."""
        log_config = self.config.config.get("logging", {})

        # Create log directory
        log_file = Path(log_config.get("file", "data/logs/pipeline.log"))
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # Configure logging
        logging.basicConfig(
            level=getattr(logging, log_config.get("level", "INFO")),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=[logging.FileHandler(log_file), logging.StreamHandler()],
        )

    def run_full_pipeline(
        self,
        force_retrain: bool = False,
        skip_cleaning: bool = False,
        stop_after: str = "evaluate",
    ) -> Dict[str, Any]:
        """
        Run the pipeline up to and including stop_after.

        Args:
            force_retrain: Ignore persisted tuning results
            skip_cleaning: Reuse the existing cleaned CSV instead of rebuilding it
            stop_after: Last step to run ('clean', 'tune' or 'evaluate')

        Returns:
            Dictionary with pipeline results and metadata
        """
        logger.info("Starting box-office pipeline")
        self.state.start_time = datetime.now()

        try:
            results: Dict[str, Any] = {"status": "success"}

            # Step 1: Load, engineer and clean
            if skip_cleaning:
                cleaned = self._load_existing_cleaned()
            else:
                cleaned, completeness = self._run_cleaning_step()
                results["completeness"] = completeness.summary
            results["cleaned_path"] = str(self.cleaned_path)

            if stop_after != "clean":
                # Step 2: Split
                split, folds = self._run_split_step(cleaned)
                results["split_info"] = split.info.model_dump()

                # Step 3: Tune
                tunings = self._run_tuning_step(split, folds, force_retrain)
                results["tuning"] = {m.value: t.best.model_dump(mode="json") for m, t in tunings.items()}

                if stop_after == "evaluate":
                    # Step 4: Evaluate
                    evaluation = self._run_evaluation_step(tunings, split)
                    results["evaluation"] = evaluation.model_dump(mode="json")
                    self._generate_pipeline_report(split, tunings, evaluation)

            self.state.end_time = datetime.now()
            self.state.current_step = "completed"
            results["summary"] = self.state.get_summary()

            logger.info("Pipeline completed successfully")
            return results

        except Exception as e:
            self.state.add_error(e, self.state.current_step)
            self.state.end_time = datetime.now()
            self.state.current_step = "failed"

            logger.error(f"Pipeline failed: {e}")

            return {
                "status": "failed",
                "error": str(e),
                "summary": self.state.get_summary(),
            }

    def _run_cleaning_step(self) -> Tuple[pd.DataFrame, ValidationResult]:
        """Load both inputs, derive features and drop incomplete records."""
        self.state.start_step("cleaning")
        self.state.update_memory_usage()

        try:
            movies = self.loader.load_movies()
            winners = self.loader.load_oscar_winners()
            self.state.total_records = len(movies)

            features = self.feature_engineer.build_features(movies, winners)
            completeness = self.validator.check_completeness(features)

            cleaned = self.feature_engineer.drop_incomplete(features)
            self.state.clean_records = len(cleaned)

            schema_result, _ = self.validator.validate_records(cleaned)
            if not schema_result.is_valid:
                raise ValueError(
                    f"{schema_result.error_count} cleaned records violate the record schema"
                )

            self.feature_engineer.export_cleaned(cleaned, str(self.cleaned_path))
            self.state.complete_step("cleaning", completeness)

            return cleaned, completeness

        except Exception as e:
            logger.error(f"Cleaning failed: {e}")
            raise

    def _load_existing_cleaned(self) -> pd.DataFrame:
        """Load a previously exported cleaned table."""
        if not self.cleaned_path.exists():
            raise FileNotFoundError(
                f"No cleaned data at {self.cleaned_path}. Run pipeline without --skip-cleaning."
            )

        logger.info(f"Loading existing cleaned data from: {self.cleaned_path}")
        cleaned = self.feature_engineer.load_cleaned(str(self.cleaned_path))
        self.state.total_records = self.state.clean_records = len(cleaned)
        return cleaned

    def _run_split_step(self, cleaned: pd.DataFrame) -> Tuple[TrainTestSplit, List[Fold]]:
        """Partition into train/test and build the shared folds."""
        self.state.start_step("splitting")

        try:
            splitting = self.config.config["splitting"]
            cv = self.config.config["cross_validation"]

            split = create_train_test_split(
                cleaned,
                test_size=splitting.get("test_size", 0.2),
                n_strata=splitting.get("n_strata", 4),
                random_state=splitting.get("random_state", 42),
            )
            folds = create_folds(
                split.train,
                n_folds=cv.get("n_folds", 10),
                n_strata=splitting.get("n_strata", 4),
                random_state=cv.get("random_state", 42),
            )

            self.state.complete_step("splitting", split)
            return split, folds

        except Exception as e:
            logger.error(f"Splitting failed: {e}")
            raise

    def _run_tuning_step(
        self, split: TrainTestSplit, folds: List[Fold], force_retrain: bool
    ) -> Dict[ModelType, TuningResult]:
        """Tune every model family, reusing persisted results where valid."""
        self.state.start_step("tuning")
        self.state.update_memory_usage()

        try:
            fingerprint = self._training_fingerprint(split)
            tunings = self.trainer.tune_all(split.train, folds, force=force_retrain, fingerprint=fingerprint)

            self.state.update_memory_usage()
            self.state.complete_step("tuning", tunings)
            return tunings

        except Exception as e:
            logger.error(f"Tuning failed: {e}")
            raise

    def _run_evaluation_step(
        self, tunings: Dict[ModelType, TuningResult], split: TrainTestSplit
    ) -> EvaluationReport:
        """Refit the winner on the training partition and score it on the test partition."""
        self.state.start_step("evaluation")

        try:
            model_path = self.trainer.models_dir / "final_model.joblib"
            evaluation = self.evaluator.evaluate(tunings, split, model_path=str(model_path))

            self.state.complete_step("evaluation", evaluation)
            return evaluation

        except Exception as e:
            logger.error(f"Evaluation failed: {e}")
            raise

    def _training_fingerprint(self, split: TrainTestSplit) -> str:
        """Identify the training data and fold layout that tuning results depend on."""
        cv = self.config.config["cross_validation"]
        splitting = self.config.config["splitting"]
        parts = [
            frame_fingerprint(split.train, CLEANED_COLUMNS),
            str(cv.get("n_folds", 10)),
            str(cv.get("random_state", 42)),
            str(splitting.get("n_strata", 4)),
        ]
        return hashlib.sha256(":".join(parts).encode()).hexdigest()

    def _generate_pipeline_report(
        self,
        split: TrainTestSplit,
        tunings: Dict[ModelType, TuningResult],
        evaluation: EvaluationReport,
    ) -> None:
        """Generate final pipeline report."""
        report_path = self.reports_dir / "pipeline_report.json"
        report_path.parent.mkdir(parents=True, exist_ok=True)

        feature_names: List[str] = []
        if self.evaluator.final_model is not None:
            feature_names = get_feature_names(self.evaluator.final_model.named_steps["preprocess"])

        report = {
            "pipeline_execution": self.state.get_summary(),
            "configuration": self.config.config,
            "inputs": self.loader.get_dataset_info(),
            "split": split.info.model_dump(),
            "tuning": {
                model_type.value: {
                    "configurations": len(tuning.results),
                    "invalid_configurations": len([r for r in tuning.results if not r.is_valid]),
                    "selection_rule": tuning.selection_rule,
                    "best": tuning.best.model_dump(mode="json"),
                }
                for model_type, tuning in tunings.items()
            },
            "evaluation": evaluation.model_dump(mode="json"),
            "features": {
                "total_features": len(feature_names),
                "feature_categories": FeatureNameMapper().count_features(feature_names),
            },
            "generated_at": datetime.now().isoformat(),
            "version": "1.0",
        }

        with open(report_path, "w") as f:
            json.dump(report, f, indent=2)

        logger.info(f"Pipeline report generated: {report_path}")


def create_cli() -> argparse.ArgumentParser:
    """Create command-line interface."""
    parser = argparse.ArgumentParser(
        description="Box-office revenue pipeline - clean, tune and evaluate revenue models"
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="configs/pipeline_config.yaml",
        help="Configuration file path",
    )

    parser.add_argument(
        "--step",
        choices=["all", "clean", "tune", "evaluate"],
        default="all",
        help="Last pipeline step to run",
    )

    parser.add_argument("--movies", type=str, help="Override movie CSV path")

    parser.add_argument("--oscars", type=str, help="Override Oscars CSV path")

    parser.add_argument("--output-dir", type=str, help="Override output directory")

    parser.add_argument(
        "--force-retrain", action="store_true", help="Ignore persisted tuning results"
    )

    parser.add_argument(
        "--skip-cleaning", action="store_true", help="Reuse the existing cleaned CSV"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without executing",
    )

    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    return parser


def main():
    """Main CLI entry point."""
    parser = create_cli()
    args = parser.parse_args()

    # Set environment overrides
    if args.movies:
        os.environ["BOXOFFICE_MOVIES_PATH"] = args.movies
    if args.oscars:
        os.environ["BOXOFFICE_OSCARS_PATH"] = args.oscars
    if args.output_dir:
        os.environ["BOXOFFICE_OUTPUT_DIR"] = args.output_dir

    stop_after = "evaluate" if args.step == "all" else args.step

    try:
        # Initialize pipeline
        pipeline = BoxOfficePipeline(args.config)

        if args.verbose:
            logging.getLogger().setLevel(logging.DEBUG)

        if args.dry_run:
            print("Dry run - would execute the following steps:")
            print(f"1. Load, engineer and clean (skip={args.skip_cleaning})")
            if stop_after != "clean":
                print("2. Stratified train/test split and folds")
                print(f"3. Tune {[m.value for m in pipeline.trainer.families]} (force={args.force_retrain})")
            if stop_after == "evaluate":
                print("4. Refit winner and evaluate on test partition")
            return

        results = pipeline.run_full_pipeline(
            force_retrain=args.force_retrain,
            skip_cleaning=args.skip_cleaning,
            stop_after=stop_after,
        )

        # Print results
        if results["status"] == "success":
            print("\n🎉 Pipeline completed successfully!")
            summary = results["summary"]
            print(
                f"📊 Processed {summary['total_records']} movies ({summary['clean_records']} clean)"
            )
            print(f"⏱️  Execution time: {summary['execution_time_seconds']:.1f} seconds")
            print(f"💾 Memory peak: {summary['memory_peak_mb']:.1f} MB")

            if "evaluation" in results:
                evaluation = results["evaluation"]
                print(f"🏆 Winner: {evaluation['winner']} {evaluation['winner_params']}")
                print(f"🎯 CV RMSE: {evaluation['cv_rmse']:,.0f}")
                print(f"🎯 Test RMSE: {evaluation['test_rmse']:,.0f}, R²: {evaluation['test_r2']:.4f}")

            if args.verbose:
                print("\n📋 Detailed Results:")
                print(json.dumps(results["summary"], indent=2))
        else:
            print(f"\n❌ Pipeline failed: {results['error']}")
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n⏹️  Pipeline interrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"\n💥 Pipeline error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
