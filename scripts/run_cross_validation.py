"""Command-line interface for cross-validating a CTR model.

Writes one ``<metric>@<cutoff>.txt`` file per metric and cutoff (10, 50, 100
and all) holding one value per fold, plus a ``summary.csv`` table.

Example:
    $ python scripts/run_cross_validation.py data/documents.txt data/user_rating.txt \\
        --num-folds 5 --output-dir validation --n-jobs 4
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ctrec.logging_config import setup_logging
from ctrec.recommender.data import load_documents
from ctrec.recommender.train import build_hyperparameter, load_ratings
from ctrec.validation.cross_validation import CrossValidation

from train_model import add_model_arguments, config_from_args

DEFAULT_NUM_FOLDS = 5


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cross-validate a Collaborative Topic Regression model.")
    add_model_arguments(parser)
    parser.add_argument(
        "--num-folds",
        type=int,
        default=DEFAULT_NUM_FOLDS,
        help=f"Number of folds (default: {DEFAULT_NUM_FOLDS})",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="validation",
        help="Directory for iteration logs and metric files (default: validation)",
    )
    parser.add_argument("--by-item", action="store_true", help="Rank users for items instead of items for users")
    parser.add_argument("--save-parameters", action="store_true", help="Save every fold's trained matrices")
    parser.add_argument("--n-jobs", type=int, default=1, help="Folds trained in parallel (default: 1)")
    return parser.parse_args()


def main() -> int:
    """Main entry point for the cross-validation script.

    Returns:
        Exit code: 0 on success, 1 on error.
    """
    try:
        args = parse_arguments()
        setup_logging("DEBUG" if args.verbose else "INFO", json_format=args.json_logs)
        logger = logging.getLogger(__name__)

        config = config_from_args(args, args.output_dir)
        docs = load_documents(config.documents_path, working_dir=config.output_dir)
        ratings = load_ratings(config, docs)

        hparam = build_hyperparameter(config, docs)

        validation = CrossValidation(
            args.num_folds,
            hparam,
            docs,
            ratings,
            max_iter=config.max_iter,
            min_iter=config.min_iter,
            out_dir=config.output_dir,
            for_user=not args.by_item,
            save_parameters=args.save_parameters,
            n_jobs=args.n_jobs,
            random_state=config.random_state,
        )
        results = validation.run_all()

        summary = validation.summary(results)
        summary_path = Path(config.output_dir) / "summary.csv"
        summary.to_csv(summary_path)

        logger.info("=" * 70)
        logger.info("Cross-Validation Summary (mean over folds)")
        logger.info("=" * 70)
        for label, value in summary.loc["mean"].items():
            logger.info(f"{label:<28} {value:.4f}")
        logger.info(f"Results saved to: {Path(config.output_dir).absolute()}")
        return 0

    except FileNotFoundError as e:
        logging.error(f"File error: {e}")
        return 1
    except ValueError as e:
        logging.error(f"Validation error: {e}")
        return 1
    except KeyboardInterrupt:
        logging.warning("Cross-validation interrupted by user")
        return 130
    except Exception as e:
        logging.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
