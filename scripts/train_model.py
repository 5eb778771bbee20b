"""Command-line interface for training a CTR model.

Example:
    Train a model with default settings:
        $ python scripts/train_model.py data/documents.txt data/user_rating.txt

    Train with custom parameters:
        $ python scripts/train_model.py data/documents.txt data/ratings.csv \\
            --output-dir models/production \\
            --topic-num 50 \\
            --pretrain-lda
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ctrec.logging_config import setup_logging
from ctrec.recommender.hyperparams import (
    DEFAULT_A,
    DEFAULT_B,
    DEFAULT_LAMBDA_U,
    DEFAULT_LAMBDA_V,
)
from ctrec.recommender.train import (
    DEFAULT_MAX_ITER,
    DEFAULT_MIN_ITER,
    DEFAULT_RANDOM_STATE,
    DEFAULT_TOPIC_NUM,
    TrainingConfig,
    train_ctr_model,
)


def add_model_arguments(parser: argparse.ArgumentParser) -> None:
    """Arguments shared by the training and cross-validation scripts."""
    parser.add_argument("documents_path", type=str, help="Pre-tokenized documents, one per item")
    parser.add_argument(
        "ratings_path",
        type=str,
        help="User rating file (line u lists item ids) or CSV with user_id, item_id",
    )
    parser.add_argument(
        "--topic-num",
        type=int,
        default=DEFAULT_TOPIC_NUM,
        help=f"Number of topics / latent dimensions (default: {DEFAULT_TOPIC_NUM})",
    )
    parser.add_argument(
        "--fixed-theta",
        action="store_true",
        help="Do not optimize topic mixtures (plain matrix factorization)",
    )
    parser.add_argument("--a", type=float, default=DEFAULT_A, help=f"Confidence of observed ratings (default: {DEFAULT_A})")
    parser.add_argument("--b", type=float, default=DEFAULT_B, help=f"Confidence of unobserved ratings (default: {DEFAULT_B})")
    parser.add_argument("--lambda-u", type=float, default=DEFAULT_LAMBDA_U, help=f"User regularization (default: {DEFAULT_LAMBDA_U})")
    parser.add_argument("--lambda-v", type=float, default=DEFAULT_LAMBDA_V, help=f"Item-topic tie strength (default: {DEFAULT_LAMBDA_V})")
    parser.add_argument("--max-iter", type=int, default=DEFAULT_MAX_ITER, help=f"Maximum iterations (default: {DEFAULT_MAX_ITER})")
    parser.add_argument("--min-iter", type=int, default=DEFAULT_MIN_ITER, help=f"Minimum iterations (default: {DEFAULT_MIN_ITER})")
    parser.add_argument("--pretrain-lda", action="store_true", help="Seed theta and beta with an LDA fit")
    parser.add_argument(
        "--random-state",
        type=int,
        default=DEFAULT_RANDOM_STATE,
        help=f"Random seed for reproducibility (default: {DEFAULT_RANDOM_STATE})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging (DEBUG level)")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")


def config_from_args(args: argparse.Namespace, output_dir: str) -> TrainingConfig:
    return TrainingConfig(
        documents_path=args.documents_path,
        ratings_path=args.ratings_path,
        output_dir=output_dir,
        topic_num=args.topic_num,
        optimize_theta=not args.fixed_theta,
        a=args.a,
        b=args.b,
        lambda_u=args.lambda_u,
        lambda_v=args.lambda_v,
        max_iter=args.max_iter,
        min_iter=args.min_iter,
        pretrain_lda=args.pretrain_lda,
        random_state=args.random_state,
    )


def parse_arguments() -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Namespace object containing parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Train a Collaborative Topic Regression model.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_model_arguments(parser)
    parser.add_argument(
        "--output-dir",
        type=str,
        default="models",
        help="Directory where parameters and the model bundle are saved (default: models)",
    )
    return parser.parse_args()


def main() -> int:
    """Main entry point for the training script.

    Returns:
        Exit code: 0 on success, 1 on error.
    """
    try:
        args = parse_arguments()
        setup_logging("DEBUG" if args.verbose else "INFO", json_format=args.json_logs)
        logger = logging.getLogger(__name__)

        config = config_from_args(args, args.output_dir)
        logger.info(f"Training configuration: {config}")

        model = train_ctr_model(config)

        logger.info("=" * 70)
        logger.info("Training Summary")
        logger.info("=" * 70)
        logger.info(f"Users:  {model.n_users}")
        logger.info(f"Items:  {model.n_items}")
        logger.info(f"Topics: {model.n_topics}")
        logger.info(f"State:  {model.state.value}")
        logger.info(f"Model saved to: {Path(args.output_dir).absolute()}")
        logger.info("=" * 70)
        return 0

    except FileNotFoundError as e:
        logging.error(f"File error: {e}")
        return 1
    except ValueError as e:
        logging.error(f"Validation error: {e}")
        return 1
    except KeyboardInterrupt:
        logging.warning("Training interrupted by user")
        return 130
    except Exception as e:
        logging.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
