"""CTR model training pipeline.

This module ties the pieces together: it loads item documents and ratings,
optionally seeds the topic state with an LDA fit, trains a CTR model and saves
its parameters both as plain-text matrices and as a joblib bundle.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from ctrec.recommender.ctr import CTR, DEFAULT_RANDOM_STATE
from ctrec.recommender.data import (
    DocumentSet,
    RatingMatrix,
    load_documents,
    load_ratings_csv,
    load_user_rating_file,
)
from ctrec.recommender.hyperparams import (
    DEFAULT_A,
    DEFAULT_B,
    DEFAULT_LAMBDA_U,
    DEFAULT_LAMBDA_V,
    CtrHyperparameter,
)
from ctrec.recommender.topics import DEFAULT_LDA_MAX_ITER, pretrain_topics
from ctrec.recommender.utils import save_model_artifacts

# Configure module logger
logger = logging.getLogger(__name__)

# Training configuration constants
DEFAULT_TOPIC_NUM = 30
DEFAULT_MAX_ITER = 100
DEFAULT_MIN_ITER = 2


@dataclass
class TrainingConfig:
    """Settings of one training run.

    Attributes:
        documents_path: Pre-tokenized documents, line i for item i.
        ratings_path: Either a user rating file (line u lists the item ids of
            user u) or, when it ends in ``.csv``, a CSV of interactions whose
            item ids are document line numbers.
        output_dir: Where parameters, iteration log and bundle are written.
    """

    documents_path: str
    ratings_path: str
    output_dir: str = "models"
    topic_num: int = DEFAULT_TOPIC_NUM
    optimize_theta: bool = True
    enable_cache: bool = False
    a: float = DEFAULT_A
    b: float = DEFAULT_B
    lambda_u: float = DEFAULT_LAMBDA_U
    lambda_v: float = DEFAULT_LAMBDA_V
    max_iter: int = DEFAULT_MAX_ITER
    min_iter: int = DEFAULT_MIN_ITER
    pretrain_lda: bool = False
    lda_max_iter: int = DEFAULT_LDA_MAX_ITER
    user_col: str = "user_id"
    item_col: str = "item_id"
    random_state: int = DEFAULT_RANDOM_STATE

    def build_hyperparameter(self) -> CtrHyperparameter:
        return CtrHyperparameter(
            topic_num=self.topic_num,
            optimize_theta=self.optimize_theta,
            enable_cache=self.enable_cache,
            a=self.a,
            b=self.b,
            lambda_u=self.lambda_u,
            lambda_v=self.lambda_v,
        )


def load_ratings(config: TrainingConfig, docs: DocumentSet) -> RatingMatrix:
    """Load the configured ratings aligned with the documents."""
    if Path(config.ratings_path).suffix.lower() == ".csv":
        ratings, _, _ = load_ratings_csv(
            config.ratings_path,
            user_col=config.user_col,
            item_col=config.item_col,
            n_items=docs.n_docs,
        )
        return ratings
    return load_user_rating_file(config.ratings_path, n_items=docs.n_docs)


def build_hyperparameter(config: TrainingConfig, docs: DocumentSet) -> CtrHyperparameter:
    """Hyperparameters of the run, seeded with LDA topics if configured."""
    hparam = config.build_hyperparameter()
    if config.pretrain_lda:
        theta, beta = pretrain_topics(
            docs,
            config.topic_num,
            max_iter=config.lda_max_iter,
            random_state=config.random_state,
        )
        hparam = hparam.with_theta(theta).with_beta(beta)
    return hparam


def build_model(
    config: TrainingConfig,
    docs: DocumentSet,
    ratings: RatingMatrix,
    model_id: int = -1,
) -> CTR:
    """Construct an untrained model."""
    hparam = build_hyperparameter(config, docs)
    return CTR(hparam, docs, ratings, model_id=model_id, random_state=config.random_state)


def train_ctr_model(config: TrainingConfig) -> CTR:
    """Train a CTR model from files and save its parameters.

    This is the main entry point for training. It orchestrates the complete
    pipeline: loading documents and ratings, optional LDA pre-training,
    training and saving artifacts.

    Args:
        config: Training settings.

    Returns:
        The trained model.

    Raises:
        FileNotFoundError: If an input file does not exist.
        ValueError: If inputs or hyperparameters are invalid.
        OSError: If unable to save the model bundle.

    Example:
        >>> config = TrainingConfig("data/docs.txt", "data/user_rating.txt")
        >>> model = train_ctr_model(config)
        >>> model.recommend(0, top_n=10)
    """
    logger.info("=" * 60)
    logger.info("Starting CTR model training")
    logger.info("=" * 60)

    try:
        output_dir = Path(config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        docs = load_documents(config.documents_path, working_dir=str(output_dir))
        ratings = load_ratings(config, docs)

        model = build_model(config, docs, ratings)
        result = model.train(config.max_iter, config.min_iter, save_parameters=True)

        save_model_artifacts(model.get_params(), str(output_dir))

        logger.info("=" * 60)
        logger.info(
            f"Training completed: {result.state.value} after {result.iterations} "
            f"iterations (likelihood {result.likelihood:.4f})"
        )
        logger.info("=" * 60)
        return model

    except Exception as e:
        logger.error(f"Training failed: {e}", exc_info=True)
        raise


def main() -> None:
    """Main entry point for command-line execution."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = TrainingConfig("data/documents.txt", "data/user_rating.txt")
    try:
        train_ctr_model(config)
    except Exception as e:
        logger.error(f"Failed to train model: {e}")
        exit(1)


if __name__ == "__main__":
    main()
