"""Collaborative Topic Regression model.

CTR (Wang & Blei, "Collaborative topic modeling for recommending scientific
articles", KDD 2011) learns user and item latent factors from implicit
feedback, while tying every item factor to the topic mixture of the item's
document. Items with few ratings therefore still get meaningful factors from
their text.

Training alternates, every iteration, between:
    1. solving each user's factor given the item factors,
    2. solving each item's factor given the user factors (and, when topic
       optimization is on, refitting the item's topic mixture on the simplex),
    3. refitting the topic-word distributions from the word statistics.
"""

import enum
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from ctrec.exceptions import TrainingStateError
from ctrec.recommender.data import DocumentSet, RatingMatrix
from ctrec.recommender.hyperparams import CtrHyperparameter
from ctrec.recommender.scorer import RecommendationScorer
from ctrec.recommender.simplex import normalize_dist, optimize_simplex, safe_log
from ctrec.recommender.topics import term_scores, top_words
from ctrec.recommender.utils import (
    ITEM_FACTOR_FILENAME,
    ITERATION_INFO_FILENAME,
    THETA_FILENAME,
    USER_FACTOR_FILENAME,
    append_iteration_info,
    fold_suffix,
    load_matrix,
    resolve_output_dir,
    save_matrix,
)

# Configure module logger
logger = logging.getLogger(__name__)

CONVERGENCE_EPSILON = 1e-4
INITIAL_LIKELIHOOD = -math.exp(50)
PSEUDO_COUNT = 1.0
DEFAULT_RANDOM_STATE = 42

RandomState = Union[None, int, np.random.Generator]


class ModelState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    TRAINING = "training"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"


@dataclass(frozen=True)
class IterationInfo:
    """One training iteration as reported to logs and callbacks."""

    iteration: int
    likelihood: float
    converge: float

    def __str__(self) -> str:
        return (
            f"iter={self.iteration}, likelihood={self.likelihood:f}, "
            f"converge={self.converge:f}"
        )


@dataclass
class TrainingResult:
    state: ModelState
    iterations: int
    likelihood: float
    history: List[IterationInfo] = field(default_factory=list)


class ConvergenceTracker:
    """Relative-change convergence test on the training likelihood."""

    def __init__(self, epsilon: float = CONVERGENCE_EPSILON):
        self.epsilon = epsilon
        self.value = math.inf

    def update(self, current: float, previous: float) -> float:
        if previous == 0:
            self.value = math.inf
        else:
            self.value = abs(current - previous) / abs(previous)
        return self.value

    @property
    def converged(self) -> bool:
        return self.value < self.epsilon


@dataclass
class _TrainingBuffers:
    """Scratch state of topic optimization; lives for one train() call."""

    log_beta: np.ndarray
    word_ss: np.ndarray


def _readonly(array: np.ndarray) -> np.ndarray:
    view = array.view()
    view.flags.writeable = False
    return view


class CTR:
    """Collaborative Topic Regression model.

    Args:
        hparam: Hyperparameters. Supplied theta/beta seed the topic state.
        docs: One document per item (``docs.n_docs == ratings.n_items``).
        ratings: Training ratings.
        model_id: Fold id for cross-validation; -1 for a single run. Used as
            the suffix of every file the model writes.
        random_state: Seed or ``numpy.random.Generator`` used for the random
            initialization of beta, theta and item factors.

    Raises:
        ValueError: If documents and ratings disagree on the number of items,
            or a supplied theta/beta has the wrong shape.

    Example:
        >>> hparam = CtrHyperparameter(topic_num=30, optimize_theta=True)
        >>> model = CTR(hparam, docs, ratings)
        >>> model.train(max_iter=100, min_iter=2)
        >>> model.recommend(user_id, for_user=True, top_n=10)
    """

    def __init__(
        self,
        hparam: CtrHyperparameter,
        docs: DocumentSet,
        ratings: RatingMatrix,
        model_id: int = -1,
        random_state: RandomState = DEFAULT_RANDOM_STATE,
    ):
        if docs.n_docs != ratings.n_items:
            raise ValueError(
                f"Document count ({docs.n_docs}) must equal item count ({ratings.n_items})"
            )

        self.state = ModelState.UNINITIALIZED
        self.hparam = hparam
        self.docs = docs
        self.ratings = ratings
        self.model_id = model_id
        self.version = 0
        self.persisted = False
        self._likelihood = INITIAL_LIKELIHOOD
        self._rng = np.random.default_rng(random_state)

        self._init_parameters()
        self._scorer = RecommendationScorer(self, enable_cache=hparam.enable_cache)

    # ------------------------------------------------------------------
    # initialization

    def _init_parameters(self) -> None:
        K = self.hparam.topic_num
        V = self.docs.n_words
        I = self.ratings.n_items
        U = self.ratings.n_users
        optimize = self.hparam.optimize_theta

        if self.hparam.beta is None:
            self._beta = normalize_dist(self._rng.random((K, V)))
        else:
            logger.info("Loading beta from hyperparameters")
            self._check_shape("beta", self.hparam.beta, (K, V))
            self._beta = normalize_dist(self.hparam.beta)

        if self.hparam.theta is not None:
            logger.info("Loading theta from hyperparameters")
            self._check_shape("theta", self.hparam.theta, (I, K))
            self._theta = np.array(self.hparam.theta, dtype=np.float64)
            if optimize:
                self._theta = normalize_dist(self._theta)
        elif optimize:
            self._theta = normalize_dist(self._rng.random((I, K)))
        else:
            self._theta = np.zeros((I, K))

        self._user_factor = np.zeros((U, K))
        if optimize:
            self._item_factor = self._theta.copy()
        else:
            self._item_factor = self._rng.random((I, K))

        self.state = ModelState.INITIALIZED
        logger.info(
            "Initialized CTR model",
            extra={
                "model_id": self.model_id,
                "users": U,
                "items": I,
                "topics": K,
                "words": V,
                "optimize_theta": optimize,
            },
        )

    @staticmethod
    def _check_shape(name: str, matrix: np.ndarray, expected: Tuple[int, int]) -> None:
        if matrix.shape != expected:
            raise ValueError(f"{name} has shape {matrix.shape}, expected {expected}")

    # ------------------------------------------------------------------
    # accessors

    @property
    def n_users(self) -> int:
        return self.ratings.n_users

    @property
    def n_items(self) -> int:
        return self.ratings.n_items

    @property
    def n_topics(self) -> int:
        return self.hparam.topic_num

    @property
    def n_words(self) -> int:
        return self.docs.n_words

    @property
    def likelihood(self) -> float:
        return self._likelihood

    @property
    def user_factor(self) -> np.ndarray:
        return _readonly(self._user_factor)

    @property
    def item_factor(self) -> np.ndarray:
        return _readonly(self._item_factor)

    @property
    def theta(self) -> np.ndarray:
        """Topic mixture of every item (items x topics)."""
        return _readonly(self._theta)

    @property
    def beta(self) -> np.ndarray:
        """Word distribution of every topic (topics x words)."""
        return _readonly(self._beta)

    @property
    def scorer(self) -> RecommendationScorer:
        return self._scorer

    def user_rating_count(self, user_id: int) -> int:
        return int(self.ratings.user_items(user_id).size)

    def item_rating_count(self, item_id: int) -> int:
        return int(self.ratings.item_users(item_id).size)

    def term_scores(self) -> np.ndarray:
        return term_scores(self._beta)

    def top_words(
        self,
        topic_id: int,
        num_words: int,
        use_term_score: bool = True,
    ) -> List[Tuple[str, float]]:
        """Most representative words of a topic, best first."""
        scores = self.term_scores()[topic_id] if use_term_score else self._beta[topic_id]
        return top_words(scores, num_words, self.docs.words)

    def set_user_factor(self, values) -> None:
        """Overwrite user factors, e.g. to resume from saved parameters."""
        self._user_factor[...] = np.asarray(values, dtype=np.float64)
        self._invalidate()

    def set_item_factor(self, values) -> None:
        """Overwrite item factors, e.g. to resume from saved parameters."""
        self._item_factor[...] = np.asarray(values, dtype=np.float64)
        self._invalidate()

    def _invalidate(self) -> None:
        self.version += 1
        self._scorer = RecommendationScorer(self, enable_cache=self.hparam.enable_cache)

    # ------------------------------------------------------------------
    # training

    def _update_users(self) -> None:
        a, b = self.hparam.a, self.hparam.b
        lambda_u = self.hparam.lambda_u
        K = self.n_topics
        V = self._item_factor

        rated = V[self.ratings.item_counts > 0]
        XX = b * (rated.T @ rated)
        XX[np.diag_indices(K)] += lambda_u

        for u in range(self.n_users):
            items = self.ratings.user_items(u)
            if items.size == 0:
                continue
            V_u = V[items]
            A = XX + (a - b) * (V_u.T @ V_u)
            x = a * V_u.sum(axis=0)

            vec_u = np.linalg.solve(A, x)
            self._user_factor[u] = vec_u
            self._likelihood += -0.5 * lambda_u * float(vec_u @ vec_u)

    def _update_items(self, buffers: Optional[_TrainingBuffers]) -> None:
        a, b = self.hparam.a, self.hparam.b
        lambda_v = self.hparam.lambda_v
        K = self.n_topics
        U = self._user_factor

        active = U[self.ratings.user_counts > 0]
        XX = b * (active.T @ active)

        for i in range(self.n_items):
            users = self.ratings.item_users(i)
            theta_i = self._theta[i]

            if users.size == 0:
                # never rated: the topic mixture comes from the text alone
                if buffers is not None:
                    _, gamma = self._doc_inference(i, buffers, update_word_ss=False)
                    self._theta[i] = normalize_dist(gamma)
                continue

            U_i = U[users]
            B = XX + (a - b) * (U_i.T @ U_i)
            x = a * U_i.sum(axis=0) + lambda_v * theta_i

            A = B.copy()
            A[np.diag_indices(K)] += lambda_v
            vec_v = np.linalg.solve(A, x)
            self._item_factor[i] = vec_v

            self._likelihood += -0.5 * users.size * a
            self._likelihood += a * float((U_i @ vec_v).sum())
            self._likelihood += -0.5 * float(vec_v @ B @ vec_v)
            diff = vec_v - theta_i
            self._likelihood += -0.5 * lambda_v * float(diff @ diff)

            if buffers is not None:
                doc_likelihood, gamma = self._doc_inference(i, buffers, update_word_ss=True)
                self._likelihood += doc_likelihood
                self._theta[i] = optimize_simplex(gamma, vec_v, lambda_v, theta_i)

    def _doc_inference(
        self,
        item_id: int,
        buffers: _TrainingBuffers,
        update_word_ss: bool,
    ) -> Tuple[float, np.ndarray]:
        """Variational inference of one document's token-topic assignments.

        Returns:
            The document's evidence lower bound and the smoothed topic
            counts gamma.
        """
        words = self.docs.tokens[item_id]
        theta_i = self._theta[item_id]
        log_theta = safe_log(theta_i)

        # phi[n, k]: responsibility of topic k for token n
        phi = normalize_dist(theta_i[np.newaxis, :] * self._beta[:, words].T)
        log_beta_w = buffers.log_beta[:, words].T
        terms = phi * (log_theta[np.newaxis, :] + log_beta_w - safe_log(phi))
        likelihood = float(terms[phi > 0].sum())

        if PSEUDO_COUNT > 0:
            likelihood += PSEUDO_COUNT * float(log_theta.sum())

        gamma = PSEUDO_COUNT + phi.sum(axis=0)

        if update_word_ss and words.size:
            np.add.at(buffers.word_ss.T, words, phi)

        return likelihood, gamma

    def _update_beta(self, buffers: _TrainingBuffers) -> None:
        self._beta = normalize_dist(buffers.word_ss)
        buffers.log_beta = safe_log(self._beta)

    def train(
        self,
        max_iter: int,
        min_iter: int = 0,
        info_dir: Optional[str] = None,
        save_parameters: bool = False,
        callback: Optional[Callable[[IterationInfo], None]] = None,
    ) -> TrainingResult:
        """Run alternating updates until convergence.

        Iterates while the relative likelihood change is at least the
        convergence epsilon and fewer than ``max_iter`` iterations ran, and
        always runs at least ``min_iter`` iterations. The bounds are swapped
        when ``max_iter < min_iter``.

        Args:
            max_iter: Upper iteration bound.
            min_iter: Lower iteration bound.
            info_dir: Directory for ``iteration_info.txt<fold>`` (and saved
                parameters). Defaults to the documents' working directory;
                nothing is written when neither is set.
            save_parameters: Save factor and theta matrices after training.
            callback: Called with every iteration's info.

        Returns:
            Final state, iteration count, likelihood and per-iteration
            history.

        Raises:
            TrainingStateError: If called while this model is training.
        """
        if self.state is ModelState.TRAINING:
            raise TrainingStateError(self.model_id, self.state.value)

        if max_iter < min_iter:
            max_iter, min_iter = min_iter, max_iter

        base_dir = resolve_output_dir(info_dir, self.docs.working_dir)
        info_path: Optional[Path] = None
        if base_dir is not None:
            info_path = base_dir / (ITERATION_INFO_FILENAME + fold_suffix(self.model_id))

        logger.info(
            "Starting CTR training",
            extra={"model_id": self.model_id, "max_iter": max_iter, "min_iter": min_iter},
        )

        self.state = ModelState.TRAINING
        history: List[IterationInfo] = []
        conv = ConvergenceTracker(CONVERGENCE_EPSILON)
        iteration = 0

        try:
            buffers: Optional[_TrainingBuffers] = None
            if self.hparam.optimize_theta:
                buffers = _TrainingBuffers(
                    log_beta=safe_log(self._beta),
                    word_ss=np.zeros((self.n_topics, self.n_words)),
                )

            while (not conv.converged and iteration < max_iter) or iteration < min_iter:
                likelihood_old = self._likelihood
                self._likelihood = 0.0

                if buffers is not None:
                    buffers.word_ss.fill(0.0)

                self._update_users()
                self._update_items(buffers)
                if buffers is not None:
                    self._update_beta(buffers)

                iteration += 1
                conv.update(self._likelihood, likelihood_old)

                info = IterationInfo(iteration, self._likelihood, conv.value)
                history.append(info)
                logger.info(
                    str(info),
                    extra={
                        "model_id": self.model_id,
                        "iteration": iteration,
                        "likelihood": self._likelihood,
                        "converge": conv.value,
                    },
                )
                if info_path is not None:
                    append_iteration_info(info_path, iteration, self._likelihood, conv.value)
                if callback is not None:
                    callback(info)
        except Exception as e:
            self.state = ModelState.INITIALIZED
            self._invalidate()
            logger.error(f"Training failed: {e}", exc_info=True)
            raise

        self.state = ModelState.CONVERGED if conv.converged else ModelState.MAX_ITER_REACHED
        self._invalidate()

        if save_parameters:
            self.save(base_dir)

        logger.info(
            "Training finished",
            extra={
                "model_id": self.model_id,
                "state": self.state.value,
                "iterations": iteration,
                "likelihood": self._likelihood,
            },
        )
        return TrainingResult(self.state, iteration, self._likelihood, history)

    # ------------------------------------------------------------------
    # scoring

    def estimate(self, user_id: int, item_id: int) -> float:
        """Estimated affinity of a user for an item.

        Raises:
            InvalidIdError: If either id is out of range.
        """
        return self._scorer.estimate(user_id, item_id)

    def recommend(
        self,
        entity_id: int,
        for_user: bool = True,
        top_n: Optional[int] = None,
        threshold: Optional[float] = None,
        exclude_train: bool = True,
    ) -> List[Tuple[int, float]]:
        """Items for a user (``for_user``) or users for an item, best first.

        Training partners of ``entity_id`` are excluded unless
        ``exclude_train`` is false. See :meth:`RecommendationScorer.recommend`.
        """
        return self._scorer.recommend(entity_id, for_user, top_n, threshold, exclude_train)

    # ------------------------------------------------------------------
    # persistence

    def _parameter_paths(self, directory: Path) -> Dict[str, Path]:
        suffix = fold_suffix(self.model_id)
        return {
            "item_factor": directory / (ITEM_FACTOR_FILENAME + suffix),
            "user_factor": directory / (USER_FACTOR_FILENAME + suffix),
            "theta": directory / (THETA_FILENAME + suffix),
        }

    def save(self, directory: Optional[Union[str, Path]] = None) -> bool:
        """Write item factors, user factors and theta as text matrices.

        Failures are logged, never raised.

        Returns:
            True if every matrix was written.
        """
        base_dir = resolve_output_dir(directory, self.docs.working_dir)
        if base_dir is None:
            logger.error("Saving parameters failed: no output directory")
            return False

        logger.info(f"Saving trained parameters to {base_dir}")
        paths = self._parameter_paths(base_dir)
        saved = [
            save_matrix(paths["item_factor"], self._item_factor),
            save_matrix(paths["user_factor"], self._user_factor),
            save_matrix(paths["theta"], self._theta),
        ]
        if all(saved):
            self.persisted = True
        return all(saved)

    def load(self, directory: Optional[Union[str, Path]] = None) -> bool:
        """Read matrices written by :meth:`save`; missing files are skipped.

        Returns:
            True if every matrix was loaded.
        """
        base_dir = resolve_output_dir(directory, self.docs.working_dir)
        if base_dir is None:
            logger.error("Loading parameters failed: no input directory")
            return False

        paths = self._parameter_paths(base_dir)
        loaded = [
            load_matrix(paths["item_factor"], self._item_factor),
            load_matrix(paths["user_factor"], self._user_factor),
            load_matrix(paths["theta"], self._theta),
        ]
        if any(loaded):
            self._invalidate()
        return all(loaded)

    def get_params(self) -> Dict[str, Any]:
        """Every trained array plus the hyperparameters, for joblib bundles."""
        return {
            "hparam": self.hparam,
            "model_id": self.model_id,
            "likelihood": self._likelihood,
            "user_factor": self._user_factor.copy(),
            "item_factor": self._item_factor.copy(),
            "theta": self._theta.copy(),
            "beta": self._beta.copy(),
        }

    @classmethod
    def from_params(
        cls,
        params: Dict[str, Any],
        docs: DocumentSet,
        ratings: RatingMatrix,
    ) -> "CTR":
        """Rebuild a trained model from :meth:`get_params` output."""
        model = cls(params["hparam"], docs, ratings, model_id=params["model_id"])
        model._user_factor[...] = params["user_factor"]
        model._item_factor[...] = params["item_factor"]
        model._theta[...] = params["theta"]
        model._beta = np.array(params["beta"], dtype=np.float64)
        model._likelihood = params["likelihood"]
        model._invalidate()
        return model

    def __repr__(self) -> str:
        return (
            f"CTR(model_id={self.model_id}, users={self.n_users}, items={self.n_items}, "
            f"topics={self.n_topics}, state={self.state.value})"
        )
