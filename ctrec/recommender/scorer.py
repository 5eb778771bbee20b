"""Recommendation scoring on top of trained latent factors.

The scorer is built from a trained model and remembers the model version it
was built for. Estimates can optionally be memoized; because factors change
when the model is retrained, a scorer refuses to serve a model whose version
has moved on (build a new one instead).
"""

import logging
from typing import List, Optional, Protocol, Tuple, runtime_checkable

import numpy as np

from ctrec.exceptions import InvalidIdError, StaleCacheError
from ctrec.recommender.data import RatingMatrix

logger = logging.getLogger(__name__)


@runtime_checkable
class Estimable(Protocol):
    """Anything that can estimate the affinity of a user for an item."""

    def estimate(self, user_id: int, item_id: int) -> float:
        ...


@runtime_checkable
class Trainable(Protocol):
    """Anything trained by repeated iterations between two bounds."""

    def train(self, max_iter: int, min_iter: int = 0) -> object:
        ...


class FactorModel(Protocol):
    """What the scorer reads from a trained model."""

    version: int
    ratings: RatingMatrix

    @property
    def user_factor(self) -> np.ndarray:
        ...

    @property
    def item_factor(self) -> np.ndarray:
        ...


def _check_id(entity: str, entity_id: int, size: int) -> int:
    if isinstance(entity_id, (bool, np.bool_)) or not isinstance(entity_id, (int, np.integer)):
        raise InvalidIdError(entity, entity_id, size)
    if not 0 <= entity_id < size:
        raise InvalidIdError(entity, int(entity_id), size)
    return int(entity_id)


class RecommendationScorer:
    """Ranks items for a user (or users for an item) by estimated affinity.

    Args:
        model: Trained model providing user/item factors and the training
            ratings.
        enable_cache: If True, every (user, item) estimate is computed once
            and reused.
    """

    def __init__(self, model: FactorModel, enable_cache: bool = False):
        self._model = model
        self._version = model.version
        self.enable_cache = enable_cache
        self._cache: Optional[np.ndarray] = None
        self._filled: Optional[np.ndarray] = None

        if enable_cache:
            n_users, n_items = model.ratings.n_users, model.ratings.n_items
            self._cache = np.zeros((n_users, n_items), dtype=np.float64)
            self._filled = np.zeros((n_users, n_items), dtype=bool)

    @property
    def version(self) -> int:
        return self._version

    def _check_fresh(self) -> None:
        if self._model.version != self._version:
            raise StaleCacheError(self._version, self._model.version)

    def estimate(self, user_id: int, item_id: int) -> float:
        """Inner product of the user's and the item's latent factors.

        Raises:
            InvalidIdError: If either id is out of range.
            StaleCacheError: If the model was retrained after this scorer
                was built.
        """
        self._check_fresh()
        ratings = self._model.ratings
        u = _check_id("user", user_id, ratings.n_users)
        i = _check_id("item", item_id, ratings.n_items)

        if self._cache is None:
            return float(np.dot(self._model.user_factor[u], self._model.item_factor[i]))

        if not self._filled[u, i]:
            self._cache[u, i] = np.dot(self._model.user_factor[u], self._model.item_factor[i])
            self._filled[u, i] = True
        return float(self._cache[u, i])

    def _score_all(self, entity_id: int, for_user: bool) -> np.ndarray:
        user_factor = self._model.user_factor
        item_factor = self._model.item_factor

        if self._cache is None:
            if for_user:
                return item_factor @ user_factor[entity_id]
            return user_factor @ item_factor[entity_id]

        if for_user:
            missing = ~self._filled[entity_id]
            if missing.any():
                self._cache[entity_id, missing] = item_factor[missing] @ user_factor[entity_id]
                self._filled[entity_id, missing] = True
            return self._cache[entity_id].copy()

        missing = ~self._filled[:, entity_id]
        if missing.any():
            self._cache[missing, entity_id] = user_factor[missing] @ item_factor[entity_id]
            self._filled[missing, entity_id] = True
        return self._cache[:, entity_id].copy()

    def recommend(
        self,
        entity_id: int,
        for_user: bool = True,
        top_n: Optional[int] = None,
        threshold: Optional[float] = None,
        exclude_train: bool = True,
    ) -> List[Tuple[int, float]]:
        """Rank candidates for a user (``for_user``) or for an item.

        Candidates are every id on the opposite axis, minus the training
        partners of ``entity_id`` when ``exclude_train`` is set. They are
        sorted by descending score, ties broken by ascending id, then cut to
        ``top_n`` and finally filtered to scores strictly above
        ``threshold``.

        Returns:
            List of (id, score) pairs; empty if ``entity_id`` has no ratings.

        Raises:
            InvalidIdError: If ``entity_id`` is out of range.
            StaleCacheError: If the model was retrained after this scorer
                was built.
        """
        self._check_fresh()
        ratings = self._model.ratings
        if for_user:
            entity_id = _check_id("user", entity_id, ratings.n_users)
        else:
            entity_id = _check_id("item", entity_id, ratings.n_items)

        partners = ratings.partners(entity_id, for_user)
        if partners.size == 0:
            return []

        scores = self._score_all(entity_id, for_user)
        candidates = np.arange(scores.size)
        if exclude_train:
            keep = np.ones(scores.size, dtype=bool)
            keep[partners] = False
            candidates = candidates[keep]

        # stable sort keeps ascending id order among equal scores
        order = np.argsort(-scores[candidates], kind="stable")
        ranked = candidates[order]

        if top_n is not None:
            ranked = ranked[:top_n]
        result = [(int(c), float(scores[c])) for c in ranked]
        if threshold is not None:
            result = [(c, s) for c, s in result if s > threshold]

        logger.debug(
            "Computed recommendations",
            extra={
                "entity_id": entity_id,
                "for_user": for_user,
                "num_recommendations": len(result),
            },
        )
        return result
