"""K-fold cross-validation of CTR models.

Ratings are split into folds over individual (user, item) ratings. For each
fold an independent model is trained on the other folds; its ranked lists are
then compared with the held-out ratings by every metric, giving one value per
fold.

Example:
    >>> cv = CrossValidation(5, hparam, docs, ratings, out_dir="validation/")
    >>> results = cv.run_all()
    >>> cv.summary(results)
"""

import abc
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.model_selection import KFold

from ctrec.recommender.ctr import CTR, DEFAULT_RANDOM_STATE
from ctrec.recommender.data import DocumentSet, RatingMatrix
from ctrec.recommender.hyperparams import CtrHyperparameter
from ctrec.validation import metrics

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_CUTOFFS: Tuple[Optional[int], ...] = (10, 50, 100, None)
DEFAULT_MAX_ITER = 100
DEFAULT_MIN_ITER = 2


def cutoff_label(top_n: Optional[int]) -> str:
    return "all" if top_n is None else str(top_n)


def _mean(values: Sequence[Optional[float]]) -> Optional[float]:
    defined = [v for v in values if v is not None]
    if not defined:
        return None
    return float(np.mean(defined))


@dataclass
class RankedLists:
    """Recommendations of one fold for every entity with held-out ratings."""

    estimates: List[List[int]]
    answers: List[List[int]]
    n_candidates: int


class Metric(abc.ABC):
    """A metric evaluated on the ranked lists of one fold.

    Args:
        top_n: List length cutoff; None ranks every candidate.
        threshold: Keep only candidates scoring strictly above this value.
    """

    name = "metric"

    def __init__(self, top_n: Optional[int] = None, threshold: Optional[float] = None):
        self.top_n = top_n
        self.threshold = threshold

    @property
    def label(self) -> str:
        return f"{self.name}@{cutoff_label(self.top_n)}"

    @abc.abstractmethod
    def evaluate(self, lists: RankedLists) -> Optional[float]:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(top_n={self.top_n}, threshold={self.threshold})"


class Precision(Metric):
    name = "precision"

    def evaluate(self, lists: RankedLists) -> Optional[float]:
        return _mean(
            [metrics.precision(est, ans) for est, ans in zip(lists.estimates, lists.answers)]
        )


class Recall(Metric):
    name = "recall"

    def evaluate(self, lists: RankedLists) -> Optional[float]:
        return _mean(
            [metrics.recall(est, ans) for est, ans in zip(lists.estimates, lists.answers)]
        )


class FMeasure(Metric):
    name = "f_measure"

    def evaluate(self, lists: RankedLists) -> Optional[float]:
        return _mean(
            [
                metrics.f_measure(metrics.precision(est, ans), metrics.recall(est, ans))
                for est, ans in zip(lists.estimates, lists.answers)
            ]
        )


class AveragePrecision(Metric):
    """Mean average precision over entities."""

    name = "average_precision"

    def evaluate(self, lists: RankedLists) -> Optional[float]:
        return _mean(
            [
                metrics.average_precision(est, ans)
                for est, ans in zip(lists.estimates, lists.answers)
            ]
        )


class CatalogueCoverage(Metric):
    name = "catalogue_coverage"

    def evaluate(self, lists: RankedLists) -> Optional[float]:
        return metrics.catalogue_coverage(lists.estimates, lists.n_candidates)


class InterUserDiversity(Metric):
    """Pairwise list dissimilarity, normalized by the cutoff.

    Without a cutoff the longest list length is used instead.
    """

    name = "inter_user_diversity"

    def __init__(self, top_n: Optional[int] = None):
        super().__init__(top_n=top_n)

    def evaluate(self, lists: RankedLists) -> Optional[float]:
        set_size = self.top_n
        if set_size is None:
            set_size = max((len(est) for est in lists.estimates), default=0)
        return metrics.inter_user_diversity(lists.estimates, set_size)


class ListPersonalization(Metric):
    name = "list_personalization"

    def evaluate(self, lists: RankedLists) -> Optional[float]:
        return metrics.list_personalization(lists.estimates)


def default_metrics(top_n: Optional[int]) -> List[Metric]:
    return [
        Precision(top_n),
        Recall(top_n),
        FMeasure(top_n),
        AveragePrecision(top_n),
        CatalogueCoverage(top_n),
        InterUserDiversity(top_n),
        ListPersonalization(top_n),
    ]


def write_metric_file(path: Path, values: Sequence[Optional[float]]) -> None:
    """One value per line, one line per fold; undefined values are blank."""
    lines = ["" if v is None else f"{v:.10g}" for v in values]
    Path(path).write_text("\n".join(lines) + "\n", encoding="utf-8")


def _train_fold(
    fold_id: int,
    hparam: CtrHyperparameter,
    docs: DocumentSet,
    train: RatingMatrix,
    max_iter: int,
    min_iter: int,
    out_dir: Optional[Path],
    save_parameters: bool,
    seed: np.random.SeedSequence,
) -> CTR:
    logger.info(f"Training fold {fold_id}", extra={"model_id": fold_id, "ratings": train.nnz})
    model = CTR(hparam, docs, train, model_id=fold_id, random_state=np.random.default_rng(seed))
    model.train(max_iter, min_iter, info_dir=out_dir, save_parameters=save_parameters)
    return model


class CrossValidation:
    """Train and evaluate one CTR model per fold.

    Args:
        num_folds: Number of folds K (at least 2).
        hparam: Hyperparameters shared by every fold's model.
        docs: Item documents.
        ratings: All ratings; each fold holds out one K-th of them.
        max_iter: Training iteration upper bound.
        min_iter: Training iteration lower bound.
        out_dir: Directory for iteration logs, parameters and metric files.
        for_user: Rank items for users (True) or users for items (False).
        save_parameters: Save every fold's trained matrices to ``out_dir``.
        n_jobs: Folds trained in parallel (joblib semantics, -1 = all CPUs).
        random_state: Seed of the fold split and of every fold's model.

    Raises:
        ValueError: If ``num_folds < 2`` or there are fewer ratings than folds.
    """

    def __init__(
        self,
        num_folds: int,
        hparam: CtrHyperparameter,
        docs: DocumentSet,
        ratings: RatingMatrix,
        max_iter: int = DEFAULT_MAX_ITER,
        min_iter: int = DEFAULT_MIN_ITER,
        out_dir: Optional[str] = None,
        for_user: bool = True,
        save_parameters: bool = False,
        n_jobs: int = 1,
        random_state: int = DEFAULT_RANDOM_STATE,
    ):
        if num_folds < 2:
            raise ValueError(f"num_folds must be at least 2, got {num_folds}")
        if ratings.nnz < num_folds:
            raise ValueError(
                f"Cannot split {ratings.nnz} ratings into {num_folds} folds"
            )

        self.num_folds = num_folds
        self.hparam = hparam
        self.docs = docs
        self.ratings = ratings
        self.max_iter = max_iter
        self.min_iter = min_iter
        self.out_dir = Path(out_dir) if out_dir is not None else None
        self.for_user = for_user
        self.save_parameters = save_parameters
        self.n_jobs = n_jobs
        self.random_state = random_state

        self.splits_: Optional[List[Tuple[RatingMatrix, RatingMatrix]]] = None
        self.models_: Optional[List[CTR]] = None
        self._lists: Dict[Tuple[int, Optional[int], Optional[float]], RankedLists] = {}

    def split(self) -> List[Tuple[RatingMatrix, RatingMatrix]]:
        """(train, held-out) rating matrices of every fold."""
        pairs = self.ratings.pairs()
        n_users, n_items = self.ratings.n_users, self.ratings.n_items
        kfold = KFold(n_splits=self.num_folds, shuffle=True, random_state=self.random_state)

        splits = []
        for train_idx, test_idx in kfold.split(pairs):
            train = RatingMatrix.from_pairs(pairs[train_idx], n_users, n_items)
            test = RatingMatrix.from_pairs(pairs[test_idx], n_users, n_items)
            splits.append((train, test))
        return splits

    def fit(self) -> "CrossValidation":
        """Train every fold's model."""
        if self.out_dir is not None:
            self.out_dir.mkdir(parents=True, exist_ok=True)

        self.splits_ = self.split()
        seeds = np.random.SeedSequence(self.random_state).spawn(self.num_folds)

        logger.info(
            "Starting cross-validation",
            extra={"num_folds": self.num_folds, "n_jobs": self.n_jobs},
        )
        self.models_ = Parallel(n_jobs=self.n_jobs)(
            delayed(_train_fold)(
                fold_id,
                self.hparam,
                self.docs,
                train,
                self.max_iter,
                self.min_iter,
                self.out_dir,
                self.save_parameters,
                seeds[fold_id],
            )
            for fold_id, (train, _) in enumerate(self.splits_)
        )
        self._lists.clear()
        return self

    def ranked_lists(
        self,
        fold_id: int,
        top_n: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> RankedLists:
        """Ranked lists of a fold for every entity with held-out ratings."""
        if self.models_ is None:
            self.fit()

        key = (fold_id, top_n, threshold)
        if key not in self._lists:
            model = self.models_[fold_id]
            _, test = self.splits_[fold_id]
            counts = test.user_counts if self.for_user else test.item_counts
            n_candidates = test.n_items if self.for_user else test.n_users

            estimates, answers = [], []
            for entity_id in np.flatnonzero(counts):
                recs = model.recommend(int(entity_id), self.for_user, top_n, threshold)
                estimates.append([c for c, _ in recs])
                answers.append(test.partners(int(entity_id), self.for_user).tolist())
            self._lists[key] = RankedLists(estimates, answers, n_candidates)
        return self._lists[key]

    def run(self, metric: Metric) -> List[Optional[float]]:
        """Evaluate a metric on every fold (training first if needed)."""
        values = [
            metric.evaluate(self.ranked_lists(fold_id, metric.top_n, metric.threshold))
            for fold_id in range(self.num_folds)
        ]
        logger.info(f"{metric.label}: {_mean(values)}", extra={"metric": metric.label})
        return values

    def run_all(
        self,
        cutoffs: Sequence[Optional[int]] = DEFAULT_CUTOFFS,
        out_dir: Optional[str] = None,
    ) -> Dict[str, List[Optional[float]]]:
        """Evaluate the default metrics at every cutoff.

        Args:
            cutoffs: List lengths; None stands for "all".
            out_dir: Where ``<metric>@<cutoff>.txt`` files are written.
                Defaults to the harness output directory; nothing is written
                when neither is set.

        Returns:
            Per-fold values keyed by metric label (e.g. ``"recall@10"``).
        """
        target = Path(out_dir) if out_dir is not None else self.out_dir
        if target is not None:
            target.mkdir(parents=True, exist_ok=True)

        results: Dict[str, List[Optional[float]]] = {}
        for top_n in cutoffs:
            for metric in default_metrics(top_n):
                values = self.run(metric)
                results[metric.label] = values
                if target is not None:
                    write_metric_file(target / f"{metric.label}.txt", values)
        return results

    def summary(self, results: Dict[str, List[Optional[float]]]) -> pd.DataFrame:
        """Per-fold table of results with a trailing ``mean`` row."""
        df = pd.DataFrame(results, index=pd.RangeIndex(self.num_folds, name="fold"), dtype=float)
        df.loc["mean"] = df.mean(skipna=True)
        return df
