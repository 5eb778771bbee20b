"""Tests for the CTR model: training, scoring and persistence."""

import logging
from pathlib import Path

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from ctrec.exceptions import InvalidIdError, StaleCacheError, TrainingStateError
from ctrec.recommender.ctr import CTR, IterationInfo, ModelState, _TrainingBuffers
from ctrec.recommender.data import DocumentSet, RatingMatrix
from ctrec.recommender.hyperparams import CtrHyperparameter
from ctrec.recommender.scorer import Estimable, Trainable
from ctrec.recommender.simplex import normalize_dist, safe_log
from ctrec.recommender.utils import ITERATION_INFO_FILENAME

THETA = np.array([[1.0, 0.0], [0.0, 1.0], [0.5, 0.5], [0.2, 0.8]])
INITIAL_ITEM_FACTOR = np.array([[0.3, 0.6], [0.5, 0.2], [0.4, 0.4], [0.05, 0.05]])
UNIFORM_THETA = np.full((4, 2), 0.5)
BETA = np.array(
    [
        [0.4, 0.3, 0.1, 0.1, 0.05, 0.05],
        [0.1, 0.1, 0.2, 0.2, 0.2, 0.2],
    ]
)


@pytest.fixture
def small_docs() -> DocumentSet:
    """Four documents over a six-word vocabulary."""
    return DocumentSet(
        [[0, 1, 1, 2], [3, 4, 4, 5], [0, 3, 1, 4], [5, 5, 2]],
        words=["apple", "banana", "cherry", "xray", "yak", "zebra"],
    )


@pytest.fixture
def small_ratings() -> RatingMatrix:
    """Ratings {(u0,i0), (u0,i1), (u1,i1), (u2,i2)}; i3 is never rated."""
    return RatingMatrix.from_pairs([(0, 0), (0, 1), (1, 1), (2, 2)], n_users=3, n_items=4)


@pytest.fixture
def fixed_theta_model(small_docs: DocumentSet, small_ratings: RatingMatrix) -> CTR:
    hparam = CtrHyperparameter(
        topic_num=2,
        optimize_theta=False,
        a=1.0,
        b=0.01,
        lambda_u=0.01,
        lambda_v=100.0,
    ).with_theta(THETA)
    model = CTR(hparam, small_docs, small_ratings, random_state=0)
    model.set_item_factor(INITIAL_ITEM_FACTOR)
    return model


@pytest.fixture
def topic_model(small_docs: DocumentSet, small_ratings: RatingMatrix) -> CTR:
    hparam = CtrHyperparameter(topic_num=2, optimize_theta=True)
    return CTR(hparam, small_docs, small_ratings, random_state=7)


@pytest.fixture
def hand_topic_model(small_docs: DocumentSet, small_ratings: RatingMatrix) -> CTR:
    """Topic optimization on, starting from uniform theta and a known beta."""
    hparam = CtrHyperparameter(topic_num=2).with_theta(UNIFORM_THETA).with_beta(BETA)
    return CTR(hparam, small_docs, small_ratings, random_state=0)


def test_one_update_cycle_moves_rated_items_only(fixed_theta_model: CTR) -> None:
    """Rated items get new factors; the unrated item keeps its initial one."""
    result = fixed_theta_model.train(max_iter=1, min_iter=1)

    item_factor = fixed_theta_model.item_factor
    assert result.iterations == 1
    assert not np.allclose(item_factor[0], INITIAL_ITEM_FACTOR[0])
    assert not np.allclose(item_factor[1], INITIAL_ITEM_FACTOR[1])
    assert not np.allclose(item_factor[0], item_factor[3])
    assert not np.allclose(item_factor[1], item_factor[3])
    assert_array_equal(item_factor[3], INITIAL_ITEM_FACTOR[3])


def test_rated_item_scores_above_unrated_item(fixed_theta_model: CTR) -> None:
    fixed_theta_model.train(max_iter=1, min_iter=1)

    observed = fixed_theta_model.estimate(0, 0)
    never_rated = fixed_theta_model.estimate(0, 3)
    assert observed > never_rated + 0.5


def test_item_factors_stay_close_to_topics(fixed_theta_model: CTR) -> None:
    """A large lambda_v ties rated item factors to their topic mixture."""
    fixed_theta_model.train(max_iter=5)

    assert_allclose(fixed_theta_model.item_factor[:3], THETA[:3], atol=0.1)


def test_fixed_theta_is_not_modified(fixed_theta_model: CTR) -> None:
    fixed_theta_model.train(max_iter=3)
    assert_array_equal(fixed_theta_model.theta, THETA)


def test_theta_rows_remain_distributions(topic_model: CTR) -> None:
    topic_model.train(max_iter=5, min_iter=2)

    assert np.all(topic_model.theta >= -1e-10)
    assert_allclose(topic_model.theta.sum(axis=1), np.ones(4))
    assert_allclose(topic_model.beta.sum(axis=1), np.ones(2))


def test_doc_inference_assignments(hand_topic_model: CTR) -> None:
    """Document 0 is [apple, banana, banana, cherry] under theta (0.5, 0.5)."""
    buffers = _TrainingBuffers(
        log_beta=safe_log(hand_topic_model.beta),
        word_ss=np.zeros((2, 6)),
    )

    likelihood, gamma = hand_topic_model._doc_inference(0, buffers, update_word_ss=True)

    phi = np.array([[0.8, 0.2], [0.75, 0.25], [0.75, 0.25], [1 / 3, 2 / 3]])
    assert_allclose(gamma, 1.0 + phi.sum(axis=0))
    assert gamma.sum() == pytest.approx(6.0)
    assert_allclose(
        buffers.word_ss,
        [[0.8, 1.5, 1 / 3, 0.0, 0.0, 0.0], [0.2, 0.5, 2 / 3, 0.0, 0.0, 0.0]],
    )

    log_theta = np.log([0.5, 0.5])
    log_beta_w = np.log(BETA[:, [0, 1, 1, 2]]).T
    expected = (phi * (log_theta + log_beta_w - np.log(phi))).sum() + log_theta.sum()
    assert likelihood == pytest.approx(expected)


def test_doc_inference_can_leave_word_counts(hand_topic_model: CTR) -> None:
    buffers = _TrainingBuffers(
        log_beta=safe_log(hand_topic_model.beta),
        word_ss=np.zeros((2, 6)),
    )

    hand_topic_model._doc_inference(3, buffers, update_word_ss=False)

    assert_array_equal(buffers.word_ss, np.zeros((2, 6)))


def test_unrated_item_theta_comes_from_its_document(hand_topic_model: CTR) -> None:
    """Item 3 is never rated: its theta is refit from [zebra, zebra, cherry] only."""
    factor_before = hand_topic_model.item_factor[3].copy()

    hand_topic_model.train(max_iter=1, min_iter=1)

    # word-topic responsibilities under theta (0.5, 0.5) and the initial beta
    phi = np.array([[0.2, 0.8], [0.2, 0.8], [1 / 3, 2 / 3]])
    expected = normalize_dist(1.0 + phi.sum(axis=0))
    assert_allclose(hand_topic_model.theta[3], expected)
    assert not np.allclose(hand_topic_model.theta[3], UNIFORM_THETA[3])
    assert_array_equal(hand_topic_model.item_factor[3], factor_before)


def test_iteration_bounds_are_swapped(fixed_theta_model: CTR) -> None:
    """Bounds given in the wrong order behave like the ordered pair."""
    result = fixed_theta_model.train(max_iter=5, min_iter=3)
    assert 3 <= result.iterations <= 5

    swapped = fixed_theta_model.train(max_iter=3, min_iter=5)
    assert 3 <= swapped.iterations <= 5


def test_min_iter_forces_iterations(fixed_theta_model: CTR) -> None:
    result = fixed_theta_model.train(max_iter=4, min_iter=4)
    assert result.iterations == 4
    assert len(result.history) == 4
    assert [info.iteration for info in result.history] == [1, 2, 3, 4]


def test_training_state(fixed_theta_model: CTR) -> None:
    assert fixed_theta_model.state is ModelState.INITIALIZED

    result = fixed_theta_model.train(max_iter=50, min_iter=2)

    assert fixed_theta_model.state is result.state
    assert result.state in (ModelState.CONVERGED, ModelState.MAX_ITER_REACHED)


def test_training_stops_early_once_converged(fixed_theta_model: CTR) -> None:
    result = fixed_theta_model.train(max_iter=500)

    assert result.state is ModelState.CONVERGED
    assert fixed_theta_model.state is ModelState.CONVERGED
    assert result.iterations < 500
    assert result.history[-1].converge < 1e-4
    assert all(info.converge >= 1e-4 for info in result.history[:-1])


def test_train_is_not_reentrant(fixed_theta_model: CTR) -> None:
    def retrain(info: IterationInfo) -> None:
        fixed_theta_model.train(max_iter=1)

    with pytest.raises(TrainingStateError):
        fixed_theta_model.train(max_iter=1, callback=retrain)
    assert fixed_theta_model.state is ModelState.INITIALIZED


def test_iteration_info_file(small_docs: DocumentSet, small_ratings: RatingMatrix, tmp_path: Path) -> None:
    hparam = CtrHyperparameter(topic_num=2)
    model = CTR(hparam, small_docs, small_ratings, model_id=3)

    model.train(max_iter=2, min_iter=2, info_dir=str(tmp_path))

    lines = (tmp_path / f"{ITERATION_INFO_FILENAME}3").read_text().splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("iter=1, likelihood=")
    assert ", converge=" in lines[1]


def test_training_logs_iterations(fixed_theta_model: CTR, caplog) -> None:
    with caplog.at_level(logging.INFO, logger="ctrec.recommender.ctr"):
        fixed_theta_model.train(max_iter=2, min_iter=2)

    iteration_records = [r for r in caplog.records if hasattr(r, "iteration")]
    assert [r.iteration for r in iteration_records] == [1, 2]
    assert all(hasattr(r, "likelihood") for r in iteration_records)


def test_recommend_top_n_truncation() -> None:
    """Top-2 of five scored candidates are the two best, best first."""
    docs = DocumentSet([[0]] * 6, n_words=1)
    ratings = RatingMatrix.from_pairs([(0, 5)], n_users=1, n_items=6)
    model = CTR(CtrHyperparameter(topic_num=1, optimize_theta=False), docs, ratings)
    model.set_user_factor([[1.0]])
    model.set_item_factor([[0.9], [0.7], [0.5], [0.3], [0.1], [0.0]])

    recs = model.recommend(0, for_user=True, top_n=2)

    assert [item for item, _ in recs] == [0, 1]
    assert [score for _, score in recs] == pytest.approx([0.9, 0.7])


def test_recommend_threshold_and_exclusion() -> None:
    docs = DocumentSet([[0]] * 6, n_words=1)
    ratings = RatingMatrix.from_pairs([(0, 0)], n_users=1, n_items=6)
    model = CTR(CtrHyperparameter(topic_num=1, optimize_theta=False), docs, ratings)
    model.set_user_factor([[1.0]])
    model.set_item_factor([[0.9], [0.7], [0.5], [0.5], [0.1], [0.0]])

    recs = model.recommend(0, threshold=0.3)

    # item 0 was rated; equal scores keep ascending ids
    assert [item for item, _ in recs] == [1, 2, 3]


def test_recommend_can_include_rated_items(fixed_theta_model: CTR) -> None:
    fixed_theta_model.train(max_iter=1)

    default = [item for item, _ in fixed_theta_model.recommend(0)]
    everything = [item for item, _ in fixed_theta_model.recommend(0, exclude_train=False)]

    assert sorted(default) == [2, 3]
    assert sorted(everything) == [0, 1, 2, 3]


def test_recommend_without_ratings_is_empty(fixed_theta_model: CTR) -> None:
    fixed_theta_model.train(max_iter=1)
    assert fixed_theta_model.recommend(3, for_user=False) == []


def test_recommend_users_for_item(fixed_theta_model: CTR) -> None:
    fixed_theta_model.train(max_iter=2)

    recs = fixed_theta_model.recommend(1, for_user=False)

    assert [user for user, _ in recs] == [2]


@pytest.mark.parametrize("user_id,item_id", [(-1, 0), (3, 0), (0, 4), (0, 1.5), (True, 0)])
def test_estimate_rejects_invalid_ids(fixed_theta_model: CTR, user_id, item_id) -> None:
    with pytest.raises(InvalidIdError):
        fixed_theta_model.estimate(user_id, item_id)


def test_recommend_rejects_invalid_id(fixed_theta_model: CTR) -> None:
    with pytest.raises(InvalidIdError):
        fixed_theta_model.recommend(99)


def test_cached_scorer_matches_uncached(small_docs: DocumentSet, small_ratings: RatingMatrix) -> None:
    hparam = CtrHyperparameter(topic_num=2, enable_cache=True)
    model = CTR(hparam, small_docs, small_ratings)
    model.train(max_iter=3)

    first = model.estimate(0, 2)
    assert model.estimate(0, 2) == first
    assert first == pytest.approx(float(model.user_factor[0] @ model.item_factor[2]))
    assert model.recommend(0)[0][1] == pytest.approx(
        max(model.estimate(0, i) for i in (2, 3))
    )


def test_scorer_is_stale_after_retraining(fixed_theta_model: CTR) -> None:
    fixed_theta_model.train(max_iter=1)
    scorer = fixed_theta_model.scorer
    scorer.estimate(0, 0)

    fixed_theta_model.train(max_iter=1)

    with pytest.raises(StaleCacheError):
        scorer.estimate(0, 0)
    # the model itself serves from a fresh scorer
    fixed_theta_model.estimate(0, 0)


def test_failed_training_invalidates_scorer(fixed_theta_model: CTR) -> None:
    fixed_theta_model.train(max_iter=1)
    scorer = fixed_theta_model.scorer
    scorer.estimate(0, 0)
    version = fixed_theta_model.version

    def fail(info: IterationInfo) -> None:
        raise RuntimeError("stop")

    with pytest.raises(RuntimeError):
        fixed_theta_model.train(max_iter=3, callback=fail)

    assert fixed_theta_model.state is ModelState.INITIALIZED
    assert fixed_theta_model.version > version
    with pytest.raises(StaleCacheError):
        scorer.estimate(0, 0)
    assert fixed_theta_model.estimate(0, 0) == pytest.approx(
        float(fixed_theta_model.user_factor[0] @ fixed_theta_model.item_factor[0])
    )


def test_empty_vocabulary_with_fixed_theta() -> None:
    """Without words there is nothing to infer; fixed topic mixtures still train."""
    docs = DocumentSet([[], [], []])
    ratings = RatingMatrix.from_pairs([(0, 0), (1, 2)], n_users=2, n_items=3)
    hparam = CtrHyperparameter(topic_num=2, optimize_theta=False).with_theta(np.full((3, 2), 0.5))

    model = CTR(hparam, docs, ratings, random_state=0)
    result = model.train(max_iter=3)

    assert model.beta.shape == (2, 0)
    assert result.iterations >= 1
    assert np.isfinite(model.estimate(0, 1))


def test_accessors_are_read_only(fixed_theta_model: CTR) -> None:
    with pytest.raises(ValueError):
        fixed_theta_model.user_factor[0, 0] = 1.0
    with pytest.raises(ValueError):
        fixed_theta_model.theta[0, 0] = 1.0


def test_rating_counts(fixed_theta_model: CTR) -> None:
    assert fixed_theta_model.user_rating_count(0) == 2
    assert fixed_theta_model.item_rating_count(1) == 2
    assert fixed_theta_model.item_rating_count(3) == 0


def test_top_words(topic_model: CTR) -> None:
    topic_model.train(max_iter=3)

    words = topic_model.top_words(0, 3)
    raw = topic_model.top_words(0, 3, use_term_score=False)

    assert len(words) == 3
    assert all(word in topic_model.docs.words for word, _ in words)
    assert [score for _, score in raw] == sorted((score for _, score in raw), reverse=True)


def test_save_and_load_round_trip(fixed_theta_model: CTR, small_docs, small_ratings, tmp_path: Path) -> None:
    fixed_theta_model.train(max_iter=2)
    assert fixed_theta_model.save(tmp_path)
    assert fixed_theta_model.persisted

    assert (tmp_path / "ctr_item_factor").exists()
    assert (tmp_path / "ctr_user_factor").exists()
    assert (tmp_path / "ctr_theta").exists()

    hparam = CtrHyperparameter(topic_num=2, optimize_theta=False).with_theta(THETA)
    restored = CTR(hparam, small_docs, small_ratings, random_state=1)
    assert restored.load(tmp_path)

    assert_allclose(restored.user_factor, fixed_theta_model.user_factor, rtol=1e-8)
    assert restored.estimate(0, 0) == pytest.approx(fixed_theta_model.estimate(0, 0))


def test_load_missing_files_keeps_values(fixed_theta_model: CTR, tmp_path: Path, caplog) -> None:
    before = fixed_theta_model.item_factor.copy()

    assert not fixed_theta_model.load(tmp_path)

    assert_array_equal(fixed_theta_model.item_factor, before)
    assert "not found" in caplog.text


def test_save_to_unwritable_location_is_logged(fixed_theta_model: CTR, tmp_path: Path, caplog) -> None:
    missing = tmp_path / "does" / "not" / "exist"

    assert not fixed_theta_model.save(missing)
    assert "Saving file failed" in caplog.text


def test_get_params_round_trip(topic_model: CTR, small_docs, small_ratings) -> None:
    topic_model.train(max_iter=2)

    restored = CTR.from_params(topic_model.get_params(), small_docs, small_ratings)

    assert_allclose(restored.beta, topic_model.beta)
    assert restored.estimate(1, 2) == pytest.approx(topic_model.estimate(1, 2))


def test_mismatched_documents_rejected(small_ratings: RatingMatrix) -> None:
    docs = DocumentSet([[0], [1]], n_words=2)
    with pytest.raises(ValueError):
        CTR(CtrHyperparameter(topic_num=2), docs, small_ratings)


def test_theta_shape_checked(small_docs: DocumentSet, small_ratings: RatingMatrix) -> None:
    hparam = CtrHyperparameter(topic_num=3).with_theta(np.ones((4, 2)))
    with pytest.raises(ValueError):
        CTR(hparam, small_docs, small_ratings)


def test_capabilities(fixed_theta_model: CTR) -> None:
    assert isinstance(fixed_theta_model, Trainable)
    assert isinstance(fixed_theta_model, Estimable)
    assert isinstance(fixed_theta_model.scorer, Estimable)
    assert not isinstance(fixed_theta_model.scorer, Trainable)
