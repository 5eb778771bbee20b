"""Ranking and beyond-accuracy metrics for recommendation lists.

Every function is stateless. Metrics that are undefined for their input
(an empty estimate list for precision, no true positive for average
precision...) return ``None`` rather than a number, so that callers can tell
"undefined" apart from zero.
"""

import functools
import math
import operator
from collections import Counter
from typing import Callable, Hashable, List, Optional, Sequence

Less = Callable[[Hashable, Hashable], bool]


def _sorted_by(values: Sequence, less: Less) -> List:
    def compare(x, y):
        if less(x, y):
            return -1
        if less(y, x):
            return 1
        return 0

    return sorted(values, key=functools.cmp_to_key(compare))


def set_intersection_num(
    first: Sequence,
    second: Sequence,
    is_sorted: bool = False,
    less: Less = operator.lt,
) -> int:
    """Count common ids of two sequences by a single merge pass.

    Args:
        first: Ids, without duplicates.
        second: Ids, without duplicates.
        is_sorted: Both sequences are already ordered by ``less``. When False,
            sorted copies are used; the inputs are never modified.
        less: Strict ordering of ids.

    Returns:
        Number of ids present in both sequences.
    """
    if not is_sorted:
        first = _sorted_by(first, less)
        second = _sorted_by(second, less)

    count = 0
    i, j = 0, 0
    while i < len(first) and j < len(second):
        if less(first[i], second[j]):
            i += 1
        elif less(second[j], first[i]):
            j += 1
        else:
            count += 1
            i += 1
            j += 1
    return count


def precision(
    estimates: Sequence,
    answers: Sequence,
    is_sorted: bool = False,
    less: Less = operator.lt,
) -> Optional[float]:
    """|estimates ∩ answers| / |estimates|; None if there are no estimates."""
    if len(estimates) == 0:
        return None
    return set_intersection_num(estimates, answers, is_sorted, less) / len(estimates)


def recall(
    estimates: Sequence,
    answers: Sequence,
    is_sorted: bool = False,
    less: Less = operator.lt,
) -> Optional[float]:
    """|estimates ∩ answers| / |answers|; None if there are no answers."""
    if len(answers) == 0:
        return None
    return set_intersection_num(estimates, answers, is_sorted, less) / len(answers)


def f_measure(precision_value: Optional[float], recall_value: Optional[float]) -> Optional[float]:
    """Harmonic mean of precision and recall.

    None if either input is undefined or both are zero.
    """
    if precision_value is None or recall_value is None:
        return None
    total = precision_value + recall_value
    if total == 0:
        return None
    return 2 * precision_value * recall_value / total


def average_precision(rankings: Sequence, answers: Sequence) -> Optional[float]:
    """Mean of precision@r over the 1-indexed ranks r holding a true positive.

    Args:
        rankings: Recommended ids, best first.
        answers: Relevant ids.

    Returns:
        Average precision, or None if no ranked id is relevant.
    """
    relevant = set(answers)
    total = 0.0
    hits = 0
    for rank, item in enumerate(rankings, start=1):
        if item in relevant:
            hits += 1
            total += hits / rank
    if hits == 0:
        return None
    return total / hits


def catalogue_coverage(estimate_sets: Sequence[Sequence], total_num: int) -> Optional[float]:
    """Share of the catalogue recommended to at least one user."""
    if total_num <= 0:
        return None
    covered = set()
    for estimates in estimate_sets:
        covered.update(estimates)
    return len(covered) / total_num


def inter_user_diversity(
    estimate_sets: Sequence[Sequence],
    set_size: int,
    is_sorted: bool = False,
    less: Less = operator.lt,
) -> Optional[float]:
    """Mean over user pairs of 1 - |L_a ∩ L_b| / set_size.

    Args:
        estimate_sets: One recommendation list per user.
        set_size: Recommendation list length used for normalization.
        is_sorted: Every list is already ordered by ``less``.
        less: Strict ordering of ids.

    Returns:
        The diversity in [0, 1], or None with fewer than two users.
    """
    if len(estimate_sets) < 2 or set_size <= 0:
        return None
    if not is_sorted:
        estimate_sets = [_sorted_by(estimates, less) for estimates in estimate_sets]

    total = 0.0
    pairs = 0
    for a in range(len(estimate_sets)):
        for b in range(a + 1, len(estimate_sets)):
            common = set_intersection_num(estimate_sets[a], estimate_sets[b], True, less)
            total += 1 - common / set_size
            pairs += 1
    return total / pairs


def list_personalization(estimate_sets: Sequence[Sequence]) -> Optional[float]:
    """Mean over users of the mean log2(n_users / popularity) of their ids.

    The popularity of an id is the number of lists it appears in, so lists
    made of ids nobody else receives score highest. Users with an empty list
    are skipped.
    """
    popularity = Counter(item for estimates in estimate_sets for item in estimates)
    n_users = len(estimate_sets)

    per_user = [
        sum(math.log2(n_users / popularity[item]) for item in estimates) / len(estimates)
        for estimates in estimate_sets
        if len(estimates)
    ]
    if not per_user:
        return None
    return sum(per_user) / len(per_user)
