"""Topic-model helpers: LDA pre-training and topic-word term scores.

CTR is usually seeded with the topic mixtures of a plain LDA fit on the item
documents, so that training starts from sensible theta/beta instead of noise.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.decomposition import LatentDirichletAllocation

from ctrec.recommender.data import DocumentSet
from ctrec.recommender.simplex import normalize_dist, safe_log

logger = logging.getLogger(__name__)

DEFAULT_LDA_MAX_ITER = 50
DEFAULT_RANDOM_STATE = 42


def pretrain_topics(
    docs: DocumentSet,
    n_topics: int,
    max_iter: int = DEFAULT_LDA_MAX_ITER,
    random_state: int = DEFAULT_RANDOM_STATE,
) -> Tuple[np.ndarray, np.ndarray]:
    """Fit LDA on the documents and return (theta, beta).

    Args:
        docs: Item documents.
        n_topics: Number of topics K.
        max_iter: Variational EM iterations.
        random_state: Random seed for reproducibility.

    Returns:
        A tuple containing:
            - theta: (n_docs, K) document-topic distributions
            - beta: (K, n_words) topic-word distributions

    Raises:
        ValueError: If the documents contain no tokens.
    """
    counts = docs.to_count_matrix()
    if counts.nnz == 0:
        raise ValueError("Cannot pre-train topics on documents without tokens")

    logger.info(
        f"Pre-training LDA with {n_topics} topics on {docs.n_docs} documents"
    )
    lda = LatentDirichletAllocation(
        n_components=n_topics,
        max_iter=max_iter,
        learning_method="batch",
        random_state=random_state,
    )
    theta = normalize_dist(lda.fit_transform(counts))
    beta = normalize_dist(lda.components_)

    logger.info(f"LDA perplexity: {lda.perplexity(counts):.4f}")
    return theta, beta


def term_scores(beta: np.ndarray) -> np.ndarray:
    """Term score of Blei & Lafferty (2009) for every (topic, word).

    score[k, v] = beta[k, v] * (log beta[k, v] - mean_j log beta[j, v]),
    which favours words that are likely under topic k but not under the
    other topics.
    """
    log_beta = safe_log(beta)
    return beta * (log_beta - log_beta.mean(axis=0, keepdims=True))


def top_words(
    scores: np.ndarray,
    num_words: int,
    words: Optional[Sequence[str]] = None,
) -> List[Tuple[str, float]]:
    """Highest scoring words of one topic row, best first.

    Words are reported by their text when a vocabulary is given, else by id.
    """
    order = np.argsort(-scores, kind="stable")[:num_words]
    return [
        (words[w] if words is not None else str(w), float(scores[w]))
        for w in order
    ]
