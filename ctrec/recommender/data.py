"""Rating and document containers consumed by the CTR model.

Ratings are binary implicit feedback (a user either interacted with an item
or did not). They are kept both grouped by user and grouped by item so that
the alternating updates can iterate either axis directly. Documents are
pre-tokenized word-id sequences, one per item.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix

logger = logging.getLogger(__name__)


class RatingMatrix:
    """Binary user-item interaction matrix.

    Wraps a scipy CSR matrix of shape (n_users, n_items) and keeps per-user
    and per-item partner arrays for O(1) access during training.
    """

    def __init__(self, matrix: csr_matrix):
        matrix = csr_matrix(matrix, dtype=np.float64, copy=True)
        matrix.sum_duplicates()
        matrix.eliminate_zeros()
        matrix.data[:] = 1.0
        matrix.sort_indices()
        self.matrix = matrix

        by_item = matrix.tocsc()
        by_item.sort_indices()
        self._user_items: List[np.ndarray] = [
            matrix.indices[matrix.indptr[u]:matrix.indptr[u + 1]].copy()
            for u in range(matrix.shape[0])
        ]
        self._item_users: List[np.ndarray] = [
            by_item.indices[by_item.indptr[i]:by_item.indptr[i + 1]].copy()
            for i in range(matrix.shape[1])
        ]

    @classmethod
    def from_csr(cls, matrix: csr_matrix) -> "RatingMatrix":
        return cls(matrix)

    @classmethod
    def from_pairs(
        cls,
        pairs: Iterable[Tuple[int, int]],
        n_users: int,
        n_items: int,
    ) -> "RatingMatrix":
        """Build from (user, item) index pairs; duplicates collapse to one rating."""
        pair_array = np.asarray(list(pairs), dtype=np.int64).reshape(-1, 2)
        if pair_array.size and (
            pair_array.min() < 0
            or pair_array[:, 0].max() >= n_users
            or pair_array[:, 1].max() >= n_items
        ):
            raise ValueError(
                f"Rating pair out of range for a {n_users}x{n_items} matrix"
            )
        data = np.ones(len(pair_array), dtype=np.float64)
        matrix = csr_matrix(
            (data, (pair_array[:, 0], pair_array[:, 1])),
            shape=(n_users, n_items),
        )
        return cls(matrix)

    @classmethod
    def from_user_lists(
        cls,
        user_items: Sequence[Sequence[int]],
        n_items: Optional[int] = None,
    ) -> "RatingMatrix":
        """Build from one list of rated item ids per user.

        Args:
            user_items: Entry u lists the items rated by user u.
            n_items: Catalogue size. Defaults to the largest item id + 1.
        """
        pairs = [(u, int(i)) for u, items in enumerate(user_items) for i in items]
        if n_items is None:
            n_items = max((i for _, i in pairs), default=-1) + 1
        return cls.from_pairs(pairs, len(user_items), n_items)

    @property
    def n_users(self) -> int:
        return self.matrix.shape[0]

    @property
    def n_items(self) -> int:
        return self.matrix.shape[1]

    @property
    def nnz(self) -> int:
        return self.matrix.nnz

    @property
    def user_counts(self) -> np.ndarray:
        """Number of ratings per user."""
        return np.diff(self.matrix.indptr)

    @property
    def item_counts(self) -> np.ndarray:
        """Number of ratings per item."""
        return np.bincount(self.matrix.indices, minlength=self.n_items)

    def user_items(self, user_id: int) -> np.ndarray:
        """Item ids rated by a user, ascending."""
        return self._user_items[user_id]

    def item_users(self, item_id: int) -> np.ndarray:
        """User ids who rated an item, ascending."""
        return self._item_users[item_id]

    def partners(self, entity_id: int, for_user: bool) -> np.ndarray:
        return self.user_items(entity_id) if for_user else self.item_users(entity_id)

    def pairs(self) -> np.ndarray:
        """All ratings as an (nnz, 2) array of (user, item), user-major order."""
        coo = self.matrix.tocoo()
        return np.column_stack([coo.row, coo.col]).astype(np.int64)

    def __repr__(self) -> str:
        return f"RatingMatrix(n_users={self.n_users}, n_items={self.n_items}, nnz={self.nnz})"


class DocumentSet:
    """Pre-tokenized item documents.

    Attributes:
        tokens: Word-id array per item (repeats allowed).
        n_words: Vocabulary size V.
        words: Optional vocabulary, ``words[w]`` is the text of word id w.
        working_dir: Optional directory for training logs and parameters.
    """

    def __init__(
        self,
        tokens: Sequence[Sequence[int]],
        n_words: Optional[int] = None,
        words: Optional[Sequence[str]] = None,
        working_dir: Optional[Path] = None,
    ):
        self.tokens: List[np.ndarray] = [np.asarray(doc, dtype=np.int64) for doc in tokens]
        if n_words is None:
            n_words = len(words) if words is not None else max(
                (int(doc.max()) + 1 for doc in self.tokens if doc.size), default=0
            )
        if any(doc.size and (doc.min() < 0 or doc.max() >= n_words) for doc in self.tokens):
            raise ValueError(f"Token word id out of range for vocabulary size {n_words}")
        self.n_words = n_words
        self.words = list(words) if words is not None else None
        self.working_dir = Path(working_dir) if working_dir is not None else None

    @property
    def n_docs(self) -> int:
        return len(self.tokens)

    @property
    def token_count(self) -> int:
        return int(sum(doc.size for doc in self.tokens))

    def to_count_matrix(self) -> csr_matrix:
        """Document-word count matrix of shape (n_docs, n_words)."""
        rows = np.concatenate(
            [np.full(doc.size, d, dtype=np.int64) for d, doc in enumerate(self.tokens)]
            or [np.empty(0, dtype=np.int64)]
        )
        cols = np.concatenate(self.tokens or [np.empty(0, dtype=np.int64)])
        data = np.ones(rows.size, dtype=np.float64)
        counts = csr_matrix((data, (rows, cols)), shape=(self.n_docs, self.n_words))
        counts.sum_duplicates()
        return counts

    def __repr__(self) -> str:
        return (
            f"DocumentSet(n_docs={self.n_docs}, n_words={self.n_words}, "
            f"tokens={self.token_count})"
        )


def load_user_rating_file(path: str, n_items: Optional[int] = None) -> RatingMatrix:
    """Load ratings where line u holds the space-separated item ids of user u.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a line contains a non-integer id.
    """
    rating_file = Path(path)
    if not rating_file.exists():
        raise FileNotFoundError(f"Rating file not found: {path}")

    logger.info(f"Loading user ratings from {path}")
    user_items = []
    with rating_file.open(encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            try:
                user_items.append([int(tok) for tok in line.split()])
            except ValueError as e:
                raise ValueError(f"Invalid item id on line {line_no} of {path}: {e}") from e

    ratings = RatingMatrix.from_user_lists(user_items, n_items=n_items)
    logger.info(
        f"Loaded {ratings.nnz} ratings for {ratings.n_users} users "
        f"and {ratings.n_items} items"
    )
    return ratings


def load_ratings_csv(
    csv_path: str,
    user_col: str = "user_id",
    item_col: str = "item_id",
    n_items: Optional[int] = None,
) -> Tuple[RatingMatrix, Dict[object, int], Dict[object, int]]:
    """Load a CSV of user-item interactions into a RatingMatrix.

    Args:
        csv_path: Path to CSV file containing interaction data.
        user_col: Name of the column containing user identifiers.
        item_col: Name of the column containing item identifiers.
        n_items: Catalogue size. When given, item identifiers must be
            integers in [0, n_items) and are used as column indices as is,
            so that they keep matching the document line numbers.

    Returns:
        A tuple containing:
            - RatingMatrix with one row per distinct user
            - Dictionary mapping user_id to matrix row index
            - Dictionary mapping item_id to matrix column index

    Raises:
        FileNotFoundError: If CSV file does not exist.
        ValueError: If CSV is missing required columns or is empty.
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading CSV from {csv_path}")
    df = pd.read_csv(csv_path)

    required_columns = {user_col, item_col}
    if not required_columns.issubset(df.columns):
        missing = required_columns - set(df.columns)
        raise ValueError(f"CSV missing required columns: {missing}")

    if df.empty:
        raise ValueError("Cannot create rating matrix from empty CSV")

    unique_users = sorted(df[user_col].unique())
    user_id_to_idx = {user_id: idx for idx, user_id in enumerate(unique_users)}
    if n_items is None:
        unique_items = sorted(df[item_col].unique())
        n_items = len(unique_items)
    else:
        unique_items = range(n_items)
    item_id_to_idx = {item_id: idx for idx, item_id in enumerate(unique_items)}

    rows = df[user_col].map(user_id_to_idx).values
    cols = df[item_col].map(item_id_to_idx)
    if cols.isna().any():
        raise ValueError(f"CSV contains item ids outside [0, {n_items})")
    ratings = RatingMatrix.from_pairs(
        zip(rows, cols.astype(np.int64).values), len(unique_users), n_items
    )

    logger.info(f"Matrix shape: {ratings.matrix.shape}")
    logger.info(
        f"Matrix density: {ratings.nnz / (ratings.n_users * ratings.n_items):.4%}"
    )
    return ratings, user_id_to_idx, item_id_to_idx


def load_documents(
    path: str,
    working_dir: Optional[str] = None,
    vocabulary: Optional[Sequence[str]] = None,
) -> DocumentSet:
    """Load pre-tokenized documents, one per line, tokens separated by spaces.

    Line i is the document of item i. Text normalization (case folding,
    stop words...) is expected to have been applied already.

    Args:
        path: Path to the document file.
        working_dir: Directory for training logs and saved parameters.
            Defaults to the directory holding the document file.
        vocabulary: Optional fixed vocabulary; tokens outside it are dropped.
            When omitted the sorted set of observed tokens is used.

    Raises:
        FileNotFoundError: If the document file does not exist.
    """
    doc_file = Path(path)
    if not doc_file.exists():
        raise FileNotFoundError(f"Document file not found: {path}")

    with doc_file.open(encoding="utf-8") as fh:
        texts = [line.split() for line in fh]

    words = list(vocabulary) if vocabulary is not None else sorted(
        {tok for doc in texts for tok in doc}
    )
    word_to_id = {word: idx for idx, word in enumerate(words)}
    tokens = [[word_to_id[tok] for tok in doc if tok in word_to_id] for doc in texts]

    docs = DocumentSet(
        tokens,
        n_words=len(words),
        words=words,
        working_dir=Path(working_dir) if working_dir is not None else doc_file.parent,
    )
    logger.info(
        f"Loaded {docs.n_docs} documents, {docs.n_words} words, "
        f"{docs.token_count} tokens"
    )
    return docs
