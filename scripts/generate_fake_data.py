"""Generate fake topic-structured documents and ratings for development.

Every item gets a document drawn from a small LDA-like generative process and
every user prefers a few topics, rating items whose dominant topic they like
more often. The data is therefore learnable by CTR, unlike uniform noise.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_fake_corpus
        documents, user_items = generate_fake_corpus(num_users=100, num_items=200)
"""

from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

# Default configuration constants
DEFAULT_NUM_USERS = 50
DEFAULT_NUM_ITEMS = 100
DEFAULT_NUM_TOPICS = 5
DEFAULT_WORDS_PER_TOPIC = 20
DEFAULT_DOC_LENGTH = 40
DEFAULT_RATINGS_PER_USER = 8
DEFAULT_RANDOM_STATE = 42

# Probability that a rating goes to an item of one of the user's topics
TOPIC_AFFINITY = 0.8


def generate_fake_corpus(
    num_users: int = DEFAULT_NUM_USERS,
    num_items: int = DEFAULT_NUM_ITEMS,
    num_topics: int = DEFAULT_NUM_TOPICS,
    words_per_topic: int = DEFAULT_WORDS_PER_TOPIC,
    doc_length: int = DEFAULT_DOC_LENGTH,
    ratings_per_user: int = DEFAULT_RATINGS_PER_USER,
    random_state: Optional[int] = DEFAULT_RANDOM_STATE,
) -> Tuple[List[List[str]], List[List[int]]]:
    """Generate synthetic item documents and user ratings.

    Args:
        num_users: Number of users to simulate. Must be positive.
        num_items: Number of items (one document each). Must be positive.
        num_topics: Number of latent topics. Must be positive.
        words_per_topic: Size of each topic's private vocabulary.
        doc_length: Tokens per document.
        ratings_per_user: Ratings drawn per user (duplicates collapse).
        random_state: Random seed for reproducibility.

    Returns:
        A tuple containing:
            - documents: token list per item; word ``t<k>_w<j>`` belongs to
              topic k
            - user_items: sorted rated item ids per user

    Raises:
        ValueError: If any size parameter is non-positive.
    """
    if min(num_users, num_items, num_topics, words_per_topic, doc_length, ratings_per_user) <= 0:
        raise ValueError("All size parameters must be positive")

    rng = np.random.default_rng(random_state)
    vocabulary = [f"t{k}_w{j}" for k in range(num_topics) for j in range(words_per_topic)]

    # Each topic puts most of its mass on its own words
    beta = np.full((num_topics, len(vocabulary)), 0.1)
    for k in range(num_topics):
        beta[k, k * words_per_topic:(k + 1) * words_per_topic] += 5.0
    beta /= beta.sum(axis=1, keepdims=True)

    theta = rng.dirichlet(np.full(num_topics, 0.2), size=num_items)
    dominant = theta.argmax(axis=1)

    documents = []
    for i in range(num_items):
        topics = rng.choice(num_topics, size=doc_length, p=theta[i])
        words = [rng.choice(len(vocabulary), p=beta[k]) for k in topics]
        documents.append([vocabulary[w] for w in words])

    user_items = []
    for _ in range(num_users):
        liked = rng.choice(num_topics, size=min(2, num_topics), replace=False)
        preferred = np.flatnonzero(np.isin(dominant, liked))
        items = set()
        for _ in range(ratings_per_user):
            if preferred.size and rng.random() < TOPIC_AFFINITY:
                items.add(int(rng.choice(preferred)))
            else:
                items.add(int(rng.integers(num_items)))
        user_items.append(sorted(items))

    return documents, user_items


def main() -> None:
    """Main entry point for the data generation script.

    Writes data/documents.txt, data/user_rating.txt and data/ratings.csv and
    prints summary statistics upon completion.
    """
    print(f"Generating {DEFAULT_NUM_ITEMS} documents and {DEFAULT_NUM_USERS} users...")

    try:
        documents, user_items = generate_fake_corpus()
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    # Ensure data directory exists
    data_dir = Path(__file__).parent.parent / "data"
    data_dir.mkdir(exist_ok=True)

    doc_path = data_dir / "documents.txt"
    doc_path.write_text("\n".join(" ".join(doc) for doc in documents) + "\n", encoding="utf-8")

    rating_path = data_dir / "user_rating.txt"
    rating_path.write_text(
        "\n".join(" ".join(str(i) for i in items) for items in user_items) + "\n",
        encoding="utf-8",
    )

    df = pd.DataFrame(
        [(u, i) for u, items in enumerate(user_items) for i in items],
        columns=["user_id", "item_id"],
    )
    csv_path = data_dir / "ratings.csv"
    df.to_csv(csv_path, index=False)

    print(f"\nData generated successfully!")
    print(f"Saved to: {doc_path}, {rating_path}, {csv_path}")
    print(f"\nData summary:")
    print(f"  Total ratings: {len(df)}")
    print(f"  Unique users: {df['user_id'].nunique()}")
    print(f"  Rated items: {df['item_id'].nunique()} of {len(documents)}")


if __name__ == "__main__":
    main()
