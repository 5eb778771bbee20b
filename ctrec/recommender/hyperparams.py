"""Hyperparameters of the Collaborative Topic Regression model."""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

# Defaults from Wang & Blei (2011)
DEFAULT_A = 1.0
DEFAULT_B = 0.01
DEFAULT_LAMBDA_U = 0.01
DEFAULT_LAMBDA_V = 100.0


def _as_matrix(name: str, value) -> np.ndarray:
    matrix = np.array(value, dtype=np.float64)
    if matrix.ndim != 2 or matrix.size == 0:
        raise ValueError(f"{name} must be a non-empty 2-D matrix, got shape {matrix.shape}")
    matrix.setflags(write=False)
    return matrix


@dataclass(frozen=True)
class CtrHyperparameter:
    """Immutable configuration bundle for a CTR model.

    Attributes:
        topic_num: Number of topics K (also the latent factor dimension).
        optimize_theta: If True, item topic mixtures and topic-word
            distributions are refit during training.
        enable_cache: If True, the model's scorer memoizes estimates.
        a: Confidence weight of observed ratings.
        b: Confidence weight of unobserved ratings (b < a).
        lambda_u: Regularization weight of user factors.
        lambda_v: Weight pulling item factors toward their topic mixture.
        theta: Optional pre-trained document-topic matrix (items x K).
        beta: Optional pre-trained topic-word matrix (K x words).

    Setters return a new instance, e.g.
    ``CtrHyperparameter(30, True).with_lambda_v(50).with_theta(theta)``.
    """

    topic_num: int
    optimize_theta: bool = True
    enable_cache: bool = False
    a: float = DEFAULT_A
    b: float = DEFAULT_B
    lambda_u: float = DEFAULT_LAMBDA_U
    lambda_v: float = DEFAULT_LAMBDA_V
    theta: Optional[np.ndarray] = dataclasses.field(default=None, repr=False, compare=False)
    beta: Optional[np.ndarray] = dataclasses.field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.topic_num <= 0:
            raise ValueError(f"topic_num must be positive, got {self.topic_num}")
        if self.b >= self.a:
            logger.warning(
                "Negative confidence b should be smaller than a",
                extra={"a": self.a, "b": self.b},
            )
        if self.theta is not None:
            object.__setattr__(self, "theta", _as_matrix("theta", self.theta))
        if self.beta is not None:
            object.__setattr__(self, "beta", _as_matrix("beta", self.beta))

    def with_lambda_u(self, value: float) -> "CtrHyperparameter":
        return dataclasses.replace(self, lambda_u=value)

    def with_lambda_v(self, value: float) -> "CtrHyperparameter":
        return dataclasses.replace(self, lambda_v=value)

    def with_confidence(self, a: float, b: float) -> "CtrHyperparameter":
        return dataclasses.replace(self, a=a, b=b)

    def with_theta(self, theta) -> "CtrHyperparameter":
        """Seed item topic mixtures from a previously trained topic model."""
        return dataclasses.replace(self, theta=theta)

    def with_beta(self, beta) -> "CtrHyperparameter":
        """Seed topic-word distributions from a previously trained topic model."""
        return dataclasses.replace(self, beta=beta)
