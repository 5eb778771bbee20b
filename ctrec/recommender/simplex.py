"""Projected-gradient optimization on the probability simplex.

CTR re-estimates every rated item's topic mixture by maximizing

    f(x) = gamma . log(x) - lambda_v / 2 * ||v - x||^2

subject to x lying on the probability simplex, where gamma holds the smoothed
topic counts of the item's document and v is the item's latent factor. This
module provides that solver together with the Euclidean simplex projection of
Duchi et al. (2008), "Efficient Projections onto the l1-Ball for Learning in
High Dimensions".
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

# Replaces log(x) for x <= 0 so that likelihood terms stay finite
LOG_LOWER_LIMIT = -1000.0

PROJECTION_Z = 1.0
LINE_SEARCH_BETA = 0.5
MAX_LINE_SEARCH_STEPS = 100
FEASIBILITY_TOLERANCE = 1e-10

# Lower bound applied to x when computing gamma / x
_MIN_DENOMINATOR = 1e-12


def safe_log(x) -> np.ndarray:
    """Elementwise log with non-positive entries mapped to LOG_LOWER_LIMIT."""
    x = np.asarray(x, dtype=np.float64)
    out = np.full(x.shape, LOG_LOWER_LIMIT)
    np.log(x, out=out, where=x > 0)
    return out


def normalize_dist(x: np.ndarray) -> np.ndarray:
    """Scale a non-negative vector (or each row of a matrix) to sum to one.

    Rows summing to zero become uniform distributions. An empty last axis
    is returned as is.
    """
    x = np.asarray(x, dtype=np.float64)
    if x.shape[-1] == 0:
        return x.copy()
    totals = x.sum(axis=-1, keepdims=True)
    uniform = np.full(x.shape, 1.0 / x.shape[-1])
    return np.divide(x, totals, out=uniform, where=totals != 0)


def simplex_projection(x, z: float = PROJECTION_Z) -> np.ndarray:
    """Euclidean projection of ``x`` onto {w : w >= 0, sum(w) = z}.

    Args:
        x: Input vector.
        z: Target mass of the simplex (positive).

    Returns:
        The point of the simplex nearest to ``x``.
    """
    x = np.asarray(x, dtype=np.float64)
    u = np.sort(x)[::-1]
    cssv = np.cumsum(u) - z
    ind = np.arange(1, x.size + 1)
    cond = u - cssv / ind > 0
    rho = ind[cond][-1]
    theta = cssv[cond][-1] / rho

    w = np.maximum(x - theta, 0.0)
    # fix the normalization drift caused by rounding
    total = w.sum()
    if total > 0:
        w *= z / total
    return w


def is_feasible(x: np.ndarray, tol: float = FEASIBILITY_TOLERANCE) -> bool:
    """Check that ``x`` lies on the probability simplex.

    Every coordinate but the last must be in [0, 1] and the running sum must
    not exceed one; the last coordinate is implied by the others.
    """
    head = np.asarray(x, dtype=np.float64)[:-1]
    if np.any(head < -tol) or np.any(head > 1 + tol):
        return False
    return bool(np.all(np.cumsum(head) <= 1 + tol))


def f_simplex(gamma: np.ndarray, v: np.ndarray, lambda_v: float, x: np.ndarray) -> float:
    """Negated objective: -(gamma . log(x) - lambda_v / 2 * ||v - x||^2)."""
    diff = v - x
    f = float(np.dot(safe_log(x), gamma)) - 0.5 * lambda_v * float(np.dot(diff, diff))
    return -f


def df_simplex(gamma: np.ndarray, v: np.ndarray, lambda_v: float, x: np.ndarray) -> np.ndarray:
    """Gradient of :func:`f_simplex` with respect to ``x``."""
    g = -lambda_v * (x - v) + gamma / np.maximum(x, _MIN_DENOMINATOR)
    return -g


def optimize_simplex(
    gamma: np.ndarray,
    v: np.ndarray,
    lambda_v: float,
    x: np.ndarray,
) -> np.ndarray:
    """Take one projected-gradient step with Armijo backtracking.

    Args:
        gamma: Smoothed topic counts of the document (length K).
        v: Latent factor of the item (length K).
        lambda_v: Weight of the factor/topic mismatch penalty.
        x: Current topic mixture, a point on the simplex.

    Returns:
        The updated topic mixture. A result that drifted off the simplex is
        reported with a warning and returned as is.
    """
    x_old = np.asarray(x, dtype=np.float64)
    f_old = f_simplex(gamma, v, lambda_v, x_old)

    g = df_simplex(gamma, v, lambda_v, x_old)
    abs_sum = np.abs(g).sum()
    if abs_sum > 0:
        g = g / abs_sum

    direction = simplex_projection(x_old - g) - x_old
    r = 0.5 * float(np.dot(g, direction))

    t = LINE_SEARCH_BETA
    x_new = x_old + t * direction
    for _ in range(MAX_LINE_SEARCH_STEPS):
        x_new = x_old + t * direction
        if f_simplex(gamma, v, lambda_v, x_new) > f_old + r * t:
            t *= LINE_SEARCH_BETA
        else:
            break

    if not is_feasible(x_new):
        logger.warning(
            "Topic mixture left the simplex after optimization",
            extra={"sum": float(x_new.sum()), "min": float(x_new.min())},
        )
    return x_new
