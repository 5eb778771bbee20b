"""Utility functions for persisting CTR parameters and training logs.

Parameters are written two ways: as plain-text matrices (space separated, one
row per line) next to the training data, and as a joblib bundle holding every
trained array plus the hyperparameters.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import joblib
import numpy as np

from ctrec.exceptions import ModelNotFoundError

# Configure module logger
logger = logging.getLogger(__name__)

# Plain-text parameter filenames (suffixed with the fold id)
ITEM_FACTOR_FILENAME = "ctr_item_factor"
USER_FACTOR_FILENAME = "ctr_user_factor"
THETA_FILENAME = "ctr_theta"
ITERATION_INFO_FILENAME = "iteration_info.txt"

# joblib bundle
MODEL_FILENAME = "ctr_model.joblib"


def fold_suffix(model_id: int) -> str:
    """File suffix of a cross-validation fold; empty for a single run (-1)."""
    return str(model_id) if model_id >= 0 else ""


def save_matrix(path: Path, matrix: np.ndarray) -> bool:
    """Write a matrix as space-separated text.

    Failure to open the file is logged and reported through the return
    value; it is never raised.
    """
    try:
        np.savetxt(path, np.atleast_2d(matrix), fmt="%.10g", delimiter=" ")
    except OSError as e:
        logger.error(f"Saving file failed: {path} ({e})")
        return False
    return True


def load_matrix(path: Path, target: np.ndarray) -> bool:
    """Overwrite ``target`` in place with the matrix stored at ``path``.

    A missing or malformed file leaves ``target`` untouched.
    """
    if not Path(path).exists():
        logger.warning(f"Parameter file not found, keeping current values: {path}")
        return False
    try:
        values = np.loadtxt(path, ndmin=2)
    except (OSError, ValueError) as e:
        logger.error(f"Loading file failed: {path} ({e})")
        return False
    if values.shape != target.shape:
        logger.error(
            f"Loading file failed: {path} has shape {values.shape}, "
            f"expected {target.shape}"
        )
        return False
    target[...] = values
    logger.info(f"Loaded file: {path}")
    return True


def append_iteration_info(
    path: Path,
    iteration: int,
    likelihood: float,
    converge: float,
) -> None:
    """Append one ``iter=<n>, likelihood=<f>, converge=<f>`` line."""
    line = f"iter={iteration}, likelihood={likelihood:f}, converge={converge:f}"
    try:
        with Path(path).open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
    except OSError as e:
        logger.error(f"Writing iteration info failed: {path} ({e})")


def save_model_artifacts(
    params: Dict[str, Any],
    output_dir: str,
    model_filename: str = MODEL_FILENAME,
) -> Path:
    """Save trained CTR parameters as a joblib bundle.

    Args:
        params: Mapping of parameter names to arrays / values, as produced by
            ``CTR.get_params()``.
        output_dir: Directory path where the bundle will be saved.
        model_filename: Filename of the bundle (default: "ctr_model.joblib").

    Returns:
        Path of the written bundle.

    Raises:
        OSError: If unable to create output directory or save files.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    model_path = output_path / model_filename
    joblib.dump(params, model_path)
    logger.info(f"Saved model to {model_path}")
    return model_path


def load_model_artifacts(
    model_dir: str,
    model_filename: str = MODEL_FILENAME,
) -> Dict[str, Any]:
    """Load a joblib bundle written by :func:`save_model_artifacts`.

    Raises:
        ModelNotFoundError: If the directory or bundle does not exist.
    """
    model_path = Path(model_dir) / model_filename
    if not model_path.exists():
        raise ModelNotFoundError(str(model_path))

    params = joblib.load(model_path)
    logger.info(f"Loaded model from {model_path}")
    return params


def check_model_exists(model_dir: str, model_filename: str = MODEL_FILENAME) -> bool:
    """Check if a saved model bundle exists."""
    return (Path(model_dir) / model_filename).exists()


def resolve_output_dir(*candidates: Optional[Path]) -> Optional[Path]:
    """First non-None directory among the candidates."""
    for candidate in candidates:
        if candidate is not None:
            return Path(candidate)
    return None
