"""Tests for error types, model bundles and structured logging."""

import json
import logging
from pathlib import Path

import numpy as np
import pytest

from ctrec.exceptions import (
    CtrecException,
    InvalidIdError,
    ModelNotFoundError,
    StaleCacheError,
    TrainingStateError,
)
from ctrec.logging_config import JSONFormatter, setup_logging
from ctrec.recommender.hyperparams import CtrHyperparameter
from ctrec.recommender.utils import (
    check_model_exists,
    fold_suffix,
    load_model_artifacts,
    save_model_artifacts,
)


def test_exceptions_share_base_and_details():
    """Every domain error is a CtrecException carrying details."""
    errors = [
        InvalidIdError("user", 12, 10),
        TrainingStateError(2, "training"),
        StaleCacheError(1, 2),
        ModelNotFoundError("models/ctr_model.joblib"),
    ]
    for error in errors:
        assert isinstance(error, CtrecException)
        assert error.details
        assert str(error) == error.message


def test_invalid_id_error_message():
    error = InvalidIdError("item", 7, 4)
    assert "item id 7" in error.message
    assert error.details == {"entity": "item", "id": 7, "size": 4}


def test_model_not_found_error(tmp_path: Path):
    """Loading a missing bundle raises ModelNotFoundError."""
    with pytest.raises(ModelNotFoundError) as exc_info:
        load_model_artifacts(str(tmp_path / "non_existent_model_dir"))
    assert "Model not found" in exc_info.value.message
    assert not check_model_exists(str(tmp_path))


def test_model_bundle_round_trip(tmp_path: Path):
    params = {
        "hparam": CtrHyperparameter(topic_num=2, lambda_v=10.0),
        "user_factor": np.arange(4.0).reshape(2, 2),
    }

    path = save_model_artifacts(params, str(tmp_path / "models"))
    loaded = load_model_artifacts(str(tmp_path / "models"))

    assert path.exists()
    assert loaded["hparam"].lambda_v == 10.0
    np.testing.assert_array_equal(loaded["user_factor"], params["user_factor"])


def test_fold_suffix():
    assert fold_suffix(-1) == ""
    assert fold_suffix(0) == "0"
    assert fold_suffix(12) == "12"


def test_hyperparameter_validation(caplog):
    with pytest.raises(ValueError):
        CtrHyperparameter(topic_num=0)
    with pytest.raises(ValueError):
        CtrHyperparameter(topic_num=2).with_theta(np.ones(3))

    with caplog.at_level(logging.WARNING):
        CtrHyperparameter(topic_num=2, a=0.1, b=0.5)
    assert "should be smaller" in caplog.text


def test_hyperparameter_setters_return_new_instances():
    base = CtrHyperparameter(topic_num=2)
    tuned = base.with_lambda_u(0.5).with_confidence(2.0, 0.1)

    assert base.lambda_u != 0.5
    assert (tuned.lambda_u, tuned.a, tuned.b) == (0.5, 2.0, 0.1)


def test_supplied_theta_is_copied_read_only():
    theta = np.ones((3, 2))
    hparam = CtrHyperparameter(topic_num=2).with_theta(theta)

    theta[0, 0] = 5.0
    assert hparam.theta[0, 0] == 1.0
    with pytest.raises(ValueError):
        hparam.theta[0, 0] = 2.0


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("ctrec.test", logging.INFO, __file__, 1, "iter done", None, None)
    record.iteration = 3
    record.output = Path("models")

    data = json.loads(JSONFormatter().format(record))

    assert data["message"] == "iter done"
    assert data["level"] == "INFO"
    assert data["iteration"] == 3
    assert data["output"] == "models"


def test_setup_logging_json(capsys):
    setup_logging("INFO", json_format=True)
    try:
        logging.getLogger("ctrec.test").info("hello", extra={"model_id": 4})
        line = capsys.readouterr().out.strip().splitlines()[-1]
        data = json.loads(line)
        assert data["message"] == "hello"
        assert data["model_id"] == 4
    finally:
        logging.getLogger().handlers.clear()
        logging.getLogger().setLevel(logging.WARNING)
