"""Custom exceptions for ctrec.

Defines specific exception types for better error handling and reporting.
"""

from typing import Any, Dict, Optional


class CtrecException(Exception):
    """Base exception for ctrec errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidIdError(CtrecException):
    """Raised when a user or item id is outside the model's range."""

    def __init__(self, entity: str, entity_id: int, size: int):
        message = (
            f"Invalid {entity} id {entity_id}: "
            f"expected an integer in [0, {size})"
        )
        super().__init__(
            message=message,
            details={"entity": entity, "id": entity_id, "size": size},
        )


class TrainingStateError(CtrecException):
    """Raised when train() is entered while the model is already training."""

    def __init__(self, model_id: int, state: str):
        message = (
            f"Model {model_id} is in state '{state}'; "
            "train() is not re-entrant"
        )
        super().__init__(
            message=message,
            details={"model_id": model_id, "state": state},
        )


class StaleCacheError(CtrecException):
    """Raised when a scorer is used after its model has been retrained."""

    def __init__(self, built_version: int, current_version: int):
        message = (
            "Recommendation scorer was built for model version "
            f"{built_version} but the model is at version {current_version}. "
            "Build a new scorer after training."
        )
        super().__init__(
            message=message,
            details={
                "built_version": built_version,
                "current_version": current_version,
            },
        )


class ModelNotFoundError(CtrecException):
    """Raised when saved model artifacts cannot be found."""

    def __init__(self, model_path: str, details: Optional[Dict[str, Any]] = None):
        message = f"Model not found at '{model_path}'. Please train a model first."
        super().__init__(
            message=message,
            details=details or {"model_path": model_path},
        )
