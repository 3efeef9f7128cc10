"""
Shared infrastructure: errors, logging and metrics.
"""
from .errors import (
    EncMatrixError,
    ValidationError,
    KeyStateError,
    KeyConflictError,
    DeserializationError,
    EvaluationError,
    TransportError,
)

__all__ = [
    "EncMatrixError",
    "ValidationError",
    "KeyStateError",
    "KeyConflictError",
    "DeserializationError",
    "EvaluationError",
    "TransportError",
]
