"""
Error taxonomy shared by the client and the evaluator.
Every error carries a machine readable code and optional details so the
evaluator can translate it into an HTTP response without inspecting messages.
"""
from typing import Any, Dict, Optional


class EncMatrixError(Exception):
    """Base class for all encmatrix errors."""
    code = "ENCMATRIX_ERROR"
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(EncMatrixError):
    """Input rejected before any encryption or evaluation is attempted."""
    code = "VALIDATION_ERROR"
    status_code = 400


class KeyStateError(ValidationError):
    """A required auxiliary key is absent for the session."""
    code = "KEY_NOT_FOUND"
    status_code = 404


class KeyConflictError(EncMatrixError):
    """The session already holds a key of the uploaded kind."""
    code = "KEY_CONFLICT"
    status_code = 409


class DeserializationError(EncMatrixError):
    """Malformed base64, framing, ciphertext or key payload."""
    code = "DESERIALIZATION_ERROR"
    status_code = 400


class EvaluationError(EncMatrixError):
    """The homomorphic backend refused an operation."""
    code = "EVALUATION_ERROR"
    status_code = 400


class TransportError(EncMatrixError):
    """Network failure or non-success HTTP status seen by the client."""
    code = "TRANSPORT_ERROR"
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status
