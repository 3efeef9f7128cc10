"""
Request and response models for the evaluator endpoints.

Field names follow the wire format (``matrixa``, ``matrixb``, ``sid``, ``type``).
Ciphertext and key fields carry base64 text; decoding happens in the service so
malformed payloads are reported as deserialization errors.
"""
import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..matrix.framing import FRAMING_LENGTH_PREFIXED, FRAMINGS
from ..scheme.base import KeyKind

SID_MAX_LENGTH = 256
_BASE64_CHARS = re.compile(r"^[A-Za-z0-9+/=]+$")


def _check_sid(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("sid cannot be empty")
    if len(v) > SID_MAX_LENGTH:
        raise ValueError(f"sid longer than {SID_MAX_LENGTH} characters")
    return v


def _check_payload(v: str, field_name: str) -> str:
    if not v:
        raise ValueError(f"{field_name}: payload cannot be empty")
    if not _BASE64_CHARS.match(v):
        raise ValueError(f"{field_name}: payload is not base64 text")
    return v


# ==============================================================================
# Requests
# ==============================================================================

class MatrixPairRequest(BaseModel):
    """Two ciphertext operands; addition and subtraction need no session."""
    sid: Optional[str] = Field(None, description="Session id (ignored)")
    matrixa: str = Field(..., description="Base64 ciphertext of the first operand")
    matrixb: str = Field(..., description="Base64 ciphertext of the second operand")

    @field_validator('sid')
    @classmethod
    def validate_sid(cls, v):
        return _check_sid(v)

    @field_validator('matrixa', 'matrixb')
    @classmethod
    def validate_payload(cls, v, info):
        return _check_payload(v, info.field_name)


class SessionMatrixRequest(MatrixPairRequest):
    """Operands of an operation that needs the session's evaluation keys."""
    sid: str = Field(..., description="Session id owning the evaluation keys")


class MatrixProductRequest(SessionMatrixRequest):
    """Diagonal set of A in ``matrixa``, twisted encoding of B in ``matrixb``."""
    framing: str = Field(FRAMING_LENGTH_PREFIXED, description="Framing of the diagonal set")

    @field_validator('framing')
    @classmethod
    def validate_framing(cls, v):
        if v not in FRAMINGS:
            raise ValueError(f"Invalid framing '{v}'. Must be one of: {', '.join(FRAMINGS)}")
        return v


class KeyRequest(BaseModel):
    """Query or delete one auxiliary key of a session."""
    sid: str = Field(..., description="Session id")
    type: KeyKind = Field(..., description="RelinKeys or GaloisKeys")

    @field_validator('sid')
    @classmethod
    def validate_sid(cls, v):
        return _check_sid(v)


class KeyUploadRequest(KeyRequest):
    key: str = Field(..., description="Base64 serialized key")

    @field_validator('key')
    @classmethod
    def validate_key(cls, v, info):
        return _check_payload(v, info.field_name)


# ==============================================================================
# Responses
# ==============================================================================

class ResultResponse(BaseModel):
    result: str = Field(..., description="Base64 ciphertext of the result")


class SessionResultResponse(ResultResponse):
    sid: str


class KeyStatusResponse(BaseModel):
    sid: str
    type: KeyKind
    status: str


class ErrorResponse(BaseModel):
    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    backend: str
    slot_count: int
    plain_modulus: int
    sessions: int
    timestamp: str
