"""
Client side: key ownership, encoding and the evaluator protocol.
"""
from .client import ALL_KEY_KINDS, MatrixClient, generate_session_id

__all__ = ["ALL_KEY_KINDS", "MatrixClient", "generate_session_id"]
