"""
Evaluator service and its session key store.
"""
from .key_store import DeleteResult, InMemorySessionKeyStore, SessionKeyStore, UploadResult
from .service import create_app

__all__ = [
    "DeleteResult",
    "InMemorySessionKeyStore",
    "SessionKeyStore",
    "UploadResult",
    "create_app",
]
