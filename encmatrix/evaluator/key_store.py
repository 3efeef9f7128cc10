"""
Session-scoped storage for auxiliary evaluation keys.

The evaluator keeps at most one key per (session, kind). Every mutation is a
check-then-act performed under a single lock, so concurrent uploads of the
same key produce exactly one success.
"""
import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..scheme.base import KeyKind

logger = logging.getLogger(__name__)


class UploadResult(str, Enum):
    OK = "ok"
    CONFLICT = "conflict"


class DeleteResult(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"


class SessionKeyStore(ABC):
    """Mapping (sid, kind) -> key with linearizable per-entry mutations"""

    @abstractmethod
    def query(self, sid: str, kind: KeyKind) -> bool:
        ...

    @abstractmethod
    def upload(self, sid: str, kind: KeyKind, key: Any) -> UploadResult:
        ...

    @abstractmethod
    def delete(self, sid: str, kind: KeyKind) -> DeleteResult:
        ...

    @abstractmethod
    def get(self, sid: str, kind: KeyKind) -> Optional[Any]:
        ...

    @abstractmethod
    def session_count(self) -> int:
        ...

    def clear(self) -> None:
        """Drop every stored key."""


class InMemorySessionKeyStore(SessionKeyStore):
    """Thread-safe in-process key store"""

    def __init__(self):
        self._keys: Dict[Tuple[str, KeyKind], Any] = {}
        self._lock = threading.RLock()

    def query(self, sid: str, kind: KeyKind) -> bool:
        with self._lock:
            return (sid, kind) in self._keys

    def upload(self, sid: str, kind: KeyKind, key: Any) -> UploadResult:
        with self._lock:
            if (sid, kind) in self._keys:
                logger.info(f"{kind.value} already present for session {_short(sid)}")
                return UploadResult.CONFLICT
            self._keys[(sid, kind)] = key

        logger.info(f"Stored {kind.value} for session {_short(sid)}")
        return UploadResult.OK

    def delete(self, sid: str, kind: KeyKind) -> DeleteResult:
        with self._lock:
            if self._keys.pop((sid, kind), None) is None:
                return DeleteResult.NOT_FOUND

        logger.info(f"Deleted {kind.value} for session {_short(sid)}")
        return DeleteResult.OK

    def get(self, sid: str, kind: KeyKind) -> Optional[Any]:
        with self._lock:
            return self._keys.get((sid, kind))

    def session_count(self) -> int:
        with self._lock:
            return len({sid for sid, _ in self._keys})

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()


def _short(sid: str) -> str:
    """Log only a prefix of the session id."""
    return sid[:8] + "..."
