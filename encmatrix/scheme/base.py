"""
Interface of the batched homomorphic scheme consumed by the matrix layer.

The matrix codec, the diagonal product engine and the evaluator only talk to
a scheme through this surface, so the SEAL backend and the in-memory slot
simulator are interchangeable.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, List, Optional, Sequence


class KeyKind(str, Enum):
    """Auxiliary evaluation key kinds; values are the wire names."""
    RELIN_KEYS = "RelinKeys"
    GALOIS_KEYS = "GaloisKeys"


class BatchedScheme(ABC):
    """A batched scheme packing ``slot_count`` integers into one ciphertext.

    Slots are arranged as two batch halves of ``slot_count // 2`` slots.
    ``rotate_rows`` cyclically rotates both halves left by ``steps``,
    ``rotate_columns`` swaps the two halves.
    """

    name = "abstract"

    @property
    @abstractmethod
    def slot_count(self) -> int:
        ...

    @property
    def batch_half_size(self) -> int:
        return self.slot_count // 2

    @property
    @abstractmethod
    def plain_modulus(self) -> int:
        ...

    @property
    def has_secret_key(self) -> bool:
        return False

    # Encoding
    @abstractmethod
    def encode(self, values: Sequence[int]) -> Any:
        ...

    @abstractmethod
    def decode(self, plaintext: Any) -> List[int]:
        ...

    # Client-side primitives
    @abstractmethod
    def encrypt(self, plaintext: Any) -> Any:
        ...

    @abstractmethod
    def decrypt(self, ciphertext: Any) -> Any:
        ...

    def noise_budget(self, ciphertext: Any) -> Optional[int]:
        """Remaining invariant noise budget in bits, when the backend knows it."""
        return None

    @abstractmethod
    def relin_keys(self) -> Any:
        ...

    @abstractmethod
    def galois_keys(self) -> Any:
        ...

    # Evaluation
    @abstractmethod
    def add(self, a: Any, b: Any) -> Any:
        ...

    @abstractmethod
    def sub(self, a: Any, b: Any) -> Any:
        ...

    @abstractmethod
    def multiply(self, a: Any, b: Any) -> Any:
        ...

    @abstractmethod
    def relinearize(self, ciphertext: Any, relin_keys: Any) -> Any:
        ...

    @abstractmethod
    def rotate_rows(self, ciphertext: Any, steps: int, galois_keys: Any) -> Any:
        ...

    @abstractmethod
    def rotate_columns(self, ciphertext: Any, galois_keys: Any) -> Any:
        ...

    @abstractmethod
    def mod_switch_to_smallest(self, ciphertext: Any) -> Any:
        ...

    # Serialization
    @abstractmethod
    def save_ciphertext(self, ciphertext: Any) -> bytes:
        ...

    @abstractmethod
    def load_ciphertext(self, data: bytes) -> Any:
        ...

    @abstractmethod
    def save_key(self, key: Any) -> bytes:
        ...

    @abstractmethod
    def load_key(self, kind: KeyKind, data: bytes) -> Any:
        ...

    @abstractmethod
    def serialized_length(self, data: bytes, offset: int = 0) -> int:
        """Total length of the serialized object starting at ``offset``.

        Raises ValueError when no valid object header starts there.
        """
        ...

    def describe(self) -> dict:
        return {
            "backend": self.name,
            "slot_count": self.slot_count,
            "plain_modulus": self.plain_modulus,
        }
