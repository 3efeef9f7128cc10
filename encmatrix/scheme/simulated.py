"""
In-memory model of a batched BFV scheme.

Ciphertexts hold their slot vector in the clear. The model reproduces the
parts of the real scheme the matrix layer depends on: arithmetic modulo the
plain modulus, the two-row slot geometry with cyclic row rotation and row
swap, ciphertext size growth after multiplication (rotations and further
multiplications need relinearized, size 2 operands), modulus levels and key
ownership. It performs no encryption and is meant for development and tests.
"""
import secrets
import struct
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from .base import BatchedScheme, KeyKind

_MAGIC = b"SIMB"
_VERSION = 1
# magic, version, object type, ciphertext size, level, key id, total length
_HEADER = struct.Struct("<4sBBBB16sQ")

_OBJ_CIPHERTEXT = 0
_OBJ_KEY_TYPES = {KeyKind.RELIN_KEYS: 1, KeyKind.GALOIS_KEYS: 2}
_MAX_LEVEL = 2


@dataclass
class SimulatedPlaintext:
    slots: np.ndarray


@dataclass
class SimulatedCiphertext:
    slots: np.ndarray
    key_id: bytes
    size: int = 2
    level: int = 0


@dataclass(frozen=True)
class SimulatedKey:
    kind: KeyKind
    key_id: bytes


class SimulatedBatchedScheme(BatchedScheme):
    """Slot-accurate stand-in for the SEAL backend."""

    name = "simulated"

    def __init__(self, poly_modulus_degree: int = 4096, plain_modulus: int = (1 << 13) * 119 + 1,
                 generate_keys: bool = True):
        if poly_modulus_degree < 2 or poly_modulus_degree & (poly_modulus_degree - 1):
            raise ValueError("poly_modulus_degree must be a power of two")
        if plain_modulus % (2 * poly_modulus_degree) != 1:
            raise ValueError("plain_modulus must be congruent to 1 mod 2 * poly_modulus_degree")
        self._slot_count = poly_modulus_degree
        self._plain_modulus = plain_modulus
        self._key_id = secrets.token_bytes(16) if generate_keys else None

    @property
    def slot_count(self) -> int:
        return self._slot_count

    @property
    def plain_modulus(self) -> int:
        return self._plain_modulus

    @property
    def has_secret_key(self) -> bool:
        return self._key_id is not None

    def _require_secret(self) -> bytes:
        if self._key_id is None:
            raise ValueError("scheme was created without keys")
        return self._key_id

    # Encoding
    def encode(self, values: Sequence[int]) -> SimulatedPlaintext:
        values = np.asarray(values, dtype=np.int64)
        if values.ndim != 1 or len(values) > self._slot_count:
            raise ValueError(f"expected at most {self._slot_count} values")
        slots = np.zeros(self._slot_count, dtype=np.int64)
        slots[:len(values)] = np.mod(values, self._plain_modulus)
        return SimulatedPlaintext(slots)

    def decode(self, plaintext: SimulatedPlaintext) -> List[int]:
        slots = plaintext.slots.copy()
        slots[slots > self._plain_modulus // 2] -= self._plain_modulus
        return slots.tolist()

    def encrypt(self, plaintext: SimulatedPlaintext) -> SimulatedCiphertext:
        return SimulatedCiphertext(plaintext.slots.copy(), self._require_secret())

    def decrypt(self, ciphertext: SimulatedCiphertext) -> SimulatedPlaintext:
        if ciphertext.key_id != self._require_secret():
            raise ValueError("ciphertext was encrypted under a different key")
        return SimulatedPlaintext(ciphertext.slots.copy())

    def relin_keys(self) -> SimulatedKey:
        return SimulatedKey(KeyKind.RELIN_KEYS, self._require_secret())

    def galois_keys(self) -> SimulatedKey:
        return SimulatedKey(KeyKind.GALOIS_KEYS, self._require_secret())

    # Evaluation
    def _check_pair(self, a: SimulatedCiphertext, b: SimulatedCiphertext):
        if a.key_id != b.key_id:
            raise ValueError("ciphertexts were encrypted under different keys")
        if a.level != b.level:
            raise ValueError("ciphertexts are at different modulus levels")

    def _check_key(self, ciphertext: SimulatedCiphertext, key: SimulatedKey, kind: KeyKind):
        if not isinstance(key, SimulatedKey) or key.kind != kind:
            raise ValueError(f"{kind.value} required")
        if key.key_id != ciphertext.key_id:
            raise ValueError(f"{kind.value} do not match the ciphertext")

    def add(self, a, b):
        self._check_pair(a, b)
        return SimulatedCiphertext(np.mod(a.slots + b.slots, self._plain_modulus),
                                   a.key_id, max(a.size, b.size), a.level)

    def sub(self, a, b):
        self._check_pair(a, b)
        return SimulatedCiphertext(np.mod(a.slots - b.slots, self._plain_modulus),
                                   a.key_id, max(a.size, b.size), a.level)

    def multiply(self, a, b):
        self._check_pair(a, b)
        if a.level == _MAX_LEVEL:
            raise ValueError("no modulus left for multiplication")
        return SimulatedCiphertext(np.mod(a.slots * b.slots, self._plain_modulus),
                                   a.key_id, a.size + b.size - 1, a.level)

    def relinearize(self, ciphertext, relin_keys):
        self._check_key(ciphertext, relin_keys, KeyKind.RELIN_KEYS)
        return SimulatedCiphertext(ciphertext.slots.copy(), ciphertext.key_id, 2, ciphertext.level)

    def rotate_rows(self, ciphertext, steps, galois_keys):
        self._check_key(ciphertext, galois_keys, KeyKind.GALOIS_KEYS)
        if ciphertext.size != 2:
            raise ValueError("ciphertext must be relinearized before rotation")
        half = self.batch_half_size
        if not -half < steps < half:
            raise ValueError(f"rotation step {steps} out of range")
        halves = ciphertext.slots.reshape(2, half)
        rotated = np.roll(halves, -steps, axis=1).reshape(-1)
        return SimulatedCiphertext(rotated, ciphertext.key_id, 2, ciphertext.level)

    def rotate_columns(self, ciphertext, galois_keys):
        self._check_key(ciphertext, galois_keys, KeyKind.GALOIS_KEYS)
        if ciphertext.size != 2:
            raise ValueError("ciphertext must be relinearized before rotation")
        half = self.batch_half_size
        swapped = ciphertext.slots.reshape(2, half)[::-1].reshape(-1)
        return SimulatedCiphertext(swapped.copy(), ciphertext.key_id, 2, ciphertext.level)

    def mod_switch_to_smallest(self, ciphertext):
        return SimulatedCiphertext(ciphertext.slots.copy(), ciphertext.key_id, ciphertext.size, _MAX_LEVEL)

    # Serialization
    def save_ciphertext(self, ciphertext: SimulatedCiphertext) -> bytes:
        payload = ciphertext.slots.astype("<i8").tobytes()
        header = _HEADER.pack(_MAGIC, _VERSION, _OBJ_CIPHERTEXT, ciphertext.size, ciphertext.level,
                              ciphertext.key_id, _HEADER.size + len(payload))
        return header + payload

    def _read_header(self, data: bytes, offset: int = 0):
        if len(data) - offset < _HEADER.size:
            raise ValueError("buffer too small for an object header")
        magic, version, obj_type, size, level, key_id, total = _HEADER.unpack_from(data, offset)
        if magic != _MAGIC or version != _VERSION:
            raise ValueError("invalid object header")
        if total < _HEADER.size or offset + total > len(data):
            raise ValueError("object length exceeds buffer")
        return obj_type, size, level, key_id, total

    def load_ciphertext(self, data: bytes) -> SimulatedCiphertext:
        obj_type, size, level, key_id, total = self._read_header(data)
        if obj_type != _OBJ_CIPHERTEXT:
            raise ValueError("object is not a ciphertext")
        if total != len(data) or total - _HEADER.size != self._slot_count * 8:
            raise ValueError("ciphertext does not match the parameter set")
        if size < 2 or level > _MAX_LEVEL:
            raise ValueError("invalid ciphertext metadata")
        slots = np.frombuffer(data, dtype="<i8", offset=_HEADER.size).astype(np.int64)
        if np.any(slots < 0) or np.any(slots >= self._plain_modulus):
            raise ValueError("ciphertext slots out of range")
        return SimulatedCiphertext(slots, key_id, size, level)

    def save_key(self, key: SimulatedKey) -> bytes:
        return _HEADER.pack(_MAGIC, _VERSION, _OBJ_KEY_TYPES[key.kind], 0, 0, key.key_id, _HEADER.size)

    def load_key(self, kind: KeyKind, data: bytes) -> SimulatedKey:
        obj_type, _, _, key_id, total = self._read_header(data)
        if obj_type != _OBJ_KEY_TYPES[kind] or total != len(data):
            raise ValueError(f"payload is not {kind.value}")
        return SimulatedKey(kind, key_id)

    def serialized_length(self, data: bytes, offset: int = 0) -> int:
        return self._read_header(data, offset)[-1]
