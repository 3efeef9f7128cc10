"""
BFV batched scheme backed by Microsoft SEAL through TenSEAL's low-level API (sealapi).

The client instance owns the secret key and produces the relinearization and
Galois keys that are uploaded to the evaluator. The evaluator instance is made
public right after creation, so it only holds the parameter context it needs
to load and evaluate ciphertexts.
"""
import logging
import os
import struct
import tempfile
import uuid
from typing import Any, List, Sequence

import tenseal as ts
import tenseal.sealapi as sealapi

from .base import BatchedScheme, KeyKind

logger = logging.getLogger(__name__)

# SEALHeader: magic, header size, version major, version minor, compression mode,
# reserved, total size in bytes (header included)
_SEAL_HEADER = struct.Struct("<HBBBBHQ")
_SEAL_MAGIC = 0xA15E


def _get_seal_temp_path() -> str:
    """Get a temp file path for SEAL serialization.

    Uses /dev/shm on Linux (RAM-based tmpfs), falls back to the regular
    temp directory elsewhere.
    """
    shm_dir = "/dev/shm"
    if os.path.isdir(shm_dir) and os.access(shm_dir, os.W_OK):
        return os.path.join(shm_dir, f"encmatrix_{uuid.uuid4().hex}.bin")
    return os.path.join(tempfile.gettempdir(), f"encmatrix_{uuid.uuid4().hex}.bin")


def _save_to_bytes(obj: Any) -> bytes:
    # sealapi objects only serialize to a file path
    fname = _get_seal_temp_path()
    try:
        obj.save(fname)
        with open(fname, "rb") as f:
            return f.read()
    finally:
        if os.path.exists(fname):
            os.unlink(fname)


def _load_from_bytes(obj: Any, cpp_ctx: Any, data: bytes) -> Any:
    fname = _get_seal_temp_path()
    try:
        with open(fname, "wb") as f:
            f.write(data)
        obj.load(cpp_ctx, fname)
        return obj
    finally:
        if os.path.exists(fname):
            os.unlink(fname)


class SealBatchedScheme(BatchedScheme):
    """BFV scheme with batching over a fixed SEAL parameter context."""

    name = "seal"

    def __init__(self, poly_modulus_degree: int = 4096, plain_modulus: int = (1 << 13) * 119 + 1,
                 generate_keys: bool = True):
        self._poly_modulus_degree = poly_modulus_degree
        self._plain_modulus = plain_modulus

        ts_ctx = ts.context(
            ts.SCHEME_TYPE.BFV,
            poly_modulus_degree=poly_modulus_degree,
            plain_modulus=plain_modulus,
        )
        if generate_keys:
            ts_ctx.generate_galois_keys()
            ts_ctx.generate_relin_keys()
        else:
            ts_ctx.make_context_public()
        self.ts_ctx = ts_ctx

        self.cpp_ctx = ts_ctx.seal_context().data
        self.evaluator = sealapi.Evaluator(self.cpp_ctx)
        self.batch_encoder = sealapi.BatchEncoder(self.cpp_ctx)

        self._secret = generate_keys
        if generate_keys:
            self.encryptor = sealapi.Encryptor(self.cpp_ctx, ts_ctx.public_key().data)
            self.decryptor = sealapi.Decryptor(self.cpp_ctx, ts_ctx.secret_key().data)
            self._relin_keys = ts_ctx.relin_keys().data
            self._galois_keys = ts_ctx.galois_keys().data

        logger.debug("Created SEAL BFV context (n=%d, t=%d, keys=%s)",
                     poly_modulus_degree, plain_modulus, generate_keys)

    @property
    def slot_count(self) -> int:
        return self.batch_encoder.slot_count()

    @property
    def plain_modulus(self) -> int:
        return self._plain_modulus

    @property
    def has_secret_key(self) -> bool:
        return self._secret

    def _require_secret(self):
        if not self._secret:
            raise ValueError("scheme was created without keys")

    # Encoding
    def encode(self, values: Sequence[int]) -> Any:
        plain = sealapi.Plaintext()
        self.batch_encoder.encode([int(v) for v in values], plain)
        return plain

    def decode(self, plaintext: Any) -> List[int]:
        return list(self.batch_encoder.decode_int64(plaintext))

    def encrypt(self, plaintext: Any) -> Any:
        self._require_secret()
        cipher = sealapi.Ciphertext()
        self.encryptor.encrypt(plaintext, cipher)
        return cipher

    def decrypt(self, ciphertext: Any) -> Any:
        self._require_secret()
        plain = sealapi.Plaintext()
        self.decryptor.decrypt(ciphertext, plain)
        return plain

    def noise_budget(self, ciphertext: Any) -> int:
        self._require_secret()
        return self.decryptor.invariant_noise_budget(ciphertext)

    def relin_keys(self) -> Any:
        self._require_secret()
        return self._relin_keys

    def galois_keys(self) -> Any:
        self._require_secret()
        return self._galois_keys

    # Evaluation
    def add(self, a, b):
        result = sealapi.Ciphertext()
        self.evaluator.add(a, b, result)
        return result

    def sub(self, a, b):
        result = sealapi.Ciphertext()
        self.evaluator.sub(a, b, result)
        return result

    def multiply(self, a, b):
        result = sealapi.Ciphertext()
        self.evaluator.multiply(a, b, result)
        return result

    def relinearize(self, ciphertext, relin_keys):
        result = sealapi.Ciphertext()
        self.evaluator.relinearize(ciphertext, relin_keys, result)
        return result

    def rotate_rows(self, ciphertext, steps, galois_keys):
        result = sealapi.Ciphertext()
        self.evaluator.rotate_rows(ciphertext, steps, galois_keys, result)
        return result

    def rotate_columns(self, ciphertext, galois_keys):
        result = sealapi.Ciphertext()
        self.evaluator.rotate_columns(ciphertext, galois_keys, result)
        return result

    def mod_switch_to_smallest(self, ciphertext):
        self.evaluator.mod_switch_to_inplace(ciphertext, self.cpp_ctx.last_parms_id())
        return ciphertext

    # Serialization
    def save_ciphertext(self, ciphertext: Any) -> bytes:
        return _save_to_bytes(ciphertext)

    def load_ciphertext(self, data: bytes) -> Any:
        if self.serialized_length(data) != len(data):
            raise ValueError("trailing bytes after ciphertext")
        return _load_from_bytes(sealapi.Ciphertext(), self.cpp_ctx, data)

    def save_key(self, key: Any) -> bytes:
        return _save_to_bytes(key)

    def load_key(self, kind: KeyKind, data: bytes) -> Any:
        if self.serialized_length(data) != len(data):
            raise ValueError(f"trailing bytes after {kind.value}")
        key = sealapi.RelinKeys() if kind == KeyKind.RELIN_KEYS else sealapi.GaloisKeys()
        key = _load_from_bytes(key, self.cpp_ctx, data)
        self._check_key_kind(kind, key)
        return key

    def _check_key_kind(self, kind: KeyKind, key: Any):
        # RelinKeys and GaloisKeys share one serialized layout, so the kind has
        # to be checked from the slots that are actually populated
        if kind == KeyKind.RELIN_KEYS:
            if key.size() != 1 or not key.has_key(2):
                raise ValueError("payload is not a RelinKeys object")
        elif key.size() <= 1 or not key.has_key(2 * self._poly_modulus_degree - 1):
            raise ValueError("payload is not a GaloisKeys object")

    def serialized_length(self, data: bytes, offset: int = 0) -> int:
        if len(data) - offset < _SEAL_HEADER.size:
            raise ValueError("buffer too small for a SEAL header")
        magic, header_size, _, _, _, _, size = _SEAL_HEADER.unpack_from(data, offset)
        if magic != _SEAL_MAGIC or header_size != _SEAL_HEADER.size:
            raise ValueError("invalid SEAL header")
        if size < _SEAL_HEADER.size or offset + size > len(data):
            raise ValueError("SEAL object length exceeds buffer")
        return size

    def describe(self) -> dict:
        info = super().describe()
        info["poly_modulus_degree"] = self._poly_modulus_degree
        return info
