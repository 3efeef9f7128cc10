"""
Wire framing for ciphertexts and ciphertext sequences.

Sequences are length-prefixed by default:

    b"ECS1" | uint32 count | (uint64 length | item bytes) * count

The legacy form concatenates serialized items back to back without a count.
It is split by reading the total size each item records in its own
serialization header, so trailing garbage is rejected instead of silently
ending the sequence.
"""
import base64
import binascii
import struct
from typing import Any, List, Sequence

from ..common.errors import DeserializationError
from ..scheme.base import BatchedScheme, KeyKind

FRAMING_LENGTH_PREFIXED = "length-prefixed"
FRAMING_CONCATENATED = "concatenated"
FRAMINGS = (FRAMING_LENGTH_PREFIXED, FRAMING_CONCATENATED)

_SEQUENCE_MAGIC = b"ECS1"
_SEQUENCE_HEADER = struct.Struct("<4sI")
_ITEM_LENGTH = struct.Struct("<Q")


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DeserializationError(f"Invalid base64 payload: {e}") from e


def pack_sequence(items: Sequence[bytes]) -> bytes:
    parts = [_SEQUENCE_HEADER.pack(_SEQUENCE_MAGIC, len(items))]
    for item in items:
        parts.append(_ITEM_LENGTH.pack(len(item)))
        parts.append(item)
    return b"".join(parts)


def unpack_sequence(data: bytes) -> List[bytes]:
    if len(data) < _SEQUENCE_HEADER.size:
        raise DeserializationError("Sequence payload too small for its header")
    magic, count = _SEQUENCE_HEADER.unpack_from(data, 0)
    if magic != _SEQUENCE_MAGIC:
        raise DeserializationError("Invalid sequence MAGIC")

    offset = _SEQUENCE_HEADER.size
    items = []
    for i in range(count):
        if len(data) - offset < _ITEM_LENGTH.size:
            raise DeserializationError(f"Sequence truncated before item {i}")
        (length,) = _ITEM_LENGTH.unpack_from(data, offset)
        offset += _ITEM_LENGTH.size
        if len(data) - offset < length:
            raise DeserializationError(f"Sequence item {i} is truncated")
        items.append(data[offset:offset + length])
        offset += length
    if offset != len(data):
        raise DeserializationError(f"{len(data) - offset} trailing bytes after sequence")
    return items


def pack_concatenated(items: Sequence[bytes]) -> bytes:
    return b"".join(items)


def unpack_concatenated(data: bytes, scheme: BatchedScheme) -> List[bytes]:
    items = []
    offset = 0
    while offset < len(data):
        try:
            length = scheme.serialized_length(data, offset)
        except ValueError as e:
            raise DeserializationError(f"Invalid object at byte {offset}: {e}") from e
        items.append(data[offset:offset + length])
        offset += length
    return items


# Ciphertext helpers
def ciphertext_to_base64(scheme: BatchedScheme, ciphertext: Any) -> str:
    return b64encode(scheme.save_ciphertext(ciphertext))


def base64_to_ciphertext(scheme: BatchedScheme, text: str) -> Any:
    data = b64decode(text)
    try:
        return scheme.load_ciphertext(data)
    except (ValueError, RuntimeError) as e:
        raise DeserializationError(f"Error loading ciphertext: {e}") from e


def ciphertexts_to_base64(scheme: BatchedScheme, ciphertexts: Sequence[Any],
                          framing: str = FRAMING_LENGTH_PREFIXED) -> str:
    items = [scheme.save_ciphertext(c) for c in ciphertexts]
    if framing == FRAMING_LENGTH_PREFIXED:
        return b64encode(pack_sequence(items))
    if framing == FRAMING_CONCATENATED:
        return b64encode(pack_concatenated(items))
    raise ValueError(f"Unknown framing '{framing}'")


def base64_to_ciphertexts(scheme: BatchedScheme, text: str,
                          framing: str = FRAMING_LENGTH_PREFIXED) -> List[Any]:
    data = b64decode(text)
    if framing == FRAMING_LENGTH_PREFIXED:
        items = unpack_sequence(data)
    elif framing == FRAMING_CONCATENATED:
        items = unpack_concatenated(data, scheme)
    else:
        raise DeserializationError(f"Unknown framing '{framing}'")

    ciphertexts = []
    for i, item in enumerate(items):
        try:
            ciphertexts.append(scheme.load_ciphertext(item))
        except (ValueError, RuntimeError) as e:
            raise DeserializationError(f"Error loading ciphertext {i}: {e}") from e
    return ciphertexts


def key_to_base64(scheme: BatchedScheme, key: Any) -> str:
    return b64encode(scheme.save_key(key))


def base64_to_key(scheme: BatchedScheme, kind: KeyKind, text: str) -> Any:
    data = b64decode(text)
    try:
        return scheme.load_key(kind, data)
    except (ValueError, RuntimeError) as e:
        raise DeserializationError(f"Error loading {kind.value}: {e}") from e
