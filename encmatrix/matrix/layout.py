"""
Packing geometry of a matrix inside a batched slot vector.

Both the client and the evaluator derive the layout from the declared matrix
dimension alone, so they always agree on where each element lives.
"""
from dataclasses import dataclass

from ..common.errors import ValidationError


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n; 0 maps to 0."""
    if n < 0:
        raise ValueError("n must be non-negative")
    if n == 0:
        return 0
    return 1 << (n - 1).bit_length()


def is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


@dataclass(frozen=True)
class SlotLayout:
    slot_count: int
    batch_half_size: int
    padded_dimension: int
    element_separation: int


def compute_layout(slot_count: int, dimension: int) -> SlotLayout:
    """Layout for a matrix whose relevant dimension is ``dimension``.

    The relevant dimension is the row count for row-major encodings and the
    column count for row and diagonal encodings.
    """
    if dimension < 1:
        raise ValidationError("Matrix dimension must be at least 1",
                              details={"dimension": dimension})
    batch_half_size = slot_count // 2
    padded_dimension = next_power_of_two(dimension)
    if padded_dimension > batch_half_size:
        raise ValidationError(
            f"Dimension {dimension} does not fit in {batch_half_size} slots per batch half",
            details={"dimension": dimension, "slot_count": slot_count}
        )
    return SlotLayout(
        slot_count=slot_count,
        batch_half_size=batch_half_size,
        padded_dimension=padded_dimension,
        element_separation=batch_half_size // padded_dimension,
    )
