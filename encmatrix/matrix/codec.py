"""
Matrix encodings for the batched slot vector.

Row-major layout: element (r, c) of a matrix lives at slot
``r * element_separation + c`` where the layout is derived from the row count.
The twisted variant adds a copy of the matrix to the second batch half, shifted
by one row, which is what the diagonal product engine folds back in at the end.
"""
import logging
from typing import Any, List, Sequence

import numpy as np

from ..common.errors import ValidationError
from ..scheme.base import BatchedScheme
from .layout import SlotLayout, compute_layout

logger = logging.getLogger(__name__)

VALUE_MIN = -128
VALUE_MAX = 127

# Errors the scheme bindings raise for values they cannot encode or encrypt
_SCHEME_ERRORS = (ValueError, RuntimeError, TypeError, OverflowError)


def as_matrix(values: Any, value_min: int = VALUE_MIN, value_max: int = VALUE_MAX) -> np.ndarray:
    """Validate ``values`` and return it as a fresh 2-D int64 array."""
    try:
        matrix = np.array(values)
    except ValueError as e:
        raise ValidationError(f"Matrix is not rectangular: {e}") from e

    if matrix.ndim != 2:
        raise ValidationError(f"Matrix must be 2-dimensional, got {matrix.ndim} dimension(s)")
    if matrix.shape[0] < 1 or matrix.shape[1] < 1:
        raise ValidationError("Matrix must have at least one row and one column",
                              details={"shape": list(matrix.shape)})
    if matrix.dtype.kind == "f":
        if not np.all(np.isfinite(matrix)) or not np.all(np.equal(np.mod(matrix, 1), 0)):
            raise ValidationError("Matrix values must be integers")
    elif matrix.dtype.kind not in "iu":
        raise ValidationError(f"Matrix values must be integers, got {matrix.dtype}")

    matrix = matrix.astype(np.int64)
    out_of_range = np.argwhere((matrix < value_min) | (matrix > value_max))
    if len(out_of_range):
        r, c = (int(i) for i in out_of_range[0])
        raise ValidationError(
            f"Value {int(matrix[r, c])} at position [{r}][{c}] is outside [{value_min}, {value_max}]",
            details={"row": r, "col": c}
        )
    return matrix


def transpose(matrix: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(np.asarray(matrix).T)


def format_matrix(matrix: Any) -> str:
    """Render a matrix as comma separated rows, one per line."""
    return "".join(", ".join(str(int(v)) for v in row) + "\n" for row in np.asarray(matrix))


class MatrixCodec:
    """Encode matrices into the scheme's batched layout and decode results back."""

    def __init__(self, scheme: BatchedScheme, value_min: int = VALUE_MIN, value_max: int = VALUE_MAX):
        self.scheme = scheme
        self.value_min = value_min
        self.value_max = value_max

    def layout(self, dimension: int) -> SlotLayout:
        return compute_layout(self.scheme.slot_count, dimension)

    def validate(self, matrix: Any) -> np.ndarray:
        return as_matrix(matrix, self.value_min, self.value_max)

    def _encrypt_slots(self, slots: Sequence[int]) -> Any:
        try:
            return self.scheme.encrypt(self.scheme.encode(slots))
        except _SCHEME_ERRORS as e:
            raise ValidationError(f"Scheme rejected the encoded values: {e}") from e

    def _row_major_layout(self, matrix: np.ndarray) -> SlotLayout:
        rows, cols = matrix.shape
        layout = self.layout(rows)
        if cols > layout.element_separation:
            raise ValidationError(
                f"{cols} columns do not fit the element separation {layout.element_separation}",
                details={"shape": [rows, cols]}
            )
        return layout

    # Plaintext-only path
    def matrix_to_slots(self, matrix: Any) -> List[int]:
        matrix = self.validate(matrix)
        layout = self._row_major_layout(matrix)
        slots = np.zeros(layout.slot_count, dtype=np.int64)
        for r, row in enumerate(matrix):
            start = r * layout.element_separation
            slots[start:start + len(row)] = row
        return slots.tolist()

    def slots_to_matrix(self, slots: Sequence[int], rows: int, cols: int) -> np.ndarray:
        layout = self.layout(rows)
        if cols < 1 or cols > layout.element_separation:
            raise ValidationError(f"Cannot decode {cols} columns with element separation "
                                  f"{layout.element_separation}")
        slots = np.asarray(slots, dtype=np.int64)
        result = np.zeros((rows, cols), dtype=np.int64)
        for r in range(rows):
            start = r * layout.element_separation
            result[r] = slots[start:start + cols]
        return result

    # Encrypted encodings
    def matrix_to_ciphertext(self, matrix: Any) -> Any:
        return self._encrypt_slots(self.matrix_to_slots(matrix))

    def matrix_to_twisted_ciphertext(self, matrix: Any) -> Any:
        """Row-major matrix in the first batch half, rotated duplicate in the second."""
        matrix = self.validate(matrix)
        layout = self._row_major_layout(matrix)
        half = layout.batch_half_size
        sep = layout.element_separation

        slots = np.zeros(layout.slot_count, dtype=np.int64)
        for r, row in enumerate(matrix):
            start = r * sep
            slots[start:start + len(row)] = row
            # Row r of the duplicate sits one row earlier, wrapping around the half
            twisted = half + ((half + (r - 1) * sep) % half)
            slots[twisted:twisted + len(row)] = row
        return self._encrypt_slots(slots.tolist())

    def _check_replication(self, replication: int, layout: SlotLayout):
        if replication < 0 or replication > layout.element_separation:
            raise ValidationError(
                f"Replication count {replication} out of range [0, {layout.element_separation}]",
                details={"replication": replication}
            )

    def row_to_ciphertext(self, matrix: Any, row: int, replication: int) -> Any:
        """One row in the first batch half, each value repeated ``replication`` times."""
        matrix = self.validate(matrix)
        rows, cols = matrix.shape
        if not 0 <= row < rows:
            raise ValidationError(f"Row {row} out of range for {rows} rows")
        layout = self.layout(cols)
        self._check_replication(replication, layout)

        slots = np.zeros(layout.slot_count, dtype=np.int64)
        for c in range(cols):
            start = layout.element_separation * c
            slots[start:start + replication] = matrix[row, c]
        return self._encrypt_slots(slots.tolist())

    def rows_to_ciphertexts(self, matrix: Any, replication: int) -> List[Any]:
        """Pack rows two per ciphertext, one per batch half, in row order."""
        matrix = self.validate(matrix)
        rows, cols = matrix.shape
        layout = self.layout(cols)
        self._check_replication(replication, layout)
        half = layout.batch_half_size

        ciphertexts = []
        for first in range(0, rows, 2):
            slots = np.zeros(layout.slot_count, dtype=np.int64)
            for batch_row, r in enumerate(range(first, min(first + 2, rows))):
                for c in range(cols):
                    start = batch_row * half + layout.element_separation * c
                    slots[start:start + replication] = matrix[r, c]
            ciphertexts.append(self._encrypt_slots(slots.tolist()))
        return ciphertexts

    def inverted_column_to_ciphertext(self, matrix: Any, col: int) -> Any:
        """Column ``col`` with one value per row at ``element_separation * r``."""
        matrix = self.validate(matrix)
        rows, cols = matrix.shape
        if not 0 <= col < cols:
            raise ValidationError(f"Column {col} out of range for {cols} columns")
        layout = self.layout(rows)

        slots = np.zeros(layout.slot_count, dtype=np.int64)
        slots[0:rows * layout.element_separation:layout.element_separation] = matrix[:, col]
        return self._encrypt_slots(slots.tolist())

    # Decoding
    def plaintext_to_matrix(self, plaintext: Any, rows: int, cols: int) -> np.ndarray:
        return self.slots_to_matrix(self.scheme.decode(plaintext), rows, cols)

    def ciphertext_to_matrix(self, ciphertext: Any, rows: int, cols: int) -> np.ndarray:
        plaintext = self.scheme.decrypt(ciphertext)
        budget = self.scheme.noise_budget(ciphertext)
        if budget is not None:
            logger.info("Noise budget: %d bits", budget)
        return self.plaintext_to_matrix(plaintext, rows, cols)
