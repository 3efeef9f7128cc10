"""
Matrix product over the batched layout using generalized diagonals.

The client splits the (square, zero padded) left operand into its cyclic
diagonals and packs them two per ciphertext, one per batch half, each value
replicated once per output column. The right operand is sent in the twisted
row-major layout so that the second batch half is always one row ahead of the
first. The evaluator multiplies every diagonal pair with the operand, rotating
the operand by two rows between pairs, and finally folds the two batch halves
together.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple

import numpy as np

from ..common.errors import EvaluationError, ValidationError
from ..scheme.base import BatchedScheme
from .codec import MatrixCodec, transpose
from .layout import is_power_of_two, next_power_of_two

logger = logging.getLogger(__name__)

_SCHEME_ERRORS = (ValueError, RuntimeError, TypeError)


@dataclass(frozen=True)
class ProductPlan:
    """Everything the client needs to turn the decrypted slots back into A x B."""
    dimension: int
    rows: int
    cols: int
    out_rows: int
    out_cols: int
    transposed: bool


def check_product_shapes(a: np.ndarray, b: np.ndarray):
    if a.shape[1] != b.shape[0]:
        raise ValidationError(
            f"Cannot multiply {a.shape[0]}x{a.shape[1]} by {b.shape[0]}x{b.shape[1]}: "
            f"column count of A must equal row count of B",
            details={"a": list(a.shape), "b": list(b.shape)}
        )


def orient_operands(a: np.ndarray, b: np.ndarray) -> Tuple[np.ndarray, np.ndarray, bool]:
    """Return the operand pair with the smaller square padding.

    A x B is computed as (B^T x A^T)^T when B's largest side is shorter than
    A's, since the padded dimension follows the left operand.
    """
    if max(b.shape) < max(a.shape):
        return transpose(b), transpose(a), True
    return a, b, False


def pad_matrix(matrix: np.ndarray, rows: int, cols: int) -> np.ndarray:
    padded = np.zeros((rows, cols), dtype=np.int64)
    padded[:matrix.shape[0], :matrix.shape[1]] = matrix
    return padded


def cyclic_diagonals(matrix: np.ndarray) -> np.ndarray:
    """Row ``r`` holds the r-th generalized diagonal: ``out[r][c] = m[c][(c + r) % n]``."""
    n = matrix.shape[0]
    if matrix.shape != (n, n):
        raise ValidationError("Generalized diagonals need a square matrix",
                              details={"shape": list(matrix.shape)})
    c = np.arange(n)
    return np.stack([matrix[c, (c + r) % n] for r in range(n)])


def prepare_product(codec: MatrixCodec, a: Any, b: Any) -> Tuple[List[Any], Any, ProductPlan]:
    """Encrypt the diagonal set of A and the twisted encoding of B.

    Shapes and values are checked before anything is encrypted.
    """
    a = codec.validate(a)
    b = codec.validate(b)
    check_product_shapes(a, b)
    out_rows, out_cols = a.shape[0], b.shape[1]

    left, right, transposed = orient_operands(a, b)
    dimension = next_power_of_two(max(left.shape))
    padded_left = pad_matrix(left, dimension, dimension)
    padded_right = pad_matrix(right, dimension, right.shape[1])
    cols = right.shape[1]

    # Both encodings must fit before the first encryption
    layout = codec.layout(dimension)
    if cols > layout.element_separation:
        raise ValidationError(
            f"{cols} output columns do not fit the element separation {layout.element_separation}",
            details={"dimension": dimension, "cols": cols}
        )

    diagonals = codec.rows_to_ciphertexts(cyclic_diagonals(padded_left), cols)
    operand = codec.matrix_to_twisted_ciphertext(padded_right)
    plan = ProductPlan(
        dimension=dimension,
        rows=padded_left.shape[0],
        cols=cols,
        out_rows=out_rows,
        out_cols=out_cols,
        transposed=transposed,
    )
    logger.debug("Prepared product: dimension=%d diagonals=%d transposed=%s",
                 dimension, len(diagonals), transposed)
    return diagonals, operand, plan


def finish_product(codec: MatrixCodec, result: Any, plan: ProductPlan) -> np.ndarray:
    """Decrypt the evaluator's result and undo padding and orientation."""
    matrix = codec.ciphertext_to_matrix(result, plan.rows, plan.cols)
    if plan.transposed:
        matrix = transpose(matrix)
    return np.ascontiguousarray(matrix[:plan.out_rows, :plan.out_cols])


def evaluate_diagonal_product(scheme: BatchedScheme, diagonals: Sequence[Any], operand: Any,
                              relin_key: Any, galois_key: Any) -> Any:
    """Homomorphic product of a diagonal set with a twisted operand.

    The padded dimension is twice the number of diagonal ciphertexts. The
    result is relinearized, folded across the batch halves and switched to the
    last modulus level.
    """
    if not diagonals:
        raise ValidationError("Diagonal set is empty")
    dimension = 2 * len(diagonals)
    if not is_power_of_two(dimension):
        raise ValidationError(
            f"{len(diagonals)} diagonal ciphertexts do not describe a power of two dimension",
            details={"diagonals": len(diagonals)}
        )
    if dimension > scheme.batch_half_size:
        raise ValidationError(f"Dimension {dimension} exceeds the batch half size",
                              details={"dimension": dimension})
    element_separation = scheme.batch_half_size // dimension

    try:
        total = None
        for i, diagonal in enumerate(diagonals):
            term = scheme.multiply(diagonal, operand)
            total = term if total is None else scheme.add(total, term)
            if i + 1 < len(diagonals):
                operand = scheme.rotate_rows(operand, 2 * element_separation, galois_key)

        total = scheme.relinearize(total, relin_key)
        total = scheme.add(total, scheme.rotate_columns(total, galois_key))
        return scheme.mod_switch_to_smallest(total)
    except _SCHEME_ERRORS as e:
        raise EvaluationError(f"Diagonal product failed: {e}") from e
