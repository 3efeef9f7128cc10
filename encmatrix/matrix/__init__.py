"""
Matrix packing, framing and the diagonal product engine.
"""
from .codec import MatrixCodec, as_matrix, format_matrix, transpose
from .diagonal import (
    ProductPlan,
    cyclic_diagonals,
    evaluate_diagonal_product,
    finish_product,
    prepare_product,
)
from .layout import SlotLayout, compute_layout, is_power_of_two, next_power_of_two

__all__ = [
    "MatrixCodec",
    "ProductPlan",
    "SlotLayout",
    "as_matrix",
    "compute_layout",
    "cyclic_diagonals",
    "evaluate_diagonal_product",
    "finish_product",
    "format_matrix",
    "is_power_of_two",
    "next_power_of_two",
    "prepare_product",
    "transpose",
]
