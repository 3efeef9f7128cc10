"""
Tests for the generalized-diagonal matrix product.

The product is evaluated directly with the client's scheme, without going
through the evaluator service.
"""
import numpy as np
import pytest

from encmatrix.common.errors import ValidationError
from encmatrix.matrix.diagonal import (
    cyclic_diagonals,
    evaluate_diagonal_product,
    finish_product,
    orient_operands,
    pad_matrix,
    prepare_product,
)


def encrypted_product(codec, a, b):
    scheme = codec.scheme
    diagonals, operand, plan = prepare_product(codec, a, b)
    result = evaluate_diagonal_product(scheme, diagonals, operand,
                                       scheme.relin_keys(), scheme.galois_keys())
    return finish_product(codec, result, plan), plan


# ==============================================================================
# Plaintext Helpers
# ==============================================================================

class TestDiagonalHelpers:
    """Diagonal decomposition, padding and orientation."""

    def test_cyclic_diagonals(self):
        matrix = np.array([[1, 2], [3, 4]])
        assert cyclic_diagonals(matrix).tolist() == [[1, 4], [2, 3]]

    def test_cyclic_diagonals_4x4(self):
        matrix = np.arange(16).reshape(4, 4)
        diagonals = cyclic_diagonals(matrix)
        for r in range(4):
            for c in range(4):
                assert diagonals[r][c] == matrix[c][(c + r) % 4]

    def test_cyclic_diagonals_requires_square(self):
        with pytest.raises(ValidationError):
            cyclic_diagonals(np.zeros((2, 3)))

    def test_pad_matrix(self):
        padded = pad_matrix(np.array([[1, 2, 3]]), 4, 4)
        assert padded.shape == (4, 4)
        assert padded[0].tolist() == [1, 2, 3, 0]
        assert not padded[1:].any()

    def test_orientation_keeps_small_left_operand(self):
        a, b = np.zeros((2, 3)), np.zeros((3, 4))
        left, right, transposed = orient_operands(a, b)
        assert not transposed
        assert left.shape == (2, 3) and right.shape == (3, 4)

    def test_orientation_transposes_tall_left_operand(self):
        a, b = np.zeros((4, 3)), np.zeros((3, 2))
        left, right, transposed = orient_operands(a, b)
        assert transposed
        assert left.shape == (2, 3) and right.shape == (3, 4)


# ==============================================================================
# Encrypted Product
# ==============================================================================

class TestEncryptedProduct:
    """A x B through the batched scheme matches the plain product."""

    def test_matrix_vector(self, codec):
        result, plan = encrypted_product(codec, [[1, 2], [3, 4]], [[5], [6]])
        assert result.tolist() == [[17], [39]]
        assert plan.dimension == 2

    def test_single_element(self, codec):
        result, plan = encrypted_product(codec, [[3]], [[-4]])
        assert result.tolist() == [[-12]]
        assert plan.dimension == 1

    def test_non_square_operands(self, codec):
        a = [[1, 2, 3], [4, 5, 6]]
        b = [[1, 0, -1, 2], [0, 1, 3, -2], [7, -7, 1, 1]]
        result, plan = encrypted_product(codec, a, b)
        assert result.tolist() == (np.array(a) @ np.array(b)).tolist()
        assert not plan.transposed
        assert plan.dimension == 4

    def test_transposed_orientation(self, codec):
        a = [[1, 2, 3], [4, 5, 6], [7, 8, 9], [-1, -2, -3]]
        b = [[1, 2], [3, 4], [5, 6]]
        result, plan = encrypted_product(codec, a, b)
        assert plan.transposed
        assert result.shape == (4, 2)
        assert result.tolist() == (np.array(a) @ np.array(b)).tolist()

    def test_orientation_invariance(self, codec):
        rng = np.random.default_rng(7)
        a = rng.integers(-128, 128, size=(2, 3))
        b = rng.integers(-128, 128, size=(3, 4))
        direct, _ = encrypted_product(codec, a, b)
        swapped, _ = encrypted_product(codec, b.T, a.T)
        assert direct.tolist() == swapped.T.tolist() == (a @ b).tolist()

    def test_extreme_values_16x16(self, codec):
        a = np.full((16, 16), -128)
        b = np.full((16, 1), -128)
        result, plan = encrypted_product(codec, a, b)
        assert plan.dimension == 16
        assert result.tolist() == (a @ b).tolist()

    def test_shape_mismatch_rejected(self, codec):
        with pytest.raises(ValidationError):
            prepare_product(codec, [[1, 2]], [[1, 2]])


# ==============================================================================
# Evaluator Checks
# ==============================================================================

class TestEvaluatorChecks:
    """Diagonal sets the evaluator refuses."""

    def test_non_power_of_two_dimension(self, codec, client_scheme):
        diagonals = codec.rows_to_ciphertexts([[1, 2], [3, 4], [5, 6], [7, 8], [9, 10]], 1)
        operand = codec.matrix_to_twisted_ciphertext([[1], [2]])
        assert len(diagonals) == 3
        with pytest.raises(ValidationError):
            evaluate_diagonal_product(client_scheme, diagonals, operand,
                                      client_scheme.relin_keys(), client_scheme.galois_keys())

    def test_empty_diagonal_set(self, codec, client_scheme):
        operand = codec.matrix_to_twisted_ciphertext([[1]])
        with pytest.raises(ValidationError):
            evaluate_diagonal_product(client_scheme, [], operand,
                                      client_scheme.relin_keys(), client_scheme.galois_keys())
