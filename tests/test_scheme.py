"""
Tests for the in-memory batched scheme and the backend factory.
"""
import pytest

from encmatrix.scheme import create_scheme
from encmatrix.scheme.base import KeyKind
from encmatrix.scheme.simulated import SimulatedBatchedScheme


def encrypt(scheme, values):
    return scheme.encrypt(scheme.encode(values))


def decrypt(scheme, ciphertext):
    return scheme.decode(scheme.decrypt(ciphertext))


class TestSimulatedArithmetic:
    """Slot arithmetic modulo the plain modulus."""

    def test_parameters(self, client_scheme):
        assert client_scheme.slot_count == 4096
        assert client_scheme.batch_half_size == 2048
        assert client_scheme.plain_modulus == 974849
        assert client_scheme.has_secret_key

    def test_add_sub_multiply(self, client_scheme):
        a = encrypt(client_scheme, [3, -4, 5])
        b = encrypt(client_scheme, [10, 2, -5])
        assert decrypt(client_scheme, client_scheme.add(a, b))[:3] == [13, -2, 0]
        assert decrypt(client_scheme, client_scheme.sub(a, b))[:3] == [-7, -6, 10]
        assert decrypt(client_scheme, client_scheme.multiply(a, b))[:3] == [30, -8, -25]

    def test_decode_centers_values(self, client_scheme):
        plaintext = client_scheme.encode([client_scheme.plain_modulus - 1])
        assert client_scheme.decode(plaintext)[0] == -1

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            SimulatedBatchedScheme(poly_modulus_degree=3000)
        with pytest.raises(ValueError):
            SimulatedBatchedScheme(plain_modulus=65537 + 2)


class TestSimulatedRotations:
    """Row rotation within each batch half and the half swap."""

    def test_rotate_rows(self, client_scheme):
        values = [0] * 4096
        values[1] = 7
        values[2049] = 9
        rotated = client_scheme.rotate_rows(encrypt(client_scheme, values), 1,
                                            client_scheme.galois_keys())
        slots = decrypt(client_scheme, rotated)
        assert slots[0] == 7
        assert slots[2048] == 9

    def test_rotate_columns(self, client_scheme):
        values = [0] * 4096
        values[0] = 5
        swapped = client_scheme.rotate_columns(encrypt(client_scheme, values),
                                               client_scheme.galois_keys())
        slots = decrypt(client_scheme, swapped)
        assert slots[0] == 0
        assert slots[2048] == 5

    def test_rotation_needs_relinearization(self, client_scheme):
        a = encrypt(client_scheme, [1, 2])
        product = client_scheme.multiply(a, a)
        with pytest.raises(ValueError):
            client_scheme.rotate_rows(product, 1, client_scheme.galois_keys())
        relinearized = client_scheme.relinearize(product, client_scheme.relin_keys())
        client_scheme.rotate_rows(relinearized, 1, client_scheme.galois_keys())

    def test_rotation_step_range(self, client_scheme):
        a = encrypt(client_scheme, [1])
        with pytest.raises(ValueError):
            client_scheme.rotate_rows(a, 2048, client_scheme.galois_keys())

    def test_foreign_keys_rejected(self, client_scheme):
        other = SimulatedBatchedScheme()
        a = encrypt(client_scheme, [1])
        with pytest.raises(ValueError):
            client_scheme.rotate_rows(a, 1, other.galois_keys())
        with pytest.raises(ValueError):
            client_scheme.relinearize(a, client_scheme.galois_keys())


class TestSimulatedSerialization:
    """Ciphertexts and keys cross the wire and load on the evaluator."""

    def test_ciphertext_round_trip(self, client_scheme, evaluator_scheme):
        data = client_scheme.save_ciphertext(encrypt(client_scheme, [1, -2, 3]))
        assert client_scheme.serialized_length(data) == len(data)

        loaded = evaluator_scheme.load_ciphertext(data)
        doubled = evaluator_scheme.add(loaded, loaded)
        back = client_scheme.load_ciphertext(evaluator_scheme.save_ciphertext(doubled))
        assert decrypt(client_scheme, back)[:3] == [2, -4, 6]

    def test_trailing_bytes_rejected(self, client_scheme, evaluator_scheme):
        data = client_scheme.save_ciphertext(encrypt(client_scheme, [1]))
        with pytest.raises(ValueError):
            evaluator_scheme.load_ciphertext(data + b"\x00")

    def test_key_kind_checked(self, client_scheme, evaluator_scheme):
        data = client_scheme.save_key(client_scheme.galois_keys())
        assert evaluator_scheme.load_key(KeyKind.GALOIS_KEYS, data).kind == KeyKind.GALOIS_KEYS
        with pytest.raises(ValueError):
            evaluator_scheme.load_key(KeyKind.RELIN_KEYS, data)

    def test_public_scheme_cannot_decrypt(self, client_scheme, evaluator_scheme):
        ciphertext = encrypt(client_scheme, [1])
        assert not evaluator_scheme.has_secret_key
        with pytest.raises(ValueError):
            evaluator_scheme.decrypt(ciphertext)


class TestCreateScheme:
    """Backend selection."""

    def test_simulated_backend(self):
        scheme = create_scheme("simulated", generate_keys=False)
        assert isinstance(scheme, SimulatedBatchedScheme)
        assert not scheme.has_secret_key

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_scheme("paillier")
