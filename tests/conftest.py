"""
Shared fixtures: a keyed client-side scheme and a public evaluator-side scheme.
"""
import pytest

from encmatrix.matrix.codec import MatrixCodec
from encmatrix.scheme.simulated import SimulatedBatchedScheme


@pytest.fixture
def client_scheme():
    return SimulatedBatchedScheme()


@pytest.fixture
def evaluator_scheme():
    return SimulatedBatchedScheme(generate_keys=False)


@pytest.fixture
def codec(client_scheme):
    return MatrixCodec(client_scheme)
