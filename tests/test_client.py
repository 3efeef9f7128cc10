"""
Tests for the async client against the in-process evaluator.

Requests go through httpx.ASGITransport, so the full HTTP surface is exercised
without opening a socket.
"""
import httpx
import numpy as np
import pytest

from encmatrix.client.client import ALL_KEY_KINDS, MatrixClient, generate_session_id
from encmatrix.common.errors import TransportError, ValidationError
from encmatrix.config import Settings
from encmatrix.evaluator.key_store import InMemorySessionKeyStore
from encmatrix.evaluator.service import create_app
from encmatrix.matrix.framing import FRAMING_CONCATENATED
from encmatrix.scheme.base import KeyKind
from encmatrix.scheme.simulated import SimulatedBatchedScheme

settings = Settings(scheme_backend="simulated")
key_store = InMemorySessionKeyStore()
app = create_app(
    scheme=SimulatedBatchedScheme(generate_keys=False),
    key_store=key_store,
    config=settings,
)


def make_client(scheme=None) -> MatrixClient:
    return MatrixClient(
        "http://evaluator",
        scheme=scheme or SimulatedBatchedScheme(),
        transport=httpx.ASGITransport(app=app),
        config=settings,
    )


def failing_transport(status_code: int = None) -> httpx.MockTransport:
    def handler(request):
        if status_code is None:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(status_code, json={"error": "X", "detail": "boom"})
    return httpx.MockTransport(handler)


class TestSessionId:
    """Session ids are base64 of 32 random bytes."""

    def test_format(self):
        sid = generate_session_id()
        assert len(sid) == 44
        assert sid != generate_session_id()


# ==============================================================================
# Operations
# ==============================================================================

class TestOperations:
    """End-to-end operations through the evaluator."""

    @pytest.mark.asyncio
    async def test_addition(self):
        async with make_client() as client:
            result = await client.add([[1, 2]], [[3, 4]])
        assert result.tolist() == [[4, 6]]

    @pytest.mark.asyncio
    async def test_subtraction(self):
        async with make_client() as client:
            result = await client.subtract([[1], [2]], [[-3], [4]])
        assert result.tolist() == [[4], [-2]]

    @pytest.mark.asyncio
    async def test_elementwise_multiplication(self):
        async with make_client() as client:
            result = await client.multiply([[2, 3]], [[-4, 5]])
        assert result.tolist() == [[-8, 15]]

    @pytest.mark.asyncio
    async def test_matrix_vector_product(self):
        async with make_client() as client:
            result = await client.matrix_product([[1, 2], [3, 4]], [[5], [6]])
        assert result.tolist() == [[17], [39]]

    @pytest.mark.asyncio
    async def test_product_orientation(self):
        rng = np.random.default_rng(3)
        a = rng.integers(-128, 128, size=(2, 3))
        b = rng.integers(-128, 128, size=(3, 4))
        async with make_client() as client:
            direct = await client.matrix_product(a, b)
            swapped = await client.matrix_product(b.T, a.T)
        assert direct.tolist() == (a @ b).tolist()
        assert swapped.tolist() == (b.T @ a.T).tolist()

    @pytest.mark.asyncio
    async def test_product_with_legacy_framing(self):
        async with make_client() as client:
            result = await client.matrix_product([[1, 0], [0, 1]], [[9, 8], [7, 6]],
                                                 framing=FRAMING_CONCATENATED)
        assert result.tolist() == [[9, 8], [7, 6]]

    @pytest.mark.asyncio
    async def test_shape_mismatch_rejected_locally(self):
        async with make_client() as client:
            with pytest.raises(ValidationError):
                await client.add([[1, 2]], [[1], [2]])
            with pytest.raises(ValidationError):
                await client.matrix_product([[1, 2]], [[1, 2]])
            with pytest.raises(ValidationError):
                await client.add([[1, 200]], [[1, 2]])


# ==============================================================================
# Key Provisioning
# ==============================================================================

class TestKeyProvisioning:
    """Keys are uploaded on demand and removed on close."""

    @pytest.mark.asyncio
    async def test_ensure_keys_uploads_missing(self):
        client = make_client()
        try:
            assert not await client.query_key(KeyKind.RELIN_KEYS)
            await client.ensure_keys()
            for kind in ALL_KEY_KINDS:
                assert key_store.query(client.sid, kind)
            # Already present: nothing is uploaded again
            await client.ensure_keys()
            assert not await client.upload_key(KeyKind.GALOIS_KEYS)
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_multiplication_uploads_relin_keys_only(self):
        client = make_client()
        try:
            await client.multiply([[2]], [[3]])
            assert key_store.query(client.sid, KeyKind.RELIN_KEYS)
            assert not key_store.query(client.sid, KeyKind.GALOIS_KEYS)
        finally:
            await client.close()
        assert not key_store.query(client.sid, KeyKind.RELIN_KEYS)

    @pytest.mark.asyncio
    async def test_close_deletes_keys(self):
        client = make_client()
        await client.matrix_product([[1]], [[1]])
        assert key_store.query(client.sid, KeyKind.GALOIS_KEYS)
        await client.close()
        for kind in ALL_KEY_KINDS:
            assert not key_store.query(client.sid, kind)

    @pytest.mark.asyncio
    async def test_addition_uploads_nothing(self):
        async with make_client() as client:
            await client.add([[1]], [[1]])
            assert not key_store.query(client.sid, KeyKind.RELIN_KEYS)

    @pytest.mark.asyncio
    async def test_background_key_generation(self):
        client = MatrixClient("http://evaluator", transport=httpx.ASGITransport(app=app),
                              config=settings)
        assert not client.ready
        client.start()
        await client.wait_ready()
        assert client.ready
        assert client.scheme.has_secret_key
        result = await client.add([[1, 1]], [[2, 2]])
        assert result.tolist() == [[3, 3]]
        await client.close()


# ==============================================================================
# Transport Failures
# ==============================================================================

class TestTransportFailures:
    """Network errors and error statuses surface as TransportError."""

    @pytest.mark.asyncio
    async def test_connection_error(self):
        client = MatrixClient("http://evaluator", scheme=SimulatedBatchedScheme(),
                              transport=failing_transport(), config=settings)
        with pytest.raises(TransportError):
            await client.add([[1]], [[1]])
        await client.close()

    @pytest.mark.asyncio
    async def test_error_status(self):
        client = MatrixClient("http://evaluator", scheme=SimulatedBatchedScheme(),
                              transport=failing_transport(500), config=settings)
        with pytest.raises(TransportError) as exc_info:
            await client.add([[1]], [[1]])
        assert exc_info.value.status == 500
        assert "boom" in exc_info.value.message
        await client.close()

    @pytest.mark.asyncio
    async def test_close_never_raises(self):
        client = MatrixClient("http://evaluator", scheme=SimulatedBatchedScheme(),
                              transport=failing_transport(), config=settings)
        await client.close()
        await client.close()

    @pytest.mark.asyncio
    async def test_closed_client_refuses_work(self):
        client = make_client()
        await client.close()
        with pytest.raises(RuntimeError):
            await client.add([[1]], [[1]])
