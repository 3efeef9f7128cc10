"""
Client for the encmatrix evaluator.

The client owns the secret key. It encrypts operands locally, sends the
ciphertexts to the evaluator and decrypts the results it gets back. Operations
that need evaluation keys first make sure the evaluator holds this session's
RelinKeys and GaloisKeys, uploading whichever is missing.

Usage:

    async with MatrixClient("http://localhost:8200") as client:
        result = await client.matrix_product([[1, 2], [3, 4]], [[5], [6]])
"""
import asyncio
import base64
import logging
import secrets
import time
from typing import Any, Dict, Iterable, Optional

import httpx
import numpy as np

from ..common.errors import TransportError, ValidationError
from ..config import Settings, get_settings
from ..matrix.codec import MatrixCodec
from ..matrix.diagonal import finish_product, prepare_product
from ..matrix.framing import (
    FRAMING_LENGTH_PREFIXED,
    base64_to_ciphertext,
    ciphertext_to_base64,
    ciphertexts_to_base64,
    key_to_base64,
)
from ..scheme import BatchedScheme, KeyKind, create_scheme

logger = logging.getLogger(__name__)

ALL_KEY_KINDS = (KeyKind.RELIN_KEYS, KeyKind.GALOIS_KEYS)


def generate_session_id() -> str:
    """Base64 of 32 random bytes, chosen once per client lifetime."""
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def _kb(*payloads: str) -> float:
    return sum(len(p) for p in payloads) / 1024


class MatrixClient:
    """Async client driving encrypted matrix operations on a remote evaluator."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        scheme: Optional[BatchedScheme] = None,
        sid: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or get_settings()
        self.base_url = (base_url or self.config.evaluator_url).rstrip("/")
        self.sid = sid or generate_session_id()
        self.http_client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            timeout=httpx.Timeout(self.config.request_timeout_seconds),
        )

        self._scheme = scheme
        self._codec = self._make_codec(scheme) if scheme is not None else None
        self._keygen_task: Optional[asyncio.Task] = None
        self._closed = False

    def _make_codec(self, scheme: BatchedScheme) -> MatrixCodec:
        return MatrixCodec(scheme, self.config.value_min, self.config.value_max)

    # ==========================================================================
    # Key Generation
    # ==========================================================================

    def _generate_scheme(self) -> BatchedScheme:
        start = time.time()
        scheme = create_scheme(self.config.scheme_backend, generate_keys=True,
                               poly_modulus_degree=self.config.poly_modulus_degree,
                               plain_modulus=self.config.plain_modulus)
        logger.info(f"Generated {scheme.name} keys in {(time.time() - start) * 1000:.0f}ms")
        return scheme

    def start(self) -> None:
        """Schedule key generation on a worker thread; safe to call more than once."""
        if self._scheme is not None or self._keygen_task is not None:
            return
        self._keygen_task = asyncio.create_task(asyncio.to_thread(self._generate_scheme))

    @property
    def ready(self) -> bool:
        return self._codec is not None

    async def wait_ready(self) -> MatrixCodec:
        """Block until keys exist and return the codec bound to them."""
        if self._closed:
            raise RuntimeError("client is closed")
        if self._codec is None:
            self.start()
            self._scheme = await self._keygen_task
            self._codec = self._make_codec(self._scheme)
        return self._codec

    @property
    def scheme(self) -> Optional[BatchedScheme]:
        return self._scheme

    # ==========================================================================
    # Transport
    # ==========================================================================

    async def _post(self, route: str, payload: Dict[str, Any],
                    accept: Iterable[int] = (200,)) -> httpx.Response:
        try:
            response = await self.http_client.post(f"/api/{route}", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"{route} request failed: {e}")
            raise TransportError(f"{route} request failed: {e}") from e

        if response.status_code not in accept:
            detail = response.text
            try:
                detail = response.json().get("detail", detail)
            except (ValueError, AttributeError):
                pass
            logger.error(f"{route} returned {response.status_code}: {detail}")
            raise TransportError(f"{route} returned {response.status_code}: {detail}",
                                 status=response.status_code)
        return response

    def _result(self, response: httpx.Response, route: str) -> str:
        try:
            return response.json()["result"]
        except (ValueError, KeyError, TypeError) as e:
            raise TransportError(f"{route} returned a malformed body") from e

    # ==========================================================================
    # Key Provisioning
    # ==========================================================================

    async def query_key(self, kind: KeyKind) -> bool:
        response = await self._post("PublicKeysQuery", {"sid": self.sid, "type": kind.value},
                                    accept=(200, 404))
        return response.status_code == 200

    async def upload_key(self, kind: KeyKind) -> bool:
        """Upload one key; returns False when the evaluator already had it."""
        await self.wait_ready()
        key = self._scheme.relin_keys() if kind == KeyKind.RELIN_KEYS else self._scheme.galois_keys()
        key_b64 = await asyncio.to_thread(key_to_base64, self._scheme, key)
        logger.info(f"Uploading {kind.value}: {_kb(key_b64):.1f} KB")
        response = await self._post(
            "PublicKeysUpload", {"sid": self.sid, "type": kind.value, "key": key_b64},
            accept=(200, 409)
        )
        return response.status_code == 200

    async def delete_key(self, kind: KeyKind) -> bool:
        response = await self._post("PublicKeysDelete", {"sid": self.sid, "type": kind.value},
                                    accept=(200, 404))
        return response.status_code == 200

    async def ensure_keys(self, kinds: Iterable[KeyKind] = ALL_KEY_KINDS) -> None:
        """Make sure the evaluator holds every key in ``kinds`` for this session."""
        for kind in kinds:
            if await self.query_key(kind):
                logger.debug(f"{kind.value} already on the evaluator")
                continue
            await self.upload_key(kind)

    # ==========================================================================
    # Operations
    # ==========================================================================

    def _same_shape(self, codec: MatrixCodec, a: Any, b: Any):
        a = codec.validate(a)
        b = codec.validate(b)
        if a.shape != b.shape:
            raise ValidationError(
                f"Operands must have the same shape, got {a.shape} and {b.shape}",
                details={"a": list(a.shape), "b": list(b.shape)}
            )
        return a, b

    async def _elementwise(self, route: str, a: Any, b: Any, needs_session: bool) -> np.ndarray:
        codec = await self.wait_ready()
        a, b = self._same_shape(codec, a, b)
        if needs_session:
            await self.ensure_keys((KeyKind.RELIN_KEYS,))

        matrixa, matrixb = await asyncio.to_thread(self._encode_pair, codec, a, b)
        logger.info(f"{route}: sending {_kb(matrixa, matrixb):.1f} KB")
        payload = {"sid": self.sid, "matrixa": matrixa, "matrixb": matrixb}
        response = await self._post(route, payload)
        result = self._result(response, route)
        logger.info(f"{route}: received {_kb(result):.1f} KB")

        return await asyncio.to_thread(self._decode, codec, result, a.shape[0], a.shape[1])

    def _encode_pair(self, codec: MatrixCodec, a: np.ndarray, b: np.ndarray):
        return (ciphertext_to_base64(self._scheme, codec.matrix_to_ciphertext(a)),
                ciphertext_to_base64(self._scheme, codec.matrix_to_ciphertext(b)))

    def _decode(self, codec: MatrixCodec, result: str, rows: int, cols: int) -> np.ndarray:
        return codec.ciphertext_to_matrix(base64_to_ciphertext(self._scheme, result), rows, cols)

    async def add(self, a: Any, b: Any) -> np.ndarray:
        return await self._elementwise("Addition", a, b, needs_session=False)

    async def subtract(self, a: Any, b: Any) -> np.ndarray:
        return await self._elementwise("Subtraction", a, b, needs_session=False)

    async def multiply(self, a: Any, b: Any) -> np.ndarray:
        """Element-wise product."""
        return await self._elementwise("Multiplication", a, b, needs_session=True)

    async def matrix_product(self, a: Any, b: Any, framing: str = FRAMING_LENGTH_PREFIXED) -> np.ndarray:
        """Matrix by matrix (or vector) product A x B."""
        codec = await self.wait_ready()
        diagonals, operand, plan = await asyncio.to_thread(prepare_product, codec, a, b)
        await self.ensure_keys()

        matrixa = await asyncio.to_thread(ciphertexts_to_base64, self._scheme, diagonals, framing)
        matrixb = await asyncio.to_thread(ciphertext_to_base64, self._scheme, operand)
        logger.info(f"MatrixProduct: sending {_kb(matrixa, matrixb):.1f} KB "
                    f"({len(diagonals)} diagonal ciphertexts, dimension {plan.dimension})")
        payload = {"sid": self.sid, "matrixa": matrixa, "matrixb": matrixb, "framing": framing}
        response = await self._post("MatrixProduct", payload)
        result = self._result(response, "MatrixProduct")
        logger.info(f"MatrixProduct: received {_kb(result):.1f} KB")

        ciphertext = await asyncio.to_thread(base64_to_ciphertext, self._scheme, result)
        return await asyncio.to_thread(finish_product, codec, ciphertext, plan)

    # ==========================================================================
    # Shutdown
    # ==========================================================================

    async def close(self) -> None:
        """Delete this session's keys from the evaluator and release the connection.

        Cleanup is best effort: failures are logged and never raised.
        """
        if self._closed:
            return
        self._closed = True

        if self._keygen_task is not None and not self._keygen_task.done():
            self._keygen_task.cancel()
        if self._codec is not None:
            for kind in ALL_KEY_KINDS:
                try:
                    await self.delete_key(kind)
                except TransportError as e:
                    logger.warning(f"Could not delete {kind.value}: {e.message}")
        await self.http_client.aclose()

    async def __aenter__(self) -> "MatrixClient":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
