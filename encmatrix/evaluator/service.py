"""
Evaluator service for encrypted matrix operations.

The evaluator receives ciphertexts from clients, combines them homomorphically
and returns the encrypted result. It never holds a secret key: the scheme is
created in public mode and the relinearization and Galois keys a client needs
are uploaded once per session and kept in the session key store.

Endpoints:
- /api/Addition, /api/Subtraction: no session state
- /api/Multiplication: element-wise, needs the session's RelinKeys
- /api/MatrixProduct: generalized-diagonal product, needs both keys
- /api/PublicKeysQuery, /api/PublicKeysUpload, /api/PublicKeysDelete
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from .. import __version__
from ..common.errors import EncMatrixError, EvaluationError, KeyConflictError, KeyStateError
from ..common.logging_config import LoggingMiddleware, MetricsCollector, setup_service_logging
from ..config import Settings, get_settings
from ..matrix.diagonal import evaluate_diagonal_product
from ..matrix.framing import (
    base64_to_ciphertext,
    base64_to_ciphertexts,
    base64_to_key,
    ciphertext_to_base64,
)
from ..scheme import BatchedScheme, KeyKind, create_scheme
from .key_store import DeleteResult, InMemorySessionKeyStore, SessionKeyStore, UploadResult
from .schemas import (
    ErrorResponse,
    HealthResponse,
    KeyRequest,
    KeyStatusResponse,
    KeyUploadRequest,
    MatrixPairRequest,
    MatrixProductRequest,
    ResultResponse,
    SessionMatrixRequest,
    SessionResultResponse,
)

logger = logging.getLogger(__name__)

_SCHEME_ERRORS = (ValueError, RuntimeError, TypeError)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


# ==============================================================================
# Homomorphic Operations
# ==============================================================================

class MatrixOperations:
    """Deserialize, evaluate and serialize; run on the threadpool."""

    def __init__(self, scheme: BatchedScheme):
        self.scheme = scheme

    def _evaluate(self, operation: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except _SCHEME_ERRORS as e:
            raise EvaluationError(f"{operation} failed: {e}") from e

    def add(self, matrixa: str, matrixb: str) -> str:
        a = base64_to_ciphertext(self.scheme, matrixa)
        b = base64_to_ciphertext(self.scheme, matrixb)
        result = self._evaluate(
            "Addition", lambda: self.scheme.mod_switch_to_smallest(self.scheme.add(a, b))
        )
        return ciphertext_to_base64(self.scheme, result)

    def subtract(self, matrixa: str, matrixb: str) -> str:
        a = base64_to_ciphertext(self.scheme, matrixa)
        b = base64_to_ciphertext(self.scheme, matrixb)
        result = self._evaluate(
            "Subtraction", lambda: self.scheme.mod_switch_to_smallest(self.scheme.sub(a, b))
        )
        return ciphertext_to_base64(self.scheme, result)

    def multiply(self, matrixa: str, matrixb: str, relin_keys: Any) -> str:
        a = base64_to_ciphertext(self.scheme, matrixa)
        b = base64_to_ciphertext(self.scheme, matrixb)

        def run():
            product = self.scheme.relinearize(self.scheme.multiply(a, b), relin_keys)
            return self.scheme.mod_switch_to_smallest(product)

        return ciphertext_to_base64(self.scheme, self._evaluate("Multiplication", run))

    def matrix_product(self, diagonals_b64: str, operand_b64: str, framing: str,
                       relin_keys: Any, galois_keys: Any) -> str:
        diagonals = base64_to_ciphertexts(self.scheme, diagonals_b64, framing)
        operand = base64_to_ciphertext(self.scheme, operand_b64)
        result = evaluate_diagonal_product(self.scheme, diagonals, operand, relin_keys, galois_keys)
        return ciphertext_to_base64(self.scheme, result)

    def load_key(self, kind: KeyKind, key_b64: str) -> Any:
        return base64_to_key(self.scheme, kind, key_b64)


def _require_key(key_store: SessionKeyStore, sid: str, kind: KeyKind) -> Any:
    key = key_store.get(sid, kind)
    if key is None:
        raise KeyStateError(f"{kind.value} not found for session",
                            details={"type": kind.value})
    return key


# ==============================================================================
# Application Factory
# ==============================================================================

def create_app(
    scheme: Optional[BatchedScheme] = None,
    key_store: Optional[SessionKeyStore] = None,
    config: Optional[Settings] = None,
) -> FastAPI:
    """Build the evaluator app.

    The scheme defaults to the configured backend in public mode and the key
    store to a fresh in-memory store; tests inject their own.
    """
    config = config or get_settings()
    if scheme is None:
        scheme = create_scheme(config.scheme_backend, generate_keys=False,
                               poly_modulus_degree=config.poly_modulus_degree,
                               plain_modulus=config.plain_modulus)
    if key_store is None:
        key_store = InMemorySessionKeyStore()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Log the active scheme on startup, drop every session key on shutdown"""
        info = scheme.describe()
        logger.info(f"Starting encmatrix evaluator ({info['backend']}, "
                    f"{info['slot_count']} slots, t={info['plain_modulus']})")
        yield
        logger.info(f"Shutting down encmatrix evaluator, dropping keys of "
                    f"{key_store.session_count()} session(s)")
        key_store.clear()

    app = FastAPI(
        title="encmatrix evaluator",
        description="Homomorphic evaluation of encrypted integer matrices",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.scheme = scheme
    app.state.key_store = key_store
    operations = MatrixOperations(scheme)
    metrics = MetricsCollector("encmatrix_evaluator")
    app.state.metrics = metrics

    app.middleware("http")(LoggingMiddleware(app, logger, metrics))

    # ==========================================================================
    # Error Handlers
    # ==========================================================================

    @app.exception_handler(EncMatrixError)
    async def encmatrix_error_handler(request: Request, exc: EncMatrixError):
        metrics.track_error(exc.code)
        logger.warning(f"{request.url.path} rejected with {exc.code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "detail": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        metrics.track_error("VALIDATION_ERROR")
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        logger.warning(f"{request.url.path} rejected: {detail}")
        return JSONResponse(status_code=400, content={"error": "VALIDATION_ERROR", "detail": detail})

    # ==========================================================================
    # Matrix Endpoints
    # ==========================================================================

    @app.post("/api/Addition", response_model=ResultResponse, responses=ERROR_RESPONSES)
    async def addition(request: MatrixPairRequest):
        """Element-wise sum of two ciphertexts."""
        start = time.time()
        result = await run_in_threadpool(operations.add, request.matrixa, request.matrixb)
        metrics.track_operation("addition", len(request.matrixa) + len(request.matrixb))
        logger.info(f"Addition: {len(request.matrixa)}+{len(request.matrixb)} bytes in, "
                    f"{len(result)} bytes out, {(time.time() - start) * 1000:.1f}ms")
        return ResultResponse(result=result)

    @app.post("/api/Subtraction", response_model=ResultResponse, responses=ERROR_RESPONSES)
    async def subtraction(request: MatrixPairRequest):
        """Element-wise difference of two ciphertexts."""
        start = time.time()
        result = await run_in_threadpool(operations.subtract, request.matrixa, request.matrixb)
        metrics.track_operation("subtraction", len(request.matrixa) + len(request.matrixb))
        logger.info(f"Subtraction: {len(request.matrixa)}+{len(request.matrixb)} bytes in, "
                    f"{len(result)} bytes out, {(time.time() - start) * 1000:.1f}ms")
        return ResultResponse(result=result)

    @app.post("/api/Multiplication", response_model=SessionResultResponse, responses=ERROR_RESPONSES)
    async def multiplication(request: SessionMatrixRequest):
        """Element-wise product; the result is relinearized with the session's RelinKeys."""
        start = time.time()
        relin_keys = _require_key(key_store, request.sid, KeyKind.RELIN_KEYS)
        result = await run_in_threadpool(
            operations.multiply, request.matrixa, request.matrixb, relin_keys
        )
        metrics.track_operation("multiplication", len(request.matrixa) + len(request.matrixb))
        logger.info(f"Multiplication: {len(request.matrixa)}+{len(request.matrixb)} bytes in, "
                    f"{len(result)} bytes out, {(time.time() - start) * 1000:.1f}ms")
        return SessionResultResponse(sid=request.sid, result=result)

    @app.post("/api/MatrixProduct", response_model=SessionResultResponse, responses=ERROR_RESPONSES)
    async def matrix_product(request: MatrixProductRequest):
        """
        Matrix product of a diagonal set (matrixa) with a twisted operand (matrixb).

        Needs both RelinKeys and GaloisKeys for the session.
        """
        start = time.time()
        relin_keys = _require_key(key_store, request.sid, KeyKind.RELIN_KEYS)
        galois_keys = _require_key(key_store, request.sid, KeyKind.GALOIS_KEYS)
        result = await run_in_threadpool(
            operations.matrix_product, request.matrixa, request.matrixb, request.framing,
            relin_keys, galois_keys
        )
        metrics.track_operation("matrix_product", len(request.matrixa) + len(request.matrixb))
        logger.info(f"MatrixProduct ({request.framing}): {len(request.matrixa)}+{len(request.matrixb)} "
                    f"bytes in, {len(result)} bytes out, {(time.time() - start) * 1000:.1f}ms")
        return SessionResultResponse(sid=request.sid, result=result)

    # ==========================================================================
    # Key Endpoints
    # ==========================================================================

    @app.post("/api/PublicKeysQuery", response_model=KeyStatusResponse, responses=ERROR_RESPONSES)
    async def public_keys_query(request: KeyRequest):
        """200 when the session holds the key, 404 otherwise."""
        if not key_store.query(request.sid, request.type):
            raise KeyStateError(f"{request.type.value} not found for session",
                                details={"type": request.type.value})
        return KeyStatusResponse(sid=request.sid, type=request.type, status="present")

    @app.post("/api/PublicKeysUpload", response_model=KeyStatusResponse,
              responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse}})
    async def public_keys_upload(request: KeyUploadRequest):
        """Store a key for the session; 409 when one is already stored."""
        if key_store.query(request.sid, request.type):
            raise KeyConflictError(f"{request.type.value} already present for session")

        key = await run_in_threadpool(operations.load_key, request.type, request.key)
        if key_store.upload(request.sid, request.type, key) == UploadResult.CONFLICT:
            raise KeyConflictError(f"{request.type.value} already present for session")

        metrics.track_operation("key_upload", len(request.key))
        logger.info(f"Uploaded {request.type.value}: {len(request.key)} bytes")
        return KeyStatusResponse(sid=request.sid, type=request.type, status="stored")

    @app.post("/api/PublicKeysDelete", response_model=KeyStatusResponse, responses=ERROR_RESPONSES)
    async def public_keys_delete(request: KeyRequest):
        """Remove a stored key; 404 when the session holds none."""
        if key_store.delete(request.sid, request.type) == DeleteResult.NOT_FOUND:
            raise KeyStateError(f"{request.type.value} not found for session",
                                details={"type": request.type.value})
        return KeyStatusResponse(sid=request.sid, type=request.type, status="deleted")

    # ==========================================================================
    # Health and Metrics
    # ==========================================================================

    @app.get("/healthz", response_model=HealthResponse)
    async def health_check():
        """Service status and active scheme parameters."""
        info = scheme.describe()
        return HealthResponse(
            status="healthy",
            service="encmatrix evaluator",
            version=__version__,
            backend=info["backend"],
            slot_count=info["slot_count"],
            plain_modulus=info["plain_modulus"],
            sessions=key_store.session_count(),
            timestamp=datetime.utcnow().isoformat(),
        )

    if config.metrics_enabled:
        @app.get("/metrics")
        async def metrics_endpoint():
            return Response(content=metrics.export(), media_type="text/plain; version=0.0.4")

    return app


def main():
    """Entry point for the ``encmatrix-evaluator`` console script."""
    import uvicorn

    config = get_settings()
    setup_service_logging("encmatrix")
    uvicorn.run(
        "encmatrix.evaluator.service:create_app",
        factory=True,
        host=config.evaluator_host,
        port=config.evaluator_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
