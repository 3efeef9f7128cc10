"""
Centralized logging configuration for the encmatrix client and evaluator
Includes structured logging, correlation IDs, and metrics integration
"""
import logging
import logging.handlers
import sys
import time
import uuid
from pathlib import Path
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from pythonjsonlogger.json import JsonFormatter


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to all log records for tracing"""

    def filter(self, record):
        if not hasattr(record, 'correlation_id'):
            record.correlation_id = str(uuid.uuid4())
        return True


class StructuredLogger:
    """Structured logger with correlation tracking"""

    @staticmethod
    def setup_logging(
        service_name: str,
        log_level: str = "INFO",
        log_file: Optional[str] = None,
        enable_json: bool = True
    ) -> logging.Logger:
        """Setup structured logging for a service.

        Handlers are attached to the ``service_name`` logger, so every module
        logger below it (``encmatrix.evaluator.service`` and so on) inherits them.
        """
        logger = logging.getLogger(service_name)
        logger.setLevel(getattr(logging, log_level.upper()))

        # Remove existing handlers
        logger.handlers.clear()

        if enable_json:
            formatter = JsonFormatter(
                '%(asctime)s %(levelname)s %(name)s %(correlation_id)s %(message)s',
                rename_fields={
                    'asctime': '@timestamp',
                    'levelname': 'level',
                    'name': 'logger'
                }
            )
        else:
            formatter = logging.Formatter(
                '%(asctime)s %(levelname)-8s %(name)s [%(correlation_id)s] %(message)s'
            )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(CorrelationIdFilter())
        logger.addHandler(console_handler)

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=100_000_000,  # 100MB
                backupCount=10
            )
            file_handler.setFormatter(formatter)
            file_handler.addFilter(CorrelationIdFilter())
            logger.addHandler(file_handler)

        return logger


class MetricsCollector:
    """Collect and export metrics to Prometheus"""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            f'{service_name}_requests_total',
            'Total requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            f'{service_name}_request_duration_seconds',
            'Request duration',
            ['method', 'endpoint'],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry
        )

        self.active_requests = Gauge(
            f'{service_name}_active_requests',
            'Requests currently being processed',
            registry=self.registry
        )

        self.error_count = Counter(
            f'{service_name}_errors_total',
            'Total errors',
            ['error_type'],
            registry=self.registry
        )

        self.operations = Counter(
            f'{service_name}_operations_total',
            'Homomorphic operations',
            ['operation_type'],
            registry=self.registry
        )

        self.payload_bytes = Histogram(
            f'{service_name}_payload_bytes',
            'Size of ciphertext payloads received',
            ['operation_type'],
            buckets=(1e4, 5e4, 1e5, 2.5e5, 5e5, 1e6, 5e6, 1e7),
            registry=self.registry
        )

    def track_request(self, method: str, endpoint: str, status: int, duration: float):
        """Track HTTP request metrics"""
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def track_error(self, error_type: str):
        self.error_count.labels(error_type=error_type).inc()

    def track_operation(self, operation_type: str, payload_bytes: int = 0):
        self.operations.labels(operation_type=operation_type).inc()
        if payload_bytes:
            self.payload_bytes.labels(operation_type=operation_type).observe(payload_bytes)

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format"""
        return generate_latest(self.registry)


class LoggingMiddleware:
    """FastAPI middleware for structured logging and metrics"""

    def __init__(self, app, logger: logging.Logger, metrics: MetricsCollector):
        self.app = app
        self.logger = logger
        self.metrics = metrics

    async def __call__(self, request, call_next):
        correlation_id = request.headers.get('X-Correlation-ID', str(uuid.uuid4()))

        self.metrics.active_requests.inc()
        start_time = time.time()

        self.logger.info(
            "Request received",
            extra={
                'correlation_id': correlation_id,
                'method': request.method,
                'path': request.url.path,
                'client': request.client.host if request.client else None
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            self.metrics.track_error(type(e).__name__)
            self.logger.exception(
                "Request failed",
                extra={'correlation_id': correlation_id, 'path': request.url.path}
            )
            raise
        finally:
            self.metrics.active_requests.dec()

        duration = time.time() - start_time
        self.metrics.track_request(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code,
            duration=duration
        )

        self.logger.info(
            "Request completed",
            extra={
                'correlation_id': correlation_id,
                'path': request.url.path,
                'status': response.status_code,
                'duration_ms': round(duration * 1000, 2)
            }
        )

        response.headers['X-Correlation-ID'] = correlation_id
        return response


def setup_service_logging(service_name: str = "encmatrix") -> logging.Logger:
    """Configure logging from the active settings"""
    from ..config import get_settings

    config = get_settings()
    return StructuredLogger.setup_logging(
        service_name=service_name,
        log_level=config.log_level,
        log_file=config.log_file,
        enable_json=config.log_format == "json"
    )
