"""
Batched homomorphic scheme backends.
"""
from typing import Optional

from .base import BatchedScheme, KeyKind
from .simulated import SimulatedBatchedScheme

BACKENDS = ("seal", "simulated")


def create_scheme(backend: Optional[str] = None, generate_keys: bool = True,
                  poly_modulus_degree: Optional[int] = None,
                  plain_modulus: Optional[int] = None) -> BatchedScheme:
    """Build a scheme from explicit arguments, falling back to the settings."""
    from ..config import get_settings

    config = get_settings()
    backend = backend or config.scheme_backend
    poly_modulus_degree = poly_modulus_degree or config.poly_modulus_degree
    plain_modulus = plain_modulus or config.plain_modulus

    if backend == "seal":
        # TenSEAL is only imported when the SEAL backend is requested
        from .seal import SealBatchedScheme
        return SealBatchedScheme(poly_modulus_degree, plain_modulus, generate_keys=generate_keys)
    if backend == "simulated":
        return SimulatedBatchedScheme(poly_modulus_degree, plain_modulus, generate_keys=generate_keys)
    raise ValueError(f"Unknown scheme backend '{backend}'. Must be one of: {', '.join(BACKENDS)}")


__all__ = ["BatchedScheme", "KeyKind", "SimulatedBatchedScheme", "create_scheme", "BACKENDS"]
