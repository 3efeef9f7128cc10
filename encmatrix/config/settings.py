"""
Centralized configuration for the encmatrix client and evaluator.
All values can be overridden through the environment or a .env file.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Environment-based configuration"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === EVALUATOR ===
    evaluator_host: str = "0.0.0.0"
    evaluator_port: int = 8200
    evaluator_url: str = "http://localhost:8200"

    # === SCHEME ===
    # "seal" uses Microsoft SEAL through TenSEAL, "simulated" the in-memory slot model
    scheme_backend: str = "seal"
    poly_modulus_degree: int = 4096
    # Prime congruent to 1 mod 2 * poly_modulus_degree, large enough that
    # 128 * 128 * matrix_size_max < plain_modulus / 2
    plain_modulus: int = (1 << 13) * 119 + 1

    # === MATRICES ===
    matrix_size_max: int = 16
    value_min: int = -128
    value_max: int = 127

    # === CLIENT ===
    request_timeout_seconds: float = 60.0

    # === LOGGING / METRICS ===
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None
    metrics_enabled: bool = True


# Singleton instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create settings singleton"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


settings = get_settings()
