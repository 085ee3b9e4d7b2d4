"""
config.py - Centralised settings for the credential service
"""
from typing import Optional
from pydantic_settings import BaseSettings


class VCSettings(BaseSettings):
    # Access tokens (shared HMAC secret)
    JWT_SECRET: str = "your-super-secret-jwt-key-change-in-production"
    TOKEN_TTL_SECONDS: int = 3600

    # Verification artifact
    DEFAULT_BASE_URL: str = "https://localhost:3000"
    DEFAULT_QR_TYPE: str = "presentation"
    QR_SIZE_PX: int = 256

    # Key store: in-memory when unset, JSON file otherwise
    KEY_STORE_PATH: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # API
    CORS_ORIGINS: str = "*"

    # Issuance runs kept for status queries and resumption
    MAX_TRACKED_RUNS: int = 1000

    class Config:
        env_file = ".env"


settings = VCSettings()
