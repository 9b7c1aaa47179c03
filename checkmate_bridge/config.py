"""
Configuration settings for the Checkmate Bridge
"""
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "checkmate-bridge"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 3003
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    # Checkmate backend
    CHECKMATE_URL: str = "http://127.0.0.1:8000"
    REQUEST_TIMEOUT: float = 30.0  # seconds, non-streaming calls only

    # Run defaults
    DEFAULT_BROWSER: str = "chromium-headless"
    DEFAULT_MAX_RETRIES: int = 2
    DEFAULT_RETRY_MODE: str = "intelligent"

    class Config:
        env_file = ".env"
        extra = "allow"


settings = Settings()
