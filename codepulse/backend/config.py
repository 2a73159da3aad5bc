"""Application configuration using pydantic-settings."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    WEBHOOK_SECRET: str = ""
    DB_PATH: str = str(Path(__file__).parent / "codepulse.db")
    LOG_DIR: str = str(Path(__file__).parent / "logs")
    LOG_LEVEL: str = "INFO"
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    CORS_ORIGINS: list[str] = ["*"]

    # Upper bounds for outbound calls; a timeout counts as a transient failure
    STORE_TIMEOUT_SECONDS: float = 5.0
    PUBLISH_TIMEOUT_SECONDS: float = 2.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()

# Ensure log directory exists
os.makedirs(settings.LOG_DIR, exist_ok=True)
