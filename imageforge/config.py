"""Application configuration via environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Tuple

from pydantic import SecretStr
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Remote prediction service
    replicate_api_token: SecretStr = SecretStr("")
    replicate_base_url: str = "https://api.replicate.com/v1"
    request_timeout_seconds: float = 60.0

    # Prediction tracking
    poll_interval_seconds: float = 1.5
    max_poll_attempts: int = 300
    use_streaming: bool = True

    # Batch fan-out
    batch_throttle_seconds: float = 5.0

    # Project storage
    project_dir: Path = Path("./project")
    thumbnail_max_size: int = 256

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    cors_allow_origins: Tuple[str, ...] = ("http://localhost:5173", "http://localhost:3000")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
