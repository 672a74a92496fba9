from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


load_dotenv()

DEFAULT_UPSTREAM_BASE_URL = "https://api.deepseek.com/v1"


class Settings:
    """Proxy settings loaded from environment variables.

    Keep all credentials and config centralized here. The upstream key is
    only ever read from the environment (or .env).
    """

    def __init__(self) -> None:
        self.app_env: str = os.getenv("APP_ENV", "development")
        self.upstream_api_key: Optional[str] = os.getenv("DEEPSEEK_API_KEY") or os.getenv(
            "UPSTREAM_API_KEY"
        )
        # Per-deployment override, e.g. UPSTREAM_BASE_URL_PRODUCTION
        self.upstream_base_url: str = (
            os.getenv(f"UPSTREAM_BASE_URL_{self.app_env.upper()}")
            or os.getenv("UPSTREAM_BASE_URL")
            or DEFAULT_UPSTREAM_BASE_URL
        ).rstrip("/")
        self.upstream_model: str = os.getenv("UPSTREAM_MODEL", "deepseek-chat")
        self.max_tokens: int = int(os.getenv("UPSTREAM_MAX_TOKENS", "1000"))
        self.temperature: float = float(os.getenv("UPSTREAM_TEMPERATURE", "0.7"))
        self.upstream_timeout: float = float(os.getenv("UPSTREAM_TIMEOUT", "15"))
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def completions_url(self) -> str:
        return f"{self.upstream_base_url}/chat/completions"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
