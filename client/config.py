from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Tuple

from dotenv import load_dotenv


load_dotenv()

REST = "rest"
GRAPHQL = "graphql"
TRANSPORTS = (REST, GRAPHQL)

DEFAULT_FALLBACK_TEXT = "I cannot answer that"


@dataclass(frozen=True)
class ClientConfig:
    """Where and how the client reaches the proxy.

    ``transports`` is the ordered list of attempts for one message; its length
    caps the number of calls. ``("graphql", "rest")`` tries GraphQL first and
    falls back to REST once, ``("rest", "rest", "rest")`` retries REST three
    times.
    """

    base_url: str = "http://localhost:8787"
    rest_path: str = "/api/chat"
    graphql_path: str = "/api/graphql"
    health_path: str = "/health"
    timeout: float = 30.0
    transports: Tuple[str, ...] = field(default=(REST,))
    retry_delay: float = 0.0
    fallback_text: str = DEFAULT_FALLBACK_TEXT

    def __post_init__(self) -> None:
        if not self.transports:
            raise ValueError("at least one transport attempt is required")
        if not self.fallback_text.strip():
            raise ValueError("fallback_text must not be empty")
        unknown = [t for t in self.transports if t not in TRANSPORTS]
        if unknown:
            raise ValueError(f"unknown transport(s): {', '.join(unknown)}")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def with_transports(self, *transports: str) -> "ClientConfig":
        return replace(self, transports=tuple(transports))

    @classmethod
    def from_env(cls) -> "ClientConfig":
        transports = tuple(
            t.strip() for t in os.getenv("CHAT_API_TRANSPORTS", REST).split(",") if t.strip()
        )
        return cls(
            base_url=os.getenv("CHAT_API_URL", cls.base_url),
            timeout=float(os.getenv("CHAT_API_TIMEOUT", str(cls.timeout))),
            transports=transports or (REST,),
            retry_delay=float(os.getenv("CHAT_API_RETRY_DELAY", "0")),
        )
