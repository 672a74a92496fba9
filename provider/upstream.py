from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from app.errors import ConfigurationError, UpstreamError, UpstreamTimeoutError
from config.settings import Settings, get_settings


logger = logging.getLogger("edgechat.provider")


def build_payload(settings: Settings, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "model": settings.upstream_model,
        "messages": messages,
        "max_tokens": settings.max_tokens,
        "temperature": settings.temperature,
        "stream": False,
    }


class UpstreamClient:
    """Forwards a message list to the chat-completions provider.

    Holds no per-request state: every :meth:`complete` call opens its own
    ``httpx.Client`` and reads the body against a deadline of
    ``upstream_timeout`` seconds from the start of the call. ``transport`` is
    handed to httpx untouched so tests can mount a mock provider.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.transport = transport

    def complete(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        settings = self.settings
        if not settings.upstream_api_key:
            raise ConfigurationError("Missing DEEPSEEK_API_KEY in environment or .env")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {settings.upstream_api_key}",
        }
        payload = build_payload(settings, messages)

        logger.info(
            "Calling upstream: model=%s messages=%s timeout=%ss",
            settings.upstream_model,
            len(messages),
            settings.upstream_timeout,
        )
        started = time.perf_counter()
        deadline = started + settings.upstream_timeout
        try:
            with httpx.Client(timeout=settings.upstream_timeout, transport=self.transport) as client:
                with client.stream(
                    "POST", settings.completions_url, json=payload, headers=headers
                ) as response:
                    status_code = response.status_code
                    if time.perf_counter() > deadline:
                        raise UpstreamTimeoutError(settings.upstream_timeout)
                    chunks = []
                    # httpx timeouts are per read; the deadline bounds the whole call
                    for chunk in response.iter_bytes():
                        if time.perf_counter() > deadline:
                            raise UpstreamTimeoutError(settings.upstream_timeout)
                        chunks.append(chunk)
        except UpstreamTimeoutError:
            logger.error("Upstream exceeded deadline of %ss", settings.upstream_timeout)
            raise
        except httpx.TimeoutException as exc:
            logger.error("Upstream timeout after %ss", settings.upstream_timeout)
            raise UpstreamTimeoutError(settings.upstream_timeout) from exc
        except httpx.HTTPError as exc:
            logger.error("Upstream call failed: %s", exc)
            raise UpstreamError(f"Upstream call failed: {exc}") from exc

        body = b"".join(chunks)
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info("Upstream response time: %sms status=%s", duration_ms, status_code)

        if status_code >= 400:
            # Provider body can be large; keep the log line bounded
            text = body.decode("utf-8", errors="replace")
            logger.error("Upstream error %s: %s", status_code, " ".join(text.split())[:500])
            raise UpstreamError(f"Upstream API error: {status_code}", upstream_status=status_code)

        try:
            data = json.loads(body)
        except ValueError as exc:
            raise UpstreamError("Upstream returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise UpstreamError("Upstream returned an unexpected body")
        return data
