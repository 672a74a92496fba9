"""Request helper that talks to the chat proxy.

The helper is stateless: everything it needs arrives through a
:class:`~client.config.ClientConfig`, and nothing learned during one call
(such as which transport worked) is written back into that config.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from client.config import GRAPHQL, REST, ClientConfig


logger = logging.getLogger("edgechat.client")

CHAT_MUTATION = """
mutation chat($input: ChatInput!) {
  chat(input: $input) {
    choices {
      message {
        role
        content
      }
      index
      finish_reason
    }
    usage {
      prompt_tokens
      completion_tokens
      total_tokens
    }
    model
  }
}
"""

HELLO_QUERY = "query hello { hello }"
HELLO_TEXT = "Hello from GraphQL API!"


class ClientError(Exception):
    pass


class TransportError(ClientError):
    """The call never produced a usable HTTP response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(ClientError):
    """The proxy answered, but not with a completion we understand."""


@dataclass
class ChatResult:
    reply: str
    response: Dict[str, Any]
    transport: str
    attempts: int


@dataclass
class ConnectionStatus:
    status: str
    endpoint: str
    last_checked: datetime
    error: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.status == "connected"


def validate_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    if not isinstance(messages, list) or not messages:
        raise ValueError("messages must be a non-empty list")
    cleaned = []
    for index, msg in enumerate(messages):
        role = msg.get("role") if isinstance(msg, dict) else None
        content = msg.get("content") if isinstance(msg, dict) else None
        if not role or not isinstance(content, str) or not content.strip():
            raise ValueError(f"message {index} is missing role or content")
        cleaned.append({"role": role, "content": content})
    return cleaned


def extract_reply(response: Any) -> str:
    try:
        content = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProtocolError("response has no choices[0].message.content") from exc
    if not isinstance(content, str):
        raise ProtocolError("choices[0].message.content is not a string")
    return content


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return " ".join(response.text.split())[:200]
    if isinstance(body, dict):
        if body.get("error"):
            return str(body["error"])
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message"))
    return str(body)[:200]


class ChatClient:
    """Send a conversation to the proxy and unwrap the first choice.

    ``http`` may be any ``httpx.Client`` (a FastAPI ``TestClient`` works too);
    when omitted each call opens a short-lived client with
    ``config.timeout``.
    """

    def __init__(self, config: Optional[ClientConfig] = None, http: Optional[httpx.Client] = None):
        self.config = config or ClientConfig.from_env()
        self.http = http

    def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        try:
            if self.http is not None:
                response = self.http.post(url, json=payload, headers=headers, timeout=self.config.timeout)
            else:
                with httpx.Client(timeout=self.config.timeout) as client:
                    response = client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request timed out after {self.config.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Request failed: {exc}") from exc

        if response.is_error:
            raise TransportError(
                f"HTTP {response.status_code}: {_error_text(response)}",
                status_code=response.status_code,
            )
        return response

    def _get(self, url: str, timeout: float) -> httpx.Response:
        if self.http is not None:
            return self.http.get(url, timeout=timeout)
        with httpx.Client(timeout=timeout) as client:
            return client.get(url)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError("response body is not JSON") from exc

    def _send_rest(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        body = self._json(self._post(self.config.url_for(self.config.rest_path), {"messages": messages}))
        extract_reply(body)
        return body

    def _send_graphql(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        payload = {"query": CHAT_MUTATION, "variables": {"input": {"messages": messages}}}
        body = self._json(self._post(self.config.url_for(self.config.graphql_path), payload))
        if not isinstance(body, dict):
            raise ProtocolError("GraphQL response is not an object")
        errors = body.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else {}
            message = first.get("message") if isinstance(first, dict) else None
            raise ProtocolError(message or "GraphQL error")
        data = body.get("data")
        if not isinstance(data, dict):
            raise ProtocolError("GraphQL response has no data object")
        chat = data.get("chat")
        extract_reply(chat)
        return chat

    def exchange(self, messages: List[Dict[str, Any]]) -> ChatResult:
        """Run the configured transport attempts until one succeeds.

        Only :class:`TransportError` moves on to the next attempt; a
        :class:`ProtocolError` means the proxy answered and is raised at once.
        """
        cleaned = validate_messages(messages)
        attempts = self.config.transports
        senders = {REST: self._send_rest, GRAPHQL: self._send_graphql}
        last_error: Optional[TransportError] = None

        for number, transport in enumerate(attempts, start=1):
            if number > 1 and self.config.retry_delay:
                time.sleep(self.config.retry_delay * (number - 1))
            logger.debug("Attempt %s/%s via %s (%s turns)", number, len(attempts), transport, len(cleaned))
            try:
                response = senders[transport](cleaned)
            except TransportError as exc:
                logger.warning("%s attempt %s/%s failed: %s", transport, number, len(attempts), exc)
                last_error = exc
                continue
            return ChatResult(
                reply=extract_reply(response), response=response, transport=transport, attempts=number
            )

        raise last_error

    def send(self, messages: List[Dict[str, Any]]) -> str:
        return self.exchange(messages).reply

    def complete(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self.exchange(messages).response

    def check_health(self, timeout: float = 5.0) -> bool:
        try:
            response = self._get(self.config.url_for(self.config.health_path), timeout)
        except httpx.HTTPError as exc:
            logger.warning("Health check failed: %s", exc)
            return False
        if response.is_error:
            return False
        try:
            return response.json().get("status") == "ok"
        except (ValueError, AttributeError):
            return False

    def hello(self) -> bool:
        """GraphQL liveness probe."""
        try:
            response = self._post(self.config.url_for(self.config.graphql_path), {"query": HELLO_QUERY})
            body = self._json(response)
        except ClientError as exc:
            logger.warning("GraphQL hello failed: %s", exc)
            return False
        return isinstance(body, dict) and (body.get("data") or {}).get("hello") == HELLO_TEXT

    def status(self) -> ConnectionStatus:
        healthy = self.check_health()
        graphql_ok = self.hello() if GRAPHQL in self.config.transports else True
        error = None
        if not healthy:
            error = "health check failed"
        elif not graphql_ok:
            error = "GraphQL connection failed"
        return ConnectionStatus(
            status="connected" if error is None else "failed",
            endpoint=self.config.base_url,
            last_checked=datetime.now(timezone.utc),
            error=error,
        )
