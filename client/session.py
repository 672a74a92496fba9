from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from client.http import ChatClient, ProtocolError, TransportError


logger = logging.getLogger("edgechat.client")

_ids = itertools.count(1)


@dataclass
class DisplayMessage:
    role: str
    content: str
    id: int = field(default_factory=lambda: next(_ids))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_wire(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class SessionBusyError(RuntimeError):
    pass


class ChatSession:
    """In-memory transcript for one conversation.

    Only one exchange may be in flight at a time; a second ``send`` while the
    first is waiting on the proxy raises :class:`SessionBusyError`. Failed
    exchanges never raise: a fallback assistant turn keeps the transcript
    readable. Transport failures append their error text to the fallback;
    the error also lands in ``last_error``.
    """

    def __init__(self, client: ChatClient) -> None:
        self.client = client
        self.messages: List[DisplayMessage] = []
        self.last_error: str = ""
        self.last_transport: Optional[str] = None
        self._in_flight = threading.Lock()

    @property
    def loading(self) -> bool:
        return self._in_flight.locked()

    def history(self) -> List[Dict[str, str]]:
        return [m.to_wire() for m in self.messages]

    def send(self, text: str) -> Optional[DisplayMessage]:
        content = (text or "").strip()
        if not content:
            return None
        if not self._in_flight.acquire(blocking=False):
            raise SessionBusyError("a message is already being sent")
        try:
            self.messages.append(DisplayMessage(role="user", content=content))
            self.last_error = ""
            reply = self._exchange()
            self.messages.append(reply)
            return reply
        finally:
            self._in_flight.release()

    def _exchange(self) -> DisplayMessage:
        fallback = self.client.config.fallback_text
        try:
            result = self.client.exchange(self.history())
        except TransportError as exc:
            logger.error("Chat exchange failed: %s", exc)
            self.last_error = str(exc)
            return DisplayMessage(role="assistant", content=f"{fallback} ({exc})")
        except ProtocolError as exc:
            logger.error("Unexpected response from proxy: %s", exc)
            self.last_error = str(exc)
            return DisplayMessage(role="assistant", content=fallback)

        self.last_transport = result.transport
        return DisplayMessage(role="assistant", content=result.reply)

    def clear(self) -> None:
        logger.info("Clearing %s messages", len(self.messages))
        self.messages = []
        self.last_error = ""
