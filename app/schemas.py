from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field, field_validator


Role = Literal["system", "user", "assistant"]


class ChatTurn(BaseModel):
    role: Role = Field(..., description="'user', 'assistant' or 'system'")
    content: str

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be empty")
        return value


class ChatRequest(BaseModel):
    messages: List[ChatTurn] = Field(
        ..., min_length=1, description="Full conversation, oldest first (frontend-managed)"
    )


def to_upstream_messages(turns: List[ChatTurn]) -> List[Dict[str, Any]]:
    return [t.model_dump() for t in turns]
