"""GraphQL transport for the chat proxy.

Both the REST route and this schema end in the same upstream call; GraphQL is
only a different envelope for the request and response bodies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from graphql import GraphQLError, build_schema, graphql_sync
from pydantic import ValidationError as PydanticValidationError

from app.errors import ProxyError, ValidationError
from app.schemas import ChatRequest, to_upstream_messages
from provider.upstream import UpstreamClient


logger = logging.getLogger("edgechat.graphql")

HELLO_TEXT = "Hello from GraphQL API!"
INTERNAL_ERROR_MESSAGE = "Internal server error"

SCHEMA_SDL = """
type Query {
  hello: String!
  health: Health!
}

type Mutation {
  chat(input: ChatInput!): ChatResponse!
  sendMessage(input: ChatInput!): ChatResponse!
}

input ChatInput {
  messages: [MessageInput!]!
}

input MessageInput {
  role: String!
  content: String!
}

type ChatResponse {
  choices: [Choice!]!
  usage: Usage
  model: String
}

type Choice {
  message: Message!
  index: Int
  finish_reason: String
}

type Message {
  role: String!
  content: String!
}

type Usage {
  prompt_tokens: Int
  completion_tokens: Int
  total_tokens: Int
}

type Health {
  status: String!
  timestamp: String!
}
"""

schema = build_schema(SCHEMA_SDL)


class RootResolver:
    """Root value for query and mutation fields.

    graphql-core's default resolver looks fields up as attributes on the root
    value and calls them with ``(info, **arguments)``.
    """

    def __init__(self, upstream: UpstreamClient) -> None:
        self.upstream = upstream

    def hello(self, info) -> str:
        return HELLO_TEXT

    def health(self, info) -> Dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    def chat(self, info, input: Dict[str, Any]) -> Dict[str, Any]:
        try:
            request = ChatRequest(messages=input.get("messages") or [])
        except PydanticValidationError as exc:
            raise ValidationError(describe_validation_errors(exc.errors())) from exc
        logger.info("Executing chat mutation: turns=%s", len(request.messages))
        return self.upstream.complete(to_upstream_messages(request.messages))

    # Older clients call the mutation sendMessage
    sendMessage = chat


def describe_validation_errors(errors) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "Invalid request format: " + "; ".join(parts)


def _status_for(error: GraphQLError) -> int:
    original = error.original_error
    if original is None:
        # Syntax and schema validation errors
        return 400
    if isinstance(original, ProxyError):
        return original.status_code
    return 500


def execute_graphql(
    root: RootResolver,
    query: Optional[str],
    variables: Optional[Dict[str, Any]] = None,
    operation_name: Optional[str] = None,
) -> Tuple[int, Dict[str, Any]]:
    """Run one GraphQL request, returning ``(http_status, body)``.

    Failures that are not a :class:`ProxyError` are logged with their
    traceback and reach the caller only as ``Internal server error``, the
    same text the REST route uses.
    """
    if not query:
        raise ValidationError("Query is required")

    result = graphql_sync(
        schema,
        query,
        root_value=root,
        variable_values=variables,
        operation_name=operation_name,
    )
    body = result.formatted
    if not result.errors:
        return 200, body

    for err, formatted in zip(result.errors, body["errors"]):
        original = err.original_error
        if original is not None and not isinstance(original, ProxyError):
            logger.error("GraphQL resolver failed: %s", original, exc_info=original)
            formatted["message"] = INTERNAL_ERROR_MESSAGE
    return max(_status_for(err) for err in result.errors), body
