from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import __version__
from app.errors import MethodNotAllowedError, NotFoundError, ProxyError, ValidationError
from app.graphql_api import (
    INTERNAL_ERROR_MESSAGE,
    RootResolver,
    describe_validation_errors,
    execute_graphql,
)
from app.schemas import ChatRequest, to_upstream_messages
from config.settings import Settings, get_settings
from provider.upstream import UpstreamClient


logging.basicConfig(
    level=get_settings().log_level, format="[%(asctime)s] %(levelname)s - %(message)s"
)
logger = logging.getLogger("edgechat")

SERVICE_NAME = "edgechat"

CHAT_PATHS = ("/api/chat", "/chat")
GRAPHQL_PATHS = ("/graphql", "/api/graphql")
HEALTH_PATHS = ("/health", "/api/health")
INDEX_PATHS = ("/", "/api")

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "86400",
}


class GraphQLRequest(BaseModel):
    query: Optional[str] = None
    variables: Optional[Dict[str, Any]] = None
    operationName: Optional[str] = None


def error_response(request: Request, err: ProxyError) -> JSONResponse:
    """Render an error in the envelope the calling transport expects."""
    if request.url.path in GRAPHQL_PATHS:
        body: Dict[str, Any] = {"errors": [{"message": err.message}]}
    else:
        body = {"error": err.message}
    headers = {"Access-Control-Allow-Origin": "*", **err.headers}
    return JSONResponse(status_code=err.status_code, content=body, headers=headers)


def create_app(
    settings: Optional[Settings] = None, upstream: Optional[UpstreamClient] = None
) -> FastAPI:
    settings = settings or get_settings()
    upstream = upstream or UpstreamClient(settings)
    graphql_root = RootResolver(upstream)

    app = FastAPI(title="edgechat chat proxy", version=__version__)
    app.state.settings = settings
    app.state.upstream = upstream

    # CORS: every response, including errors, must be readable from any origin
    @app.middleware("http")
    async def cors_and_timing(request: Request, call_next):
        started = time.perf_counter()
        logger.info("%s %s", request.method, request.url.path)
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=PREFLIGHT_HEADERS)

        response = await call_next(request)
        response.headers["Access-Control-Allow-Origin"] = "*"
        if request.url.path in CHAT_PATHS + GRAPHQL_PATHS:
            duration_ms = int((time.perf_counter() - started) * 1000)
            response.headers["X-Response-Time"] = f"{duration_ms}ms"
            logger.info("%s completed in %sms", request.url.path, duration_ms)
        return response

    @app.exception_handler(ProxyError)
    async def handle_proxy_error(request: Request, exc: ProxyError):
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc.message)
        else:
            logger.warning("Request rejected (%s): %s", exc.status_code, exc.message)
        return error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        err = ValidationError(describe_validation_errors(exc.errors()))
        logger.warning("Invalid body on %s: %s", request.url.path, err.message)
        return error_response(request, err)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        path = request.url.path
        if exc.status_code == 404:
            err: ProxyError = NotFoundError(path)
        elif exc.status_code == 405:
            allow = "GET, OPTIONS" if path in HEALTH_PATHS + INDEX_PATHS else "POST, OPTIONS"
            err = MethodNotAllowedError(request.method, path, allow=allow)
        else:
            err = ProxyError(str(exc.detail), headers=exc.headers)
            err.status_code = exc.status_code
        logger.info("%s %s -> %s", request.method, path, err.status_code)
        return error_response(request, err)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s: %s", request.url.path, exc)
        return error_response(request, ProxyError(INTERNAL_ERROR_MESSAGE))

    @app.post("/api/chat")
    @app.post("/chat")
    def chat(req: ChatRequest) -> Dict[str, Any]:
        logger.info(
            "Incoming chat: turns=%s last_role=%s",
            len(req.messages),
            req.messages[-1].role,
        )
        return upstream.complete(to_upstream_messages(req.messages))

    @app.post("/graphql")
    @app.post("/api/graphql")
    def graphql_endpoint(req: GraphQLRequest):
        status, body = execute_graphql(
            graphql_root, req.query, variables=req.variables, operation_name=req.operationName
        )
        return JSONResponse(status_code=status, content=body)

    @app.get("/health")
    @app.get("/api/health")
    def health():
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": __version__,
            "environment": settings.app_env,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/")
    @app.get("/api")
    def index():
        return {
            "name": SERVICE_NAME,
            "version": __version__,
            "status": "online",
            "endpoints": {
                "chat": CHAT_PATHS[0],
                "graphql": GRAPHQL_PATHS[0],
                "health": HEALTH_PATHS[0],
            },
        }

    return app


app = create_app()
