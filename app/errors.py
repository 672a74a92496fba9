"""Error taxonomy for the proxy.

Every error raised while serving a request derives from :class:`ProxyError`,
which carries the HTTP status and any extra headers the response needs. The
FastAPI exception handlers in :mod:`app.main` turn them into JSON bodies.
"""

from __future__ import annotations

from typing import Dict, Optional


class ProxyError(Exception):
    status_code: int = 500

    def __init__(self, message: str, headers: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.headers = dict(headers or {})


class ValidationError(ProxyError):
    status_code = 400


class NotFoundError(ProxyError):
    status_code = 404

    def __init__(self, path: str) -> None:
        super().__init__(f"Not Found: {path}")
        self.path = path


class MethodNotAllowedError(ProxyError):
    status_code = 405

    def __init__(self, method: str, path: str, allow: str = "POST, OPTIONS") -> None:
        super().__init__(f"Method {method} not allowed on {path}", headers={"Allow": allow})
        self.method = method
        self.path = path


class ConfigurationError(ProxyError):
    status_code = 500


class UpstreamError(ProxyError):
    status_code = 500

    def __init__(self, message: str, upstream_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class UpstreamTimeoutError(UpstreamError):
    def __init__(self, timeout: float) -> None:
        super().__init__(
            f"The model provider did not answer within {timeout:g} seconds, please retry."
        )
        self.timeout = timeout
