import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from config.settings import Settings, get_settings
from provider.upstream import UpstreamClient


UPSTREAM_BASE = "https://upstream.test/v1"


def completion(content="hello", role="assistant"):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "model": "deepseek-chat",
        "choices": [{"index": 0, "message": {"role": role, "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4},
    }


class FakeUpstream:
    """httpx.MockTransport handler standing in for the completions API."""

    def __init__(self, reply="hello", status=200, body=None, exc=None):
        self.reply = reply
        self.status = status
        self.body = body
        self.exc = exc
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(
            {
                "url": str(request.url),
                "headers": dict(request.headers),
                "json": json.loads(request.content),
            }
        )
        if self.exc is not None:
            raise self.exc(f"simulated {self.exc.__name__}", request=request)
        body = self.body if self.body is not None else completion(self.reply)
        if isinstance(body, (dict, list)):
            return httpx.Response(self.status, json=body)
        return httpx.Response(self.status, text=body)


@pytest.fixture
def settings(monkeypatch):
    for name in ("APP_ENV", "UPSTREAM_BASE_URL_DEVELOPMENT", "UPSTREAM_API_KEY", "UPSTREAM_MODEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DEEPSEEK_API_KEY", "test-key")
    monkeypatch.setenv("UPSTREAM_BASE_URL", UPSTREAM_BASE)
    get_settings.cache_clear()
    yield Settings()
    get_settings.cache_clear()


@pytest.fixture
def fake_upstream():
    return FakeUpstream()


@pytest.fixture
def make_api(settings):
    def _make(upstream, **kwargs):
        proxy = create_app(settings, UpstreamClient(settings, transport=httpx.MockTransport(upstream)))
        return TestClient(proxy, **kwargs)

    return _make


@pytest.fixture
def api(make_api, fake_upstream):
    return make_api(fake_upstream)


class _SlowCompletionHandler(BaseHTTPRequestHandler):
    """Answers like the completions API, but slowly.

    ``header_delay`` stalls before the status line; ``byte_delay`` trickles
    the body one byte at a time.
    """

    header_delay = 0.0
    byte_delay = 0.0

    def do_POST(self):
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        body = json.dumps(completion()).encode()
        try:
            time.sleep(self.header_delay)
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.flush()
            for i in range(len(body)):
                self.wfile.write(body[i : i + 1])
                self.wfile.flush()
                time.sleep(self.byte_delay)
        except OSError:
            # client hung up at its deadline
            pass

    def log_message(self, format, *args):
        pass


@pytest.fixture
def slow_upstream(settings, monkeypatch):
    """Start a real local completions server; returns a configure function."""
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)
    servers = []

    def _start(header_delay=0.0, byte_delay=0.0, timeout=0.5):
        handler = type(
            "Handler",
            (_SlowCompletionHandler,),
            {"header_delay": header_delay, "byte_delay": byte_delay},
        )
        server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
        server.daemon_threads = True
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        settings.upstream_base_url = f"http://127.0.0.1:{server.server_address[1]}/v1"
        settings.upstream_timeout = timeout
        return settings

    yield _start
    for server in servers:
        server.shutdown()
        server.server_close()
