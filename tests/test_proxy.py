import time

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from provider.upstream import UpstreamClient
from tests.conftest import UPSTREAM_BASE, FakeUpstream


HI = {"messages": [{"role": "user", "content": "hi"}]}


def test_chat_relays_upstream_completion(api, fake_upstream):
    response = api.post("/api/chat", json=HI)

    assert response.status_code == 200
    assert response.json()["choices"][0]["message"] == {"role": "assistant", "content": "hello"}
    assert response.json()["usage"]["total_tokens"] == 4
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["x-response-time"].endswith("ms")

    assert len(fake_upstream.calls) == 1
    call = fake_upstream.calls[0]
    assert call["url"] == f"{UPSTREAM_BASE}/chat/completions"
    assert call["headers"]["authorization"] == "Bearer test-key"
    assert call["json"] == {
        "model": "deepseek-chat",
        "messages": [{"role": "user", "content": "hi"}],
        "max_tokens": 1000,
        "temperature": 0.7,
        "stream": False,
    }


def test_chat_alias_path(api, fake_upstream):
    response = api.post("/chat", json=HI)

    assert response.status_code == 200
    assert len(fake_upstream.calls) == 1


def test_chat_preserves_message_order(api, fake_upstream):
    messages = [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "again"},
    ]
    api.post("/api/chat", json={"messages": messages})

    assert fake_upstream.calls[0]["json"]["messages"] == messages


@pytest.mark.parametrize(
    "body",
    [
        {"messages": []},
        {},
        {"messages": "hi"},
        {"messages": [{"role": "user"}]},
        {"messages": [{"role": "user", "content": "   "}]},
        {"messages": [{"role": "robot", "content": "hi"}]},
    ],
)
def test_invalid_body_is_rejected_before_upstream(api, fake_upstream, body):
    response = api.post("/api/chat", json=body)

    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid request format")
    assert response.headers["access-control-allow-origin"] == "*"
    assert fake_upstream.calls == []


def test_malformed_json_is_rejected(api, fake_upstream):
    response = api.post(
        "/api/chat", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert "error" in response.json()
    assert fake_upstream.calls == []


def test_wrong_method_on_chat(api, fake_upstream):
    response = api.get("/api/chat")

    assert response.status_code == 405
    assert response.headers["allow"] == "POST, OPTIONS"
    assert response.headers["access-control-allow-origin"] == "*"
    assert "GET" in response.json()["error"]
    assert fake_upstream.calls == []


def test_wrong_method_on_health(api):
    response = api.post("/health", json={})

    assert response.status_code == 405
    assert response.headers["allow"] == "GET, OPTIONS"


def test_unknown_path(api):
    response = api.get("/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found: /nope"}
    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.parametrize("path", ["/api/chat", "/graphql", "/health", "/does/not/exist"])
def test_preflight_on_any_path(api, fake_upstream, path):
    response = api.options(path)

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "GET, POST, OPTIONS"
    assert response.headers["access-control-max-age"] == "86400"
    assert fake_upstream.calls == []


def test_upstream_timeout_is_500(make_api):
    upstream = FakeUpstream(exc=httpx.ReadTimeout)
    response = make_api(upstream).post("/api/chat", json=HI)

    assert response.status_code == 500
    assert "please retry" in response.json()["error"]
    assert response.headers["access-control-allow-origin"] == "*"
    assert len(upstream.calls) == 1


def test_upstream_connection_error_is_500(make_api):
    response = make_api(FakeUpstream(exc=httpx.ConnectError)).post("/api/chat", json=HI)

    assert response.status_code == 500
    assert response.json()["error"].startswith("Upstream call failed")


def test_upstream_error_status_is_reported(make_api):
    upstream = FakeUpstream(status=503, body={"error": {"message": "overloaded"}})
    response = make_api(upstream).post("/api/chat", json=HI)

    assert response.status_code == 500
    assert "503" in response.json()["error"]
    assert "overloaded" not in response.json()["error"]


def test_missing_api_key(make_api, settings, fake_upstream):
    settings.upstream_api_key = None
    response = make_api(fake_upstream).post("/api/chat", json=HI)

    assert response.status_code == 500
    assert "DEEPSEEK_API_KEY" in response.json()["error"]
    assert fake_upstream.calls == []


def test_identical_requests_are_independent(api, fake_upstream):
    first = api.post("/api/chat", json=HI)
    second = api.post("/api/chat", json=HI)

    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()
    assert len(fake_upstream.calls) == 2
    assert fake_upstream.calls[0]["json"] == fake_upstream.calls[1]["json"]


@pytest.mark.parametrize("path", ["/health", "/api/health"])
def test_health(api, fake_upstream, path):
    response = api.get(path)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["environment"] == "development"
    assert body["version"]
    assert response.headers["access-control-allow-origin"] == "*"
    assert fake_upstream.calls == []


def test_index_lists_endpoints(api):
    body = api.get("/api").json()

    assert body["status"] == "online"
    assert body["endpoints"] == {"chat": "/api/chat", "graphql": "/graphql", "health": "/health"}


def test_slow_upstream_returns_500_within_deadline(slow_upstream):
    settings = slow_upstream(byte_delay=0.05, timeout=0.5)
    client = TestClient(create_app(settings, UpstreamClient(settings)))

    started = time.perf_counter()
    response = client.post("/api/chat", json=HI)
    elapsed = time.perf_counter() - started

    assert response.status_code == 500
    assert "please retry" in response.json()["error"]
    assert response.headers["access-control-allow-origin"] == "*"
    assert elapsed < 0.5 + 1.0


def test_unexpected_error_is_masked(make_api):
    def failing_upstream(request):
        raise RuntimeError("kaboom")

    response = make_api(failing_upstream, raise_server_exceptions=False).post("/api/chat", json=HI)

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    assert response.headers["access-control-allow-origin"] == "*"
