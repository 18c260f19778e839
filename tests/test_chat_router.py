"""Tests for the /api chat router -- models, SSE streaming, cancellation."""

import json

from fastapi.testclient import TestClient

from lexagent.clients.ollama_client import UNREACHABLE_MESSAGE
from lexagent.errors import BackendError
from lexagent.main import app
from lexagent.services.tools import DEEP_RESEARCH_TOOLS, MANAGER_TOOLS
from tests.conftest import content_line, done_line, ndjson

client = TestClient(app)


def _sse_events(text: str) -> list[dict]:
    events = []
    for frame in text.split("\n\n"):
        frame = frame.strip()
        if frame.startswith("data: "):
            events.append(json.loads(frame[len("data: "):]))
    return events


def test_list_models():
    response = client.get("/api/models")
    assert response.status_code == 200
    models = response.json()
    assert len(models) == 8
    assert {"name": "gpt-oss:120b-cloud", "context_length": 131072} in models
    assert {"name": "glm-4.6:cloud", "context_length": 198 * 1024} in models


def test_chat_missing_model_returns_400():
    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})
    assert response.status_code == 400
    assert response.json()["error"] == "Missing messages or model"


def test_chat_missing_messages_returns_400():
    response = client.post("/api/chat", json={"model": "glm-4.6:cloud"})
    assert response.status_code == 400
    assert response.json()["error"] == "Missing messages or model"


def test_chat_invalid_role_returns_400():
    response = client.post(
        "/api/chat",
        json={"model": "glm-4.6:cloud", "messages": [{"role": "wizard", "content": "hi"}]},
    )
    assert response.status_code == 400
    assert "invalid message role" in response.json()["detail"]


def test_chat_streams_tokens_then_result(backend):
    scripted = backend([ndjson(content_line("Hello"), content_line(" there"), done_line(40, 2))])

    response = client.post(
        "/api/chat",
        json={"model": "glm-4.6:cloud", "messages": [{"role": "user", "content": "hi"}], "session_id": "abc"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["x-session-id"] == "abc"

    events = _sse_events(response.text)
    assert events[:2] == [
        {"type": "token", "content": "Hello"},
        {"type": "token", "content": " there"},
    ]
    result = events[-1]
    assert result["type"] == "result"
    assert result["message"]["role"] == "assistant"
    assert result["message"]["content"] == "Hello there"
    assert result["message"]["stats"]["eval_count"] == 2
    assert result["total_usage"] == 42
    assert len(events) == 3
    assert scripted.calls[0]["tools"] == MANAGER_TOOLS


def test_chat_backend_unreachable_emits_error_event(backend):
    backend(BackendError(UNREACHABLE_MESSAGE))

    response = client.post(
        "/api/chat",
        json={"model": "glm-4.6:cloud", "messages": [{"role": "user", "content": "hi"}]},
    )

    events = _sse_events(response.text)
    assert events == [{"type": "error", "error": UNREACHABLE_MESSAGE}]


def test_chat_deep_research_switch(backend):
    scripted = backend([ndjson(content_line("report"), done_line())])

    response = client.post(
        "/api/chat",
        json={
            "model": "glm-4.6:cloud",
            "messages": [{"role": "user", "content": "hi"}],
            "deep_research": True,
            "num_ctx": 16384,
        },
    )

    events = _sse_events(response.text)
    assert events[-1]["type"] == "result"
    assert scripted.calls[0]["tools"] == DEEP_RESEARCH_TOOLS
    assert scripted.calls[0]["num_ctx"] == 16384


def test_chat_rejects_non_positive_num_ctx():
    response = client.post(
        "/api/chat",
        json={"model": "glm-4.6:cloud", "messages": [], "num_ctx": 0},
    )
    assert response.status_code == 422


def test_cancel_unknown_session():
    response = client.post("/api/chat/nope/cancel")
    assert response.status_code == 200
    assert response.json() == {"cancelled": False}


def test_usage_after_chat_then_reset(backend):
    backend([ndjson(content_line("ok"), done_line(60000, 5536))])
    client.post(
        "/api/chat",
        json={"model": "glm-4.6:cloud", "messages": [{"role": "user", "content": "hi"}], "session_id": "usage-1"},
    )

    usage = client.get("/api/chat/usage-1/usage", params={"model": "gpt-oss:120b-cloud"}).json()
    assert usage == {
        "session_id": "usage-1",
        "total_usage": 65536,
        "turns": 1,
        "context_window": 131072,
        "usage_percent": 50.0,
        "running": False,
    }

    assert client.post("/api/chat/usage-1/reset").json() == {"reset": True}
    usage = client.get("/api/chat/usage-1/usage", params={"num_ctx": 4096}).json()
    assert usage["total_usage"] == 0
    assert usage["context_window"] == 4096


def test_usage_unknown_session():
    usage = client.get("/api/chat/never-seen/usage").json()
    assert usage["total_usage"] == 0
    assert usage["usage_percent"] == 0.0
    assert client.post("/api/chat/never-seen/reset").json() == {"reset": False}
