"""Shared test fixtures - reduces boilerplate across test modules.

Provides:
- ``set_test_config`` - autouse fixture that patches common settings
- ``ndjson`` / ``content_line`` / ``tool_call_line`` / ``done_line`` - helpers to script backend stream responses
- ``backend`` - patches ``ollama_client.stream_chat`` with a scripted double
- ``test_client`` - pre-built TestClient against the app
"""

import json
import os

import pytest
from fastapi.testclient import TestClient

from lexagent.main import app


def pytest_configure(config):
    """Register custom markers.

    Tests that need a real Ollama backend or the live Lex API should be
    decorated with ``@pytest.mark.integration`` and run explicitly with
    ``-m integration``.
    """
    config.addinivalue_line(
        "markers",
        "integration: tests requiring external services (Ollama, Lex API, web)",
    )


# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "lexagent.config.settings.OLLAMA_BASE_URL": "http://ollama.test",
    "lexagent.config.settings.OLLAMA_API_KEY": "",
    "lexagent.config.settings.OLLAMA_MAX_RETRIES": 0,
    "lexagent.config.settings.LEX_API_URL": "http://lex.test",
    "lexagent.config.settings.WEB_SEARCH_URL": "http://search.test/html/",
    "lexagent.config.settings.MAX_TOOL_ROUNDS": 25,
    "lexagent.config.settings.FRONTEND_URL": "http://localhost:5173",
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch):
    """Patch common application settings for a safe test environment.

    This is ``autouse=True`` so every test automatically gets a
    deterministic configuration that never reaches a real service.
    """
    monkeypatch.setenv("TESTING", "1")
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)


# ---------------------------------------------------------------------------
# Backend stream helpers
# ---------------------------------------------------------------------------


def ndjson(*objs: dict) -> bytes:
    """Encode *objs* as one NDJSON body."""
    return b"".join(json.dumps(o).encode() + b"\n" for o in objs)


def content_line(text: str) -> dict:
    return {"message": {"role": "assistant", "content": text}, "done": False}


def tool_call_line(*calls: tuple[str, dict]) -> dict:
    return {
        "message": {
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {"function": {"name": name, "arguments": args}} for name, args in calls
            ],
        },
        "done": False,
    }


def done_line(prompt_eval_count: int = 10, eval_count: int = 5) -> dict:
    return {
        "message": {"role": "assistant", "content": ""},
        "done": True,
        "total_duration": 1000,
        "load_duration": 10,
        "prompt_eval_count": prompt_eval_count,
        "eval_count": eval_count,
    }


class ScriptedBackend:
    """Stand-in for ``ollama_client.stream_chat``.

    Each call pops the next scripted response: a list of byte chunks, or an
    exception instance to raise before yielding anything.  Every call's
    arguments are recorded on ``calls``.
    """

    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    def __call__(self, model, messages, tools, num_ctx, max_retries=None):
        self.calls.append({
            "model": model,
            "messages": messages,
            "tools": tools,
            "num_ctx": num_ctx,
        })
        if not self.responses:
            raise AssertionError("backend called more times than scripted")
        response = self.responses.pop(0)
        return self._stream(response)

    @staticmethod
    async def _stream(response):
        if isinstance(response, BaseException):
            raise response
        for chunk in response:
            yield chunk


@pytest.fixture
def backend(monkeypatch):
    """Return a factory that installs a ``ScriptedBackend``."""

    def _install(*responses) -> ScriptedBackend:
        scripted = ScriptedBackend(list(responses))
        monkeypatch.setattr("lexagent.clients.ollama_client.stream_chat", scripted)
        return scripted

    return _install


@pytest.fixture(scope="session")
def is_ci():
    """Return *True* when running in CI."""
    return os.getenv("CI") == "true"


@pytest.fixture
def test_client() -> TestClient:
    """A fresh ``TestClient`` instance wrapping the FastAPI app."""
    return TestClient(app)
