"""Tests for config defaults and the model registry."""

from lexagent import config
from lexagent.config import Settings, get_context_window, get_model, list_models


def test_settings_defaults(monkeypatch):
    """Nothing is required; defaults point at a local Ollama."""
    for name in ("OLLAMA_BASE_URL", "MAX_TOOL_ROUNDS", "WEB_SEARCH_MAX_RESULTS"):
        monkeypatch.delenv(name, raising=False)
    s = Settings(_env_file=None)

    assert s.OLLAMA_BASE_URL == "http://127.0.0.1:11434"
    assert s.MAX_TOOL_ROUNDS == 25
    assert s.WEB_SEARCH_MAX_RESULTS == 5
    assert len(s.MODELS) == 8


def test_settings_strip_trailing_slashes():
    s = Settings(_env_file=None, OLLAMA_BASE_URL="http://ollama:11434/", LEX_API_URL="http://lex/")
    assert s.OLLAMA_BASE_URL == "http://ollama:11434"
    assert s.LEX_API_URL == "http://lex"


def test_settings_read_from_env(monkeypatch):
    monkeypatch.setenv("MAX_TOOL_ROUNDS", "0")
    monkeypatch.setenv("OLLAMA_API_KEY", "sk-test")
    s = Settings(_env_file=None)
    assert s.MAX_TOOL_ROUNDS == 0
    assert s.OLLAMA_API_KEY == "sk-test"


def test_get_model_known_and_unknown():
    assert get_model("glm-4.6:cloud").context_length == 198 * 1024
    assert get_model("llama-local") is None


def test_context_window_override_wins():
    assert get_context_window("glm-4.6:cloud", 4096) == 4096


def test_context_window_registry_default():
    assert get_context_window("gpt-oss:120b-cloud") == 131072


def test_context_window_fallback_for_unknown_model(monkeypatch):
    monkeypatch.setattr(config.settings, "OLLAMA_DEFAULT_CONTEXT", 8192)
    assert get_context_window("llama-local") == 8192
    assert get_context_window("llama-local", None) == 8192


def test_list_models_shape():
    models = list_models()
    assert models[0] == {"name": "mistral-large-3:675b-cloud", "context_length": 256 * 1024}
    assert all(set(m) == {"name", "context_length"} for m in models)
