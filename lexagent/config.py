"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  The model registry (per-model context windows)
lives here too so the chat loop can resolve ``num_ctx`` without any other
lookup.
"""

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VERSION = "0.1.0"


class ModelEntry(BaseModel):
    """One entry of the model registry."""

    name: str
    context_length_kb: int = Field(gt=0)

    @property
    def context_length(self) -> int:
        return self.context_length_kb * 1024


_DEFAULT_MODELS: list[dict] = [
    {"name": "mistral-large-3:675b-cloud", "context_length_kb": 256},
    {"name": "cogito-2.1:671b-cloud", "context_length_kb": 160},
    {"name": "kimi-k2-thinking:cloud", "context_length_kb": 256},
    {"name": "minimax-m2:cloud", "context_length_kb": 200},
    {"name": "qwen3-coder:480b-cloud", "context_length_kb": 256},
    {"name": "deepseek-v3.1:671b-cloud", "context_length_kb": 160},
    {"name": "glm-4.6:cloud", "context_length_kb": 198},
    {"name": "gpt-oss:120b-cloud", "context_length_kb": 128},
]


class Settings(BaseSettings):
    """Application settings - sourced from environment / ``.env`` file.

    Nothing is strictly required: every value has a default that points at a
    local Ollama instance and the public Lex API.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    FRONTEND_URL: str = "http://localhost:5173"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # -- model backend (Ollama-compatible /api/chat) --
    OLLAMA_BASE_URL: str = "http://127.0.0.1:11434"
    OLLAMA_API_KEY: str = ""
    OLLAMA_DEFAULT_CONTEXT: int = Field(default=131_072, gt=0)
    OLLAMA_TIMEOUT_SECONDS: float = 300.0
    OLLAMA_MAX_RETRIES: int = Field(default=2, ge=0)

    # -- legal data API (leaf tools) --
    LEX_API_URL: str = (
        "https://lex-api.victoriousdesert-f8e685e0.uksouth.azurecontainerapps.io"
    )
    LEX_API_TIMEOUT_SECONDS: float = 60.0

    # -- web search (deep-research agent only) --
    WEB_SEARCH_URL: str = "https://html.duckduckgo.com/html/"
    WEB_SEARCH_MAX_RESULTS: int = Field(default=5, ge=1)

    # -------------------------------------------------------------------------
    # MAX_TOOL_ROUNDS - upper bound on tool rounds in one chat loop run.
    #
    # The backend decides when to stop calling tools; a misbehaving model can
    # request tools forever.  0 disables the cap.
    # -------------------------------------------------------------------------
    MAX_TOOL_ROUNDS: int = Field(default=25, ge=0)

    MODELS: list[ModelEntry] = Field(
        default_factory=lambda: [ModelEntry(**m) for m in _DEFAULT_MODELS]
    )

    @model_validator(mode="after")
    def _strip_base_urls(self) -> "Settings":
        """Trailing slashes would produce ``//api/chat`` style URLs."""
        self.OLLAMA_BASE_URL = self.OLLAMA_BASE_URL.rstrip("/")
        self.LEX_API_URL = self.LEX_API_URL.rstrip("/")
        return self


settings = Settings()


# ---------------------------------------------------------------------------
# Model registry resolution
# ---------------------------------------------------------------------------


def get_model(name: str) -> ModelEntry | None:
    """Return the registry entry for *name*, or ``None`` if unknown."""
    for entry in settings.MODELS:
        if entry.name == name:
            return entry
    return None


def get_context_window(model: str, override: int | None = None) -> int:
    """Return the ``num_ctx`` to send for *model*.

    Resolution order:
      1. Explicit *override* (from the caller's request)
      2. The model's registry default (``context_length_kb * 1024``)
      3. ``OLLAMA_DEFAULT_CONTEXT``
    """
    if override:
        return override
    entry = get_model(model)
    if entry is not None:
        return entry.context_length
    return settings.OLLAMA_DEFAULT_CONTEXT


def list_models() -> list[dict]:
    """Return the registry in the shape served by ``GET /api/models``."""
    return [
        {"name": m.name, "context_length": m.context_length}
        for m in settings.MODELS
    ]
