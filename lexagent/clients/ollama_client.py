"""Ollama client -- streaming ``/api/chat`` wrapper for the chat loop.

Opens one streaming completion request and yields the raw response body
chunks; decoding is the ``StreamDecoder``'s job.  Transient failures that
happen *before* any byte has been read (connection refused, timeouts,
429/5xx) are retried with exponential back-off.  Once streaming has started
a failure is final, because the caller has already seen partial output.

No business logic, no HTTP framework imports.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator

import httpx

from lexagent.config import settings
from lexagent.errors import BackendError

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"

BASE_BACKOFF = 2.0            # seconds - exponential: 2, 4, 8, ...
_RETRYABLE_CODES = frozenset({429, 500, 502, 503})

UNREACHABLE_MESSAGE = (
    "Agent Service (Ollama) is not reachable. "
    "Please ensure it is running on your machine."
)

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for backend calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=settings.OLLAMA_TIMEOUT_SECONDS)
    return _client


async def close_client() -> None:
    """Close the shared backend HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def _headers() -> dict:
    """Build request headers; the bearer token is only sent when configured."""
    headers = {"Content-Type": "application/json"}
    if settings.OLLAMA_API_KEY:
        headers["Authorization"] = f"Bearer {settings.OLLAMA_API_KEY}"
    return headers


def _retry_wait(response: httpx.Response | None, attempt: int) -> float:
    """Compute how long to wait before retrying.

    Prefers the ``retry-after`` header.  Falls back to exponential
    backoff: 2, 4, 8, ... seconds, capped at 30s.
    """
    if response is not None:
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return min(float(retry_after), 60.0)
            except (ValueError, TypeError):
                pass
    return min(BASE_BACKOFF ** (attempt + 1), 30.0)


def _error_detail(body: bytes) -> str:
    """Pull the ``error`` field out of an Ollama error body, if there is one."""
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return text


def build_payload(
    model: str,
    messages: list[dict],
    tools: list[dict],
    num_ctx: int,
) -> dict:
    """Build the ``/api/chat`` request body."""
    return {
        "model": model,
        "messages": messages,
        "tools": tools,
        "stream": True,
        "options": {"num_ctx": num_ctx},
    }


async def stream_chat(
    model: str,
    messages: list[dict],
    tools: list[dict],
    num_ctx: int,
    max_retries: int | None = None,
) -> AsyncIterator[bytes]:
    """Stream one chat completion, yielding raw NDJSON body chunks.

    Args:
        model: Model identifier from the registry.
        messages: Conversation in ``/api/chat`` wire format.
        tools: Tool specs the model may call.
        num_ctx: Context window to request.
        max_retries: Override for ``OLLAMA_MAX_RETRIES``.

    Yields:
        bytes: Response body chunks as they arrive (not line aligned).

    Raises:
        BackendError: On unreachable backend, non-retryable HTTP status,
            exhausted retries, or a transport failure mid-stream.
    """
    retries = settings.OLLAMA_MAX_RETRIES if max_retries is None else max_retries
    url = f"{settings.OLLAMA_BASE_URL}{CHAT_PATH}"
    payload = build_payload(model, messages, tools, num_ctx)

    for attempt in range(retries + 1):
        started = False
        try:
            client = _get_client()
            async with client.stream(
                "POST", url, headers=_headers(), json=payload,
            ) as response:
                if response.status_code in _RETRYABLE_CODES and attempt < retries:
                    wait = _retry_wait(response, attempt)
                    logger.warning(
                        "Backend stream %d (attempt %d/%d), retrying in %.1fs",
                        response.status_code, attempt + 1, retries + 1, wait,
                    )
                    await asyncio.sleep(wait)
                    continue
                if response.status_code >= 400:
                    body = await response.aread()
                    raise BackendError(
                        f"Ollama API {response.status_code}: {_error_detail(body)}"
                    )

                started = True
                async for chunk in response.aiter_bytes():
                    yield chunk
            return

        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            if not started and attempt < retries:
                wait = _retry_wait(None, attempt)
                logger.warning(
                    "Backend %s (attempt %d/%d), retrying in %.1fs",
                    type(exc).__name__, attempt + 1, retries + 1, wait,
                )
                await asyncio.sleep(wait)
                continue
            if isinstance(exc, httpx.ConnectError):
                raise BackendError(UNREACHABLE_MESSAGE) from exc
            raise BackendError(f"Backend timed out: {type(exc).__name__}") from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"Backend stream failed: {exc}") from exc


async def ping() -> bool:
    """Return whether the backend answers ``GET /api/version``."""
    try:
        client = _get_client()
        response = await client.get(
            f"{settings.OLLAMA_BASE_URL}/api/version", headers=_headers(), timeout=5.0,
        )
    except httpx.HTTPError as exc:
        logger.debug("Backend ping failed: %s", exc)
        return False
    return response.status_code < 400
