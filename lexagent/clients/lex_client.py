"""Lex API client -- UK legislation search, legislation text, and case-law search."""

import httpx
from cachetools import TTLCache

from lexagent.config import settings

SEARCH_LIMIT = 5

# ── Response cache ──────────────────────────────────────────────────────────
# Key: legislation_id.  Full text of an enacted Act does not change between
# calls, and the worker often fetches the same Act more than once.

_text_cache: TTLCache[str, dict] = TTLCache(maxsize=100, ttl=600)

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for Lex API calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=settings.LEX_API_TIMEOUT_SECONDS)
    return _client


async def close_client() -> None:
    """Close the shared HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def clear_cache() -> None:
    _text_cache.clear()


# ── Helpers ──────────────────────────────────────────────────────────────────


def _compact(body: dict) -> dict:
    """Drop unset optional filters so they are omitted from the request."""
    return {k: v for k, v in body.items() if v is not None}


async def _post(path: str, body: dict) -> dict | list:
    client = _get_client()
    response = await client.post(f"{settings.LEX_API_URL}{path}", json=_compact(body))
    response.raise_for_status()
    return response.json()


# ── Endpoints ────────────────────────────────────────────────────────────────


async def search_legislation(
    query: str,
    year_from: int | None = None,
    year_to: int | None = None,
) -> dict | list:
    """Search Acts and Statutory Instruments by title or content.

    Returns the decoded JSON body.  Raises ``httpx.HTTPStatusError`` on
    non-2xx responses and ``httpx.HTTPError`` on transport failures.
    """
    return await _post(
        "/legislation/search",
        {
            "query": query,
            "year_from": year_from,
            "year_to": year_to,
            "limit": SEARCH_LIMIT,
            "include_text": False,
        },
    )


async def get_legislation_text(legislation_id: str) -> dict | list:
    """Fetch the full text of one piece of legislation (e.g. ``ukpga/1990/18``).

    Results are cached for 10 minutes per id.
    """
    cached = _text_cache.get(legislation_id)
    if cached is not None:
        return cached
    data = await _post("/legislation/text", {"legislation_id": legislation_id})
    _text_cache[legislation_id] = data
    return data


async def search_caselaw(
    query: str,
    year_from: int | None = None,
    year_to: int | None = None,
) -> dict | list:
    """Search UK court cases and judgments."""
    return await _post(
        "/caselaw/search",
        {
            "query": query,
            "year_from": year_from,
            "year_to": year_to,
            "size": SEARCH_LIMIT,
        },
    )
