"""Web search client -- DuckDuckGo HTML endpoint, parsed with BeautifulSoup.

Used only by the deep-research agent's ``search_web`` tool.  The HTML
endpoint needs no API key.  Each ``.result`` block carries its own
``result__a`` link and ``result__snippet``; DuckDuckGo's ``uddg=`` redirect
links are unwrapped to the target URL.
"""

import logging
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

import httpx
from bs4 import BeautifulSoup

from lexagent.config import VERSION, settings

logger = logging.getLogger(__name__)

_AD_MARKERS = ("/y.js?", "ad_provider")


@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    snippet: str = ""


# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for web search."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=30.0,
            follow_redirects=True,
            headers={
                "User-Agent": f"lexagent/{VERSION}",
                "Accept-Language": "en-GB,en;q=0.9",
            },
        )
    return _client


async def close_client() -> None:
    """Close the shared HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


# ── Parsing ──────────────────────────────────────────────────────────────────


def _text(element) -> str:
    if element is None:
        return ""
    return " ".join(element.get_text().split())


def _unwrap_url(raw: str) -> str:
    if raw.startswith("//"):
        raw = "https:" + raw
    target = parse_qs(urlparse(raw).query).get("uddg")
    if target:
        return target[0]
    return raw


def parse_results(page: str, max_results: int) -> list[SearchResult]:
    """Extract up to *max_results* organic results from a results page."""
    soup = BeautifulSoup(page, "html.parser")

    results: list[SearchResult] = []
    for block in soup.select(".result"):
        if "result--ad" in (block.get("class") or []):
            continue
        link = block.select_one("a.result__a")
        if link is None:
            continue
        title = _text(link)
        if not title:
            continue
        url = _unwrap_url(link.get("href", ""))
        if any(marker in url for marker in _AD_MARKERS):
            continue
        snippet = _text(block.select_one(".result__snippet"))
        results.append(SearchResult(title=title, url=url, snippet=snippet))
        if len(results) >= max_results:
            break
    return results


def format_results(results: list[SearchResult]) -> str:
    """Render results as the numbered text block handed back to the model."""
    blocks = [
        f"[Result {i}]\n"
        f"Title: {r.title or 'No Title'}\n"
        f"Source: {r.url or 'No Link'}\n"
        f"Snippet: {r.snippet or 'No snippet available.'}\n"
        for i, r in enumerate(results, 1)
    ]
    return "\n".join(blocks)


# ── Search ───────────────────────────────────────────────────────────────────


async def search(query: str, max_results: int | None = None) -> list[SearchResult]:
    """Run one search and return parsed results.

    Raises ``httpx.HTTPError`` on transport or HTTP status failures.
    """
    limit = max_results or settings.WEB_SEARCH_MAX_RESULTS
    client = _get_client()
    response = await client.post(settings.WEB_SEARCH_URL, data={"q": query})
    response.raise_for_status()
    return parse_results(response.text, limit)


async def search_web(query: str) -> str:
    """Search the web and return model-ready text.  Never raises."""
    logger.info("[Web Search] Searching for: %s", query)
    try:
        results = await search(query)
    except httpx.HTTPError as exc:
        logger.error("[Web Search] Error: %s", exc)
        return f"Error performing web search: {exc}"

    if not results:
        logger.warning("[Web Search] No results returned for query: %s", query)
        return "No web results found."
    return format_results(results)
