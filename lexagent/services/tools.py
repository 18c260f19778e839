"""Tool schemas and executors for the agent roles.

Every agent gets a ``ToolExecutor``: a name-keyed handler table plus the
message returned for names outside the table.  Handlers return strings and
the executor converts ordinary failures into ``Error ...`` result strings,
so the chat loop only ever sees text.  ``AbortedError`` is the one exception
that passes through; cancellation must unwind the whole request.

Leaf tools (worker set):
  search_legislation, get_legislation_text, search_caselaw
Deep research adds:
  search_web
Manager set:
  delegate_research (handler lives in ``agents`` because it runs a loop)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from lexagent.clients import lex_client, web_search
from lexagent.errors import AbortedError, ToolError
from lexagent.services.cancellation import CancellationToken
from lexagent.services.events import EventSink

logger = logging.getLogger(__name__)

Executor = Callable[[str, dict], Awaitable[str]]


@dataclass(frozen=True)
class RunContext:
    """Per-request values a handler may need beyond its arguments."""

    model: str
    num_ctx: int | None
    token: CancellationToken
    on_event: EventSink | None = None


Handler = Callable[[dict, RunContext], Awaitable[str]]


# ---------------------------------------------------------------------------
# Tool schemas (Ollama function-calling format)
# ---------------------------------------------------------------------------


def _function_spec(
    name: str,
    description: str,
    properties: dict,
    required: list[str],
) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


_YEAR_FILTERS = {
    "year_from": {"type": "integer", "description": "Optional start year filter."},
    "year_to": {"type": "integer", "description": "Optional end year filter."},
}

DELEGATE_RESEARCH_TOOL = _function_spec(
    "delegate_research",
    "Delegates a complex legal research task to a specialized agent. "
    "Use this for any question about UK legislation, case law, or legal concepts.",
    {
        "query": {
            "type": "string",
            "description": "The detailed research question to ask the specialized agent.",
        },
    },
    ["query"],
)

SEARCH_LEGISLATION_TOOL = _function_spec(
    "search_legislation",
    "Search for UK legislation (Acts and Statutory Instruments) by title or content.",
    {
        "query": {
            "type": "string",
            "description": 'The search query (e.g., "Computer Misuse Act", "speeding fines").',
        },
        **_YEAR_FILTERS,
    },
    ["query"],
)

GET_LEGISLATION_TEXT_TOOL = _function_spec(
    "get_legislation_text",
    "Get the full text of a specific piece of legislation using its ID.",
    {
        "legislation_id": {
            "type": "string",
            "description": 'The legislation ID (e.g., "ukpga/1990/18").',
        },
    },
    ["legislation_id"],
)

SEARCH_CASELAW_TOOL = _function_spec(
    "search_caselaw",
    "Search for UK court cases and judgments.",
    {
        "query": {
            "type": "string",
            "description": 'The search query (e.g., "Donoghue v Stevenson", '
                           '"negligence duty of care").',
        },
        **_YEAR_FILTERS,
    },
    ["query"],
)

SEARCH_WEB_TOOL = _function_spec(
    "search_web",
    "Search the public web for information. Use this for broad context, news, "
    "or general knowledge not in the legal database.",
    {"query": {"type": "string", "description": "The search query."}},
    ["query"],
)

MANAGER_TOOLS: list[dict] = [DELEGATE_RESEARCH_TOOL]
WORKER_TOOLS: list[dict] = [
    SEARCH_LEGISLATION_TOOL,
    GET_LEGISLATION_TEXT_TOOL,
    SEARCH_CASELAW_TOOL,
]
DEEP_RESEARCH_TOOLS: list[dict] = WORKER_TOOLS + [SEARCH_WEB_TOOL]


def tool_names(tools: list[dict]) -> list[str]:
    return [t["function"]["name"] for t in tools]


# ---------------------------------------------------------------------------
# Leaf handlers
# ---------------------------------------------------------------------------


def _require(args: dict, key: str) -> str:
    value = args.get(key)
    if value is None or value == "":
        raise ToolError(f"Missing required argument '{key}'")
    return str(value)


async def _exec_search_legislation(args: dict, ctx: RunContext) -> str:
    data = await lex_client.search_legislation(
        _require(args, "query"), args.get("year_from"), args.get("year_to"),
    )
    return json.dumps(data)


async def _exec_get_legislation_text(args: dict, ctx: RunContext) -> str:
    data = await lex_client.get_legislation_text(_require(args, "legislation_id"))
    return json.dumps(data)


async def _exec_search_caselaw(args: dict, ctx: RunContext) -> str:
    data = await lex_client.search_caselaw(
        _require(args, "query"), args.get("year_from"), args.get("year_to"),
    )
    return json.dumps(data)


async def _exec_search_web(args: dict, ctx: RunContext) -> str:
    return await web_search.search_web(_require(args, "query"))


LEAF_HANDLERS: dict[str, Handler] = {
    "search_legislation": _exec_search_legislation,
    "get_legislation_text": _exec_get_legislation_text,
    "search_caselaw": _exec_search_caselaw,
}


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


def _response_detail(response: httpx.Response) -> str:
    """JSON-encode an error response body for the model to read."""
    try:
        return json.dumps(response.json())
    except ValueError:
        return json.dumps(response.text)


class ToolExecutor:
    """Dispatches tool calls through a fixed handler table."""

    def __init__(
        self,
        handlers: dict[str, Handler],
        unknown_message: str = "Error: Unknown tool {name}",
        *,
        role: str = "",
    ) -> None:
        self.handlers = dict(handlers)
        self.unknown_message = unknown_message
        self.role = role

    def with_handlers(
        self, extra: dict[str, Handler], *, role: str | None = None,
    ) -> "ToolExecutor":
        """Return a copy with *extra* handlers added (same unknown-tool message)."""
        return ToolExecutor(
            {**self.handlers, **extra},
            self.unknown_message,
            role=self.role if role is None else role,
        )

    def bind(self, ctx: RunContext) -> Executor:
        """Return the ``(name, arguments) -> str`` callable the chat loop uses."""

        async def _execute(name: str, arguments: dict) -> str:
            return await self.execute(name, arguments, ctx)

        return _execute

    async def execute(self, name: str, arguments: dict, ctx: RunContext) -> str:
        """Run one tool call.  Returns a result or error string.

        Raises:
            AbortedError: If the request was cancelled while the tool ran.
        """
        handler = self.handlers.get(name)
        if handler is None:
            logger.warning("[%s] Unknown tool requested: %s", self.role or "tools", name)
            return self.unknown_message.format(name=name)

        logger.info(
            "[%s Tool Exec] %s with args: %s",
            self.role or "Tool", name, json.dumps(arguments, default=str),
        )
        try:
            return await handler(arguments, ctx)
        except AbortedError:
            raise
        except httpx.HTTPStatusError as exc:
            detail = _response_detail(exc.response)
            logger.error("[Tool Error] %s: %s", name, exc)
            logger.error("Data: %s", detail)
            return f"Error executing tool: {detail}"
        except ToolError as exc:
            logger.error("[Tool Error] %s: %s", name, exc)
            return f"Error executing tool: {exc}"
        except Exception as exc:
            logger.exception("[Tool Error] %s: %s", name, exc)
            return f"Error executing tool: {exc}"


WORKER_EXECUTOR = ToolExecutor(
    LEAF_HANDLERS,
    "Error: Tool {name} not found in worker toolset.",
    role="Worker",
)

DEEP_RESEARCH_EXECUTOR = WORKER_EXECUTOR.with_handlers(
    {"search_web": _exec_search_web}, role="Deep Research",
)
