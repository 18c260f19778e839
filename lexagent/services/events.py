"""Events emitted by the chat loop while a request is running.

The loop itself only ever emits ``TokenEvent``, ``ToolStartEvent`` and
``ToolEndEvent``.  ``ResultEvent`` and ``ErrorEvent`` are the terminal
events the chat service appends for the HTTP caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenEvent:
    content: str


@dataclass(frozen=True)
class ToolStartEvent:
    tool: str


@dataclass(frozen=True)
class ToolEndEvent:
    tool: str
    result: str = "Done"


@dataclass(frozen=True)
class ResultEvent:
    message: dict
    total_usage: int = 0


@dataclass(frozen=True)
class ErrorEvent:
    error: str


LoopEvent = Union[TokenEvent, ToolStartEvent, ToolEndEvent]
StreamEvent = Union[TokenEvent, ToolStartEvent, ToolEndEvent, ResultEvent, ErrorEvent]

EventSink = Callable[[LoopEvent], None]


def event_to_dict(event: StreamEvent) -> dict:
    """Serialise an event to the ``{"type": ...}`` shape sent over SSE."""
    if isinstance(event, TokenEvent):
        return {"type": "token", "content": event.content}
    if isinstance(event, ToolStartEvent):
        return {"type": "tool_start", "tool": event.tool}
    if isinstance(event, ToolEndEvent):
        return {"type": "tool_end", "tool": event.tool, "result": event.result}
    if isinstance(event, ResultEvent):
        return {"type": "result", "message": event.message, "total_usage": event.total_usage}
    if isinstance(event, ErrorEvent):
        return {"type": "error", "error": event.error}
    raise TypeError(f"Unknown event type: {type(event).__name__}")


def emit(sink: EventSink | None, event: LoopEvent) -> None:
    """Deliver *event* to *sink* without letting the sink break the caller.

    Sinks are notifications only; a failing sink is logged and ignored.
    """
    if sink is None:
        return
    try:
        sink(event)
    except Exception:
        logger.exception("Event sink raised on %s", type(event).__name__)


def relabel(
    parent: EventSink | None,
    prefix: str,
    *,
    keep_tokens: bool = False,
) -> EventSink | None:
    """Return a sink that forwards tool activity to *parent* under *prefix*.

    Token events are dropped unless *keep_tokens* is set: a delegated agent's
    prose is not shown to the parent's caller, only its tool activity.
    """
    if parent is None:
        return None

    def _sink(event: LoopEvent) -> None:
        if isinstance(event, TokenEvent):
            if keep_tokens:
                parent(event)
        elif isinstance(event, ToolStartEvent):
            parent(ToolStartEvent(tool=f"{prefix}: {event.tool}"))
        elif isinstance(event, ToolEndEvent):
            parent(ToolEndEvent(tool=f"{prefix}: {event.tool}", result=event.result))

    return _sink
