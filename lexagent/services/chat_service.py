"""Chat service -- turns one chat request into an ordered event stream.

The agent runs in its own task and pushes events onto a queue; the caller
iterates ``stream()`` and receives them in emission order, followed by exactly
one terminal ``ResultEvent`` or ``ErrorEvent``.  An aborted request ends the
stream with no terminal event.

Per session the service keeps the running cancellation token (a new request
supersedes the previous one) and a ``ContextAccountant``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from cachetools import TTLCache

from lexagent.errors import AbortedError, BackendError
from lexagent.schemas import Message
from lexagent.services.agents import run_deep_research, run_manager
from lexagent.services.cancellation import SessionRegistry
from lexagent.services.context_accountant import ContextAccountant
from lexagent.services.events import (
    ErrorEvent,
    LoopEvent,
    ResultEvent,
    StreamEvent,
    TokenEvent,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."
RETRY_HINT = "Please try again."

_DONE = object()


def backend_error_message(exc: BackendError) -> str:
    """User-facing text for a backend failure, ending in advice to the user.

    Messages that already tell the user what to do (the unreachable-backend
    one) are passed through unchanged.
    """
    text = str(exc).strip()
    if "Please" in text:
        return text
    if not text.endswith((".", "!", "?")):
        text += "."
    return f"{text} {RETRY_HINT}"


@dataclass
class ChatRequest:
    messages: list[Message]
    model: str
    num_ctx: int | None = None
    deep_research: bool = False
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class ChatService:
    """Runs chat requests and tracks per-session state."""

    def __init__(self) -> None:
        self.sessions = SessionRegistry()
        # Idle sessions drop their usage estimate after an hour.
        self._accountants: TTLCache[str, ContextAccountant] = TTLCache(
            maxsize=1000, ttl=3600,
        )

    def accountant(self, session_id: str) -> ContextAccountant:
        acct = self._accountants.get(session_id)
        if acct is None:
            acct = ContextAccountant()
        # Re-insert to refresh the TTL.
        self._accountants[session_id] = acct
        return acct

    def cancel(self, session_id: str) -> bool:
        return self.sessions.cancel(session_id, "cancelled by user")

    def usage(self, session_id: str, context_window: int) -> dict:
        """Usage estimate for *session_id* against *context_window*.

        Unknown or expired sessions report zero usage.
        """
        acct = self._accountants.get(session_id) or ContextAccountant()
        return {
            "session_id": session_id,
            "total_usage": acct.total,
            "turns": acct.turns,
            "context_window": context_window,
            "usage_percent": round(acct.usage_percent(context_window), 1),
            "running": self.sessions.active(session_id) is not None,
        }

    def reset_usage(self, session_id: str) -> bool:
        """Zero the session's estimate (the caller cleared its history)."""
        acct = self._accountants.get(session_id)
        if acct is None:
            return False
        acct.reset()
        return True

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Run *request* and yield its events.

        Closing the iterator early (client disconnect) cancels the request.
        """
        session_id = request.session_id
        token = self.sessions.begin(session_id)
        accountant = self.accountant(session_id)
        queue: asyncio.Queue = asyncio.Queue()

        def _sink(event: LoopEvent) -> None:
            if not isinstance(event, TokenEvent):
                logger.info("Tool Status: %s", event)
            queue.put_nowait(event)

        if request.deep_research:
            coro = run_deep_research(
                request.messages, request.model, token, _sink,
                num_ctx=request.num_ctx, accountant=accountant,
            )
        else:
            coro = run_manager(
                request.messages, request.model, token, _sink,
                num_ctx=request.num_ctx, accountant=accountant,
            )

        task = asyncio.create_task(coro)
        task.add_done_callback(lambda _t: queue.put_nowait(_DONE))

        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                yield item

            try:
                final = task.result()
            except AbortedError as exc:
                logger.info("Session %s: aborted processing (%s)", session_id, exc)
                return
            except BackendError as exc:
                logger.error("Chat Error: %s", exc)
                yield ErrorEvent(error=backend_error_message(exc))
                return
            except Exception:
                logger.exception("Chat Error: unexpected failure in session %s", session_id)
                yield ErrorEvent(error=GENERIC_ERROR_MESSAGE)
                return

            yield ResultEvent(message=final.to_dict(), total_usage=accountant.total)
        finally:
            if not task.done():
                logger.info("Session %s: client closed connection early", session_id)
                token.cancel("client disconnected")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            self.sessions.end(session_id, token)


chat_service = ChatService()
