"""Cooperative cancellation for chat requests.

A ``CancellationToken`` is created per user request and threaded explicitly
through the chat loop, the tool executors and any delegated agents.  The
``SessionRegistry`` owns one token slot per chat session: starting a new
request for a session cancels whatever request was still running there.
"""

import asyncio
import logging
from typing import Awaitable, TypeVar

from lexagent.errors import AbortedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Single-owner, multi-observer abort flag.  Once cancelled, always cancelled."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``AbortedError`` if the token has fired."""
        if self._event.is_set():
            raise AbortedError(f"Aborted: {self.reason}")

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        If the token fires while *awaitable* is pending, it is cancelled
        (closing any HTTP stream it holds) and ``AbortedError`` is raised.
        """
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            self.raise_if_cancelled()
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        # Drain the cancelled task so its cleanup (stream close) runs now.
        await asyncio.gather(task, return_exceptions=True)
        raise AbortedError(f"Aborted: {self.reason}")


class SessionRegistry:
    """Maps a session id to the token of its currently running request."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}

    def begin(self, session_id: str) -> CancellationToken:
        """Cancel the session's previous request (if any) and return a fresh token."""
        previous = self._tokens.get(session_id)
        if previous is not None and not previous.cancelled:
            logger.info("Session %s: superseding running request", session_id)
            previous.cancel("superseded by a newer request")
        token = CancellationToken()
        self._tokens[session_id] = token
        return token

    def end(self, session_id: str, token: CancellationToken) -> None:
        """Release the slot, but only if it still belongs to *token*."""
        if self._tokens.get(session_id) is token:
            del self._tokens[session_id]

    def cancel(self, session_id: str, reason: str = "cancelled by user") -> bool:
        """Cancel the session's running request.  Returns whether one was running."""
        token = self._tokens.get(session_id)
        if token is None or token.cancelled:
            return False
        token.cancel(reason)
        return True

    def active(self, session_id: str) -> CancellationToken | None:
        """Token of the session's running request, or ``None`` when idle."""
        return self._tokens.get(session_id)
