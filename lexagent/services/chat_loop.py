"""Streaming tool-calling loop shared by every agent role.

One turn = one streaming backend request.  Content deltas are forwarded to
the caller as ``TokenEvent``s while the turn streams.  If the finished
assistant message requests tools, each call is executed in order, its result
is appended as a ``tool`` message, and the loop issues the next turn on the
extended conversation.  A turn without tool calls ends the loop and its
assistant message is returned.

Cancellation is checked before every backend request and before every tool
call, and the stream read itself is raced against the token.  Tool handlers
are not pre-empted; a delegated agent observes the same token on its own.
"""

from __future__ import annotations

import logging
from contextlib import aclosing

from lexagent.clients import ollama_client
from lexagent.config import get_context_window, settings
from lexagent.errors import BackendError, MaxRoundsExceededError
from lexagent.schemas import Message, to_wire
from lexagent.services.cancellation import CancellationToken
from lexagent.services.context_accountant import ContextAccountant
from lexagent.services.events import (
    EventSink,
    TokenEvent,
    ToolEndEvent,
    ToolStartEvent,
    emit,
)
from lexagent.services.stream_decoder import (
    BackendErrorLine,
    ContentDelta,
    DecodedEvent,
    StreamDecoder,
)
from lexagent.services.tools import Executor, tool_names

logger = logging.getLogger(__name__)


def _dispatch(event: DecodedEvent, on_event: EventSink | None) -> None:
    if isinstance(event, ContentDelta):
        if event.text:
            emit(on_event, TokenEvent(content=event.text))
    elif isinstance(event, BackendErrorLine):
        raise BackendError(f"Ollama error: {event.error}")


async def _stream_turn(
    conversation: list[Message],
    model: str,
    tools: list[dict],
    num_ctx: int,
    on_event: EventSink | None,
) -> Message:
    """Run one backend request to completion and assemble the assistant message."""
    decoder = StreamDecoder()
    stream = ollama_client.stream_chat(model, to_wire(conversation), tools, num_ctx)
    # Close the HTTP stream on every exit, including an error line mid-stream.
    async with aclosing(stream):
        async for chunk in stream:
            for event in decoder.feed(chunk):
                _dispatch(event, on_event)
    for event in decoder.close():
        _dispatch(event, on_event)

    if decoder.stats is None:
        logger.debug("[ChatLoop] Stream ended without a terminal chunk")
    if decoder.skipped_lines:
        logger.debug("[ChatLoop] Skipped %d malformed stream line(s)", decoder.skipped_lines)

    return Message(
        role="assistant",
        content=decoder.content,
        tool_calls=tuple(decoder.tool_calls),
        stats=decoder.stats,
    )


async def run_chat_loop(
    conversation: list[Message],
    model: str,
    tools: list[dict],
    executor: Executor,
    token: CancellationToken,
    on_event: EventSink | None = None,
    *,
    num_ctx: int | None = None,
    accountant: ContextAccountant | None = None,
    max_rounds: int | None = None,
) -> Message:
    """Drive the model until it answers without requesting tools.

    Args:
        conversation: Starting conversation.  Never mutated.
        model: Model identifier, also used to resolve the context window.
        tools: Tool specs offered on every turn.
        executor: ``(name, arguments) -> result`` for requested tools.
        token: Cancellation token for the whole request.
        on_event: Optional sink for token / tool_start / tool_end events.
        num_ctx: Explicit context window; falls back to the model registry.
        accountant: Receives each turn's usage stats when given.
        max_rounds: Cap on tool rounds, ``0`` for none.  Defaults to
            ``settings.MAX_TOOL_ROUNDS``.

    Returns:
        The final assistant message (no tool calls), with its stats.

    Raises:
        AbortedError: The token fired.
        BackendError: The backend failed or the round cap was exceeded.
    """
    limit = settings.MAX_TOOL_ROUNDS if max_rounds is None else max_rounds
    context_window = get_context_window(model, num_ctx)
    messages = list(conversation)
    rounds = 0

    while True:
        token.raise_if_cancelled()

        logger.info(
            "[ChatLoop] Sending request to Ollama (model=%s, messages=%d, tools=%s, num_ctx=%d)",
            model, len(messages), ",".join(tool_names(tools)), context_window,
        )
        assistant = await token.run(
            _stream_turn(messages, model, tools, context_window, on_event),
        )
        if accountant is not None:
            accountant.record(assistant.stats)

        if not assistant.tool_calls:
            return assistant

        if limit and rounds >= limit:
            logger.warning("[ChatLoop] Tool round cap (%d) reached for %s", limit, model)
            raise MaxRoundsExceededError(limit)
        rounds += 1

        logger.info("[ChatLoop] Tool calls: %d (round %d)", len(assistant.tool_calls), rounds)
        messages = messages + [assistant]
        for call in assistant.tool_calls:
            token.raise_if_cancelled()
            emit(on_event, ToolStartEvent(tool=call.name))
            result = await executor(call.name, call.arguments)
            emit(on_event, ToolEndEvent(tool=call.name, result="Done"))
            messages.append(Message.tool(call.name, result))
