"""Tests for lexagent/services/chat_loop.py -- the streaming tool-calling loop."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from lexagent.errors import AbortedError, BackendError, MaxRoundsExceededError
from lexagent.schemas import Message
from lexagent.services.cancellation import CancellationToken
from lexagent.services.chat_loop import run_chat_loop
from lexagent.services.context_accountant import ContextAccountant
from lexagent.services.events import TokenEvent, ToolEndEvent, ToolStartEvent
from tests.conftest import content_line, done_line, ndjson, tool_call_line

MODEL = "gpt-oss:120b-cloud"
TOOLS = [{"type": "function", "function": {"name": "search_legislation"}}]


def _conversation() -> list[Message]:
    return [Message.system("sys"), Message.user("What is the Computer Misuse Act?")]


def _answer(text: str, prompt: int = 10, completion: int = 5) -> list[bytes]:
    return [ndjson(content_line(text), done_line(prompt, completion))]


def _tools(*calls: tuple[str, dict]) -> list[bytes]:
    return [ndjson(tool_call_line(*calls), done_line())]


# ---------------------------------------------------------------------------
# Base case
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_answer_without_tools_returns_assistant_message(backend):
    scripted = backend([ndjson(content_line("The Act "), content_line("criminalises hacking."), done_line(100, 20))])
    events = []
    executor = AsyncMock()

    final = await run_chat_loop(
        _conversation(), MODEL, TOOLS, executor, CancellationToken(), events.append,
    )

    assert final.role == "assistant"
    assert final.content == "The Act criminalises hacking."
    assert final.tool_calls == ()
    assert final.stats.total_tokens == 120
    assert events == [TokenEvent("The Act "), TokenEvent("criminalises hacking.")]
    assert len(scripted.calls) == 1
    executor.assert_not_awaited()


@pytest.mark.asyncio
async def test_request_carries_model_tools_and_messages(backend):
    scripted = backend(_answer("ok"))

    await run_chat_loop(_conversation(), MODEL, TOOLS, AsyncMock(), CancellationToken())

    call = scripted.calls[0]
    assert call["model"] == MODEL
    assert call["tools"] == TOOLS
    assert [m["role"] for m in call["messages"]] == ["system", "user"]


@pytest.mark.asyncio
async def test_stream_without_terminal_chunk_has_no_stats(backend):
    backend([ndjson(content_line("partial"))])

    final = await run_chat_loop(_conversation(), MODEL, TOOLS, AsyncMock(), CancellationToken())

    assert final.content == "partial"
    assert final.stats is None


# ---------------------------------------------------------------------------
# Context window resolution
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_explicit_num_ctx_wins(backend):
    scripted = backend(_answer("ok"))
    await run_chat_loop(_conversation(), MODEL, TOOLS, AsyncMock(), CancellationToken(), num_ctx=4096)
    assert scripted.calls[0]["num_ctx"] == 4096


@pytest.mark.asyncio
async def test_registry_context_used_for_known_model(backend):
    scripted = backend(_answer("ok"))
    await run_chat_loop(_conversation(), MODEL, TOOLS, AsyncMock(), CancellationToken())
    assert scripted.calls[0]["num_ctx"] == 128 * 1024


@pytest.mark.asyncio
async def test_default_context_for_unknown_model(backend):
    scripted = backend(_answer("ok"))
    await run_chat_loop(_conversation(), "unknown:latest", TOOLS, AsyncMock(), CancellationToken())
    assert scripted.calls[0]["num_ctx"] == 131072


# ---------------------------------------------------------------------------
# Tool rounds
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_tool_calls_executed_in_order_and_fed_back(backend):
    scripted = backend(
        _tools(("search_legislation", {"query": "Computer Misuse Act"}), ("search_caselaw", {"query": "R v Gold"})),
        _answer("Here is the answer."),
    )
    order = []

    async def executor(name, args):
        order.append((name, args))
        return f"result of {name}"

    events = []
    final = await run_chat_loop(
        _conversation(), MODEL, TOOLS, executor, CancellationToken(), events.append,
    )

    assert final.content == "Here is the answer."
    assert order == [
        ("search_legislation", {"query": "Computer Misuse Act"}),
        ("search_caselaw", {"query": "R v Gold"}),
    ]
    assert events == [
        ToolStartEvent("search_legislation"),
        ToolEndEvent("search_legislation", "Done"),
        ToolStartEvent("search_caselaw"),
        ToolEndEvent("search_caselaw", "Done"),
        TokenEvent("Here is the answer."),
    ]

    second = scripted.calls[1]["messages"]
    assert [m["role"] for m in second] == ["system", "user", "assistant", "tool", "tool"]
    assert second[2]["tool_calls"][0]["function"]["name"] == "search_legislation"
    assert second[3] == {"role": "tool", "content": "result of search_legislation", "name": "search_legislation"}
    assert second[4]["name"] == "search_caselaw"
    assert "stats" not in second[2]


@pytest.mark.asyncio
async def test_input_conversation_not_mutated(backend):
    backend(_tools(("search_legislation", {"query": "x"})), _answer("done"))
    conversation = _conversation()

    await run_chat_loop(conversation, MODEL, TOOLS, AsyncMock(return_value="r"), CancellationToken())

    assert len(conversation) == 2


@pytest.mark.asyncio
async def test_round_cap_raises(backend):
    scripted = backend(*[_tools(("search_legislation", {"query": "loop"})) for _ in range(3)])
    executor = AsyncMock(return_value="again")

    with pytest.raises(MaxRoundsExceededError) as exc_info:
        await run_chat_loop(
            _conversation(), MODEL, TOOLS, executor, CancellationToken(), max_rounds=2,
        )

    assert isinstance(exc_info.value, BackendError)
    assert len(scripted.calls) == 3
    assert executor.await_count == 2


@pytest.mark.asyncio
async def test_round_cap_zero_disables_limit(backend):
    responses = [_tools(("search_legislation", {"query": "q"})) for _ in range(30)] + [_answer("finally")]
    backend(*responses)

    final = await run_chat_loop(
        _conversation(), MODEL, TOOLS, AsyncMock(return_value="r"), CancellationToken(), max_rounds=0,
    )

    assert final.content == "finally"


@pytest.mark.asyncio
async def test_accountant_records_each_turn(backend):
    backend(
        [ndjson(tool_call_line(("search_legislation", {"query": "q"})), done_line(900, 100))],
        _answer("done", prompt=150, completion=50),
    )
    acct = ContextAccountant()

    await run_chat_loop(
        _conversation(), MODEL, TOOLS, AsyncMock(return_value="r"), CancellationToken(), accountant=acct,
    )

    assert acct.turns == 2
    assert acct.total == 1200


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_pre_cancelled_token_makes_no_backend_call(backend):
    scripted = backend()
    token = CancellationToken()
    token.cancel()

    with pytest.raises(AbortedError):
        await run_chat_loop(_conversation(), MODEL, TOOLS, AsyncMock(), token)

    assert scripted.calls == []


@pytest.mark.asyncio
async def test_cancel_mid_stream_aborts_read(monkeypatch):
    token = CancellationToken()
    closed = asyncio.Event()

    async def _hanging_stream(model, messages, tools, num_ctx, max_retries=None):
        try:
            yield ndjson(content_line("first token"))
            await asyncio.sleep(60)
            yield ndjson(content_line("never"))
        finally:
            closed.set()

    monkeypatch.setattr("lexagent.clients.ollama_client.stream_chat", _hanging_stream)
    events = []

    def sink(event):
        events.append(event)
        token.cancel("user pressed stop")

    with pytest.raises(AbortedError):
        await run_chat_loop(_conversation(), MODEL, TOOLS, AsyncMock(), token, sink)

    assert events == [TokenEvent("first token")]
    assert closed.is_set()


@pytest.mark.asyncio
async def test_cancel_between_tool_calls(backend):
    backend(_tools(("search_legislation", {"query": "a"}), ("search_caselaw", {"query": "b"})))
    token = CancellationToken()
    calls = []

    async def executor(name, args):
        calls.append(name)
        token.cancel()
        return "r"

    with pytest.raises(AbortedError):
        await run_chat_loop(_conversation(), MODEL, TOOLS, executor, token)

    assert calls == ["search_legislation"]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_backend_error_propagates(backend):
    backend(BackendError("Agent Service (Ollama) is not reachable."))

    with pytest.raises(BackendError, match="not reachable"):
        await run_chat_loop(_conversation(), MODEL, TOOLS, AsyncMock(), CancellationToken())


@pytest.mark.asyncio
async def test_in_band_error_line_raises_backend_error(backend):
    backend([ndjson({"error": "model requires more system memory"})])

    with pytest.raises(BackendError, match="more system memory"):
        await run_chat_loop(_conversation(), MODEL, TOOLS, AsyncMock(), CancellationToken())


@pytest.mark.asyncio
async def test_in_band_error_closes_stream_immediately(monkeypatch):
    closed = asyncio.Event()

    async def _erroring_stream(model, messages, tools, num_ctx, max_retries=None):
        try:
            yield ndjson({"error": "upstream overloaded"})
            yield ndjson(content_line("never read"))
        finally:
            closed.set()

    monkeypatch.setattr("lexagent.clients.ollama_client.stream_chat", _erroring_stream)

    with pytest.raises(BackendError, match="upstream overloaded"):
        await run_chat_loop(_conversation(), MODEL, TOOLS, AsyncMock(), CancellationToken())

    assert closed.is_set()


@pytest.mark.asyncio
async def test_failing_sink_does_not_break_loop(backend):
    backend(_tools(("search_legislation", {"query": "q"})), _answer("fine"))

    def sink(event):
        raise RuntimeError("ui went away")

    final = await run_chat_loop(
        _conversation(), MODEL, TOOLS, AsyncMock(return_value="r"), CancellationToken(), sink,
    )

    assert final.content == "fine"
