"""Manager, worker and deep-research agents.

All three run the same ``run_chat_loop``; an ``AgentConfig`` (system prompt,
tool specs, executor, event label) is the only thing that differs.

Delegation: the manager's single tool, ``delegate_research``, starts a worker
on a brand-new two-message conversation (worker system prompt + the query),
sharing the parent's model, context window and cancellation token.  The
worker's tool activity is forwarded to the parent's event sink with a
``Worker:`` prefix; its prose is not.  Its final answer comes back to the
manager as one tool result, prefixed with ``[Research Agent Result]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from lexagent.errors import BackendError, ToolError
from lexagent.prompts import (
    DEEP_RESEARCH_SYSTEM_PROMPT,
    MANAGER_SYSTEM_PROMPT,
    WORKER_SYSTEM_PROMPT,
)
from lexagent.schemas import Message
from lexagent.services.cancellation import CancellationToken
from lexagent.services.chat_loop import run_chat_loop
from lexagent.services.context_accountant import ContextAccountant
from lexagent.services.events import (
    EventSink,
    ToolEndEvent,
    ToolStartEvent,
    emit,
    relabel,
)
from lexagent.services.tools import (
    DEEP_RESEARCH_EXECUTOR,
    DEEP_RESEARCH_TOOLS,
    MANAGER_TOOLS,
    WORKER_EXECUTOR,
    WORKER_TOOLS,
    Handler,
    RunContext,
    ToolExecutor,
)

logger = logging.getLogger(__name__)

RESEARCH_AGENT_LABEL = "Research Agent"
RESEARCH_RESULT_PREFIX = "[Research Agent Result]\n"


@dataclass(frozen=True)
class AgentConfig:
    """Everything that distinguishes one agent role from another."""

    name: str
    system_prompt: str
    tools: tuple[dict, ...]
    executor: ToolExecutor
    event_label: str = ""


WORKER = AgentConfig(
    name="worker",
    system_prompt=WORKER_SYSTEM_PROMPT,
    tools=tuple(WORKER_TOOLS),
    executor=WORKER_EXECUTOR,
    event_label="Worker",
)

DEEP_RESEARCH = AgentConfig(
    name="deep_research",
    system_prompt=DEEP_RESEARCH_SYSTEM_PROMPT,
    tools=tuple(DEEP_RESEARCH_TOOLS),
    executor=DEEP_RESEARCH_EXECUTOR,
    event_label="Deep Research",
)


# ---------------------------------------------------------------------------
# Delegation
# ---------------------------------------------------------------------------


async def run_worker(
    query: str,
    ctx: RunContext,
    config: AgentConfig = WORKER,
) -> Message:
    """Run *config* on a fresh conversation seeded with *query*.

    The worker never sees the parent's history.  It shares the parent's
    model, context window and token; its events reach the parent's sink
    relabelled and without token deltas.
    """
    logger.info("[%s] Starting research on: %s", config.event_label or config.name, query)
    conversation = [Message.system(config.system_prompt), Message.user(query)]
    sink = relabel(ctx.on_event, config.event_label) if config.event_label else None
    child_ctx = RunContext(
        model=ctx.model, num_ctx=ctx.num_ctx, token=ctx.token, on_event=sink,
    )
    return await run_chat_loop(
        conversation,
        ctx.model,
        list(config.tools),
        config.executor.bind(child_ctx),
        ctx.token,
        sink,
        num_ctx=ctx.num_ctx,
    )


def make_delegate_handler(worker: AgentConfig) -> Handler:
    """Build the ``delegate_research`` handler that spawns *worker*."""

    async def _exec_delegate_research(args: dict, ctx: RunContext) -> str:
        query = args.get("query")
        if not query:
            raise ToolError("Missing required argument 'query'")

        emit(ctx.on_event, ToolStartEvent(tool=RESEARCH_AGENT_LABEL))
        try:
            final = await run_worker(str(query), ctx, worker)
        except BackendError as exc:
            # Backend failure is a tool result for the manager; aborts propagate.
            logger.error("[%s] Research failed: %s", worker.name, exc)
            emit(ctx.on_event, ToolEndEvent(tool=RESEARCH_AGENT_LABEL, result="Research Failed"))
            return f"Error: Research agent failed: {exc}"
        emit(ctx.on_event, ToolEndEvent(tool=RESEARCH_AGENT_LABEL, result="Research Complete"))
        return f"{RESEARCH_RESULT_PREFIX}{final.content}"

    return _exec_delegate_research


def _manager_executor(worker: AgentConfig) -> ToolExecutor:
    return ToolExecutor(
        {"delegate_research": make_delegate_handler(worker)},
        "Error: Unknown manager tool {name}",
        role="Manager",
    )


MANAGER = AgentConfig(
    name="manager",
    system_prompt=MANAGER_SYSTEM_PROMPT,
    tools=tuple(MANAGER_TOOLS),
    executor=_manager_executor(WORKER),
)

# Manager whose delegated research runs the deep-research agent instead.
DEEP_MANAGER = AgentConfig(
    name="deep_manager",
    system_prompt=MANAGER_SYSTEM_PROMPT,
    tools=tuple(MANAGER_TOOLS),
    executor=_manager_executor(DEEP_RESEARCH),
)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def _run_agent(
    config: AgentConfig,
    conversation: list[Message],
    model: str,
    token: CancellationToken,
    sink: EventSink | None,
    num_ctx: int | None,
    accountant: ContextAccountant | None,
) -> Message:
    ctx = RunContext(model=model, num_ctx=num_ctx, token=token, on_event=sink)
    return await run_chat_loop(
        conversation,
        model,
        list(config.tools),
        config.executor.bind(ctx),
        token,
        sink,
        num_ctx=num_ctx,
        accountant=accountant,
    )


async def run_manager(
    conversation: list[Message],
    model: str,
    token: CancellationToken,
    on_event: EventSink | None = None,
    *,
    num_ctx: int | None = None,
    accountant: ContextAccountant | None = None,
    deep_research: bool = False,
) -> Message:
    """Run the user-facing manager on the caller's conversation.

    The manager system prompt is prepended unless the conversation already
    opens with a system message.  With *deep_research* the delegated agent
    is the deep-research agent rather than the Lex-only worker.
    """
    config = DEEP_MANAGER if deep_research else MANAGER
    messages = list(conversation)
    if not messages or messages[0].role != "system":
        messages = [Message.system(config.system_prompt)] + messages
    return await _run_agent(config, messages, model, token, on_event, num_ctx, accountant)


async def run_deep_research(
    conversation: list[Message],
    model: str,
    token: CancellationToken,
    on_event: EventSink | None = None,
    *,
    num_ctx: int | None = None,
    accountant: ContextAccountant | None = None,
) -> Message:
    """Run the deep-research agent directly on the caller's conversation.

    Any leading system message is replaced by the deep-research prompt.
    Tokens stream to the caller; tool events are labelled ``Deep Research:``.
    """
    logger.info("[Deep Research] Starting session...")
    system = Message.system(DEEP_RESEARCH.system_prompt)
    messages = list(conversation)
    if messages and messages[0].role == "system":
        messages[0] = system
    else:
        messages = [system] + messages
    sink = relabel(on_event, DEEP_RESEARCH.event_label, keep_tokens=True)
    return await _run_agent(DEEP_RESEARCH, messages, model, token, sink, num_ctx, accountant)
