"""Conversation data model shared by the chat loop, agents and HTTP layer.

Messages travel to the backend as plain dicts (Ollama ``/api/chat`` format);
inside the engine they are dataclasses so the loop can rely on field names.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

VALID_ROLES = frozenset({"system", "user", "assistant", "tool"})


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class UsageStats:
    """Usage reported on the terminal chunk of one backend call."""

    prompt_eval_count: int = 0
    eval_count: int = 0
    load_duration: int = 0
    total_duration: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_eval_count + self.eval_count

    @classmethod
    def from_chunk(cls, chunk: dict) -> "UsageStats":
        return cls(
            prompt_eval_count=_as_int(chunk.get("prompt_eval_count")),
            eval_count=_as_int(chunk.get("eval_count")),
            load_duration=_as_int(chunk.get("load_duration")),
            total_duration=_as_int(chunk.get("total_duration")),
        )

    def to_dict(self) -> dict:
        return {
            "total_duration": self.total_duration,
            "load_duration": self.load_duration,
            "prompt_eval_count": self.prompt_eval_count,
            "eval_count": self.eval_count,
        }


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the backend inside an assistant turn."""

    name: str
    arguments: dict = field(default_factory=dict)
    id: str = ""

    @classmethod
    def from_wire(cls, raw: Any) -> "ToolCall":
        """Build from an Ollama ``tool_calls`` entry.

        ``arguments`` is normally an object; some backends send a JSON string
        instead.  Unparseable strings are kept as ``{"_raw": ...}``.

        Raises:
            ValueError: If *raw* has no function name.
        """
        if not isinstance(raw, dict):
            raise ValueError(f"tool call is not an object: {raw!r}")
        function = raw.get("function") or {}
        name = function.get("name") if isinstance(function, dict) else None
        if not name or not isinstance(name, str):
            raise ValueError(f"tool call without a function name: {raw!r}")
        args = function.get("arguments", {})
        if isinstance(args, str):
            try:
                args = json.loads(args) if args.strip() else {}
            except json.JSONDecodeError:
                args = {"_raw": args}
        if not isinstance(args, dict):
            args = {"_raw": args}
        return cls(name=name, arguments=args, id=str(raw.get("id") or ""))

    def to_dict(self) -> dict:
        d: dict = {"function": {"name": self.name, "arguments": self.arguments}}
        if self.id:
            d["id"] = self.id
        return d


@dataclass(frozen=True)
class Message:
    """One conversation entry."""

    role: str
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    name: str = ""
    stats: UsageStats | None = None

    def __post_init__(self) -> None:
        if self.role not in VALID_ROLES:
            raise ValueError(f"invalid message role: {self.role!r}")
        if self.role == "tool" and not self.name:
            raise ValueError("tool messages must carry the tool name")

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def tool(cls, name: str, content: str) -> "Message":
        return cls(role="tool", content=content, name=name)

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        """Build from a caller-supplied dict (HTTP request body, fixtures)."""
        stats = data.get("stats")
        return cls(
            role=data.get("role", ""),
            content=data.get("content") or "",
            tool_calls=tuple(ToolCall.from_wire(tc) for tc in data.get("tool_calls") or []),
            name=data.get("name") or "",
            stats=UsageStats.from_chunk(stats) if isinstance(stats, dict) else None,
        )

    def to_dict(self) -> dict:
        """Serialise for the backend request and the caller's result event."""
        d: dict = {"role": self.role, "content": self.content}
        if self.tool_calls:
            d["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.name:
            d["name"] = self.name
        if self.stats is not None:
            d["stats"] = self.stats.to_dict()
        return d


def to_wire(conversation: list[Message]) -> list[dict]:
    """Serialise a conversation for the backend.

    Usage stats are caller-side metadata and are not sent back to the model.
    """
    out: list[dict] = []
    for msg in conversation:
        d = msg.to_dict()
        d.pop("stats", None)
        out.append(d)
    return out
