"""Decoder for the backend's newline-delimited JSON chat stream.

Each line of an Ollama ``/api/chat`` stream is one JSON object::

    {"message": {"role": "assistant", "content": "Hel"}, "done": false}
    {"message": {"role": "assistant", "content": "", "tool_calls": [...]}, "done": false}
    {"message": {...}, "done": true, "total_duration": ..., "eval_count": ...}

The stream is line-delimited but not transactional: a network chunk can end
mid-line and a line can be garbage.  Partial lines are buffered until their
newline arrives; lines that still fail to parse are skipped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Union

from lexagent.errors import DecodeError
from lexagent.schemas import ToolCall, UsageStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ToolCallDecoded:
    call: ToolCall


@dataclass(frozen=True)
class StatsDecoded:
    stats: UsageStats


@dataclass(frozen=True)
class BackendErrorLine:
    """The backend reported an error in-band (``{"error": "..."}``)."""

    error: str


DecodedEvent = Union[ContentDelta, ToolCallDecoded, StatsDecoded, BackendErrorLine]


@dataclass
class StreamDecoder:
    """Incremental NDJSON decoder that also accumulates the full turn."""

    content_parts: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    stats: UsageStats | None = None
    skipped_lines: int = 0
    _buffer: bytes = b""

    @property
    def content(self) -> str:
        return "".join(self.content_parts)

    def feed(self, chunk: bytes | str) -> list[DecodedEvent]:
        """Decode every complete line in *chunk* (plus any buffered prefix)."""
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        # Split before decoding: a chunk can end inside a multi-byte character.
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        events: list[DecodedEvent] = []
        for line in lines:
            events.extend(self._decode_line(line))
        return events

    def close(self) -> list[DecodedEvent]:
        """Flush a final line that arrived without a trailing newline."""
        rest, self._buffer = self._buffer, b""
        return self._decode_line(rest)

    def _decode_line(self, raw: bytes) -> list[DecodedEvent]:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return []
        try:
            return self._classify(_parse_line(line))
        except DecodeError as exc:
            self.skipped_lines += 1
            logger.debug("Skipping stream line: %s (%.200s)", exc, exc.line)
            return []

    def _classify(self, obj: dict) -> list[DecodedEvent]:
        events: list[DecodedEvent] = []

        if obj.get("error"):
            events.append(BackendErrorLine(error=str(obj["error"])))

        message = obj.get("message")
        if isinstance(message, dict):
            if "content" in message:
                text = message.get("content") or ""
                self.content_parts.append(text)
                events.append(ContentDelta(text=text))
            for raw in message.get("tool_calls") or []:
                try:
                    call = ToolCall.from_wire(raw)
                except ValueError as exc:
                    self.skipped_lines += 1
                    logger.debug("Skipping malformed tool call: %s", exc)
                    continue
                self.tool_calls.append(call)
                events.append(ToolCallDecoded(call=call))

        if obj.get("done"):
            self.stats = UsageStats.from_chunk(obj)
            events.append(StatsDecoded(stats=self.stats))

        return events


def _parse_line(line: str) -> dict:
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"invalid JSON: {exc.msg}", line=line) from exc
    if not isinstance(obj, dict):
        raise DecodeError("stream line is not a JSON object", line=line)
    return obj
