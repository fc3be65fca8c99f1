"""Incremental tool-call extraction from a streamed model response.

The completion server streams one JSON record per line, each carrying a
small text delta. The model is asked to answer with a single JSON tool call,
so the concatenated deltas form a JSON document that only becomes valid at
the very end. The extractor keeps the live view (reasoning, tool name, the
growing content parameter, and a preview of the edited document) in step
with that text while it is still incomplete.

Phases of one stream, forward only:

    AWAITING_SIGNAL -> ACCUMULATING_RAW -> JSON_DETECTED -> TOOL_KNOWN
        -> STREAM_CLOSED -> FINALIZED

`CANCELLED` may replace the last two when the caller aborts.
"""

from __future__ import annotations

import codecs
import json
import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from rag_editor.agent.partial_json import (
    RecordLineBuffer,
    extract_string_field,
    extract_think_block,
    extract_tool_name,
    has_json_signal,
    last_json_object,
    record_deltas,
    strip_code_fence,
    strip_think_blocks,
)
from rag_editor.config import AgentConfig
from rag_editor.types import StreamEvent, ToolInvocation, ToolResult

logger = logging.getLogger(__name__)

# Tools whose main parameter is mirrored live, and how it combines with the document.
CONTENT_TOOLS: dict[str, str] = {
    "append_text": "append",
    "prepend_text": "prepend",
    "replace_all": "replace",
}
CONTENT_FIELDS: tuple[str, ...] = ("text", "new_content", "replacement_content")

PARSE_ERROR_MESSAGE = "Could not parse the model response. Please try again."

# Legacy `{"action": ...}` answers mapped onto tool names.
_LEGACY_ACTIONS = {
    "replace_all": "replace_all",
    "append": "append_text",
    "insert": "append_text",
}
_RESERVED_KEYS = {"tool", "thought", "parameters"}


class StreamPhase(str, Enum):
    AWAITING_SIGNAL = "awaiting_signal"
    ACCUMULATING_RAW = "accumulating_raw"
    JSON_DETECTED = "json_detected"
    TOOL_KNOWN = "tool_known"
    STREAM_CLOSED = "stream_closed"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


_TERMINAL_PHASES = {StreamPhase.STREAM_CLOSED, StreamPhase.FINALIZED, StreamPhase.CANCELLED}


@dataclass(slots=True)
class StreamingToolCallState:
    """Mutable state threaded through one stream.

    `is_json_detected` and `detected_tool` never revert once set; `content`
    and `thought` only grow.
    """

    raw_buffer: str = ""
    full_text: str = ""
    native_thought: str = ""
    is_json_detected: bool = False
    detected_tool: str | None = None
    content: str = ""
    thought: str = ""
    status: str = ""
    phase: StreamPhase = StreamPhase.AWAITING_SIGNAL


class CancelToken:
    """Thread-safe flag a caller sets to abort an in-flight stream."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ToolCallStreamExtractor:
    """Consumes raw stream chunks in arrival order and reports progress."""

    def __init__(self, original_html: str = "", config: AgentConfig | None = None) -> None:
        self.original_html = original_html
        self.config = config or AgentConfig()
        self.state = StreamingToolCallState()
        self._lines = RecordLineBuffer()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: str | bytes) -> StreamEvent:
        """Process one network chunk and return the resulting progress event."""
        self._ensure_open()
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        for record in self._lines.feed(text):
            self._apply_record(record)
        self.state.raw_buffer = self._lines.buffer
        self._scan()
        return self._progress_event()

    def finish(self) -> StreamEvent:
        """Close the stream, parse the final tool call and emit the terminal event."""
        self._ensure_open()
        tail = self._decoder.decode(b"", final=True)
        records = self._lines.feed(tail) + self._lines.flush()
        for record in records:
            self._apply_record(record)
        self.state.raw_buffer = ""
        self._scan()
        self.state.phase = StreamPhase.STREAM_CLOSED

        invocation = parse_tool_invocation(self.state.full_text)
        self.state.phase = StreamPhase.FINALIZED
        if invocation is None:
            logger.warning("Model stream produced no usable output")
            self.state.status = PARSE_ERROR_MESSAGE
            return self._event(
                done=True,
                result=ToolResult(success=False, message=PARSE_ERROR_MESSAGE),
            )

        self.state.status = "Applying changes..." if invocation.tool != "reply" else "Done"
        return self._event(done=True, invocation=invocation, tool=invocation.tool)

    def cancel(self) -> StreamEvent:
        """Abort without parsing; nothing beyond the live preview is applied."""
        self._ensure_open()
        self.state.phase = StreamPhase.CANCELLED
        self.state.status = "Cancelled"
        return self._event(done=True, cancelled=True)

    def preview(self) -> str | None:
        """The edited document as the current content would make it."""
        mode = CONTENT_TOOLS.get(self.state.detected_tool or "")
        if mode is None or not self.state.content:
            return None
        content = self.state.content
        if mode == "append":
            return f"{self.original_html}\n{content}"
        if mode == "prepend":
            return f"{content}\n{self.original_html}"
        return content

    def _ensure_open(self) -> None:
        if self.state.phase in _TERMINAL_PHASES:
            raise RuntimeError(f"Stream already closed ({self.state.phase.value})")

    def _apply_record(self, record: dict[str, Any]) -> None:
        content, thinking = record_deltas(record)
        if content:
            self.state.full_text += content
        if thinking:
            self.state.native_thought += thinking
        if (content or thinking) and self.state.phase is StreamPhase.AWAITING_SIGNAL:
            self.state.phase = StreamPhase.ACCUMULATING_RAW

    def _scan(self) -> None:
        state = self.state
        visible = strip_think_blocks(state.full_text)

        for candidate in (
            state.native_thought,
            extract_think_block(state.full_text),
            extract_string_field(visible, "thought"),
        ):
            self._grow_thought(candidate)

        if not state.is_json_detected and has_json_signal(visible):
            state.is_json_detected = True
            state.phase = StreamPhase.JSON_DETECTED

        if state.is_json_detected and state.detected_tool is None:
            tool = extract_tool_name(visible)
            if tool:
                state.detected_tool = tool
                state.phase = StreamPhase.TOOL_KNOWN
                logger.debug("Detected tool %s mid-stream", tool)

        if state.detected_tool in CONTENT_TOOLS:
            for field_name in CONTENT_FIELDS:
                value = extract_string_field(visible, field_name)
                if value is not None:
                    if len(value) > len(state.content):
                        state.content = value
                    break

    def _grow_thought(self, candidate: str | None) -> None:
        if candidate and len(candidate) > len(self.state.thought):
            self.state.thought = candidate

    def _progress_event(self) -> StreamEvent:
        state = self.state
        if not state.is_json_detected:
            visible = strip_think_blocks(state.full_text).strip()
            if visible and len(visible) < self.config.short_reply_limit and "{" not in visible:
                state.status = visible
            elif visible:
                state.status = "Generating..."
            else:
                state.status = "Thinking..."
        elif state.detected_tool is None:
            state.status = "Preparing an edit..."
        elif state.detected_tool in CONTENT_TOOLS:
            state.status = f"Writing ({len(state.content)} characters)..."
        else:
            state.status = f"Using {state.detected_tool}..."
        return self._event()

    def _event(self, **kwargs: Any) -> StreamEvent:
        kwargs.setdefault("tool", self.state.detected_tool)
        return StreamEvent(
            status=self.state.status,
            thought=self.state.thought or None,
            content=self.state.content or None,
            preview=self.preview(),
            **kwargs,
        )


def parse_tool_invocation(text: str) -> ToolInvocation | None:
    """Parse the completed response into a tool call, degrading to a reply.

    Returns None only when there is no visible text at all.
    """
    visible = strip_think_blocks(text).strip()
    body = strip_code_fence(visible)
    candidate = last_json_object(body)
    if candidate is not None:
        try:
            payload = json.loads(candidate)
        except ValueError:
            logger.info("Final response is not valid JSON, treating it as a reply")
        else:
            if isinstance(payload, dict):
                return _invocation_from_object(payload, body)

    if not body:
        return None
    return ToolInvocation(tool="reply", parameters={"message": body}, message=body, fallback=True)


def _invocation_from_object(payload: dict[str, Any], raw_text: str) -> ToolInvocation:
    message = payload.get("message")
    message = message if isinstance(message, str) and message else None

    tool = payload.get("tool")
    if isinstance(tool, str) and tool:
        nested = payload.get("parameters")
        if isinstance(nested, dict):
            parameters = dict(nested)
            if tool == "reply" and message and "message" not in parameters:
                parameters["message"] = message
        else:
            parameters = {key: value for key, value in payload.items() if key not in _RESERVED_KEYS}
        return ToolInvocation(tool=tool, parameters=parameters, message=message)

    action = payload.get("action")
    if isinstance(action, str) and action in _LEGACY_ACTIONS:
        return ToolInvocation(
            tool=_LEGACY_ACTIONS[action],
            parameters={"text": payload.get("content")},
            message=message,
        )

    reply = message or raw_text
    return ToolInvocation(tool="reply", parameters={"message": reply}, message=reply)


def consume_stream(
    chunks: Iterable[str | bytes],
    original_html: str = "",
    *,
    cancel_token: CancelToken | None = None,
    config: AgentConfig | None = None,
) -> Iterator[StreamEvent]:
    """Yield one event per chunk, then exactly one `done=True` event.

    Chunks are processed strictly in order. When `cancel_token` is set the
    source iterator is closed and a cancelled terminal event is emitted
    without a final parse.
    """
    extractor = ToolCallStreamExtractor(original_html, config)
    iterator = iter(chunks)
    try:
        for chunk in iterator:
            if cancel_token is not None and cancel_token.cancelled:
                logger.debug("Stream cancelled by caller")
                yield extractor.cancel()
                return
            yield extractor.feed(chunk)
        if cancel_token is not None and cancel_token.cancelled:
            yield extractor.cancel()
            return
        yield extractor.finish()
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()
