"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(slots=True)
class Chunk:
    """An overlap-linked slice of a reference document."""

    id: str
    text: str
    source: str
    index: int
    embedding: list[float] | None = None


@dataclass(slots=True)
class ContextDocument:
    """An uploaded reference document and the chunks it owns."""

    id: str
    name: str
    full_text: str
    chunks: list[Chunk]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class ScoredChunk:
    """A retrieval result with a mode-specific score."""

    chunk: Chunk
    score: float
    mode: str
    rank: int = 0


@dataclass(slots=True)
class QueryPlan:
    """Sub-queries proposed by the planner and its rationale."""

    queries: list[str]
    thought: str
    fallback: bool = False


@dataclass(slots=True)
class ToolInvocation:
    """A tool call parsed from a completed model stream."""

    tool: str
    parameters: dict[str, Any]
    message: str | None = None
    fallback: bool = False


@dataclass(slots=True)
class ToolResult:
    """Outcome of executing a tool against the document HTML."""

    success: bool
    message: str
    new_html: str | None = None


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float


@dataclass(slots=True)
class StreamEvent:
    """Progress or terminal event emitted while consuming a model stream.

    `thought` and `content` only ever grow between successive events of one
    stream. `preview` is the edited document as it would look if the stream
    ended now.
    """

    status: str
    thought: str | None = None
    content: str | None = None
    preview: str | None = None
    tool: str | None = None
    done: bool = False
    cancelled: bool = False
    invocation: ToolInvocation | None = None
    result: ToolResult | None = None
    sources: list[Chunk] = field(default_factory=list)
    trace_id: str | None = None


@dataclass(slots=True)
class ModelInfo:
    """A model advertised by the completion server."""

    name: str
    size: int
    modified_at: str
