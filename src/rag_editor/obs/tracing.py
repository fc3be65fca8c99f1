"""Per-turn tracing and latency/success accounting."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rag_editor.types import ToolTrace


@dataclass(slots=True)
class TurnRecord:
    trace_id: str
    timestamp_utc: str
    request: str
    queries: list[str]
    source_chunk_ids: list[str]
    tool: str | None
    success: bool
    message: str
    latency_ms: float
    cancelled: bool = False
    tool_traces: list[ToolTrace] = field(default_factory=list)


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self) -> None:
        self._records: dict[str, TurnRecord] = {}

    def create_record(
        self,
        *,
        request: str,
        queries: list[str],
        source_chunk_ids: list[str],
        tool: str | None,
        success: bool,
        message: str,
        latency_ms: float,
        cancelled: bool = False,
        tool_traces: list[ToolTrace] | None = None,
    ) -> TurnRecord:
        record = TurnRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            request=request,
            queries=queries,
            source_chunk_ids=source_chunk_ids,
            tool=tool,
            success=success,
            message=message,
            latency_ms=latency_ms,
            cancelled=cancelled,
            tool_traces=tool_traces or [],
        )
        self._records[record.trace_id] = record
        return record

    def get(self, trace_id: str) -> TurnRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TurnRecord]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate turn metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "success_rate": 0.0,
                "cancelled": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "success_rate": sum(1 for record in records if record.success) / total,
            "cancelled": sum(1 for record in records if record.cancelled),
        }


class Timer:
    """Wall-clock timer in milliseconds.

    Runs from construction (or from entering a `with` block) and reads live
    until the block exits, so long-running generators can sample it.
    """

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self._stop: float | None = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._stop = None
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self._stop = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        end = self._stop if self._stop is not None else time.perf_counter()
        return (end - self._start) * 1000.0
