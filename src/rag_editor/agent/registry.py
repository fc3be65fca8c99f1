"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rag_editor.obs.tracing import Timer
from rag_editor.types import ToolResult, ToolTrace


class ToolSpec(BaseModel):
    """Declarative document tool: argument schema plus a pure handler."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any, str], ToolResult]
    parameters: dict[str, str] = Field(default_factory=dict)

    def invoke(self, payload: dict[str, Any], html: str) -> ToolResult:
        data = self.args_schema.model_validate(payload)
        return self.handler(data, html)


class ToolRegistry:
    """Stores tool specs and dispatches calls by name.

    Execution never raises for bad input: unknown names and parameters that
    fail validation come back as unsuccessful `ToolResult`s.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def execute(
        self,
        name: str,
        payload: dict[str, Any],
        html: str,
        *,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> ToolResult:
        """Run one tool; `observer` sees only this call's trace."""
        spec = self._tools.get(name)
        if spec is None:
            return ToolResult(success=False, message=f"Unknown tool: {name}")

        with Timer() as timer:
            try:
                result = spec.invoke(payload or {}, html)
            except ValidationError as exc:
                result = ToolResult(success=False, message=_describe_validation_error(name, exc))

        observers = [callback for callback in (self._observer, observer) if callback is not None]
        if observers:
            trace = ToolTrace(
                name=spec.name,
                input_payload=payload,
                output_preview=result.message[:320],
                latency_ms=timer.elapsed_ms,
            )
            for callback in observers:
                callback(trace)
        return result

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def render_catalog(self) -> str:
        """Tool list in the form used inside prompts."""
        lines = []
        for spec in self._tools.values():
            params = ", ".join(f'"{key}": {doc}' for key, doc in spec.parameters.items())
            lines.append(f"- {spec.name}: {spec.description}. Parameters: {{{params}}}")
        return "\n".join(lines)


def _describe_validation_error(name: str, exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "parameters"
        problems.append(f"{location}: {error.get('msg', 'invalid value')}")
    return f"Invalid parameters for {name}: " + "; ".join(problems)
