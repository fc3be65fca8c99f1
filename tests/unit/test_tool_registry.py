import pytest
from pydantic import BaseModel, Field

from rag_editor.agent.registry import ToolRegistry, ToolSpec
from rag_editor.types import ToolResult


class EchoInput(BaseModel):
    value: int = Field(ge=1)


def _handler(data: EchoInput, html: str) -> ToolResult:
    return ToolResult(success=True, message=str(data.value), new_html=html * data.value)


def _echo_spec() -> ToolSpec:
    return ToolSpec(
        name="echo",
        description="echo positive int",
        args_schema=EchoInput,
        handler=_handler,
        parameters={"value": "number - how many copies"},
    )


def test_tool_registry_validation() -> None:
    registry = ToolRegistry()
    registry.register(_echo_spec())

    assert registry.execute("echo", {"value": 3}, "x") == ToolResult(success=True, message="3", new_html="xxx")

    rejected = registry.execute("echo", {"value": 0}, "x")
    assert not rejected.success
    assert rejected.message.startswith("Invalid parameters for echo: value:")


def test_duplicate_tool_registration_rejected() -> None:
    registry = ToolRegistry()
    spec = _echo_spec()

    registry.register(spec)
    with pytest.raises(ValueError):
        registry.register(spec)


def test_unknown_tool_and_catalog() -> None:
    registry = ToolRegistry()
    registry.register(_echo_spec())

    assert registry.execute("missing", {}, "") == ToolResult(success=False, message="Unknown tool: missing")
    assert registry.names() == ["echo"]
    assert registry.render_catalog() == (
        '- echo: echo positive int. Parameters: {"value": number - how many copies}'
    )
