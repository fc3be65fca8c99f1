from pydantic import BaseModel

from rag_editor.agent.registry import ToolRegistry, ToolSpec
from rag_editor.types import ToolResult


class EchoInput(BaseModel):
    text: str


def test_tool_observer_captures_latency_and_payload() -> None:
    registry = ToolRegistry()

    def _handler(data: EchoInput, html: str) -> ToolResult:
        return ToolResult(success=True, message=data.text.upper(), new_html=html + data.text)

    registry.register(
        ToolSpec(
            name="echo",
            description="uppercase",
            args_schema=EchoInput,
            handler=_handler,
        )
    )

    observed = []
    registry.set_observer(observed.append)
    result = registry.execute("echo", {"text": "hello"}, "<p>")
    registry.execute("echo", {}, "<p>")
    registry.set_observer(None)
    registry.execute("echo", {"text": "unobserved"}, "")

    assert result.message == "HELLO"
    assert len(observed) == 2
    assert observed[0].name == "echo"
    assert observed[0].input_payload == {"text": "hello"}
    assert observed[0].output_preview == "HELLO"
    assert observed[0].latency_ms >= 0.0
    assert observed[1].output_preview.startswith("Invalid parameters for echo")


def test_per_call_observer_sees_only_its_own_call() -> None:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            name="echo",
            description="uppercase",
            args_schema=EchoInput,
            handler=lambda data, html: ToolResult(success=True, message=data.text),
        )
    )

    shared, first_turn, second_turn = [], [], []
    registry.set_observer(shared.append)
    registry.execute("echo", {"text": "one"}, "", observer=first_turn.append)
    registry.execute("echo", {"text": "two"}, "", observer=second_turn.append)
    registry.execute("echo", {"text": "three"}, "")

    assert [trace.output_preview for trace in first_turn] == ["one"]
    assert [trace.output_preview for trace in second_turn] == ["two"]
    assert [trace.output_preview for trace in shared] == ["one", "two", "three"]
