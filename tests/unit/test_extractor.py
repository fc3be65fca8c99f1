import json

import pytest

from rag_editor.agent.extractor import (
    PARSE_ERROR_MESSAGE,
    CancelToken,
    StreamPhase,
    ToolCallStreamExtractor,
    consume_stream,
    parse_tool_invocation,
)


def _line(content: str = "", thinking: str | None = None, done: bool = False) -> str:
    message = {"role": "assistant", "content": content}
    if thinking is not None:
        message["thinking"] = thinking
    return json.dumps({"message": message, "done": done}) + "\n"


def test_append_stream_grows_content_and_preview() -> None:
    extractor = ToolCallStreamExtractor("<p>Intro</p>")

    first = extractor.feed(_line('{"thought": "add a greeting", "tool": "append_text", "text": "<p>Hel'))
    second = extractor.feed(_line('lo world</p>", "message": "done"}'))
    final = extractor.finish()

    assert first.tool == "append_text"
    assert first.thought == "add a greeting"
    assert first.content == "<p>Hel"
    assert first.preview == "<p>Intro</p>\n<p>Hel"
    assert first.status == "Writing (6 characters)..."
    assert second.content == "<p>Hello world</p>"
    assert second.preview == "<p>Intro</p>\n<p>Hello world</p>"

    assert final.done
    assert final.invocation is not None
    assert final.invocation.tool == "append_text"
    assert final.invocation.parameters["text"] == "<p>Hello world</p>"
    assert final.invocation.message == "done"
    assert extractor.state.phase is StreamPhase.FINALIZED


def test_prepend_and_replace_previews() -> None:
    prepend = ToolCallStreamExtractor("<p>Body</p>")
    replace = ToolCallStreamExtractor("<p>Body</p>")

    assert prepend.feed(_line('{"tool": "prepend_text", "text": "<h2>Top')).preview == "<h2>Top\n<p>Body</p>"
    assert replace.feed(_line('{"tool": "replace_all", "text": "<p>New')).preview == "<p>New"


def test_line_split_across_chunks_is_buffered() -> None:
    extractor = ToolCallStreamExtractor()
    line = _line('{"tool": "reply", "message": "hi"}')

    early = extractor.feed(line[:15])
    extractor.feed(line[15:])
    final = extractor.finish()

    assert early.status == "Thinking..."
    assert extractor.state.full_text == '{"tool": "reply", "message": "hi"}'
    assert final.invocation is not None and final.invocation.message == "hi"


def test_multibyte_character_split_across_byte_chunks() -> None:
    extractor = ToolCallStreamExtractor()
    raw = _line('{"tool": "reply", "message": "café"}').replace("\\u00e9", "é").encode("utf-8")
    cut = raw.index("é".encode("utf-8")) + 1

    extractor.feed(raw[:cut])
    extractor.feed(raw[cut:])
    final = extractor.finish()

    assert final.invocation is not None
    assert final.invocation.message == "café"


def test_tool_name_locks_after_closing_quote() -> None:
    extractor = ToolCallStreamExtractor()

    partial = extractor.feed(_line('{"tool": "append_te'))
    assert partial.tool is None
    assert partial.status == "Preparing an edit..."

    extractor.feed(_line('xt", "text": "say \\"tool\\": \\"reply\\""'))
    assert extractor.state.detected_tool == "append_text"


def test_thought_prefers_longest_source_and_never_shrinks() -> None:
    extractor = ToolCallStreamExtractor()

    native = extractor.feed(_line(thinking="Reasoning about the request"))
    tagged = extractor.feed(_line("<think>short</think>"))

    assert native.thought == "Reasoning about the request"
    assert tagged.thought == "Reasoning about the request"


def test_think_tags_are_hidden_from_the_final_parse() -> None:
    final = _run_stream(["<think>planning the edit</think>", '{"tool": "reply", "message": "ok"}'])

    assert final.thought == "planning the edit"
    assert final.invocation is not None
    assert final.invocation.tool == "reply"
    assert final.invocation.message == "ok"


def test_short_plain_reply_is_shown_as_status() -> None:
    extractor = ToolCallStreamExtractor()

    event = extractor.feed(_line("Hi there"))
    final = extractor.finish()

    assert event.status == "Hi there"
    assert final.invocation is not None
    assert final.invocation.tool == "reply"
    assert final.invocation.fallback
    assert final.invocation.message == "Hi there"


def test_long_plain_text_reports_generating() -> None:
    event = ToolCallStreamExtractor().feed(_line("word " * 20))

    assert event.status == "Generating..."


def test_empty_stream_produces_parse_error_result() -> None:
    final = _run_stream([""])

    assert final.invocation is None
    assert final.result is not None
    assert not final.result.success
    assert final.result.message == PARSE_ERROR_MESSAGE


def test_extractor_rejects_use_after_finish() -> None:
    extractor = ToolCallStreamExtractor()
    extractor.finish()

    with pytest.raises(RuntimeError):
        extractor.feed(_line("late"))


def test_consume_stream_cancellation_skips_parse() -> None:
    token = CancelToken()
    closed = []

    def _chunks():
        try:
            yield _line('{"tool": "append_text", "text": "<p>Part')
            yield _line('ial</p>"}')
        finally:
            closed.append(True)

    events = []
    for event in consume_stream(_chunks(), "<p>Doc</p>", cancel_token=token):
        events.append(event)
        token.cancel()

    assert len(events) == 2
    assert events[-1].done and events[-1].cancelled
    assert events[-1].invocation is None
    assert events[-1].result is None
    assert closed == [True]


def test_consume_stream_yields_exactly_one_terminal_event() -> None:
    events = list(consume_stream([_line('{"tool": "reply", '), _line('"message": "fine"}'), _line(done=True)]))

    assert [event.done for event in events] == [False, False, False, True]
    assert events[-1].invocation is not None
    assert events[-1].invocation.message == "fine"


def test_parse_nested_parameters_form() -> None:
    invocation = parse_tool_invocation(
        '{"tool": "edit_paragraph", "parameters": {"paragraph_number": 2, "new_content": "x"}, "message": "ok"}'
    )

    assert invocation is not None
    assert invocation.tool == "edit_paragraph"
    assert invocation.parameters == {"paragraph_number": 2, "new_content": "x"}
    assert invocation.message == "ok"


def test_parse_flat_form_inside_code_fence() -> None:
    invocation = parse_tool_invocation('```json\n{"thought": "t", "tool": "add_title", "title": "Report"}\n```')

    assert invocation is not None
    assert invocation.tool == "add_title"
    assert invocation.parameters == {"title": "Report"}


def test_parse_legacy_action_format() -> None:
    invocation = parse_tool_invocation('{"action": "append", "content": "<p>x</p>", "message": "m"}')

    assert invocation is not None
    assert invocation.tool == "append_text"
    assert invocation.parameters == {"text": "<p>x</p>"}
    assert invocation.message == "m"


def test_parse_malformed_json_falls_back_to_reply() -> None:
    text = 'Here you go {"tool": "append_text", "text": "<p>Hi'
    invocation = parse_tool_invocation(text)

    assert invocation is not None
    assert invocation.tool == "reply"
    assert invocation.fallback
    assert invocation.message == text
    assert parse_tool_invocation("   ") is None


def _run_stream(deltas: list[str]):
    return list(consume_stream([_line(delta) for delta in deltas]))[-1]


def test_thought_and_content_never_shrink_across_small_fragments() -> None:
    payload = (
        '{"thought": "line one\\nline \\"two\\"", "tool": "append_text", '
        '"text": "First\\nsecond \\\\ third", "message": "ok"}'
    )
    extractor = ToolCallStreamExtractor("<p>Doc</p>")

    events = [extractor.feed(_line(payload[i : i + 4])) for i in range(0, len(payload), 4)]
    final = extractor.finish()

    thoughts = [len(event.thought or "") for event in events]
    contents = [len(event.content or "") for event in events]
    assert thoughts == sorted(thoughts)
    assert contents == sorted(contents)
    assert events[-1].thought == 'line one\nline "two"'
    assert events[-1].content == "First\nsecond \\ third"
    assert final.invocation is not None
    assert final.invocation.parameters["text"] == "First\nsecond \\ third"


def test_unicode_escape_split_across_records_previews_correctly() -> None:
    extractor = ToolCallStreamExtractor("<p>Menu</p>")

    early = extractor.feed(_line('{"tool": "append_text", "text": "Caf\\u00'))
    late = extractor.feed(_line('e9 au lait"}'))
    final = extractor.finish()

    assert early.content == "Caf"
    assert late.content == "Café au lait"
    assert late.preview == "<p>Menu</p>\nCafé au lait"
    assert final.invocation is not None
    assert final.invocation.parameters["text"] == "Café au lait"
