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


def test_extract_string_field_reads_open_strings() -> None:
    assert extract_string_field('{"text": "Hello \\"wor', "text") == 'Hello "wor'
    assert extract_string_field('{"text": "done", "x": 1}', "text") == "done"
    assert extract_string_field('{"other": "x"}', "text") is None


def test_extract_string_field_holds_back_dangling_escape() -> None:
    assert extract_string_field('{"text": "line\\', "text") == "line"
    assert extract_string_field('{"text": "line\\n', "text") == "line\n"


def test_extract_string_field_decodes_unicode_escapes() -> None:
    assert extract_string_field('{"text": "caf\\u00e9"}', "text") == "café"
    assert extract_string_field('{"text": "\\ud83d\\ude00"}', "text") == "\U0001F600"


def test_tool_name_needs_closing_quote() -> None:
    assert extract_tool_name('{"tool": "append_te') is None
    assert extract_tool_name('{"tool": "append_text", "te') == "append_text"


def test_think_blocks_open_and_closed() -> None:
    assert strip_think_blocks("<think>plan</think>Answer") == "Answer"
    assert strip_think_blocks("<THINKING>still going") == ""
    assert extract_think_block("<think> partial reasoning") == "partial reasoning"
    assert extract_think_block("no reasoning") is None


def test_json_signal_and_fences() -> None:
    assert has_json_signal('Sure {"tool"')
    assert has_json_signal("```")
    assert not has_json_signal("plain text")
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence("no fence") == "no fence"


def test_last_json_object_spans_to_last_brace() -> None:
    assert last_json_object('note {"a": "}"} tail') == '{"a": "}"}'
    assert last_json_object('{"open": ') is None
    assert last_json_object("nothing") is None


def test_record_deltas_for_chat_and_generate_records() -> None:
    assert record_deltas({"message": {"content": "hi", "thinking": "hmm"}}) == ("hi", "hmm")
    assert record_deltas({"response": "yo", "done": False}) == ("yo", "")
    assert record_deltas({"done": True}) == ("", "")


def test_record_line_buffer_keeps_partial_line() -> None:
    lines = RecordLineBuffer()

    assert lines.feed('{"a": 1}\n{"b"') == [{"a": 1}]
    assert lines.buffer == '{"b"'
    assert lines.feed(": 2}\nnot json\n") == [{"b": 2}]
    assert lines.feed('{"c": 3}') == []
    assert lines.flush() == [{"c": 3}]
    assert lines.flush() == []


def test_extract_string_field_holds_back_partial_unicode_escape() -> None:
    for cut in ('"Caf\\u', '"Caf\\u0', '"Caf\\u00', '"Caf\\u00e'):
        assert extract_string_field('{"text": ' + cut, "text") == "Caf"
    assert extract_string_field('{"text": "Caf\\u00e9', "text") == "Café"
