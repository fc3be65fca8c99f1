"""Best-effort scanning of incomplete JSON and NDJSON model output.

None of these helpers is a JSON parser. They pull field values out of text
that is usually not yet valid JSON, so callers must treat every result as
provisional until the stream is closed.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<(think|thinking)>(.*?)(?:</\1>|\Z)", re.DOTALL | re.IGNORECASE)
# Body of a JSON string up to the first unescaped quote or the end of input.
# An escape cut off at the end of input (`\`, `\u`, `\u0`..`\u000`) is left out.
_OPEN_STRING_BODY = r'((?:[^"\\]|\\u[0-9a-fA-F]{4}|\\(?!u[0-9a-fA-F]{0,3}\Z).)*)'
_TOOL_FIELD = re.compile(r'"tool"\s*:\s*"([^"\\]+)"')
_ESCAPE = re.compile(r"\\(u[0-9a-fA-F]{4}|.)", re.DOTALL)
_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    '"': '"',
    "\\": "\\",
    "/": "/",
}
_LEADING_FENCE = re.compile(r"^```[\w-]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```\s*$")


def extract_think_block(text: str) -> str | None:
    """Body of the first `<think>`/`<thinking>` block, even if still open."""
    match = _THINK_BLOCK.search(text)
    if match is None:
        return None
    return match.group(2).strip()


def strip_think_blocks(text: str) -> str:
    return _THINK_BLOCK.sub("", text)


def extract_string_field(text: str, field: str) -> str | None:
    """Unescaped value of `"field": "..."`, truncated at the first unescaped quote.

    An unterminated string yields everything received so far. An escape cut
    off at the very end (a lone backslash or a short `\\u` sequence) is held
    back until it is complete.
    """
    pattern = re.compile(rf'"{re.escape(field)}"\s*:\s*"{_OPEN_STRING_BODY}', re.DOTALL)
    match = pattern.search(text)
    if match is None:
        return None
    return unescape_json_fragment(match.group(1))


def extract_tool_name(text: str) -> str | None:
    """Tool name from a completed `"tool": "<name>"` field, else None."""
    match = _TOOL_FIELD.search(text)
    if match is None:
        return None
    return match.group(1).strip() or None


def unescape_json_fragment(fragment: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        token = match.group(1)
        if len(token) == 5 and token[0] == "u":
            return chr(int(token[1:], 16))
        return _SIMPLE_ESCAPES.get(token, token)

    decoded = _ESCAPE.sub(_replace, fragment)
    # Recombine surrogate pairs produced by \uXXXX\uXXXX escapes.
    return decoded.encode("utf-16", "surrogatepass").decode("utf-16", "replace")


def has_json_signal(text: str) -> bool:
    return "{" in text or "```" in text


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    stripped = _LEADING_FENCE.sub("", stripped)
    stripped = _TRAILING_FENCE.sub("", stripped)
    return stripped.strip()


def last_json_object(text: str) -> str | None:
    """Span from the first `{` to the last `}`.

    The last closing brace is used so braces inside string values do not
    cut the document short.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return None
    return text[start : end + 1]


def record_deltas(record: dict[str, Any]) -> tuple[str, str]:
    """Content and thinking deltas of one streamed record.

    Understands `/api/chat` records (`message.content`, `message.thinking`)
    and `/api/generate` records (`response`, `thinking`).
    """
    message = record.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        thinking = message.get("thinking")
    else:
        content = record.get("response")
        thinking = record.get("thinking")
    return (
        content if isinstance(content, str) else "",
        thinking if isinstance(thinking, str) else "",
    )


class RecordLineBuffer:
    """Frames arbitrary text chunks into complete NDJSON records.

    The trailing partial line is kept for the next chunk and never parsed
    early. Malformed complete lines are dropped.
    """

    def __init__(self) -> None:
        self.buffer = ""

    def feed(self, text: str) -> list[dict[str, Any]]:
        self.buffer += text
        *lines, self.buffer = self.buffer.split("\n")
        return [record for record in map(_parse_line, lines) if record is not None]

    def flush(self) -> list[dict[str, Any]]:
        """Parse whatever is left once the stream has ended."""
        remainder, self.buffer = self.buffer, ""
        record = _parse_line(remainder)
        return [record] if record is not None else []


def _parse_line(line: str) -> dict[str, Any] | None:
    stripped = line.strip()
    if not stripped:
        return None
    try:
        record = json.loads(stripped)
    except ValueError:
        logger.debug("Discarding malformed stream line: %.80s", stripped)
        return None
    if not isinstance(record, dict):
        return None
    return record
