"""Document-editing tools and the pure tool executor."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from rag_editor.agent.html_segments import add_title, paragraph_count, replace_paragraph
from rag_editor.agent.registry import ToolRegistry, ToolSpec
from rag_editor.types import ToolResult

_MISSING_EDIT_CONTENT = "No content provided to edit - please specify what to write"


class _ToolArgs(BaseModel):
    # Optional user-facing confirmation that overrides the default message.
    summary: str | None = None


class ReplyInput(_ToolArgs):
    message: str | None = None


class AddTitleInput(_ToolArgs):
    title: str = Field(min_length=1)


class ParagraphEditInput(_ToolArgs):
    new_content: str | None = None
    text: str | None = None

    @property
    def content(self) -> str | None:
        return self.new_content or self.text or None


class NumberedParagraphEditInput(ParagraphEditInput):
    paragraph_number: int = Field(ge=1)


class TextInput(_ToolArgs):
    # Accepts the same field names, in the same order, as the live preview.
    text: str | None = None
    new_content: str | None = None
    replacement_content: str | None = None

    @property
    def content(self) -> str | None:
        return self.text or self.new_content or self.replacement_content or None


class TableInput(_ToolArgs):
    headers: list[str] = Field(min_length=1)
    rows: list[list[str]] = Field(default_factory=list)
    caption: str = ""

    @field_validator("headers", mode="before")
    @classmethod
    def _stringify_headers(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(item) for item in value]
        return value

    @field_validator("rows", mode="before")
    @classmethod
    def _stringify_rows(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [[str(cell) for cell in row] if isinstance(row, list) else row for row in value]
        return value


def _reply(args: ReplyInput, html: str) -> ToolResult:
    return ToolResult(success=True, message=args.message or args.summary or "Response generated.")


def _add_title(args: AddTitleInput, html: str) -> ToolResult:
    return ToolResult(
        success=True,
        new_html=add_title(html, args.title),
        message=args.summary or f'Added title: "{args.title}"',
    )


def _edit_paragraph_at(index: int, content: str, html: str, summary: str | None, default: str) -> ToolResult:
    count = paragraph_count(html)
    if not 0 <= index < count:
        return ToolResult(
            success=False,
            message=f"Paragraph {index + 1} does not exist (document has {count} paragraphs)",
        )
    return ToolResult(
        success=True,
        new_html=replace_paragraph(html, index, content),
        message=summary or default,
    )


def _edit_first_paragraph(args: ParagraphEditInput, html: str) -> ToolResult:
    if not args.content:
        return ToolResult(success=False, message=_MISSING_EDIT_CONTENT)
    return _edit_paragraph_at(0, args.content, html, args.summary, "Updated introduction paragraph")


def _edit_last_paragraph(args: ParagraphEditInput, html: str) -> ToolResult:
    if not args.content:
        return ToolResult(success=False, message=_MISSING_EDIT_CONTENT)
    last = paragraph_count(html) - 1
    return _edit_paragraph_at(last, args.content, html, args.summary, "Updated conclusion paragraph")


def _edit_paragraph(args: NumberedParagraphEditInput, html: str) -> ToolResult:
    if not args.content:
        return ToolResult(success=False, message=_MISSING_EDIT_CONTENT)
    return _edit_paragraph_at(
        args.paragraph_number - 1,
        args.content,
        html,
        args.summary,
        f"Edited paragraph {args.paragraph_number}",
    )


def _append_text(args: TextInput, html: str) -> ToolResult:
    if not args.content:
        return ToolResult(success=False, message="No text provided to append")
    return ToolResult(
        success=True,
        new_html=f"{html}<p>{args.content}</p>",
        message=args.summary or "Appended new text to document",
    )


def _prepend_text(args: TextInput, html: str) -> ToolResult:
    if not args.content:
        return ToolResult(success=False, message="No text provided to prepend")
    return ToolResult(
        success=True,
        new_html=f"<p>{args.content}</p>{html}",
        message=args.summary or "Added text to the beginning",
    )


def render_table(headers: list[str], rows: list[list[str]], caption: str = "") -> str:
    parts = ['<table border="1" style="border-collapse: collapse; width: 100%; margin: 1em 0;">']
    if caption:
        parts.append(f"<caption>{caption}</caption>")
    parts.append("<thead><tr>")
    parts.extend(
        '<th style="border: 1px solid #ddd; padding: 8px; text-align: left; '
        f'background-color: #f2f2f2;">{header}</th>'
        for header in headers
    )
    parts.append("</tr></thead><tbody>")
    for row in rows:
        parts.append("<tr>")
        parts.extend(f'<td style="border: 1px solid #ddd; padding: 8px;">{cell}</td>' for cell in row)
        parts.append("</tr>")
    parts.append("</tbody></table>")
    return "".join(parts)


def _add_table(args: TableInput, html: str) -> ToolResult:
    return ToolResult(
        success=True,
        new_html=html + render_table(args.headers, args.rows, args.caption),
        message=args.summary or "Added a data table to the document",
    )


def _replace_all(args: TextInput, html: str) -> ToolResult:
    if not args.content:
        return ToolResult(success=False, message="No content provided to replace document")
    return ToolResult(
        success=True,
        new_html=args.content,
        message=args.summary or "Rewrote the entire document",
    )


def build_document_tools() -> ToolRegistry:
    """Register the closed set of document tools."""
    registry = ToolRegistry()
    specs = [
        ToolSpec(
            name="reply",
            description="Just reply to the user without editing the document",
            args_schema=ReplyInput,
            handler=_reply,
            parameters={"message": "string - your reply"},
        ),
        ToolSpec(
            name="add_title",
            description="Add a title at the beginning of the document",
            args_schema=AddTitleInput,
            handler=_add_title,
            parameters={"title": "string - the title text"},
        ),
        ToolSpec(
            name="edit_first_paragraph",
            description="Edit the first paragraph of the document",
            args_schema=ParagraphEditInput,
            handler=_edit_first_paragraph,
            parameters={"new_content": "string - the new paragraph content"},
        ),
        ToolSpec(
            name="edit_last_paragraph",
            description="Edit the last paragraph of the document",
            args_schema=ParagraphEditInput,
            handler=_edit_last_paragraph,
            parameters={"new_content": "string - the new paragraph content"},
        ),
        ToolSpec(
            name="edit_paragraph",
            description="Edit a specific paragraph by its number",
            args_schema=NumberedParagraphEditInput,
            handler=_edit_paragraph,
            parameters={
                "paragraph_number": "number - which paragraph (1-based)",
                "new_content": "string - the new paragraph content",
            },
        ),
        ToolSpec(
            name="append_text",
            description="Add text at the end of the document",
            args_schema=TextInput,
            handler=_append_text,
            parameters={"text": "string - text to append"},
        ),
        ToolSpec(
            name="prepend_text",
            description="Add text at the very beginning of the document (before title)",
            args_schema=TextInput,
            handler=_prepend_text,
            parameters={"text": "string - text to prepend"},
        ),
        ToolSpec(
            name="add_table",
            description="Add a table to the document",
            args_schema=TableInput,
            handler=_add_table,
            parameters={
                "headers": "string[] - list of column headers",
                "rows": "string[][] - list of rows (array of strings)",
                "caption": "string - optional table caption",
            },
        ),
        ToolSpec(
            name="replace_all",
            description="Replace the entire document content",
            args_schema=TextInput,
            handler=_replace_all,
            parameters={"text": "string - the new full document content"},
        ),
    ]
    for spec in specs:
        registry.register(spec)
    return registry


_DEFAULT_TOOLS = build_document_tools()


def execute_tool(
    tool_name: str,
    parameters: dict[str, Any],
    current_html: str,
    *,
    registry: ToolRegistry | None = None,
) -> ToolResult:
    """Apply one tool call to `current_html`. Deterministic, never raises."""
    return (registry or _DEFAULT_TOOLS).execute(tool_name, parameters, current_html)


def render_tool_catalog(registry: ToolRegistry | None = None) -> str:
    return (registry or _DEFAULT_TOOLS).render_catalog()
