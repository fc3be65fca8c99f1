"""Paragraph/heading view of the editor's HTML."""

from __future__ import annotations

from dataclasses import dataclass

from bs4 import BeautifulSoup


@dataclass(slots=True)
class DocumentSegment:
    id: str
    type: str
    content: str
    index: int


@dataclass(slots=True)
class ParsedSegments:
    title: str | None
    headings: list[DocumentSegment]
    paragraphs: list[DocumentSegment]
    full_text: str


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def parse_document_segments(html: str) -> ParsedSegments:
    soup = _soup(html)
    h1 = soup.find("h1")
    title = h1.get_text().strip() if h1 is not None else ""
    headings = [
        DocumentSegment(id=f"heading-{i}", type="heading", content=el.get_text().strip(), index=i)
        for i, el in enumerate(soup.find_all(["h1", "h2", "h3"]))
    ]
    paragraphs = [
        DocumentSegment(id=f"para-{i}", type="paragraph", content=el.get_text().strip(), index=i)
        for i, el in enumerate(soup.find_all("p"))
    ]
    return ParsedSegments(
        title=title or None,
        headings=headings,
        paragraphs=paragraphs,
        full_text=soup.get_text(),
    )


def get_paragraph(html: str, index: int) -> str | None:
    paragraphs = parse_document_segments(html).paragraphs
    if not 0 <= index < len(paragraphs):
        return None
    return paragraphs[index].content or None


def get_first_paragraph(html: str) -> str | None:
    return get_paragraph(html, 0)


def get_last_paragraph(html: str) -> str | None:
    paragraphs = parse_document_segments(html).paragraphs
    return get_paragraph(html, len(paragraphs) - 1) if paragraphs else None


def get_title(html: str) -> str | None:
    return parse_document_segments(html).title


def paragraph_count(html: str) -> int:
    return len(_soup(html).find_all("p"))


def add_title(html: str, title: str) -> str:
    return f"<h1>{title}</h1>{html}"


def replace_paragraph(html: str, index: int, new_content: str) -> str:
    """Replace the text of the `index`-th `<p>` (0-based).

    The new content is set as text, not markup. An out-of-range index
    leaves the HTML untouched.
    """
    soup = _soup(html)
    paragraphs = soup.find_all("p")
    if not 0 <= index < len(paragraphs):
        return html
    paragraphs[index].string = new_content
    return str(soup)
