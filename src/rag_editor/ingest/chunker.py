"""Sentence-aware sliding-window chunking implementation."""

from __future__ import annotations

import re
import uuid

from rag_editor.config import ChunkingConfig
from rag_editor.types import Chunk

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_TERMINATORS = (".", "?", "!")


class SentenceWindowChunker:
    """Builds overlapping character windows that prefer sentence boundaries.

    The text is whitespace-normalized first, then walked in windows of
    `chunk_size` characters. Each window end is pulled back to the last
    sentence terminator in the second half of the window, else to the last
    space, else left as a hard cut. The next window starts `overlap`
    characters before the previous end so neighbouring chunks share context.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(self, text: str, source: str) -> list[Chunk]:
        clean = normalize_whitespace(text)
        if not clean:
            return []

        size = self.config.chunk_size
        overlap = self.config.overlap
        chunks: list[Chunk] = []
        start = 0

        while start < len(clean):
            end = start + size
            if end < len(clean):
                end = self._find_break(clean, start, end)

            piece = clean[start:end].strip()
            if piece:
                chunks.append(
                    Chunk(id=str(uuid.uuid4()), text=piece, source=source, index=len(chunks))
                )

            if end >= len(clean):
                break

            next_start = end - overlap
            # Overlap at least as large as the window would never advance.
            if next_start <= start:
                next_start = end
            start = next_start

        return chunks

    def _find_break(self, text: str, start: int, end: int) -> int:
        punctuation = max(text.rfind(mark, start, end) for mark in _SENTENCE_TERMINATORS)
        if punctuation != -1 and punctuation > start + self.config.chunk_size * self.config.sentence_break_ratio:
            return punctuation + 1

        space = text.rfind(" ", start, end)
        if space > start:
            return space
        return end


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def chunk_text(text: str, source: str, chunk_size: int = 1000, overlap: int = 200) -> list[Chunk]:
    """Chunk `text` with the default sentence-aware strategy."""
    config = ChunkingConfig(chunk_size=chunk_size, overlap=overlap)
    return SentenceWindowChunker(config).chunk(text, source)
