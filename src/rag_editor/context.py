"""Explicit application context: settings, reference corpus, document, chat."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from rag_editor.config import AgentConfig, ChunkingConfig, OllamaConfig, RetrievalConfig
from rag_editor.ingest.chunker import SentenceWindowChunker
from rag_editor.types import Chunk, ContextDocument

_SUMMARY_PREVIEW_CHARS = 150


class DocumentCorpus:
    """Set of reference documents that forms the retrieval corpus.

    Chunks (and any embeddings cached on them) live exactly as long as the
    document that owns them.
    """

    def __init__(self, chunker: SentenceWindowChunker | None = None) -> None:
        self._chunker = chunker or SentenceWindowChunker()
        self._documents: dict[str, ContextDocument] = {}

    def add_document(self, name: str, text: str, *, doc_id: str | None = None) -> ContextDocument:
        document_id = doc_id or str(uuid.uuid4())
        if document_id in self._documents:
            raise ValueError(f"Document already registered: {document_id}")
        document = ContextDocument(
            id=document_id,
            name=name,
            full_text=text,
            chunks=self._chunker.chunk(text, source=document_id),
        )
        self._documents[document_id] = document
        return document

    def remove_document(self, doc_id: str) -> ContextDocument:
        document = self._documents.pop(doc_id, None)
        if document is None:
            raise KeyError(f"Document not found: {doc_id}")
        return document

    def get(self, doc_id: str) -> ContextDocument:
        document = self._documents.get(doc_id)
        if document is None:
            raise KeyError(f"Document not found: {doc_id}")
        return document

    def documents(self) -> list[ContextDocument]:
        return list(self._documents.values())

    def chunks(self) -> list[Chunk]:
        return [chunk for document in self._documents.values() for chunk in document.chunks]

    def summary(self) -> str:
        """One line per document, used to brief the query planner."""
        lines = []
        for document in self._documents.values():
            preview = " ".join(document.full_text.split())[:_SUMMARY_PREVIEW_CHARS]
            lines.append(f"- {document.name} ({len(document.chunks)} chunks): {preview}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._documents)


@dataclass
class AppContext:
    """State shared by one editing session, passed explicitly to the core."""

    ollama: OllamaConfig = field(default_factory=OllamaConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    corpus: DocumentCorpus = field(init=False)
    document_html: str = ""
    chat_history: list[dict[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.corpus = DocumentCorpus(SentenceWindowChunker(self.chunking))

    def remember(self, role: str, content: str) -> None:
        self.chat_history.append({"role": role, "content": content})

    def clear_history(self) -> None:
        self.chat_history.clear()
