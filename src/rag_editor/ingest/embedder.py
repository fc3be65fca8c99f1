"""Embedding abstractions, the Ollama provider and a deterministic baseline."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt

from rag_editor.config import OllamaConfig, RetrievalConfig
from rag_editor.llm.ollama import OllamaClient, OllamaError

logger = logging.getLogger(__name__)


class Embedder(ABC):
    """Embedder interface used by the retriever.

    An empty vector means "no embedding available"; providers must not raise
    for transport problems.
    """

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one text."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(text) for text in texts]


class OllamaEmbedder(Embedder):
    """Embeds text through the server's `/api/embed` endpoint."""

    def __init__(self, client: OllamaClient, model: str) -> None:
        self.client = client
        self.model = model

    def embed_query(self, text: str) -> list[float]:
        try:
            return self.client.embed(text, model=self.model)
        except OllamaError as exc:
            logger.warning("Embedding request failed, falling back: %s", exc)
            return []


class HashingEmbedder(Embedder):
    """Bag-of-words vectors from hashed tokens, for running without a model.

    Texts that share words land close together; there is no semantics beyond
    that. Vectors are unit length, or all zeros for text without tokens.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_query(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in text.lower().split():
            slot, sign = self._bucket(token)
            vector[slot] += sign

        norm = sqrt(sum(value * value for value in vector))
        if not norm:
            return vector
        return [value / norm for value in vector]

    def _bucket(self, token: str) -> tuple[int, float]:
        digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
        slot = int.from_bytes(digest[:4], "little") % self.dimension
        return slot, (-1.0 if digest[4] & 1 else 1.0)


def build_embedder(
    client: OllamaClient,
    ollama: OllamaConfig,
    retrieval: RetrievalConfig,
) -> Embedder | None:
    """Embedder selected by `retrieval.embedder`, or None for keyword-only retrieval."""
    if retrieval.embedder == "hashing":
        return HashingEmbedder(retrieval.hashing_dimension)
    if retrieval.embedder == "ollama" and ollama.embedding_model:
        return OllamaEmbedder(client, ollama.embedding_model)
    return None
