"""Relevance retriever with vector, keyword and sampling routes."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from rag_editor.config import RetrievalConfig
from rag_editor.ingest.embedder import Embedder
from rag_editor.retrieval.intent import RetrievalQuery
from rag_editor.retrieval.scoring import cosine_similarity, keyword_score, representative_sample
from rag_editor.types import Chunk, ScoredChunk

logger = logging.getLogger(__name__)


class RelevanceRetriever:
    """Selects the reference chunks most relevant to a query.

    Routes, in order:
    1. Vector: cosine similarity between the query embedding and each chunk's
       cached embedding, kept above `similarity_threshold`.
    2. Keyword: used when no embedder is configured or the query embedding
       comes back empty. Counts query-term hits plus an exact-phrase bonus.
    3. Sampling: when the ranked result is empty but the query is about the
       corpus as a whole, return evenly spaced chunks instead.

    Scores from the two ranking routes are never compared with each other.
    """

    def __init__(self, embedder: Embedder | None = None, config: RetrievalConfig | None = None) -> None:
        self.embedder = embedder
        self.config = config or RetrievalConfig()
        self._embedding_lock = threading.Lock()

    def retrieve(
        self,
        query: str,
        chunks: Sequence[Chunk],
        *,
        force_samples: bool = False,
    ) -> list[Chunk]:
        request = RetrievalQuery.classify(query, force_samples=force_samples)
        ranked = [item.chunk for item in self.score(request.text, chunks)]
        if not ranked and request.general:
            logger.debug("No ranked chunks for general query, sampling corpus")
            return representative_sample(list(chunks), self.config.sample_count)
        return ranked

    def retrieve_many(
        self,
        queries: Sequence[str],
        chunks: Sequence[Chunk],
        *,
        force_samples: bool = False,
    ) -> list[Chunk]:
        """Run sub-queries concurrently and merge results by chunk identity."""
        if not queries:
            return []
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            results = list(
                pool.map(
                    lambda q: self.retrieve(q, chunks, force_samples=force_samples),
                    queries,
                )
            )

        merged: dict[str, Chunk] = {}
        for result in results:
            for chunk in result:
                merged.setdefault(chunk.id, chunk)
        return list(merged.values())

    def score(self, query: str, chunks: Sequence[Chunk]) -> list[ScoredChunk]:
        """Rank chunks with the vector route, falling back to keywords."""
        if self.embedder is not None:
            query_embedding = _safe_embed(self.embedder, query)
            if query_embedding:
                self.ensure_embeddings(chunks)
                return self._vector_scores(query_embedding, chunks)
            logger.info("Query embedding unavailable, using keyword scoring")
        return self._keyword_scores(query, chunks)

    def ensure_embeddings(self, chunks: Sequence[Chunk]) -> None:
        """Embed every chunk that has no cached vector yet, concurrently.

        Each chunk's slot is written at most once for the chunk's lifetime.
        """
        embedder = self.embedder
        if embedder is None:
            return
        with self._embedding_lock:
            missing = [chunk for chunk in chunks if chunk.embedding is None]
            if not missing:
                return
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                vectors = list(pool.map(lambda c: _safe_embed(embedder, c.text), missing))
            for chunk, vector in zip(missing, vectors, strict=True):
                chunk.embedding = vector
            logger.debug("Embedded %d chunks", len(missing))

    def _vector_scores(self, query_embedding: list[float], chunks: Sequence[Chunk]) -> list[ScoredChunk]:
        scored = [
            ScoredChunk(chunk=chunk, score=cosine_similarity(query_embedding, chunk.embedding), mode="vector")
            for chunk in chunks
        ]
        kept = [item for item in scored if item.score > self.config.similarity_threshold]
        return self._rank(kept)

    def _keyword_scores(self, query: str, chunks: Sequence[Chunk]) -> list[ScoredChunk]:
        scored = [
            ScoredChunk(
                chunk=chunk,
                score=float(
                    keyword_score(
                        query,
                        chunk.text,
                        min_length=self.config.min_keyword_length,
                        exact_match_bonus=self.config.exact_match_bonus,
                    )
                ),
                mode="keyword",
            )
            for chunk in chunks
        ]
        return self._rank([item for item in scored if item.score > 0])

    def _rank(self, items: list[ScoredChunk]) -> list[ScoredChunk]:
        # sorted() is stable, so ties keep corpus order.
        ranked = sorted(items, key=lambda item: item.score, reverse=True)
        return [
            ScoredChunk(chunk=item.chunk, score=item.score, mode=item.mode, rank=i + 1)
            for i, item in enumerate(ranked[: self.config.top_k])
        ]


def _safe_embed(embedder: Embedder, text: str) -> list[float]:
    try:
        return embedder.embed_query(text)
    except Exception as exc:
        logger.warning("Embedding failed: %s", exc)
        return []
