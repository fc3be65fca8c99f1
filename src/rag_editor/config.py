"""Configuration models for the document assistant."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI writing assistant. Help the user improve their writing, "
    "fix grammar, expand ideas, and refine their content. Be concise and professional."
)


class ChunkingConfig(BaseModel):
    """Configures sentence-aware sliding-window chunking."""

    chunk_size: int = Field(default=1000, ge=1)
    overlap: int = Field(default=200, ge=0)
    sentence_break_ratio: float = Field(default=0.5, ge=0.0, le=1.0)


class RetrievalConfig(BaseModel):
    """Configures vector/keyword retrieval and the sampling fallback."""

    top_k: int = Field(default=5, ge=1)
    similarity_threshold: float = Field(default=0.3, ge=-1.0, le=1.0)
    exact_match_bonus: int = Field(default=5, ge=0)
    min_keyword_length: int = Field(default=4, ge=1)
    sample_count: int = Field(default=5, ge=1)
    max_workers: int = Field(default=4, ge=1)
    # "ollama" needs `OllamaConfig.embedding_model`; "hashing" runs offline.
    embedder: Literal["ollama", "hashing", "none"] = "ollama"
    hashing_dimension: int = Field(default=256, ge=8)

    @classmethod
    def from_env(cls) -> "RetrievalConfig":
        defaults = cls()
        embedder = _env_str("RAG_EMBEDDER", defaults.embedder).lower()
        if embedder not in {"ollama", "hashing", "none"}:
            embedder = defaults.embedder
        return cls(
            top_k=_env_int("RAG_TOP_K", defaults.top_k) or defaults.top_k,
            similarity_threshold=_env_float("RAG_SIMILARITY_THRESHOLD", defaults.similarity_threshold),
            embedder=embedder,
        )


class OllamaConfig(BaseModel):
    """Connection and sampling settings for the local completion server."""

    base_url: str = "http://127.0.0.1:11434"
    model: str = ""
    embedding_model: str = ""
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_k: int | None = Field(default=40, ge=1)
    top_p: float | None = Field(default=0.9, ge=0.0, le=1.0)
    timeout_seconds: float = Field(default=120.0, gt=0.0)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    @classmethod
    def from_env(cls) -> "OllamaConfig":
        """Build settings from `OLLAMA_*` environment variables.

        Blank or unparsable values fall back to the model defaults.
        """
        defaults = cls()
        return cls(
            base_url=_env_str("OLLAMA_URL", defaults.base_url),
            model=_env_str("OLLAMA_MODEL", defaults.model),
            embedding_model=_env_str("OLLAMA_EMBED_MODEL", defaults.embedding_model),
            temperature=_env_float("OLLAMA_TEMPERATURE", defaults.temperature),
            top_k=_env_int("OLLAMA_TOP_K", defaults.top_k),
            top_p=_env_float("OLLAMA_TOP_P", defaults.top_p),
        )


class AgentConfig(BaseModel):
    """Configures planning, agentic generation and stream status heuristics."""

    planner_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    agentic_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    short_reply_limit: int = Field(default=50, ge=1)
    document_excerpt_chars: int = Field(default=6000, ge=100)


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default
