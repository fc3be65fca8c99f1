"""RAG editor package: reference retrieval and streamed document edits over Ollama."""

from .config import AgentConfig, ChunkingConfig, OllamaConfig, RetrievalConfig
from .context import AppContext, DocumentCorpus

__all__ = [
    "AgentConfig",
    "AppContext",
    "ChunkingConfig",
    "DocumentCorpus",
    "OllamaConfig",
    "RetrievalConfig",
]
