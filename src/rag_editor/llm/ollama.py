"""HTTP client for a locally hosted Ollama server.

Endpoints used:
    GET  /api/tags      -> {"models": [{"name", "size", "modified_at"}]}
    POST /api/embed     -> {"embeddings": [[float, ...]]}
    POST /api/generate  -> {"response": str} or NDJSON {"response", "done"}
    POST /api/chat      -> NDJSON {"message": {"content", "thinking"}, "done"}

Streaming helpers yield decoded text exactly as it arrives; they do not
align on newlines. Line framing is the consumer's job.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

import httpx

from rag_editor.config import OllamaConfig
from rag_editor.types import ModelInfo

logger = logging.getLogger(__name__)


class OllamaError(RuntimeError):
    """Transport or protocol failure talking to the completion server."""


class OllamaClient:
    """Thin synchronous wrapper over the Ollama REST API. No retries."""

    def __init__(self, config: OllamaConfig | None = None, http_client: httpx.Client | None = None) -> None:
        self.config = config or OllamaConfig()
        self._http = http_client or httpx.Client(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
        )

    def close(self) -> None:
        self._http.close()

    def options(self, temperature: float | None = None) -> dict[str, Any]:
        """Sampling options with unset values omitted (model defaults apply)."""
        values = {
            "temperature": temperature if temperature is not None else self.config.temperature,
            "top_k": self.config.top_k,
            "top_p": self.config.top_p,
        }
        return {key: value for key, value in values.items() if value is not None}

    def list_models(self) -> list[ModelInfo]:
        payload = self._request_json("GET", "/api/tags")
        models = payload.get("models") if isinstance(payload, dict) else None
        if not isinstance(models, list):
            raise OllamaError("Invalid data structure received from Ollama")
        return [
            ModelInfo(
                name=str(item.get("name", "")),
                size=int(item.get("size", 0) or 0),
                modified_at=str(item.get("modified_at", "")),
            )
            for item in models
            if isinstance(item, dict)
        ]

    def check_connection(self) -> bool:
        try:
            response = self._http.get("/api/tags")
        except httpx.HTTPError:
            return False
        return response.is_success

    def embed(self, text: str, *, model: str | None = None) -> list[float]:
        payload = self._request_json(
            "POST",
            "/api/embed",
            json={"model": model or self.config.embedding_model, "input": text},
        )
        embeddings = payload.get("embeddings") if isinstance(payload, dict) else None
        if not isinstance(embeddings, list) or not embeddings:
            return []
        first = embeddings[0]
        if not isinstance(first, list):
            raise OllamaError("Embedding response has unexpected shape")
        return [float(value) for value in first]

    def generate(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        fmt: str | None = None,
    ) -> str:
        """Single-shot `/api/generate`; returns the raw `response` text."""
        body: dict[str, Any] = {
            "model": self._require_model(),
            "prompt": prompt,
            "stream": False,
            "options": self.options(temperature),
        }
        if fmt:
            body["format"] = fmt
        payload = self._request_json("POST", "/api/generate", json=body)
        if not isinstance(payload, dict):
            raise OllamaError("Generate response is not an object")
        return str(payload.get("response", ""))

    def stream_generate(self, prompt: str, *, temperature: float | None = None) -> Iterator[str]:
        body = {
            "model": self._require_model(),
            "prompt": prompt,
            "stream": True,
            "options": self.options(temperature),
        }
        yield from self._stream("/api/generate", body)

    def stream_chat(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
    ) -> Iterator[str]:
        body = {
            "model": self._require_model(),
            "messages": messages,
            "stream": True,
            "options": self.options(temperature),
        }
        yield from self._stream("/api/chat", body)

    def _require_model(self) -> str:
        if not self.config.model:
            raise OllamaError("No model selected")
        return self.config.model

    def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise OllamaError(f"Request to {path} failed: {exc}") from exc
        if not response.is_success:
            raise OllamaError(f"HTTP error! status: {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise OllamaError(f"Invalid JSON from {path}") from exc

    def _stream(self, path: str, body: dict[str, Any]) -> Iterator[str]:
        try:
            with self._http.stream("POST", path, json=body) as response:
                if not response.is_success:
                    raise OllamaError(f"HTTP error! status: {response.status_code}")
                for text in response.iter_text():
                    if text:
                        yield text
        except httpx.HTTPError as exc:
            logger.error("Streaming request to %s failed: %s", path, exc)
            raise OllamaError(f"Streaming request to {path} failed: {exc}") from exc
