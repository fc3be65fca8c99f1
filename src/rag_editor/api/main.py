"""FastAPI entrypoint for documents, retrieval, agentic chat and traces."""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from rag_editor.agent.executor import build_document_tools
from rag_editor.agent.orchestrator import AgenticChat
from rag_editor.agent.planner import QueryPlanner
from rag_editor.config import OllamaConfig, RetrievalConfig
from rag_editor.context import AppContext
from rag_editor.ingest.embedder import build_embedder
from rag_editor.llm.ollama import OllamaClient, OllamaError
from rag_editor.logging_config import setup_logging
from rag_editor.obs.tracing import TraceStore
from rag_editor.retrieval.retriever import RelevanceRetriever
from rag_editor.types import Chunk, ContextDocument, StreamEvent

_NDJSON = "application/x-ndjson"


class DocumentRequest(BaseModel):
    name: str = Field(min_length=1)
    text: str
    doc_id: str | None = None


class SourceSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    force_samples: bool = False


class PlanRequest(BaseModel):
    question: str = Field(min_length=1)


class ToolRequest(BaseModel):
    tool: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    html: str = ""


class AgenticRequest(BaseModel):
    request: str = Field(min_length=1)
    document_html: str | None = None


class AskRequest(BaseModel):
    question: str = Field(min_length=1)


class SelectionRequest(BaseModel):
    selected_text: str = Field(min_length=1)
    command: str = Field(min_length=1)
    preceding_context: str = ""


def build_chat(context: AppContext) -> AgenticChat:
    """Wire the default client, retriever and tools for `context`."""
    client = OllamaClient(context.ollama)
    embedder = build_embedder(client, context.ollama, context.retrieval)
    return AgenticChat(
        client,
        planner=QueryPlanner(client, context.agent),
        retriever=RelevanceRetriever(embedder, context.retrieval),
        tools=build_document_tools(),
        trace_store=TraceStore(),
        config=context.agent,
    )


def chunk_payload(chunk: Chunk) -> dict[str, Any]:
    return {"id": chunk.id, "source": chunk.source, "index": chunk.index, "text": chunk.text}


def document_payload(document: ContextDocument) -> dict[str, Any]:
    return {
        "id": document.id,
        "name": document.name,
        "chunk_count": len(document.chunks),
        "created_at": document.created_at.isoformat(),
    }


def event_payload(event: StreamEvent) -> dict[str, Any]:
    payload = asdict(event)
    payload["sources"] = [chunk_payload(chunk) for chunk in event.sources]
    return payload


def _ndjson(events: Iterator[StreamEvent]) -> Iterator[str]:
    for event in events:
        yield json.dumps(event_payload(event)) + "\n"


def create_app(context: AppContext | None = None, chat: AgenticChat | None = None) -> FastAPI:
    context = context or AppContext(ollama=OllamaConfig.from_env(), retrieval=RetrievalConfig.from_env())
    chat = chat or build_chat(context)
    corpus = context.corpus

    app = FastAPI(title="RAG Editor", version="0.1.0")

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "ollama_connected": chat.client.check_connection(),
            "model": context.ollama.model or None,
            "documents": len(corpus),
            "trace_count": len(chat.trace_store.list_recent(limit=1000)),
        }

    @app.get("/models")
    def models() -> dict[str, Any]:
        try:
            items = chat.client.list_models()
        except OllamaError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"items": [asdict(item) for item in items]}

    @app.get("/documents")
    def list_documents() -> dict[str, Any]:
        return {"items": [document_payload(document) for document in corpus.documents()]}

    @app.post("/documents", status_code=201)
    def add_document(request: DocumentRequest) -> dict[str, Any]:
        try:
            document = corpus.add_document(request.name, request.text, doc_id=request.doc_id)
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return document_payload(document)

    @app.delete("/documents/{doc_id}")
    def remove_document(doc_id: str) -> dict[str, Any]:
        try:
            document = corpus.remove_document(doc_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return document_payload(document)

    @app.post("/sources/search")
    def source_search(request: SourceSearchRequest) -> dict[str, Any]:
        chunks = corpus.chunks()
        scored = chat.retriever.score(request.query, chunks)
        if scored:
            items = [
                {**chunk_payload(item.chunk), "score": item.score, "mode": item.mode, "rank": item.rank}
                for item in scored
            ]
        else:
            sampled = chat.retriever.retrieve(request.query, chunks, force_samples=request.force_samples)
            items = [
                {**chunk_payload(chunk), "score": 0.0, "mode": "sample", "rank": rank}
                for rank, chunk in enumerate(sampled, start=1)
            ]
        return {"items": items}

    @app.post("/plan")
    def plan(request: PlanRequest) -> dict[str, Any]:
        return asdict(chat.planner.plan(request.question, corpus.summary()))

    @app.post("/tools/execute")
    def execute(request: ToolRequest) -> dict[str, Any]:
        return asdict(chat.tools.execute(request.tool, request.parameters, request.html))

    @app.post("/chat/agentic")
    def agentic(request: AgenticRequest) -> StreamingResponse:
        if request.document_html is not None:
            context.document_html = request.document_html
        return StreamingResponse(_ndjson(chat.run(request.request, context)), media_type=_NDJSON)

    @app.post("/chat/ask")
    def ask(request: AskRequest) -> StreamingResponse:
        return StreamingResponse(_ndjson(chat.ask(request.question, context)), media_type=_NDJSON)

    @app.post("/selection/rewrite")
    def rewrite(request: SelectionRequest) -> StreamingResponse:
        events = chat.rewrite_selection(
            request.selected_text,
            request.command,
            request.preceding_context,
        )
        return StreamingResponse(_ndjson(events), media_type=_NDJSON)

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in chat.trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = chat.trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return chat.trace_store.summary()

    return app


setup_logging()
app = create_app()
