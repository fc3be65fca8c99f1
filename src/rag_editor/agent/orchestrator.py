"""Agentic chat driver: plan -> retrieve -> prompt -> stream -> extract -> execute."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence

from langchain_core.messages import BaseMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder, PromptTemplate

from rag_editor.agent.executor import build_document_tools
from rag_editor.agent.extractor import CancelToken, consume_stream
from rag_editor.agent.partial_json import (
    RecordLineBuffer,
    extract_think_block,
    record_deltas,
    strip_think_blocks,
)
from rag_editor.agent.planner import QueryPlanner
from rag_editor.agent.registry import ToolRegistry
from rag_editor.config import AgentConfig
from rag_editor.context import AppContext, DocumentCorpus
from rag_editor.llm.ollama import OllamaClient, OllamaError
from rag_editor.obs.tracing import Timer, TraceStore
from rag_editor.retrieval.retriever import RelevanceRetriever
from rag_editor.types import Chunk, QueryPlan, StreamEvent, ToolResult, ToolTrace

logger = logging.getLogger(__name__)

_AGENTIC_SYSTEM_PROMPT = """
{system_prompt}

You are an AI writing assistant with the ability to edit the user's document.
You change the document by calling exactly one of these tools:
{tools}

Respond with a single JSON object and nothing else, with the tool's
parameters as top-level fields, for example:
{{"thought": "brief reasoning", "tool": "append_text", "text": "A short closing paragraph.", "message": "Added a closing paragraph."}}
Use the "reply" tool when the user only asks a question or no change is needed.
Ground factual content in the reference material when it is relevant.

Reference material:
{sources}

Current document content (HTML):
\"\"\"
{document}
\"\"\"
""".strip()

_AGENTIC_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _AGENTIC_SYSTEM_PROMPT),
        MessagesPlaceholder(variable_name="chat_history", optional=True),
        ("human", "{request}"),
    ]
)

_CHAT_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{system_prompt}\n\nReference material:\n{sources}"),
        MessagesPlaceholder(variable_name="chat_history", optional=True),
        ("human", "{question}"),
    ]
)

_SELECTION_PROMPT = PromptTemplate.from_template(
    """
You are helping edit a document. The user has selected the following text and wants you to "{command}".

{context_block}Selected text to modify:
\"\"\"{selected}\"\"\"

Command: {command}

IMPORTANT: Respond ONLY with the modified text. Do not include any explanations, quotes, or markdown formatting. The response will directly replace the selected text.
""".strip()
)

_ROLE_BY_MESSAGE_TYPE = {"system": "system", "human": "user", "ai": "assistant"}
_FENCE_LANGUAGE_LINE = re.compile(r"^[\w+-]{1,19}$")


class AgenticChat:
    """Drives one user turn end to end and reports progress as events.

    Every run yields exactly one terminal event (`done=True`) carrying the
    tool invocation, its `ToolResult` and the reference chunks used. Errors
    from the completion server end the run with an unsuccessful result
    instead of raising; a cancelled run applies nothing.
    """

    def __init__(
        self,
        client: OllamaClient,
        *,
        planner: QueryPlanner | None = None,
        retriever: RelevanceRetriever | None = None,
        tools: ToolRegistry | None = None,
        trace_store: TraceStore | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.client = client
        self.config = config or AgentConfig()
        self.planner = planner or QueryPlanner(client, self.config)
        self.retriever = retriever or RelevanceRetriever()
        self.tools = tools or build_document_tools()
        self.trace_store = trace_store or TraceStore()

    def run(
        self,
        user_request: str,
        context: AppContext,
        cancel_token: CancelToken | None = None,
    ) -> Iterator[StreamEvent]:
        timer = Timer()
        corpus = context.corpus

        yield StreamEvent(status="Planning...")
        plan = self._plan(user_request, corpus)
        sources: list[Chunk] = []
        if plan.queries:
            yield StreamEvent(status="Searching references: " + "; ".join(plan.queries))
            sources = self.retriever.retrieve_many(plan.queries, corpus.chunks())
        yield StreamEvent(status=f"Using {len(sources)} reference passages", sources=sources)

        if cancel_token is not None and cancel_token.cancelled:
            yield self._finish_cancelled(user_request, plan, sources, timer)
            return

        messages = self.build_messages(user_request, context, sources)
        final: StreamEvent | None = None
        try:
            stream = self.client.stream_chat(messages, temperature=self.config.agentic_temperature)
            for event in consume_stream(
                stream,
                context.document_html,
                cancel_token=cancel_token,
                config=self.config,
            ):
                event.sources = sources
                if event.done:
                    final = event
                    break
                yield event
        except OllamaError as exc:
            logger.error("Agentic generation failed: %s", exc)
            final = StreamEvent(
                status="Generation failed",
                done=True,
                result=ToolResult(success=False, message=f"Generation failed: {exc}"),
                sources=sources,
            )

        assert final is not None
        if final.cancelled:
            yield self._finish_cancelled(user_request, plan, sources, timer, final)
            return

        observed: list[ToolTrace] = []
        if final.invocation is not None:
            invocation = final.invocation
            result = self.tools.execute(
                invocation.tool,
                invocation.parameters,
                context.document_html,
                observer=observed.append,
            )
            if result.success and invocation.message:
                result = ToolResult(success=True, message=invocation.message, new_html=result.new_html)
            if result.success and result.new_html is not None:
                context.document_html = result.new_html
            final.result = result
        result = final.result or ToolResult(success=False, message="No result")
        final.status = result.message

        context.remember("user", user_request)
        context.remember("assistant", result.message)
        record = self.trace_store.create_record(
            request=user_request,
            queries=plan.queries,
            source_chunk_ids=[chunk.id for chunk in sources],
            tool=final.invocation.tool if final.invocation else None,
            success=result.success,
            message=result.message,
            latency_ms=timer.elapsed_ms,
            tool_traces=observed,
        )
        final.trace_id = record.trace_id
        logger.info("Turn finished: tool=%s success=%s", record.tool, record.success)
        yield final

    def build_messages(
        self,
        user_request: str,
        context: AppContext,
        sources: Sequence[Chunk],
    ) -> list[dict[str, str]]:
        document = context.document_html[: self.config.document_excerpt_chars]
        messages = _AGENTIC_PROMPT.format_messages(
            system_prompt=context.ollama.system_prompt,
            tools=self.tools.render_catalog(),
            sources=format_sources(sources, context.corpus),
            document=document or "(empty document)",
            chat_history=[(turn["role"], turn["content"]) for turn in context.chat_history],
            request=user_request,
        )
        return _to_ollama_messages(messages)

    def ask(
        self,
        question: str,
        context: AppContext,
        cancel_token: CancelToken | None = None,
    ) -> Iterator[StreamEvent]:
        """Plain conversational answer, streamed, with no document edits."""
        sources = self.retriever.retrieve(question, context.corpus.chunks()) if len(context.corpus) else []
        messages = _to_ollama_messages(
            _CHAT_PROMPT.format_messages(
                system_prompt=context.ollama.system_prompt,
                sources=format_sources(sources, context.corpus),
                chat_history=[(turn["role"], turn["content"]) for turn in context.chat_history],
                question=question,
            )
        )
        answer = ""
        try:
            for raw, native_thought, cancelled in _stream_text(
                self.client.stream_chat(messages), cancel_token
            ):
                answer = strip_think_blocks(raw).strip()
                thought = native_thought or extract_think_block(raw)
                if cancelled:
                    yield StreamEvent(status="Cancelled", content=answer or None, done=True, cancelled=True)
                    return
                yield StreamEvent(
                    status="Generating...",
                    content=answer or None,
                    thought=thought or None,
                    sources=sources,
                )
        except OllamaError as exc:
            logger.error("Chat generation failed: %s", exc)
            yield StreamEvent(
                status="Generation failed",
                done=True,
                result=ToolResult(success=False, message=f"Generation failed: {exc}"),
                sources=sources,
            )
            return

        context.remember("user", question)
        context.remember("assistant", answer)
        yield StreamEvent(
            status="Done",
            content=answer or None,
            done=True,
            result=ToolResult(success=True, message=answer),
            sources=sources,
        )

    def rewrite_selection(
        self,
        selected_text: str,
        command: str,
        preceding_context: str = "",
        cancel_token: CancelToken | None = None,
    ) -> Iterator[StreamEvent]:
        """Stream a replacement for `selected_text` according to `command`."""
        context_block = (
            f'Context (text before the selection):\n"""{preceding_context}"""\n\n'
            if preceding_context
            else ""
        )
        prompt = _SELECTION_PROMPT.format(
            command=command,
            context_block=context_block,
            selected=selected_text,
        )
        base = self.client.config.temperature
        temperature = None if base is None else max(0.3, base - 0.2)

        raw = ""
        try:
            for raw, _thought, cancelled in _stream_text(
                self.client.stream_generate(prompt, temperature=temperature), cancel_token
            ):
                if cancelled:
                    yield StreamEvent(status="Cancelled", done=True, cancelled=True)
                    return
                cleaned = clean_selection_result(raw, final=False)
                yield StreamEvent(status="Rewriting...", content=cleaned or None)
        except OllamaError as exc:
            logger.error("Selection rewrite failed: %s", exc)
            yield StreamEvent(
                status="Generation failed",
                done=True,
                result=ToolResult(success=False, message=f"Generation failed: {exc}"),
            )
            return

        cleaned = clean_selection_result(raw, final=True)
        yield StreamEvent(
            status="Done",
            content=cleaned or None,
            done=True,
            result=ToolResult(success=True, message="Selection rewritten", new_html=cleaned),
        )

    def _plan(self, user_request: str, corpus: DocumentCorpus) -> QueryPlan:
        if not len(corpus):
            return QueryPlan(queries=[], thought="")
        return self.planner.plan(user_request, corpus.summary())

    def _finish_cancelled(
        self,
        user_request: str,
        plan: QueryPlan,
        sources: list[Chunk],
        timer: Timer,
        event: StreamEvent | None = None,
    ) -> StreamEvent:
        logger.debug("Turn cancelled by user")
        final = event or StreamEvent(status="Cancelled", done=True, cancelled=True)
        final.sources = sources
        record = self.trace_store.create_record(
            request=user_request,
            queries=plan.queries,
            source_chunk_ids=[chunk.id for chunk in sources],
            tool=None,
            success=False,
            message="Cancelled",
            latency_ms=timer.elapsed_ms,
            cancelled=True,
        )
        final.trace_id = record.trace_id
        return final


def format_sources(sources: Sequence[Chunk], corpus: DocumentCorpus) -> str:
    if not sources:
        return "(none)"
    names = {document.id: document.name for document in corpus.documents()}
    return "\n\n".join(
        f"[{i}] {names.get(chunk.source, chunk.source)}: {chunk.text}"
        for i, chunk in enumerate(sources, start=1)
    )


def clean_selection_result(text: str, *, final: bool) -> str:
    """Strip reasoning blocks; on the final chunk also strip quotes and fences."""
    cleaned = strip_think_blocks(text).strip()
    if not final:
        return cleaned
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {'"', "'"}:
        cleaned = cleaned[1:-1]
    if len(cleaned) >= 6 and cleaned.startswith("```") and cleaned.endswith("```"):
        body = cleaned[3:-3]
        first_line, newline, rest = body.partition("\n")
        # A bare word right after the opening fence is a language tag.
        if newline and (not first_line.strip() or _FENCE_LANGUAGE_LINE.match(first_line.strip())):
            body = rest
        cleaned = body.strip()
    return cleaned


def _to_ollama_messages(messages: Sequence[BaseMessage]) -> list[dict[str, str]]:
    return [
        {"role": _ROLE_BY_MESSAGE_TYPE.get(message.type, "user"), "content": str(message.content)}
        for message in messages
    ]


def _stream_text(
    chunks: Iterator[str],
    cancel_token: CancelToken | None,
) -> Iterator[tuple[str, str, bool]]:
    """Accumulate raw response text and native thinking from an NDJSON stream.

    Yields `(text_so_far, thinking_so_far, cancelled)`; a cancelled tuple is
    always the last one.
    """
    lines = RecordLineBuffer()
    text = ""
    thinking = ""
    try:
        for chunk in chunks:
            if cancel_token is not None and cancel_token.cancelled:
                yield text, thinking, True
                return
            for record in lines.feed(chunk):
                content, delta = record_deltas(record)
                text += content
                thinking += delta
            yield text, thinking, False
        for record in lines.flush():
            content, delta = record_deltas(record)
            text += content
            thinking += delta
        yield text, thinking, False
    finally:
        close = getattr(chunks, "close", None)
        if close is not None:
            close()
