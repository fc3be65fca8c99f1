import json

import httpx
import pytest

from rag_editor.config import OllamaConfig
from rag_editor.llm.ollama import OllamaClient, OllamaError


def _client(handler, **config) -> OllamaClient:
    settings = OllamaConfig(model="llama3", **config)
    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://ollama.test")
    return OllamaClient(settings, http_client=http)


def test_list_models_parses_tags() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(
            200,
            json={"models": [{"name": "llama3:8b", "size": 4661224676, "modified_at": "2024-05-01T10:00:00Z"}]},
        )

    models = _client(handler).list_models()

    assert [model.name for model in models] == ["llama3:8b"]
    assert models[0].size == 4661224676


def test_list_models_rejects_bad_shape_and_http_errors() -> None:
    with pytest.raises(OllamaError, match="Invalid data structure"):
        _client(lambda request: httpx.Response(200, json={"items": []})).list_models()
    with pytest.raises(OllamaError, match="HTTP error! status: 500"):
        _client(lambda request: httpx.Response(500)).list_models()


def test_generate_sends_options_and_format() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"response": '{"queries": []}', "done": True})

    text = _client(handler, temperature=0.8).generate("plan this", temperature=0.2, fmt="json")

    assert text == '{"queries": []}'
    assert seen["model"] == "llama3"
    assert seen["stream"] is False
    assert seen["format"] == "json"
    assert seen["options"] == {"temperature": 0.2, "top_k": 40, "top_p": 0.9}


def test_options_omit_unset_values() -> None:
    client = _client(lambda request: httpx.Response(200), top_k=None)

    assert client.options() == {"top_p": 0.9}
    assert client.options(0.5) == {"temperature": 0.5, "top_p": 0.9}


def test_generate_requires_model() -> None:
    http = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    client = OllamaClient(OllamaConfig(), http_client=http)

    with pytest.raises(OllamaError, match="No model selected"):
        client.generate("hi")


def test_stream_chat_yields_raw_text() -> None:
    body = (
        json.dumps({"message": {"role": "assistant", "content": "Hel"}, "done": False})
        + "\n"
        + json.dumps({"message": {"role": "assistant", "content": "lo"}, "done": True})
        + "\n"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        assert request.url.path == "/api/chat"
        assert payload["stream"] is True
        assert payload["messages"] == [{"role": "user", "content": "hi"}]
        return httpx.Response(200, content=body.encode("utf-8"))

    chunks = list(_client(handler).stream_chat([{"role": "user", "content": "hi"}]))

    assert "".join(chunks) == body


def test_stream_generate_reports_http_error() -> None:
    client = _client(lambda request: httpx.Response(404))

    with pytest.raises(OllamaError, match="HTTP error! status: 404"):
        list(client.stream_generate("rewrite"))


def test_embed_returns_first_vector() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"model": "nomic-embed-text", "input": "hello"}
        return httpx.Response(200, json={"embeddings": [[0.1, 0.2]]})

    client = _client(handler, embedding_model="nomic-embed-text")

    assert client.embed("hello") == [0.1, 0.2]
    assert _client(lambda request: httpx.Response(200, json={})).embed("x") == []


def test_check_connection() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert _client(lambda request: httpx.Response(200, json={"models": []})).check_connection()
    assert not _client(refuse).check_connection()
    with pytest.raises(OllamaError, match="failed"):
        _client(refuse).list_models()
