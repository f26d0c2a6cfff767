"""Tests for the Ollama client and its embedder/generator adapters."""
import asyncio
import json

import httpx
import pytest

from pdfqa.errors import EmbeddingFailed, GenerationFailed
from pdfqa.llm_client import (
    Embedder,
    Generator,
    OllamaClient,
    OllamaEmbedder,
    OllamaGenerator,
)


def make_client(handler) -> OllamaClient:
    return OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


def test_adapters_satisfy_protocols():
    client = make_client(lambda request: httpx.Response(200, json={}))

    assert isinstance(OllamaEmbedder(client), Embedder)
    assert isinstance(OllamaGenerator(client), Generator)


async def test_embedder_posts_prompt_and_returns_vector():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]})

    embedder = OllamaEmbedder(make_client(handler), model="embed-model")

    assert await embedder.embed("hello") == [0.1, 0.2, 0.3]
    assert seen["path"] == "/api/embeddings"
    assert seen["body"] == {"model": "embed-model", "prompt": "hello"}


async def test_embedder_http_error_becomes_embedding_failed():
    embedder = OllamaEmbedder(make_client(lambda request: httpx.Response(500, text="boom")))

    with pytest.raises(EmbeddingFailed):
        await embedder.embed("hello")


async def test_embedder_connection_error_becomes_embedding_failed():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(EmbeddingFailed):
        await OllamaEmbedder(make_client(handler)).embed("hello")


async def test_embedder_rejects_empty_embedding():
    embedder = OllamaEmbedder(make_client(lambda request: httpx.Response(200, json={"embedding": []})))

    with pytest.raises(EmbeddingFailed):
        await embedder.embed("hello")


async def test_embedder_times_out():
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json={"embedding": [1.0]})

    embedder = OllamaEmbedder(make_client(handler), timeout=0.05)

    with pytest.raises(EmbeddingFailed, match="timed out"):
        await embedder.embed("hello")


async def test_generator_sends_system_and_user_messages():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "  42  "}})

    generator = OllamaGenerator(make_client(handler), model="chat-model", temperature=0.0)

    assert await generator.generate("What is the answer?") == "42"
    assert seen["path"] == "/api/chat"
    body = seen["body"]
    assert body["model"] == "chat-model"
    assert body["stream"] is False
    assert body["options"] == {"temperature": 0.0}
    assert [m["role"] for m in body["messages"]] == ["system", "user"]
    assert body["messages"][1]["content"] == "What is the answer?"


async def test_generator_http_error_becomes_generation_failed():
    generator = OllamaGenerator(make_client(lambda request: httpx.Response(503)))

    with pytest.raises(GenerationFailed):
        await generator.generate("prompt")


async def test_generator_rejects_response_without_content():
    generator = OllamaGenerator(make_client(lambda request: httpx.Response(200, json={"done": True})))

    with pytest.raises(GenerationFailed):
        await generator.generate("prompt")


async def test_generator_times_out():
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json={"message": {"content": "late"}})

    generator = OllamaGenerator(make_client(handler), timeout=0.05)

    with pytest.raises(GenerationFailed, match="timed out"):
        await generator.generate("prompt")


async def test_list_models():
    client = make_client(
        lambda request: httpx.Response(200, json={"models": [{"name": "a"}, {"name": "b"}]})
    )

    assert await client.list_models() == ["a", "b"]
