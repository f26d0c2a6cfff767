"""Pytest configuration and fixtures for unit tests."""
from typing import Dict, List

import pytest

from pdfqa.errors import EmbeddingFailed, GenerationFailed
from pdfqa.rag.store_faiss import FAISSVectorStore


class FakeEmbedder:
    """Deterministic embedder: one dimension per keyword, plus a bias term."""

    KEYWORDS = ("cat", "dog", "fish", "bird")

    def __init__(self, fail_on: str = None):
        self.fail_on = fail_on
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise EmbeddingFailed(f"refusing to embed {text[:20]!r}")
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.KEYWORDS] + [0.1]


class FakeGenerator:
    """Records prompts and echoes a canned answer."""

    def __init__(self, answer: str = "canned answer", error: Exception = None):
        self.answer = answer
        self.error = error
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def store(tmp_path) -> FAISSVectorStore:
    """Empty vector store writing to a temp directory."""
    return FAISSVectorStore(index_dir=tmp_path / "index", embedding_model="fake-embed")


@pytest.fixture
def payload():
    def make(content: str, source_id: str = "doc.txt", **metadata) -> Dict:
        return {"content": content, "source_id": source_id, "metadata": metadata}

    return make


@pytest.fixture
def failing_generator() -> FakeGenerator:
    return FakeGenerator(error=GenerationFailed("model offline"))
