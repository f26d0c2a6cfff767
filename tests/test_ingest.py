"""Tests for the ingest pipeline."""
import asyncio

import pytest

from conftest import FakeEmbedder
from pdfqa.errors import DimensionMismatch, EmbeddingFailed
from pdfqa.rag.chunker import TextChunker
from pdfqa.rag.ingest import IngestPipeline
from pdfqa.rag.loader import Document, DocumentLoader
from pdfqa.rag.store_faiss import FAISSVectorStore

NOTES = """# Pets

## Cats

The cat naps on the cat tree all day long.

## Dogs

The dog fetches the ball and the dog barks at the mail carrier.
"""


class TrackingEmbedder(FakeEmbedder):
    """Records the maximum number of embedding calls in flight."""

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0

    async def embed(self, text):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.001)
        try:
            return await super().embed(text)
        finally:
            self.in_flight -= 1


@pytest.fixture
def docs_dir(tmp_path):
    path = tmp_path / "docs"
    path.mkdir()
    return path


@pytest.fixture
def pipeline(embedder, store, docs_dir) -> IngestPipeline:
    return IngestPipeline(
        embedder=embedder,
        vector_store=store,
        chunker=TextChunker(chunk_size=60, chunk_overlap=10),
        docs_dir=docs_dir,
    )


async def test_ingest_document_indexes_every_chunk(pipeline, store):
    doc = DocumentLoader().load_bytes(NOTES.encode(), "pets.md", suffix=".md")

    result = await pipeline.ingest_document(doc)

    chunks = pipeline.chunker.chunk_text(doc.text, source_id="pets.md")
    assert result["chunks_created"] == len(chunks)
    assert result["replaced"] == 0
    assert len(store) == len(chunks)
    for chunk in chunks:
        stored = store.get(chunk.chunk_id)
        assert stored["content"] == chunk.content
        assert stored["source_id"] == "pets.md"
        assert (stored["char_start"], stored["char_end"]) == (chunk.char_start, chunk.char_end)


async def test_payload_carries_heading_context(pipeline, store):
    doc = DocumentLoader().load_bytes(NOTES.encode(), "pets.md", suffix=".md")
    await pipeline.ingest_document(doc)

    last = store.get(f"pets.md:{len(store) - 1}")

    assert last["metadata"]["heading_context"] == "# Pets > ## Dogs"


async def test_reingest_replaces_previous_chunks(pipeline, store):
    long_doc = Document(source_id="a.txt", text="cat " * 60)
    short_doc = Document(source_id="a.txt", text="dog dog dog")

    await pipeline.ingest_document(long_doc)
    assert len(store) > 1

    result = await pipeline.ingest_document(short_doc)

    assert result["replaced"] > 1
    assert len(store) == 1
    assert store.get("a.txt:0")["content"] == "dog dog dog"


async def test_embedding_failure_leaves_index_untouched(store, docs_dir):
    pipeline = IngestPipeline(
        embedder=FakeEmbedder(fail_on="poison"),
        vector_store=store,
        chunker=TextChunker(chunk_size=20, chunk_overlap=2),
        docs_dir=docs_dir,
    )
    await pipeline.ingest_document(Document(source_id="a.txt", text="the cat sat"))

    bad = Document(source_id="a.txt", text="fine text here and then poison at the end")
    with pytest.raises(EmbeddingFailed):
        await pipeline.ingest_document(bad)

    assert len(store) == 1
    assert store.get("a.txt:0")["content"] == "the cat sat"


async def test_dimension_mismatch_keeps_previous_version(pipeline, store, payload):
    store.insert("a.txt:0", [1.0, 0.0], payload("old text", source_id="a.txt"))

    # FakeEmbedder returns 5-d vectors, the index holds 2-d ones
    with pytest.raises(DimensionMismatch):
        await pipeline.ingest_document(Document(source_id="a.txt", text="the cat sat"))

    assert store.sources() == ["a.txt"]
    assert store.get("a.txt:0")["content"] == "old text"


async def test_mixed_dimensions_write_nothing(store, docs_dir):
    class DriftingEmbedder:
        def __init__(self):
            self.calls = 0

        async def embed(self, text):
            self.calls += 1
            return [1.0, 0.0] if self.calls == 1 else [1.0, 0.0, 0.0]

    pipeline = IngestPipeline(
        embedder=DriftingEmbedder(),
        vector_store=store,
        chunker=TextChunker(chunk_size=20, chunk_overlap=2),
        docs_dir=docs_dir,
    )
    doc = Document(source_id="b.txt", text="a long document that spans several chunks")

    with pytest.raises(DimensionMismatch):
        await pipeline.ingest_document(doc)

    assert len(store) == 0
    assert store.sources() == []


async def test_unexpected_embedder_error_is_wrapped(store, docs_dir):
    class BrokenEmbedder:
        async def embed(self, text):
            raise ConnectionResetError("socket closed")

    pipeline = IngestPipeline(BrokenEmbedder(), store, docs_dir=docs_dir)

    with pytest.raises(EmbeddingFailed):
        await pipeline.ingest_document(Document(source_id="x.txt", text="hello"))


async def test_embedding_concurrency_is_bounded(store, docs_dir):
    embedder = TrackingEmbedder()
    pipeline = IngestPipeline(
        embedder,
        store,
        chunker=TextChunker(chunk_size=10, chunk_overlap=2),
        docs_dir=docs_dir,
        concurrency=3,
    )

    await pipeline.ingest_document(Document(source_id="big.txt", text="cat dog " * 40))

    assert 1 < embedder.max_in_flight <= 3
    assert pipeline.stats["embeddings_generated"] == len(store)


async def test_empty_document_creates_no_chunks(pipeline, store):
    result = await pipeline.ingest_document(Document(source_id="empty.txt", text=""))

    assert result["chunks_created"] == 0
    assert len(store) == 0


async def test_ingest_all_discovers_and_saves(pipeline, store, docs_dir):
    (docs_dir / "pets.md").write_text(NOTES, encoding="utf-8")
    nested = docs_dir / "more"
    nested.mkdir()
    (nested / "fish.txt").write_text("The fish swims. The bird sings.", encoding="utf-8")
    (docs_dir / "broken.pdf").write_bytes(b"not really a pdf")
    (docs_dir / "ignored.bin").write_bytes(b"\x00")

    seen = []
    stats = await pipeline.ingest_all(progress_callback=lambda i, n, path: seen.append((i, n, path.name)))

    assert stats["files_processed"] == 2
    assert stats["files_failed"] == 1
    assert [entry[:2] for entry in seen] == [(1, 3), (2, 3), (3, 3)]
    assert "more/fish.txt" in store.sources()
    assert store.index_path.exists()

    reloaded = FAISSVectorStore(index_dir=store.index_dir, embedding_model="fake-embed")
    reloaded.load_index()
    assert len(reloaded) == len(store)


async def test_ingest_all_rebuild_drops_old_sources(pipeline, store, docs_dir):
    store.insert("stale.txt:0", [1.0, 0.0, 0.0, 0.0, 0.1], {"source_id": "stale.txt"})
    store.save_index()
    (docs_dir / "fish.txt").write_text("fish", encoding="utf-8")

    await pipeline.ingest_all(rebuild=True)

    assert store.sources() == ["fish.txt"]


async def test_ingest_all_missing_directory(store, embedder, tmp_path):
    pipeline = IngestPipeline(embedder, store, docs_dir=tmp_path / "absent")

    with pytest.raises(FileNotFoundError):
        await pipeline.ingest_all()
