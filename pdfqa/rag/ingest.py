"""Ingest pipeline for indexing documents.

Orchestrates:
- File discovery
- Text extraction
- Text chunking
- Embedding generation (bounded concurrency)
- Vector and payload storage
"""
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import asyncio
import structlog

from pdfqa import config
from pdfqa.errors import EmbeddingFailed, PdfQAError
from pdfqa.llm_client import Embedder
from pdfqa.rag.chunker import Chunk, TextChunker
from pdfqa.rag.loader import Document, DocumentLoader, heading_context
from pdfqa.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


def _empty_stats() -> Dict[str, int]:
    return {
        "files_processed": 0,
        "files_failed": 0,
        "chunks_created": 0,
        "embeddings_generated": 0,
    }


class IngestPipeline:
    """Pipeline for ingesting documents into the RAG system."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: FAISSVectorStore,
        chunker: Optional[TextChunker] = None,
        loader: Optional[DocumentLoader] = None,
        docs_dir: Optional[Path] = None,
        concurrency: Optional[int] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            embedder: Embedding capability used for chunks
            vector_store: Index the chunks are written to
            chunker: Text chunker (default: config chunk size/overlap)
            loader: Document loader
            docs_dir: Directory scanned by ingest_all (default from config)
            concurrency: Maximum embedding calls in flight
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunker = chunker or TextChunker()
        self.loader = loader or DocumentLoader()
        self.docs_dir = Path(docs_dir) if docs_dir else config.DOCS_DIR
        self.concurrency = concurrency or config.EMBED_CONCURRENCY

        self.stats = _empty_stats()

        logger.info(
            "ingest_pipeline_initialized",
            docs_dir=str(self.docs_dir),
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            concurrency=self.concurrency,
        )

    def discover_documents(self) -> List[Path]:
        """Discover all supported documents in the docs directory.

        Raises:
            FileNotFoundError: If the docs directory doesn't exist
        """
        if not self.docs_dir.exists():
            raise FileNotFoundError(f"Documents directory not found: {self.docs_dir}")

        files = sorted(
            path
            for path in self.docs_dir.rglob("*")
            if path.is_file() and path.suffix.lower() in config.SUPPORTED_SUFFIXES
        )

        logger.info("documents_discovered", count=len(files), docs_dir=str(self.docs_dir))
        return files

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Embed texts concurrently, preserving order.

        Raises:
            EmbeddingFailed: If any embedding fails
        """
        if not texts:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def embed_one(text: str) -> List[float]:
            async with semaphore:
                return await self.embedder.embed(text)

        results = await asyncio.gather(
            *(embed_one(text) for text in texts), return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, Exception)]
        if failures:
            first = failures[0]
            logger.error(
                "embedding_generation_failed",
                error=str(first),
                error_type=type(first).__name__,
                failures=len(failures),
                total=len(texts),
            )
            if isinstance(first, EmbeddingFailed):
                raise first
            raise EmbeddingFailed(f"Failed to generate embedding: {first}") from first

        self.stats["embeddings_generated"] += len(texts)
        return list(results)

    def _payload(self, doc: Document, chunk: Chunk) -> Dict[str, Any]:
        metadata = dict(doc.metadata)
        if doc.path is not None:
            metadata["file_name"] = doc.path.name
        if doc.headings:
            metadata["heading_context"] = heading_context(doc.headings, chunk.char_start)

        payload = chunk.to_payload()
        payload["metadata"] = metadata
        return payload

    async def ingest_document(self, doc: Document) -> Dict[str, Any]:
        """Chunk, embed and index a loaded document.

        Previous entries for the same source id are replaced. Nothing is
        written to the index unless every chunk was embedded.

        Raises:
            EmbeddingFailed: If embedding fails
            DimensionMismatch: If the embedder disagrees with the index dimension
        """
        chunks = self.chunker.chunk_text(doc.text, source_id=doc.source_id)

        if not chunks:
            logger.warning("no_chunks_created", source_id=doc.source_id)
            removed = self.vector_store.delete_source(doc.source_id)
            return {"source_id": doc.source_id, "chunks_created": 0, "replaced": removed}

        embeddings = await self.generate_embeddings([c.content for c in chunks])
        # Old entries stay until the new vectors are known to fit the index
        self.vector_store.check_dimensions(embeddings)

        removed = self.vector_store.delete_source(doc.source_id)
        self.vector_store.insert_many(
            (chunk.chunk_id, embedding, self._payload(doc, chunk))
            for chunk, embedding in zip(chunks, embeddings)
        )

        self.stats["chunks_created"] += len(chunks)
        self.stats["files_processed"] += 1

        logger.info(
            "document_ingested",
            source_id=doc.source_id,
            chunks_created=len(chunks),
            replaced=removed,
        )

        return {
            "source_id": doc.source_id,
            "chunks_created": len(chunks),
            "embeddings_generated": len(embeddings),
            "replaced": removed,
        }

    async def ingest_file(self, file_path: Path, source_id: Optional[str] = None) -> Dict[str, Any]:
        """Load and ingest a single file.

        Raises:
            DocumentLoadError: If the file cannot be read
            EmbeddingFailed: If embedding fails
        """
        logger.info("ingesting_file", path=str(file_path))

        file_path = Path(file_path)
        if source_id is None and file_path.is_relative_to(self.docs_dir):
            source_id = file_path.relative_to(self.docs_dir).as_posix()

        doc = self.loader.load_file(file_path, source_id=source_id)
        return await self.ingest_document(doc)

    async def ingest_all(
        self,
        rebuild: bool = False,
        progress_callback: Optional[Callable[[int, int, Path], None]] = None,
    ) -> Dict[str, Any]:
        """Ingest every supported document in the docs directory.

        Args:
            rebuild: If True, clear the existing index and rebuild from scratch
            progress_callback: Optional callback function(current, total, file_path)

        Returns:
            Dictionary with ingestion statistics
        """
        logger.info("starting_ingest_all", rebuild=rebuild)

        if rebuild:
            self.vector_store.rebuild_index()
        else:
            self.vector_store.init_or_load()

        files = self.discover_documents()

        self.stats = _empty_stats()

        if not files:
            logger.warning("no_documents_found", docs_dir=str(self.docs_dir))
            return self.stats

        for idx, file_path in enumerate(files, 1):
            if progress_callback:
                progress_callback(idx, len(files), file_path)

            try:
                await self.ingest_file(file_path)
            except PdfQAError as e:
                logger.error(
                    "file_ingestion_failed",
                    path=str(file_path),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.stats["files_failed"] += 1
                # Continue with next file instead of failing entirely

        if self.vector_store.index is not None:
            self.vector_store.save_index()

        logger.info("ingest_all_completed", stats=self.stats)

        return dict(self.stats)
