"""Retriever for semantic search over indexed documents.

Handles:
- Query embedding generation
- FAISS vector search
- Payload lookup and result formatting
"""
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import structlog

from pdfqa import config
from pdfqa.errors import EmbeddingFailed, InvalidArgument
from pdfqa.llm_client import Embedder
from pdfqa.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


@dataclass
class RetrievalResult:
    """A single retrieved chunk with its similarity score."""

    chunk_id: str
    score: float
    content: str
    source_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> str:
        """Get a formatted source string for display."""
        heading = self.metadata.get("heading_context")
        if heading:
            return f"{self.source_id} > {heading}"
        return self.source_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "source": self.source,
            "source_id": self.source_id,
            "score": round(self.score, 4),
            "content": self.content,
        }


class Retriever:
    """Semantic retriever for RAG pipeline."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: FAISSVectorStore,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
    ):
        """Initialize the retriever.

        Args:
            embedder: Embedding capability used for queries
            vector_store: Index to search
            top_k: Default number of results (default from config)
            min_score: Default minimum cosine score (default from config)

        Raises:
            InvalidArgument: If top_k is not positive
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        self.min_score = config.MIN_RELEVANCE if min_score is None else min_score

        if self.top_k <= 0:
            raise InvalidArgument(f"top_k must be positive, got {self.top_k}")

    async def retrieve(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[RetrievalResult]:
        """Retrieve the chunks most similar to a query.

        Args:
            query: User query text
            top_k: Number of results to return (overrides default)
            min_score: Minimum cosine score to include (overrides default)

        Returns:
            List of RetrievalResult objects, best first

        Raises:
            InvalidArgument: If top_k <= 0
            EmbeddingFailed: If the query cannot be embedded
            DimensionMismatch: If the embedder and index disagree on dimension
        """
        top_k = self.top_k if top_k is None else top_k
        min_score = self.min_score if min_score is None else min_score

        if top_k <= 0:
            raise InvalidArgument(f"top_k must be positive, got {top_k}")

        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        if len(self.vector_store) == 0:
            logger.warning("empty_index_no_results")
            return []

        logger.info("retrieval_started", query_length=len(query), top_k=top_k)

        try:
            query_embedding = await self.embedder.embed(query)
        except EmbeddingFailed as e:
            logger.error("query_embedding_failed", error=str(e))
            raise
        except Exception as e:
            logger.error("query_embedding_failed", error=str(e), error_type=type(e).__name__)
            raise EmbeddingFailed(f"Failed to embed query: {e}") from e

        hits = self.vector_store.query(query_embedding, top_k)

        results = []
        for chunk_id, score in hits:
            if min_score is not None and score < min_score:
                continue

            payload = self.vector_store.get(chunk_id)
            if payload is None:
                # Deleted between search and lookup
                logger.warning("retrieved_chunk_missing", chunk_id=chunk_id)
                continue

            results.append(
                RetrievalResult(
                    chunk_id=chunk_id,
                    score=score,
                    content=payload.get("content", ""),
                    source_id=payload.get("source_id", ""),
                    metadata=payload.get("metadata", {}),
                )
            )

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(results),
            top_score=results[0].score if results else None,
        )

        return results
