"""FAISS vector store for semantic search.

Handles:
- Dimension fixing on first insert (or explicit initialization)
- Cosine similarity search over L2-normalized vectors
- Upsert and delete by chunk id
- Index and metadata persistence

Scores are cosine similarities in [-1, 1]. Equal scores are ordered by
insertion sequence (earlier first); replacing an entry keeps its sequence.
"""
import json
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Tuple
import numpy as np
import faiss
import structlog

from pdfqa import config
from pdfqa.errors import DimensionMismatch, InvalidArgument, InvalidConfiguration

logger = structlog.get_logger()

INDEX_TYPE = "IndexIDMap2(IndexFlatIP)"
# Scores are compared at this precision when ranking
SCORE_DECIMALS = 6


class FAISSVectorStore:
    """Thread-safe FAISS-backed vector index keyed by chunk id."""

    def __init__(
        self,
        index_dir: Optional[Path] = None,
        embedding_model: Optional[str] = None,
        dimension: Optional[int] = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory to store index and metadata (default: DATA_DIR)
            embedding_model: Embedding model name recorded with the index
            dimension: Fix the dimension up front instead of on first insert
        """
        self.index_dir = Path(index_dir) if index_dir else config.DATA_DIR
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL

        self.index_path = self.index_dir / config.VECTOR_INDEX_FILENAME
        self.metadata_path = self.index_dir / config.METADATA_FILENAME

        self._lock = RLock()
        self.index: Optional[faiss.Index] = None
        self.dimension: Optional[int] = None

        # chunk_id -> insertion sequence (also the FAISS id)
        self._ids: Dict[str, int] = {}
        # insertion sequence -> chunk_id
        self._chunk_ids: Dict[int, str] = {}
        self._payloads: Dict[str, Dict[str, Any]] = {}
        self._next_seq = 0

        if dimension is not None:
            self.init_new_index(dimension)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def __contains__(self, chunk_id: str) -> bool:
        with self._lock:
            return chunk_id in self._ids

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def init_new_index(self, dimension: int) -> None:
        """Initialize a new, empty FAISS index of the given dimension.

        Args:
            dimension: Embedding dimension

        Raises:
            InvalidConfiguration: If dimension is not positive
        """
        if dimension <= 0:
            raise InvalidConfiguration(f"Dimension must be positive, got {dimension}")

        with self._lock:
            self.dimension = dimension
            self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))
            self._ids.clear()
            self._chunk_ids.clear()
            self._payloads.clear()
            self._next_seq = 0

        logger.info(
            "faiss_index_initialized",
            dimension=dimension,
            index_type=INDEX_TYPE,
        )

    def _normalize(self, embedding: Iterable[float]) -> np.ndarray:
        vector = np.asarray(embedding, dtype=np.float64).reshape(1, -1)

        if self.dimension is not None and vector.shape[1] != self.dimension:
            raise DimensionMismatch(self.dimension, vector.shape[1])

        norm = np.linalg.norm(vector, axis=1, keepdims=True) + 1e-12
        return (vector / norm).astype(np.float32)

    def check_dimensions(self, embeddings: Iterable[List[float]]) -> None:
        """Check that a batch of embeddings can all be inserted.

        Every embedding must have the same length, and that length must
        match the index dimension once one is fixed.

        Raises:
            DimensionMismatch: If any embedding has a different length
        """
        with self._lock:
            expected = self.dimension
            for embedding in embeddings:
                got = len(embedding)
                if expected is None:
                    expected = got
                elif got != expected:
                    raise DimensionMismatch(expected, got)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(
        self,
        chunk_id: str,
        embedding: List[float],
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Insert or replace the vector stored under chunk_id.

        Args:
            chunk_id: Unique chunk identifier
            embedding: Embedding vector
            payload: Chunk text and metadata stored alongside the vector

        Raises:
            DimensionMismatch: If the vector length differs from the index dimension
        """
        with self._lock:
            if self.index is None:
                self.init_new_index(len(embedding))

            vector = self._normalize(embedding)

            seq = self._ids.get(chunk_id)
            replaced = seq is not None
            if replaced:
                self.index.remove_ids(np.array([seq], dtype=np.int64))
            else:
                seq = self._next_seq
                self._next_seq += 1

            self.index.add_with_ids(vector, np.array([seq], dtype=np.int64))
            self._ids[chunk_id] = seq
            self._chunk_ids[seq] = chunk_id
            self._payloads[chunk_id] = dict(payload or {})

        logger.debug("vector_inserted", chunk_id=chunk_id, replaced=replaced)

    def insert_many(
        self,
        items: Iterable[Tuple[str, List[float], Optional[Dict[str, Any]]]],
    ) -> int:
        """Insert a batch of (chunk_id, embedding, payload) entries.

        The batch is checked for a consistent dimension before anything is
        written, so a mismatched batch leaves the index unchanged.

        Returns:
            Number of entries inserted

        Raises:
            DimensionMismatch: If any vector length differs from the index dimension
        """
        items = list(items)
        with self._lock:
            self.check_dimensions(embedding for _, embedding, _ in items)
            for chunk_id, embedding, payload in items:
                self.insert(chunk_id, embedding, payload)
        count = len(items)

        logger.info("vectors_added", count=count, total_vectors=len(self))
        return count

    def delete(self, chunk_id: str) -> bool:
        """Remove an entry.

        Returns:
            True if the entry existed
        """
        with self._lock:
            seq = self._ids.pop(chunk_id, None)
            if seq is None:
                return False
            self.index.remove_ids(np.array([seq], dtype=np.int64))
            del self._chunk_ids[seq]
            self._payloads.pop(chunk_id, None)

        logger.debug("vector_deleted", chunk_id=chunk_id)
        return True

    def delete_source(self, source_id: str) -> int:
        """Remove every entry whose payload belongs to source_id.

        Returns:
            Number of entries removed
        """
        with self._lock:
            doomed = [
                chunk_id
                for chunk_id, payload in self._payloads.items()
                if payload.get("source_id") == source_id
            ]
            for chunk_id in doomed:
                self.delete(chunk_id)

        if doomed:
            logger.info("source_vectors_deleted", source_id=source_id, count=len(doomed))
        return len(doomed)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, chunk_id: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the payload stored for chunk_id, if any."""
        with self._lock:
            payload = self._payloads.get(chunk_id)
            return dict(payload) if payload is not None else None

    def get_vector(self, chunk_id: str) -> Optional[List[float]]:
        """Return the stored (normalized) vector for chunk_id, if any."""
        with self._lock:
            seq = self._ids.get(chunk_id)
            if seq is None:
                return None
            return self.index.reconstruct(seq).tolist()

    def sources(self) -> List[str]:
        """List distinct source ids in insertion order."""
        with self._lock:
            ordered = sorted(self._ids.items(), key=lambda item: item[1])
            seen: Dict[str, None] = {}
            for chunk_id, _ in ordered:
                source_id = self._payloads[chunk_id].get("source_id")
                if source_id is not None:
                    seen.setdefault(source_id, None)
            return list(seen)

    def query(self, embedding: List[float], k: int) -> List[Tuple[str, float]]:
        """Search for the k most similar entries.

        Args:
            embedding: Query vector
            k: Maximum number of results

        Returns:
            List of (chunk_id, cosine_score), best first

        Raises:
            InvalidArgument: If k <= 0
            DimensionMismatch: If the query length differs from the index dimension
        """
        if k <= 0:
            raise InvalidArgument(f"k must be positive, got {k}")

        with self._lock:
            if self.dimension is None:
                return []

            vector = self._normalize(embedding)
            total = self.index.ntotal
            if total == 0:
                return []

            k = min(k, total)
            # One extra hit shows whether the k-th score is tied past the cut
            fetch = min(total, k + 1)
            while True:
                scores, seqs = self.index.search(vector, fetch)
                # float32 noise would otherwise split exact cosine ties
                scores = [round(score, SCORE_DECIMALS) for score in scores[0].tolist()]
                seqs = seqs[0].tolist()
                # Widen the window until ties at the k-th score are all visible
                if fetch >= total or scores[-1] < scores[k - 1]:
                    break
                fetch = min(total, fetch * 2)

            hits = sorted(
                ((score, seq) for score, seq in zip(scores, seqs) if seq >= 0),
                key=lambda hit: (-hit[0], hit[1]),
            )[:k]
            results = [(self._chunk_ids[seq], float(score)) for score, seq in hits]

        logger.debug(
            "vector_search_completed",
            top_k=k,
            results_found=len(results),
        )
        return results

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_index(self) -> None:
        """Save FAISS index and metadata to disk.

        Raises:
            RuntimeError: If there is no index or the save fails
        """
        with self._lock:
            if self.index is None:
                raise RuntimeError("No index to save. Insert vectors or initialize first.")

            self.index_dir.mkdir(parents=True, exist_ok=True)

            metadata = {
                "embedding_model": self.embedding_model,
                "embedding_dimension": self.dimension,
                "index_type": INDEX_TYPE,
                "vector_count": self.index.ntotal,
                "next_seq": self._next_seq,
                "entries": [
                    {"chunk_id": chunk_id, "seq": seq, "payload": self._payloads[chunk_id]}
                    for chunk_id, seq in sorted(self._ids.items(), key=lambda item: item[1])
                ],
            }

            try:
                faiss.write_index(self.index, str(self.index_path))
            except Exception as e:
                raise RuntimeError(f"Failed to save FAISS index: {e}") from e

            try:
                with open(self.metadata_path, "w", encoding="utf-8") as f:
                    json.dump(metadata, f, indent=2)
            except OSError as e:
                raise RuntimeError(f"Failed to save metadata: {e}") from e

        logger.info(
            "faiss_index_saved",
            index_path=str(self.index_path),
            vector_count=metadata["vector_count"],
        )

    def load_index(self) -> None:
        """Load an existing FAISS index from disk.

        Validates that the index was built with the current embedding model.

        Raises:
            FileNotFoundError: If index files don't exist
            InvalidConfiguration: If the index was built with another model
            DimensionMismatch: If the stored vectors disagree with the metadata
            RuntimeError: If loading fails
        """
        if not self.index_path.exists():
            raise FileNotFoundError(f"Index not found: {self.index_path}")

        if not self.metadata_path.exists():
            raise FileNotFoundError(f"Metadata not found: {self.metadata_path}")

        try:
            with open(self.metadata_path, "r", encoding="utf-8") as f:
                metadata = json.load(f)
        except (OSError, ValueError) as e:
            raise RuntimeError(f"Failed to load metadata: {e}") from e

        stored_model = metadata.get("embedding_model")
        stored_dim = metadata.get("embedding_dimension")

        if stored_model != self.embedding_model:
            raise InvalidConfiguration(
                f"Index was built with {stored_model}, but the current model is "
                f"{self.embedding_model}. Please rebuild the index."
            )

        try:
            index = faiss.read_index(str(self.index_path))
        except Exception as e:
            raise RuntimeError(f"Failed to load FAISS index: {e}") from e

        if index.d != stored_dim:
            raise DimensionMismatch(
                stored_dim,
                index.d,
                f"Index file has dim={index.d} but metadata says dim={stored_dim}. "
                "Please rebuild the index.",
            )

        with self._lock:
            self.index = index
            self.dimension = stored_dim
            self._ids = {e["chunk_id"]: e["seq"] for e in metadata.get("entries", [])}
            self._chunk_ids = {seq: chunk_id for chunk_id, seq in self._ids.items()}
            self._payloads = {
                e["chunk_id"]: e.get("payload", {}) for e in metadata.get("entries", [])
            }
            self._next_seq = metadata.get("next_seq", len(self._ids))

        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=self.index.ntotal,
            model=stored_model,
        )

    def init_or_load(self) -> None:
        """Load the index from disk if present, otherwise start empty."""
        if self.index_path.exists() and self.metadata_path.exists():
            logger.info("existing_index_detected", path=str(self.index_path))
            self.load_index()
        else:
            logger.info("no_index_found_starting_empty", index_dir=str(self.index_dir))

    def rebuild_index(self) -> None:
        """Delete index files and clear all entries (for reindexing)."""
        logger.warning("rebuilding_index", index_dir=str(self.index_dir))

        for path in (self.index_path, self.metadata_path):
            if path.exists():
                path.unlink()
                logger.info("deleted_index_file", path=str(path))

        with self._lock:
            self.index = None
            self.dimension = None
            self._ids.clear()
            self._chunk_ids.clear()
            self._payloads.clear()
            self._next_seq = 0

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store."""
        with self._lock:
            return {
                "initialized": self.index is not None,
                "vector_count": len(self._ids),
                "source_count": len(self.sources()),
                "dimension": self.dimension,
                "embedding_model": self.embedding_model,
                "index_exists_on_disk": self.index_path.exists(),
            }
