"""Text chunking with overlap for RAG pipeline.

Implements character-based chunking to avoid tokenizer dependencies.
Consecutive chunks always share exactly ``chunk_overlap`` characters, so the
original text can be rebuilt by dropping that prefix from every chunk but
the first.
"""
from typing import Iterator, List, Optional
from dataclasses import dataclass
import structlog

from pdfqa import config
from pdfqa.errors import InvalidConfiguration

logger = structlog.get_logger()


@dataclass(frozen=True)
class Chunk:
    """A contiguous span of document text with position information."""

    source_id: str
    chunk_index: int
    char_start: int
    char_end: int
    content: str

    @property
    def chunk_id(self) -> str:
        return f"{self.source_id}:{self.chunk_index}"

    def to_payload(self) -> dict:
        return {
            "source_id": self.source_id,
            "chunk_index": self.chunk_index,
            "char_start": self.char_start,
            "char_end": self.char_end,
            "content": self.content,
        }


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        snap_to_boundaries: bool = False,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Maximum size of each chunk in characters (default from config)
            chunk_overlap: Characters shared by consecutive chunks (default from config)
            snap_to_boundaries: End chunks at sentence/word breaks when one is near

        Raises:
            InvalidConfiguration: If sizes are negative or overlap >= chunk size
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = (
            config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )
        self.snap_to_boundaries = snap_to_boundaries

        if self.chunk_size <= 0:
            raise InvalidConfiguration(
                f"Chunk size must be positive, got {self.chunk_size}"
            )
        if self.chunk_overlap < 0:
            raise InvalidConfiguration(
                f"Overlap must not be negative, got {self.chunk_overlap}"
            )
        if self.chunk_overlap >= self.chunk_size:
            raise InvalidConfiguration(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            snap_to_boundaries=self.snap_to_boundaries,
        )

    def iter_chunks(self, text: str, source_id: str = "doc") -> Iterator[Chunk]:
        """Lazily split text into overlapping chunks.

        Args:
            text: Text to chunk
            source_id: Identifier of the document the text came from

        Yields:
            Chunk objects in document order
        """
        if not text:
            return

        text_length = len(text)
        chunk_index = 0
        start = 0

        while True:
            end = min(start + self.chunk_size, text_length)

            # Only adjust if we're not at the end of the text
            if self.snap_to_boundaries and end < text_length:
                end = start + self._adjusted_length(text[start:end])

            yield Chunk(
                source_id=source_id,
                chunk_index=chunk_index,
                char_start=start,
                char_end=end,
                content=text[start:end],
            )

            if end >= text_length:
                return

            # end - start > overlap always holds, so start strictly advances
            start = end - self.chunk_overlap
            chunk_index += 1

    def chunk_text(self, text: str, source_id: str = "doc") -> List[Chunk]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk
            source_id: Identifier of the document the text came from

        Returns:
            List of Chunk objects
        """
        chunks = list(self.iter_chunks(text, source_id))

        if chunks:
            logger.info(
                "text_chunked",
                source_id=source_id,
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.content) for c in chunks) // len(chunks),
            )

        return chunks

    def _adjusted_length(self, window: str) -> int:
        """Find a natural break late in the window.

        A break is accepted only if the resulting chunk stays longer than the
        overlap, otherwise the full window length is used.

        Args:
            window: Candidate chunk content (full chunk_size characters)

        Returns:
            Length of the chunk to emit
        """
        minimum = self.chunk_overlap + 1
        candidates = []

        # Sentence boundary (period, !, ?)
        for break_str in (". ", "! ", "? ", ".\n", "!\n", "?\n"):
            candidates.append((window.rfind(break_str), break_str, 0.7))

        # Paragraph, line, then word boundary
        candidates.append((window.rfind("\n\n"), "\n\n", 0.7))
        candidates.append((window.rfind("\n"), "\n", 0.7))
        candidates.append((window.rfind(" "), " ", 0.8))

        for position, break_str, threshold in candidates:
            if position > len(window) * threshold:
                length = position + len(break_str)
                if length >= minimum:
                    return length

        return len(window)

    def get_chunk_stats(self, chunks: List[Chunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of Chunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }


def reconstruct_text(chunks: List[Chunk], overlap: int) -> str:
    """Rebuild the chunked text by stripping the shared overlaps.

    Args:
        chunks: Chunks in document order
        overlap: The overlap the chunks were produced with

    Returns:
        The original text
    """
    if not chunks:
        return ""
    parts = [chunks[0].content]
    parts.extend(chunk.content[overlap:] for chunk in chunks[1:])
    return "".join(parts)
