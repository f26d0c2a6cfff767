"""Error taxonomy for the Q&A pipeline.

Every error is local and recoverable by the caller. Components raise their
own errors and never retry; retry policy belongs to whoever calls them.
"""


class PdfQAError(Exception):
    """Base error for the pdfqa package."""


class InvalidConfiguration(PdfQAError, ValueError):
    """Raised for bad component settings (e.g. chunk overlap >= chunk size)."""


class InvalidArgument(PdfQAError, ValueError):
    """Raised for bad call arguments (e.g. k <= 0)."""


class DimensionMismatch(PdfQAError, ValueError):
    """Raised when a vector's length disagrees with the index dimension."""

    def __init__(self, expected: int, got: int, message: str = None):
        self.expected = expected
        self.got = got
        super().__init__(
            message
            or f"Embedding dimension mismatch: expected {expected}, got {got}"
        )


class EmbeddingFailed(PdfQAError, RuntimeError):
    """Raised when the embedding service errors or times out."""


class GenerationFailed(PdfQAError, RuntimeError):
    """Raised when the generation service errors or times out."""


class DocumentLoadError(PdfQAError):
    """Raised when a document cannot be read or its format is unsupported."""
