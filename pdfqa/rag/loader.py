"""Document loader for extracting text and metadata from input files.

Handles:
- PDF text extraction (page by page, via pypdf)
- Markdown with YAML frontmatter and heading hierarchy
- Plain text
"""
import io
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
import yaml
import structlog
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from pdfqa import config
from pdfqa.errors import DocumentLoadError

logger = structlog.get_logger()


@dataclass
class Heading:
    """Represents a markdown heading with hierarchy."""

    level: int  # 1-6 for h1-h6
    text: str
    char_position: int


@dataclass
class Document:
    """Extracted document text with its identifier and metadata."""

    source_id: str
    text: str
    path: Optional[Path] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    headings: List[Heading] = field(default_factory=list)


class DocumentLoader:
    """Loader that dispatches on file suffix."""

    # Regex for YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)

    # Regex for markdown headings
    HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)$", re.MULTILINE)

    # Frontmatter fields copied into chunk metadata
    FRONTMATTER_FIELDS = ("title", "tags", "created", "updated", "author")

    # Pages are joined with a blank line so chunk snapping can use it
    PAGE_SEPARATOR = "\n\n"

    def load_file(self, file_path: Path, source_id: Optional[str] = None) -> Document:
        """Load a document from disk.

        Args:
            file_path: Path to a .pdf, .md or .txt file
            source_id: Identifier to store chunks under (default: file name)

        Returns:
            Document with extracted text

        Raises:
            DocumentLoadError: If the file is missing, unreadable or unsupported
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise DocumentLoadError(f"Document not found: {file_path}")

        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise DocumentLoadError(f"Failed to read {file_path}: {e}") from e

        doc = self.load_bytes(data, source_id or file_path.name, suffix=file_path.suffix)
        doc.path = file_path
        return doc

    def load_bytes(self, data: bytes, source_id: str, suffix: str) -> Document:
        """Load a document from raw bytes.

        Args:
            data: Raw file content
            source_id: Identifier to store chunks under
            suffix: File suffix used to pick the extractor (e.g. ".pdf")

        Returns:
            Document with extracted text

        Raises:
            DocumentLoadError: If the format is unsupported or extraction fails
        """
        suffix = suffix.lower()
        if suffix not in config.SUPPORTED_SUFFIXES:
            raise DocumentLoadError(
                f"Unsupported document type '{suffix}' for {source_id}"
            )

        if suffix == ".pdf":
            doc = self._load_pdf(data, source_id)
        else:
            text = self._decode(data, source_id)
            if suffix in (".md", ".markdown"):
                doc = self._load_markdown(text, source_id)
            else:
                doc = Document(source_id=source_id, text=text)

        logger.info(
            "document_loaded",
            source_id=source_id,
            suffix=suffix,
            content_length=len(doc.text),
        )
        return doc

    def _decode(self, data: bytes, source_id: str) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.error("document_encoding_error", source_id=source_id, error=str(e))
            raise DocumentLoadError(f"{source_id} is not valid UTF-8: {e}") from e

    def _load_pdf(self, data: bytes, source_id: str) -> Document:
        """Extract text from every page of a PDF."""
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PdfReadError, ValueError, OSError) as e:
            logger.error("pdf_extraction_failed", source_id=source_id, error=str(e))
            raise DocumentLoadError(f"Failed to read PDF {source_id}: {e}") from e

        # Collapse runs of whitespace within each page
        pages = [" ".join(p.split()) for p in pages]
        text = self.PAGE_SEPARATOR.join(p for p in pages if p)

        if not text:
            logger.warning("pdf_has_no_text", source_id=source_id, page_count=len(pages))

        return Document(
            source_id=source_id,
            text=text,
            metadata={"page_count": len(pages)},
        )

    def _load_markdown(self, content: str, source_id: str) -> Document:
        frontmatter, text = self._parse_frontmatter(content)

        metadata: Dict[str, Any] = {}
        for name in self.FRONTMATTER_FIELDS:
            if name in frontmatter:
                value = frontmatter[name]
                # Convert date/datetime objects to ISO format strings
                if hasattr(value, "isoformat"):
                    value = value.isoformat()
                metadata[name] = value

        return Document(
            source_id=source_id,
            text=text,
            metadata=metadata,
            headings=self._extract_headings(text),
        )

    def _parse_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        """Extract YAML frontmatter from markdown content.

        Args:
            content: Full markdown content

        Returns:
            Tuple of (frontmatter_dict, content_without_frontmatter)
        """
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = None

        if not isinstance(frontmatter, dict):
            frontmatter = {}

        return frontmatter, content[match.end():]

    def _extract_headings(self, content: str) -> List[Heading]:
        return [
            Heading(
                level=len(match.group(1)),
                text=match.group(2).strip(),
                char_position=match.start(),
            )
            for match in self.HEADING_PATTERN.finditer(content)
        ]


def heading_context(headings: List[Heading], char_position: int) -> str:
    """Get hierarchical heading context for a given character position.

    Args:
        headings: All headings in the document, in order
        char_position: Character position to get context for

    Returns:
        Heading context string like "# Main > ## Sub > ### Detail"
    """
    context_stack: List[Heading] = []

    for heading in headings:
        if heading.char_position > char_position:
            break
        # Pop headings at same or deeper level
        while context_stack and context_stack[-1].level >= heading.level:
            context_stack.pop()
        context_stack.append(heading)

    return " > ".join(f"{'#' * h.level} {h.text}" for h in context_stack)
