#!/usr/bin/env python
"""Reindex documents for the RAG pipeline.

Usage:
    python scripts/reindex.py              # Incremental reindex
    python scripts/reindex.py --rebuild    # Full rebuild from scratch
    python scripts/reindex.py --verbose    # Show detailed progress
    python scripts/reindex.py --docs-dir ~/papers
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

from pdfqa import config
from pdfqa.errors import PdfQAError
from pdfqa.llm_client import OllamaEmbedder
from pdfqa.log import configure_logging
from pdfqa.rag.chunker import TextChunker
from pdfqa.rag.ingest import IngestPipeline
from pdfqa.rag.store_faiss import FAISSVectorStore
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        file_name = file_path.name
        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict):
        print("\n")
        elapsed = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Indexing complete")
        print(f"{'=' * 60}")
        print(f"  Files processed:       {stats['files_processed']}")
        print(f"  Files failed:          {stats['files_failed']}")
        print(f"  Chunks created:        {stats['chunks_created']}")
        print(f"  Embeddings generated:  {stats['embeddings_generated']}")
        print(f"  Time elapsed:          {elapsed:.1f}s")
        print(f"{'=' * 60}\n")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index documents for question answering")
    parser.add_argument(
        "--docs-dir",
        type=Path,
        default=config.DOCS_DIR,
        help=f"Directory of .pdf/.md/.txt documents (default: {config.DOCS_DIR})",
    )
    parser.add_argument(
        "--index-dir",
        type=Path,
        default=config.DATA_DIR,
        help=f"Where the vector index is stored (default: {config.DATA_DIR})",
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Delete the existing index and rebuild from scratch",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show one line per file and debug logs",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    configure_logging("DEBUG" if args.verbose else "WARNING", json=False)

    reporter = ProgressReporter(verbose=args.verbose)
    pipeline = IngestPipeline(
        embedder=OllamaEmbedder(),
        vector_store=FAISSVectorStore(index_dir=args.index_dir),
        chunker=TextChunker(),
        docs_dir=args.docs_dir,
    )

    mode = "Rebuilding" if args.rebuild else "Updating"
    reporter.start(f"{mode} index from {args.docs_dir}")

    try:
        stats = await pipeline.ingest_all(
            rebuild=args.rebuild,
            progress_callback=reporter.update,
        )
    except (FileNotFoundError, PdfQAError) as e:
        print(f"\n  Error: {e}\n", file=sys.stderr)
        return 1

    reporter.finish(stats)
    return 0 if stats["files_failed"] == 0 else 2


def main(argv=None) -> int:
    return asyncio.run(run(parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
