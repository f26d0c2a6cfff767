"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
DOCS_DIR = Path(os.getenv("DOCS_DIR", str(BASE_DIR / "docs")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemma3:12b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:latest")

# External call budgets (seconds)
EMBED_TIMEOUT = float(os.getenv("EMBED_TIMEOUT", "30.0"))
GENERATE_TIMEOUT = float(os.getenv("GENERATE_TIMEOUT", "120.0"))
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "4"))

# RAG parameters (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "2400"))          # ≈600 tokens
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "320"))     # ≈80 tokens
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
# Optional cosine cutoff (-1..1); unset keeps every top-k hit
MIN_RELEVANCE = float(os.environ["MIN_RELEVANCE"]) if os.getenv("MIN_RELEVANCE") else None
MAX_PROMPT_CHARS = int(os.getenv("MAX_PROMPT_CHARS", "12000"))

# HTTP server
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "5001"))

# Uploads
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))
SUPPORTED_SUFFIXES = (".pdf", ".md", ".markdown", ".txt")

# Vector index files
VECTOR_INDEX_FILENAME = "vectors.index"
METADATA_FILENAME = "metadata.json"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
