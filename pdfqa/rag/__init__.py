"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document loading (PDF, Markdown, plain text)
- Document chunking with overlap
- FAISS vector storage
- Semantic retrieval
- Prompt composition and answer generation
"""
