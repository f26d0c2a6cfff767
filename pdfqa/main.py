"""Quart JSON API for document Q&A."""
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from quart import Quart, jsonify, request
import structlog

from pdfqa import config
from pdfqa.errors import (
    DimensionMismatch,
    DocumentLoadError,
    EmbeddingFailed,
    GenerationFailed,
    InvalidArgument,
    InvalidConfiguration,
)
from pdfqa.llm_client import OllamaClient, OllamaEmbedder, OllamaGenerator
from pdfqa.log import configure_logging
from pdfqa.rag.composer import AnswerComposer
from pdfqa.rag.ingest import IngestPipeline
from pdfqa.rag.qa import QAService
from pdfqa.rag.retriever import Retriever
from pdfqa.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()

# Domain error -> HTTP status
ERROR_STATUS = {
    InvalidArgument: 400,
    InvalidConfiguration: 400,
    DocumentLoadError: 400,
    DimensionMismatch: 409,
    EmbeddingFailed: 502,
    GenerationFailed: 502,
}


class AskRequest(BaseModel):
    """Body of POST /api/ask."""

    question: str = Field(min_length=1, max_length=2000)
    top_k: Optional[int] = Field(default=None, ge=1, le=50)
    min_score: Optional[float] = Field(default=None, ge=-1.0, le=1.0)


def create_app(
    service: QAService,
    pipeline: IngestPipeline,
    load_index: bool = True,
) -> Quart:
    """Build the Quart app around an explicitly wired service and pipeline.

    Args:
        service: Question answering service
        pipeline: Ingest pipeline sharing the service's vector store
        load_index: Load the persisted index before serving
    """
    app = Quart(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES
    vector_store = pipeline.vector_store

    if load_index:
        @app.before_serving
        async def load_vector_store():
            vector_store.init_or_load()
            logger.info("vector_store_ready", **vector_store.get_stats())

    async def _error_response(error: Exception):
        for error_type, status in ERROR_STATUS.items():
            if isinstance(error, error_type):
                break
        else:
            status = 500

        logger.error(
            "request_failed",
            path=request.path,
            status=status,
            error=str(error),
            error_type=type(error).__name__,
        )
        return jsonify({"error": str(error), "type": type(error).__name__}), status

    for error_type in ERROR_STATUS:
        app.register_error_handler(error_type, _error_response)

    @app.route("/health")
    async def health():
        return jsonify({"status": "ok", "index": vector_store.get_stats()})

    @app.route("/api/ask", methods=["POST"])
    async def ask():
        """Answer a question.

        Expects JSON body:
        {
            "question": "user question text",
            "top_k": 5,          // optional
            "min_score": 0.2     // optional
        }
        """
        data = await request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400

        try:
            body = AskRequest.model_validate(data)
        except ValidationError as e:
            logger.warning("invalid_ask_request", errors=e.error_count())
            details = e.errors(include_url=False, include_context=False, include_input=False)
            return jsonify({"error": "Invalid request", "details": details}), 400

        logger.info(
            "ask_request_received",
            question_length=len(body.question),
            top_k=body.top_k,
        )

        answer = await service.ask(body.question, top_k=body.top_k, min_score=body.min_score)
        return jsonify(answer.to_dict())

    @app.route("/api/documents", methods=["POST"])
    async def upload_document():
        """Ingest an uploaded document (multipart field ``file``)."""
        files = await request.files
        upload = files.get("file")
        if upload is None or not upload.filename:
            return jsonify({"error": "Missing 'file' in multipart body"}), 400

        source_id = Path(upload.filename).name
        data = upload.read()

        doc = pipeline.loader.load_bytes(data, source_id, suffix=Path(source_id).suffix)
        result = await pipeline.ingest_document(doc)
        if vector_store.index is not None:
            vector_store.save_index()

        return jsonify(result), 201

    @app.route("/api/documents", methods=["GET"])
    async def list_documents():
        return jsonify({"sources": vector_store.sources()})

    @app.route("/api/documents/<path:source_id>", methods=["DELETE"])
    async def delete_document(source_id: str):
        removed = vector_store.delete_source(source_id)
        if not removed:
            return jsonify({"error": f"Unknown document '{source_id}'"}), 404

        vector_store.save_index()
        return jsonify({"source_id": source_id, "removed": removed})

    return app


def build_default_app() -> Quart:
    """Wire the Ollama-backed components with configuration defaults."""
    configure_logging()

    client = OllamaClient()
    embedder = OllamaEmbedder(client)
    vector_store = FAISSVectorStore()

    service = QAService(
        retriever=Retriever(embedder, vector_store),
        composer=AnswerComposer(OllamaGenerator(client)),
    )
    pipeline = IngestPipeline(embedder, vector_store)

    return create_app(service, pipeline)


def main() -> None:
    """Run the development server."""
    app = build_default_app()
    app.run(host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
