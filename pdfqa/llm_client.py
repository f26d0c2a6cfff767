"""Ollama client wrapper and the embedding/generation capabilities.

The pipeline only depends on the ``Embedder`` and ``Generator`` protocols,
so hosted or local model backends can be swapped without touching it.
"""
import asyncio
from typing import Dict, List, Optional, Protocol, runtime_checkable
import httpx
import structlog

from pdfqa import config
from pdfqa.errors import EmbeddingFailed, GenerationFailed

logger = structlog.get_logger()


@runtime_checkable
class Embedder(Protocol):
    """Turns text into a fixed-length vector."""

    async def embed(self, text: str) -> List[float]:
        ...


@runtime_checkable
class Generator(Protocol):
    """Turns a prompt into generated text."""

    async def generate(self, prompt: str) -> str:
        ...


class OllamaClient:
    """Async client for interacting with Ollama API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout
        self.transport = transport

    def _client(self, timeout: float = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
    ) -> Dict:
        """Send a non-streaming chat completion request to Ollama.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature (0.0-2.0)

        Returns:
            Response dict with 'message' containing 'content'

        Raises:
            httpx.HTTPError: On API errors
            httpx.ConnectError: If Ollama service is unavailable
        """
        model = model or config.CHAT_MODEL

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
        }

        if temperature is not None:
            payload["options"] = {"temperature": temperature}

        try:
            async with self._client() as client:
                logger.info(
                    "ollama_chat_request",
                    model=model,
                    message_count=len(messages),
                )

                response = await client.post("/api/chat", json=payload)
                response.raise_for_status()

                data = response.json()

                logger.info(
                    "ollama_chat_response",
                    model=model,
                    response_length=len(data.get("message", {}).get("content", "")),
                )

                return data

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                "ollama_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    async def embeddings(self, prompt: str, model: str = None) -> Dict:
        """Generate embeddings for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Response dict with 'embedding' list

        Raises:
            httpx.HTTPError: On API errors
        """
        model = model or config.EMBEDDING_MODEL

        payload = {
            "model": model,
            "prompt": prompt,
        }

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=model,
                    prompt_length=len(prompt),
                )

                response = await client.post("/api/embeddings", json=payload)
                response.raise_for_status()

                data = response.json()

                logger.debug(
                    "ollama_embedding_response",
                    model=model,
                    dimension=len(data.get("embedding", [])),
                )

                return data

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e))
            raise

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise


class OllamaEmbedder:
    """Embedder backed by Ollama's embeddings endpoint."""

    def __init__(
        self,
        client: OllamaClient = None,
        model: str = None,
        timeout: float = None,
    ):
        self.client = client or OllamaClient()
        self.model = model or config.EMBEDDING_MODEL
        self.timeout = timeout or config.EMBED_TIMEOUT

    async def embed(self, text: str) -> List[float]:
        """Embed one text.

        Raises:
            EmbeddingFailed: On HTTP errors, timeouts or an empty embedding
        """
        try:
            async with asyncio.timeout(self.timeout):
                response = await self.client.embeddings(prompt=text, model=self.model)
        except TimeoutError as e:
            logger.error("embedding_timeout", model=self.model, timeout=self.timeout)
            raise EmbeddingFailed(
                f"Embedding timed out after {self.timeout}s"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingFailed(f"Failed to generate embedding: {e}") from e

        embedding = response.get("embedding") or []
        if not embedding:
            raise EmbeddingFailed("Empty embedding returned from Ollama")

        return embedding


class OllamaGenerator:
    """Generator backed by Ollama's chat endpoint."""

    def __init__(
        self,
        client: OllamaClient = None,
        model: str = None,
        timeout: float = None,
        temperature: Optional[float] = 0.2,
        system_prompt: str = "You answer questions using only the provided context.",
    ):
        self.client = client or OllamaClient()
        self.model = model or config.CHAT_MODEL
        self.timeout = timeout or config.GENERATE_TIMEOUT
        self.temperature = temperature
        self.system_prompt = system_prompt

    async def generate(self, prompt: str) -> str:
        """Generate an answer for a fully built prompt.

        Raises:
            GenerationFailed: On HTTP errors, timeouts or a malformed response
        """
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]

        try:
            async with asyncio.timeout(self.timeout):
                data = await self.client.chat(
                    messages, model=self.model, temperature=self.temperature
                )
        except TimeoutError as e:
            logger.error("generation_timeout", model=self.model, timeout=self.timeout)
            raise GenerationFailed(
                f"Generation timed out after {self.timeout}s"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise GenerationFailed(f"Generation request failed: {e}") from e

        content = (data.get("message") or {}).get("content")
        if content is None:
            raise GenerationFailed("Ollama response has no message content")

        return content.strip()
