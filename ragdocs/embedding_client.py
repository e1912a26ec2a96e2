"""
Async Ollama Embedding Client

Turns chunk text into vectors through an Ollama embedding model, with
batching, per-request timeouts and bounded exponential backoff.
"""

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional

import httpx
import yaml
from ollama import AsyncClient, ResponseError

from .config import EmbeddingConfig
from .exceptions import EmbeddingBackendError
from .models import ChunkMetadata

logger = logging.getLogger(__name__)

EMBEDDING_DELIMITER = "\n---\n"

# ollama re-raises connect failures as the builtin ConnectionError
TRANSIENT_ERRORS = (
    ConnectionError, httpx.ConnectError, httpx.TimeoutException, asyncio.TimeoutError
)


def build_embedding_text(metadata: ChunkMetadata, content: str) -> str:
    """Serialize chunk metadata as YAML and prepend it to the content.

    Embedding the breadcrumb and path along with the text biases similarity
    toward chunks from the relevant part of the documentation.
    """
    header = yaml.safe_dump(
        metadata.model_dump(exclude={"oversized"}),
        sort_keys=False,
        allow_unicode=True,
    )
    return f"{header}{EMBEDDING_DELIMITER}{content}"


class EmbeddingClient:
    """
    Async wrapper around the Ollama embed API.

    Usage:
        async with EmbeddingClient(config.embedding) as client:
            vectors = await client.embed_batch(["first text", "second text"])
    """

    def __init__(self, config: EmbeddingConfig, client: Optional[AsyncClient] = None):
        """
        Initialize embedding client.

        Args:
            config: Embedding backend settings
            client: Optional pre-built Ollama client (mainly for tests)
        """
        self.config = config
        self.model = config.model
        self.timeout = config.timeout
        self.max_retries = config.max_retries
        self.retry_delay = config.retry_delay
        self.batch_size = config.batch_size
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self):
        """Async context manager entry"""
        if self._client is None:
            self._client = AsyncClient(host=self.config.host, timeout=self.timeout)
            logger.debug(f"Embedding client connected to {self.config.host} ({self.model})")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.close()
            self._client = None

    def count_tokens(self, text: str) -> int:
        """
        Estimate how many model tokens a text uses, without embedding it.

        The estimate divides the character count by the configured
        ``chars_per_token``, rounding up.
        """
        if not text:
            return 0
        return math.ceil(len(text) / self.config.chars_per_token)

    async def embed(self, text: str) -> List[float]:
        """
        Generate the embedding of a single text.

        Raises:
            EmbeddingBackendError: Empty input, or backend failure after retries
        """
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for many texts, preserving order.

        Texts are sent in requests of at most ``batch_size`` inputs.

        Raises:
            EmbeddingBackendError: Empty input, or backend failure after retries
        """
        if not texts:
            return []
        for position, text in enumerate(texts):
            if not isinstance(text, str) or not text.strip():
                raise EmbeddingBackendError(
                    f"Cannot embed empty text (input #{position})", retryable=False
                )
        if self._client is None:
            raise EmbeddingBackendError("Client not initialized", retryable=False)

        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            logger.debug(f"Embedding {len(batch)} inputs with {self.model}")
            response = await self._embed_with_retry(batch)
            embeddings = list(response["embeddings"] or [])
            if len(embeddings) != len(batch):
                raise EmbeddingBackendError(
                    f"Backend returned {len(embeddings)} embeddings for {len(batch)} inputs",
                    retryable=False,
                )
            vectors.extend([list(map(float, e)) for e in embeddings])
        return vectors

    async def _embed_with_retry(self, batch: List[str]) -> Dict[str, Any]:
        """Embed with exponential backoff retry logic"""
        last_exception = None

        for attempt in range(self.max_retries):
            try:
                return await asyncio.wait_for(
                    self._client.embed(model=self.model, input=batch),
                    timeout=self.timeout,
                )

            except TRANSIENT_ERRORS as e:
                last_exception = e

            except ResponseError as e:
                # 4xx (unknown model, bad input) will fail the same way again
                if e.status_code is not None and e.status_code < 500 and e.status_code != 429:
                    if e.status_code == 404:
                        message = f"Model '{self.model}' not found. Run: ollama pull {self.model}"
                    else:
                        message = f"Embedding request rejected: {e.error}"
                    raise EmbeddingBackendError(
                        message, retryable=False, original_exception=e
                    ) from e
                last_exception = e

            if attempt < self.max_retries - 1:
                delay = self.retry_delay * (2 ** attempt)
                logger.warning(
                    f"Embedding error on attempt {attempt + 1}/{self.max_retries}, "
                    f"retrying in {delay:.2f}s: {last_exception!r}"
                )
                await asyncio.sleep(delay)

        logger.error(f"Embedding failed after {self.max_retries} attempts: {last_exception!r}")
        raise EmbeddingBackendError(
            f"Embedding failed after {self.max_retries} attempts: {last_exception!r}",
            original_exception=last_exception,
        ) from last_exception
