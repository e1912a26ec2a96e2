"""Semantic retrieval of documentation chunks."""

import logging
from typing import List, Optional

from ragdocs.embedding_client import EmbeddingClient
from ragdocs.exceptions import NotFound
from ragdocs.models import RetrievalResult, RetrieveOptions
from ragdocs.store import CorpusStore

logger = logging.getLogger(__name__)


class RetrievalEngine:
    """Ranks stored chunks by similarity to a prompt."""

    def __init__(self, store: CorpusStore, embedder: EmbeddingClient):
        """Initialize the retrieval engine.

        Args:
            store: Open corpus store
            embedder: Open embedding client, same model as used for ingestion
        """
        self.store = store
        self.embedder = embedder

    async def retrieve(
        self, prompt: str, k: int, documentation: Optional[str] = None
    ) -> List[RetrievalResult]:
        """Return the k chunks closest to the prompt, nearest first.

        Args:
            prompt: Free-text query
            k: Number of results; 0 returns an empty list
            documentation: Optional documentation name to search within

        Raises:
            ValueError: If k is negative or the prompt is empty
            NotFound: If the documentation filter names an unknown documentation
            EmbeddingBackendError: If the prompt cannot be embedded
        """
        options = RetrieveOptions(prompt=prompt, count=k, documentation=documentation)
        return await self.retrieve_with(options)

    async def retrieve_with(self, options: RetrieveOptions) -> List[RetrievalResult]:
        """Run a retrieval described by validated options."""
        documentation_id = None
        if options.documentation is not None:
            doc = await self.store.get_documentation(options.documentation)
            if doc is None:
                raise NotFound(options.documentation, operation="get")
            documentation_id = doc.id

        if options.count == 0:
            return []

        query_embedding = await self.embedder.embed(options.prompt)
        hits = await self.store.nearest_chunks(
            query_embedding, options.count, documentation_id=documentation_id
        )
        logger.debug(f"Retrieved {len(hits)} chunks for prompt {options.prompt[:60]!r}")

        return [
            RetrievalResult(
                chunk_id=hit.chunk_id,
                documentation=hit.documentation,
                path=hit.path,
                metadata=hit.metadata,
                content=hit.content,
                distance=hit.distance,
            )
            for hit in hits
        ]
