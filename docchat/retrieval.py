"""Similarity retrieval over the live index."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .config import config

if TYPE_CHECKING:
    from .embeddings import EmbeddingService
    from .models import DocumentChunk
    from .pipeline import IndexHandle

logger = config.get_logger(__name__)


class Retriever:
    """Answers "which chunks are most relevant to this query"."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        handle: IndexHandle,
        top_k: int | None = None,
    ) -> None:
        self.embedding_service = embedding_service
        self.handle = handle
        self.top_k = top_k if top_k is not None else config.RETRIEVER_TOP_K

    def search(
        self,
        query: str,
        k: int | None = None,
    ) -> list[tuple[DocumentChunk, float]]:
        """Return the chunks most similar to ``query``, best first.

        An empty or unpublished index yields an empty list without calling
        the embedding service.

        Returns:
            At most ``k`` (chunk, cosine score) pairs.
        """
        index = self.handle.current
        if index is None or index.is_empty:
            logger.info("Index is empty; no context for query: %s", query)
            return []

        top_k = k if k is not None else self.top_k
        query_embedding = self.embedding_service.get_embedding(query)
        results = index.search(query_embedding, top_k=top_k)

        logger.info("Retrieved %d chunks for query: %s", len(results), query)
        return results
