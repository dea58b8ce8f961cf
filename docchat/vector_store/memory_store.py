"""Numpy-backed in-memory vector index."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from docchat.config import config
from docchat.vector_store.base import BaseVectorIndex

if TYPE_CHECKING:
    from docchat.models import DocumentChunk

logger = config.get_logger(__name__)


class NumpyVectorIndex(BaseVectorIndex):
    """Brute-force cosine similarity over a dense embeddings matrix."""

    backend = "memory"

    def __init__(self) -> None:
        super().__init__()
        self.embeddings: np.ndarray | None = None

    def add_chunks(self, chunks: list[DocumentChunk]) -> None:
        """Add chunks with embeddings to the matrix.

        Raises:
            ValueError: If a chunk has no embedding or a mismatched dimension.
        """
        if not chunks:
            return

        vectors = self._prepare(chunks)
        if self.embeddings is None:
            self.embeddings = vectors
        else:
            self.embeddings = np.vstack([self.embeddings, vectors])
        self.chunks.extend(chunks)

        logger.info("Added %d chunks to in-memory index", len(chunks))

    @staticmethod
    def cosine_similarity(
        query_embedding: np.ndarray,
        embeddings: np.ndarray,
    ) -> np.ndarray:
        """Calculate cosine similarity between query and normalized embeddings.

        Returns:
            np.ndarray: Array of cosine similarity scores
                    between the query and each document embedding.
        """
        return np.dot(embeddings, BaseVectorIndex.normalize(query_embedding))

    def search(
        self,
        query_embedding: np.ndarray,
        top_k: int = 4,
    ) -> list[tuple[DocumentChunk, float]]:
        """Search for similar chunks based on query embedding.

        Returns:
            A list of tuples, each containing a DocumentChunk and its similarity score.
        """
        if self.embeddings is None or self.is_empty or top_k <= 0:
            return []

        similarities = self.cosine_similarity(query_embedding, self.embeddings)
        positions = np.arange(len(self.chunks))
        top_positions = self.rank(similarities, positions, top_k)

        results = []
        for idx in top_positions:
            chunk = self.chunks[idx]
            score = float(similarities[idx])
            logger.debug(
                "Retrieved chunk %s with similarity %.4f",
                chunk.metadata.get("chunk_id"),
                score,
            )
            results.append((chunk, score))

        return results
