"""Shared behaviour of the in-memory vector indexes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

from docchat.config import config

if TYPE_CHECKING:
    from docchat.models import DocumentChunk

logger = config.get_logger(__name__)


class BaseVectorIndex(ABC):
    """Chunks in insertion order plus a structure for nearest-neighbour lookup.

    Subclasses store L2-normalized vectors, so inner product equals cosine
    similarity. An index is filled once by the indexer and only read after
    it is published.
    """

    backend: str = "abstract"

    def __init__(self) -> None:
        self.chunks: list[DocumentChunk] = []
        self.dimension: int | None = None

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def is_empty(self) -> bool:
        """True when the index holds no chunks."""
        return not self.chunks

    def sources(self) -> set[str]:
        """Return the distinct document sources of the indexed chunks."""
        return {str(chunk.metadata.get("source", "unknown")) for chunk in self.chunks}

    @staticmethod
    def normalize(embedding: np.ndarray) -> np.ndarray:
        """Scale a vector to unit length; zero vectors are returned unchanged.

        Returns:
            Normalized float32 copy of the embedding.
        """
        vector = np.asarray(embedding, dtype="float32").reshape(-1)
        norm = np.linalg.norm(vector)
        if norm == 0:
            return vector.copy()
        return vector / norm

    def _prepare(self, chunks: list[DocumentChunk]) -> np.ndarray:
        """Validate chunk embeddings and stack them as normalized rows.

        Returns:
            Matrix of shape (len(chunks), dimension).

        Raises:
            ValueError: If a chunk has no embedding or dimensions disagree.
        """
        vectors = []
        for chunk in chunks:
            if chunk.embedding is None:
                msg = f"Chunk {chunk.metadata.get('chunk_id')} has no embedding"
                raise ValueError(msg)

            vector = self.normalize(chunk.embedding)
            if self.dimension is None:
                self.dimension = vector.shape[0]
            elif vector.shape[0] != self.dimension:
                msg = (
                    f"Embedding dimension {vector.shape[0]} does not match "
                    f"index dimension {self.dimension}"
                )
                raise ValueError(msg)
            vectors.append(vector)

        return np.vstack(vectors).astype("float32")

    @staticmethod
    def rank(scores: np.ndarray, positions: np.ndarray, top_k: int) -> list[int]:
        """Order candidates by descending score, ties by insertion position.

        Returns:
            Up to ``top_k`` positions, best first.
        """
        order = np.lexsort((positions, -scores))
        return [int(positions[i]) for i in order[:top_k]]

    @abstractmethod
    def add_chunks(self, chunks: list[DocumentChunk]) -> None:
        """Add embedded chunks to the index."""

    @abstractmethod
    def search(
        self,
        query_embedding: np.ndarray,
        top_k: int = 4,
    ) -> list[tuple[DocumentChunk, float]]:
        """Return the ``top_k`` most similar chunks, most similar first."""
