"""FAISS-backed in-memory vector index."""

from __future__ import annotations

from typing import TYPE_CHECKING

import faiss
import numpy as np

from docchat.config import config
from docchat.vector_store.base import BaseVectorIndex

if TYPE_CHECKING:
    from docchat.models import DocumentChunk

logger = config.get_logger(__name__)


class FaissVectorIndex(BaseVectorIndex):
    """Inner-product FAISS index over L2-normalized vectors.

    Vector ids are the chunk positions, so results map straight back onto
    ``self.chunks``.
    """

    backend = "faiss"

    def __init__(self, raw_top_k_multiplier: int = 2) -> None:
        """Configure FAISS-backed vector index."""
        super().__init__()
        self.index: faiss.IndexIDMap | None = None
        self.raw_top_k_multiplier = max(1, raw_top_k_multiplier)

    def _init_index(self, dimension: int) -> None:
        """Initialize FAISS index if missing."""
        base_index = faiss.IndexFlatIP(dimension)
        self.index = faiss.IndexIDMap(base_index)
        logger.info("Initialized FAISS IndexIDMap with dimension %d", dimension)

    def add_chunks(self, chunks: list[DocumentChunk]) -> None:
        """Add chunks and embeddings to the FAISS index.

        Raises:
            ValueError: If a chunk has no embedding or a mismatched dimension.
            RuntimeError: If the FAISS index cannot store provided ids.
        """
        if not chunks:
            return

        vectors = self._prepare(chunks)
        if self.index is None:
            self._init_index(vectors.shape[1])

        start = len(self.chunks)
        ids_array = np.arange(start, start + len(chunks), dtype="int64")
        try:
            self.index.add_with_ids(vectors, ids_array)  # pyright: ignore[reportCallIssue]  # FAISS stubs may not reflect add_with_ids signature
        except RuntimeError:
            logger.exception(
                "FAISS index does not support add_with_ids; ensure IndexIDMap is used."
            )
            raise

        self.chunks.extend(chunks)
        logger.info("Added %d vectors to FAISS index", len(chunks))

    def search(
        self,
        query_embedding: np.ndarray,
        top_k: int = 4,
    ) -> list[tuple[DocumentChunk, float]]:
        """Search similar chunks using FAISS index.

        Over-fetches ``raw_top_k_multiplier * top_k`` candidates and re-ranks
        them so equal scores keep insertion order.

        Returns:
            Ranked list of (DocumentChunk, score) tuples.
        """
        index = self.index
        if index is None or index.ntotal == 0 or top_k <= 0:
            return []

        normalized_query = self.normalize(query_embedding)
        raw_top_k = max(top_k, self.raw_top_k_multiplier * top_k)
        raw_top_k = min(raw_top_k, index.ntotal)

        scores, vector_ids = index.search(
            normalized_query.reshape(1, -1),
            raw_top_k,
        )  # pyright: ignore[reportCallIssue]

        valid = vector_ids[0] != -1  # faiss returns -1 for empty results
        candidate_scores = scores[0][valid]
        candidate_ids = vector_ids[0][valid]
        score_by_id = dict(
            zip(candidate_ids.tolist(), candidate_scores.tolist(), strict=True)
        )

        return [
            (self.chunks[idx], float(score_by_id[idx]))
            for idx in self.rank(candidate_scores, candidate_ids, top_k)
        ]
