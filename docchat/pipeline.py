"""Index building pipeline and the handle that owns the live index."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from .config import config
from .document_processing import TextChunker
from .embeddings import EmbeddingService
from .errors import IndexBuildFailed
from .vector_store import get_vector_index

if TYPE_CHECKING:
    from .models import Document, DocumentChunk
    from .vector_store import BaseVectorIndex

logger = config.get_logger(__name__)


class Indexer:
    """Builds a fresh vector index from documents: Split -> Embed -> Index."""

    def __init__(
        self,
        embedding_service: EmbeddingService | None = None,
        chunk_size: int | None = None,
        overlap: int | None = None,
        vector_backend: str | None = None,
        openai_api_key: str | None = None,
    ) -> None:
        """Initialize the indexer.

        Args:
            embedding_service: Service computing chunk vectors. If None, an
                OpenAI-backed EmbeddingService is created.
            chunk_size: Size of text chunks. If None, uses config.CHUNK_SIZE.
            overlap: Overlap between chunks. If None, uses config.CHUNK_OVERLAP.
            vector_backend: Which index backend to build ("memory" | "faiss").
                Defaults to config.VECTOR_BACKEND.
            openai_api_key: OpenAI API key for the default embedding service.
        """
        if chunk_size is None:
            chunk_size = config.CHUNK_SIZE
        if overlap is None:
            overlap = config.CHUNK_OVERLAP

        self.chunker = TextChunker(chunk_size=chunk_size, overlap=overlap)
        self.embedding_service = embedding_service or EmbeddingService(
            api_key=openai_api_key
        )
        self.vector_backend = (vector_backend or config.VECTOR_BACKEND).lower()

    def split(self, documents: list[Document]) -> list[DocumentChunk]:
        """Chunk every document, keeping document then reading order.

        Returns:
            All chunks of all documents.
        """
        chunks: list[DocumentChunk] = []
        for document in documents:
            chunks.extend(self.chunker.chunk_document(document))
        return chunks

    def build_index(self, documents: list[Document]) -> BaseVectorIndex:
        """Build a new index over ``documents``.

        The returned index is complete; nothing is shared with any index
        built before.

        Returns:
            A populated index (empty when there are no documents).

        Raises:
            IndexBuildFailed: If chunking, embedding or indexing fails.
        """
        logger.info(
            "Building %s index for %d documents",
            self.vector_backend,
            len(documents),
        )
        index = get_vector_index(self.vector_backend)

        try:
            chunks = self.split(documents)
            if not chunks:
                logger.warning("No text to index; publishing an empty index")
                return index

            chunk_texts = [chunk.content for chunk in chunks]
            embeddings = self.embedding_service.get_embeddings_batch(chunk_texts)

            for chunk, embedding in zip(chunks, embeddings, strict=True):
                chunk.embedding = embedding

            index.add_chunks(chunks)
        except Exception as e:
            logger.exception("Index build failed")
            msg = "Failed to build the document index"
            raise IndexBuildFailed(msg, original_error=e) from e

        logger.info("Index build completed with %d chunks", len(index))
        return index


class IndexHandle:
    """Owns the single live index.

    Rebuilds happen outside the handle and are published with one reference
    swap, so readers see either the previous or the new index. ``rebuild_lock``
    serializes rebuilds; the last one to acquire it wins.
    """

    def __init__(self) -> None:
        self._index: BaseVectorIndex | None = None
        self.generation = 0
        self.rebuild_lock = asyncio.Lock()

    @property
    def current(self) -> BaseVectorIndex | None:
        """The live index, or None before the first publish."""
        return self._index

    @property
    def is_initialized(self) -> bool:
        """True once any index has been published."""
        return self._index is not None

    def publish(self, index: BaseVectorIndex) -> int:
        """Replace the live index.

        Returns:
            The new generation number.
        """
        self._index = index
        self.generation += 1
        logger.info(
            "Published index generation %d (%d chunks from %s)",
            self.generation,
            len(index),
            sorted(index.sources()) or "no documents",
        )
        return self.generation
