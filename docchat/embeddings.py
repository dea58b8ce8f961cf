"""Embedding client used for both document chunks and retriever queries."""

from collections.abc import Iterator

import numpy as np
from openai import OpenAI

from .config import config

logger = config.get_logger(__name__)


def iter_batches(texts: list[str], batch_size: int) -> Iterator[list[str]]:
    """Yield consecutive slices of ``texts`` holding at most ``batch_size`` items."""
    for start in range(0, len(texts), batch_size):
        yield texts[start : start + batch_size]


class EmbeddingService:
    """Turns text into vectors through the hosted embeddings endpoint.

    The client is built without retries so a failing call surfaces straight
    to the indexer or retriever, which map it onto their own errors.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Create the embeddings client.

        Args:
            api_key: OpenAI API key. Falls back to OPENAI_API_KEY.
            model: Embedding model. Falls back to config.EMBEDDING_MODEL.
            timeout: Seconds per request. Falls back to config.EMBEDDING_TIMEOUT.
        """
        if timeout is None:
            timeout = config.EMBEDDING_TIMEOUT
        self.model = model or config.EMBEDDING_MODEL
        self.client = OpenAI(
            api_key=api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            default_headers=config.get_api_headers() or None,
            timeout=timeout,
            max_retries=0,
        )

    def _create(self, payload: str | list[str]) -> list[np.ndarray]:
        response = self.client.embeddings.create(model=self.model, input=payload)
        return [np.array(item.embedding) for item in response.data]

    def get_embedding(self, text: str) -> np.ndarray:
        """Embed one query string.

        Returns:
            The vector for ``text``.
        """
        try:
            (vector, *_) = self._create(text)
        except Exception:
            logger.exception("Embedding failed for a %d-char query", len(text))
            raise
        return vector

    def get_embeddings_batch(
        self,
        texts: list[str],
        batch_size: int | None = None,
    ) -> list[np.ndarray]:
        """Embed document chunks, several per request.

        Args:
            texts: Chunk texts, in index order.
            batch_size: Texts per request. Falls back to
                config.EMBEDDING_BATCH_SIZE.

        Returns:
            One vector per input text, order preserved.

        Raises:
            ValueError: If the endpoint answers a batch with the wrong number
                of vectors.
        """
        batch_size = batch_size or config.EMBEDDING_BATCH_SIZE
        vectors: list[np.ndarray] = []

        for number, batch in enumerate(iter_batches(texts, batch_size), start=1):
            try:
                batch_vectors = self._create(batch)
                if len(batch_vectors) != len(batch):
                    msg = (
                        f"Embedding batch returned {len(batch_vectors)} vectors "
                        f"for {len(batch)} inputs"
                    )
                    raise ValueError(msg)
            except Exception:
                logger.exception(
                    "Embedding batch %d of %d texts failed", number, len(batch)
                )
                raise
            vectors.extend(batch_vectors)
            logger.debug("Embedded batch %d (%d texts)", number, len(batch))

        logger.info("Embedded %d texts with %s", len(vectors), self.model)
        return vectors
