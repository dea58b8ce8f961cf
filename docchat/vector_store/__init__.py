"""Vector index implementations and factory."""

from __future__ import annotations

from typing import Literal

from docchat.config import config

from .base import BaseVectorIndex
from .faiss_store import FaissVectorIndex
from .memory_store import NumpyVectorIndex

VectorBackend = Literal["memory", "faiss"]


def get_vector_index(
    backend: VectorBackend | str | None = None,
    *,
    raw_top_k_multiplier: int | None = None,
) -> BaseVectorIndex:
    """Return an empty vector index of the requested backend.

    Raises:
        ValueError: If an unsupported backend is requested.
    """
    name = (backend or config.VECTOR_BACKEND).lower()

    if name == "memory":
        return NumpyVectorIndex()

    if name == "faiss":
        return FaissVectorIndex(
            raw_top_k_multiplier=(
                raw_top_k_multiplier
                if raw_top_k_multiplier is not None
                else config.VECTOR_RAW_TOP_K_MULTIPLIER
            ),
        )

    msg = f"Unsupported vector store backend: {backend}"
    raise ValueError(msg)


__all__ = [
    "BaseVectorIndex",
    "FaissVectorIndex",
    "NumpyVectorIndex",
    "VectorBackend",
    "get_vector_index",
]
