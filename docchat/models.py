"""Data models for the document chat application."""

from dataclasses import dataclass, field
from typing import Any

import numpy as np


@dataclass(frozen=True)
class Document:
    """Raw text of a stored document and its storage identifier."""

    content: str
    source: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DocumentChunk:
    """Represents a chunk of text from a document."""

    content: str
    metadata: dict[str, Any]
    embedding: np.ndarray | None = None


@dataclass
class ConversationTurn:
    """Represents a single turn in the conversation."""

    user_question: str
    bot_response: str
    retrieved_contexts: list[tuple[DocumentChunk, float]]
    timestamp: str


@dataclass(frozen=True)
class UploadTicket:
    """Time-boxed grant for a direct client-to-storage upload."""

    upload_url: str
    identifier: str
    expires_in: int


@dataclass(frozen=True)
class StagedDocument:
    """Document bytes written to storage but not yet made current."""

    identifier: str
    size: int
    version: str | None = None


@dataclass(frozen=True)
class IndexStatus:
    """Outcome of a rebuild request.

    ``published`` is False when the request found nothing to index and the
    previous index stayed live; the counts then describe that index.
    """

    identifier: str | None
    chunk_count: int
    generation: int
    published: bool = True

    @property
    def is_empty(self) -> bool:
        return self.chunk_count == 0
