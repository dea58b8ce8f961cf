"""DocChat - retrieval-augmented chat over an uploaded document."""

from .agent import AgentEvent, AgentResult, AgentState, AnsweringAgent
from .conversation import ConversationManager
from .document_processing import DocumentLoader, TextChunker
from .embeddings import EmbeddingService
from .models import (
    ConversationTurn,
    Document,
    DocumentChunk,
    IndexStatus,
    StagedDocument,
    UploadTicket,
)
from .pipeline import IndexHandle, Indexer
from .retrieval import Retriever
from .service import DocChatService
from .storage import LocalDocumentStorage, S3DocumentStorage, get_storage
from .vector_store import FaissVectorIndex, NumpyVectorIndex, get_vector_index

__all__ = [
    "AgentEvent",
    "AgentResult",
    "AgentState",
    "AnsweringAgent",
    "ConversationManager",
    "ConversationTurn",
    "DocChatService",
    "Document",
    "DocumentChunk",
    "DocumentLoader",
    "EmbeddingService",
    "FaissVectorIndex",
    "IndexHandle",
    "IndexStatus",
    "Indexer",
    "LocalDocumentStorage",
    "NumpyVectorIndex",
    "Retriever",
    "S3DocumentStorage",
    "StagedDocument",
    "TextChunker",
    "UploadTicket",
    "get_storage",
    "get_vector_index",
]
