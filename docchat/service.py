"""Orchestrates upload, indexing and chat flows."""

from __future__ import annotations

import asyncio
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from .agent import AnsweringAgent
from .config import config
from .conversation import ConversationManager
from .document_processing import DocumentLoader
from .embeddings import EmbeddingService
from .errors import AgentUninitialized, InvalidRequest, NoDocumentsFound
from .models import IndexStatus
from .pipeline import IndexHandle, Indexer
from .retrieval import Retriever
from .storage import get_storage

if TYPE_CHECKING:
    from .models import Document, UploadTicket
    from .storage import DocumentStorage
    from .vector_store import BaseVectorIndex

logger = config.get_logger(__name__)

NOT_INITIALIZED_MESSAGE = "LLM is not initialized. Upload a document first."


class DocChatService:
    """Wires storage, indexing, retrieval and the agent behind four flows."""

    def __init__(  # noqa: PLR0913
        self,
        storage: DocumentStorage,
        indexer: Indexer,
        agent: AnsweringAgent,
        handle: IndexHandle,
        conversations: ConversationManager | None = None,
        *,
        verify_attempts: int | None = None,
        verify_interval: float | None = None,
    ) -> None:
        self.storage = storage
        self.loader = DocumentLoader(storage)
        self.indexer = indexer
        self.agent = agent
        self.handle = handle
        self.conversations = conversations or ConversationManager()
        self.verify_attempts = max(
            1,
            verify_attempts
            if verify_attempts is not None
            else config.UPLOAD_VERIFY_ATTEMPTS,
        )
        self.verify_interval = (
            verify_interval
            if verify_interval is not None
            else config.UPLOAD_VERIFY_INTERVAL
        )

    @classmethod
    def from_config(cls) -> DocChatService:
        """Build every component from ``Config``.

        Returns:
            A ready service with no index published yet.
        """
        embedding_service = EmbeddingService()
        handle = IndexHandle()
        retriever = Retriever(embedding_service, handle)
        return cls(
            storage=get_storage(),
            indexer=Indexer(embedding_service=embedding_service),
            agent=AnsweringAgent(retriever),
            handle=handle,
        )

    async def upload(
        self,
        data: bytes | None,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> IndexStatus:
        """Store an uploaded document and rebuild the index from it.

        The upload is staged first and committed only once its index is
        built, so a failed upload leaves both storage and the live index on
        the previous document.

        Returns:
            The published index status; ``identifier`` names the stored file.

        Raises:
            InvalidRequest: If no payload was sent, the type is unsupported
                or the text cannot be decoded.
        """
        if not data:
            msg = "No file uploaded."
            raise InvalidRequest(msg)

        if filename and not DocumentLoader.is_supported(filename):
            suffix = PurePosixPath(filename).suffix or filename
            msg = f"Unsupported file type: {suffix}"
            raise InvalidRequest(msg)

        async with self.handle.rebuild_lock:
            staged = await asyncio.to_thread(
                self.storage.stage, data, filename, content_type
            )
            try:
                try:
                    document = self.loader.parse(data, staged.identifier)
                except ValueError as e:
                    msg = str(e)
                    raise InvalidRequest(msg, original_error=e) from e
                index = await asyncio.to_thread(self.indexer.build_index, [document])
                await asyncio.to_thread(self.storage.commit, staged)
            except Exception:
                logger.warning("Rolling back upload of %s", staged.identifier)
                await asyncio.to_thread(self.storage.discard, staged)
                raise

            return self._publish(index, staged.identifier)

    async def initialize(self, identifier: str | None) -> IndexStatus:
        """Rebuild the index from a document uploaded directly to storage.

        Returns:
            The published index status, or the live one when the document
            never showed up.

        Raises:
            InvalidRequest: If no identifier was sent.
        """
        if not identifier or not identifier.strip():
            msg = "Transcript name is required."
            raise InvalidRequest(msg)

        identifier = identifier.strip()
        async with self.handle.rebuild_lock:
            return await self._rebuild(identifier)

    async def create_upload_url(self) -> UploadTicket:
        """Issue a presigned URL for a direct upload.

        Returns:
            The upload ticket.
        """
        ticket = await asyncio.to_thread(self.storage.create_upload_url)
        logger.info("Issued upload URL for %s", ticket.identifier)
        return ticket

    async def _wait_until_stored(self, identifier: str) -> bool:
        for attempt in range(1, self.verify_attempts + 1):
            if await asyncio.to_thread(self.storage.exists, identifier):
                return True
            logger.info(
                "Waiting for %s to appear in storage (attempt %d/%d)",
                identifier,
                attempt,
                self.verify_attempts,
            )
            if attempt < self.verify_attempts:
                await asyncio.sleep(self.verify_interval)
        return False

    def _publish(self, index: BaseVectorIndex, identifier: str) -> IndexStatus:
        generation = self.handle.publish(index)
        self.conversations.clear_history()
        return IndexStatus(
            identifier=identifier,
            chunk_count=len(index),
            generation=generation,
        )

    async def _rebuild(self, identifier: str) -> IndexStatus:
        """Load, index and publish. Caller holds ``rebuild_lock``."""
        documents: list[Document] = []
        try:
            if not await self._wait_until_stored(identifier):
                msg = f"Document {identifier} never appeared in storage"
                raise NoDocumentsFound(msg)
            documents = await asyncio.to_thread(self.loader.load_all, identifier)
        except NoDocumentsFound:
            current = self.handle.current
            if current is not None:
                logger.warning(
                    "No documents found for %s; keeping index generation %d",
                    identifier,
                    self.handle.generation,
                )
                return IndexStatus(
                    identifier=identifier,
                    chunk_count=len(current),
                    generation=self.handle.generation,
                    published=False,
                )
            logger.warning("No documents found for %s; index will be empty", identifier)
        except ValueError as e:
            msg = str(e)
            raise InvalidRequest(msg, original_error=e) from e

        index = await asyncio.to_thread(self.indexer.build_index, documents)
        return self._publish(index, identifier)

    async def chat(self, prompt: str | None, session_id: str | None = None) -> str:
        """Answer a prompt about the current document.

        Returns:
            The trimmed answer, or the agent's fallback answer.

        Raises:
            InvalidRequest: If the prompt is empty.
            AgentUninitialized: If no index was ever published.
        """
        if not isinstance(prompt, str) or not prompt.strip():
            msg = "Prompt is required."
            raise InvalidRequest(msg)

        if not self.handle.is_initialized:
            logger.error("Agent executor is not initialized.")
            raise AgentUninitialized(NOT_INITIALIZED_MESSAGE)

        prompt = prompt.strip()
        generation = self.handle.generation
        history = self.conversations.history_messages(session_id)
        result = await self.agent.run(prompt, history)
        answer = result.answer.strip()

        # a turn about a replaced document must not survive the history reset
        if self.handle.generation == generation:
            self.conversations.record_turn(
                session_id,
                prompt,
                answer,
                retrieved_contexts=result.retrieved_contexts,
            )
        else:
            logger.info(
                "Index changed during the request; not recording the turn for %s",
                session_id,
            )

        logger.info(
            "Answered with %d tool calls (fallback=%s)",
            result.tool_calls,
            result.fallback,
        )
        for i, (chunk, score) in enumerate(result.retrieved_contexts):
            logger.debug(
                "  Context %d: %s (score: %.4f) %s...",
                i + 1,
                chunk.metadata.get("source"),
                score,
                chunk.content[:100],
            )

        return answer
