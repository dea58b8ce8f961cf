"""Document loading and text chunking functionality."""

from __future__ import annotations

import io
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

import pypdf

from .config import config
from .errors import NoDocumentsFound
from .models import Document, DocumentChunk

if TYPE_CHECKING:
    from .storage import DocumentStorage

logger = config.get_logger(__name__)


class DocumentLoader:
    """Loads PDF and TXT documents out of a storage backend."""

    SUPPORTED_EXTENSIONS = (".txt", ".pdf")

    def __init__(self, storage: DocumentStorage) -> None:
        self.storage = storage

    @staticmethod
    def load_pdf(data: bytes) -> str:
        """Extract the text layer of every PDF page, with page markers.

        Returns:
            Page texts joined in order; image-only pages add only a marker.
        """
        try:
            pdf_reader = pypdf.PdfReader(io.BytesIO(data))
            text = ""
            for page_num, page in enumerate(pdf_reader.pages):
                page_text = page.extract_text()
                text += f"\n--- Page {page_num + 1} ---\n{page_text}\n"
        except Exception:
            logger.exception("Error loading PDF")
            raise
        else:
            return text

    @staticmethod
    def load_txt(data: bytes) -> str:
        """Decode TXT bytes as UTF-8.

        Returns:
            The text content of the file.
        """
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            logger.exception("Error decoding TXT document")
            raise
        else:
            return text

    @classmethod
    def is_supported(cls, source: str) -> bool:
        """Check the file extension against the supported formats.

        Returns:
            True if the loader can extract text from ``source``.
        """
        return PurePosixPath(source).suffix.lower() in cls.SUPPORTED_EXTENSIONS

    @classmethod
    def extract_text(cls, data: bytes, source: str) -> str:
        """Extract text based on file extension.

        Args:
            data: Raw document bytes.
            source: Identifier of the document; its extension selects the parser.

        Returns:
            Plain text for chunking.

        Raises:
            ValueError: If the file type is not supported.
        """
        file_ext = PurePosixPath(source).suffix.lower()
        if file_ext == ".pdf":
            return cls.load_pdf(data)
        if file_ext == ".txt":
            return cls.load_txt(data)
        msg = f"Unsupported file type: {file_ext or source}"
        raise ValueError(msg)

    def load(self, identifier: str) -> Document:
        """Load a single document by identifier.

        Returns:
            The loaded Document.
        """
        return self.parse(self.storage.fetch_bytes(identifier), identifier)

    def parse(self, data: bytes, identifier: str) -> Document:
        """Build a Document from bytes already in hand, such as a staged upload.

        Returns:
            The parsed Document.

        Raises:
            ValueError: If the bytes cannot be decoded or the type is unknown.
        """
        text = self.extract_text(data, identifier)
        logger.info("Loaded %s (%d characters)", identifier, len(text))
        return Document(
            content=text,
            source=identifier,
            metadata={"storage": self.storage.backend},
        )

    def load_all(self, identifier: str | None = None) -> list[Document]:
        """Load the documents relevant to the current session.

        Args:
            identifier: Load only this document. If None, loads every
                document the storage lists.

        Returns:
            The loaded documents.

        Raises:
            NoDocumentsFound: If there is nothing to load.
        """
        identifiers = [identifier] if identifier else self.storage.list_identifiers()
        if not identifiers:
            msg = "No documents found in storage"
            raise NoDocumentsFound(msg)

        logger.info("Loading documents: %s", identifiers)
        return [self.load(name) for name in identifiers]


class TextChunker:
    """Fixed-width sliding window over characters, snapped to word breaks."""

    def __init__(self, chunk_size: int = 1000, overlap: int = 200) -> None:
        """Configure the window.

        Args:
            chunk_size: Maximum characters per chunk.
            overlap: Characters shared by consecutive chunks.

        Raises:
            ValueError: If the window cannot make progress.
        """
        if chunk_size <= 0:
            msg = f"chunk_size must be positive, got {chunk_size}"
            raise ValueError(msg)
        if not 0 <= overlap < chunk_size:
            msg = f"overlap must be in [0, {chunk_size}), got {overlap}"
            raise ValueError(msg)
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk_text(self, text: str, source: str = "document") -> list[DocumentChunk]:
        """Slide the window over ``text``.

        Returns:
            Non-empty chunks carrying their character span and source.
        """
        chunks = []
        start = 0
        chunk_id = 0

        while start < len(text):
            end = min(start + self.chunk_size, len(text))
            chunk_text = text[start:end]

            # back off to the last space unless this is the tail
            if end < len(text) and not chunk_text.endswith(" "):
                last_space = chunk_text.rfind(" ")
                # never shrink below half a window
                if last_space > self.chunk_size // 2:
                    end = start + last_space
                    chunk_text = text[start:end]

            if chunk_text.strip():
                chunk = DocumentChunk(
                    content=chunk_text.strip(),
                    metadata={
                        "source": source,
                        "chunk_id": chunk_id,
                        "start_char": start,
                        "end_char": end,
                        "length": len(chunk_text.strip()),
                    },
                )
                chunks.append(chunk)
                chunk_id += 1

            if end >= len(text):
                break

            next_start = end - self.overlap
            start = next_start if next_start > start else end

        logger.info("Text split into %d chunks", len(chunks))
        return chunks

    def chunk_document(self, document: Document) -> list[DocumentChunk]:
        """Split a Document, tagging chunks with its source.

        Returns:
            Chunks of the document in reading order.
        """
        return self.chunk_text(document.content, source=document.source)
