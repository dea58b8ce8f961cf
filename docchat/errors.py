"""Error taxonomy for the document chat pipeline.

Every failure a component can surface derives from ``DocChatError``. The HTTP
layer maps them onto status codes through ``status_code``; everything except
``InvalidRequest`` is a server-side failure.
"""


class DocChatError(Exception):
    """Base exception for all DocChat errors.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    status_code: int = 500

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return (
                f"{self.message} | Caused by: "
                f"{type(self.original_error).__name__}: {self.original_error}"
            )
        return self.message


class InvalidRequest(DocChatError):
    """A required field is missing or malformed."""

    status_code = 400


class StorageUnavailable(DocChatError):
    """The storage backend failed to read or write a document."""


class NoDocumentsFound(DocChatError):
    """Nothing to load for the current session.

    Not fatal: callers treat it as an empty index.
    """


class IndexBuildFailed(DocChatError):
    """Chunking or embedding failed; no index was published."""


class GenerationFailed(DocChatError):
    """The hosted model errored or timed out."""


class AgentUninitialized(DocChatError):
    """A chat request arrived before any index was published."""
