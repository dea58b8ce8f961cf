"""HTTP surface: upload, direct-upload and chat endpoints."""

from typing import Annotated

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import config
from .errors import AgentUninitialized, DocChatError, InvalidRequest
from .service import DocChatService

logger = config.get_logger(__name__)

CLIENT_VISIBLE_ERRORS = (InvalidRequest, AgentUninitialized)


class ChatRequest(BaseModel):
    """Body of ``POST /``."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")


class InitializeRequest(BaseModel):
    """Body of ``POST /initialize-llm``."""

    model_config = ConfigDict(populate_by_name=True)

    transcript_name: str | None = Field(default=None, alias="transcriptName")


def error_response(exc: Exception, fallback: str) -> JSONResponse:
    """Map a failure onto the uniform ``{"error": ...}`` body.

    Returns:
        400 with the message for invalid requests, otherwise 500 with either
        the error's own message (uninitialized agent) or ``fallback``.
    """
    if isinstance(exc, CLIENT_VISIBLE_ERRORS):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
    status_code = exc.status_code if isinstance(exc, DocChatError) else 500
    return JSONResponse(status_code=status_code, content={"error": fallback})


def get_service(request: Request) -> DocChatService:
    """Dependency returning the service owned by the application."""
    return request.app.state.service


ServiceDep = Annotated[DocChatService, Depends(get_service)]


def create_app(service: DocChatService | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        service: Service handling the flows. If None, one is built from config.

    Returns:
        The configured application.
    """
    app = FastAPI(
        title="DocChat API",
        description="Upload a text document and chat about it.",
        version="0.1.0",
    )
    app.state.service = service or DocChatService.from_config()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("Rejected malformed request: %s", exc.errors())
        return JSONResponse(status_code=400, content={"error": "Invalid request body."})

    @app.get("/")
    async def root() -> dict[str, str]:
        """Liveness check."""
        return {"message": "DocChat server is running!"}

    @app.post("/upload")
    async def upload(
        service: ServiceDep,
        file: Annotated[UploadFile | None, File()] = None,
    ) -> JSONResponse:
        """Store an uploaded document and rebuild the index."""
        try:
            data = await file.read() if file is not None else None
            status = await service.upload(
                data,
                filename=file.filename if file is not None else None,
                content_type=file.content_type if file is not None else None,
            )
        except Exception as e:
            logger.exception("Error uploading file")
            return error_response(e, "Failed to upload file and initialize LLM.")

        message = "File uploaded and LLM initialized successfully."
        if status.is_empty:
            message = "File uploaded, but it contains no indexable text."
        return JSONResponse(
            status_code=200,
            content={"message": message, "filename": status.identifier},
        )

    @app.post("/upload-url")
    async def upload_url(service: ServiceDep) -> JSONResponse:
        """Issue a presigned URL for a direct upload to object storage."""
        try:
            ticket = await service.create_upload_url()
        except Exception as e:
            logger.exception("Error generating upload URL")
            return error_response(e, "Failed to generate upload URL.")

        return JSONResponse(
            status_code=200,
            content={
                "uploadURL": ticket.upload_url,
                "transcriptName": ticket.identifier,
            },
        )

    @app.post("/initialize-llm")
    async def initialize_llm(
        service: ServiceDep,
        body: InitializeRequest | None = None,
    ) -> JSONResponse:
        """Rebuild the index from a directly uploaded document."""
        try:
            status = await service.initialize(body.transcript_name if body else None)
        except Exception as e:
            logger.exception("Error initializing LLM")
            return error_response(e, "Failed to initialize LLM.")

        message = "LLM initialized successfully."
        if not status.published:
            message = "No documents found; the current document stays loaded."
        elif status.is_empty:
            message = "No documents found; LLM initialized with an empty index."
        return JSONResponse(status_code=200, content={"message": message})

    @app.post("/")
    async def chat(
        service: ServiceDep,
        body: ChatRequest | None = None,
    ) -> JSONResponse:
        """Answer a prompt about the uploaded document."""
        try:
            answer = await service.chat(
                body.prompt if body else None,
                session_id=body.session_id if body else None,
            )
        except Exception as e:
            logger.exception("Error handling user prompt")
            return error_response(e, "Failed to process the request.")

        return JSONResponse(status_code=200, content={"bot": answer})

    return app
