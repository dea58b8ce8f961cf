"""Configuration management for the DocChat server."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)

STORAGE_BACKENDS = {"local", "s3"}
VECTOR_BACKENDS = {"memory", "faiss"}


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI Configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Read OPENAI_API_KEY at call time; empty string when unset."""
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    HOST: str = os.getenv("HOST", "localhost")
    PORT: int = int(os.getenv("PORT", "8889"))
    CORS_ORIGINS: list[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    # Indexing Configuration
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "1000"))
    CHUNK_OVERLAP: int = int(os.getenv("CHUNK_OVERLAP", "200"))
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_BATCH_SIZE: int = int(os.getenv("EMBEDDING_BATCH_SIZE", "100"))
    EMBEDDING_TIMEOUT: float = float(os.getenv("EMBEDDING_TIMEOUT", "30"))

    # Chat Model Configuration
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4o")
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "500"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0"))
    CHAT_TIMEOUT: float = float(os.getenv("CHAT_TIMEOUT", "60"))

    # Agent and Retrieval Configuration
    AGENT_MAX_TOOL_CALLS: int = int(os.getenv("AGENT_MAX_TOOL_CALLS", "3"))
    RETRIEVER_TOP_K: int = int(os.getenv("RETRIEVER_TOP_K", "4"))
    MAX_HISTORY_TURNS: int = int(os.getenv("MAX_HISTORY_TURNS", "5"))
    MAX_SESSIONS: int = int(os.getenv("MAX_SESSIONS", "100"))

    # Vector Index Configuration
    VECTOR_BACKEND: str = os.getenv("VECTOR_BACKEND", "memory").lower()
    VECTOR_RAW_TOP_K_MULTIPLIER: int = int(
        os.getenv("VECTOR_RAW_TOP_K_MULTIPLIER", "2")
    )

    # Storage Configuration
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "local").lower()
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", "data/uploads"))
    AWS_REGION: str | None = os.getenv("AWS_REGION")
    AWS_BUCKET_NAME: str | None = os.getenv("AWS_BUCKET_NAME")
    UPLOAD_URL_EXPIRES: int = int(os.getenv("UPLOAD_URL_EXPIRES", "60"))
    UPLOAD_VERIFY_ATTEMPTS: int = int(os.getenv("UPLOAD_VERIFY_ATTEMPTS", "5"))
    UPLOAD_VERIFY_INTERVAL: float = float(
        os.getenv("UPLOAD_VERIFY_INTERVAL", "1.0")
    )

    @classmethod
    def get_aws_credentials(cls) -> dict[str, str]:
        """Get AWS credentials from environment variables.

        Returns:
            Keyword arguments for a boto3 client. Empty when the credentials
            are not set, so boto3 falls back to its own provider chain.
        """
        access_key = os.getenv("AWS_ACCESS_KEY_ID", "")
        secret_key = os.getenv("AWS_SECRET_ACCESS_KEY", "")
        if not (access_key and secret_key):
            return {}
        return {
            "aws_access_key_id": access_key,
            "aws_secret_access_key": secret_key,
        }

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "DocChat/1.0")

    @classmethod
    def validate(cls) -> None:
        """Fail fast on settings the server cannot start with.

        Raises:
            ValueError: On a missing API key, an unknown backend name, or
                S3 storage without a bucket.
        """
        if not cls.get_openai_api_key():
            msg = "OPENAI_API_KEY is required; set it in .env or the environment."
            raise ValueError(msg)

        if cls.STORAGE_BACKEND not in STORAGE_BACKENDS:
            msg = f"Unsupported storage backend: {cls.STORAGE_BACKEND}"
            raise ValueError(msg)

        if cls.VECTOR_BACKEND not in VECTOR_BACKENDS:
            msg = f"Unsupported vector store backend: {cls.VECTOR_BACKEND}"
            raise ValueError(msg)

        if cls.STORAGE_BACKEND == "s3" and not cls.AWS_BUCKET_NAME:
            msg = "AWS_BUCKET_NAME is required when STORAGE_BACKEND is 's3'."
            raise ValueError(msg)

    @classmethod
    def setup_logging(cls) -> None:
        """Configure root logging once, before the app is built.

        LOG_LEVEL drives the server's own loggers; OPENAI_LOG_LEVEL quiets
        the HTTP clients underneath the OpenAI and AWS SDKs.
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        sdk_level = getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        for name in ("openai", "botocore", "httpx"):
            logging.getLogger(name).setLevel(sdk_level)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Module logger; pass ``__name__``."""
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Headers sent with every OpenAI request.

        Returns:
            Empty when API_USER_AGENT is blank.
        """
        if not cls.API_USER_AGENT:
            return {}
        return {"User-Agent": cls.API_USER_AGENT}


config = Config()
