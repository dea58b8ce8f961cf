"""Document storage backends: local versioned directory and S3."""

from __future__ import annotations

import os
import secrets
import shutil
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .errors import NoDocumentsFound, StorageUnavailable
from .models import StagedDocument, UploadTicket

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = config.get_logger(__name__)

DEFAULT_EXTENSIONS = (".txt", ".pdf")
DEFAULT_FILENAME = "document.txt"
POINTER_FILE = "CURRENT"
VERSION_PREFIX = "v-"
S3_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class DocumentStorage(ABC):
    """Persists uploaded documents and hands them back by identifier."""

    backend: str = "abstract"

    def __init__(self, file_extensions: Sequence[str] = DEFAULT_EXTENSIONS) -> None:
        self.file_extensions = tuple(ext.lower() for ext in file_extensions)

    def is_supported(self, identifier: str) -> bool:
        """Check whether an identifier carries one of the allowed extensions.

        Returns:
            True if the identifier ends with an allowed extension.
        """
        return identifier.lower().endswith(self.file_extensions)

    @abstractmethod
    def stage(
        self,
        data: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StagedDocument:
        """Write document bytes without making them current."""

    def commit(self, staged: StagedDocument) -> None:
        """Make a staged document the current one."""

    @abstractmethod
    def discard(self, staged: StagedDocument) -> None:
        """Remove a staged document that will not be committed."""

    def store(
        self,
        data: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> str:
        """Stage and commit in one step.

        Returns:
            The identifier of the stored document.
        """
        staged = self.stage(data, filename, content_type)
        self.commit(staged)
        return staged.identifier

    @abstractmethod
    def fetch_bytes(self, identifier: str) -> bytes:
        """Return the exact bytes stored under ``identifier``."""

    @abstractmethod
    def list_identifiers(self) -> list[str]:
        """List the identifiers of the documents in the current session."""

    @abstractmethod
    def exists(self, identifier: str) -> bool:
        """Check whether a document is stored under ``identifier``."""

    def fetch_text(self, identifier: str) -> str:
        """Return the stored document decoded as UTF-8 text.

        Raises:
            StorageUnavailable: If the stored bytes are not valid UTF-8.
        """
        data = self.fetch_bytes(identifier)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            msg = f"Document {identifier} is not valid UTF-8 text"
            raise StorageUnavailable(msg, original_error=e) from e

    def create_upload_url(self) -> UploadTicket:
        """Issue a presigned URL for a direct client upload.

        Raises:
            StorageUnavailable: The backend does not support direct uploads.
        """
        msg = f"The {self.backend} storage backend does not issue upload URLs"
        raise StorageUnavailable(msg)


class LocalDocumentStorage(DocumentStorage):
    """Single-document storage in a local directory.

    Each upload is written into a fresh version directory. The ``CURRENT``
    pointer file is then swapped with ``os.replace`` and the older versions
    are removed, so the data directory never looks empty mid-upload.
    """

    backend = "local"

    def __init__(
        self,
        data_dir: Path = Path("data/uploads"),
        file_extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    ) -> None:
        super().__init__(file_extensions)
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(exist_ok=True, parents=True)
        self.pointer_path = self.data_dir / POINTER_FILE

    @staticmethod
    def sanitize_filename(filename: str | None) -> str:
        """Strip any directory part from a client-supplied filename.

        Returns:
            A bare filename, or the default name when nothing usable is left.
        """
        name = Path(filename or "").name.strip()
        if not name or name in {".", ".."}:
            return DEFAULT_FILENAME
        return name

    def current_version_dir(self) -> Path | None:
        """Resolve the version directory the pointer file names.

        Returns:
            Path of the live version directory, or None before any upload.
        """
        if not self.pointer_path.exists():
            return None
        version = self.pointer_path.read_text(encoding="utf-8").strip()
        if not version:
            return None
        return self.data_dir / version

    def stage(
        self,
        data: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StagedDocument:
        """Write a new version directory; the pointer still names the old one.

        Returns:
            The staged document, identified by its sanitized filename.

        Raises:
            StorageUnavailable: If the filesystem write fails.
        """
        identifier = self.sanitize_filename(filename)
        version = f"{VERSION_PREFIX}{uuid.uuid4().hex}"
        version_dir = self.data_dir / version

        try:
            version_dir.mkdir(parents=True)
            (version_dir / identifier).write_bytes(data)
        except OSError as e:
            logger.exception("Error storing document %s", identifier)
            shutil.rmtree(version_dir, ignore_errors=True)
            msg = f"Failed to store document {identifier}"
            raise StorageUnavailable(msg, original_error=e) from e

        logger.info(
            "Staged %s (%d bytes, %s) as version %s",
            identifier,
            len(data),
            content_type or "unknown type",
            version,
        )
        return StagedDocument(identifier=identifier, size=len(data), version=version)

    def commit(self, staged: StagedDocument) -> None:
        """Swap the pointer to the staged version and prune older versions.

        Raises:
            StorageUnavailable: If the pointer cannot be swapped; the staged
                version is removed and the previous one stays current.
        """
        try:
            self._swap_pointer(staged.version)
        except OSError as e:
            logger.exception("Error switching to version %s", staged.version)
            self.discard(staged)
            msg = f"Failed to store document {staged.identifier}"
            raise StorageUnavailable(msg, original_error=e) from e

        self._delete_stale_versions(keep=staged.version)
        logger.info("Version %s is now current", staged.version)

    def discard(self, staged: StagedDocument) -> None:
        """Delete a staged version directory that never became current."""
        shutil.rmtree(self.data_dir / staged.version, ignore_errors=True)
        logger.info("Discarded staged version %s", staged.version)

    def _swap_pointer(self, version: str) -> None:
        tmp_path = self.data_dir / f".{POINTER_FILE}.{version}.tmp"
        tmp_path.write_text(version, encoding="utf-8")
        os.replace(tmp_path, self.pointer_path)

    def _delete_stale_versions(self, keep: str) -> None:
        for child in self.data_dir.iterdir():
            if (
                child.is_dir()
                and child.name.startswith(VERSION_PREFIX)
                and child.name != keep
            ):
                try:
                    shutil.rmtree(child)
                except OSError:
                    logger.warning("Could not remove stale version %s", child)

    def _resolve(self, identifier: str) -> Path:
        version_dir = self.current_version_dir()
        if version_dir is None:
            msg = "No document has been uploaded yet"
            raise NoDocumentsFound(msg)
        path = version_dir / self.sanitize_filename(identifier)
        if not path.is_file():
            msg = f"Document not found: {identifier}"
            raise NoDocumentsFound(msg)
        return path

    def fetch_bytes(self, identifier: str) -> bytes:
        """Read a document of the current version.

        Returns:
            The stored bytes.

        Raises:
            StorageUnavailable: If the file cannot be read.
        """
        path = self._resolve(identifier)
        try:
            return path.read_bytes()
        except OSError as e:
            logger.exception("Error reading document %s", path)
            msg = f"Failed to read document {identifier}"
            raise StorageUnavailable(msg, original_error=e) from e

    def list_identifiers(self) -> list[str]:
        """List supported files of the current version, sorted by name.

        Returns:
            Filenames in the live version directory.
        """
        version_dir = self.current_version_dir()
        if version_dir is None or not version_dir.is_dir():
            return []
        return sorted(
            path.name
            for path in version_dir.iterdir()
            if path.is_file() and self.is_supported(path.name)
        )

    def exists(self, identifier: str) -> bool:
        """Check for a document in the current version.

        Returns:
            True if the document is present.
        """
        try:
            self._resolve(identifier)
        except NoDocumentsFound:
            return False
        return True


class S3DocumentStorage(DocumentStorage):
    """Object storage in an S3 bucket, with presigned direct uploads."""

    backend = "s3"

    def __init__(
        self,
        bucket: str,
        client: Any = None,
        *,
        region: str | None = None,
        url_expires: int = 60,
        file_extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    ) -> None:
        """Configure the S3 backend.

        Args:
            bucket: Bucket holding uploaded documents.
            client: Preconfigured boto3 S3 client. Built from config if None.
            region: AWS region for the client built here.
            url_expires: Lifetime of presigned upload URLs in seconds.
            file_extensions: Extensions listed by ``list_identifiers``.
        """
        super().__init__(file_extensions)
        self.bucket = bucket
        self.url_expires = url_expires
        self.client = client or boto3.client(
            "s3",
            region_name=region,
            **config.get_aws_credentials(),
        )

    @staticmethod
    def generate_key(suffix: str = ".txt") -> str:
        """Generate a random object key.

        Returns:
            32 hex characters followed by ``suffix``.
        """
        return f"{secrets.token_hex(16)}{suffix}"

    @staticmethod
    def _is_missing(error: ClientError) -> bool:
        return error.response.get("Error", {}).get("Code") in S3_MISSING_CODES

    def stage(
        self,
        data: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StagedDocument:
        """Upload bytes under a server-generated key.

        Objects are visible once written, so ``commit`` has nothing to do and
        ``discard`` deletes the object.

        Returns:
            The staged document, identified by the generated key.

        Raises:
            StorageUnavailable: If the upload fails.
        """
        suffix = Path(filename or "").suffix.lower() or ".txt"
        key = self.generate_key(suffix)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or "text/plain",
            )
        except (BotoCoreError, ClientError) as e:
            logger.exception("Error uploading %s to S3", key)
            msg = f"Failed to store document {key}"
            raise StorageUnavailable(msg, original_error=e) from e

        logger.info("Stored %s in bucket %s (%d bytes)", key, self.bucket, len(data))
        return StagedDocument(identifier=key, size=len(data))

    def discard(self, staged: StagedDocument) -> None:
        """Delete an object whose upload was rolled back."""
        try:
            self.client.delete_object(Bucket=self.bucket, Key=staged.identifier)
        except (BotoCoreError, ClientError):
            logger.warning(
                "Could not delete rolled-back object %s",
                staged.identifier,
                exc_info=True,
            )
            return
        logger.info("Deleted rolled-back object %s", staged.identifier)

    def fetch_bytes(self, identifier: str) -> bytes:
        """Download an object.

        Returns:
            The object body.

        Raises:
            NoDocumentsFound: If the key does not exist.
            StorageUnavailable: On any other S3 failure.
        """
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=identifier)
            return response["Body"].read()
        except ClientError as e:
            if self._is_missing(e):
                msg = f"Document not found: {identifier}"
                raise NoDocumentsFound(msg, original_error=e) from e
            logger.exception("Error loading file from S3: %s", identifier)
            msg = f"Failed to read document {identifier}"
            raise StorageUnavailable(msg, original_error=e) from e
        except BotoCoreError as e:
            logger.exception("Error loading file from S3: %s", identifier)
            msg = f"Failed to read document {identifier}"
            raise StorageUnavailable(msg, original_error=e) from e

    def list_identifiers(self) -> list[str]:
        """List bucket keys with an allowed extension.

        Returns:
            Matching keys in listing order.

        Raises:
            StorageUnavailable: If the listing fails.
        """
        keys: list[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket):
                keys.extend(
                    item["Key"]
                    for item in page.get("Contents", [])
                    if self.is_supported(item["Key"])
                )
        except (BotoCoreError, ClientError) as e:
            logger.exception("Error listing S3 bucket files")
            msg = f"Failed to list bucket {self.bucket}"
            raise StorageUnavailable(msg, original_error=e) from e
        return keys

    def exists(self, identifier: str) -> bool:
        """Check for an object with ``head_object``.

        Returns:
            True if the object exists.

        Raises:
            StorageUnavailable: On S3 failures other than a missing key.
        """
        try:
            self.client.head_object(Bucket=self.bucket, Key=identifier)
        except ClientError as e:
            if self._is_missing(e):
                return False
            logger.exception("Error checking S3 object %s", identifier)
            msg = f"Failed to check document {identifier}"
            raise StorageUnavailable(msg, original_error=e) from e
        except BotoCoreError as e:
            logger.exception("Error checking S3 object %s", identifier)
            msg = f"Failed to check document {identifier}"
            raise StorageUnavailable(msg, original_error=e) from e
        return True

    def create_upload_url(self) -> UploadTicket:
        """Presign a ``put_object`` for a fresh ``.txt`` key.

        Returns:
            UploadTicket with the URL and the key the client must upload to.

        Raises:
            StorageUnavailable: If presigning fails.
        """
        key = self.generate_key(".txt")
        try:
            url = self.client.generate_presigned_url(
                "put_object",
                Params={
                    "Bucket": self.bucket,
                    "Key": key,
                    "ContentType": "text/plain",
                },
                ExpiresIn=self.url_expires,
            )
        except (BotoCoreError, ClientError) as e:
            logger.exception("Error generating upload URL")
            msg = "Failed to generate upload URL"
            raise StorageUnavailable(msg, original_error=e) from e

        return UploadTicket(upload_url=url, identifier=key, expires_in=self.url_expires)


def get_storage(backend: str | None = None) -> DocumentStorage:
    """Return a configured storage backend.

    Raises:
        ValueError: If an unsupported backend is requested.
    """
    name = (backend or config.STORAGE_BACKEND).lower()

    if name == "local":
        return LocalDocumentStorage(config.DATA_DIR)

    if name == "s3":
        if not config.AWS_BUCKET_NAME:
            msg = "AWS_BUCKET_NAME is required for the s3 storage backend"
            raise ValueError(msg)
        return S3DocumentStorage(
            config.AWS_BUCKET_NAME,
            region=config.AWS_REGION,
            url_expires=config.UPLOAD_URL_EXPIRES,
        )

    msg = f"Unsupported storage backend: {backend}"
    raise ValueError(msg)
