"""
Object storage sink: streaming uploads, signed URLs, listing and deletion on Google Cloud Storage
"""

from __future__ import annotations

import logging
import urllib.parse
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import timedelta

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage

from zoomvault.exceptions import StorageError, UploadFailedError, ZoomVaultError
from zoomvault.models import ObjectInfo

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

# V4 signed URLs cannot outlive seven days
MAX_SIGNED_URL_TTL = timedelta(days=7)

# Resumable upload chunk size; must be a multiple of 256 KiB
DEFAULT_UPLOAD_CHUNK_SIZE = 8 * 1024 * 1024


@dataclass
class BulkDeleteResult:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": dict(self.errors),
        }


class ObjectStore(ABC):
    """Durable object storage the recordings are transferred into"""

    @abstractmethod
    def exists(self, name: str) -> bool: ...

    @abstractmethod
    def upload(
        self,
        chunks: Iterable[bytes],
        total_length: int,
        name: str,
        content_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Stream ``chunks`` into object ``name`` and return its destination reference.

        ``on_progress`` receives whole percentages; it is called with 100
        only once the object has been committed. If reading ``chunks``
        raises, or the sink rejects the upload, no object is committed.
        """

    @abstractmethod
    def get_access_url(self, name: str, ttl: timedelta) -> str: ...

    @abstractmethod
    def get_public_url(self, name: str) -> str: ...

    @abstractmethod
    def list(self, prefix: str | None = None) -> list[ObjectInfo]: ...

    @abstractmethod
    def delete(self, name: str) -> bool:
        """Delete ``name``; returns False if it did not exist"""

    def bulk_delete(self, names: Iterable[str]) -> BulkDeleteResult:
        """Delete every name, reporting aggregate counts instead of stopping at a failure"""
        result = BulkDeleteResult()
        for name in names:
            result.total += 1
            try:
                deleted = self.delete(name)
            except StorageError as e:
                deleted = False
                result.errors[name] = e.message
            if deleted:
                result.succeeded += 1
            else:
                result.failed += 1
                result.errors.setdefault(name, "Object not found")
        logger.info(
            "Bulk delete completed: %d successful, %d failed", result.succeeded, result.failed
        )
        return result


class ChunkStream:
    """Read-only file object over an iterator of byte chunks.

    Buffers at most one requested read plus one source chunk, and reports
    progress in whole percents (capped at 99) as bytes are consumed.
    """

    def __init__(
        self,
        chunks: Iterable[bytes],
        total_length: int,
        on_progress: ProgressCallback | None = None,
    ):
        self._chunks: Iterator[bytes] = iter(chunks)
        self._buffer = bytearray()
        self._position = 0
        self._exhausted = False
        self.total_length = total_length
        self._on_progress = on_progress
        self._last_percent = -1

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def tell(self) -> int:
        return self._position

    def read(self, size: int = -1) -> bytes:
        while not self._exhausted and (size is None or size < 0 or len(self._buffer) < size):
            try:
                chunk = next(self._chunks)
            except StopIteration:
                self._exhausted = True
                break
            self._buffer.extend(chunk)

        if size is None or size < 0:
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        self._position += len(data)
        self._report()
        return data

    def _report(self) -> None:
        if self._on_progress is None or self.total_length <= 0:
            return
        percent = min(99, self._position * 100 // self.total_length)
        if percent > self._last_percent:
            self._last_percent = percent
            self._on_progress(percent)


class GCSObjectStore(ObjectStore):
    """Google Cloud Storage bucket used as the transfer sink"""

    def __init__(
        self,
        bucket_name: str,
        *,
        client: storage.Client | None = None,
        project: str | None = None,
        credentials_file: str | None = None,
        chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE,
        timeout: float = 120,
    ):
        if not bucket_name:
            raise StorageError("A bucket name is required")
        if chunk_size <= 0 or chunk_size % (256 * 1024):
            raise ValueError("chunk_size must be a positive multiple of 256 KiB")

        if client is None:
            if credentials_file:
                client = storage.Client.from_service_account_json(credentials_file, project=project)
            else:
                client = storage.Client(project=project)
        self.client = client
        self.bucket_name = bucket_name
        self.bucket = client.bucket(bucket_name)
        self.chunk_size = chunk_size
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"GCSObjectStore(bucket_name={self.bucket_name!r})"

    def destination_ref(self, name: str) -> str:
        return f"gs://{self.bucket_name}/{name}"

    def exists(self, name: str) -> bool:
        try:
            return bool(self.bucket.blob(name).exists())
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"Could not check {name} in {self.bucket_name}", str(e)) from e

    def upload(
        self,
        chunks: Iterable[bytes],
        total_length: int,
        name: str,
        content_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        # A fixed chunk_size forces a chunked resumable upload: the object only
        # exists once the final chunk is accepted, and an exception raised while
        # reading leaves the session unfinalized.
        blob = self.bucket.blob(name, chunk_size=self.chunk_size)
        stream = ChunkStream(chunks, total_length, on_progress)

        logger.info("Uploading %s (%d bytes, %s)", name, total_length, content_type)
        try:
            blob.upload_from_file(
                stream,
                rewind=False,
                size=total_length or None,
                content_type=content_type,
                timeout=self.timeout,
            )
        except ZoomVaultError:
            raise
        except Exception as e:
            raise UploadFailedError(
                f"Upload of {name} to {self.bucket_name} failed",
                details=f"{type(e).__name__}: {e}",
            ) from e

        if on_progress is not None:
            on_progress(100)
        logger.info("Uploaded %s", self.destination_ref(name))
        return self.destination_ref(name)

    def get_access_url(self, name: str, ttl: timedelta) -> str:
        if ttl <= timedelta(0) or ttl > MAX_SIGNED_URL_TTL:
            raise ValueError(f"Signed URL ttl must be between 0 and {MAX_SIGNED_URL_TTL}")
        try:
            return str(
                self.bucket.blob(name).generate_signed_url(
                    version="v4", expiration=ttl, method="GET"
                )
            )
        except (gcs_exceptions.GoogleAPIError, AttributeError, ValueError) as e:
            # Signing needs service-account credentials; user credentials raise AttributeError
            raise StorageError(f"Could not sign a URL for {name}", str(e)) from e

    def get_public_url(self, name: str) -> str:
        return f"https://storage.googleapis.com/{self.bucket_name}/{urllib.parse.quote(name)}"

    def list(self, prefix: str | None = None) -> list[ObjectInfo]:
        try:
            blobs = self.client.list_blobs(self.bucket_name, prefix=prefix or None)
            return [
                ObjectInfo(
                    name=blob.name,
                    size=int(blob.size or 0),
                    content_type=blob.content_type,
                    created_at=blob.time_created,
                    updated_at=blob.updated,
                )
                for blob in blobs
            ]
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"Failed to list objects in {self.bucket_name}", str(e)) from e

    def delete(self, name: str) -> bool:
        try:
            self.bucket.blob(name).delete()
        except gcs_exceptions.NotFound:
            logger.info("Delete skipped, %s does not exist", name)
            return False
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"Failed to delete {name}", str(e)) from e
        logger.info("Deleted %s", self.destination_ref(name))
        return True
