"""Contract shared by every storage backend."""

import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Iterator, Optional

from documents_api.schemas import OwnerRef, StorageType

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class PutResult:
    """Outcome of a successful `put`."""
    storage_key: str
    size: int
    etag: Optional[str] = None
    version_id: Optional[str] = None


@dataclass(frozen=True)
class ObjectInfo:
    """Backend-reported facts about a stored object."""
    size: int
    etag: Optional[str] = None
    version_id: Optional[str] = None
    content_type: Optional[str] = None


@dataclass(frozen=True)
class PresignedURL:
    """Time boxed, read-only URL scoped to a single object."""
    url: str
    storage_key: str
    expires_at: datetime
    ttl_seconds: int

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


@dataclass(frozen=True)
class HealthStatus:
    healthy: bool
    reason: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def ok(cls) -> "HealthStatus":
        return cls(healthy=True)

    @classmethod
    def degraded(cls, reason: str) -> "HealthStatus":
        return cls(healthy=False, reason=reason)


class StorageBackend(ABC):
    """Base class for storage backends (remote object store, local disk)"""

    storage_type: StorageType

    @abstractmethod
    def put(self, key: str, stream: BinaryIO, size: int, mime_type: str,
            metadata: Optional[dict] = None) -> PutResult:
        """Store `size` bytes read from `stream` under `key`.

        Either the whole stream lands under `key` or no object exists there afterwards.

        Args:
            key: Storage key to write
            stream: Readable binary stream positioned at the first byte
            size: Declared number of bytes; the stored size must match it
            mime_type: Content type recorded with the object
            metadata: Optional string metadata attached to the object

        Returns:
            PutResult with the storage key and any integrity tokens

        Raises:
            IntegrityMismatch: the backend stored a different number of bytes
        """

    @abstractmethod
    def get(self, key: str) -> BinaryIO:
        """Open the object for reading. The caller closes the returned stream.

        Raises:
            NotFound: no object exists at `key`
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the object.

        Raises:
            NotFound: no object existed at `key`; deleting a missing key never succeeds
        """

    @abstractmethod
    def stat(self, key: str) -> ObjectInfo:
        """Return size and integrity tokens of a stored object.

        Raises:
            NotFound: no object exists at `key`
        """

    @abstractmethod
    def presign(self, key: str, ttl_seconds: int) -> PresignedURL:
        """Issue a read-only URL for one object valid for `ttl_seconds`.

        Raises:
            Unsupported: the backend cannot issue URLs
        """

    @abstractmethod
    def health_check(self) -> HealthStatus:
        """Probe the backend and report healthy or degraded(reason)."""

    @property
    def name(self) -> str:
        return self.storage_type.value

    @property
    def is_degraded(self) -> bool:
        """True when a previous health check already reported the backend unusable."""
        return False

    def describe(self) -> str:
        """Short location description for log lines."""
        return self.name


def _sanitize(value: str, pattern: str) -> str:
    return re.sub(pattern, "_", value).strip("._") or "file"


def generate_document_key(owner: OwnerRef, document_type: str, file_name: str) -> str:
    """Build a structured, collision-free key for a new document.

    Layout: ``documents/<owner-kind>-<owner-id>/<type>/<uuid>-<file name>``
    """
    sanitized_type = _sanitize(document_type, r"[^a-zA-Z0-9\-_]")
    sanitized_name = _sanitize(file_name, r"[^a-zA-Z0-9\-_.]")
    return f"documents/{owner}/{sanitized_type}/{uuid.uuid4().hex}-{sanitized_name}"


def iter_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield `stream` in chunks and close it once exhausted or abandoned."""
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()
