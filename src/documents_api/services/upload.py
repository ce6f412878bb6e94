"""
Upload pipeline.

Validates an upload, stores the bytes on the remote backend (falling back to local
disk when the remote one cannot take them) and writes the metadata record last.
"""

import logging
from datetime import date
from typing import BinaryIO, Iterable, Optional, Tuple, Union

from database.document_store import DocumentStore
from documents_api.errors import (
    FALLBACK_ERRORS,
    BackendUnavailable,
    InvalidInput,
    NotFound,
    ReconciliationRequired,
    StorageError,
)
from documents_api.schemas import Document, DocumentType, NewDocument, OwnerRef
from documents_api.storage.base import PutResult, StorageBackend, generate_document_key
from documents_api.utils.decorators import log_execution_time

logger = logging.getLogger(__name__)

MAX_FILE_NAME_LENGTH = 255


class UploadPipeline:
    """Turns a validated upload into exactly one fully present document.

    Args:
        store: Metadata store receiving the record
        local: Local filesystem backend, always available
        remote: Remote object backend, or None when no bucket is configured
        max_size_bytes: Largest accepted upload
        allowed_mime_types: Declared MIME types accepted for upload
        allow_local_fallback: Store on local disk when the remote backend refuses the write
    """

    def __init__(
        self,
        store: DocumentStore,
        local: StorageBackend,
        remote: Optional[StorageBackend] = None,
        *,
        max_size_bytes: int,
        allowed_mime_types: Iterable[str],
        allow_local_fallback: bool = True,
    ):
        self.store = store
        self.local = local
        self.remote = remote
        self.max_size_bytes = max_size_bytes
        self.allowed_mime_types = frozenset(mime.lower() for mime in allowed_mime_types)
        self.allow_local_fallback = allow_local_fallback

    def validate(
        self,
        document_type: Union[DocumentType, str],
        file_name: str,
        size: int,
        mime_type: str,
    ) -> Tuple[DocumentType, str, str]:
        """Check an upload against the vocabulary and the configured limits.

        Returns:
            The parsed document type, the cleaned file name and the normalized MIME type

        Raises:
            InvalidInput: with status 400, 413 (too large) or 415 (MIME type not allowed)
        """
        try:
            parsed_type = DocumentType(document_type)
        except ValueError:
            allowed = ", ".join(t.value for t in DocumentType)
            raise InvalidInput(f"Unknown document type {document_type!r}. Must be one of: {allowed}") from None

        clean_name = (file_name or "").strip()
        if not clean_name:
            raise InvalidInput("File name is required")
        if len(clean_name) > MAX_FILE_NAME_LENGTH:
            raise InvalidInput(f"File name exceeds {MAX_FILE_NAME_LENGTH} characters")
        if "\x00" in clean_name or "/" in clean_name or "\\" in clean_name:
            raise InvalidInput(f"File name contains path separators or control characters: {clean_name!r}")

        if size <= 0:
            raise InvalidInput("Uploaded file is empty")
        if size > self.max_size_bytes:
            raise InvalidInput(
                f"File size {size} bytes exceeds the limit of {self.max_size_bytes} bytes",
                status_code=413,
            )

        normalized_mime = (mime_type or "").split(";")[0].strip().lower()
        if normalized_mime not in self.allowed_mime_types:
            raise InvalidInput(
                f"File type {mime_type!r} is not allowed. Allowed types: {', '.join(sorted(self.allowed_mime_types))}",
                status_code=415,
            )

        return parsed_type, clean_name, normalized_mime

    @log_execution_time
    def upload(
        self,
        owner: OwnerRef,
        document_type: Union[DocumentType, str],
        stream: BinaryIO,
        size: int,
        mime_type: str,
        file_name: str,
        notes: Optional[str] = None,
        signed_date: Optional[date] = None,
        expiration_date: Optional[date] = None,
    ) -> Document:
        """Store an uploaded file and create its document record.

        `stream` must be seekable: a fallback write replays it from its current position.

        Raises:
            InvalidInput: the upload was rejected before any backend was touched
            StorageError: no backend accepted the bytes
            MetadataError: the record could not be written; the stored object was removed
            ReconciliationRequired: the record could not be written and neither could the object be removed
        """
        parsed_type, clean_name, normalized_mime = self.validate(document_type, file_name, size, mime_type)

        key = generate_document_key(owner, parsed_type.value, clean_name)
        object_metadata = {
            "owner": str(owner),
            "document-type": parsed_type.value,
            "original-name": clean_name.encode("ascii", "replace").decode("ascii"),
        }
        backend, result = self._store_bytes(key, stream, size, normalized_mime, object_metadata)

        new_document = NewDocument(
            owner=owner,
            document_type=parsed_type,
            file_name=clean_name,
            storage_type=backend.storage_type,
            storage_key=result.storage_key,
            file_size=result.size,
            mime_type=normalized_mime,
            signed_date=signed_date,
            expiration_date=expiration_date,
            notes=notes,
            etag=result.etag,
            version_id=result.version_id,
        )

        try:
            return self.store.create(new_document)
        except Exception as e:
            logger.error(f"Metadata write failed for {backend.name}:{result.storage_key}, removing stored object: {e}")
            self._remove_orphan(backend, result.storage_key, e)
            raise

    def _store_bytes(self, key: str, stream: BinaryIO, size: int, mime_type: str,
                     metadata: dict) -> Tuple[StorageBackend, PutResult]:
        """Write to the remote backend when possible, otherwise to local disk."""
        remote = self.remote
        if remote is None:
            return self.local, self.local.put(key, stream, size, mime_type, metadata)

        if remote.is_degraded:
            health = getattr(remote, "health", None)
            reason = health.reason if health else "health check failed"
            if not self.allow_local_fallback:
                raise BackendUnavailable(
                    f"Remote storage is degraded ({reason}) and local fallback is disabled",
                    backend=remote.name,
                )
            logger.warning(
                f"Remote storage is degraded ({reason}), storing {key} on local disk instead "
                f"[{remote.describe()}]"
            )
            return self.local, self.local.put(key, stream, size, mime_type, metadata)

        start = stream.tell()
        try:
            return remote, remote.put(key, stream, size, mime_type, metadata)
        except FALLBACK_ERRORS as e:
            if not self.allow_local_fallback:
                logger.error(f"Remote upload of {key} failed and local fallback is disabled: {type(e).__name__}: {e}")
                raise
            logger.warning(
                f"Falling back to local storage for {key}: remote put failed with "
                f"{type(e).__name__} (code={e.code}) [{remote.describe()}]: {e}"
            )

        stream.seek(start)
        return self.local, self.local.put(key, stream, size, mime_type, metadata)

    def _remove_orphan(self, backend: StorageBackend, key: str, cause: Exception) -> None:
        try:
            backend.delete(key)
        except NotFound:
            logger.warning(f"Orphaned object {backend.name}:{key} was already gone")
        except StorageError as cleanup_error:
            raise ReconciliationRequired(
                f"Metadata write failed ({cause}) and the stored object {backend.name}:{key} "
                f"could not be removed: {cleanup_error}",
                storage_key=key,
                backend=backend.name,
            ) from cleanup_error
        else:
            logger.info(f"Removed orphaned object {backend.name}:{key}")
