"""
Download/delete coordinator.

Every read and delete starts from the document record and goes to the backend the
record names, never to whichever backend is currently preferred for uploads.
"""

import logging
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple

from database.document_store import DocumentStore
from documents_api.errors import (
    BackendUnavailable,
    InvalidInput,
    NotFound,
    StorageError,
    Unsupported,
)
from documents_api.schemas import DeleteOutcome, Document, OwnerRef, StorageType
from documents_api.storage.base import PresignedURL, StorageBackend
from documents_api.utils.decorators import log_execution_time

logger = logging.getLogger(__name__)


@dataclass
class Download:
    """Either an open byte stream or a presigned URL for one document."""
    document: Document
    stream: Optional[BinaryIO] = None
    presigned: Optional[PresignedURL] = None

    @property
    def is_redirect(self) -> bool:
        return self.presigned is not None


class DocumentCoordinator:
    def __init__(
        self,
        store: DocumentStore,
        local: StorageBackend,
        remote: Optional[StorageBackend] = None,
        *,
        default_ttl_seconds: int = 300,
        max_ttl_seconds: int = 86400,
    ):
        self.store = store
        self.local = local
        self.remote = remote
        self.default_ttl_seconds = default_ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds

    def backend_for(self, document: Document) -> StorageBackend:
        """Backend named by the record itself."""
        if document.storage_type == StorageType.LOCAL:
            return self.local
        if self.remote is None:
            raise BackendUnavailable(
                f"Document {document.id} is stored remotely but no remote backend is configured",
                backend=StorageType.REMOTE.value,
            )
        return self.remote

    def get_document(self, document_id: int) -> Document:
        document = self.store.get_active(document_id)
        if document is None:
            raise NotFound(f"Document {document_id} not found")
        return document

    def list_documents(self, owner: OwnerRef) -> List[Document]:
        return self.store.list_by_owner(owner)

    def open_stream(self, document_id: int) -> Tuple[Document, BinaryIO]:
        """Open the bytes of a document for streaming. The caller closes the stream."""
        document = self.get_document(document_id)
        try:
            stream = self.backend_for(document).get(document.storage_key)
        except NotFound:
            logger.error(
                f"Document {document_id} points at missing object "
                f"{document.storage_type.value}:{document.storage_key}"
            )
            raise NotFound(f"Stored file for document {document_id} not found") from None
        return document, stream

    def presign(self, document_id: int, ttl_seconds: Optional[int] = None) -> Tuple[Document, PresignedURL]:
        """Issue a read-only URL for one remote document.

        Raises:
            InvalidInput: the lifetime is not between 1 second and the configured maximum
            Unsupported: the document is stored on local disk
        """
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0 or ttl > self.max_ttl_seconds:
            raise InvalidInput(f"expires_in must be between 1 and {self.max_ttl_seconds} seconds")

        document = self.get_document(document_id)
        if document.storage_type != StorageType.REMOTE:
            raise Unsupported(
                f"Document {document_id} is stored locally; presigned URLs are only available for remote documents",
                backend=document.storage_type.value,
            )
        return document, self.backend_for(document).presign(document.storage_key, ttl)

    @log_execution_time
    def download(self, document_id: int, prefer_url: Optional[bool] = None) -> Download:
        """Resolve a document into a stream or a presigned URL.

        Args:
            document_id: Document to read
            prefer_url: True asks for a URL, False for a stream. When unset, remote
                images get a URL and everything else streams through the API.
                Local documents always stream.
        """
        document = self.get_document(document_id)
        wants_url = prefer_url if prefer_url is not None else document.mime_type.startswith("image/")

        if wants_url and document.storage_type == StorageType.REMOTE:
            _, presigned = self.presign(document_id)
            return Download(document=document, presigned=presigned)

        document, stream = self.open_stream(document_id)
        return Download(document=document, stream=stream)

    @log_execution_time
    def delete(self, document_id: int) -> DeleteOutcome:
        """Delete the object, then the record.

        The record is marked `deleting` before the backend is touched. A backend
        NotFound counts as already consistent. Any other backend failure keeps the
        record, marked `undeletable`, and re-raises.

        Raises:
            NotFound: no document with this id ever existed
        """
        document = self.store.get(document_id)
        if document is None:
            if self.store.is_tombstoned(document_id):
                logger.info(f"Document {document_id} was already deleted")
                return DeleteOutcome.ALREADY_DELETED
            raise NotFound(f"Document {document_id} not found")

        self.store.mark_deleting(document_id)
        location = f"{document.storage_type.value}:{document.storage_key}"
        try:
            self.backend_for(document).delete(document.storage_key)
            outcome = DeleteOutcome.DELETED
        except NotFound:
            logger.warning(f"Object {location} of document {document_id} was already gone, removing record")
            outcome = DeleteOutcome.ALREADY_GONE
        except StorageError as e:
            reason = f"{type(e).__name__}: {e}"
            self.store.mark_undeletable(document_id, reason)
            logger.error(f"Could not delete object {location} of document {document_id}, marked undeletable: {reason}")
            raise

        if not self.store.remove(document_id):
            # a concurrent delete removed the row between our read and now
            return DeleteOutcome.ALREADY_DELETED
        logger.info(f"Deleted document {document_id} ({location})")
        return outcome
