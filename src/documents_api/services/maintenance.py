"""
Storage maintenance: status reporting, local to remote migration and its rollback, and
reconciliation of metadata with the backends after crashes or failed deletes.
"""

import logging
from typing import Optional

from database.document_store import DocumentStore
from documents_api.errors import (
    IntegrityMismatch,
    InvalidInput,
    NotFound,
    ReconciliationRequired,
    StorageError,
    Unsupported,
)
from documents_api.schemas import (
    Document,
    DocumentStatus,
    MigrationItem,
    MigrationReport,
    NewDocument,
    ReconcileIssue,
    ReconciliationReport,
    StorageStatusResponse,
    StorageType,
)
from documents_api.services.coordinator import DocumentCoordinator
from documents_api.storage.base import StorageBackend, generate_document_key
from documents_api.utils.decorators import log_execution_time

logger = logging.getLogger(__name__)


class StorageMaintenance:
    """Operator facing operations over the whole document set."""

    def __init__(
        self,
        store: DocumentStore,
        local: StorageBackend,
        remote: Optional[StorageBackend],
        coordinator: DocumentCoordinator,
        *,
        bucket_label: Optional[str] = None,
    ):
        self.store = store
        self.local = local
        self.remote = remote
        self.coordinator = coordinator
        self.bucket_label = bucket_label

    def status(self) -> StorageStatusResponse:
        """Counts per backend plus a fresh health probe of the remote backend."""
        stats = self.store.storage_stats()
        remote = self.remote
        if remote is None:
            return StorageStatusResponse(
                configured=False,
                remote_healthy=False,
                remote_status_reason="remote storage is not configured",
                stats=stats,
                can_migrate=False,
            )

        health = remote.health_check()
        return StorageStatusResponse(
            configured=True,
            bucket_name=self.bucket_label,
            remote_healthy=health.healthy,
            remote_status_reason=health.reason,
            corrected_region=getattr(remote, "corrected_region", None),
            stats=stats,
            can_migrate=health.healthy and stats.local_count > 0,
        )

    def _require_healthy_remote(self) -> StorageBackend:
        remote = self.remote
        if remote is None:
            raise Unsupported("Remote storage is not configured; configure a bucket before migrating")
        health = remote.health_check()
        if not health.healthy:
            raise Unsupported(f"Remote storage is not healthy ({health.reason}); migration postponed")
        return remote

    @log_execution_time
    def migrate(self, batch_size: int = 10, dry_run: bool = False, delete_local: bool = True) -> MigrationReport:
        """Copy a batch of local documents to the remote backend.

        Each migrated document becomes a NEW remote document and the local record is
        retired. With `delete_local` the local file is deleted through the coordinator;
        without it the file stays on disk as a backup that no record points to.
        A failure affects only its own document.
        """
        remote = self._require_healthy_remote()
        candidates = self.store.list_active_by_storage(StorageType.LOCAL, limit=batch_size)
        report = MigrationReport(dry_run=dry_run, delete_local=delete_local, total=len(candidates))
        logger.info(
            f"Migrating {len(candidates)} local documents to {remote.describe()} "
            f"(dry_run={dry_run}, delete_local={delete_local})"
        )

        for document in candidates:
            if dry_run:
                report.migrated.append(MigrationItem(document_id=document.id, file_name=document.file_name))
                continue
            try:
                report.migrated.append(
                    self._transfer(document, self.local, remote, delete_source=delete_local)
                )
            except StorageError as e:
                logger.error(f"Migration of document {document.id} failed: {type(e).__name__}: {e}")
                report.failed.append(
                    MigrationItem(document_id=document.id, file_name=document.file_name, error=f"{type(e).__name__}: {e}")
                )

        logger.info(
            f"Migration finished: {len(report.migrated)} migrated, {len(report.failed)} failed of {report.total}"
        )
        return report

    @log_execution_time
    def rollback(self, document_id: int) -> MigrationItem:
        """Bring one remote document back to local disk.

        The bytes are copied into a NEW local document, then the remote document is
        deleted through the coordinator.
        """
        document = self.coordinator.get_document(document_id)
        if document.storage_type != StorageType.REMOTE:
            raise InvalidInput(
                f"Document {document_id} is already stored locally",
                status_code=409,
            )
        remote = self.coordinator.backend_for(document)
        logger.info(f"Rolling back document {document_id} from {remote.describe()} to local storage")
        return self._transfer(document, remote, self.local, delete_source=True)

    def _transfer(self, document: Document, source: StorageBackend, target: StorageBackend,
                  *, delete_source: bool) -> MigrationItem:
        """Copy one document's bytes into a new document on `target` and retire the old one."""
        source_info = source.stat(document.storage_key)
        if source_info.size != document.file_size:
            raise IntegrityMismatch(
                f"{source.name} object holds {source_info.size} bytes but the record says {document.file_size}",
                backend=source.name,
            )

        new_key = generate_document_key(document.owner, document.document_type.value, document.file_name)
        with source.get(document.storage_key) as stream:
            result = target.put(
                new_key,
                stream,
                document.file_size,
                document.mime_type,
                {"owner": str(document.owner), "document-type": document.document_type.value,
                 "copied-from": str(document.id)},
            )

        try:
            new_document = self.store.create(NewDocument(
                owner=document.owner,
                document_type=document.document_type,
                file_name=document.file_name,
                storage_type=target.storage_type,
                storage_key=result.storage_key,
                file_size=result.size,
                mime_type=document.mime_type,
                signed_date=document.signed_date,
                expiration_date=document.expiration_date,
                notes=document.notes,
                etag=result.etag,
                version_id=result.version_id,
                is_verified=document.is_verified,
                verified_by=document.verified_by,
                verification_date=document.verification_date,
            ))
        except StorageError as e:
            try:
                target.delete(result.storage_key)
            except StorageError as cleanup_error:
                logger.critical(f"Copied object {target.name}:{result.storage_key} is orphaned: {cleanup_error}")
                raise ReconciliationRequired(
                    f"Record for the copy of document {document.id} failed ({e}) and "
                    f"{target.name}:{result.storage_key} could not be removed: {cleanup_error}",
                    document_id=document.id,
                    storage_key=result.storage_key,
                    backend=target.name,
                ) from cleanup_error
            raise

        item = MigrationItem(
            document_id=document.id,
            file_name=document.file_name,
            new_document_id=new_document.id,
            storage_key=new_document.storage_key,
        )
        if delete_source:
            try:
                self.coordinator.delete(document.id)
            except StorageError as e:
                logger.error(f"Document {document.id} copied to {new_document.id} but its {source.name} copy remains: {e}")
                item.error = f"{source.name} copy not removed: {type(e).__name__}: {e}"
        else:
            self.store.remove(document.id)
            item.retained_storage_key = document.storage_key
            logger.info(f"Kept {source.name} file {document.storage_key} of retired document {document.id}")
        logger.info(
            f"Moved document {document.id} -> {new_document.id} ({target.name}:{result.storage_key})"
        )
        return item

    @log_execution_time
    def reconcile(self, verify_objects: bool = False) -> ReconciliationReport:
        """Bring metadata and backends back in line.

        Finishes deletes interrupted mid-way, retries undeletable ones, flags remote
        documents without integrity tokens and, with `verify_objects`, checks that every
        active record still has an object of the recorded size.
        """
        report = ReconciliationReport()

        pending = (
            self.store.list_by_status(DocumentStatus.DELETING)
            + self.store.list_by_status(DocumentStatus.UNDELETABLE)
        )
        for document in pending:
            try:
                self.coordinator.delete(document.id)
                report.completed_deletes.append(document.id)
            except StorageError as e:
                report.undeletable.append(self._issue(document, f"{type(e).__name__}: {e}"))

        for document in self.store.list_active():
            if document.integrity_degraded:
                report.degraded_integrity.append(document.id)
            if verify_objects:
                self._verify_object(document, report)

        if report.healthy:
            logger.info(f"Reconciliation clean, {len(report.completed_deletes)} pending deletes completed")
        else:
            logger.warning(
                f"Reconciliation found problems: {len(report.undeletable)} undeletable, "
                f"{len(report.degraded_integrity)} without integrity tokens, "
                f"{len(report.missing_objects)} missing objects, "
                f"{len(report.size_mismatches)} size mismatches, "
                f"{len(report.unverified)} unverified"
            )
        return report

    def _verify_object(self, document: Document, report: ReconciliationReport) -> None:
        try:
            info = self.coordinator.backend_for(document).stat(document.storage_key)
        except NotFound:
            report.missing_objects.append(self._issue(document, "object not found"))
            return
        except StorageError as e:
            report.unverified.append(self._issue(document, f"{type(e).__name__}: {e}"))
            return
        if info.size != document.file_size:
            report.size_mismatches.append(
                self._issue(document, f"backend reports {info.size} bytes, record says {document.file_size}")
            )

    @staticmethod
    def _issue(document: Document, problem: str) -> ReconcileIssue:
        return ReconcileIssue(
            document_id=document.id,
            storage_type=document.storage_type,
            storage_key=document.storage_key,
            problem=problem,
        )
