from typing import Optional

from fastapi import APIRouter, Depends

from documents_api.dependencies import get_maintenance
from documents_api.schemas import (
    MigrateRequest,
    MigrationItem,
    MigrationReport,
    ReconcileRequest,
    ReconciliationReport,
    StorageStatusResponse,
)
from documents_api.services.maintenance import StorageMaintenance

router = APIRouter()


@router.get("/storage/status", response_model=StorageStatusResponse)
def get_storage_status(
    maintenance: StorageMaintenance = Depends(get_maintenance),
) -> StorageStatusResponse:
    """
    Report remote storage configuration and health with per-backend document counts.

    The bucket name is masked and credentials are never returned.
    """
    return maintenance.status()


@router.post("/storage/migrate", response_model=MigrationReport)
def migrate_local_documents(
    body: Optional[MigrateRequest] = None,
    maintenance: StorageMaintenance = Depends(get_maintenance),
) -> MigrationReport:
    """
    Move a batch of locally stored documents to remote storage.

    Every migrated document gets a new id. The local original is deleted afterwards
    unless `delete_local` is false, in which case its file is kept on disk.
    """
    body = body or MigrateRequest()
    return maintenance.migrate(batch_size=body.batch_size, dry_run=body.dry_run, delete_local=body.delete_local)


@router.post("/storage/reconcile", response_model=ReconciliationReport)
def reconcile_storage(
    body: Optional[ReconcileRequest] = None,
    maintenance: StorageMaintenance = Depends(get_maintenance),
) -> ReconciliationReport:
    """Finish interrupted deletes and report records that disagree with their backend."""
    body = body or ReconcileRequest()
    return maintenance.reconcile(verify_objects=body.verify_objects)


@router.post("/storage/rollback/{document_id}", response_model=MigrationItem)
def rollback_document(
    document_id: int,
    maintenance: StorageMaintenance = Depends(get_maintenance),
) -> MigrationItem:
    """
    Move one remote document back to local storage.

    The document gets a new id and the remote copy is deleted. Documents already on
    local storage are rejected with 409.
    """
    return maintenance.rollback(document_id)
