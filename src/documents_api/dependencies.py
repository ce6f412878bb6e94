"""Engine wiring and FastAPI dependencies."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from database.document_store import DocumentStore
from documents_api.config.settings import Settings
from documents_api.services.coordinator import DocumentCoordinator
from documents_api.services.maintenance import StorageMaintenance
from documents_api.services.upload import UploadPipeline
from documents_api.storage import LocalBackend, S3Backend, StorageBackend

logger = logging.getLogger(__name__)


@dataclass
class StorageEngine:
    """Backends, metadata store and the services composed over them."""
    settings: Settings
    store: DocumentStore
    local: StorageBackend
    remote: Optional[StorageBackend]
    uploads: UploadPipeline
    coordinator: DocumentCoordinator
    maintenance: StorageMaintenance


def build_engine(settings: Settings, remote: Optional[StorageBackend] = None) -> StorageEngine:
    """Build the engine described by `settings`.

    Args:
        settings: Application settings
        remote: Remote backend to use instead of building one from the settings

    Returns:
        StorageEngine with an initialized metadata store
    """
    store = DocumentStore(settings.database_path)
    store.init_db()

    local = LocalBackend(settings.storage_dir)
    if remote is None and settings.remote_enabled:
        remote = S3Backend.from_settings(settings)
    if remote is None:
        logger.warning("S3_BUCKET_NAME is not set, documents will be stored on local disk only")

    coordinator = DocumentCoordinator(
        store,
        local,
        remote,
        default_ttl_seconds=settings.presign_default_ttl_seconds,
        max_ttl_seconds=settings.presign_max_ttl_seconds,
    )
    return StorageEngine(
        settings=settings,
        store=store,
        local=local,
        remote=remote,
        uploads=UploadPipeline(
            store,
            local,
            remote,
            max_size_bytes=settings.max_upload_size_bytes,
            allowed_mime_types=settings.allowed_mime_types,
            allow_local_fallback=settings.allow_local_fallback,
        ),
        coordinator=coordinator,
        maintenance=StorageMaintenance(
            store,
            local,
            remote,
            coordinator,
            bucket_label=settings.masked_bucket_name,
        ),
    )


def get_engine(request: Request) -> StorageEngine:
    return request.app.state.engine


def get_upload_pipeline(request: Request) -> UploadPipeline:
    return get_engine(request).uploads


def get_coordinator(request: Request) -> DocumentCoordinator:
    return get_engine(request).coordinator


def get_maintenance(request: Request) -> StorageMaintenance:
    return get_engine(request).maintenance
