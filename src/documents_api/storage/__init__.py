"""
Storage backends for the Documents API.

Two implementations share the `StorageBackend` contract: `S3Backend` (remote object
store, with region correction and retries) and `LocalBackend` (fallback on local disk).
"""

from documents_api.storage.base import (
    HealthStatus,
    ObjectInfo,
    PresignedURL,
    PutResult,
    StorageBackend,
    generate_document_key,
)
from documents_api.storage.local import LocalBackend
from documents_api.storage.s3 import S3Backend

__all__ = [
    "HealthStatus",
    "LocalBackend",
    "ObjectInfo",
    "PresignedURL",
    "PutResult",
    "S3Backend",
    "StorageBackend",
    "generate_document_key",
]
