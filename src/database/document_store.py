"""
Metadata store for compliance documents.

Keeps one row per stored document and a tombstone per removed row, so the delete
coordinator can tell "deleted earlier" apart from "never existed".
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from documents_api.errors import MetadataError
from documents_api.schemas import (
    Document,
    DocumentStatus,
    NewDocument,
    OwnerRef,
    StorageStats,
    StorageType,
)

logger = logging.getLogger(__name__)

DOCUMENT_COLUMNS = (
    "id, employee_id, location_id, document_type, file_name, storage_type, storage_key, "
    "file_size, mime_type, uploaded_date, signed_date, expiration_date, is_verified, "
    "verified_by, verification_date, notes, etag, version_id, status, status_reason, created_at"
)


class DocumentStore:
    """CRUD over document records, keyed by id with secondary lookup by owner."""

    def __init__(self, db_path: str = "documents.db"):
        self.db_path = db_path

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor inside a transaction; sqlite errors become MetadataError."""
        conn = None
        try:
            conn = self._get_connection()
            cursor = conn.cursor()
            yield cursor
            conn.commit()
        except sqlite3.Error as e:
            if conn is not None:
                conn.rollback()
            logger.error(f"Metadata store failed to {action}: {e}")
            raise MetadataError(f"Metadata store failed to {action}: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    def init_db(self) -> None:
        """Create tables, indexes and the storage-location guard."""
        with self._transaction("initialize schema") as cursor:
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    employee_id INTEGER NULL,
                    location_id INTEGER NULL,
                    document_type VARCHAR(100) NOT NULL,
                    file_name VARCHAR(255) NOT NULL,
                    storage_type VARCHAR(10) NOT NULL CHECK (storage_type IN ('remote', 'local')),
                    storage_key VARCHAR(500) NOT NULL,
                    file_size INTEGER NOT NULL,
                    mime_type VARCHAR(100) NOT NULL,
                    uploaded_date DATE NOT NULL,
                    signed_date DATE NULL,
                    expiration_date DATE NULL,
                    is_verified BOOLEAN NOT NULL DEFAULT 0,    -- set by the verification workflow only
                    verified_by VARCHAR(100) NULL,
                    verification_date DATE NULL,
                    notes TEXT NULL,
                    etag VARCHAR(255) NULL,                    -- remote documents only
                    version_id VARCHAR(255) NULL,              -- remote documents only
                    status VARCHAR(20) NOT NULL DEFAULT 'active',  -- active, deleting, undeletable
                    status_reason TEXT NULL,
                    created_at TIMESTAMP NOT NULL,
                    CHECK ((employee_id IS NULL) <> (location_id IS NULL)),
                    UNIQUE (storage_type, storage_key)
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS document_tombstones (
                    document_id INTEGER PRIMARY KEY,
                    storage_type VARCHAR(10) NOT NULL,
                    storage_key VARCHAR(500) NOT NULL,
                    deleted_at TIMESTAMP NOT NULL
                )
            ''')
            cursor.execute('''
                CREATE TRIGGER IF NOT EXISTS documents_storage_location_immutable
                BEFORE UPDATE OF storage_type, storage_key ON documents
                BEGIN
                    SELECT RAISE(ABORT, 'storage location of a document is immutable');
                END
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_documents_employee ON documents(employee_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_documents_location ON documents(location_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_documents_storage_type ON documents(storage_type)')
        logger.info(f"Document metadata store initialized at {self.db_path}")

    @staticmethod
    def _to_document(row: Optional[sqlite3.Row]) -> Optional[Document]:
        if row is None:
            return None
        return Document(**dict(row))

    def create(self, new: NewDocument) -> Document:
        """Insert a record for bytes already accepted by a backend."""
        now = datetime.now(timezone.utc)
        with self._transaction("create document") as cursor:
            cursor.execute('''
                INSERT INTO documents
                (employee_id, location_id, document_type, file_name, storage_type, storage_key,
                 file_size, mime_type, uploaded_date, signed_date, expiration_date, notes,
                 etag, version_id, is_verified, verified_by, verification_date, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'active', ?)
            ''', (
                new.owner.employee_id,
                new.owner.location_id,
                new.document_type.value,
                new.file_name,
                new.storage_type.value,
                new.storage_key,
                new.file_size,
                new.mime_type,
                now.date().isoformat(),
                new.signed_date.isoformat() if new.signed_date else None,
                new.expiration_date.isoformat() if new.expiration_date else None,
                new.notes,
                new.etag,
                new.version_id,
                new.is_verified,
                new.verified_by,
                new.verification_date.isoformat() if new.verification_date else None,
                now.isoformat(),
            ))
            document_id = cursor.lastrowid
            cursor.execute(f'SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id = ?', (document_id,))
            document = self._to_document(cursor.fetchone())
        logger.info(f"Created document record {document_id} ({new.storage_type.value}:{new.storage_key})")
        return document

    def get(self, document_id: int) -> Optional[Document]:
        """Fetch a record in any lifecycle state."""
        with self._transaction("read document") as cursor:
            cursor.execute(f'SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id = ?', (document_id,))
            return self._to_document(cursor.fetchone())

    def get_active(self, document_id: int) -> Optional[Document]:
        """Fetch a record only while it is readable (not being deleted)."""
        with self._transaction("read document") as cursor:
            cursor.execute(
                f'SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id = ? AND status = ?',
                (document_id, DocumentStatus.ACTIVE.value),
            )
            return self._to_document(cursor.fetchone())

    def list_by_owner(self, owner: OwnerRef) -> List[Document]:
        column = "employee_id" if owner.employee_id is not None else "location_id"
        with self._transaction("list documents") as cursor:
            cursor.execute(
                f'SELECT {DOCUMENT_COLUMNS} FROM documents WHERE {column} = ? AND status = ? ORDER BY id',
                (owner.owner_id, DocumentStatus.ACTIVE.value),
            )
            return [self._to_document(row) for row in cursor.fetchall()]

    def list_by_status(self, status: DocumentStatus, limit: int = 1000) -> List[Document]:
        with self._transaction("list documents") as cursor:
            cursor.execute(
                f'SELECT {DOCUMENT_COLUMNS} FROM documents WHERE status = ? ORDER BY id LIMIT ?',
                (status.value, limit),
            )
            return [self._to_document(row) for row in cursor.fetchall()]

    def list_active(self, limit: int = 10000) -> List[Document]:
        with self._transaction("list documents") as cursor:
            cursor.execute(
                f'SELECT {DOCUMENT_COLUMNS} FROM documents WHERE status = ? ORDER BY id LIMIT ?',
                (DocumentStatus.ACTIVE.value, limit),
            )
            return [self._to_document(row) for row in cursor.fetchall()]

    def list_active_by_storage(self, storage_type: StorageType, limit: int = 1000) -> List[Document]:
        with self._transaction("list documents") as cursor:
            cursor.execute(
                f'SELECT {DOCUMENT_COLUMNS} FROM documents '
                'WHERE storage_type = ? AND status = ? ORDER BY id LIMIT ?',
                (storage_type.value, DocumentStatus.ACTIVE.value, limit),
            )
            return [self._to_document(row) for row in cursor.fetchall()]

    def mark_deleting(self, document_id: int) -> bool:
        """Record the intent to delete before any bytes are removed."""
        with self._transaction("mark document deleting") as cursor:
            cursor.execute(
                'UPDATE documents SET status = ?, status_reason = NULL WHERE id = ?',
                (DocumentStatus.DELETING.value, document_id),
            )
            return cursor.rowcount == 1

    def mark_undeletable(self, document_id: int, reason: str) -> bool:
        """Keep the record when its object could not be removed."""
        with self._transaction("mark document undeletable") as cursor:
            cursor.execute(
                'UPDATE documents SET status = ?, status_reason = ? WHERE id = ?',
                (DocumentStatus.UNDELETABLE.value, reason, document_id),
            )
            return cursor.rowcount == 1

    def remove(self, document_id: int) -> bool:
        """Delete the row and leave a tombstone, atomically."""
        with self._transaction("remove document") as cursor:
            cursor.execute('''
                INSERT OR IGNORE INTO document_tombstones (document_id, storage_type, storage_key, deleted_at)
                SELECT id, storage_type, storage_key, ? FROM documents WHERE id = ?
            ''', (datetime.now(timezone.utc).isoformat(), document_id))
            cursor.execute('DELETE FROM documents WHERE id = ?', (document_id,))
            removed = cursor.rowcount == 1
        if removed:
            logger.info(f"Removed document record {document_id}")
        return removed

    def is_tombstoned(self, document_id: int) -> bool:
        with self._transaction("read tombstone") as cursor:
            cursor.execute('SELECT 1 FROM document_tombstones WHERE document_id = ?', (document_id,))
            return cursor.fetchone() is not None

    def storage_stats(self) -> StorageStats:
        with self._transaction("compute storage statistics") as cursor:
            cursor.execute('''
                SELECT
                    SUM(CASE WHEN status = 'active' THEN 1 ELSE 0 END) AS total_count,
                    SUM(CASE WHEN status = 'active' AND storage_type = 'remote' THEN 1 ELSE 0 END) AS remote_count,
                    SUM(CASE WHEN status = 'active' AND storage_type = 'local' THEN 1 ELSE 0 END) AS local_count,
                    SUM(CASE WHEN status <> 'active' THEN 1 ELSE 0 END) AS pending_delete_count
                FROM documents
            ''')
            row = cursor.fetchone()
        return StorageStats(**{key: row[key] or 0 for key in row.keys()})

    def check_connection(self) -> None:
        with self._transaction("check connection") as cursor:
            cursor.execute('SELECT 1')
