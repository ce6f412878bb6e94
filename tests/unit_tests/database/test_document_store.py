import sqlite3

import pytest

from database.document_store import DocumentStore
from documents_api.errors import MetadataError
from documents_api.schemas import (
    DocumentStatus,
    DocumentType,
    NewDocument,
    OwnerRef,
    StorageType,
)


@pytest.fixture
def store(tmp_path):
    store = DocumentStore(str(tmp_path / "documents.db"))
    store.init_db()
    return store


def new_document(key="documents/employee-42/Medical_License/a-license.pdf", **overrides):
    values = dict(
        owner=OwnerRef(employee_id=42),
        document_type=DocumentType.MEDICAL_LICENSE,
        file_name="license.pdf",
        storage_type=StorageType.REMOTE,
        storage_key=key,
        file_size=2048,
        mime_type="application/pdf",
        etag='"abc"',
        version_id="v1",
    )
    values.update(overrides)
    return NewDocument(**values)


def test_init_db_creates_tables(store):
    conn = sqlite3.connect(store.db_path)
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    tables = {row[0] for row in cursor.fetchall()}
    conn.close()

    assert {"documents", "document_tombstones"} <= tables


def test_create_and_get(store):
    created = store.create(new_document())

    fetched = store.get(created.id)
    assert fetched == created
    assert fetched.employee_id == 42
    assert fetched.location_id is None
    assert fetched.storage_type == StorageType.REMOTE
    assert fetched.status == DocumentStatus.ACTIVE
    assert fetched.is_verified is False
    assert not fetched.integrity_degraded


def test_remote_document_without_etag_is_flagged(store):
    created = store.create(new_document(etag=None, version_id=None))

    assert created.integrity_degraded


def test_list_by_owner_only_returns_that_owner(store):
    store.create(new_document("k1"))
    store.create(new_document("k2"))
    store.create(new_document("k3", owner=OwnerRef(employee_id=7)))
    store.create(new_document("k4", owner=OwnerRef(location_id=42), storage_type=StorageType.LOCAL, etag=None))

    employee_docs = store.list_by_owner(OwnerRef(employee_id=42))
    location_docs = store.list_by_owner(OwnerRef(location_id=42))

    assert [doc.storage_key for doc in employee_docs] == ["k1", "k2"]
    assert [doc.storage_key for doc in location_docs] == ["k4"]


def test_storage_key_is_unique_per_backend(store):
    store.create(new_document("same-key"))
    store.create(new_document("same-key", storage_type=StorageType.LOCAL, etag=None))

    with pytest.raises(MetadataError):
        store.create(new_document("same-key"))


def test_storage_location_cannot_be_moved_in_place(store):
    created = store.create(new_document())

    conn = sqlite3.connect(store.db_path)
    with pytest.raises(sqlite3.DatabaseError):
        conn.execute("UPDATE documents SET storage_type = 'local' WHERE id = ?", (created.id,))
    conn.close()

    assert store.get(created.id).storage_type == StorageType.REMOTE


def test_exactly_one_owner_is_enforced(store):
    conn = sqlite3.connect(store.db_path)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            """
            INSERT INTO documents (employee_id, location_id, document_type, file_name, storage_type,
                                   storage_key, file_size, mime_type, uploaded_date, created_at)
            VALUES (1, 2, 'Other', 'x.pdf', 'local', 'k', 1, 'application/pdf', '2024-01-01', '2024-01-01')
            """
        )
    conn.close()


def test_deleting_records_are_hidden_from_reads(store):
    created = store.create(new_document())

    assert store.mark_deleting(created.id)

    assert store.get_active(created.id) is None
    assert store.get(created.id).status == DocumentStatus.DELETING
    assert store.list_by_owner(OwnerRef(employee_id=42)) == []
    assert [doc.id for doc in store.list_by_status(DocumentStatus.DELETING)] == [created.id]


def test_mark_undeletable_keeps_reason(store):
    created = store.create(new_document())

    store.mark_undeletable(created.id, "AccessDenied: denied")

    record = store.get(created.id)
    assert record.status == DocumentStatus.UNDELETABLE
    assert record.status_reason == "AccessDenied: denied"


def test_remove_leaves_tombstone(store):
    created = store.create(new_document())

    assert store.remove(created.id)

    assert store.get(created.id) is None
    assert store.is_tombstoned(created.id)
    assert not store.remove(created.id)
    assert not store.is_tombstoned(created.id + 100)


def test_storage_stats(store):
    store.create(new_document("k1"))
    store.create(new_document("k2", storage_type=StorageType.LOCAL, etag=None))
    store.create(new_document("k3", storage_type=StorageType.LOCAL, etag=None))
    pending = store.create(new_document("k4"))
    store.mark_deleting(pending.id)

    stats = store.storage_stats()

    assert stats.total_count == 3
    assert stats.remote_count == 1
    assert stats.local_count == 2
    assert stats.pending_delete_count == 1
    assert stats.remote_percentage == pytest.approx(33.33)


def test_storage_stats_on_empty_store(store):
    stats = store.storage_stats()

    assert stats.total_count == 0
    assert stats.remote_percentage == 0.0


def test_unusable_database_raises_metadata_error(tmp_path):
    store = DocumentStore(str(tmp_path / "missing-dir" / "documents.db"))

    with pytest.raises(MetadataError):
        store.init_db()
