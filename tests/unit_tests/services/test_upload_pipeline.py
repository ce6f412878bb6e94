import io
import logging

import pytest

from documents_api.errors import (
    AccessDenied,
    BackendUnavailable,
    InvalidInput,
    IntegrityMismatch,
    MetadataError,
    NotFound,
    ReconciliationRequired,
    Transient,
)
from documents_api.schemas import DocumentType, OwnerRef, StorageType
from documents_api.services.upload import UploadPipeline
from tests.consts import TEST_BUCKET_NAME, TEST_PDF_CONTENT
from tests.fixtures.backends import FailingBackend

OWNER = OwnerRef(employee_id=42)


def upload_pdf(pipeline, content=TEST_PDF_CONTENT, **overrides):
    values = dict(
        owner=OWNER,
        document_type="Medical License",
        stream=io.BytesIO(content),
        size=len(content),
        mime_type="application/pdf",
        file_name="license.pdf",
    )
    values.update(overrides)
    return pipeline.upload(**values)


def pipeline_with_remote(engine, remote, **kwargs):
    return UploadPipeline(
        engine.store,
        engine.local,
        remote,
        max_size_bytes=engine.settings.max_upload_size_bytes,
        allowed_mime_types=engine.settings.allowed_mime_types,
        **kwargs,
    )


def test_upload_prefers_remote_and_records_integrity_tokens(engine):
    document = upload_pdf(engine.uploads, notes="renewed")

    assert document.storage_type == StorageType.REMOTE
    assert document.document_type == DocumentType.MEDICAL_LICENSE
    assert document.file_size == len(TEST_PDF_CONTENT)
    assert document.etag
    assert document.notes == "renewed"
    assert document.is_verified is False
    assert document.storage_key.startswith("documents/employee-42/Medical_License/")
    assert document.storage_key.endswith("-license.pdf")
    assert engine.remote.get(document.storage_key).read() == TEST_PDF_CONTENT


def test_upload_without_remote_uses_local(local_engine):
    document = upload_pdf(local_engine.uploads)

    assert document.storage_type == StorageType.LOCAL
    assert document.etag is None
    with local_engine.local.get(document.storage_key) as stream:
        assert stream.read() == TEST_PDF_CONTENT


@pytest.mark.parametrize(
    "error",
    [
        AccessDenied("denied", code="AccessDenied", backend="remote"),
        BackendUnavailable("no such bucket", code="NoSuchBucket", backend="remote"),
        Transient("still failing after retries", code="SlowDown", backend="remote"),
    ],
)
def test_remote_failure_falls_back_to_local_and_records_truthfully(local_engine, caplog, error):
    remote = FailingBackend(error)
    pipeline = pipeline_with_remote(local_engine, remote)

    with caplog.at_level(logging.WARNING, logger="documents_api.services.upload"):
        document = upload_pdf(pipeline)

    assert remote.put_calls == 1
    assert document.storage_type == StorageType.LOCAL
    assert local_engine.store.get(document.id).storage_type == StorageType.LOCAL
    with local_engine.local.get(document.storage_key) as stream:
        assert stream.read() == TEST_PDF_CONTENT
    assert any(type(error).__name__ in record.getMessage() for record in caplog.records)


def test_fallback_can_be_disabled(local_engine):
    remote = FailingBackend(AccessDenied("denied", backend="remote"))
    pipeline = pipeline_with_remote(local_engine, remote, allow_local_fallback=False)

    with pytest.raises(AccessDenied):
        upload_pdf(pipeline)

    assert local_engine.store.storage_stats().total_count == 0


def test_integrity_mismatch_does_not_fall_back(local_engine):
    remote = FailingBackend(IntegrityMismatch("size differs", backend="remote"))
    pipeline = pipeline_with_remote(local_engine, remote)

    with pytest.raises(IntegrityMismatch):
        upload_pdf(pipeline)

    assert local_engine.store.storage_stats().total_count == 0


def test_degraded_remote_is_skipped(engine, mocked_aws):
    mocked_aws.delete_bucket(Bucket=engine.settings.s3_bucket_name)
    assert not engine.remote.health_check().healthy

    document = upload_pdf(engine.uploads)

    assert document.storage_type == StorageType.LOCAL


def test_permanently_unavailable_remote_still_accepts_every_upload(local_engine):
    remote = FailingBackend(BackendUnavailable("bucket gone", backend="remote"))
    pipeline = pipeline_with_remote(local_engine, remote)

    documents = [upload_pdf(pipeline, content=f"file {i}".encode()) for i in range(3)]

    assert {doc.storage_type for doc in documents} == {StorageType.LOCAL}
    for i, document in enumerate(documents):
        with local_engine.local.get(document.storage_key) as stream:
            assert stream.read() == f"file {i}".encode()


@pytest.mark.parametrize(
    "overrides, status_code",
    [
        (dict(document_type="Library Card"), 400),
        (dict(file_name="   "), 400),
        (dict(file_name="../../etc/passwd"), 400),
        (dict(mime_type="text/plain"), 415),
        (dict(size=0), 400),
        (dict(size=11 * 1024 * 1024), 413),
    ],
)
def test_invalid_uploads_are_rejected_before_any_backend(local_engine, overrides, status_code):
    remote = FailingBackend(AccessDenied("must not be called"))
    pipeline = pipeline_with_remote(local_engine, remote)

    with pytest.raises(InvalidInput) as exc_info:
        upload_pdf(pipeline, **overrides)

    assert exc_info.value.status_code == status_code
    assert remote.put_calls == 0
    assert list(local_engine.local.root.rglob("*.pdf")) == []


def test_metadata_failure_removes_remote_object(engine, monkeypatch):
    written = {}

    def failing_create(new_document):
        written["key"] = new_document.storage_key
        written["type"] = new_document.storage_type
        raise MetadataError("database is locked")

    monkeypatch.setattr(engine.store, "create", failing_create)

    with pytest.raises(MetadataError):
        upload_pdf(engine.uploads)

    assert written["type"] == StorageType.REMOTE
    with pytest.raises(NotFound):
        engine.remote.get(written["key"])


def test_metadata_failure_removes_local_object(local_engine, monkeypatch):
    written = {}

    def failing_create(new_document):
        written["key"] = new_document.storage_key
        raise MetadataError("database is locked")

    monkeypatch.setattr(local_engine.store, "create", failing_create)

    with pytest.raises(MetadataError):
        upload_pdf(local_engine.uploads)

    with pytest.raises(NotFound):
        local_engine.local.get(written["key"])


def test_failed_cleanup_requires_reconciliation(local_engine, monkeypatch, caplog):
    def failing_create(new_document):
        raise MetadataError("database is locked")

    def failing_delete(key):
        raise BackendUnavailable("disk went read-only", backend="local")

    monkeypatch.setattr(local_engine.store, "create", failing_create)
    monkeypatch.setattr(local_engine.local, "delete", failing_delete)

    with pytest.raises(ReconciliationRequired) as exc_info:
        upload_pdf(local_engine.uploads)

    assert exc_info.value.storage_key.startswith("documents/employee-42/")


def test_unverifiable_remote_write_is_removed_before_falling_back(engine, mocked_aws, monkeypatch):
    def denied(key):
        raise AccessDenied("HeadObject denied by policy", code="AccessDenied", backend="remote")

    monkeypatch.setattr(engine.remote, "stat", denied)

    document = upload_pdf(engine.uploads)

    assert document.storage_type == StorageType.LOCAL
    with engine.local.get(document.storage_key) as stream:
        assert stream.read() == TEST_PDF_CONTENT
    listing = mocked_aws.list_objects_v2(Bucket=TEST_BUCKET_NAME)
    assert listing.get("KeyCount", 0) == 0


def test_unremovable_remote_write_is_not_duplicated_locally(engine, monkeypatch):
    def denied(key):
        raise AccessDenied("HeadObject denied by policy", code="AccessDenied", backend="remote")

    def discard_denied(key, cause):
        raise ReconciliationRequired("could not remove", storage_key=key, backend="remote")

    monkeypatch.setattr(engine.remote, "stat", denied)
    monkeypatch.setattr(engine.remote, "_discard", discard_denied)

    with pytest.raises(ReconciliationRequired):
        upload_pdf(engine.uploads)

    assert engine.store.list_by_owner(OWNER) == []
    assert list(engine.local.root.rglob("*.pdf")) == []
