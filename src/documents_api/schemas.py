####################################
# --- Document record & API schemas --- #
####################################

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    model_validator
)
from typing_extensions import Self


class StorageType(str, Enum):
    """Backend that holds the bytes of a document."""
    REMOTE = 'remote'
    LOCAL = 'local'


class DocumentStatus(str, Enum):
    """Lifecycle state of a document record."""
    ACTIVE = 'active'
    DELETING = 'deleting'
    UNDELETABLE = 'undeletable'


class DocumentType(str, Enum):
    """Closed vocabulary of compliance document classifications."""
    MEDICAL_LICENSE = 'Medical License'
    DEA_LICENSE = 'DEA License'
    STATE_LICENSE = 'State License'
    BOARD_CERTIFICATION = 'Board Certification'
    I9_FORM = 'I-9 Form'
    W4_FORM = 'W-4 Form'
    TRAINING_CERTIFICATE = 'Training Certificate'
    INSURANCE_DOCUMENT = 'Insurance Document'
    CONTRACT = 'Contract'
    COMPLIANCE_DOCUMENT = 'Compliance Document'
    OTHER = 'Other'


class OwnerKind(str, Enum):
    EMPLOYEE = 'employee'
    LOCATION = 'location'


class DeleteOutcome(str, Enum):
    """Terminal results of a delete through the coordinator."""
    DELETED = 'deleted'
    ALREADY_GONE = 'already_gone'
    ALREADY_DELETED = 'already_deleted'


class OwnerRef(BaseModel):
    """Owner of a document: exactly one of an employee or a location."""
    employee_id: Optional[int] = Field(None, gt=0)
    location_id: Optional[int] = Field(None, gt=0)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_exactly_one_owner(self) -> Self:
        if (self.employee_id is None) == (self.location_id is None):
            raise ValueError("exactly one of employee_id or location_id must be set")
        return self

    @property
    def kind(self) -> OwnerKind:
        return OwnerKind.EMPLOYEE if self.employee_id is not None else OwnerKind.LOCATION

    @property
    def owner_id(self) -> int:
        return self.employee_id if self.employee_id is not None else self.location_id

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.owner_id}"


class NewDocument(BaseModel):
    """Fields the upload pipeline hands to the metadata store."""
    owner: OwnerRef
    document_type: DocumentType
    file_name: str
    storage_type: StorageType
    storage_key: str
    file_size: int = Field(ge=0)
    mime_type: str
    signed_date: Optional[date] = None
    expiration_date: Optional[date] = None
    notes: Optional[str] = None
    etag: Optional[str] = None
    version_id: Optional[str] = None
    # carried over by migration and rollback only; uploads always start unverified
    is_verified: bool = False
    verified_by: Optional[str] = None
    verification_date: Optional[date] = None


class Document(BaseModel):
    """A stored compliance document."""
    id: int
    employee_id: Optional[int] = None
    location_id: Optional[int] = None
    document_type: DocumentType
    file_name: str
    storage_type: StorageType
    storage_key: str
    file_size: int
    mime_type: str
    uploaded_date: date
    signed_date: Optional[date] = None
    expiration_date: Optional[date] = None
    is_verified: bool = False
    verified_by: Optional[str] = None
    verification_date: Optional[date] = None
    notes: Optional[str] = None
    etag: Optional[str] = None
    version_id: Optional[str] = None
    status: DocumentStatus = DocumentStatus.ACTIVE
    status_reason: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": 1,
                "employee_id": 42,
                "location_id": None,
                "document_type": "Medical License",
                "file_name": "license.pdf",
                "storage_type": "remote",
                "storage_key": "documents/employee-42/Medical_License/5f0c...-license.pdf",
                "file_size": 2097152,
                "mime_type": "application/pdf",
                "uploaded_date": "2024-01-01",
                "is_verified": False,
                "etag": "\"9b2cf535f27731c974343645a3985328\"",
                "status": "active",
                "created_at": "2024-01-01T12:34:56Z",
                "integrity_degraded": False,
            }
        }
    )

    @property
    def owner(self) -> OwnerRef:
        return OwnerRef(employee_id=self.employee_id, location_id=self.location_id)

    @computed_field
    @property
    def integrity_degraded(self) -> bool:
        """A remote document without an entity tag was not confirmed by the object store."""
        return self.storage_type == StorageType.REMOTE and not self.etag


class DocumentListResponse(BaseModel):
    """Response model for `GET /v1/documents`."""
    documents: List[Document]
    total_count: int = Field(description="Number of documents for the owner")


class PresignedUrlResponse(BaseModel):
    """Response model for `GET /v1/documents/:id/url`."""
    url: str
    expires_at: datetime
    expires_in: int = Field(description="Lifetime of the URL in seconds")
    document_id: int
    file_name: str


class DeleteDocumentResponse(BaseModel):
    """Response model for `DELETE /v1/documents/:id`."""
    document_id: int
    outcome: DeleteOutcome


class StorageStats(BaseModel):
    total_count: int = 0
    remote_count: int = 0
    local_count: int = 0
    pending_delete_count: int = 0

    @computed_field
    @property
    def remote_percentage(self) -> float:
        if not self.total_count:
            return 0.0
        return round(self.remote_count / self.total_count * 100, 2)


class StorageStatusResponse(BaseModel):
    """Response model for `GET /v1/storage/status`."""
    configured: bool
    bucket_name: Optional[str] = None
    remote_healthy: bool
    remote_status_reason: Optional[str] = None
    corrected_region: Optional[str] = None
    stats: StorageStats
    can_migrate: bool


class MigrateRequest(BaseModel):
    batch_size: int = Field(10, ge=1, le=100)
    dry_run: bool = False
    delete_local: bool = Field(
        True,
        description="Delete the local file after migrating. When false the file is kept on disk as a backup.",
    )


class MigrationItem(BaseModel):
    document_id: int
    file_name: str
    new_document_id: Optional[int] = None
    storage_key: Optional[str] = None
    retained_storage_key: Optional[str] = Field(
        None,
        description="Key of the source file left in place when it was not deleted.",
    )
    error: Optional[str] = None


class MigrationReport(BaseModel):
    dry_run: bool
    delete_local: bool = True
    total: int = 0
    migrated: List[MigrationItem] = Field(default_factory=list)
    failed: List[MigrationItem] = Field(default_factory=list)


class ReconcileRequest(BaseModel):
    verify_objects: bool = False


class ReconcileIssue(BaseModel):
    document_id: int
    storage_type: StorageType
    storage_key: str
    problem: str


class ReconciliationReport(BaseModel):
    completed_deletes: List[int] = Field(default_factory=list)
    undeletable: List[ReconcileIssue] = Field(default_factory=list)
    degraded_integrity: List[int] = Field(default_factory=list)
    missing_objects: List[ReconcileIssue] = Field(default_factory=list)
    size_mismatches: List[ReconcileIssue] = Field(default_factory=list)
    unverified: List[ReconcileIssue] = Field(
        default_factory=list,
        description="Objects whose backend could not be asked about them",
    )

    @computed_field
    @property
    def healthy(self) -> bool:
        return not (
            self.undeletable
            or self.degraded_integrity
            or self.missing_objects
            or self.size_mismatches
            or self.unverified
        )
