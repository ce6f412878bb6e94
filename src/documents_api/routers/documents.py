import os
from datetime import date
from typing import Optional
from urllib.parse import quote

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Path,
    Query,
    UploadFile,
    status
)
from fastapi.responses import RedirectResponse, StreamingResponse

from documents_api.dependencies import get_coordinator, get_upload_pipeline
from documents_api.errors import InvalidInput
from documents_api.schemas import (
    DeleteDocumentResponse,
    Document,
    DocumentListResponse,
    OwnerRef,
    PresignedUrlResponse,
)
from documents_api.services.coordinator import DocumentCoordinator
from documents_api.services.upload import UploadPipeline
from documents_api.storage.base import iter_stream

router = APIRouter()


def _owner_ref(employee_id: Optional[int], location_id: Optional[int]) -> OwnerRef:
    try:
        return OwnerRef(employee_id=employee_id, location_id=location_id)
    except ValueError:
        raise InvalidInput("Provide exactly one positive employee_id or location_id") from None


def _measure(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def _content_disposition(file_name: str) -> str:
    fallback = file_name.encode("ascii", "replace").decode("ascii").replace('"', "")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name)}"


@router.post("/documents", response_model=Document, status_code=status.HTTP_201_CREATED)
def upload_document(
    file: UploadFile = File(..., description="The document to store"),
    document_type: str = Form(..., description="Document classification, e.g. 'Medical License'"),
    employee_id: Optional[int] = Form(None, description="Owning employee"),
    location_id: Optional[int] = Form(None, description="Owning location"),
    notes: Optional[str] = Form(None),
    signed_date: Optional[date] = Form(None, description="YYYY-MM-DD"),
    expiration_date: Optional[date] = Form(None, description="YYYY-MM-DD"),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
) -> Document:
    """
    Upload a compliance document for an employee or a location.

    The file is stored on the remote backend when it is available and on local disk
    otherwise; `storage_type` in the response names the backend that holds it.
    """
    owner = _owner_ref(employee_id, location_id)
    return pipeline.upload(
        owner=owner,
        document_type=document_type,
        stream=file.file,
        size=_measure(file),
        mime_type=file.content_type or "",
        file_name=file.filename or "",
        notes=notes,
        signed_date=signed_date,
        expiration_date=expiration_date,
    )


@router.get("/documents", response_model=DocumentListResponse)
def list_documents(
    employee_id: Optional[int] = Query(None),
    location_id: Optional[int] = Query(None),
    coordinator: DocumentCoordinator = Depends(get_coordinator),
) -> DocumentListResponse:
    """List the documents of one owner."""
    documents = coordinator.list_documents(_owner_ref(employee_id, location_id))
    return DocumentListResponse(documents=documents, total_count=len(documents))


@router.get("/documents/{document_id}", response_model=Document)
def get_document(
    document_id: int = Path(..., ge=1),
    coordinator: DocumentCoordinator = Depends(get_coordinator),
) -> Document:
    return coordinator.get_document(document_id)


@router.get(
    "/documents/{document_id}/download",
    responses={
        status.HTTP_200_OK: {"description": "The document bytes"},
        status.HTTP_307_TEMPORARY_REDIRECT: {"description": "Redirect to a presigned URL"},
    },
)
def download_document(
    document_id: int = Path(..., ge=1),
    redirect: Optional[bool] = Query(
        None,
        description="true for a redirect to a presigned URL, false to stream. Images redirect by default.",
    ),
    coordinator: DocumentCoordinator = Depends(get_coordinator),
):
    """
    Download a document.

    Remote documents are either streamed through the API or served by redirecting to
    a short lived presigned URL. Local documents are always streamed.
    """
    download = coordinator.download(document_id, prefer_url=redirect)
    if download.is_redirect:
        return RedirectResponse(download.presigned.url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    document = download.document
    return StreamingResponse(
        iter_stream(download.stream),
        media_type=document.mime_type,
        headers={
            "Content-Disposition": _content_disposition(document.file_name),
            "Content-Length": str(document.file_size),
        },
    )


@router.get("/documents/{document_id}/url", response_model=PresignedUrlResponse)
def get_document_url(
    document_id: int = Path(..., ge=1),
    expires_in: Optional[int] = Query(None, description="URL lifetime in seconds"),
    coordinator: DocumentCoordinator = Depends(get_coordinator),
) -> PresignedUrlResponse:
    """Issue a presigned URL for a remote document."""
    document, presigned = coordinator.presign(document_id, expires_in)
    return PresignedUrlResponse(
        url=presigned.url,
        expires_at=presigned.expires_at,
        expires_in=presigned.ttl_seconds,
        document_id=document.id,
        file_name=document.file_name,
    )


@router.delete("/documents/{document_id}", response_model=DeleteDocumentResponse)
def delete_document(
    document_id: int = Path(..., ge=1),
    coordinator: DocumentCoordinator = Depends(get_coordinator),
) -> DeleteDocumentResponse:
    """
    Delete a document and its stored file.

    Deleting an already deleted document succeeds with outcome `already_deleted`.
    """
    outcome = coordinator.delete(document_id)
    return DeleteDocumentResponse(document_id=document_id, outcome=outcome)
