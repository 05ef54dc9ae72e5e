"""Document and version management routes."""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kbhub.core.errors import KBHubError
from kbhub.core.security import get_current_member, require_admin
from kbhub.db.sessions import get_db
from kbhub.models import Document, DocumentVersion, TenantMember
from kbhub.routes.responses import http_error
from kbhub.services import documents as document_service
from kbhub.services.access import get_visible_document, load_principal
from kbhub.services.embeddings import EmbeddingClient
from kbhub.services.providers import get_embedding_client
from kbhub.utils.file_processor import FileProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])


# Request/Response schemas
class CreateDocumentRequest(BaseModel):
    name: str
    description: Optional[str] = None
    tag_ids: List[str] = []


class UpdateTagsRequest(BaseModel):
    tag_ids: List[str] = []


class CreateVersionRequest(BaseModel):
    file_url: str
    mime_type: str
    original_name: Optional[str] = None


class VersionResponse(BaseModel):
    id: str
    version_number: int
    status: str
    original_name: Optional[str]
    approved_by: Optional[str]
    approved_at: Optional[datetime]


class DocumentResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    tag_ids: List[str]
    active_version_id: Optional[str]
    versions: List[VersionResponse] = []


def _version_response(version: DocumentVersion) -> VersionResponse:
    return VersionResponse(
        id=version.id,
        version_number=version.version_number,
        status=version.status,
        original_name=version.original_name,
        approved_by=version.approved_by,
        approved_at=version.approved_at,
    )


def _document_response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        name=document.name,
        description=document.description,
        tag_ids=sorted(tag.id for tag in document.access_tags),
        active_version_id=document.active_version_id,
        versions=[_version_response(v) for v in document.versions],
    )


def _get_tenant_document(db: Session, tenant_id: str, document_id: str) -> Document:
    document = db.query(Document).filter(
        Document.id == document_id,
        Document.tenant_id == tenant_id
    ).first()
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


def _get_version(db: Session, document: Document, version_id: str) -> DocumentVersion:
    version = db.query(DocumentVersion).filter(
        DocumentVersion.id == version_id,
        DocumentVersion.document_id == document.id
    ).first()
    if not version:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Version not found")
    return version


@router.post("", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
def create_document(
    request: CreateDocumentRequest,
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create a document. Without tags it is visible to everyone in the tenant."""
    try:
        document = document_service.create_document(
            db, admin.tenant_id, request.name, request.description, request.tag_ids
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _document_response(document)


@router.get("/{document_id}", response_model=DocumentResponse)
def get_document(
    document_id: str,
    member: TenantMember = Depends(get_current_member),
    db: Session = Depends(get_db)
):
    """Get a document the member may see; hidden documents look missing."""
    principal = load_principal(db, member.user_id, member.tenant_id)
    try:
        document = get_visible_document(db, member.tenant_id, principal, document_id)
    except KBHubError as e:
        raise http_error(e)
    return _document_response(document)


@router.put("/{document_id}/tags", response_model=DocumentResponse)
def update_document_tags(
    document_id: str,
    request: UpdateTagsRequest,
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db)
):
    document = _get_tenant_document(db, admin.tenant_id, document_id)
    try:
        document = document_service.set_document_tags(db, document, request.tag_ids)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _document_response(document)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(
    document_id: str,
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Delete a document. Cascades to all of its versions and chunks."""
    document = _get_tenant_document(db, admin.tenant_id, document_id)
    document_service.delete_document(db, document)
    return None


@router.post("/{document_id}/versions", response_model=VersionResponse, status_code=status.HTTP_201_CREATED)
def create_version(
    document_id: str,
    request: CreateVersionRequest,
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Register an already-stored file as a new PENDING version."""
    if not FileProcessor.is_supported(request.mime_type):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported file format: {request.mime_type}. Supported: PDF, DOCX, TXT, MD"
        )
    document = _get_tenant_document(db, admin.tenant_id, document_id)
    version = document_service.add_version(
        db, document, request.file_url, request.mime_type, request.original_name, admin.user_id
    )
    return _version_response(version)


@router.post("/{document_id}/versions/{version_id}/approve", response_model=VersionResponse)
def approve_version(
    document_id: str,
    version_id: str,
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db),
    embedding_client: EmbeddingClient = Depends(get_embedding_client),
):
    """
    Approve a PENDING version.

    The version is chunked and embedded first; it is only approved if that
    succeeds.
    """
    document = _get_tenant_document(db, admin.tenant_id, document_id)
    version = _get_version(db, document, version_id)

    try:
        version = document_service.approve_version(db, document, version, admin.user_id, embedding_client)
    except KBHubError as e:
        logger.error("Failed to approve version %s: %s", version_id, e)
        raise http_error(e)
    except ValueError as e:
        logger.error("Failed to extract text for version %s: %s", version_id, e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Failed to process version. Version was not approved. {e}"
        )

    return _version_response(version)


@router.post("/{document_id}/versions/{version_id}/reject", response_model=VersionResponse)
def reject_version(
    document_id: str,
    version_id: str,
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db)
):
    document = _get_tenant_document(db, admin.tenant_id, document_id)
    version = _get_version(db, document, version_id)
    try:
        version = document_service.reject_version(db, version)
    except KBHubError as e:
        raise http_error(e)
    return _version_response(version)


@router.post("/{document_id}/versions/{version_id}/activate", response_model=DocumentResponse)
def activate_version(
    document_id: str,
    version_id: str,
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Switch retrieval to another APPROVED version."""
    document = _get_tenant_document(db, admin.tenant_id, document_id)
    version = _get_version(db, document, version_id)
    try:
        document = document_service.activate_version(db, document, version)
    except KBHubError as e:
        raise http_error(e)
    return _document_response(document)
