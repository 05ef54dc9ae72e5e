"""Document and version lifecycle: create, tag, approve, reject, activate."""
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from kbhub.core.config import settings
from kbhub.core.errors import DocumentStateError
from kbhub.models import Document, DocumentVersion, Tag, VersionStatus
from kbhub.services.embeddings import EmbeddingClient
from kbhub.services.vector_store import ChunkRepository
from kbhub.utils.file_processor import FileProcessor
from kbhub.utils.text_chunker import TextChunker

logger = logging.getLogger(__name__)

# (file_url, mime_type) -> extracted text
TextExtractor = Callable[[str, str], str]


def _tenant_tags(db: Session, tenant_id: str, tag_ids: Iterable[str]) -> List[Tag]:
    tag_ids = set(tag_ids or [])
    if not tag_ids:
        return []
    tags = db.query(Tag).filter(Tag.tenant_id == tenant_id, Tag.id.in_(tag_ids)).all()
    if len(tags) != len(tag_ids):
        raise ValueError("One or more tags do not belong to this tenant")
    return tags


def create_document(
    db: Session,
    tenant_id: str,
    name: str,
    description: Optional[str] = None,
    tag_ids: Optional[Iterable[str]] = None,
) -> Document:
    document = Document(
        tenant_id=tenant_id,
        name=name,
        description=description,
        access_tags=_tenant_tags(db, tenant_id, tag_ids),
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return document


def set_document_tags(db: Session, document: Document, tag_ids: Iterable[str]) -> Document:
    """Replace the document's access tags. An empty set makes it public."""
    document.access_tags = _tenant_tags(db, document.tenant_id, tag_ids)
    db.commit()
    db.refresh(document)
    return document


def add_version(
    db: Session,
    document: Document,
    file_url: str,
    mime_type: str,
    original_name: Optional[str] = None,
    uploaded_by: Optional[str] = None,
) -> DocumentVersion:
    """Register an already-stored file as the next PENDING version."""
    latest = db.query(func.max(DocumentVersion.version_number)).filter(
        DocumentVersion.document_id == document.id
    ).scalar()

    version = DocumentVersion(
        document_id=document.id,
        version_number=(latest or 0) + 1,
        file_url=file_url,
        mime_type=mime_type,
        original_name=original_name,
        uploaded_by=uploaded_by,
        status=VersionStatus.PENDING,
    )
    db.add(version)
    db.commit()
    db.refresh(version)
    return version


def _require_status(version: DocumentVersion, status: str, message: str) -> None:
    if version.status != status:
        raise DocumentStateError(message)


def approve_version(
    db: Session,
    document: Document,
    version: DocumentVersion,
    approver_id: Optional[str],
    embedding_client: EmbeddingClient,
    extractor: Optional[TextExtractor] = None,
) -> DocumentVersion:
    """
    Chunk, embed and store a PENDING version, then mark it APPROVED.

    The version is only approved after its chunks are stored, so a failed
    extraction or embedding leaves it PENDING. It becomes the document's
    active version if the document has none yet.

    Raises:
        DocumentStateError: The version is not PENDING or yields no text
        ProviderError / ConfigurationError: Embedding failed
    """
    _require_status(version, VersionStatus.PENDING, "Version has already been processed")
    extractor = extractor or FileProcessor.extract_text

    text = extractor(version.file_url, version.mime_type)
    if not text or not text.strip():
        raise DocumentStateError("No text content could be extracted from the document")
    logger.info(
        "Extracted %d characters from %s v%d", len(text), document.id, version.version_number
    )

    # Title and description help semantic search match the document itself
    prefix = f"Document Title: {document.name}\n"
    prefix += f"Description: {document.description}\n\n" if document.description else "\n"

    chunks = TextChunker.chunk_text(prefix + text, settings.CHUNK_SIZE, settings.CHUNK_OVERLAP)
    if not chunks:
        raise DocumentStateError("No text content could be extracted from the document")

    embeddings = embedding_client.embed_batch([chunk["text"] for chunk in chunks])
    ChunkRepository(db).replace_chunks(version.id, chunks, embeddings)

    version.status = VersionStatus.APPROVED
    version.approved_by = approver_id
    version.approved_at = datetime.utcnow()
    if not document.active_version_id:
        document.active_version_id = version.id
    db.commit()
    db.refresh(version)

    logger.info("Version %s of document %s approved with %d chunks", version.id, document.id, len(chunks))
    return version


def reject_version(db: Session, version: DocumentVersion) -> DocumentVersion:
    _require_status(version, VersionStatus.PENDING, "Version has already been processed")
    version.status = VersionStatus.REJECTED
    db.commit()
    db.refresh(version)
    return version


def activate_version(db: Session, document: Document, version: DocumentVersion) -> Document:
    """Make an APPROVED version the one retrieval reads."""
    if version.document_id != document.id:
        raise ValueError("Version does not belong to this document")
    _require_status(version, VersionStatus.APPROVED, "Only approved versions can be activated")
    document.active_version_id = version.id
    db.commit()
    db.refresh(document)
    return document


def delete_document(db: Session, document: Document) -> None:
    """Delete a document with all of its versions and chunks."""
    db.delete(document)
    db.commit()


def count_approved_documents(db: Session, tenant_id: str) -> int:
    """Documents whose active version is APPROVED, i.e. those retrieval can read."""
    return db.query(Document).join(
        DocumentVersion,
        and_(
            DocumentVersion.id == Document.active_version_id,
            DocumentVersion.status == VersionStatus.APPROVED,
        ),
    ).filter(Document.tenant_id == tenant_id).count()
