"""Document and document version models."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from kbhub.db.base import Base, new_id
from kbhub.models.tag import document_tags


class VersionStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Document(Base):
    """Logical document owned by a tenant.

    Retrieval only ever reads chunks of ``active_version_id``, which must
    point at an APPROVED version.
    """

    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    # No FK: documents and versions reference each other.
    active_version_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="documents")
    access_tags = relationship("Tag", secondary=document_tags, back_populates="documents")
    versions = relationship(
        "DocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentVersion.version_number",
    )
    active_version = relationship(
        "DocumentVersion",
        primaryjoin="foreign(Document.active_version_id) == DocumentVersion.id",
        viewonly=True,
    )


class DocumentVersion(Base):
    """Immutable content snapshot of a document."""

    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version_number", name="uq_document_versions_number"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)
    file_url = Column(Text, nullable=False)
    mime_type = Column(String(150), nullable=False)
    original_name = Column(String(255))
    status = Column(String(20), nullable=False, default=VersionStatus.PENDING)
    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    approved_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    approved_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    document = relationship("Document", back_populates="versions")
    chunks = relationship(
        "DocumentChunk",
        back_populates="version",
        cascade="all, delete-orphan",
        order_by="DocumentChunk.chunk_index",
    )
