"""Access tag model and its association tables."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Table, UniqueConstraint
from sqlalchemy.orm import relationship
from kbhub.db.base import Base, new_id


document_tags = Table(
    "document_tags",
    Base.metadata,
    Column("document_id", String(36), ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

member_tags = Table(
    "member_tags",
    Base.metadata,
    Column("member_id", String(36), ForeignKey("tenant_members.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Tag(Base):
    """Tenant-scoped label shared by documents and members.

    A document with no tags is visible to every principal in the tenant.
    """

    __tablename__ = "tags"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_tags_tenant_name"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="tags")
    documents = relationship("Document", secondary=document_tags, back_populates="access_tags")
    members = relationship("TenantMember", secondary=member_tags, back_populates="tags")
