"""Tenant membership model."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from kbhub.db.base import Base, new_id
from kbhub.models.tag import member_tags


class MemberRole:
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class TenantMember(Base):
    """A user's role inside one tenant, plus the access tags granted to them."""

    __tablename__ = "tenant_members"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members_tenant_user"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default=MemberRole.MEMBER)
    is_owner = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="members")
    user = relationship("User", back_populates="memberships")
    tags = relationship("Tag", secondary=member_tags, back_populates="members")

    @property
    def is_admin_or_owner(self) -> bool:
        return self.role == MemberRole.ADMIN or bool(self.is_owner)
