"""User model."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from kbhub.db.base import Base, new_id


class User(Base):
    """User account; tenant access goes through TenantMember."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    email = Column(String(150), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    memberships = relationship("TenantMember", back_populates="user", cascade="all, delete-orphan")
