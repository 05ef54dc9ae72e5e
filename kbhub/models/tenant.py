"""Tenant model."""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, String, DateTime, Numeric
from sqlalchemy.orm import relationship
from kbhub.db.base import Base, new_id


# Money columns share one precision so cost fractions of a cent survive.
Money = Numeric(18, 8)


class Tenant(Base):
    """Organization owning documents, members and a prepaid balance.

    ``balance`` may go negative when concurrent charges race past the
    balance gate; ``total_spent`` only ever grows.
    """

    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    subdomain = Column(String(100), unique=True, nullable=False, index=True)
    balance = Column(Money, nullable=False, default=Decimal("0"))
    total_spent = Column(Money, nullable=False, default=Decimal("0"))
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    members = relationship("TenantMember", back_populates="tenant", cascade="all, delete-orphan")
    documents = relationship("Document", back_populates="tenant")
    tags = relationship("Tag", back_populates="tenant", cascade="all, delete-orphan")
    api_keys = relationship("ApiKey", back_populates="tenant", cascade="all, delete-orphan")
    widgets = relationship("Widget", back_populates="tenant", cascade="all, delete-orphan")
    conversations = relationship("Conversation", back_populates="tenant", cascade="all, delete-orphan")
