"""API key models."""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, String, DateTime, Date, Integer, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from kbhub.db.base import Base, new_id
from kbhub.models.tenant import Money


class ApiKey(Base):
    """Tenant API key. Only a hash of the key is stored."""

    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    key_prefix = Column(String(16), nullable=False)
    key_hash = Column(String(255), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime)
    # Request-count limits; None means unlimited.
    daily_limit = Column(Integer)
    monthly_limit = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="api_keys")
    usage = relationship("ApiKeyUsage", back_populates="api_key", cascade="all, delete-orphan")


class ApiKeyUsage(Base):
    """Per-key, per-day request counter."""

    __tablename__ = "api_key_usage"
    __table_args__ = (
        UniqueConstraint("api_key_id", "date", name="uq_api_key_usage_key_date"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    api_key_id = Column(String(36), ForeignKey("api_keys.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    request_count = Column(Integer, nullable=False, default=0)
    cost = Column(Money, nullable=False, default=Decimal("0"))

    # Relationships
    api_key = relationship("ApiKey", back_populates="usage")
