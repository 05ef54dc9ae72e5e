"""Usage aggregate and billing ledger models."""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, String, DateTime, Date, Integer, Text, ForeignKey, Index, UniqueConstraint, text
from kbhub.db.base import Base, new_id
from kbhub.models.tenant import Money


class TransactionType:
    TOP_UP = "TOP_UP"
    CHARGE = "CHARGE"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class TransactionStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TokenUsage(Base):
    """Per-tenant, per-day, per-model usage aggregate. Only ever incremented."""

    __tablename__ = "token_usage"
    __table_args__ = (
        UniqueConstraint("tenant_id", "date", "model", name="uq_token_usage_tenant_date_model"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    model = Column(String(100), nullable=False)
    provider = Column(String(50), nullable=False, default="OpenAI")
    prompt_tokens = Column(Integer, nullable=False, default=0)
    completion_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    cost = Column(Money, nullable=False, default=Decimal("0"))
    request_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)


class BillingTransaction(Base):
    """Append-only ledger entry.

    ``reference`` is the payment-session id used to de-duplicate top-ups;
    at most one COMPLETED row may exist per (tenant_id, reference).
    """

    __tablename__ = "billing_transactions"
    __table_args__ = (
        Index(
            "uq_billing_transactions_completed_reference",
            "tenant_id",
            "reference",
            unique=True,
            postgresql_where=text("status = 'COMPLETED'"),
            sqlite_where=text("status = 'COMPLETED'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    amount = Column(Money, nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING)
    reference = Column(String(255), index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
