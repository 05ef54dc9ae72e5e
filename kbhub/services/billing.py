"""Token-cost accounting, the balance gate and idempotent top-ups.

Shared counters (tenant balance/total_spent, the daily usage aggregate)
are only ever changed with SQL ``col = col + :x`` updates, never by
read-modify-write in Python.

The balance gate is advisory: ``check_balance`` does not reserve funds,
so two concurrent requests can both pass it and both charge, leaving the
balance negative. That is accepted behaviour.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kbhub.core.errors import DuplicatePaymentError
from kbhub.models import (
    BillingTransaction,
    Tenant,
    TokenUsage,
    TransactionStatus,
    TransactionType,
)

logger = logging.getLogger(__name__)


# OpenAI pricing per 1K tokens
MODEL_PRICING: Dict[str, Dict[str, Decimal]] = {
    'gpt-4o': {'prompt': Decimal('0.005'), 'completion': Decimal('0.015')},
    'gpt-4o-mini': {'prompt': Decimal('0.00015'), 'completion': Decimal('0.0006')},
    'gpt-4-turbo': {'prompt': Decimal('0.01'), 'completion': Decimal('0.03')},
    'gpt-4': {'prompt': Decimal('0.03'), 'completion': Decimal('0.06')},
    'gpt-3.5-turbo': {'prompt': Decimal('0.0005'), 'completion': Decimal('0.0015')},
    'text-embedding-3-small': {'prompt': Decimal('0.00002'), 'completion': Decimal('0')},
    'text-embedding-3-large': {'prompt': Decimal('0.00013'), 'completion': Decimal('0')},
    'text-embedding-ada-002': {'prompt': Decimal('0.0001'), 'completion': Decimal('0')},
}

# Unknown models are never free
DEFAULT_PRICING = {'prompt': Decimal('0.001'), 'completion': Decimal('0.002')}

TRANSACTION_NAMES = {
    TransactionType.TOP_UP: "Credit Top-up",
    TransactionType.CHARGE: "Usage Charge",
    TransactionType.REFUND: "Refund",
    TransactionType.ADJUSTMENT: "Adjustment",
}


@dataclass
class BalanceStatus:
    has_balance: bool
    balance: Decimal


@dataclass
class UsageCharge:
    cost: Decimal
    new_balance: Decimal


@dataclass
class TopUpResult:
    already_processed: bool
    balance: Decimal
    amount: Decimal

    @property
    def message(self) -> str:
        if self.already_processed:
            return "Payment was already processed"
        return f"Successfully added {format_cost(self.amount)} credits"


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> Decimal:
    """Cost of one call in account currency, priced per 1K tokens."""
    pricing = MODEL_PRICING.get(model, DEFAULT_PRICING)

    prompt_cost = Decimal(prompt_tokens) / 1000 * pricing['prompt']
    completion_cost = Decimal(completion_tokens) / 1000 * pricing['completion']

    return prompt_cost + completion_cost


def format_tokens(tokens: int) -> str:
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1000:
        return f"{tokens / 1000:.1f}K"
    return str(tokens)


def format_cost(cost: Union[Decimal, float]) -> str:
    if cost >= 1:
        return f"${cost:.2f}"
    if cost >= Decimal('0.01'):
        return f"${cost:.3f}"
    return f"${cost:.4f}"


class BillingLedger:
    """Balance, usage and ledger operations for one database session."""

    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, tenant_id: str) -> Tuple[Decimal, Decimal]:
        """Return ``(balance, total_spent)``; an unknown tenant has zero of both."""
        row = self.db.query(Tenant.balance, Tenant.total_spent).filter(Tenant.id == tenant_id).first()
        if row is None:
            return Decimal('0'), Decimal('0')
        return Decimal(row[0] or 0), Decimal(row[1] or 0)

    def check_balance(self, tenant_id: str) -> BalanceStatus:
        """Pre-flight gate: only a strictly positive balance passes."""
        balance, _ = self.get_balance(tenant_id)
        return BalanceStatus(has_balance=balance > 0, balance=balance)

    def track_token_usage(
        self,
        tenant_id: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        provider: str = "OpenAI",
    ) -> UsageCharge:
        """
        Record one billed call and charge the tenant.

        The daily aggregate upsert and the balance/total_spent update are
        committed together; if either fails both are rolled back and the
        error propagates.
        """
        cost = calculate_cost(model, prompt_tokens, completion_tokens)
        total_tokens = prompt_tokens + completion_tokens
        today = datetime.utcnow().date()

        try:
            self._increment_usage(tenant_id, today, model, provider, prompt_tokens, completion_tokens, total_tokens, cost)

            result = self.db.execute(
                update(Tenant)
                .where(Tenant.id == tenant_id)
                .values(balance=Tenant.balance - cost, total_spent=Tenant.total_spent + cost)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ValueError(f"Tenant {tenant_id} not found")

            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Failed to record usage for tenant %s (model=%s)", tenant_id, model)
            raise

        new_balance, _ = self.get_balance(tenant_id)
        logger.info(
            "Charged tenant %s %s for %d tokens on %s; balance now %s",
            tenant_id, cost, total_tokens, model, new_balance,
        )
        return UsageCharge(cost=cost, new_balance=new_balance)

    def _increment_usage(
        self,
        tenant_id: str,
        day: date,
        model: str,
        provider: str,
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: int,
        cost: Decimal,
    ) -> None:
        def increment():
            return self.db.execute(
                update(TokenUsage)
                .where(
                    TokenUsage.tenant_id == tenant_id,
                    TokenUsage.date == day,
                    TokenUsage.model == model,
                )
                .values(
                    prompt_tokens=TokenUsage.prompt_tokens + prompt_tokens,
                    completion_tokens=TokenUsage.completion_tokens + completion_tokens,
                    total_tokens=TokenUsage.total_tokens + total_tokens,
                    cost=TokenUsage.cost + cost,
                    request_count=TokenUsage.request_count + 1,
                )
                .execution_options(synchronize_session=False)
            )

        if increment().rowcount:
            return

        try:
            with self.db.begin_nested():
                self.db.add(TokenUsage(
                    tenant_id=tenant_id,
                    date=day,
                    model=model,
                    provider=provider,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=total_tokens,
                    cost=cost,
                    request_count=1,
                ))
        except IntegrityError:
            # Another request created today's row between our update and insert
            increment()

    def credit_top_up(
        self,
        tenant_id: str,
        reference: str,
        amount: Union[Decimal, float, int, str],
        description: Optional[str] = None,
    ) -> TopUpResult:
        """
        Credit a paid top-up exactly once per ``reference``.

        A COMPLETED transaction with the same reference makes this a no-op
        that reports ``already_processed`` with the current balance. Two
        concurrent calls that both miss that check are serialised by the
        unique index on (tenant_id, reference) for COMPLETED rows: the loser
        rolls back and also reports ``already_processed``.
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("Top-up amount must be positive")
        if not reference:
            raise ValueError("Top-up reference is required")
        if self.db.get(Tenant, tenant_id) is None:
            raise ValueError(f"Tenant {tenant_id} not found")

        existing = self._completed_top_up(tenant_id, reference)
        if existing is not None:
            logger.info("Top-up %s for tenant %s already processed", reference, tenant_id)
            return self._already_processed(tenant_id, Decimal(existing.amount))

        try:
            self._apply_top_up(tenant_id, reference, amount, description)
        except DuplicatePaymentError:
            logger.info("Top-up %s for tenant %s lost a concurrent race; already processed", reference, tenant_id)
            return self._already_processed(tenant_id, amount)

        balance, _ = self.get_balance(tenant_id)
        logger.info("Added %s to tenant %s. New balance: %s", format_cost(amount), tenant_id, balance)
        return TopUpResult(already_processed=False, balance=balance, amount=amount)

    def _completed_top_up(self, tenant_id: str, reference: str) -> Optional[BillingTransaction]:
        return self.db.query(BillingTransaction).filter(
            BillingTransaction.tenant_id == tenant_id,
            BillingTransaction.reference == reference,
            BillingTransaction.status == TransactionStatus.COMPLETED,
        ).first()

    def _apply_top_up(self, tenant_id: str, reference: str, amount: Decimal, description: Optional[str]) -> None:
        try:
            self.db.add(BillingTransaction(
                tenant_id=tenant_id,
                type=TransactionType.TOP_UP,
                amount=amount,
                description=description or f"Added {format_cost(amount)} credits",
                status=TransactionStatus.COMPLETED,
                reference=reference,
            ))
            # The ledger row goes in first; a duplicate fails here before any credit
            self.db.flush()

            self.db.execute(
                update(Tenant)
                .where(Tenant.id == tenant_id)
                .values(balance=Tenant.balance + amount)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicatePaymentError(reference) from e
        except Exception:
            self.db.rollback()
            raise

    def _already_processed(self, tenant_id: str, amount: Decimal) -> TopUpResult:
        balance, _ = self.get_balance(tenant_id)
        return TopUpResult(already_processed=True, balance=balance, amount=amount)

    def record_failed_top_up(
        self,
        tenant_id: str,
        reference: str,
        amount: Union[Decimal, float, int, str],
        reason: str,
    ) -> BillingTransaction:
        """Log an expired or failed payment. The balance is not touched."""
        transaction = BillingTransaction(
            tenant_id=tenant_id,
            type=TransactionType.TOP_UP,
            amount=Decimal(str(amount)),
            description=reason,
            status=TransactionStatus.FAILED,
            reference=reference,
        )
        self.db.add(transaction)
        self.db.commit()
        self.db.refresh(transaction)
        logger.info("Recorded failed top-up %s for tenant %s", reference, tenant_id)
        return transaction

    def transaction_history(self, tenant_id: str, limit: int = 50) -> List[dict]:
        transactions = self.db.query(BillingTransaction).filter(
            BillingTransaction.tenant_id == tenant_id
        ).order_by(BillingTransaction.created_at.desc()).limit(limit).all()

        return [
            {
                "id": tx.id,
                "name": TRANSACTION_NAMES.get(tx.type, "Adjustment"),
                "description": tx.description,
                "type": tx.type,
                "amount": Decimal(tx.amount),
                "status": tx.status,
                "reference": tx.reference,
                "date": tx.created_at.isoformat() if tx.created_at else None,
            }
            for tx in transactions
        ]

    def monthly_usage(self, tenant_id: str, months: int = 6, today: Optional[date] = None) -> List[dict]:
        """Usage totals per calendar month, newest first."""
        today = today or datetime.utcnow().date()
        year, month = today.year, today.month - (months - 1)
        while month <= 0:
            month += 12
            year -= 1
        since = date(year, month, 1)

        rows = self.db.query(TokenUsage).filter(
            TokenUsage.tenant_id == tenant_id,
            TokenUsage.date >= since,
        ).order_by(TokenUsage.date.desc()).all()

        usage_by_month: Dict[Tuple[int, int], dict] = {}
        for row in rows:
            key = (row.date.year, row.date.month)
            if key not in usage_by_month:
                usage_by_month[key] = {
                    "month": row.date.strftime("%B %Y"),
                    "cost": Decimal('0'),
                    "tokens": 0,
                    "requests": 0,
                }
            usage_by_month[key]["cost"] += Decimal(row.cost or 0)
            usage_by_month[key]["tokens"] += row.total_tokens or 0
            usage_by_month[key]["requests"] += row.request_count or 0

        return [usage_by_month[key] for key in sorted(usage_by_month, reverse=True)]
