"""Billing routes: balance, history and the payment webhook entry point."""
import logging
import secrets
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kbhub.core.config import settings
from kbhub.core.security import get_current_member, require_admin
from kbhub.db.sessions import get_db
from kbhub.models import TenantMember
from kbhub.services.billing import BillingLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


class TopUpRequest(BaseModel):
    reference: str
    tenantId: str
    amount: Decimal = Field(gt=0)


class FailedTopUpRequest(BaseModel):
    reference: str
    tenantId: str
    amount: Decimal
    reason: Optional[str] = None


def verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)) -> None:
    # An unset secret disables the webhook
    if not settings.WEBHOOK_SECRET:
        logger.warning("Rejected webhook call: WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Webhook is not configured")
    if not x_webhook_secret or not secrets.compare_digest(x_webhook_secret, settings.WEBHOOK_SECRET):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.get("/balance")
def get_balance(
    member: TenantMember = Depends(get_current_member),
    db: Session = Depends(get_db)
):
    balance, total_spent = BillingLedger(db).get_balance(member.tenant_id)
    return {
        "balance": balance,
        "totalSpent": total_spent,
        "hasInsufficientBalance": balance <= 0,
    }


@router.get("/history")
def get_history(
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Recent ledger entries plus usage totals for the last six months."""
    ledger = BillingLedger(db)
    return {
        "transactions": ledger.transaction_history(admin.tenant_id),
        "monthlyUsage": ledger.monthly_usage(admin.tenant_id),
    }


@router.post("/top-up", dependencies=[Depends(verify_webhook_secret)])
def top_up(request: TopUpRequest, db: Session = Depends(get_db)):
    """
    Credit a successful payment.

    Idempotent per ``reference``: a repeated delivery answers
    ``alreadyProcessed: true`` and leaves the balance unchanged.
    """
    try:
        result = BillingLedger(db).credit_top_up(request.tenantId, request.reference, request.amount)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {
        "success": True,
        "alreadyProcessed": result.already_processed,
        "balance": result.balance,
        "amount": result.amount,
        "message": result.message,
    }


@router.post("/top-up/failed", dependencies=[Depends(verify_webhook_secret)])
def top_up_failed(request: FailedTopUpRequest, db: Session = Depends(get_db)):
    """Record an expired or failed payment without crediting anything."""
    BillingLedger(db).record_failed_top_up(
        request.tenantId,
        request.reference,
        request.amount,
        request.reason or "Payment failed",
    )
    return {"received": True}
