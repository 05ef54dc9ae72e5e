"""API key issuing, verification and per-key request limits."""
import logging
import secrets
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Tuple, Union

from passlib.context import CryptContext
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kbhub.models import ApiKey, ApiKeyUsage

logger = logging.getLogger(__name__)

# Keys are long random tokens, so a fast KDF is enough
key_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

KEY_PREFIX = "kb_"
PREFIX_LENGTH = 11  # "kb_" plus the first 8 characters of the token


def generate_api_key() -> str:
    return KEY_PREFIX + secrets.token_urlsafe(32)


def hash_api_key(raw_key: str) -> str:
    return key_context.hash(raw_key)


def verify_api_key(raw_key: str, key_hash: str) -> bool:
    return key_context.verify(raw_key, key_hash)


def create_api_key(
    db: Session,
    tenant_id: str,
    name: str,
    daily_limit: Optional[int] = None,
    monthly_limit: Optional[int] = None,
    expires_at: Optional[datetime] = None,
) -> Tuple[ApiKey, str]:
    """Issue a key. The raw key is returned once and never stored."""
    raw_key = generate_api_key()
    api_key = ApiKey(
        tenant_id=tenant_id,
        name=name,
        key_prefix=raw_key[:PREFIX_LENGTH],
        key_hash=hash_api_key(raw_key),
        daily_limit=daily_limit,
        monthly_limit=monthly_limit,
        expires_at=expires_at,
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)
    return api_key, raw_key


def find_api_key(db: Session, tenant_id: str, raw_key: str) -> Optional[ApiKey]:
    """Return the tenant's enabled key matching ``raw_key``, if any."""
    candidates = db.query(ApiKey).filter(
        ApiKey.tenant_id == tenant_id,
        ApiKey.is_enabled.is_(True),
        ApiKey.key_prefix == raw_key[:PREFIX_LENGTH],
    ).all()
    for candidate in candidates:
        if verify_api_key(raw_key, candidate.key_hash):
            return candidate
    return None


def is_expired(api_key: ApiKey, now: Optional[datetime] = None) -> bool:
    if api_key.expires_at is None:
        return False
    return api_key.expires_at <= (now or datetime.utcnow())


def _requests_since(db: Session, api_key_id: str, since: date) -> int:
    total = db.query(func.coalesce(func.sum(ApiKeyUsage.request_count), 0)).filter(
        ApiKeyUsage.api_key_id == api_key_id,
        ApiKeyUsage.date >= since,
    ).scalar()
    return int(total or 0)


def check_daily_limit(db: Session, api_key: ApiKey, today: Optional[date] = None) -> bool:
    """True while today's request count is below the daily limit."""
    if api_key.daily_limit is None:
        return True
    today = today or datetime.utcnow().date()
    return _requests_since(db, api_key.id, today) < api_key.daily_limit


def check_monthly_limit(db: Session, api_key: ApiKey, today: Optional[date] = None) -> bool:
    """True while this calendar month's request count is below the monthly limit."""
    if api_key.monthly_limit is None:
        return True
    today = today or datetime.utcnow().date()
    return _requests_since(db, api_key.id, today.replace(day=1)) < api_key.monthly_limit


def track_api_key_usage(db: Session, api_key_id: str, cost: Union[Decimal, float]) -> None:
    """Count one request against the key, incrementing today's row in SQL."""
    cost = Decimal(str(cost))
    today = datetime.utcnow().date()

    def increment():
        return db.execute(
            update(ApiKeyUsage)
            .where(ApiKeyUsage.api_key_id == api_key_id, ApiKeyUsage.date == today)
            .values(
                request_count=ApiKeyUsage.request_count + 1,
                cost=ApiKeyUsage.cost + cost,
            )
            .execution_options(synchronize_session=False)
        )

    try:
        if not increment().rowcount:
            try:
                with db.begin_nested():
                    db.add(ApiKeyUsage(api_key_id=api_key_id, date=today, request_count=1, cost=cost))
            except IntegrityError:
                increment()
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to track usage for API key %s", api_key_id)
        raise
