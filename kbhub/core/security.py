"""Security utilities: member JWTs and tenant API keys."""
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from kbhub.core.config import settings
from kbhub.db.sessions import get_db
from kbhub.models import ApiKey, Tenant, TenantMember
from kbhub.services.api_keys import find_api_key, is_expired


# Bearer scheme; missing headers are reported as 401 below
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token. ``data`` carries ``sub`` (user) and ``tenant``."""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise _unauthorized("Could not validate credentials")


async def get_current_member(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> TenantMember:
    """
    Dependency resolving the tenant membership behind a member JWT.

    Usage:
        @router.get("/protected")
        def protected_route(member: TenantMember = Depends(get_current_member)):
            return {"tenant_id": member.tenant_id}
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = decode_token(credentials.credentials)
    user_id: Optional[str] = payload.get("sub")
    tenant_id: Optional[str] = payload.get("tenant")
    if user_id is None or tenant_id is None:
        raise _unauthorized("Invalid authentication credentials")

    member = db.query(TenantMember).filter(
        TenantMember.user_id == user_id,
        TenantMember.tenant_id == tenant_id,
    ).first()
    if member is None:
        raise _unauthorized("User is not a member of this tenant")

    return member


async def require_admin(member: TenantMember = Depends(get_current_member)) -> TenantMember:
    """Dependency allowing only tenant admins and owners."""
    if not member.is_admin_or_owner:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can perform this action"
        )
    return member


async def get_request_tenant(
    x_tenant: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> Tenant:
    """Resolve the tenant addressed by the ``X-Tenant`` (subdomain) header."""
    if not x_tenant:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-Tenant header"
        )
    tenant = db.query(Tenant).filter(Tenant.subdomain == x_tenant).first()
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found"
        )
    return tenant


async def get_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    tenant: Tenant = Depends(get_request_tenant),
    db: Session = Depends(get_db)
) -> ApiKey:
    """Dependency authenticating ``Authorization: Bearer <api_key>`` for a tenant."""
    if credentials is None:
        raise _unauthorized("Missing or invalid Authorization header. Use: Authorization: Bearer <api_key>")

    api_key = find_api_key(db, tenant.id, credentials.credentials)
    if api_key is None:
        raise _unauthorized("Invalid API key")
    if is_expired(api_key):
        raise _unauthorized("API key has expired")

    return api_key
