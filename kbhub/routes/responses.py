"""Shared translation of domain errors to HTTP responses."""
from decimal import Decimal
from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from kbhub.core.errors import (
    AccessDeniedError,
    ConfigurationError,
    DocumentStateError,
    KBHubError,
    ProviderError,
)


def insufficient_balance_response(balance: Decimal) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content={
            "error": "Insufficient balance. Please add credits to continue using the API.",
            "code": "INSUFFICIENT_BALANCE",
            "balance": float(balance),
        },
    )


def http_error(exc: KBHubError) -> HTTPException:
    """Map a domain error to the HTTPException a route should raise."""
    if isinstance(exc, AccessDeniedError):
        # Same answer for "missing" and "forbidden"
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    if isinstance(exc, DocumentStateError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ProviderError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Upstream model provider failed")
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")
