"""Public query API, authenticated by tenant API key."""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kbhub.core.errors import InsufficientBalanceError, KBHubError
from kbhub.core.security import get_api_key, get_request_tenant
from kbhub.db.sessions import get_db
from kbhub.models import ApiKey, Tenant
from kbhub.routes.responses import http_error, insufficient_balance_response
from kbhub.services.answer import AnswerGenerator
from kbhub.services.api_keys import check_daily_limit, check_monthly_limit, track_api_key_usage
from kbhub.services.billing import BillingLedger
from kbhub.services.documents import count_approved_documents
from kbhub.services.embeddings import EmbeddingClient
from kbhub.services.openai_service import ChatClient
from kbhub.services.providers import get_chat_client, get_embedding_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Query"])

# Charged against the key when the provider reports no usage
FALLBACK_REQUEST_COST = Decimal("0.001")


class QueryRequest(BaseModel):
    # Loosely typed so malformed fields get a 400 instead of a 422
    query: Any = None
    conversationHistory: Any = None


def read_query(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Query is required and must be a non-empty string"
        )
    return value.strip()


def read_history(value: Any) -> List[Dict[str, str]]:
    """Validate ``conversationHistory`` into ``{"role", "content"}`` dicts."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="conversationHistory must be an array"
        )
    history = []
    for message in value:
        if (
            not isinstance(message, dict)
            or not isinstance(message.get("role"), str)
            or not isinstance(message.get("content"), str)
        ):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="conversationHistory entries need string role and content"
            )
        history.append({"role": message["role"], "content": message["content"]})
    return history


@router.post("/query")
def query_knowledge_base(
    request: QueryRequest,
    api_key: ApiKey = Depends(get_api_key),
    tenant: Tenant = Depends(get_request_tenant),
    db: Session = Depends(get_db),
    embedding_client: EmbeddingClient = Depends(get_embedding_client),
    chat_client: ChatClient = Depends(get_chat_client),
):
    """
    Answer a question from the tenant's knowledge base.

    API keys carry no tag grants, so only untagged documents are searched.
    """
    if not check_daily_limit(db, api_key):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Daily usage limit exceeded")
    if not check_monthly_limit(db, api_key):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Monthly usage limit exceeded")

    query = read_query(request.query)
    history = read_history(request.conversationHistory)

    if count_approved_documents(db, tenant.id) == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No knowledge base available. Please upload and approve documents first."
        )

    ledger = BillingLedger(db)
    balance = ledger.check_balance(tenant.id)
    if not balance.has_balance:
        return insufficient_balance_response(balance.balance)

    generator = AnswerGenerator(db, embedding_client, chat_client, ledger=ledger)
    try:
        result = generator.answer(query, tenant.id, history, principal=None, enforce_balance=False)
    except InsufficientBalanceError as e:
        return insufficient_balance_response(e.balance)
    except KBHubError as e:
        logger.error("Query failed for tenant %s: %s", tenant.id, e)
        raise http_error(e)

    track_api_key_usage(db, api_key.id, result.usage.cost if result.usage else FALLBACK_REQUEST_COST)

    return {
        "answer": result.answer,
        "query": query,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sources": [source.__dict__ for source in result.sources],
        "usage": {
            "tokens": result.usage.total_tokens,
            "cost": result.usage.cost,
        } if result.usage else None,
    }
