"""Stored conversations for signed-in members, and feedback on their replies."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kbhub.core.errors import KBHubError
from kbhub.core.security import get_current_member
from kbhub.db.sessions import get_db
from kbhub.models import TenantMember
from kbhub.routes.responses import http_error
from kbhub.services import conversations as conversation_service
from kbhub.services.access import load_principal
from kbhub.services.answer import AnswerGenerator
from kbhub.services.billing import BillingLedger
from kbhub.services.documents import count_approved_documents
from kbhub.services.embeddings import EmbeddingClient
from kbhub.services.openai_service import ChatClient
from kbhub.services.providers import get_chat_client, get_embedding_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Conversations"])


class CreateConversationRequest(BaseModel):
    title: Optional[str] = None


class SendMessageRequest(BaseModel):
    content: Any = None


class FeedbackRequest(BaseModel):
    feedback: Any = None


def read_content(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message content is required")
    return value.strip()


def exchange_response(user_message, assistant_message) -> dict:
    return {
        "userMessage": conversation_service.message_to_dict(user_message),
        "assistantMessage": conversation_service.message_to_dict(assistant_message),
    }


@router.get("/conversations")
def list_conversations(
    member: TenantMember = Depends(get_current_member),
    db: Session = Depends(get_db)
):
    return {"conversations": conversation_service.list_conversations(db, member.tenant_id, member.user_id)}


@router.post("/conversations")
def create_conversation(
    request: CreateConversationRequest,
    member: TenantMember = Depends(get_current_member),
    db: Session = Depends(get_db)
):
    """Start a conversation; the tenant needs at least one approved document."""
    if count_approved_documents(db, member.tenant_id) == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No knowledge base initialized. Please upload and approve documents first."
        )
    conversation = conversation_service.create_conversation(
        db, member.tenant_id, user_id=member.user_id, title=request.title
    )
    return {
        "conversation": {
            "id": conversation.id,
            "title": conversation.title,
            "createdAt": conversation.created_at,
            "updatedAt": conversation.updated_at,
        }
    }


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: str,
    member: TenantMember = Depends(get_current_member),
    db: Session = Depends(get_db)
):
    conversation = conversation_service.get_member_conversation(
        db, conversation_id, member.tenant_id, member.user_id
    )
    if not conversation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return {"messages": [conversation_service.message_to_dict(m) for m in conversation.messages]}


@router.post("/conversations/{conversation_id}/messages")
def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    member: TenantMember = Depends(get_current_member),
    db: Session = Depends(get_db),
    embedding_client: EmbeddingClient = Depends(get_embedding_client),
    chat_client: ChatClient = Depends(get_chat_client),
):
    """
    Ask a question inside a stored conversation.

    Earlier turns are the history sent to the model. When no answer can be
    generated the explanation is stored as the reply, so the thread still
    records the question.
    """
    content = read_content(request.content)
    conversation = conversation_service.get_member_conversation(
        db, conversation_id, member.tenant_id, member.user_id
    )
    if not conversation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")

    if not (embedding_client.is_configured and chat_client.is_configured):
        messages = conversation_service.record_exchange(
            db, conversation, content, conversation_service.NOT_CONFIGURED_REPLY
        )
        return exchange_response(*messages)

    if count_approved_documents(db, member.tenant_id) == 0:
        messages = conversation_service.record_exchange(
            db, conversation, content, conversation_service.NO_KNOWLEDGE_BASE_REPLY
        )
        return exchange_response(*messages)

    ledger = BillingLedger(db)
    balance = ledger.check_balance(member.tenant_id)
    if not balance.has_balance:
        messages = conversation_service.record_exchange(
            db, conversation, content, conversation_service.INSUFFICIENT_BALANCE_REPLY
        )
        body = exchange_response(*messages)
        body["error"] = {
            "code": "INSUFFICIENT_BALANCE",
            "message": "Insufficient balance. Please add credits to continue.",
            "balance": float(balance.balance),
        }
        return JSONResponse(status_code=status.HTTP_402_PAYMENT_REQUIRED, content=jsonable_encoder(body))

    history = conversation_service.load_history(conversation)
    principal = load_principal(db, member.user_id, member.tenant_id)
    generator = AnswerGenerator(db, embedding_client, chat_client, ledger=ledger)
    try:
        result = generator.answer(content, member.tenant_id, history, principal=principal, enforce_balance=False)
    except KBHubError as e:
        logger.error("Conversation %s failed for tenant %s: %s", conversation.id, member.tenant_id, e)
        raise http_error(e)

    sources = [source.__dict__ for source in result.sources]
    user_message, assistant_message = conversation_service.record_exchange(
        db, conversation, content, result.answer, sources
    )
    body = exchange_response(user_message, assistant_message)
    body["usage"] = {
        "tokens": result.usage.total_tokens,
        "cost": result.usage.cost,
    } if result.usage else None
    return body


@router.patch("/messages/{message_id}/feedback")
def update_feedback(
    message_id: str,
    request: FeedbackRequest,
    member: TenantMember = Depends(get_current_member),
    db: Session = Depends(get_db)
):
    """Mark a reply POSITIVE or NEGATIVE, or clear the mark with null."""
    if "feedback" not in request.model_fields_set:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="feedback is required")
    message = conversation_service.get_member_message(db, message_id, member.tenant_id, member.user_id)
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    try:
        message = conversation_service.set_feedback(db, message, request.feedback)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"message": {"id": message.id, "feedback": message.feedback}}
