"""Embeddable chat widget: admin management and the public message endpoint."""
import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kbhub.core.errors import ConfigurationError, KBHubError
from kbhub.core.security import require_admin
from kbhub.db.sessions import get_db
from kbhub.models import TenantMember, Widget
from kbhub.routes.conversations import exchange_response, read_content
from kbhub.routes.responses import http_error
from kbhub.services import conversations as conversation_service
from kbhub.services.answer import AnswerGenerator
from kbhub.services.billing import BillingLedger
from kbhub.services.documents import count_approved_documents
from kbhub.services.embeddings import EmbeddingClient
from kbhub.services.openai_service import ChatClient
from kbhub.services.providers import get_chat_client, get_embedding_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Widget"])


class CreateWidgetRequest(BaseModel):
    name: str


class UpdateWidgetRequest(BaseModel):
    is_enabled: bool


class WidgetResponse(BaseModel):
    id: str
    name: str
    is_enabled: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class WidgetMessageRequest(BaseModel):
    conversationId: Optional[str] = None
    content: Any = None


@router.post("/widgets", response_model=WidgetResponse, status_code=status.HTTP_201_CREATED)
def create_widget(
    request: CreateWidgetRequest,
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return conversation_service.create_widget(db, admin.tenant_id, request.name)


@router.get("/widgets", response_model=List[WidgetResponse])
def list_widgets(
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return db.query(Widget).filter(Widget.tenant_id == admin.tenant_id).order_by(Widget.created_at).all()


@router.patch("/widgets/{widget_id}", response_model=WidgetResponse)
def update_widget(
    widget_id: str,
    request: UpdateWidgetRequest,
    admin: TenantMember = Depends(require_admin),
    db: Session = Depends(get_db)
):
    widget = db.query(Widget).filter(Widget.id == widget_id, Widget.tenant_id == admin.tenant_id).first()
    if not widget:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Widget not found")
    widget.is_enabled = request.is_enabled
    db.commit()
    db.refresh(widget)
    return widget


@router.post("/widget/{widget_id}/message")
def send_widget_message(
    widget_id: str,
    request: WidgetMessageRequest,
    db: Session = Depends(get_db),
    embedding_client: EmbeddingClient = Depends(get_embedding_client),
    chat_client: ChatClient = Depends(get_chat_client),
):
    """
    Ask a question from an embedded widget.

    Visitors are anonymous, so only untagged documents are searched. A
    missing ``conversationId`` opens a new widget conversation. A failed
    balance gate is reported inside the reply rather than as an error.
    """
    content = read_content(request.content)

    widget = conversation_service.get_enabled_widget(db, widget_id)
    if not widget:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Widget not found or disabled")

    if request.conversationId:
        conversation = conversation_service.get_widget_conversation(db, request.conversationId, widget)
        if not conversation:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    else:
        conversation = conversation_service.create_conversation(db, widget.tenant_id, widget_id=widget.id)

    if not (embedding_client.is_configured and chat_client.is_configured):
        raise http_error(ConfigurationError("OpenAI API key is not configured"))

    sources = None
    if count_approved_documents(db, widget.tenant_id) == 0:
        reply = conversation_service.NO_KNOWLEDGE_BASE_REPLY
    elif not BillingLedger(db).check_balance(widget.tenant_id).has_balance:
        logger.warning("Widget %s answered without generation: tenant %s has no balance", widget.id, widget.tenant_id)
        reply = conversation_service.WIDGET_UNAVAILABLE_REPLY
    else:
        history = conversation_service.load_history(conversation)
        generator = AnswerGenerator(db, embedding_client, chat_client)
        try:
            result = generator.answer(content, widget.tenant_id, history, principal=None, enforce_balance=False)
        except KBHubError as e:
            logger.error("Widget %s failed for tenant %s: %s", widget.id, widget.tenant_id, e)
            raise http_error(e)
        reply = result.answer
        sources = [source.__dict__ for source in result.sources]

    user_message, assistant_message = conversation_service.record_exchange(
        db, conversation, content, reply, sources
    )
    body = exchange_response(user_message, assistant_message)
    body["conversationId"] = conversation.id
    return body
