"""Knowledge base routes for signed-in tenant members."""
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kbhub.core.errors import InsufficientBalanceError, KBHubError
from kbhub.core.security import get_current_member
from kbhub.db.sessions import get_db
from kbhub.models import Document, TenantMember
from kbhub.routes.query import read_history, read_query
from kbhub.routes.responses import http_error, insufficient_balance_response
from kbhub.services.access import load_principal, visible_document_predicate
from kbhub.services.answer import AnswerGenerator
from kbhub.services.embeddings import EmbeddingClient
from kbhub.services.openai_service import ChatClient
from kbhub.services.providers import get_chat_client, get_embedding_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/kb", tags=["Knowledge Base"])


class AskRequest(BaseModel):
    query: Any = None
    conversationHistory: Any = None


class VisibleDocument(BaseModel):
    id: str
    name: str
    description: Optional[str]
    active_version_id: Optional[str]


@router.post("/ask")
def ask(
    request: AskRequest,
    member: TenantMember = Depends(get_current_member),
    db: Session = Depends(get_db),
    embedding_client: EmbeddingClient = Depends(get_embedding_client),
    chat_client: ChatClient = Depends(get_chat_client),
):
    """
    Ask the knowledge base as the signed-in member.

    Retrieval is limited to documents the member's tags (or admin role) allow.
    """
    query = read_query(request.query)
    history = read_history(request.conversationHistory)
    principal = load_principal(db, member.user_id, member.tenant_id)

    generator = AnswerGenerator(db, embedding_client, chat_client)
    try:
        result = generator.answer(query, member.tenant_id, history, principal=principal)
    except InsufficientBalanceError as e:
        return insufficient_balance_response(e.balance)
    except KBHubError as e:
        logger.error("Ask failed for tenant %s: %s", member.tenant_id, e)
        raise http_error(e)

    return result.to_dict()


@router.get("/documents", response_model=List[VisibleDocument])
def list_visible_documents(
    member: TenantMember = Depends(get_current_member),
    db: Session = Depends(get_db)
):
    """List the documents the signed-in member may see."""
    principal = load_principal(db, member.user_id, member.tenant_id)
    documents = db.query(Document).filter(
        visible_document_predicate(member.tenant_id, principal)
    ).order_by(Document.name).all()

    return [
        VisibleDocument(
            id=doc.id,
            name=doc.name,
            description=doc.description,
            active_version_id=doc.active_version_id,
        )
        for doc in documents
    ]
