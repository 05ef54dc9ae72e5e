"""Stored conversations: threads, turns, history and feedback."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from kbhub.models import Conversation, Message, MessageFeedback, MessageRole, Widget

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"
TITLE_LENGTH = 50

# Replies stored in place of a generated answer
NOT_CONFIGURED_REPLY = (
    "OpenAI API key is not configured. Please configure it in the integration settings."
)
NO_KNOWLEDGE_BASE_REPLY = (
    "No knowledge base initialized. Please upload and approve documents first "
    "to enable AI-powered responses."
)
INSUFFICIENT_BALANCE_REPLY = (
    "Insufficient balance. Your account balance has been depleted. Please contact your "
    "administrator to add credits and continue using the AI search service."
)
WIDGET_UNAVAILABLE_REPLY = "Service temporarily unavailable. Please contact the administrator."

FEEDBACK_VALUES = (MessageFeedback.POSITIVE, MessageFeedback.NEGATIVE)


def title_from(content: str) -> str:
    """Conversation title taken from its first question."""
    content = content.strip()
    if len(content) > TITLE_LENGTH:
        return content[:TITLE_LENGTH] + "..."
    return content


def create_conversation(
    db: Session,
    tenant_id: str,
    user_id: Optional[str] = None,
    widget_id: Optional[str] = None,
    title: Optional[str] = None,
) -> Conversation:
    if not user_id and not widget_id:
        raise ValueError("A conversation needs a user or a widget")
    conversation = Conversation(
        tenant_id=tenant_id,
        user_id=user_id,
        widget_id=widget_id,
        title=(title or "").strip() or DEFAULT_TITLE,
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def get_member_conversation(
    db: Session, conversation_id: str, tenant_id: str, user_id: str
) -> Optional[Conversation]:
    return db.query(Conversation).filter(
        Conversation.id == conversation_id,
        Conversation.tenant_id == tenant_id,
        Conversation.user_id == user_id,
    ).first()


def get_widget_conversation(db: Session, conversation_id: str, widget: Widget) -> Optional[Conversation]:
    return db.query(Conversation).filter(
        Conversation.id == conversation_id,
        Conversation.tenant_id == widget.tenant_id,
        Conversation.widget_id == widget.id,
    ).first()


def list_conversations(db: Session, tenant_id: str, user_id: str) -> List[Dict[str, Any]]:
    """A member's conversations, most recently active first, with a preview of the first turn."""
    conversations = db.query(Conversation).filter(
        Conversation.tenant_id == tenant_id,
        Conversation.user_id == user_id,
    ).order_by(Conversation.updated_at.desc()).all()

    summaries = []
    for conversation in conversations:
        first = conversation.messages[0] if conversation.messages else None
        summaries.append({
            "id": conversation.id,
            "title": conversation.title,
            "createdAt": conversation.created_at,
            "updatedAt": conversation.updated_at,
            "messageCount": len(conversation.messages),
            "preview": first.content if first else "",
        })
    return summaries


def load_history(conversation: Conversation) -> List[Dict[str, str]]:
    """Stored turns in order, shaped for AnswerGenerator.answer."""
    return [{"role": message.role, "content": message.content} for message in conversation.messages]


def record_exchange(
    db: Session,
    conversation: Conversation,
    question: str,
    reply: str,
    sources: Optional[Sequence[Dict[str, Any]]] = None,
) -> Tuple[Message, Message]:
    """
    Store a question and its reply as the next two turns.

    The first exchange also renames a conversation still carrying the
    default title.
    """
    position = db.query(func.count(Message.id)).filter(
        Message.conversation_id == conversation.id
    ).scalar() or 0

    user_message = Message(
        conversation_id=conversation.id,
        position=position,
        role=MessageRole.USER,
        content=question,
    )
    assistant_message = Message(
        conversation_id=conversation.id,
        position=position + 1,
        role=MessageRole.ASSISTANT,
        content=reply,
        sources=list(sources) if sources else None,
    )
    db.add_all([user_message, assistant_message])

    if position == 0 and conversation.title == DEFAULT_TITLE:
        conversation.title = title_from(question)
    conversation.updated_at = datetime.utcnow()

    db.commit()
    db.refresh(user_message)
    db.refresh(assistant_message)
    return user_message, assistant_message


def get_member_message(db: Session, message_id: str, tenant_id: str, user_id: str) -> Optional[Message]:
    return db.query(Message).join(Conversation).filter(
        Message.id == message_id,
        Conversation.tenant_id == tenant_id,
        Conversation.user_id == user_id,
    ).first()


def set_feedback(db: Session, message: Message, feedback: Optional[str]) -> Message:
    """
    Record (or clear, with ``None``) feedback on an assistant reply.

    Raises:
        ValueError: Unknown feedback value, or the message is not a reply
    """
    if feedback is not None and feedback not in FEEDBACK_VALUES:
        raise ValueError("Invalid feedback value. Must be POSITIVE, NEGATIVE, or null")
    if message.role != MessageRole.ASSISTANT:
        raise ValueError("Feedback can only be provided for assistant messages")
    message.feedback = feedback
    db.commit()
    db.refresh(message)
    logger.info("Feedback %s recorded on message %s", feedback, message.id)
    return message


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "sources": message.sources or [],
        "feedback": message.feedback,
        "createdAt": message.created_at,
    }


def create_widget(db: Session, tenant_id: str, name: str) -> Widget:
    widget = Widget(tenant_id=tenant_id, name=name)
    db.add(widget)
    db.commit()
    db.refresh(widget)
    logger.info("Widget %s created for tenant %s", widget.id, tenant_id)
    return widget


def get_enabled_widget(db: Session, widget_id: str) -> Optional[Widget]:
    return db.query(Widget).filter(Widget.id == widget_id, Widget.is_enabled.is_(True)).first()
