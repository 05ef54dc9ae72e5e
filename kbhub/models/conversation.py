"""Widget, conversation and message models."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, Integer, Boolean, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from kbhub.db.base import Base, new_id


class MessageRole:
    USER = "USER"
    ASSISTANT = "ASSISTANT"


class MessageFeedback:
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"


class Widget(Base):
    """Embeddable chat widget. Visitors ask as the public principal."""

    __tablename__ = "widgets"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="widgets")
    conversations = relationship("Conversation", back_populates="widget", cascade="all, delete-orphan")


class Conversation(Base):
    """Chat thread owned by a member (``user_id``) or opened through a widget."""

    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    widget_id = Column(String(36), ForeignKey("widgets.id", ondelete="CASCADE"), index=True)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="conversations")
    widget = relationship("Widget", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.position",
    )


class Message(Base):
    """One turn of a conversation.

    ``position`` orders turns; timestamps of a user message and its reply
    can collide.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "position", name="uq_messages_position"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    sources = Column(JSON)
    feedback = Column(String(20))
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
