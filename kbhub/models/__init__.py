"""Database models."""
from kbhub.models.tenant import Tenant
from kbhub.models.user import User
from kbhub.models.tag import Tag, document_tags, member_tags
from kbhub.models.member import TenantMember, MemberRole
from kbhub.models.document import Document, DocumentVersion, VersionStatus
from kbhub.models.chunk import DocumentChunk
from kbhub.models.billing import TokenUsage, BillingTransaction, TransactionType, TransactionStatus
from kbhub.models.api_key import ApiKey, ApiKeyUsage
from kbhub.models.conversation import Widget, Conversation, Message, MessageRole, MessageFeedback

__all__ = [
    "Tenant",
    "User",
    "Tag",
    "document_tags",
    "member_tags",
    "TenantMember",
    "MemberRole",
    "Document",
    "DocumentVersion",
    "VersionStatus",
    "DocumentChunk",
    "TokenUsage",
    "BillingTransaction",
    "TransactionType",
    "TransactionStatus",
    "ApiKey",
    "ApiKeyUsage",
    "Widget",
    "Conversation",
    "Message",
    "MessageRole",
    "MessageFeedback",
]
