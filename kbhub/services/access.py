"""Tag-based document visibility.

A document with no access tags is public within its tenant. A tagged
document is visible only to principals sharing at least one of its tags,
and to admins/owners, who bypass tag filtering. Callers with no principal
(API keys, the public widget) see public documents only.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Set, Union

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from kbhub.core.errors import AccessDeniedError
from kbhub.models import Document, Tag, TenantMember, member_tags


@dataclass(frozen=True)
class Principal:
    """Caller on whose behalf an access-scoped operation runs."""

    user_id: Optional[str] = None
    tag_ids: FrozenSet[str] = field(default_factory=frozenset)
    is_admin: bool = False


@dataclass(frozen=True)
class AllDocuments:
    pass


@dataclass(frozen=True)
class PublicOnly:
    pass


@dataclass(frozen=True)
class Restricted:
    tag_ids: FrozenSet[str]


AccessScope = Union[AllDocuments, PublicOnly, Restricted]


def scope_for(principal: Optional[Principal]) -> AccessScope:
    if principal is None:
        return PublicOnly()
    if principal.is_admin:
        return AllDocuments()
    if not principal.tag_ids:
        return PublicOnly()
    return Restricted(frozenset(principal.tag_ids))


def scope_predicate(scope: AccessScope):
    """SQL clause over Document implementing one access scope."""
    if isinstance(scope, AllDocuments):
        return None
    untagged = ~Document.access_tags.any()
    if isinstance(scope, PublicOnly):
        return untagged
    return or_(untagged, Document.access_tags.any(Tag.id.in_(sorted(scope.tag_ids))))


def visible_document_predicate(tenant_id: str, principal: Optional[Principal]):
    """
    Build the document filter for ``principal`` inside ``tenant_id``.

    The result is meant to be pushed into the query that loads chunks, so a
    restricted principal never materialises the tenant's full chunk set.
    """
    clause = scope_predicate(scope_for(principal))
    if clause is None:
        return Document.tenant_id == tenant_id
    return and_(Document.tenant_id == tenant_id, clause)


def get_user_tag_ids(db: Session, user_id: str, tenant_id: str) -> Set[str]:
    rows = db.execute(
        select(member_tags.c.tag_id)
        .join(TenantMember, TenantMember.id == member_tags.c.member_id)
        .where(TenantMember.user_id == user_id, TenantMember.tenant_id == tenant_id)
    ).scalars()
    return set(rows)


def is_admin_or_owner(db: Session, user_id: str, tenant_id: str) -> bool:
    member = db.query(TenantMember).filter(
        TenantMember.user_id == user_id,
        TenantMember.tenant_id == tenant_id,
    ).first()
    return bool(member and member.is_admin_or_owner)


def load_principal(db: Session, user_id: str, tenant_id: str) -> Principal:
    """Resolve a user's principal; admins skip the tag lookup."""
    if is_admin_or_owner(db, user_id, tenant_id):
        return Principal(user_id=user_id, is_admin=True)
    return Principal(user_id=user_id, tag_ids=frozenset(get_user_tag_ids(db, user_id, tenant_id)))


def can_view(principal: Optional[Principal], document_tag_ids: Iterable[str]) -> bool:
    """In-memory form of the predicate, for a single already-loaded document."""
    scope = scope_for(principal)
    tags = set(document_tag_ids)
    if isinstance(scope, AllDocuments) or not tags:
        return True
    if isinstance(scope, PublicOnly):
        return False
    return bool(tags & scope.tag_ids)


def get_visible_document(
    db: Session,
    tenant_id: str,
    principal: Optional[Principal],
    document_id: str,
) -> Document:
    """
    Load a document the principal may see.

    Raises:
        AccessDeniedError: If it does not exist in the tenant or is not
            visible; both cases look the same to the caller.
    """
    document = db.query(Document).filter(
        Document.id == document_id,
        visible_document_predicate(tenant_id, principal),
    ).first()
    if document is None:
        raise AccessDeniedError("Document not found")
    return document
