# FILE: tests/conftest.py
"""
Pytest configuration for the KBHub test suite.

Configures:
- an in-memory SQLite database shared by every session in a test
- fake embedding and chat providers
- a Seed helper for building tenants, members, tags and indexed documents
"""
import os

# Must be set before kbhub.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENAI_API_KEY"] = ""
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kbhub.core.config import settings
from kbhub.db.base import Base
from kbhub.models import (
    Document,
    DocumentChunk,
    DocumentVersion,
    MemberRole,
    Tag,
    Tenant,
    TenantMember,
    User,
    VersionStatus,
)
from kbhub.services.openai_service import ChatCompletion, TokenCounts


VOCABULARY = ["refund", "policy", "vacation", "sales", "engineering", "deploy", "pricing", "holiday"]


def keyword_vector(text: str) -> List[float]:
    """Deterministic bag-of-words embedding over a small vocabulary."""
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCABULARY]


class FakeEmbeddingClient:
    model = "text-embedding-3-small"

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.calls: List[List[str]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [keyword_vector(t) for t in texts]


class FakeChatClient:
    provider = "OpenAI"
    model = "gpt-4o-mini"

    def __init__(self, text: str = "Refunds are issued within 30 days.", usage: Optional[TokenCounts] = None,
                 configured: bool = True, error: Optional[Exception] = None):
        self.text = text
        self.usage = usage if usage is not None else TokenCounts(1000, 500, 1500)
        self.configured = configured
        self.error = error
        self.calls: List[Dict] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def complete(self, messages, temperature, max_tokens, tenant_id=None) -> ChatCompletion:
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return ChatCompletion(text=self.text, model=self.model, usage=self.usage)


class Seed:
    """Builds rows directly, bypassing the services under test."""

    def __init__(self, db):
        self.db = db
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def tenant(self, balance: str = "10", subdomain: Optional[str] = None) -> Tenant:
        n = self._next()
        tenant = Tenant(name=f"Tenant {n}", subdomain=subdomain or f"tenant{n}", balance=Decimal(balance))
        self.db.add(tenant)
        self.db.commit()
        return tenant

    def tag(self, tenant: Tenant, name: str) -> Tag:
        tag = Tag(tenant_id=tenant.id, name=name)
        self.db.add(tag)
        self.db.commit()
        return tag

    def member(self, tenant: Tenant, role: str = MemberRole.MEMBER, is_owner: bool = False,
               tags: Sequence[Tag] = ()) -> TenantMember:
        n = self._next()
        user = User(name=f"User {n}", email=f"user{n}@example.com")
        self.db.add(user)
        self.db.flush()
        member = TenantMember(tenant_id=tenant.id, user_id=user.id, role=role, is_owner=is_owner, tags=list(tags))
        self.db.add(member)
        self.db.commit()
        return member

    def document(self, tenant: Tenant, name: str, tags: Sequence[Tag] = (),
                 chunks: Sequence[str] = (), status: str = VersionStatus.APPROVED,
                 active: bool = True, vectors: Optional[Sequence[List[float]]] = None) -> Document:
        """Create a document with one version holding ``chunks``."""
        document = Document(tenant_id=tenant.id, name=name, access_tags=list(tags))
        self.db.add(document)
        self.db.flush()
        version = DocumentVersion(
            document_id=document.id,
            version_number=1,
            file_url=f"/files/{name}.txt",
            mime_type="text/plain",
            status=status,
            approved_at=datetime.utcnow() if status == VersionStatus.APPROVED else None,
        )
        self.db.add(version)
        self.db.flush()
        for index, text in enumerate(chunks):
            self.db.add(DocumentChunk(
                version_id=version.id,
                document_id=document.id,
                content=text,
                chunk_index=index,
                embedding=list(vectors[index]) if vectors is not None else keyword_vector(text),
            ))
        if active:
            document.active_version_id = version.id
        self.db.commit()
        return document


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    """Confine stored files to the per-test temporary directory."""
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def seed(db):
    return Seed(db)


@pytest.fixture
def embedding_client():
    return FakeEmbeddingClient()


@pytest.fixture
def chat_client():
    return FakeChatClient()
