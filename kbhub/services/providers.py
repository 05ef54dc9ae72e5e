"""Provider client lifecycle.

Clients are built once by the application entry point, stored on
``app.state`` and handed to routes through these dependencies, which tests
replace with fakes via ``app.dependency_overrides``.
"""
from fastapi import Request

from kbhub.core.config import settings
from kbhub.services.embeddings import EmbeddingClient
from kbhub.services.openai_service import ChatClient


def build_embedding_client() -> EmbeddingClient:
    return EmbeddingClient(
        api_key=settings.OPENAI_API_KEY,
        model=settings.EMBEDDING_MODEL,
        batch_size=settings.EMBEDDING_BATCH_SIZE,
    )


def build_chat_client() -> ChatClient:
    return ChatClient(api_key=settings.OPENAI_API_KEY, model=settings.OPENAI_MODEL)


def get_embedding_client(request: Request) -> EmbeddingClient:
    return request.app.state.embedding_client


def get_chat_client(request: Request) -> ChatClient:
    return request.app.state.chat_client
