import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from kbhub.routes import billing, conversations, documents, kb, query, widget
from kbhub.db.base import Base
from kbhub.db.sessions import engine
from kbhub.core.config import settings
from kbhub.services.providers import build_chat_client, build_embedding_client

# Import all models to ensure they're registered with Base
import kbhub.models  # noqa: F401

logger = logging.getLogger(__name__)

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Multi-tenant knowledge base with retrieval-augmented answers billed per token"
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(query.router)
app.include_router(kb.router)
app.include_router(documents.router)
app.include_router(billing.router)
app.include_router(conversations.router)
app.include_router(widget.router)


@app.on_event("startup")
async def startup_event():
    app.state.embedding_client = build_embedding_client()
    app.state.chat_client = build_chat_client()
    logger.info("%s v%s starting", settings.APP_NAME, settings.APP_VERSION)
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set; query and approval endpoints will fail")


@app.get("/health")
def health():
    return {"status": "ok"}
