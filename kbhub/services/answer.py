"""Grounded answer generation (retrieval-augmented)."""
import logging
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from kbhub.core.config import settings
from kbhub.core.errors import ConfigurationError, InsufficientBalanceError
from kbhub.services.access import Principal
from kbhub.services.billing import BillingLedger
from kbhub.services.embeddings import EmbeddingClient
from kbhub.services.openai_service import ChatClient
from kbhub.services.retrieval import RankedChunk, Retriever, build_context

logger = logging.getLogger(__name__)


NO_CONTEXT_ANSWER = (
    "I could not find any relevant information in the knowledge base to answer your question. "
    "Please make sure documents have been uploaded and approved."
)

SYSTEM_PROMPT = """You are a helpful AI assistant that answers questions based on the provided document context.

FORMATTING RULES:
- Use **Markdown formatting** in your responses for better readability
- Use bullet points or numbered lists when listing multiple items
- Use paragraphs to separate different ideas

IMPORTANT RULES:
- Answer questions ONLY using the information provided in the context below
- If the answer cannot be found in the context, clearly state that you don't have that information
- Be concise and accurate
- Do NOT mention chunk numbers or cite specific chunks in your response

Context from knowledge base:
{context}"""


@dataclass
class Source:
    document_id: str
    document_name: str
    document_url: str


@dataclass
class Usage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost: Decimal


@dataclass
class AnswerResult:
    answer: str
    sources: List[Source] = field(default_factory=list)
    usage: Optional[Usage] = None

    def to_dict(self) -> dict:
        return asdict(self)


def dedupe_sources(chunks: Sequence[RankedChunk]) -> List[Source]:
    """One source per document, in first-seen order."""
    seen: Dict[str, Source] = {}
    for chunk in chunks:
        if chunk.document_id not in seen:
            seen[chunk.document_id] = Source(
                document_id=chunk.document_id,
                document_name=chunk.document_name,
                document_url=chunk.document_url,
            )
    return list(seen.values())


def build_messages(
    query: str,
    context: str,
    history: Sequence[Dict[str, str]],
    history_turns: int,
) -> List[Dict[str, str]]:
    """System prompt with context, the last ``history_turns`` turns, then the query.

    History roles may be given as ``USER``/``ASSISTANT`` or ``user``/``assistant``.
    """
    messages = [{"role": "system", "content": SYSTEM_PROMPT.format(context=context)}]
    recent = list(history)[-history_turns:] if history_turns > 0 else []
    for turn in recent:
        role = "user" if str(turn.get("role", "")).lower() == "user" else "assistant"
        messages.append({"role": role, "content": turn.get("content", "")})
    messages.append({"role": "user", "content": query})
    return messages


class AnswerGenerator:
    """Runs balance gate, retrieval, generation and charging for one query."""

    def __init__(
        self,
        db: Session,
        embedding_client: EmbeddingClient,
        chat_client: ChatClient,
        ledger: Optional[BillingLedger] = None,
        top_k: Optional[int] = None,
        history_turns: Optional[int] = None,
    ):
        self.db = db
        self.embedding_client = embedding_client
        self.chat_client = chat_client
        self.ledger = ledger or BillingLedger(db)
        self.retriever = Retriever(db, embedding_client)
        self.top_k = top_k or settings.RETRIEVAL_TOP_K
        self.history_turns = settings.HISTORY_TURNS if history_turns is None else history_turns

    def answer(
        self,
        query: str,
        tenant_id: str,
        history: Optional[Sequence[Dict[str, str]]] = None,
        principal: Optional[Principal] = None,
        enforce_balance: bool = True,
    ) -> AnswerResult:
        """
        Answer ``query`` from the tenant's knowledge base.

        When nothing is retrieved a fixed fallback answer is returned: no chat
        call is made and nothing is charged. Once the chat model has returned
        usage the tenant is charged before this method returns.

        Raises:
            ConfigurationError: Provider credentials are missing (checked first)
            InsufficientBalanceError: ``enforce_balance`` is set and the gate fails
            ProviderError: The embedding or chat call failed; nothing is charged
        """
        if not (self.embedding_client.is_configured and self.chat_client.is_configured):
            raise ConfigurationError("OpenAI API key is not configured")

        if enforce_balance:
            status = self.ledger.check_balance(tenant_id)
            if not status.has_balance:
                raise InsufficientBalanceError(status.balance)

        chunks = self.retriever.retrieve(query, tenant_id, self.top_k, principal)
        if not chunks:
            return AnswerResult(answer=NO_CONTEXT_ANSWER)

        sources = dedupe_sources(chunks)
        messages = build_messages(query, build_context(chunks), history or [], self.history_turns)

        completion = self.chat_client.complete(
            messages,
            temperature=settings.CHAT_TEMPERATURE,
            max_tokens=settings.CHAT_MAX_TOKENS,
            tenant_id=tenant_id,
        )

        usage = None
        if completion.usage is not None:
            charge = self.ledger.track_token_usage(
                tenant_id,
                completion.model,
                completion.usage.prompt_tokens,
                completion.usage.completion_tokens,
                provider=self.chat_client.provider,
            )
            usage = Usage(
                prompt_tokens=completion.usage.prompt_tokens,
                completion_tokens=completion.usage.completion_tokens,
                total_tokens=completion.usage.total_tokens,
                cost=charge.cost,
            )
        else:
            logger.warning("Chat provider reported no usage for tenant %s; nothing charged", tenant_id)

        return AnswerResult(answer=completion.text, sources=sources, usage=usage)
