"""Vector-similarity retrieval over access-filtered chunks."""
import logging
import math
from dataclasses import dataclass, asdict
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from kbhub.services.access import Principal, visible_document_predicate
from kbhub.services.embeddings import EmbeddingClient
from kbhub.services.vector_store import ChunkRepository

logger = logging.getLogger(__name__)


@dataclass
class RankedChunk:
    content: str
    document_id: str
    document_name: str
    document_url: str
    chunk_index: int
    similarity: float

    def to_dict(self) -> dict:
        return asdict(self)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); a zero-norm vector scores 0."""
    if len(a) != len(b):
        raise ValueError("Vectors must have the same length")

    dot_product = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot_product += x * y
        norm_a += x * x
        norm_b += y * y

    denominator = math.sqrt(norm_a) * math.sqrt(norm_b)
    return 0.0 if denominator == 0 else dot_product / denominator


def build_context(chunks: Sequence[RankedChunk]) -> str:
    """Render retrieved chunks as one delimited context block."""
    return "\n\n---\n\n".join(
        f"[Chunk {idx}]\n{chunk.content}" for idx, chunk in enumerate(chunks, 1)
    )


class Retriever:
    """Embeds a query and ranks the chunks a principal may see.

    This is a full linear scan over the candidate set, which is fine for
    tenants with chunk counts in the thousands.
    """

    def __init__(self, db: Session, embedding_client: EmbeddingClient):
        self.db = db
        self.embedding_client = embedding_client
        self.repository = ChunkRepository(db)

    def retrieve(
        self,
        query: str,
        tenant_id: str,
        top_k: int = 5,
        principal: Optional[Principal] = None,
    ) -> List[RankedChunk]:
        """
        Return the ``top_k`` most similar visible chunks.

        Ties on similarity are broken by (document_id, chunk_index) so the
        same inputs always give the same order. An empty candidate set yields
        an empty list.
        """
        query_embedding = self.embedding_client.embed(query)

        candidates = self.repository.chunks_for_tenant(
            tenant_id, visible_document_predicate(tenant_id, principal)
        )
        if not candidates:
            logger.info("No retrievable chunks for tenant %s", tenant_id)
            return []

        ranked = [
            RankedChunk(
                content=candidate.content,
                document_id=candidate.document_id,
                document_name=candidate.document_name,
                document_url=candidate.document_url,
                chunk_index=candidate.chunk_index,
                similarity=cosine_similarity(query_embedding, candidate.embedding),
            )
            for candidate in candidates
        ]
        ranked.sort(key=lambda c: (-c.similarity, c.document_id, c.chunk_index))

        logger.info(
            "Ranked %d candidate chunks for tenant %s, returning %d",
            len(ranked), tenant_id, min(top_k, len(ranked)),
        )
        return ranked[:top_k]
