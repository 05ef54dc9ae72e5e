"""Chunk repository: persisted chunks plus their embedding vectors."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from kbhub.models import Document, DocumentChunk, DocumentVersion, VersionStatus

logger = logging.getLogger(__name__)


@dataclass
class CandidateChunk:
    """A chunk row joined with the attribution fields of its document."""

    content: str
    embedding: List[float]
    document_id: str
    document_name: str
    document_url: str
    chunk_index: int


class ChunkRepository:
    """Reads and writes DocumentChunk rows scoped by document version."""

    def __init__(self, db: Session):
        self.db = db

    def replace_chunks(
        self,
        version_id: str,
        chunks: Sequence[Dict[str, Any]],
        embeddings: Sequence[Sequence[float]],
    ) -> int:
        """
        Replace every chunk of a version with a new set.

        Delete and insert run in one transaction: if the insert fails the
        rollback restores the previous chunks, and concurrent readers never
        see a half-deleted set.

        Args:
            version_id: Version whose chunks are replaced
            chunks: ``{"text", "index", "metadata"}`` dictionaries from the chunker
            embeddings: One vector per chunk, same order

        Returns:
            Number of chunks stored
        """
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Got {len(chunks)} chunks but {len(embeddings)} embeddings for version {version_id}"
            )

        version = self.db.get(DocumentVersion, version_id)
        if version is None:
            raise ValueError(f"Document version {version_id} not found")
        document_id = version.document_id

        try:
            self.db.query(DocumentChunk).filter(
                DocumentChunk.version_id == version_id
            ).delete(synchronize_session=False)

            self.db.add_all([
                DocumentChunk(
                    version_id=version_id,
                    document_id=document_id,
                    content=chunk["text"],
                    chunk_index=chunk["index"],
                    embedding=list(embedding),
                    metadata_json=chunk.get("metadata"),
                )
                for chunk, embedding in zip(chunks, embeddings)
            ])
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Failed to store chunks for version %s; previous chunks kept", version_id)
            raise

        logger.info("Stored %d chunks for version %s", len(chunks), version_id)
        return len(chunks)

    def chunks_for_version(self, version_id: str) -> List[DocumentChunk]:
        return self.db.query(DocumentChunk).filter(
            DocumentChunk.version_id == version_id
        ).order_by(DocumentChunk.chunk_index).all()

    def chunks_for_tenant(self, tenant_id: str, predicate: Optional[Any] = None) -> List[CandidateChunk]:
        """
        Load the retrievable chunks of a tenant.

        Only chunks of each document's active, APPROVED version are returned.
        ``predicate`` (a clause over Document, see
        ``kbhub.services.access.visible_document_predicate``) is applied in
        the same query, before any chunk row is loaded.
        """
        stmt = (
            select(
                DocumentChunk.content,
                DocumentChunk.embedding,
                DocumentChunk.chunk_index,
                Document.id,
                Document.name,
                DocumentVersion.file_url,
            )
            .join(Document, DocumentChunk.document_id == Document.id)
            .join(
                DocumentVersion,
                and_(
                    DocumentVersion.id == Document.active_version_id,
                    DocumentVersion.id == DocumentChunk.version_id,
                ),
            )
            .where(
                Document.tenant_id == tenant_id,
                DocumentVersion.status == VersionStatus.APPROVED,
            )
            .order_by(Document.id, DocumentChunk.chunk_index)
        )
        if predicate is not None:
            stmt = stmt.where(predicate)

        return [
            CandidateChunk(
                content=row[0],
                embedding=row[1],
                chunk_index=row[2],
                document_id=row[3],
                document_name=row[4],
                document_url=row[5],
            )
            for row in self.db.execute(stmt)
        ]
