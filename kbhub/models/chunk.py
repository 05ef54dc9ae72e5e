"""Document chunk model."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, Integer, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from kbhub.db.base import Base, new_id


class DocumentChunk(Base):
    """Embedded span of one document version's text.

    ``embedding`` is a JSON float array so the same schema works on SQLite.
    """

    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("version_id", "chunk_index", name="uq_document_chunks_version_index"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    version_id = Column(String(36), ForeignKey("document_versions.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    chunk_index = Column(Integer, nullable=False)
    embedding = Column(JSON, nullable=False)
    metadata_json = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    version = relationship("DocumentVersion", back_populates="chunks")
    document = relationship("Document")
