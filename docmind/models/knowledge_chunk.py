# docmind/models/knowledge_chunk.py
import uuid

from sqlalchemy import ARRAY, JSON, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from docmind.db.base import Base, utcnow

# postgres float[] in production, JSON list on sqlite
VectorType = JSON().with_variant(ARRAY(Float), "postgresql")


class KnowledgeChunk(Base):
    __tablename__ = "knowledge_chunks"
    __table_args__ = (
        Index("ix_knowledge_chunks_user_file", "user_id", "file_id"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    file_id = Column(String(36), ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    # chunks written by one analysis run share a generation
    generation = Column(String(36), nullable=False)
    content = Column(Text, nullable=False)
    embedding = Column(VectorType, nullable=False)
    chunk_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    file = relationship("File", back_populates="chunks")
