# docmind/models/file.py
import uuid
from enum import Enum

from sqlalchemy import JSON, BigInteger, Column, DateTime, String, Text
from sqlalchemy.orm import relationship

from docmind.db.base import Base, utcnow


class FileStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class File(Base):
    __tablename__ = "files"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    media_type = Column(String(255), nullable=False)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    storage_path = Column(String(1024), nullable=False)
    status = Column(String(20), nullable=False, default=FileStatus.PENDING.value, index=True)
    error_message = Column(Text, nullable=True)
    file_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    analysis = relationship(
        "Analysis",
        back_populates="file",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    chunks = relationship(
        "KnowledgeChunk",
        back_populates="file",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    jobs = relationship(
        "ProcessingJob",
        back_populates="file",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
