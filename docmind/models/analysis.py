# docmind/models/analysis.py
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from docmind.db.base import Base, utcnow


class Analysis(Base):
    __tablename__ = "analyses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # one live analysis per file; re-analysis replaces the row
    file_id = Column(String(36), ForeignKey("files.id", ondelete="CASCADE"), unique=True, nullable=False)
    summary = Column(Text, nullable=False, default="")
    key_points = Column(JSON, nullable=False, default=list)
    insights = Column(JSON, nullable=False, default=list)
    analysis_metadata = Column("metadata", JSON, nullable=False, default=dict)
    entities = Column(JSON, nullable=False, default=list)
    relationships = Column(JSON, nullable=True)
    variant = Column(String(20), nullable=False)
    model = Column(String(100), nullable=True)
    degraded = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    file = relationship("File", back_populates="analysis")
