# docmind/schemas/analysis.py
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class Insight(BaseModel):
    title: str
    description: str
    importance: Literal["low", "medium", "high"] = "medium"


class AnalysisMetadata(BaseModel):
    topics: List[str] = Field(default_factory=list)
    language: str = "en"
    sentiment: Optional[Literal["positive", "neutral", "negative"]] = None
    word_count: Optional[int] = Field(default=None, alias="wordCount")
    page_count: Optional[int] = Field(default=None, alias="pageCount")

    class Config:
        populate_by_name = True


class Entity(BaseModel):
    name: str
    type: str
    context: Optional[str] = None


class Relationship(BaseModel):
    source: str
    target: str
    type: str
    strength: float = Field(ge=0.0, le=1.0)


class AnalysisResult(BaseModel):
    """Structured output of one analysis call."""

    summary: str
    key_points: List[str] = Field(default_factory=list, alias="keyPoints")
    insights: List[Insight] = Field(default_factory=list)
    metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)
    entities: List[Entity] = Field(default_factory=list)
    relationships: Optional[List[Relationship]] = None
    degraded: bool = False

    class Config:
        populate_by_name = True

    def as_text(self) -> str:
        """Plain-text rendering used as knowledge text when nothing could be extracted."""
        parts = [f"Summary: {self.summary}"]
        if self.key_points:
            parts.append("Key points:\n" + "\n".join(f"- {p}" for p in self.key_points))
        if self.insights:
            parts.append(
                "Insights:\n"
                + "\n".join(f"- {i.title} ({i.importance}): {i.description}" for i in self.insights)
            )
        if self.metadata.topics:
            parts.append("Topics: " + ", ".join(self.metadata.topics))
        return "\n\n".join(parts)
