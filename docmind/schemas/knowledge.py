# docmind/schemas/knowledge.py
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class ChunkCreate(BaseModel):
    user_id: str
    file_id: str
    chunk_index: int = Field(ge=0)
    content: str
    embedding: List[float]
    metadata: Optional[Dict[str, Any]] = None


class SearchResult(BaseModel):
    content: str
    file_id: str
    similarity: float
    chunk_index: int
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class KnowledgeSearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=500)
    file_ids: Optional[List[UUID]] = Field(default=None, alias="fileIds")
    limit: int = Field(default=10, ge=1, le=20)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    class Config:
        populate_by_name = True


class KnowledgeSearchResponse(BaseModel):
    results: List[SearchResult]
