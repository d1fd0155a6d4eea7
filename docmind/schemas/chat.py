# docmind/schemas/chat.py
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(min_length=1, max_length=10000)


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1)
    file_ids: Optional[List[UUID]] = Field(default=None, alias="fileIds")

    class Config:
        populate_by_name = True


class Source(BaseModel):
    """One entry of the finalized source list; `citation` matches [n] in the answer."""

    file_id: str
    file_name: str
    snippet: str
    similarity: float
    citation: int

    class Config:
        alias_generator = to_camel
        populate_by_name = True
