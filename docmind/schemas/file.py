# docmind/schemas/file.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class FileUploadResponse(BaseModel):
    file_id: str
    status: str
    message: str


class FileOut(BaseModel):
    id: str
    name: str
    media_type: str
    size_bytes: int
    status: str
    error_message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AnalysisOut(BaseModel):
    summary: str
    key_points: List[str]
    insights: List[Dict[str, Any]]
    analysis_metadata: Dict[str, Any]
    entities: List[Dict[str, Any]]
    relationships: Optional[List[Dict[str, Any]]] = None
    variant: str
    degraded: bool
    created_at: datetime

    class Config:
        from_attributes = True


class FileDetailOut(FileOut):
    file_metadata: Dict[str, Any] = {}
    analysis: Optional[AnalysisOut] = None


class ReanalyzeResponse(BaseModel):
    file_id: str
    queued: bool
    message: str
