# docmind/models/__init__.py
from docmind.models.file import File, FileStatus
from docmind.models.analysis import Analysis
from docmind.models.knowledge_chunk import KnowledgeChunk
from docmind.models.processing_job import JobStatus, ProcessingJob

__all__ = [
    "Analysis",
    "File",
    "FileStatus",
    "JobStatus",
    "KnowledgeChunk",
    "ProcessingJob",
]
