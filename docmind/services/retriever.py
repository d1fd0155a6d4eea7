# docmind/services/retriever.py
import logging
from typing import Dict, List, Optional, Sequence

from docmind.repositories.knowledge_repository import DEFAULT_LIMIT, DEFAULT_THRESHOLD, KnowledgeRepository
from docmind.schemas.knowledge import SearchResult
from docmind.services.embedding_service import EmbeddingService

logger = logging.getLogger(__name__)

CONTEXT_DELIMITER = "\n\n---\n\n"
UNKNOWN_FILE_NAME = "Unknown file"


def format_context_block(citation: int, file_name: str, content: str) -> str:
    return f'[{citation}] From "{file_name}":\n{content}'


def build_context(results: Sequence[SearchResult], file_names: Dict[str, str]) -> str:
    """
    Numbered context blocks in the order `results` were given.

    Block i (1-based) is what the model cites as [i]; unknown file ids get a
    placeholder name.
    """
    return CONTEXT_DELIMITER.join(
        format_context_block(i, file_names.get(r.file_id, UNKNOWN_FILE_NAME), r.content)
        for i, r in enumerate(results, start=1)
    )


class Retriever:
    def __init__(self, embedding_service: EmbeddingService, knowledge_repository: KnowledgeRepository):
        self.embedding_service = embedding_service
        self.knowledge_repository = knowledge_repository

    async def search(
        self,
        query: str,
        user_id: str,
        file_ids: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> List[SearchResult]:
        """Ranked chunks for `query`; ranking is the knowledge store's job."""
        if not query or not query.strip():
            return []

        query_vector = await self.embedding_service.create_embedding(query)
        results = await self.knowledge_repository.similarity_search(
            query_vector,
            user_id=user_id,
            file_ids=file_ids,
            threshold=threshold,
            limit=limit,
        )
        logger.debug("Retrieved %d chunks for user %s", len(results), user_id)
        return results

    build_context = staticmethod(build_context)
