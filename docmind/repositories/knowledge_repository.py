# docmind/repositories/knowledge_repository.py
"""
The knowledge store: chunk + embedding rows per (user, file).

Writes for one file are all-or-nothing. `replace_for_file` inserts the new
chunk set under a fresh generation and deletes every older generation in the
same transaction, so a reader sees either the old complete set or the new
complete set. Every read is scoped by user id.
"""

import logging
import uuid
from typing import List, Optional, Sequence

import numpy as np
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docmind.core.errors import NotFound, PersistenceError, ValidationError
from docmind.models import File, KnowledgeChunk
from docmind.schemas.knowledge import ChunkCreate, SearchResult

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.7
DEFAULT_LIMIT = 10


def cosine_similarities(query_vector: Sequence[float], vectors: Sequence[Sequence[float]]) -> List[float]:
    """Cosine similarity of `query_vector` against each row, clamped into [0, 1]."""
    if not len(vectors):
        return []
    a = np.asarray(vectors, dtype=float)
    q = np.asarray(query_vector, dtype=float)
    if a.ndim != 2 or a.shape[1] != q.shape[0]:
        raise ValidationError(
            f"Query vector has {q.shape[0]} dimensions, stored vectors have {a.shape[-1]}"
        )
    # zero vectors get similarity 0 instead of NaN
    a_norm = np.linalg.norm(a, axis=1)
    q_norm = np.linalg.norm(q)
    denom = a_norm * q_norm
    dots = a @ q
    sims = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
    return np.clip(sims, 0.0, 1.0).tolist()


class KnowledgeRepository:
    def __init__(self, db: AsyncSession, dimensions: Optional[int] = None):
        self.db = db
        self.dimensions = dimensions

    def _check_entries(self, entries: Sequence[ChunkCreate]) -> None:
        for entry in entries:
            if self.dimensions is not None and len(entry.embedding) != self.dimensions:
                raise ValidationError(
                    f"Chunk {entry.chunk_index} of file {entry.file_id} has "
                    f"{len(entry.embedding)} dimensions, expected {self.dimensions}"
                )

    def _rows(self, entries: Sequence[ChunkCreate], generation: str) -> List[KnowledgeChunk]:
        return [
            KnowledgeChunk(
                user_id=e.user_id,
                file_id=e.file_id,
                chunk_index=e.chunk_index,
                generation=generation,
                content=e.content,
                embedding=list(e.embedding),
                chunk_metadata=e.metadata,
            )
            for e in entries
        ]

    async def insert_batch(self, entries: Sequence[ChunkCreate]) -> int:
        """
        Insert the first chunk set of one or more files in one transaction;
        returns the persisted count.

        Files that already have chunks are rejected: a second batch would sit
        next to the first as a mixed set. Re-runs go through `replace_for_file`.
        """
        if not entries:
            return 0
        self._check_entries(entries)
        generation = str(uuid.uuid4())
        file_ids = {e.file_id for e in entries}
        try:
            existing = (
                await self.db.execute(
                    select(KnowledgeChunk.file_id).where(KnowledgeChunk.file_id.in_(file_ids)).distinct()
                )
            ).scalars().all()
            if existing:
                await self.db.rollback()
                raise ValidationError(
                    f"File {sorted(existing)[0]} already has knowledge chunks; use replace_for_file"
                )
            self.db.add_all(self._rows(entries, generation))
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Knowledge batch insert failed: {exc}") from exc
        return len(entries)

    async def replace_for_file(self, user_id: str, file_id: str, entries: Sequence[ChunkCreate]) -> int:
        """
        Atomically replace the chunk set of one file.

        Raises NotFound when the file is gone (deleted while processing);
        nothing is written in that case.
        """
        for entry in entries:
            if entry.file_id != file_id or entry.user_id != user_id:
                raise ValidationError("All chunks must belong to the file being replaced")
        self._check_entries(entries)

        generation = str(uuid.uuid4())
        try:
            owner = await self.db.execute(
                select(File.id).where(File.id == file_id, File.user_id == user_id).with_for_update()
            )
            if owner.scalar_one_or_none() is None:
                await self.db.rollback()
                raise NotFound(f"File {file_id} no longer exists")

            self.db.add_all(self._rows(entries, generation))
            await self.db.flush()
            await self.db.execute(
                delete(KnowledgeChunk).where(
                    KnowledgeChunk.file_id == file_id,
                    KnowledgeChunk.generation != generation,
                )
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Knowledge replace failed for file {file_id}: {exc}") from exc

        logger.info("Replaced knowledge for file %s: %d chunks (generation %s)", file_id, len(entries), generation)
        return len(entries)

    async def delete_by_file(self, file_id: str) -> None:
        try:
            await self.db.execute(delete(KnowledgeChunk).where(KnowledgeChunk.file_id == file_id))
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Knowledge delete failed for file {file_id}: {exc}") from exc

    async def list_for_file(self, file_id: str, user_id: str) -> List[KnowledgeChunk]:
        result = await self.db.execute(
            select(KnowledgeChunk)
            .where(KnowledgeChunk.file_id == file_id, KnowledgeChunk.user_id == user_id)
            .order_by(KnowledgeChunk.chunk_index.asc())
        )
        return list(result.scalars().all())

    async def similarity_search(
        self,
        query_vector: Sequence[float],
        user_id: str,
        file_ids: Optional[Sequence[str]] = None,
        threshold: float = DEFAULT_THRESHOLD,
        limit: int = DEFAULT_LIMIT,
    ) -> List[SearchResult]:
        """
        Chunks of `user_id` with similarity >= threshold, best first.

        Ties break by ascending chunk index, then file id.
        """
        if not user_id:
            raise ValidationError("similarity_search requires a user id")
        if limit <= 0:
            return []

        query = select(
            KnowledgeChunk.file_id,
            KnowledgeChunk.chunk_index,
            KnowledgeChunk.content,
            KnowledgeChunk.embedding,
            KnowledgeChunk.chunk_metadata,
        ).where(KnowledgeChunk.user_id == user_id)
        if file_ids is not None:
            ids = [str(f) for f in file_ids]
            if not ids:
                return []
            query = query.where(KnowledgeChunk.file_id.in_(ids))

        rows = (await self.db.execute(query)).all()
        if not rows:
            return []

        sims = cosine_similarities(query_vector, [row.embedding for row in rows])
        scored = [(sim, row) for sim, row in zip(sims, rows) if sim >= threshold]
        scored.sort(key=lambda item: (-item[0], item[1].chunk_index, item[1].file_id))

        return [
            SearchResult(
                content=row.content,
                file_id=row.file_id,
                similarity=sim,
                chunk_index=row.chunk_index,
                metadata=row.chunk_metadata,
            )
            for sim, row in scored[:limit]
        ]
