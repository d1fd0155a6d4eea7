# docmind/repositories/analysis_repository.py
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docmind.core.errors import PersistenceError
from docmind.models import Analysis
from docmind.schemas.analysis import AnalysisResult


class AnalysisRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def replace(self, file_id: str, result: AnalysisResult, variant: str, model: Optional[str]) -> Analysis:
        """Write the analysis for `file_id`, replacing any previous one in the same transaction."""
        record = Analysis(
            file_id=file_id,
            summary=result.summary,
            key_points=list(result.key_points),
            insights=[i.model_dump() for i in result.insights],
            analysis_metadata=result.metadata.model_dump(exclude_none=True),
            entities=[e.model_dump(exclude_none=True) for e in result.entities],
            relationships=(
                [r.model_dump() for r in result.relationships] if result.relationships is not None else None
            ),
            variant=variant,
            model=model,
            degraded=result.degraded,
        )
        try:
            await self.db.execute(delete(Analysis).where(Analysis.file_id == file_id))
            self.db.add(record)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise PersistenceError(f"Could not store analysis for file {file_id}: {exc}") from exc
        return record

    async def get_for_file(self, file_id: str) -> Optional[Analysis]:
        result = await self.db.execute(select(Analysis).where(Analysis.file_id == file_id))
        return result.scalar_one_or_none()
