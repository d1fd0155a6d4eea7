# docmind/api/v1/knowledge.py
from fastapi import APIRouter, Depends

from docmind.core.dependencies import get_current_user_id, get_retriever, rate_limit
from docmind.schemas.knowledge import KnowledgeSearchRequest, KnowledgeSearchResponse
from docmind.services.retriever import Retriever

router = APIRouter()


@router.post("/search", response_model=KnowledgeSearchResponse, response_model_by_alias=True)
async def search_knowledge(
    payload: KnowledgeSearchRequest,
    user_id: str = Depends(get_current_user_id),
    _=Depends(rate_limit("api")),
    retriever: Retriever = Depends(get_retriever),
):
    file_ids = [str(f) for f in payload.file_ids] if payload.file_ids is not None else None
    results = await retriever.search(
        payload.query,
        user_id=user_id,
        file_ids=file_ids,
        limit=payload.limit,
        threshold=payload.threshold,
    )
    return KnowledgeSearchResponse(results=results)
