# docmind/api/v1/chat.py
import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from docmind.core.dependencies import get_chat_service, get_current_user_id, rate_limit
from docmind.core.errors import DocMindError
from docmind.schemas.chat import ChatRequest
from docmind.services.chat_service import ChatAnswer, ChatService

logger = logging.getLogger(__name__)

router = APIRouter()


async def _stream_text(answer: ChatAnswer):
    try:
        async for delta in answer.text():
            yield delta
    except DocMindError as exc:
        # headers are already sent; end the body instead of leaking provider detail
        logger.warning("Chat stream aborted: %s", exc)


@router.post("")
async def chat(
    payload: ChatRequest,
    user_id: str = Depends(get_current_user_id),
    limit=Depends(rate_limit("chat")),
    svc: ChatService = Depends(get_chat_service),
):
    """Stream a grounded answer; the cited sources travel in the X-Sources header."""
    file_ids = [str(f) for f in payload.file_ids] if payload.file_ids is not None else None
    answer = await svc.answer(payload.messages, user_id=user_id, file_ids=file_ids)

    sources = json.dumps([s.model_dump(by_alias=True) for s in answer.sources])
    return StreamingResponse(
        _stream_text(answer),
        media_type="text/plain; charset=utf-8",
        headers={
            "X-Sources": sources,
            "X-RateLimit-Limit": str(limit.limit),
            "X-RateLimit-Remaining": str(limit.remaining),
            "X-RateLimit-Reset": str(limit.reset),
        },
    )
