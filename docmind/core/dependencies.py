# docmind/core/dependencies.py
"""
FastAPI dependencies: database session, caller identity, rate limits and the
service objects built at startup (kept on `app.state`).
"""

import uuid
from typing import AsyncGenerator

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from docmind.core.config import settings
from docmind.core.errors import AuthError
from docmind.core.rate_limit import RateLimiter, RateLimitState
from docmind.repositories.file_repository import FileRepository
from docmind.repositories.knowledge_repository import KnowledgeRepository
from docmind.services.chat_service import ChatService
from docmind.services.file_service import FileService
from docmind.services.retriever import Retriever


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        yield session


def get_current_user_id(request: Request) -> str:
    """The user id set by the auth gateway; anything but a UUID is unauthenticated."""
    raw = request.headers.get(settings.AUTH_USER_HEADER, "").strip()
    if not raw:
        raise AuthError("Unauthorized")
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        raise AuthError("Unauthorized")


def _apply_headers(response: Response, state: RateLimitState) -> None:
    response.headers["X-RateLimit-Limit"] = str(state.limit)
    response.headers["X-RateLimit-Remaining"] = str(state.remaining)
    response.headers["X-RateLimit-Reset"] = str(state.reset)


def rate_limit(name: str):
    """Dependency factory counting the request against `app.state.rate_limiters[name]`."""

    async def _check(
        request: Request,
        response: Response,
        user_id: str = Depends(get_current_user_id),
    ) -> RateLimitState:
        limiter: RateLimiter = request.app.state.rate_limiters[name]
        state = await limiter.check(user_id)
        _apply_headers(response, state)
        return state

    return _check


def get_file_service(request: Request, db: AsyncSession = Depends(get_db)) -> FileService:
    return FileService(db, request.app.state.storage, request.app.state.job_queue)


def get_retriever(request: Request, db: AsyncSession = Depends(get_db)) -> Retriever:
    return Retriever(
        request.app.state.embedding_service,
        KnowledgeRepository(db, settings.EMBEDDING_DIMENSIONS),
    )


def get_chat_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
    retriever: Retriever = Depends(get_retriever),
) -> ChatService:
    return ChatService(request.app.state.ai_client, retriever, FileRepository(db))
