# docmind/main.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from docmind.api.api_router import api_router
from docmind.core.config import settings
from docmind.core.errors import DocMindError, RateLimited
from docmind.core.logging import configure_logging
from docmind.core.rate_limit import RateLimiter
from docmind.db import session as db_session
from docmind.db.init_db import check_db, init_db
from docmind.services.ai_client import AIClient
from docmind.services.embedding_service import EmbeddingService
from docmind.services.job_queue import JobQueue
from docmind.services.storage import StorageBackend, build_storage
from docmind.worker import JobWorker, build_orchestrator

logger = logging.getLogger(__name__)


async def docmind_error_handler(request: Request, exc: DocMindError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)
        headers["X-RateLimit-Limit"] = str(exc.limit)
        headers["X-RateLimit-Remaining"] = "0"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.client_message(), "code": exc.code},
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation failed",
            "code": "VALIDATION_ERROR",
            "details": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()],
        },
    )


def create_app(
    engine: Optional[AsyncEngine] = None,
    ai_client: Optional[AIClient] = None,
    storage: Optional[StorageBackend] = None,
    run_worker: Optional[bool] = None,
) -> FastAPI:
    engine = engine or db_session.engine
    session_factory = db_session.build_session_factory(engine)
    ai_client = ai_client or AIClient()
    run_worker = settings.RUN_EMBEDDED_WORKER if run_worker is None else run_worker

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting up: initializing DB...")
        await init_db(app.state.engine)
        if run_worker:
            worker = JobWorker(
                app.state.job_queue,
                build_orchestrator(app.state.session_factory, app.state.ai_client, app.state.storage),
            )
            await worker.start()
            app.state.worker = worker
        logger.info("Startup complete")

        yield

        if app.state.worker is not None:
            await app.state.worker.stop()
            app.state.worker = None
        logger.info("Shutdown complete")

    app = FastAPI(title="DocMind Backend", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Sources", "Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    )

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.ai_client = ai_client
    app.state.storage = storage or build_storage()
    app.state.embedding_service = EmbeddingService(ai_client)
    app.state.job_queue = JobQueue(session_factory)
    app.state.rate_limiters = {
        "chat": RateLimiter(settings.CHAT_RATE_LIMIT, settings.RATE_LIMIT_WINDOW_SECONDS),
        "upload": RateLimiter(settings.UPLOAD_RATE_LIMIT, settings.RATE_LIMIT_WINDOW_SECONDS),
        "api": RateLimiter(settings.API_RATE_LIMIT, settings.RATE_LIMIT_WINDOW_SECONDS),
    }
    app.state.worker = None

    app.add_exception_handler(DocMindError, docmind_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(api_router, prefix="/api")

    @app.get("/health")
    async def health():
        database = await check_db(app.state.engine)
        return JSONResponse(
            status_code=200 if database else 503,
            content={"status": "ok" if database else "degraded", "database": database},
        )

    return app


configure_logging()
app = create_app()
