# docmind/core/config.py
"""
Single source of truth for environment configuration.

All env vars are read here and nowhere else; every other module imports
`settings` from this file.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(dotenv_path=_env_path, override=False)

logger = logging.getLogger(__name__)


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s is not a valid integer, using default %d", key, default)
        return default


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("%s is not a valid number, using default %s", key, default)
        return default


def _bool_env(key: str, default: bool) -> bool:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    return raw.lower() in ("true", "1", "yes")


def _normalize_db_url(url: str) -> str:
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    # ?schema=public (Prisma style) is not understood by asyncpg
    if "?schema=" in url:
        url = url.split("?schema=")[0]
    return url


class Settings:
    """
    Application settings loaded from environment variables.
    Instantiated once at import time as the `settings` singleton.
    """

    def __init__(self) -> None:
        # ── Database ──────────────────────────────────────────────────────────
        self.DATABASE_URL: str = _normalize_db_url(
            os.getenv("DATABASE_URL", "").strip() or "sqlite+aiosqlite:///./docmind.db"
        )

        # ── AI provider ───────────────────────────────────────────────────────
        self.OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY", "").strip() or None
        self.ANALYSIS_MODEL: str = os.getenv("ANALYSIS_MODEL", "gpt-4o-mini").strip()
        self.CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4o-mini").strip()
        self.EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small").strip()
        self.EMBEDDING_DIMENSIONS: int = _int_env("EMBEDDING_DIMENSIONS", 1536)
        self.EMBEDDING_MAX_INPUT_CHARS: int = _int_env("EMBEDDING_MAX_INPUT_CHARS", 30000)
        self.EMBEDDING_CONCURRENCY: int = _int_env("EMBEDDING_CONCURRENCY", 4)
        self.AI_TIMEOUT_SECONDS: float = _float_env("AI_TIMEOUT_SECONDS", 60.0)
        self.ANALYSIS_MAX_INPUT_CHARS: int = _int_env("ANALYSIS_MAX_INPUT_CHARS", 100000)

        # ── Chunking ──────────────────────────────────────────────────────────
        self.CHUNK_SIZE: int = _int_env("CHUNK_SIZE", 1000)
        self.CHUNK_OVERLAP: int = _int_env("CHUNK_OVERLAP", 200)

        # ── Storage ───────────────────────────────────────────────────────────
        self.STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "local").strip().lower()
        self.UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads").strip()
        self.S3_BUCKET: str | None = os.getenv("S3_BUCKET", "").strip() or None
        self.S3_ENDPOINT: str | None = os.getenv("S3_ENDPOINT", "").strip() or None
        self.S3_ACCESS_KEY: str | None = os.getenv("S3_ACCESS_KEY", "").strip() or None
        self.S3_SECRET_KEY: str | None = os.getenv("S3_SECRET_KEY", "").strip() or None
        self.STORAGE_TIMEOUT_SECONDS: float = _float_env("STORAGE_TIMEOUT_SECONDS", 30.0)
        self.MAX_UPLOAD_SIZE_BYTES: int = _int_env("MAX_UPLOAD_SIZE_BYTES", 50 * 1024 * 1024)

        # ── Job pipeline ──────────────────────────────────────────────────────
        self.WORKER_CONCURRENCY: int = _int_env("WORKER_CONCURRENCY", 5)
        self.JOB_MAX_ATTEMPTS: int = _int_env("JOB_MAX_ATTEMPTS", 3)
        self.JOB_BACKOFF_SECONDS: float = _float_env("JOB_BACKOFF_SECONDS", 2.0)
        self.JOB_POLL_SECONDS: float = _float_env("JOB_POLL_SECONDS", 1.0)
        self.JOB_LEASE_SECONDS: int = _int_env("JOB_LEASE_SECONDS", 900)
        self.RUN_EMBEDDED_WORKER: bool = _bool_env("RUN_EMBEDDED_WORKER", False)

        # ── HTTP ──────────────────────────────────────────────────────────────
        self.AUTH_USER_HEADER: str = os.getenv("AUTH_USER_HEADER", "X-User-Id").strip()
        self.CHAT_RATE_LIMIT: int = _int_env("CHAT_RATE_LIMIT", 20)
        self.API_RATE_LIMIT: int = _int_env("API_RATE_LIMIT", 100)
        self.UPLOAD_RATE_LIMIT: int = _int_env("UPLOAD_RATE_LIMIT", 10)
        self.RATE_LIMIT_WINDOW_SECONDS: int = _int_env("RATE_LIMIT_WINDOW_SECONDS", 60)

        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info").strip().lower()

        self._validate()

    def _validate(self) -> None:
        """Warn loudly about missing config. Does NOT crash; jobs fail with a clear error instead."""
        missing = []
        if not self.OPENAI_API_KEY:
            missing.append("OPENAI_API_KEY")
        if self.STORAGE_BACKEND == "s3" and not self.S3_BUCKET:
            missing.append("S3_BUCKET")
        if missing:
            logger.error(
                "Missing required environment variables: %s. Copy .env.example to .env and fill in the values.",
                ", ".join(missing),
            )
        if self.CHUNK_OVERLAP >= self.CHUNK_SIZE:
            logger.error(
                "CHUNK_OVERLAP (%d) must be smaller than CHUNK_SIZE (%d)",
                self.CHUNK_OVERLAP,
                self.CHUNK_SIZE,
            )


settings = Settings()
