# docmind/core/errors.py
"""
Error taxonomy shared by the pipeline and the HTTP layer.

Every error carries an HTTP status and a stable code; `is_retryable`
is what the job framework consults before rescheduling a failed job.
"""

import asyncio
from typing import Optional


class DocMindError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    # message safe to show to end users; provider errors override this
    public_message: Optional[str] = None

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__

    def client_message(self) -> str:
        return self.public_message or self.message


class ValidationError(DocMindError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthError(DocMindError):
    status_code = 401
    code = "UNAUTHORIZED"


class RateLimited(DocMindError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, retry_after: int, limit: int = 0, message: str = "Too many requests"):
        super().__init__(message)
        self.retry_after = retry_after
        self.limit = limit


class NotFound(DocMindError):
    status_code = 404
    code = "NOT_FOUND"


class UnsupportedMediaType(DocMindError):
    status_code = 415
    code = "UNSUPPORTED_MEDIA_TYPE"


class ExtractionFailure(DocMindError):
    """Malformed document; retrying will not help."""

    status_code = 422
    code = "EXTRACTION_FAILED"


class TransientProviderError(DocMindError):
    """Timeouts, connection resets and 5xx from storage, AI or embedding providers."""

    status_code = 502
    code = "PROVIDER_UNAVAILABLE"
    public_message = "An upstream service is temporarily unavailable"


class PermanentProviderError(DocMindError):
    status_code = 500
    code = "PROVIDER_ERROR"
    public_message = "An unexpected error occurred"


class EmbeddingProviderError(TransientProviderError):
    """Raised once the embedding retry budget is exhausted."""

    code = "EMBEDDING_FAILED"


class PersistenceError(DocMindError):
    status_code = 500
    code = "PERSISTENCE_ERROR"
    public_message = "An unexpected error occurred"


def is_retryable(exc: BaseException) -> bool:
    """True if the job framework should reschedule after this error."""
    return isinstance(exc, (TransientProviderError, PersistenceError, TimeoutError, asyncio.TimeoutError))
