# docmind/services/embedding_service.py
import asyncio
import logging
from typing import List, Optional

from docmind.core.config import settings
from docmind.core.errors import EmbeddingProviderError, TransientProviderError, ValidationError
from docmind.services.ai_client import AIClient

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class EmbeddingService:
    """
    One embedding per call, with input truncation and retry.

    Input longer than `max_input_chars` is cut from the end so the leading
    context survives. Transient provider errors are retried up to
    `max_attempts` times with exponential backoff; validation and permanent
    errors are raised immediately.
    """

    def __init__(
        self,
        ai_client: AIClient,
        dimensions: int = settings.EMBEDDING_DIMENSIONS,
        max_input_chars: int = settings.EMBEDDING_MAX_INPUT_CHARS,
        concurrency: int = settings.EMBEDDING_CONCURRENCY,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_seconds: float = 1.0,
    ):
        self.ai_client = ai_client
        self.dimensions = dimensions
        self.max_input_chars = max_input_chars
        self.concurrency = max(1, concurrency)
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    def prepare_input(self, text: Optional[str]) -> str:
        if text is None or not text.strip():
            raise ValidationError("Cannot embed empty text")
        if len(text) > self.max_input_chars:
            return text[: self.max_input_chars]
        return text

    async def create_embedding(self, text: str) -> List[float]:
        prepared = self.prepare_input(text)

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                vector = await self.ai_client.embed(prepared)
            except TransientProviderError as exc:
                last_error = exc
                if attempt == self.max_attempts:
                    break
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Embedding attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt, self.max_attempts, exc, delay,
                )
                await asyncio.sleep(delay)
                continue

            if len(vector) != self.dimensions:
                raise ValidationError(
                    f"Embedding has {len(vector)} dimensions, expected {self.dimensions}"
                )
            return vector

        raise EmbeddingProviderError(
            f"Embedding failed after {self.max_attempts} attempts: {last_error}"
        )

    async def create_embeddings_for_chunks(self, chunks: List[str]) -> List[List[float]]:
        """
        Embed every chunk with bounded fan-out; output order matches `chunks`.

        The first failure cancels the chunks still in flight or waiting, so no
        provider calls outlive the error.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(chunk: str) -> List[float]:
            async with semaphore:
                return await self.create_embedding(chunk)

        tasks = [asyncio.ensure_future(_one(c)) for c in chunks]
        try:
            return list(await asyncio.gather(*tasks))
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
