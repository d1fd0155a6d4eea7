# docmind/services/ai_client.py
"""
Thin async wrapper around the OpenAI SDK.

Three call types: a structured analysis completion (optionally with an inline
image), a streaming chat completion and a single embedding. SDK retries are
disabled; retry policy lives in the embedding service and the job queue.
Provider exceptions are translated into the transient/permanent taxonomy.
"""

import base64
import logging
from typing import AsyncIterator, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from docmind.core.config import settings
from docmind.core.errors import PermanentProviderError, TransientProviderError

logger = logging.getLogger(__name__)

_TRANSIENT = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)
_PERMANENT = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.BadRequestError,
    openai.NotFoundError,
    openai.UnprocessableEntityError,
)


def translate_provider_error(exc: Exception) -> Exception:
    if isinstance(exc, _TRANSIENT):
        return TransientProviderError(f"{type(exc).__name__}: {exc}")
    if isinstance(exc, _PERMANENT):
        return PermanentProviderError(f"{type(exc).__name__}: {exc}")
    if isinstance(exc, openai.APIStatusError) and exc.status_code >= 500:
        return TransientProviderError(f"{type(exc).__name__}: {exc}")
    return PermanentProviderError(f"{type(exc).__name__}: {exc}")


class AIClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        analysis_model: str = settings.ANALYSIS_MODEL,
        chat_model: str = settings.CHAT_MODEL,
        embedding_model: str = settings.EMBEDDING_MODEL,
        timeout: float = settings.AI_TIMEOUT_SECONDS,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.analysis_model = analysis_model
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self._api_key = api_key or settings.OPENAI_API_KEY
        self._timeout = timeout
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # built on first use so the app can start without credentials
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)
        return self._client

    async def complete(
        self,
        prompt: str,
        image: Optional[bytes] = None,
        image_media_type: str = "image/jpeg",
    ) -> str:
        """One analysis call; returns the raw model text (expected to hold JSON)."""
        if image is not None:
            data_url = f"data:{image_media_type};base64,{base64.b64encode(image).decode('ascii')}"
            content = [
                {"type": "image_url", "image_url": {"url": data_url}},
                {"type": "text", "text": prompt},
            ]
        else:
            content = prompt

        try:
            resp = await self.client.chat.completions.create(
                model=self.analysis_model,
                messages=[{"role": "user", "content": content}],
                temperature=0.3,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as exc:
            raise translate_provider_error(exc) from exc
        return resp.choices[0].message.content or ""

    async def stream_chat(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> AsyncIterator[str]:
        """Yield text deltas of a chat completion."""
        try:
            stream = await self.client.chat.completions.create(
                model=self.chat_model,
                messages=[{"role": "system", "content": system_prompt}, *messages],
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
            async for event in stream:
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if delta:
                    yield delta
        except openai.OpenAIError as exc:
            raise translate_provider_error(exc) from exc

    async def embed(self, text: str) -> List[float]:
        try:
            resp = await self.client.embeddings.create(model=self.embedding_model, input=text)
        except openai.OpenAIError as exc:
            raise translate_provider_error(exc) from exc
        return list(resp.data[0].embedding)
