# docmind/services/chat_service.py
"""
Grounded chat answers with citations.

The retrieved results are numbered once; the same numbering is used for the
context blocks in the system prompt and for the emitted source list, so [i]
in the answer text always refers to sources[i-1].

The answer text is delivered over a StreamChannel: a queue of events with an
explicit end-of-stream (carrying the finalized sources) and an explicit
error termination.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Sequence

from docmind.repositories.file_repository import FileRepository
from docmind.schemas.chat import ChatMessage, Source
from docmind.schemas.knowledge import SearchResult
from docmind.services.ai_client import AIClient
from docmind.services.retriever import UNKNOWN_FILE_NAME, Retriever, build_context

logger = logging.getLogger(__name__)

CHAT_RESULT_LIMIT = 5
CHAT_THRESHOLD = 0.7
SNIPPET_LENGTH = 200
ELLIPSIS = "..."

NO_CONTEXT_PROMPT = (
    "You are a helpful AI assistant. No documents from the user's knowledge base are "
    "available for this question, so you cannot reference or cite specific documents. "
    "Do not produce citations like [1]."
)

RAG_PROMPT = """You are a helpful AI assistant with access to the user's uploaded files and documents.

CONTEXT FROM USER'S KNOWLEDGE BASE:

{context}

INSTRUCTIONS:

1. Answer the user's question using the context provided above
2. Cite your sources using [1], [2], etc. when referencing information
3. If the context doesn't contain relevant information, say so clearly
4. Be specific and quote exact phrases from the context when appropriate
5. If asked to compare or analyze, use information from multiple sources

Always prioritize accuracy over completeness. If you're unsure, acknowledge it."""


def build_system_prompt(context: str) -> str:
    if not context.strip():
        return NO_CONTEXT_PROMPT
    return RAG_PROMPT.replace("{context}", context)


def make_snippet(content: str, length: int = SNIPPET_LENGTH) -> str:
    if len(content) <= length:
        return content
    return content[:length] + ELLIPSIS


def build_sources(results: Sequence[SearchResult], file_names: Dict[str, str]) -> List[Source]:
    return [
        Source(
            file_id=r.file_id,
            file_name=file_names.get(r.file_id, UNKNOWN_FILE_NAME),
            snippet=make_snippet(r.content),
            similarity=r.similarity,
            citation=i,
        )
        for i, r in enumerate(results, start=1)
    ]


@dataclass
class StreamEvent:
    kind: str  # "delta" | "end" | "error"
    text: str = ""
    sources: List[Source] = field(default_factory=list)
    error: Optional[BaseException] = None


class StreamChannel:
    """Single-producer, single-consumer channel of text increments."""

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.sources: Optional[List[Source]] = None

    async def send(self, text: str) -> None:
        if self._closed:
            raise RuntimeError("send on closed channel")
        await self._queue.put(StreamEvent(kind="delta", text=text))

    async def close(self, sources: List[Source]) -> None:
        self._closed = True
        await self._queue.put(StreamEvent(kind="end", sources=sources))

    async def fail(self, error: BaseException) -> None:
        self._closed = True
        await self._queue.put(StreamEvent(kind="error", error=error))

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        while True:
            event = await self._queue.get()
            if event.kind == "delta":
                yield event.text
            elif event.kind == "end":
                self.sources = event.sources
                return
            else:
                raise event.error


@dataclass
class ChatAnswer:
    sources: List[Source]
    system_prompt: str
    channel: StreamChannel
    _producer: Optional[asyncio.Task] = None

    async def text(self) -> AsyncIterator[str]:
        """Consume the channel; cancels the producer if the consumer stops early."""
        try:
            async for delta in self.channel:
                yield delta
        finally:
            if self._producer is not None and not self._producer.done():
                self._producer.cancel()

    async def collect(self) -> str:
        return "".join([delta async for delta in self.text()])


class ChatService:
    def __init__(self, ai_client: AIClient, retriever: Retriever, file_repository: FileRepository):
        self.ai_client = ai_client
        self.retriever = retriever
        self.file_repository = file_repository

    @staticmethod
    def _last_user_message(messages: Sequence[ChatMessage]) -> str:
        for m in reversed(messages):
            if m.role == "user":
                return m.content
        return ""

    async def answer(
        self,
        messages: Sequence[ChatMessage],
        user_id: str,
        file_ids: Optional[Sequence[str]] = None,
    ) -> ChatAnswer:
        question = self._last_user_message(messages)
        results = await self.retriever.search(
            question,
            user_id=user_id,
            file_ids=file_ids,
            limit=CHAT_RESULT_LIMIT,
            threshold=CHAT_THRESHOLD,
        )
        file_names = await self.file_repository.names_for(user_id, [r.file_id for r in results])
        return self.assemble(messages, results, file_names)

    def assemble(
        self,
        messages: Sequence[ChatMessage],
        results: Sequence[SearchResult],
        file_names: Dict[str, str],
    ) -> ChatAnswer:
        """Build prompt and sources from one numbering of `results` and start streaming."""
        context = build_context(results, file_names)
        system_prompt = build_system_prompt(context)
        sources = build_sources(results, file_names)

        channel = StreamChannel()
        answer = ChatAnswer(sources=sources, system_prompt=system_prompt, channel=channel)
        answer._producer = asyncio.create_task(
            self._produce(channel, system_prompt, [m.model_dump() for m in messages], sources)
        )
        return answer

    async def _produce(
        self,
        channel: StreamChannel,
        system_prompt: str,
        messages: List[Dict[str, str]],
        sources: List[Source],
    ) -> None:
        produced = 0
        try:
            async for delta in self.ai_client.stream_chat(system_prompt, messages):
                produced += len(delta)
                await channel.send(delta)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Chat stream failed after %d characters", produced)
            await channel.fail(exc)
            return
        logger.info("Chat completed: %d characters, %d sources", produced, len(sources))
        await channel.close(sources)
