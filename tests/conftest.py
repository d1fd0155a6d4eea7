"""
Pytest configuration and shared fixtures.

Environment variables are set before any docmind import so the settings
singleton picks them up.
"""

import asyncio
import json
import os
import tempfile
from typing import Dict, List, Optional

os.environ.update({
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "OPENAI_API_KEY": "test-key",
    "EMBEDDING_DIMENSIONS": "8",
    "UPLOAD_DIR": tempfile.mkdtemp(prefix="docmind-test-"),
    "RUN_EMBEDDED_WORKER": "false",
    "LOG_LEVEL": "warning",
})

import pytest
import pytest_asyncio

from docmind.core.errors import NotFound
from docmind.db.init_db import init_db
from docmind.db.session import build_engine, build_session_factory
from docmind.services.storage import StorageBackend

DIMENSIONS = 8

DEFAULT_ANALYSIS = {
    "summary": "A short report about quarterly revenue.",
    "keyPoints": ["Revenue grew", "Costs fell"],
    "insights": [{"title": "Growth", "description": "Revenue grew 10%", "importance": "high"}],
    "metadata": {"topics": ["finance"], "language": "en", "sentiment": "positive"},
    "entities": [{"name": "ACME", "type": "organization"}],
    "relationships": [{"source": "ACME", "target": "Revenue", "type": "reports", "strength": 0.9}],
}


def fake_vector(text: str, dimensions: int = DIMENSIONS) -> List[float]:
    """Deterministic bag-of-characters embedding; identical text gives similarity 1."""
    vector = [0.0] * dimensions
    for ch in text:
        vector[ord(ch) % dimensions] += 1.0
    return vector


class FakeAIClient:
    """Stands in for AIClient; records every call."""

    analysis_model = "fake-analysis"
    chat_model = "fake-chat"
    embedding_model = "fake-embedding"

    def __init__(self, dimensions: int = DIMENSIONS, analysis_response: Optional[str] = None, chat_deltas=None):
        self.dimensions = dimensions
        self.analysis_response = analysis_response if analysis_response is not None else json.dumps(DEFAULT_ANALYSIS)
        self.chat_deltas = chat_deltas if chat_deltas is not None else ["Revenue grew ", "by 10% [1]."]
        self.complete_calls: List[Dict] = []
        self.embed_calls: List[str] = []
        self.chat_calls: List[Dict] = []

    async def complete(self, prompt, image=None, image_media_type="image/jpeg"):
        self.complete_calls.append({"prompt": prompt, "image": image, "image_media_type": image_media_type})
        return self.analysis_response

    async def embed(self, text):
        self.embed_calls.append(text)
        return fake_vector(text, self.dimensions)

    async def stream_chat(self, system_prompt, messages, temperature=0.7, max_tokens=2048):
        self.chat_calls.append({"system_prompt": system_prompt, "messages": messages})
        for delta in self.chat_deltas:
            await asyncio.sleep(0)
            yield delta


class MemoryStorage(StorageBackend):
    """Dict-backed storage with optional hooks for failure injection."""

    def __init__(self, timeout: float = 5.0):
        super().__init__(timeout)
        self.objects: Dict[str, bytes] = {}
        self.downloads = 0
        self.before_download = None

    async def _upload(self, data, locator):
        self.objects[locator] = bytes(data)
        return locator

    async def _download(self, locator):
        self.downloads += 1
        if self.before_download is not None:
            await self.before_download(locator)
        if locator not in self.objects:
            raise NotFound(f"Stored object not found: {locator}")
        return self.objects[locator]

    async def _delete(self, locator):
        self.objects.pop(locator, None)


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    eng = build_engine("sqlite+aiosqlite:///:memory:")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def ai_client():
    return FakeAIClient()


@pytest.fixture
def storage():
    return MemoryStorage()
