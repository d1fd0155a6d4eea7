"""Tests for docmind/services/retriever.py"""

import uuid
from unittest.mock import AsyncMock

import pytest

from docmind.schemas.knowledge import SearchResult
from docmind.services.retriever import UNKNOWN_FILE_NAME, Retriever, build_context


def _result(file_id, index, content, similarity=0.9):
    return SearchResult(content=content, file_id=file_id, similarity=similarity, chunk_index=index)


class TestSearch:
    """Retriever.search delegates ranking to the knowledge store."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   "])
    async def test_blank_query_skips_embedding(self, query):
        """An empty query returns [] without calling the embedding service."""
        embeddings = AsyncMock()
        knowledge = AsyncMock()

        results = await Retriever(embeddings, knowledge).search(query, user_id=str(uuid.uuid4()))

        assert results == []
        embeddings.create_embedding.assert_not_awaited()
        knowledge.similarity_search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_results_returned_unmodified(self):
        user_id = str(uuid.uuid4())
        ranked = [_result("f1", 0, "a", 0.95), _result("f2", 3, "b", 0.8)]
        embeddings = AsyncMock()
        embeddings.create_embedding.return_value = [0.1, 0.2]
        knowledge = AsyncMock()
        knowledge.similarity_search.return_value = ranked

        results = await Retriever(embeddings, knowledge).search(
            "revenue", user_id=user_id, file_ids=["f1", "f2"], limit=5, threshold=0.6
        )

        assert results == ranked
        embeddings.create_embedding.assert_awaited_once_with("revenue")
        knowledge.similarity_search.assert_awaited_once_with(
            [0.1, 0.2], user_id=user_id, file_ids=["f1", "f2"], threshold=0.6, limit=5
        )


class TestBuildContext:
    """Numbered context blocks."""

    def test_blocks_numbered_in_order(self):
        results = [_result("f1", 0, "First chunk"), _result("f2", 1, "Second chunk")]
        context = build_context(results, {"f1": "a.pdf", "f2": "b.docx"})

        assert context == (
            '[1] From "a.pdf":\nFirst chunk'
            "\n\n---\n\n"
            '[2] From "b.docx":\nSecond chunk'
        )

    def test_unknown_file_name(self):
        context = build_context([_result("gone", 0, "text")], {})
        assert f'From "{UNKNOWN_FILE_NAME}"' in context

    def test_empty_results(self):
        assert build_context([], {}) == ""
