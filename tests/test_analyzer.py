"""Tests for docmind/services/analyzer.py"""

import json

import pytest

from docmind.services.analyzer import (
    TRUNCATION_MARKER,
    Analyzer,
    AnalyzerVariant,
    build_prompt,
    fallback_result,
    parse_analysis,
    variant_for,
)
from tests.conftest import DEFAULT_ANALYSIS, FakeAIClient


class TestVariantSelection:
    """Media type to analyzer variant lookup."""

    @pytest.mark.parametrize(
        "media_type,variant",
        [
            ("application/pdf", AnalyzerVariant.DOCUMENT),
            ("text/plain; charset=utf-8", AnalyzerVariant.DOCUMENT),
            ("image/png", AnalyzerVariant.IMAGE),
            ("image/webp", AnalyzerVariant.IMAGE),
            ("text/javascript", AnalyzerVariant.CODE),
            ("application/json", AnalyzerVariant.CODE),
            ("text/csv", AnalyzerVariant.TABULAR),
            ("application/octet-stream", AnalyzerVariant.DOCUMENT),
        ],
    )
    def test_variant_for(self, media_type, variant):
        assert variant_for(media_type) is variant


class TestPrompt:
    def test_long_content_truncated(self):
        prompt = build_prompt(AnalyzerVariant.DOCUMENT, "x" * 50, "a.txt", max_chars=10)
        assert "x" * 10 + TRUNCATION_MARKER in prompt
        assert "x" * 11 not in prompt

    def test_template_braces_survive(self):
        """Content with braces is inserted verbatim."""
        prompt = build_prompt(AnalyzerVariant.CODE, "def f(): return {'a': 1}", "f.py", max_chars=1000)
        assert "{'a': 1}" in prompt
        assert '"summary"' in prompt


class TestParsing:
    """Structured output parsing and the degraded fallback."""

    def test_plain_json(self):
        result = parse_analysis(json.dumps(DEFAULT_ANALYSIS))
        assert result.summary == DEFAULT_ANALYSIS["summary"]
        assert result.key_points == ["Revenue grew", "Costs fell"]
        assert result.insights[0].importance == "high"
        assert not result.degraded

    def test_fenced_json(self):
        text = "Here you go:\n```json\n" + json.dumps(DEFAULT_ANALYSIS) + "\n```\nThanks"
        assert parse_analysis(text).summary == DEFAULT_ANALYSIS["summary"]

    def test_prose_falls_back(self):
        """Unparseable output becomes a degraded result built from the raw text."""
        prose = "The document discusses revenue. " * 40
        result = parse_analysis(prose)

        assert result.degraded
        assert result.summary == prose.strip()[:500]
        assert result.key_points == [prose.strip()[:200]]
        assert result.insights[0].importance == "medium"
        assert result.metadata.topics == []
        assert result.metadata.language == "en"

    def test_wrong_shape_falls_back(self):
        result = parse_analysis(json.dumps({"summary": "x", "insights": [{"title": "t"}]}))
        assert result.degraded

    def test_fallback_of_empty_text(self):
        result = fallback_result("")
        assert result.summary == ""
        assert result.key_points == []


class TestAnalyze:
    """Analyzer.analyze wiring to the AI client."""

    @pytest.mark.asyncio
    async def test_text_analysis_sets_word_count(self):
        client = FakeAIClient()
        result = await Analyzer(client).analyze("one two three", "text/plain", file_name="n.txt")

        assert result.metadata.word_count == 3
        assert client.complete_calls[0]["image"] is None
        assert "one two three" in client.complete_calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_image_bytes_passed_through(self):
        client = FakeAIClient()
        await Analyzer(client).analyze(b"\x89PNG...", "image/png", file_name="p.png")

        call = client.complete_calls[0]
        assert call["image"] == b"\x89PNG..."
        assert call["image_media_type"] == "image/png"

    @pytest.mark.asyncio
    async def test_malformed_output_does_not_fail(self):
        client = FakeAIClient(analysis_response="Sorry, I cannot produce JSON today.")
        result = await Analyzer(client).analyze("text", "text/plain")
        assert result.degraded
        assert result.summary.startswith("Sorry")
