# docmind/services/analyzer.py
"""
AI analysis of one uploaded file.

The variant set is closed (document, image, code, tabular); `variant_for`
maps a media type to its variant with a lookup table and each variant only
contributes a prompt. Output that does not parse into an AnalysisResult is
turned into a degraded result built from the raw text; analysis never fails
just because the model returned prose.
"""

import json
import logging
import re
from enum import Enum
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from docmind.core.config import settings
from docmind.schemas.analysis import AnalysisResult, Insight
from docmind.services.ai_client import AIClient
from docmind.utils.content_extractor import normalize_media_type

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "...[truncated]"


class AnalyzerVariant(str, Enum):
    DOCUMENT = "document"
    IMAGE = "image"
    CODE = "code"
    TABULAR = "tabular"


_VARIANT_BY_MEDIA_TYPE = {
    "application/pdf": AnalyzerVariant.DOCUMENT,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": AnalyzerVariant.DOCUMENT,
    "text/plain": AnalyzerVariant.DOCUMENT,
    "text/markdown": AnalyzerVariant.DOCUMENT,
    "text/javascript": AnalyzerVariant.CODE,
    "text/typescript": AnalyzerVariant.CODE,
    "application/javascript": AnalyzerVariant.CODE,
    "application/typescript": AnalyzerVariant.CODE,
    "text/x-python": AnalyzerVariant.CODE,
    "text/x-java": AnalyzerVariant.CODE,
    "text/x-go": AnalyzerVariant.CODE,
    "text/x-rust": AnalyzerVariant.CODE,
    "application/json": AnalyzerVariant.CODE,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": AnalyzerVariant.TABULAR,
    "application/vnd.ms-excel": AnalyzerVariant.TABULAR,
    "text/csv": AnalyzerVariant.TABULAR,
}


def variant_for(media_type: str) -> AnalyzerVariant:
    mt = normalize_media_type(media_type)
    if mt.startswith("image/"):
        return AnalyzerVariant.IMAGE
    return _VARIANT_BY_MEDIA_TYPE.get(mt, AnalyzerVariant.DOCUMENT)


_RESPONSE_FORMAT = """Response format (must be valid JSON):
{
  "summary": "Brief 2-3 sentence summary",
  "keyPoints": ["Main point 1", "Main point 2", "Main point 3"],
  "insights": [
    {"title": "Insight title", "description": "Detailed description", "importance": "high"}
  ],
  "metadata": {"topics": ["topic1", "topic2"], "language": "en", "sentiment": "neutral"},
  "entities": [{"name": "Entity", "type": "person|organization|place|concept", "context": "where it appears"}],
  "relationships": [{"source": "Entity A", "target": "Entity B", "type": "relation", "strength": 0.8}]
}

Importance is one of low, medium, high. Strength is between 0 and 1.
Return ONLY valid JSON."""

_PROMPTS = {
    AnalyzerVariant.DOCUMENT: (
        "Analyze this document ({file_name}) and provide a structured analysis.\n\n"
        "Document Content:\n{content}\n\n"
        "Provide actionable insights and key takeaways.\n\n" + _RESPONSE_FORMAT
    ),
    AnalyzerVariant.CODE: (
        "Analyze this source file ({file_name}). Describe its purpose, main components, "
        "dependencies, notable risks and code quality observations.\n\n"
        "Source:\n{content}\n\n" + _RESPONSE_FORMAT
    ),
    AnalyzerVariant.TABULAR: (
        "Analyze this tabular data ({file_name}). Describe what the columns represent, "
        "notable trends, outliers and data quality issues.\n\n"
        "Data:\n{content}\n\n" + _RESPONSE_FORMAT
    ),
    AnalyzerVariant.IMAGE: (
        "Analyze the attached image ({file_name}) in detail: main subject, notable details, "
        "setting, any visible text, and visual style.\n\n" + _RESPONSE_FORMAT
    ),
}

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_FENCED_ANY = re.compile(r"```\s*([\s\S]*?)\s*```")
_BRACES = re.compile(r"(\{[\s\S]*\})")


def build_prompt(variant: AnalyzerVariant, content: str, file_name: str, max_chars: int) -> str:
    if len(content) > max_chars:
        content = content[:max_chars] + TRUNCATION_MARKER
    words = len(content.split())
    # str.format would trip over the JSON braces in the template
    prompt = _PROMPTS[variant].replace("{file_name}", file_name or "untitled").replace("{content}", content)
    if variant is not AnalyzerVariant.IMAGE:
        prompt += f"\n\nThe content has roughly {words} words."
    return prompt


def fallback_result(text: str) -> AnalysisResult:
    """Best-effort result when the model output is not the expected JSON."""
    text = (text or "").strip()
    return AnalysisResult(
        summary=text[:500],
        key_points=[text[:200]] if text else [],
        insights=[Insight(title="Analysis", description=text[:300], importance="medium")] if text else [],
        degraded=True,
    )


def parse_analysis(text: str) -> AnalysisResult:
    """Parse a model response into an AnalysisResult, degrading instead of failing."""
    candidates = []
    for pattern in (_FENCED_JSON, _FENCED_ANY, _BRACES):
        match = pattern.search(text or "")
        if match:
            candidates.append(match.group(1))
    candidates.append(text or "")

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, TypeError):
            continue
        if not isinstance(data, dict):
            continue
        try:
            return AnalysisResult.model_validate(data)
        except PydanticValidationError as exc:
            logger.warning("Analysis JSON did not match the expected shape: %s", exc.error_count())
            break

    logger.warning("Falling back to degraded analysis result")
    return fallback_result(text)


class Analyzer:
    def __init__(self, ai_client: AIClient, max_input_chars: int = settings.ANALYSIS_MAX_INPUT_CHARS):
        self.ai_client = ai_client
        self.max_input_chars = max_input_chars

    @property
    def model_name(self) -> Optional[str]:
        return getattr(self.ai_client, "analysis_model", None)

    async def analyze(
        self,
        content: Union[str, bytes],
        media_type: str,
        file_name: str = "",
    ) -> AnalysisResult:
        """
        Run one analysis call. `content` is extracted text, or raw bytes for images.

        Provider errors propagate (the job framework decides on retry); parse
        failures do not.
        """
        variant = variant_for(media_type)
        if variant is AnalyzerVariant.IMAGE:
            if not isinstance(content, (bytes, bytearray)):
                raise TypeError("image analysis needs the raw image bytes")
            prompt = build_prompt(variant, "", file_name, self.max_input_chars)
            raw = await self.ai_client.complete(
                prompt, image=bytes(content), image_media_type=normalize_media_type(media_type)
            )
        else:
            text = content.decode("utf-8", errors="replace") if isinstance(content, (bytes, bytearray)) else content
            prompt = build_prompt(variant, text, file_name, self.max_input_chars)
            raw = await self.ai_client.complete(prompt)

        result = parse_analysis(raw)
        if variant is not AnalyzerVariant.IMAGE and result.metadata.word_count is None:
            result.metadata.word_count = len(text.split())
        return result
