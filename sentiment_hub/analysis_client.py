"""Structured review analysis through the hosted model."""

import asyncio
import json
import logging
import re
import time
from typing import Any, Dict

from langsmith import traceable
from pydantic import ValidationError

from sentiment_hub.errors import AnalysisError, MalformedResponseError
from sentiment_hub.model_providers import StructuredExtractor
from sentiment_hub.models import AnalysisResult
from sentiment_hub.prompts import ANALYSIS_RESPONSE_SCHEMA, build_analysis_prompt

logger = logging.getLogger(__name__)


def _strip_code_fences(s: str) -> str:
    s = s.strip()
    return re.sub(r"^```(?:json)?|```$", "", s, flags=re.IGNORECASE | re.MULTILINE).strip()


def safe_json_loads(s: str) -> Dict[str, Any]:
    """Parse a JSON object from a model response, ``{}`` when that is not possible."""
    if not s or not s.strip():
        return {}
    try:
        data = json.loads(_strip_code_fences(s))
    except json.JSONDecodeError:
        logger.warning("Could not parse JSON from model response: %s...", s[:200])
        return {}
    return data if isinstance(data, dict) else {}


def tag_keywords(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Set each keyword's type from the list it belongs to.

    Whatever the model returned for ``type`` is overwritten.
    """
    tagged = dict(payload)
    for field, polarity in (("positiveKeywords", "positive"), ("negativeKeywords", "negative")):
        items = payload.get(field)
        if isinstance(items, list):
            tagged[field] = [{**item, "type": polarity} if isinstance(item, dict) else item for item in items]
    return tagged


def parse_analysis(raw: str) -> AnalysisResult:
    """Turn raw response text into a validated ``AnalysisResult``."""
    payload = safe_json_loads(raw)
    if not payload:
        raise MalformedResponseError("Model returned an empty or unparseable analysis")

    try:
        return AnalysisResult.model_validate(tag_keywords(payload))
    except ValidationError as e:
        raise AnalysisError(f"Analysis response does not match the schema: {e.error_count()} error(s)") from e


class AnalysisClient:
    """Runs one structured-extraction call per analysis."""

    def __init__(self, provider: StructuredExtractor, timeout: float = 180.0):
        self.provider = provider
        self.timeout = timeout

    @traceable(name="analyze_reviews")
    async def analyze(self, raw_text: str) -> AnalysisResult:
        """Analyze pasted review text and return the normalized result."""
        if not raw_text or not raw_text.strip():
            raise ValueError("Review text must not be empty")

        prompt = build_analysis_prompt(raw_text)
        start_time = time.time()
        try:
            raw = await asyncio.wait_for(
                self.provider.generate_structured(prompt, ANALYSIS_RESPONSE_SCHEMA),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise AnalysisError(f"Analysis timed out after {self.timeout:.0f} seconds") from e
        except AnalysisError:
            raise
        except Exception as e:
            raise AnalysisError(f"Analysis request failed: {e}") from e

        result = parse_analysis(raw)
        logger.info(
            "Analyzed %d reviews in %.2f seconds",
            len(result.reviews),
            time.time() - start_time,
        )
        return result
