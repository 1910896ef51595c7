"""Prompts and the declarative output schema sent to the hosted model."""

from textwrap import dedent
from typing import Any, Dict

from sentiment_hub.models import AnalysisResult

ANALYSIS_PROMPT = dedent("""
Analyze the following e-commerce customer reviews and extract structured data.
Important: Group similar keywords. Identify specific product features or services.

Reviews Data:
{raw_text}
""").strip()

CHAT_SYSTEM_INSTRUCTION = dedent("""
You are an expert E-commerce Data Analyst. You have analyzed customer reviews for a store.
Context of current analysis:
Summary: {summary}
Actionable Items: {actionable_items}
Most Liked: {most_liked}
Most Disliked: {most_disliked}

Answer user questions based on this data. Be professional and data-driven.
""").strip()

SAMPLE_REVIEWS = dedent("""
2024-03-01: ⭐⭐⭐⭐⭐ I absolutely love this blender! It's so quiet and powerful.
2024-03-02: ⭐⭐ Disappointed. The lid leaks every time I make a smoothie.
2024-03-05: ⭐⭐⭐⭐ Good product, but the delivery was delayed by 3 days.
2024-03-10: ⭐ The motor burned out after only 2 weeks of use. Customer service was slow.
2024-03-12: ⭐⭐⭐⭐⭐ Best purchase of the year. Easy to clean and looks great on my counter.
2024-03-15: ⭐⭐⭐ Neutral. It works but feels a bit plasticky for the price.
""").strip()

# Node types: object, array, string, number. Providers translate this
# dialect into their own schema objects.
_KEYWORD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "text": {"type": "string"},
        "value": {"type": "number"},
    },
    "required": ["text", "value"],
}

ANALYSIS_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "reviews": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "date": {"type": "string", "description": "ISO 8601 date"},
                    "rating": {"type": "number", "description": "0-5 scale"},
                    "sentiment": {"type": "string", "enum": ["positive", "neutral", "negative"]},
                    "text": {"type": "string"},
                    "score": {"type": "number", "description": "0 to 1 sentiment score"},
                },
                "required": ["id", "date", "rating", "sentiment", "text", "score"],
            },
        },
        "positiveKeywords": {"type": "array", "items": _KEYWORD_SCHEMA},
        "negativeKeywords": {"type": "array", "items": _KEYWORD_SCHEMA},
        "summary": {"type": "string"},
        "actionableImprovements": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Must be exactly 3 specific, actionable points.",
            "minItems": 3,
            "maxItems": 3,
        },
        "trendAnalysis": {"type": "string"},
        "mostLiked": {"type": "array", "items": {"type": "string"}},
        "mostDisliked": {"type": "array", "items": {"type": "string"}},
    },
    "required": [
        "reviews",
        "positiveKeywords",
        "negativeKeywords",
        "summary",
        "actionableImprovements",
        "trendAnalysis",
        "mostLiked",
        "mostDisliked",
    ],
}


def build_analysis_prompt(raw_text: str) -> str:
    """Embed the pasted reviews into the analysis prompt."""
    return ANALYSIS_PROMPT.format(raw_text=raw_text)


def build_chat_instruction(context: AnalysisResult) -> str:
    """Render the grounding system instruction from an analysis snapshot."""
    return CHAT_SYSTEM_INSTRUCTION.format(
        summary=context.summary,
        actionable_items=", ".join(context.actionable_improvements),
        most_liked=", ".join(context.most_liked),
        most_disliked=", ".join(context.most_disliked),
    )


def to_json_schema(node: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a schema node into standard JSON Schema."""
    schema: Dict[str, Any] = {"type": node["type"]}
    for key in ("description", "enum", "required", "minItems", "maxItems"):
        if key in node:
            schema[key] = node[key]
    if "properties" in node:
        schema["properties"] = {name: to_json_schema(child) for name, child in node["properties"].items()}
    if "items" in node:
        schema["items"] = to_json_schema(node["items"])
    return schema
