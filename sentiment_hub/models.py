"""Data models for reviews, keywords and analysis results."""

import datetime as dt
from typing import Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Sentiment = Literal["positive", "neutral", "negative"]
KeywordType = Literal["positive", "negative"]
Role = Literal["user", "model"]


class Record(BaseModel):
    """Immutable record serialized with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Review(Record):
    """A single classified review."""
    id: str
    date: dt.date
    rating: float = Field(ge=0, le=5, description="0-5 scale")
    sentiment: Sentiment
    text: str
    score: float = Field(ge=0, le=1, description="0 to 1 sentiment score")

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_date(cls, value):
        # ISO timestamps are reduced to their calendar date
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value


class Keyword(Record):
    """A keyword with its weight and polarity."""
    text: str
    value: float = Field(ge=0)
    type: KeywordType


class AnalysisResult(Record):
    """Aggregate result of one structured analysis call."""
    reviews: Tuple[Review, ...]
    positive_keywords: Tuple[Keyword, ...]
    negative_keywords: Tuple[Keyword, ...]
    summary: str
    actionable_improvements: Tuple[str, ...] = Field(min_length=3, max_length=3)
    trend_analysis: str
    most_liked: Tuple[str, ...]
    most_disliked: Tuple[str, ...]

    @model_validator(mode="after")
    def _check_invariants(self) -> "AnalysisResult":
        ids = [review.id for review in self.reviews]
        if len(ids) != len(set(ids)):
            raise ValueError("review ids must be unique")
        if any(k.type != "positive" for k in self.positive_keywords):
            raise ValueError("positiveKeywords must all have type 'positive'")
        if any(k.type != "negative" for k in self.negative_keywords):
            raise ValueError("negativeKeywords must all have type 'negative'")
        return self


class ChatMessage(Record):
    """One entry of the chat history."""
    role: Role
    text: str = ""
    is_thinking: bool = False


class DerivedStats(Record):
    """Headline statistics computed from the current reviews."""
    average_rating: float
    positive_percentage: int
    total_reviews: int


class TrendPoint(Record):
    """One point of the sentiment trend, score scaled to percent."""
    date: dt.date
    score: float
    rating: float
