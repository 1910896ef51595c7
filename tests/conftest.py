"""Shared fixtures: a scripted in-memory model provider and sample payloads."""

import copy
import json

import pytest

from sentiment_hub.analysis_client import AnalysisClient
from sentiment_hub.chat_engine import ChatSessionEngine
from sentiment_hub.config import ChatConfig
from sentiment_hub.model_providers import Conversation, ModelProvider
from sentiment_hub.session import SessionStateController

PAYLOAD = {
    "reviews": [
        {"id": "r1", "date": "2024-03-01", "rating": 5, "sentiment": "positive",
         "text": "I absolutely love this blender!", "score": 0.95},
        {"id": "r2", "date": "2024-03-02", "rating": 2, "sentiment": "negative",
         "text": "The lid leaks every time.", "score": 0.2},
        {"id": "r3", "date": "2024-03-05", "rating": 4, "sentiment": "positive",
         "text": "Good product, delivery was delayed.", "score": 0.7},
        {"id": "r4", "date": "2024-03-10", "rating": 1, "sentiment": "negative",
         "text": "The motor burned out after 2 weeks.", "score": 0.05},
        {"id": "r5", "date": "2024-03-12", "rating": 5, "sentiment": "positive",
         "text": "Best purchase of the year.", "score": 0.9},
        {"id": "r6", "date": "2024-03-15", "rating": 3, "sentiment": "neutral",
         "text": "It works but feels plasticky.", "score": 0.5},
    ],
    "positiveKeywords": [{"text": "quiet", "value": 3}, {"text": "easy to clean", "value": 2}],
    "negativeKeywords": [{"text": "lid leaks", "value": 2}, {"text": "motor", "value": 1}],
    "summary": "Customers love the power but report durability issues.",
    "actionableImprovements": ["Fix the lid seal", "Improve motor quality", "Speed up delivery"],
    "trendAnalysis": "Sentiment dipped mid-month before recovering.",
    "mostLiked": ["Quiet operation", "Easy cleaning"],
    "mostDisliked": ["Leaking lid", "Motor failures"],
}


class FakeConversation(Conversation):
    """Replays scripted replies.

    An exception in a script interrupts the stream; an async callable is
    awaited in place, which lets a test model a silent or stalled model.
    """

    def __init__(self, provider: "FakeProvider", system_instruction: str):
        super().__init__(system_instruction)
        self.provider = provider
        self.closed = False

    async def send_message_stream(self, message):
        self.provider.sent.append(message)
        script = self.provider.replies.pop(0) if self.provider.replies else ["ok"]
        parts = []
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                if callable(item):
                    await item()
                    continue
                parts.append(item)
                yield item
        finally:
            self.closed = True
        self._record_exchange(message, "".join(parts))


class FakeProvider(ModelProvider):
    """Scripted stand-in for a hosted model."""

    def __init__(self, responses=None, replies=None):
        super().__init__("fake", "fake-model")
        self.responses = list(responses or [])
        self.replies = list(replies or [])
        self.prompts = []
        self.schemas = []
        self.instructions = []
        self.conversations = []
        self.sent = []

    async def generate_structured(self, prompt, schema):
        self.prompts.append(prompt)
        self.schemas.append(schema)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response()
        return response

    def start_conversation(self, system_instruction):
        self.instructions.append(system_instruction)
        conversation = FakeConversation(self, system_instruction)
        self.conversations.append(conversation)
        return conversation


@pytest.fixture
def payload():
    return copy.deepcopy(PAYLOAD)


@pytest.fixture
def payload_json(payload):
    return json.dumps(payload)


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def make_controller():
    def _make(provider, timeout=5.0, **chat_options):
        return SessionStateController(
            AnalysisClient(provider, timeout=timeout),
            ChatSessionEngine(provider),
            ChatConfig(**chat_options),
        )
    return _make
