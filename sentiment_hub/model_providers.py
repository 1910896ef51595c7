"""Async model providers for Google Gemini and OpenAI.

Each provider implements two capabilities: structured extraction (one
request answered with JSON that follows a declared schema) and streaming
conversation (a multi-turn chat whose replies arrive as text fragments).
"""

import logging
import os
from typing import Any, AsyncIterator, Dict, List

import google.generativeai as genai
from langsmith import traceable
from openai import AsyncOpenAI

from sentiment_hub.errors import ConfigError
from sentiment_hub.prompts import to_json_schema

logger = logging.getLogger(__name__)


class Conversation:
    """A conversation seeded with a system instruction.

    The history only records exchanges whose stream completed, so a failed
    turn leaves the conversation usable for the next message.
    """

    def __init__(self, system_instruction: str):
        self.system_instruction = system_instruction
        self.history: List[Dict[str, str]] = []

    def send_message_stream(self, message: str) -> AsyncIterator[str]:
        """Send one user message and yield the reply as text fragments."""
        raise NotImplementedError

    def _record_exchange(self, message: str, reply: str) -> None:
        self.history.append({"role": "user", "text": message})
        self.history.append({"role": "model", "text": reply})


class StructuredExtractor:
    """Capability: one request answered with schema-conforming JSON text."""

    async def generate_structured(self, prompt: str, schema: Dict[str, Any]) -> str:
        raise NotImplementedError


class ConversationProvider:
    """Capability: open streamed conversations."""

    def start_conversation(self, system_instruction: str) -> Conversation:
        raise NotImplementedError


class ModelProvider(StructuredExtractor, ConversationProvider):
    """Base class for hosted model providers."""

    def __init__(
        self,
        name: str,
        model: str,
        temperature: float = 0.4,
        max_tokens: int = 8192,
        request_timeout: float = 120.0,
    ):
        self.name = name
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.request_timeout = request_timeout


def _require_api_key(var_name: str) -> str:
    api_key = os.getenv(var_name)
    if not api_key:
        raise ConfigError(
            f"{var_name} not found in environment variables.\n"
            f"Please ensure:\n"
            f"1. .env file contains: {var_name}=your-key-here\n"
            f"Or export it: export {var_name}='your-key'"
        )
    return api_key


def to_gemini_schema(node: Dict[str, Any]) -> genai.protos.Schema:
    """Convert a schema node into a Gemini ``Schema`` proto."""
    kwargs: Dict[str, Any] = {"type_": getattr(genai.protos.Type, node["type"].upper())}
    if "description" in node:
        kwargs["description"] = node["description"]
    if "enum" in node:
        kwargs["format_"] = "enum"
        kwargs["enum"] = list(node["enum"])
    if "properties" in node:
        kwargs["properties"] = {name: to_gemini_schema(child) for name, child in node["properties"].items()}
    if "required" in node:
        kwargs["required"] = list(node["required"])
    if "items" in node:
        kwargs["items"] = to_gemini_schema(node["items"])
    if "minItems" in node:
        kwargs["min_items"] = node["minItems"]
    if "maxItems" in node:
        kwargs["max_items"] = node["maxItems"]
    return genai.protos.Schema(**kwargs)


def _chunk_text(chunk) -> str:
    # Chunks that only carry a finish reason have no text parts
    try:
        return chunk.text
    except ValueError:
        return ""


class GoogleConversation(Conversation):
    """Gemini chat; every turn replays the recorded history."""

    def __init__(self, provider: "GoogleProvider", system_instruction: str):
        super().__init__(system_instruction)
        self.provider = provider
        self.client = genai.GenerativeModel(provider.model, system_instruction=system_instruction)

    async def send_message_stream(self, message: str) -> AsyncIterator[str]:
        history = [{"role": turn["role"], "parts": [turn["text"]]} for turn in self.history]
        session = self.client.start_chat(history=history)
        response = await session.send_message_async(
            message,
            stream=True,
            generation_config=self.provider.generation_config(),
            request_options={"timeout": self.provider.request_timeout},
        )
        parts = []
        async for chunk in response:
            text = _chunk_text(chunk)
            if text:
                parts.append(text)
                yield text
        self._record_exchange(message, "".join(parts))


class GoogleProvider(ModelProvider):
    """Google Gemini model provider."""

    def __init__(self, model: str, temperature: float = 0.4, max_tokens: int = 8192, request_timeout: float = 120.0):
        super().__init__("google", model, temperature, max_tokens, request_timeout)
        genai.configure(api_key=_require_api_key("GOOGLE_API_KEY"))
        self.client = genai.GenerativeModel(model)

    def generation_config(self, **overrides) -> genai.GenerationConfig:
        return genai.GenerationConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
            **overrides,
        )

    @traceable(name="google_generate_structured")
    async def generate_structured(self, prompt: str, schema: Dict[str, Any]) -> str:
        """Generate schema-constrained JSON using Gemini."""
        response = await self.client.generate_content_async(
            prompt,
            generation_config=self.generation_config(
                response_mime_type="application/json",
                response_schema=to_gemini_schema(schema),
            ),
            request_options={"timeout": self.request_timeout},
        )
        return _chunk_text(response)

    def start_conversation(self, system_instruction: str) -> Conversation:
        return GoogleConversation(self, system_instruction)


class OpenAIConversation(Conversation):
    """OpenAI chat completion conversation."""

    def __init__(self, provider: "OpenAIProvider", system_instruction: str):
        super().__init__(system_instruction)
        self.provider = provider

    def _messages(self, message: str) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.system_instruction}]
        for turn in self.history:
            role = "assistant" if turn["role"] == "model" else "user"
            messages.append({"role": role, "content": turn["text"]})
        messages.append({"role": "user", "content": message})
        return messages

    async def send_message_stream(self, message: str) -> AsyncIterator[str]:
        stream = await self.provider.client.chat.completions.create(
            model=self.provider.model,
            messages=self._messages(message),
            temperature=self.provider.temperature,
            max_tokens=self.provider.max_tokens,
            stream=True,
        )
        parts = []
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                parts.append(delta)
                yield delta
        self._record_exchange(message, "".join(parts))


class OpenAIProvider(ModelProvider):
    """OpenAI model provider."""

    def __init__(self, model: str, temperature: float = 0.4, max_tokens: int = 8192, request_timeout: float = 120.0):
        super().__init__("openai", model, temperature, max_tokens, request_timeout)
        self.client = AsyncOpenAI(api_key=_require_api_key("OPENAI_API_KEY"), timeout=request_timeout)

    @traceable(name="openai_generate_structured")
    async def generate_structured(self, prompt: str, schema: Dict[str, Any]) -> str:
        """Generate schema-constrained JSON using OpenAI."""
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": "You are an expert at analyzing e-commerce customer reviews."},
                {"role": "user", "content": prompt},
            ],
            response_format={
                "type": "json_schema",
                "json_schema": {"name": "analysis_result", "schema": to_json_schema(schema)},
            },
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""

    def start_conversation(self, system_instruction: str) -> Conversation:
        return OpenAIConversation(self, system_instruction)


def create_provider(config: Dict[str, Any]) -> ModelProvider:
    """Factory function to create a model provider."""
    provider_type = config["provider"].lower()
    model = config["model"]
    temperature = config.get("temperature", 0.4)
    max_tokens = config.get("max_tokens", 8192)
    request_timeout = config.get("request_timeout", 120.0)

    logger.info("Creating %s provider for model %s", provider_type, model)
    if provider_type == "google":
        return GoogleProvider(model, temperature, max_tokens, request_timeout)
    elif provider_type == "openai":
        return OpenAIProvider(model, temperature, max_tokens, request_timeout)
    else:
        raise ConfigError(f"Unknown provider: {provider_type}")
