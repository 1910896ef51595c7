"""Streamed chat assistant grounded in an analysis snapshot."""

import asyncio
import logging
from contextlib import aclosing
from typing import AsyncIterator, Optional

from sentiment_hub.errors import ChatError
from sentiment_hub.model_providers import Conversation, ConversationProvider
from sentiment_hub.models import AnalysisResult
from sentiment_hub.prompts import build_chat_instruction

logger = logging.getLogger(__name__)


class ChatSessionEngine:
    """Holds one conversation and streams replies turn by turn.

    The grounding context is captured when the first turn opens the
    conversation. Later turns reuse it until ``reset`` is called.
    """

    def __init__(self, provider: ConversationProvider):
        self.provider = provider
        self._conversation: Optional[Conversation] = None
        self.context: Optional[AnalysisResult] = None

    @property
    def is_open(self) -> bool:
        return self._conversation is not None

    def open(self, context: AnalysisResult) -> Conversation:
        """Start the conversation with a snapshot of ``context``."""
        try:
            self._conversation = self.provider.start_conversation(build_chat_instruction(context))
        except Exception as e:
            raise ChatError(f"Could not open chat conversation: {e}") from e
        self.context = context
        logger.info("Opened chat conversation grounded on %d reviews", len(context.reviews))
        return self._conversation

    def reset(self) -> None:
        self._conversation = None
        self.context = None

    async def start_turn(
        self,
        user_message: str,
        context: AnalysisResult,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """Send ``user_message`` and yield reply fragments in arrival order.

        Setting ``cancel`` ends the turn even while the model is silent: the
        pending read is abandoned and the provider stream is closed.
        """
        if not user_message or not user_message.strip():
            raise ValueError("Chat message must not be empty")
        if cancel is not None and cancel.is_set():
            return

        conversation = self._conversation or self.open(context)
        fragments = conversation.send_message_stream(user_message)
        cancelled = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
        try:
            async with aclosing(fragments):
                while cancel is None or not cancel.is_set():
                    fragment = await _next_unless_cancelled(fragments, cancelled)
                    if fragment is _END:
                        break
                    yield fragment
                if cancel is not None and cancel.is_set():
                    logger.info("Chat turn cancelled")
        except ChatError:
            raise
        except Exception as e:
            logger.warning("Chat stream failed: %s", e)
            raise ChatError(f"Chat stream interrupted: {e}") from e
        finally:
            if cancelled is not None:
                cancelled.cancel()


_END = object()


async def _next_fragment(fragments: AsyncIterator[str]):
    try:
        return await fragments.__anext__()
    except StopAsyncIteration:
        return _END


async def _next_unless_cancelled(fragments: AsyncIterator[str], cancelled: Optional[asyncio.Future]):
    """Next fragment, or ``_END`` when the stream is exhausted or ``cancelled`` fires first."""
    if cancelled is None:
        return await _next_fragment(fragments)

    pending = asyncio.ensure_future(_next_fragment(fragments))
    try:
        await asyncio.wait({pending, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not pending.done():
            # The generator must be idle again before aclose() can run
            pending.cancel()
            await asyncio.wait({pending})
    if pending.cancelled():
        return _END
    return pending.result()
