"""Analysis session state: current result, derived views and chat history."""

import asyncio
import logging
from contextlib import aclosing
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sentiment_hub.analysis_client import AnalysisClient
from sentiment_hub.chat_engine import ChatSessionEngine
from sentiment_hub.config import ChatConfig, Config
from sentiment_hub.errors import AnalysisError, ChatError, OperationInProgressError, SessionStateError
from sentiment_hub.model_providers import ModelProvider
from sentiment_hub.models import AnalysisResult, ChatMessage, DerivedStats, Review, TrendPoint

logger = logging.getLogger(__name__)

ANALYSIS_FAILED_NOTICE = "Analysis failed. Please try again."


def round_half_away_from_zero(value: float, digits: int = 0) -> Decimal:
    """Round like a schoolbook: 3.5 -> 4, -3.5 -> -4."""
    return Decimal(str(value)).quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)


def compute_stats(reviews: Tuple[Review, ...]) -> DerivedStats:
    """Average rating, positive-sentiment percentage and review count."""
    total = len(reviews)
    if total == 0:
        return DerivedStats(average_rating=0.0, positive_percentage=0, total_reviews=0)

    average = sum(r.rating for r in reviews) / total
    positive = sum(1 for r in reviews if r.sentiment == "positive")
    return DerivedStats(
        average_rating=float(round_half_away_from_zero(average, 1)),
        positive_percentage=int(round_half_away_from_zero(100 * positive / total)),
        total_reviews=total,
    )


def filter_by_star(reviews: Tuple[Review, ...], stars: Optional[int]) -> List[Review]:
    """Reviews whose rating rounds to ``stars``; all of them when ``stars`` is None."""
    if stars is None:
        return list(reviews)
    return [r for r in reviews if round_half_away_from_zero(r.rating) == stars]


def build_trend(reviews: Tuple[Review, ...]) -> List[TrendPoint]:
    """Score-over-time series, oldest first, score in percent."""
    ordered = sorted(reviews, key=lambda r: r.date)
    return [TrendPoint(date=r.date, score=r.score * 100, rating=r.rating) for r in ordered]


class ChatTurn:
    """Accumulator for one streamed model reply.

    Each fragment is appended to ``text`` and the controller's last model
    message is replaced with the accumulated value.
    """

    def __init__(self, controller: "SessionStateController", message: str, cancel_event: asyncio.Event):
        self.controller = controller
        self.message = message
        self.cancel_event = cancel_event
        self.text = ""
        self.started = False

    def cancel(self) -> None:
        self.cancel_event.set()

    async def stream(self) -> AsyncIterator[ChatMessage]:
        """Yield the live model message after every update."""
        controller = self.controller
        if controller.active_turn is not self:
            return
        self.started = True
        try:
            fragments = controller.chat_engine.start_turn(
                self.message,
                controller.chat_context,
                cancel=self.cancel_event,
            )
            async with aclosing(fragments):
                async for fragment in fragments:
                    if controller.active_turn is not self:
                        break
                    self.text += fragment
                    yield controller.update_last_model_message(self.text)
        except ChatError as e:
            logger.warning("Chat turn failed: %s", e)
            if controller.active_turn is self:
                yield controller.record_chat_failure(self.text)
        finally:
            controller.finish_chat_turn(self)


class SessionStateController:
    """Owns the analysis result and chat history of one session."""

    def __init__(
        self,
        analysis_client: AnalysisClient,
        chat_engine: ChatSessionEngine,
        chat_config: Optional[ChatConfig] = None,
    ):
        self.analysis_client = analysis_client
        self.chat_engine = chat_engine
        self.chat_config = chat_config or ChatConfig()

        self.result: Optional[AnalysisResult] = None
        self.chat_history: List[ChatMessage] = []
        self.star_filter: Optional[int] = None
        self.input_text: str = ""
        self.notice: Optional[str] = None
        self.analyzing = False
        self.active_turn: Optional[ChatTurn] = None

    # -- analysis ---------------------------------------------------------

    def set_result(self, result: AnalysisResult) -> None:
        """Replace the current result."""
        self.result = result
        if self.chat_config.refresh_context_on_reanalysis:
            if self.active_turn is not None:
                self.active_turn.cancel()
                self.active_turn = None
            self.chat_history = []
            self.chat_engine.reset()

    async def run_analysis(self, raw_text: str) -> Optional[AnalysisResult]:
        """Analyze ``raw_text``; on failure keep the previous result and set a notice."""
        if self.analyzing:
            raise OperationInProgressError("An analysis is already running")
        if not raw_text or not raw_text.strip():
            raise ValueError("Review text must not be empty")

        self.analyzing = True
        self.input_text = raw_text
        self.notice = None
        try:
            result = await self.analysis_client.analyze(raw_text)
        except AnalysisError as e:
            logger.error("Analysis failed: %s", e)
            self.notice = ANALYSIS_FAILED_NOTICE
            return None
        finally:
            self.analyzing = False

        self.set_result(result)
        return result

    # -- derived views ----------------------------------------------------

    def derive_stats(self) -> Optional[DerivedStats]:
        if self.result is None:
            return None
        return compute_stats(self.result.reviews)

    def filter_reviews_by_star(self, stars: Optional[int]) -> List[Review]:
        if self.result is None:
            return []
        return filter_by_star(self.result.reviews, stars)

    def set_star_filter(self, stars: Optional[int]) -> None:
        if stars is not None and not 1 <= stars <= 5:
            raise ValueError("Star filter must be between 1 and 5")
        self.star_filter = stars

    @property
    def filtered_reviews(self) -> List[Review]:
        return self.filter_reviews_by_star(self.star_filter)

    def trend_series(self) -> List[TrendPoint]:
        if self.result is None:
            return []
        return build_trend(self.result.reviews)

    # -- chat -------------------------------------------------------------

    @property
    def chat_context(self) -> AnalysisResult:
        # An open conversation keeps the snapshot it was grounded on
        return self.chat_engine.context or self.result

    @property
    def chatting(self) -> bool:
        return self.active_turn is not None

    def append_chat_message(self, message: ChatMessage) -> ChatMessage:
        self.chat_history.append(message)
        return message

    def update_last_model_message(self, text: str, is_thinking: bool = False) -> ChatMessage:
        """Replace the trailing model message with the accumulated text."""
        if not self.chat_history or self.chat_history[-1].role != "model":
            raise SessionStateError("No model message to update")
        message = ChatMessage(role="model", text=text, is_thinking=is_thinking)
        self.chat_history[-1] = message
        return message

    def start_chat_turn(self, text: str, cancel: Optional[asyncio.Event] = None) -> ChatTurn:
        """Append the user message and a thinking placeholder, return the turn."""
        if self.result is None:
            raise SessionStateError("Run an analysis before chatting")
        if not text or not text.strip():
            raise ValueError("Chat message must not be empty")
        if self.active_turn is not None:
            raise OperationInProgressError("A chat reply is still streaming")

        self.append_chat_message(ChatMessage(role="user", text=text))
        self.append_chat_message(ChatMessage(role="model", text="", is_thinking=True))
        self.active_turn = ChatTurn(self, text, cancel or asyncio.Event())
        return self.active_turn

    def cancel_chat(self) -> bool:
        """Stop the active turn; a turn nobody has streamed yet is released at once."""
        turn = self.active_turn
        if turn is None:
            return False
        turn.cancel()
        if not turn.started:
            self.finish_chat_turn(turn)
        return True

    def record_chat_failure(self, partial_text: str) -> ChatMessage:
        """Finalize any partial reply and add the fallback message."""
        fallback = ChatMessage(role="model", text=self.chat_config.error_message)
        self.notice = self.chat_config.error_message
        last = self.chat_history[-1] if self.chat_history else None
        if last is not None and last.role == "model" and last.is_thinking and not partial_text:
            self.chat_history[-1] = fallback
        else:
            if last is not None and last.role == "model" and last.is_thinking:
                self.update_last_model_message(partial_text)
            self.append_chat_message(fallback)
        return fallback

    def finish_chat_turn(self, turn: ChatTurn) -> None:
        """Clear the thinking flag and release the in-flight slot."""
        if self.active_turn is not turn:
            return
        if self.chat_history and self.chat_history[-1].role == "model" and self.chat_history[-1].is_thinking:
            self.update_last_model_message(turn.text)
        self.active_turn = None

    # -- presentation -----------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Everything a renderer needs, serialized with camelCase keys."""
        stats = self.derive_stats()
        return {
            "result": self.result.model_dump(mode="json", by_alias=True) if self.result else None,
            "stats": stats.model_dump(mode="json", by_alias=True) if stats else None,
            "starFilter": self.star_filter,
            "filteredReviews": [r.model_dump(mode="json", by_alias=True) for r in self.filtered_reviews],
            "trend": [p.model_dump(mode="json", by_alias=True) for p in self.trend_series()],
            "chatHistory": [m.model_dump(mode="json", by_alias=True) for m in self.chat_history],
            "notice": self.notice,
            "analyzing": self.analyzing,
            "chatting": self.chatting,
        }


def create_session(config: Config, provider: ModelProvider) -> SessionStateController:
    """Wire a fresh controller around a shared provider."""
    return SessionStateController(
        AnalysisClient(provider, timeout=config.analysis.timeout_seconds),
        ChatSessionEngine(provider),
        config.chat,
    )
