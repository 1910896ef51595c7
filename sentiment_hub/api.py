"""FastAPI interface for the review insight service."""

import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from sentiment_hub.config import Config, load_config_or_default
from sentiment_hub.errors import OperationInProgressError, SessionStateError
from sentiment_hub.model_providers import ModelProvider, create_provider
from sentiment_hub.models import AnalysisResult, ChatMessage, DerivedStats, Review, TrendPoint
from sentiment_hub.monitoring import setup_langsmith
from sentiment_hub.session import SessionStateController, create_session

logger = logging.getLogger(__name__)


class AnalysisRequest(BaseModel):
    """Request model for analysis."""
    text: str = Field(min_length=1)


class ChatRequest(BaseModel):
    """Request model for a chat turn."""
    message: str = Field(min_length=1)


class StarFilterRequest(BaseModel):
    """Request model for the star filter."""
    stars: Optional[int] = Field(default=None, ge=1, le=5)


class SessionRegistry:
    """In-memory sessions keyed by id."""

    def __init__(self, factory: Callable[[], SessionStateController]):
        self.factory = factory
        self.sessions: Dict[str, SessionStateController] = {}

    def create(self) -> str:
        session_id = uuid.uuid4().hex
        self.sessions[session_id] = self.factory()
        return session_id

    def get(self, session_id: str) -> SessionStateController:
        if session_id not in self.sessions:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return self.sessions[session_id]

    def remove(self, session_id: str) -> None:
        controller = self.get(session_id)
        controller.cancel_chat()
        del self.sessions[session_id]


def _sse(message: ChatMessage) -> str:
    return f"data: {json.dumps(message.model_dump(mode='json', by_alias=True))}\n\n"


def create_app(config: Optional[Config] = None, provider: Optional[ModelProvider] = None) -> FastAPI:
    """Build the application around one shared provider."""
    config = config or load_config_or_default()
    if provider is None:
        setup_langsmith()
        provider = create_provider(config.model.model_dump())

    app = FastAPI(title="Sentiment Hub API", version="1.0.0")
    app.state.config = config
    app.state.registry = SessionRegistry(lambda: create_session(config, provider))

    def session_for(request: Request, session_id: str) -> SessionStateController:
        return request.app.state.registry.get(session_id)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "Sentiment Hub",
            "version": "1.0.0",
            "endpoints": [
                "/sessions",
                "/health",
            ]
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "provider": provider.name, "model": provider.model}

    @app.post("/sessions", status_code=201)
    async def create_session_endpoint(request: Request):
        """Start a new, empty analysis session."""
        return {"sessionId": request.app.state.registry.create()}

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str, request: Request) -> Dict[str, Any]:
        """Everything the dashboard renders."""
        return session_for(request, session_id).snapshot()

    @app.delete("/sessions/{session_id}", status_code=204)
    async def delete_session(session_id: str, request: Request):
        request.app.state.registry.remove(session_id)

    @app.post("/sessions/{session_id}/analysis", response_model=AnalysisResult)
    async def analyze(session_id: str, body: AnalysisRequest, request: Request):
        """Analyze pasted reviews and store the result."""
        controller = session_for(request, session_id)
        try:
            result = await controller.run_analysis(body.text)
        except OperationInProgressError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

        if result is None:
            raise HTTPException(status_code=502, detail=controller.notice)
        return result

    @app.get("/sessions/{session_id}/stats", response_model=Optional[DerivedStats])
    async def stats(session_id: str, request: Request):
        return session_for(request, session_id).derive_stats()

    @app.get("/sessions/{session_id}/trend", response_model=List[TrendPoint])
    async def trend(session_id: str, request: Request):
        return session_for(request, session_id).trend_series()

    @app.get("/sessions/{session_id}/reviews", response_model=List[Review])
    async def reviews(session_id: str, request: Request, stars: Optional[int] = Query(default=None, ge=1, le=5)):
        """Reviews filtered by an explicit star value, else by the stored filter."""
        controller = session_for(request, session_id)
        if stars is None:
            return controller.filtered_reviews
        return controller.filter_reviews_by_star(stars)

    @app.put("/sessions/{session_id}/star-filter")
    async def set_star_filter(session_id: str, body: StarFilterRequest, request: Request):
        controller = session_for(request, session_id)
        controller.set_star_filter(body.stars)
        return {"starFilter": controller.star_filter}

    @app.get("/sessions/{session_id}/chat", response_model=List[ChatMessage])
    async def chat_history(session_id: str, request: Request):
        return session_for(request, session_id).chat_history

    @app.post("/sessions/{session_id}/chat")
    async def chat(session_id: str, body: ChatRequest, request: Request):
        """Stream the assistant's reply as server-sent events."""
        controller = session_for(request, session_id)
        try:
            turn = controller.start_chat_turn(body.message)
        except OperationInProgressError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except SessionStateError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

        async def events():
            async for message in turn.stream():
                yield _sse(message)

        return StreamingResponse(events(), media_type="text/event-stream")

    @app.post("/sessions/{session_id}/chat/cancel")
    async def cancel_chat(session_id: str, request: Request):
        return {"cancelled": session_for(request, session_id).cancel_chat()}

    return app


def run(config: Config, provider: Optional[ModelProvider] = None) -> None:
    """Serve the API with uvicorn."""
    uvicorn.run(create_app(config, provider), host=config.api.host, port=config.api.port)
