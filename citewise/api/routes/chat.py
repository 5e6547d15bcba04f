from __future__ import annotations

import json as _json

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from citewise.agents.orchestrator import AnswerOrchestrator
from citewise.models.schemas import ChatRequest
from citewise.services import logger as log_service

router = APIRouter(prefix="/api/chat", tags=["chat"])


def build_orchestrator(request: Request, model: str | None) -> AnswerOrchestrator:
    cache = getattr(request.app.state, "embedding_cache", None)
    return AnswerOrchestrator(embedding_cache=cache, model=model)


@router.post("")
async def chat(payload: ChatRequest, request: Request):
    """Answer one turn, streaming sources, text increments and a terminal event."""
    search_request = payload.to_search_request()
    orchestrator = build_orchestrator(request, payload.model)

    async def event_generator():
        log_service.log_event(
            event_type="chat_started",
            message="Chat turn started",
            mode=search_request.optimization_mode.value,
            query=search_request.raw_query[:100],
            explicit_urls=len(search_request.explicit_urls),
        )
        # Disconnects cancel this generator, which closes the answer stream
        # and cancels the pipeline task behind it.
        stream = orchestrator.answer(search_request)
        try:
            async for event in stream:
                yield {
                    "event": event.event.value,
                    "data": _json.dumps(event.data),
                }
        finally:
            await stream.aclose()

    return EventSourceResponse(event_generator())
