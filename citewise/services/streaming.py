from __future__ import annotations

from typing import Any

from citewise.models.events import EventType, SSEEvent
from citewise.models.search import SearchResult


def data(text: str) -> SSEEvent:
    return SSEEvent(event=EventType.DATA, data={"text": text})


def sources(results: list[SearchResult]) -> SSEEvent:
    """Emit the numbered source list; entry i is citation [i + 1]."""
    return SSEEvent(
        event=EventType.SOURCES,
        data={"sources": [r.to_dict() for r in results]},
    )


def end(answer: str, results: list[SearchResult], runtime_ms: int | None = None) -> SSEEvent:
    payload: dict[str, Any] = {
        "answer": answer,
        "sources": [r.to_dict() for r in results],
    }
    if runtime_ms is not None:
        payload["runtime_ms"] = runtime_ms
    return SSEEvent(event=EventType.END, data=payload)


def error(message: str, stage: str | None = None) -> SSEEvent:
    payload: dict[str, Any] = {"message": message}
    if stage:
        payload["stage"] = stage
    return SSEEvent(event=EventType.ERROR, data=payload)
