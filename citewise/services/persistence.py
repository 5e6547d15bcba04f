from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from citewise.models.search import SearchResult
from citewise.services.logger import logger


class ChatStore(Protocol):
    async def save_user_turn(self, query_text: str) -> None: ...
    async def save_answer(self, answer_text: str, sources: list[SearchResult]) -> None: ...


class LogChatStore:
    """Records turns in the application log only; nothing is stored."""

    async def save_user_turn(self, query_text: str) -> None:
        logger.info(f"CHAT_USER_TURN: {query_text[:200]!r}")

    async def save_answer(self, answer_text: str, sources: list[SearchResult]) -> None:
        logger.info(
            f"CHAT_ANSWER: chars={len(answer_text)} sources={[s.url for s in sources]}"
        )


@dataclass
class MemoryChatStore:
    """Keeps turns in memory; used by the CLI and tests."""

    user_turns: list[str] = field(default_factory=list)
    answers: list[tuple[str, list[SearchResult]]] = field(default_factory=list)

    async def save_user_turn(self, query_text: str) -> None:
        self.user_turns.append(query_text)

    async def save_answer(self, answer_text: str, sources: list[SearchResult]) -> None:
        self.answers.append((answer_text, list(sources)))


_store: ChatStore | None = None


def get_chat_store() -> ChatStore:
    global _store
    if _store is None:
        _store = LogChatStore()
    return _store
