from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from citewise.models.search import OptimizationMode, SearchRequest


# --- Requests ---


class ChatRequest(BaseModel):
    query: str = Field(min_length=1)
    history: list[tuple[str, str]] = Field(default_factory=list)
    optimization_mode: OptimizationMode = OptimizationMode.BALANCED
    urls: list[str] = Field(default_factory=list)
    system_instructions: str = ""
    model: str | None = None

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be blank")
        return value

    def to_search_request(self) -> SearchRequest:
        return SearchRequest(
            raw_query=self.query,
            history=tuple((role, text) for role, text in self.history),
            optimization_mode=self.optimization_mode,
            explicit_urls=frozenset(u.strip() for u in self.urls if u.strip()),
            system_instructions=self.system_instructions,
        )


# --- Responses ---


class HealthResponse(BaseModel):
    status: str
    service: str
