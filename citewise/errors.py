from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from citewise.tools.search_provider import ProviderOutcome


class CitewiseError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(CitewiseError):
    """No usable provider or model is configured."""


class ProviderErrorKind(str, Enum):
    AUTH = "auth"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK = "network"
    MALFORMED = "malformed"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({ProviderErrorKind.TIMEOUT, ProviderErrorKind.NETWORK})

STATUS_KINDS = {
    401: ProviderErrorKind.AUTH,
    403: ProviderErrorKind.FORBIDDEN,
    429: ProviderErrorKind.RATE_LIMITED,
}


class ProviderError(CitewiseError):
    def __init__(
        self,
        provider: str,
        kind: ProviderErrorKind,
        message: str,
        *,
        status_code: int | None = None,
    ):
        super().__init__(f"{provider} search failed ({kind.value}): {message}")
        self.provider = provider
        self.kind = kind
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @classmethod
    def from_status(cls, provider: str, status_code: int, message: str) -> "ProviderError":
        kind = STATUS_KINDS.get(status_code)
        if kind is None:
            kind = ProviderErrorKind.NETWORK if status_code >= 500 else ProviderErrorKind.UNKNOWN
        return cls(provider, kind, message, status_code=status_code)


class AllProvidersFailedError(CitewiseError):
    def __init__(self, outcomes: list["ProviderOutcome"]):
        names = ", ".join(o.provider for o in outcomes) or "none"
        super().__init__(f"All search providers failed: {names}")
        self.outcomes = outcomes


class ExtractionError(CitewiseError):
    def __init__(self, url: str, message: str):
        super().__init__(f"Extraction failed for {url}: {message}")
        self.url = url
        self.message = message


class EmbeddingError(CitewiseError):
    pass


class SynthesisError(CitewiseError):
    pass


class StreamClosedError(CitewiseError):
    """An event was sent after the stream reached its terminal event."""
