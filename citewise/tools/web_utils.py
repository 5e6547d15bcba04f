from __future__ import annotations

import re
from typing import Any, Iterable
from urllib.parse import urlsplit, urlunsplit

import httpx

from citewise.errors import ProviderError, ProviderErrorKind

DEFAULT_PORTS = {"http": 80, "https": 443}


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlsplit(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def ensure_scheme(url: str) -> str:
    url = url.strip()
    if re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", url):
        return url
    return f"https://{url}"


def normalize_url(url: str) -> str:
    """Dedup key for a URL: scheme + host + path, query and fragment ignored."""
    parsed = urlsplit(ensure_scheme(url))
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    try:
        port = parsed.port
    except ValueError:
        port = None
    netloc = host if port is None or DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"
    path = parsed.path.rstrip("/")
    return urlunsplit((scheme, netloc, path, "", ""))


def normalize_whitespace(text: str) -> str:
    """Collapse newlines and whitespace runs into single spaces."""
    return re.sub(r"\s+", " ", text.replace("\xa0", " ")).strip()


def clip(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars]


async def request_json(
    provider: str,
    method: str,
    url: str,
    *,
    timeout: float = 30.0,
    **kwargs: Any,
) -> Any:
    """Issue an HTTP request for a search provider and decode its JSON body.

    Transport and status failures are normalized into ProviderError so the
    registry can treat every backend the same way.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as exc:
        raise ProviderError.from_status(
            provider,
            exc.response.status_code,
            f"HTTP {exc.response.status_code} from {url}",
        ) from exc
    except httpx.TimeoutException as exc:
        raise ProviderError(provider, ProviderErrorKind.TIMEOUT, f"timed out calling {url}") from exc
    except httpx.HTTPError as exc:
        raise ProviderError(provider, ProviderErrorKind.NETWORK, str(exc) or type(exc).__name__) from exc
    except ValueError as exc:
        raise ProviderError(provider, ProviderErrorKind.MALFORMED, "response is not valid JSON") from exc


def merge_links(*groups: Iterable[str]) -> tuple[str, ...]:
    """Scheme-qualified links from every group, deduplicated, first occurrence wins.

    Unordered groups (sets) are sorted so the result stays deterministic.
    """
    merged: list[str] = []
    seen: set[str] = set()
    for group in groups:
        items = sorted(group) if isinstance(group, (set, frozenset)) else list(group)
        for raw in items:
            if not raw or not raw.strip():
                continue
            url = ensure_scheme(raw)
            if not is_valid_url(url):
                continue
            key = normalize_url(url)
            if key in seen:
                continue
            seen.add(key)
            merged.append(url)
    return tuple(merged)
