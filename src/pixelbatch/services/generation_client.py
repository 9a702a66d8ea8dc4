"""Client for the external image generation API (Pollinations-style).

A generation is a single GET returning image bytes. Failures raise
:class:`GenerationError` carrying a reason and whether a retry may help.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

# The API rejects seeds above int32 max.
INT32_MAX = 2_147_483_647

MODEL_UNAVAILABLE_PATTERN = "No active flux servers available"


@dataclass(frozen=True)
class ErrorClassification:
    retryable: bool
    reason: str


class GenerationError(Exception):
    """One failed generation attempt."""

    def __init__(self, reason: str, message: str, retryable: bool, status_code: int | None = None):
        self.reason = reason
        self.message = message
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


@dataclass
class GeneratedImage:
    data: bytes
    content_type: str


def classify_http_error(status: int) -> ErrorClassification:
    """Map an HTTP status to retryable / terminal."""
    if status == 429:
        return ErrorClassification(True, "rate_limited")
    if status >= 500:
        return ErrorClassification(True, "server_error")
    if status in (401, 403):
        return ErrorClassification(False, "auth_error")
    if status == 402:
        return ErrorClassification(False, "quota_exhausted")
    if status == 400:
        return ErrorClassification(False, "validation_error")
    if status == 404:
        return ErrorClassification(False, "not_found")
    if 400 <= status < 500:
        return ErrorClassification(False, "client_error")
    return ErrorClassification(False, "unknown")


def is_model_unavailable(error_text: str) -> bool:
    """Detect the transient "no servers for this model" response, plain or JSON-wrapped."""
    if MODEL_UNAVAILABLE_PATTERN in error_text:
        return True
    try:
        parsed = json.loads(error_text)
    except (TypeError, ValueError):
        return False
    if isinstance(parsed, dict):
        nested = parsed.get("message") or parsed.get("error")
        return isinstance(nested, str) and MODEL_UNAVAILABLE_PATTERN in nested
    return False


def classify_api_error(status: int, error_text: str) -> ErrorClassification:
    if is_model_unavailable(error_text):
        return ErrorClassification(True, "model_unavailable")
    return classify_http_error(status)


def build_generation_url(base_url: str, params: dict[str, Any]) -> str:
    """Build the GET URL for one generation from resolved item params."""
    query: dict[str, str] = {}

    negative = (params.get("negative_prompt") or "").strip()
    if negative:
        query["negative_prompt"] = negative
    if params.get("model"):
        query["model"] = params["model"]
    if params.get("width"):
        query["width"] = str(params["width"])
    if params.get("height"):
        query["height"] = str(params["height"])
    seed = params.get("seed")
    if seed is not None and seed >= 0:
        query["seed"] = str(seed)

    query["quality"] = "high"

    for flag in ("enhance", "safe", "private"):
        if params.get(flag):
            query[flag] = "true"
    if params.get("image"):
        query["image"] = params["image"]

    prompt = quote(params["prompt"], safe="")
    return str(httpx.URL(f"{base_url.rstrip('/')}/image/{prompt}", params=query))


class GenerationClient(ABC):
    """Produces image bytes for one set of resolved generation params."""

    @abstractmethod
    async def generate(self, params: dict[str, Any]) -> GeneratedImage:
        ...

    async def aclose(self) -> None:
        return None


class HttpGenerationClient(GenerationClient):
    """httpx-backed generation client with a hard per-attempt deadline."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True)
        self._owns_client = client is None

    async def generate(self, params: dict[str, Any]) -> GeneratedImage:
        url = build_generation_url(self.base_url, params)
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            # httpx timeouts are per phase; wait_for bounds the whole attempt.
            response = await asyncio.wait_for(
                self._client.get(url, headers=headers),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise GenerationError("timeout", f"Generation timed out: {exc!r}", retryable=True) from exc
        except httpx.TransportError as exc:
            raise GenerationError("network_error", f"Network error: {exc}", retryable=True) from exc

        if not response.is_success:
            error_text = response.text
            classification = classify_api_error(response.status_code, error_text)
            raise GenerationError(
                classification.reason,
                f"HTTP {response.status_code}: {error_text[:500]}",
                retryable=classification.retryable,
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        return GeneratedImage(data=response.content, content_type=content_type or "image/jpeg")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
