"""Client for the optional local reasoning service (Ollama).

The sync layers use it only to improve suggestion quality. Every failure
mode (unreachable, non-2xx, timeout, unreadable body) surfaces as
``ReasoningUnavailableError`` so callers can fall back uniformly.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Protocol

import httpx

from lifesync import config

logger = logging.getLogger("lifesync.reasoning")

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class ReasoningUnavailableError(RuntimeError):
    """The reasoning service could not answer this call."""


class ReasoningClient(Protocol):
    async def check_availability(self) -> bool: ...

    async def generate(self, prompt: str, *, timeout_ms: int | None = None) -> str: ...


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Pull the outermost JSON object out of free text, or None if there is none."""
    if not text:
        return None
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class OllamaReasoningClient:
    """Thin async wrapper over Ollama's ``/api/tags`` and ``/api/generate``."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        *,
        availability_timeout_ms: int | None = None,
        default_timeout_ms: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or config.OLLAMA_URL).rstrip("/")
        self.model = model or config.OLLAMA_MODEL
        self.availability_timeout_ms = availability_timeout_ms or config.REASONING_AVAILABILITY_TIMEOUT_MS
        self.default_timeout_ms = default_timeout_ms or config.REASONING_DEFAULT_TIMEOUT_MS
        self._transport = transport

    def _client(self, timeout_ms: int) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(max(1, timeout_ms) / 1000.0),
            transport=self._transport,
        )

    async def check_availability(self) -> bool:
        try:
            async with self._client(self.availability_timeout_ms) as client:
                response = await client.get("/api/tags")
            return response.is_success
        except httpx.HTTPError as exc:
            logger.info("Reasoning service unreachable at %s: %s", self.base_url, exc)
            return False

    async def list_models(self) -> list[str]:
        try:
            async with self._client(self.availability_timeout_ms) as client:
                response = await client.get("/api/tags")
            if not response.is_success:
                return []
            payload = response.json()
        except (httpx.HTTPError, ValueError):
            return []
        models = payload.get("models") if isinstance(payload, dict) else None
        if not isinstance(models, list):
            return []
        return [str(m.get("name")) for m in models if isinstance(m, dict) and m.get("name")]

    async def _post_generate(self, prompt: str, timeout: int) -> httpx.Response:
        async with self._client(timeout) as client:
            return await client.post(
                "/api/generate",
                json={"model": self.model, "prompt": prompt, "stream": False},
            )

    async def generate(self, prompt: str, *, timeout_ms: int | None = None) -> str:
        """Send one prompt. ``timeout_ms`` bounds the whole call, not each phase."""
        timeout = timeout_ms or self.default_timeout_ms
        try:
            response = await asyncio.wait_for(self._post_generate(prompt, timeout), max(1, timeout) / 1000.0)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ReasoningUnavailableError(f"Reasoning call timed out after {timeout}ms") from exc
        except httpx.HTTPError as exc:
            raise ReasoningUnavailableError(f"Reasoning call failed: {exc}") from exc

        if not response.is_success:
            raise ReasoningUnavailableError(f"Reasoning service returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ReasoningUnavailableError("Reasoning service returned a non-JSON body") from exc
        text = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise ReasoningUnavailableError("Reasoning service response had no text")
        return text
