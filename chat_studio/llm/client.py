"""HTTP client for a local inference server (Ollama or OpenAI-compatible)."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx

from chat_studio.chat.errors import NetworkError
from chat_studio.config import settings
from chat_studio.llm.prompt import ENDPOINTS, ApiMode

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

MODEL_ENDPOINTS = ("/api/tags", "/api/models")


def parse_model_names(data: Any) -> list[str]:
    """Accept a bare list or ``{"models": [...]}`` of strings or objects."""
    entries = data.get("models") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        return []

    names: list[str] = []
    for entry in entries:
        if isinstance(entry, dict):
            name = entry.get("name") or entry.get("model") or entry.get("id")
        else:
            name = entry
        if isinstance(name, str) and name:
            names.append(name)
    return names


class OllamaClient:
    """Opens one streaming request per generation.

    Only the connect phase is bounded by a timeout. Once connected, a stalled
    server blocks the read until the caller cancels.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        mode: ApiMode | str | None = None,
        connect_timeout: float | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else settings.base_url()
        self.mode = ApiMode(mode or settings.api_mode)
        self._timeout = httpx.Timeout(
            None, connect=connect_timeout or settings.connect_timeout
        )

    @property
    def generate_url(self) -> str:
        return self.base_url + ENDPOINTS[self.mode]

    @asynccontextmanager
    async def open_stream(self, payload: dict[str, Any]) -> AsyncIterator[AsyncIterator[bytes]]:
        """POST *payload* and yield the raw response body as a byte iterator.

        Raises:
            NetworkError: Non-2xx status, or any transport failure while
                connecting or reading.
        """
        url = self.generate_url
        logger.info("POST %s (model=%s)", url, payload.get("model"))
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:  # noqa: SIM117
                async with client.stream("POST", url, json=payload) as resp:
                    if resp.status_code >= 400:
                        msg = f"HTTP {resp.status_code}: {resp.reason_phrase}"
                        raise NetworkError(msg, status_code=resp.status_code)
                    yield resp.aiter_bytes()
        except httpx.HTTPError as exc:
            msg = f"Request to {url} failed: {exc}"
            raise NetworkError(msg) from exc

    async def list_models(self) -> list[str]:
        """Return model names from the server, trying each listing endpoint."""
        last_error: Exception | None = None
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            for path in MODEL_ENDPOINTS:
                url = self.base_url + path
                try:
                    resp = await client.get(url)
                    resp.raise_for_status()
                    names = parse_model_names(resp.json())
                except (httpx.HTTPError, ValueError) as exc:
                    logger.debug("Model listing via %s failed: %s", url, exc)
                    last_error = exc
                    continue
                if names:
                    return names
        if last_error is not None:
            msg = f"Could not list models from {self.base_url}: {last_error}"
            raise NetworkError(msg) from last_error
        return []
