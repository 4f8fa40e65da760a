"""HTTP client for a llama.cpp style chat-completion backend."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from localagents.errors import BackendError
from localagents.models import Message

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass(slots=True)
class ChatResponse:
    """Answer and chain-of-thought fields of one completion."""

    content: str
    reasoning: str = ""
    completion_tokens: int = 0
    error: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()


def _message_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return ""


def parse_chat_response(data: dict[str, Any]) -> ChatResponse:
    """Read content, reasoning and usage out of a completion payload."""
    choices = data.get("choices") or []
    message: dict[str, Any] = {}
    if choices and isinstance(choices[0], dict):
        message = choices[0].get("message") or {}
    usage = data.get("usage") or {}
    error = data.get("error")
    error_text = error.get("message") if isinstance(error, dict) else None
    try:
        tokens = int(usage.get("completion_tokens") or 0)
    except (TypeError, ValueError):
        tokens = 0
    return ChatResponse(
        content=_message_text(message.get("content")),
        reasoning=_message_text(message.get("reasoning_content")),
        completion_tokens=tokens,
        error=error_text,
    )


class BackendClient:
    """One inference backend. Safe to share between threads."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BackendClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        if json is not None:
            kwargs["json"] = json
        url = f"{self.base_url}{path}"
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise BackendError(url, "timeout") from exc
        except httpx.HTTPError as exc:
            raise BackendError(url, str(exc) or type(exc).__name__) from exc
        if not response.is_success:
            raise BackendError(url, f"HTTP {response.status_code}")
        return response

    def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(f"{self.base_url}{path}", "invalid JSON body") from exc

    def is_healthy(self, timeout: float | None = None) -> bool:
        """Liveness check: ``/health`` answers with an ``ok`` marker."""
        try:
            response = self._request("GET", "/health", timeout=timeout)
        except BackendError as exc:
            logger.debug("Health check failed: %s", exc)
            return False
        return "ok" in response.text.lower()

    def list_models(self, timeout: float | None = None) -> list[str]:
        """Advertised model identifiers, sorted. Empty when unavailable."""
        try:
            data = self._request_json("GET", "/v1/models", timeout=timeout)
        except BackendError as exc:
            logger.debug("Model listing failed: %s", exc)
            return []
        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            return []
        return sorted(
            str(entry["id"])
            for entry in entries
            if isinstance(entry, dict) and entry.get("id")
        )

    def available_slots(self, timeout: float | None = None) -> tuple[int, int] | None:
        """Return ``(idle, total)`` slots, or None if ``/slots`` is unavailable."""
        try:
            data = self._request_json("GET", "/slots", timeout=timeout)
        except BackendError as exc:
            logger.debug("Slot probe failed: %s", exc)
            return None
        if not isinstance(data, list):
            return None
        idle = sum(
            1
            for slot in data
            if isinstance(slot, dict) and slot.get("is_processing") is False
        )
        return idle, len(data)

    def chat(
        self,
        *,
        model: str,
        messages: Sequence[Message],
        max_tokens: int,
        temperature: float,
        stop: Sequence[str] | None = None,
        timeout: float | None = None,
    ) -> ChatResponse:
        """Send one chat completion request. Raises BackendError on failure."""
        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if stop:
            payload["stop"] = list(stop)
        data = self._request_json(
            "POST", "/v1/chat/completions", timeout=timeout, json=payload
        )
        if not isinstance(data, dict):
            raise BackendError(
                f"{self.base_url}/v1/chat/completions", "unexpected response shape"
            )
        return parse_chat_response(data)
