"""Upstream completion API communication."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from config import AppConfig
from logger import LOGGER_NAME
from models import ChatMessage, GenerationSettings

log = logging.getLogger(LOGGER_NAME)

# Transient capacity/server errors; anything else non-2xx is treated as a request problem.
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Pseudo status for attempts that never got an HTTP response (connect error, timeout).
TRANSPORT_ERROR_STATUS = 0


class AttemptOutcome(enum.Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclass
class UpstreamAttempt:
    """Result of one completion request against one model."""

    model: str
    status_code: int
    response: Optional[httpx.Response] = None
    error_text: str = ""

    @property
    def outcome(self) -> AttemptOutcome:
        if self.response is not None:
            return AttemptOutcome.SUCCESS
        if self.status_code in RETRYABLE_STATUS_CODES or self.status_code == TRANSPORT_ERROR_STATUS:
            return AttemptOutcome.RETRYABLE
        return AttemptOutcome.TERMINAL

    @property
    def ok(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS


def build_upstream_messages(
    settings: GenerationSettings, messages: Sequence[ChatMessage]
) -> List[Dict[str, Any]]:
    """
    Conversation as sent upstream.

    The settings system prompt leads the conversation unless the caller
    already opened it with a system message.
    """
    out = [m.to_upstream() for m in messages]
    system_prompt = (settings.system_prompt or "").strip()
    if system_prompt and not (out and out[0]["role"] == "system"):
        out.insert(0, {"role": "system", "content": system_prompt})
    return out


class UpstreamClient:
    """Issue completion requests to the configured endpoint."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def get_headers(self) -> Dict[str, str]:
        """Get default headers for the completion API."""
        headers = {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "User-Agent": self._config.user_agent,
        }
        if self._config.http_referer:
            headers["HTTP-Referer"] = self._config.http_referer
        if self._config.x_title:
            headers["X-Title"] = self._config.x_title
        return headers

    @staticmethod
    def build_payload(
        model: str,
        settings: GenerationSettings,
        messages: Sequence[ChatMessage],
    ) -> Dict[str, Any]:
        return {
            "model": model,
            "stream": True,
            "temperature": settings.temperature,
            "max_tokens": settings.max_tokens,
            "messages": build_upstream_messages(settings, messages),
        }

    async def open_completion(
        self,
        client: httpx.AsyncClient,
        model: str,
        settings: GenerationSettings,
        messages: Sequence[ChatMessage],
    ) -> UpstreamAttempt:
        """
        Send one streaming completion request for `model`.

        On success the response is returned open and unread; the caller owns
        closing it. On failure the response is drained (best effort) and closed.
        """
        req = client.build_request(
            "POST",
            self._config.endpoint_url,
            headers=self.get_headers(),
            json=self.build_payload(model, settings, messages),
        )

        t0 = time.time()
        try:
            resp = await client.send(req, stream=True)
        except httpx.TransportError as e:
            log.warning(
                "Upstream transport error model=%s err=%s: %s", model, type(e).__name__, e
            )
            return UpstreamAttempt(
                model=model,
                status_code=TRANSPORT_ERROR_STATUS,
                error_text=f"{type(e).__name__}: {e}",
            )

        dt = (time.time() - t0) * 1000
        log.info("Upstream chat model=%s status=%s ms=%.1f", model, resp.status_code, dt)

        if 200 <= resp.status_code < 300:
            return UpstreamAttempt(model=model, status_code=resp.status_code, response=resp)

        snippet = await self.read_error_snippet(resp)
        await resp.aclose()
        log.warning(
            "Upstream chat error model=%s status=%s content-type=%s body=%r",
            model,
            resp.status_code,
            resp.headers.get("content-type", ""),
            snippet[:200],
        )
        return UpstreamAttempt(model=model, status_code=resp.status_code, error_text=snippet)

    @staticmethod
    async def read_error_snippet(
        resp: httpx.Response, limit: int = 2000, timeout_s: float = 2.0
    ) -> str:
        """Best-effort: read small error body without risking a hang."""
        try:
            raw = await asyncio.wait_for(resp.aread(), timeout=timeout_s)
        except (asyncio.TimeoutError, httpx.HTTPError):
            return ""
        return raw.decode("utf-8", errors="replace")[:limit]
