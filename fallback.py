"""Ordered model fallback across transient upstream failures."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import httpx

from logger import LOGGER_NAME
from models import ChatMessage, GenerationSettings
from upstream import AttemptOutcome, UpstreamAttempt, UpstreamClient

log = logging.getLogger(LOGGER_NAME)

DEFAULT_BACKOFF_S = 0.4
GENERIC_UPSTREAM_ERROR = "upstream unavailable"


@dataclass
class FallbackResult:
    """Outcome of one pass over the model candidates."""

    attempted: List[str] = field(default_factory=list)
    model_used: Optional[str] = None
    response: Optional[httpx.Response] = None
    status_code: int = 0
    error_text: str = ""
    exhausted: bool = False

    @property
    def ok(self) -> bool:
        return self.response is not None

    def failure_text(self) -> str:
        """Human-readable failure naming every attempted candidate."""
        if self.exhausted:
            head = "All model candidates failed"
        else:
            head = f"Upstream rejected the request (status {self.status_code})"
        return f"{head}. Tried models: {', '.join(self.attempted)}. Last error: {self.error_text or GENERIC_UPSTREAM_ERROR}"


class ModelFallback:
    """
    Try model candidates in priority order until one opens a stream.

    Retryable statuses advance to the next candidate after a fixed backoff;
    any other failure ends the pass immediately, since a malformed request
    fails the same way for every model.
    """

    def __init__(
        self,
        upstream: UpstreamClient,
        candidates: Sequence[str],
        backoff_s: float = DEFAULT_BACKOFF_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not candidates:
            raise ValueError("model candidate list must not be empty")
        self._upstream = upstream
        self._candidates: Tuple[str, ...] = tuple(candidates)
        self._backoff_s = backoff_s
        self._sleep = sleep

    @property
    def candidates(self) -> Tuple[str, ...]:
        return self._candidates

    async def open_stream(
        self,
        client: httpx.AsyncClient,
        settings: GenerationSettings,
        messages: Sequence[ChatMessage],
        req_id: str = "-",
    ) -> FallbackResult:
        result = FallbackResult()
        total = len(self._candidates)
        last: Optional[UpstreamAttempt] = None

        for i, model in enumerate(self._candidates, start=1):
            log.info("Attempt %d/%d -> %s req_id=%s", i, total, model, req_id)
            result.attempted.append(model)

            attempt = await self._upstream.open_completion(client, model, settings, messages)
            outcome = attempt.outcome

            if outcome is AttemptOutcome.SUCCESS:
                result.model_used = model
                result.response = attempt.response
                result.status_code = attempt.status_code
                return result

            if outcome is AttemptOutcome.TERMINAL:
                log.warning(
                    "Terminal upstream failure req_id=%s model=%s status=%s; not trying remaining candidates",
                    req_id,
                    model,
                    attempt.status_code,
                )
                result.status_code = attempt.status_code
                result.error_text = attempt.error_text
                return result

            last = attempt
            if i < total:
                log.info(
                    "Retryable upstream failure req_id=%s model=%s status=%s; backing off %.0fms",
                    req_id,
                    model,
                    attempt.status_code,
                    self._backoff_s * 1000,
                )
                await self._sleep(self._backoff_s)

        log.warning("All %d model candidates failed req_id=%s", total, req_id)
        result.exhausted = True
        if last is not None:
            result.status_code = last.status_code
            result.error_text = last.error_text
        return result
