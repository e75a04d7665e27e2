"""Relay decoded text to the caller and append the trailing metrics record."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterator, Callable, Dict, List, Optional

import httpx

from logger import LOGGER_NAME
from security import AuditResult, audit_output

log = logging.getLogger(LOGGER_NAME)

# Callers split the body on this marker to separate display text from metrics.
METRICS_MARKER = "[[METRICS]]"

Auditor = Callable[[str], AuditResult]


@dataclass(frozen=True)
class StreamMetrics:
    audit: AuditResult
    latency_ms: int
    model_used: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audit": self.audit.to_dict(),
            "latencyMs": self.latency_ms,
            "modelUsed": self.model_used,
        }


def format_metrics_chunk(metrics: StreamMetrics) -> str:
    return f"\n\n{METRICS_MARKER} {json.dumps(metrics.to_dict(), ensure_ascii=False)}"


def elapsed_ms(started_at: float) -> int:
    """Milliseconds since a time.monotonic() reading, never negative."""
    return max(0, int(round((time.monotonic() - started_at) * 1000)))


class RelayStreamer:
    """Forward text deltas as they arrive; audit and report once the stream ends."""

    @staticmethod
    async def relay(
        deltas: AsyncIterator[str],
        *,
        model_used: str,
        started_at: float,
        resp: Optional[httpx.Response] = None,
        client: Optional[httpx.AsyncClient] = None,
        auditor: Auditor = audit_output,
        req_id: str = "-",
    ) -> AsyncGenerator[str, None]:
        """
        Yield every delta unchanged, then one metrics chunk.

        The upstream response and client are closed however the relay ends.
        Cancellation, or an upstream read error, ends the relay without metrics.
        """
        parts: List[str] = []
        completed = False
        try:
            async for delta in deltas:
                parts.append(delta)
                yield delta
            completed = True
        except asyncio.CancelledError:
            log.info("Relay cancelled req_id=%s model=%s deltas=%d", req_id, model_used, len(parts))
            raise
        except httpx.HTTPError as e:
            log.warning(
                "Upstream stream ended with error req_id=%s model=%s err=%r",
                req_id,
                model_used,
                e,
            )
        finally:
            aclose = getattr(deltas, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()
            if resp is not None:
                with contextlib.suppress(Exception):
                    await resp.aclose()
            if client is not None:
                with contextlib.suppress(Exception):
                    await client.aclose()

        if not completed:
            return

        text = "".join(parts)
        latency_ms = elapsed_ms(started_at)
        try:
            audit = auditor(text)
        except Exception:
            log.warning("Output audit failed req_id=%s; metrics omitted", req_id, exc_info=True)
            return

        log.info(
            "Relay done req_id=%s model=%s deltas=%d chars=%d latency_ms=%d audit_score=%s",
            req_id,
            model_used,
            len(parts),
            len(text),
            latency_ms,
            audit.score,
        )
        yield format_metrics_chunk(
            StreamMetrics(audit=audit, latency_ms=latency_ms, model_used=model_used)
        )
