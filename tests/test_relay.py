"""
Tests for the stream composer and metrics appender.

Tests cover:
- Deltas forwarded unchanged and in order
- Exactly one trailing metrics chunk
- Auditor failures and upstream read errors
- Cancellation teardown
"""

import json
import time
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from relay import METRICS_MARKER, RelayStreamer, StreamMetrics, elapsed_ms, format_metrics_chunk
from security import AuditResult, RuleHit


async def _deltas(*texts):
    for t in texts:
        yield t


def _mock_resp():
    resp = MagicMock(spec=httpx.Response)
    resp.aclose = AsyncMock()
    return resp


def _mock_client():
    client = MagicMock(spec=httpx.AsyncClient)
    client.aclose = AsyncMock()
    return client


def _parse_metrics(chunk):
    assert chunk.startswith("\n\n" + METRICS_MARKER + " ")
    return json.loads(chunk.split(METRICS_MARKER + " ", 1)[1])


class TestMetricsFormat:
    def test_format_metrics_chunk(self):
        metrics = StreamMetrics(
            audit=AuditResult(score=0.2, hits=[RuleHit("toxic", "dumb")], note="n"),
            latency_ms=12,
            model_used="A",
        )
        assert _parse_metrics(format_metrics_chunk(metrics)) == {
            "audit": {"score": 0.2, "hits": [{"type": "toxic", "snippet": "dumb"}], "note": "n"},
            "latencyMs": 12,
            "modelUsed": "A",
        }

    def test_elapsed_ms_never_negative(self):
        assert elapsed_ms(time.monotonic() + 10) == 0
        assert elapsed_ms(time.monotonic() - 0.05) >= 50


class TestRelayStreamer:
    @pytest.mark.asyncio
    async def test_relays_deltas_then_metrics(self):
        resp, client = _mock_resp(), _mock_client()
        out = [
            c
            async for c in RelayStreamer.relay(
                _deltas("Hi", " there"),
                model_used="A",
                started_at=time.monotonic(),
                resp=resp,
                client=client,
            )
        ]

        assert out[:2] == ["Hi", " there"]
        assert len(out) == 3
        metrics = _parse_metrics(out[2])
        assert metrics["modelUsed"] == "A"
        assert isinstance(metrics["latencyMs"], int)
        assert metrics["latencyMs"] >= 0
        assert metrics["audit"]["note"] == "OK"
        resp.aclose.assert_awaited()
        client.aclose.assert_awaited()

    @pytest.mark.asyncio
    async def test_auditor_sees_full_text(self):
        auditor = MagicMock(return_value=AuditResult(score=0.0))
        out = [
            c
            async for c in RelayStreamer.relay(
                _deltas("a", "b", "c"),
                model_used="A",
                started_at=time.monotonic(),
                auditor=auditor,
            )
        ]

        auditor.assert_called_once_with("abc")
        assert sum(1 for c in out if METRICS_MARKER in c) == 1

    @pytest.mark.asyncio
    async def test_empty_stream_still_reports_metrics(self):
        out = [
            c
            async for c in RelayStreamer.relay(
                _deltas(), model_used="A", started_at=time.monotonic()
            )
        ]
        assert len(out) == 1
        assert _parse_metrics(out[0])["modelUsed"] == "A"

    @pytest.mark.asyncio
    async def test_auditor_failure_omits_metrics(self):
        resp = _mock_resp()
        auditor = MagicMock(side_effect=RuntimeError("audit broke"))
        out = [
            c
            async for c in RelayStreamer.relay(
                _deltas("x", "y"),
                model_used="A",
                started_at=time.monotonic(),
                resp=resp,
                auditor=auditor,
            )
        ]

        assert out == ["x", "y"]
        resp.aclose.assert_awaited()

    @pytest.mark.asyncio
    async def test_upstream_read_error_ends_without_metrics(self):
        async def broken():
            yield "partial"
            raise httpx.ReadError("connection reset")

        resp = _mock_resp()
        out = [
            c
            async for c in RelayStreamer.relay(
                broken(), model_used="A", started_at=time.monotonic(), resp=resp
            )
        ]

        assert out == ["partial"]
        resp.aclose.assert_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_closes_upstream_without_metrics(self):
        resp, client = _mock_resp(), _mock_client()

        async def endless():
            i = 0
            while True:
                i += 1
                yield f"chunk{i}"

        auditor = MagicMock(return_value=AuditResult(score=0.0))
        gen = RelayStreamer.relay(
            endless(),
            model_used="A",
            started_at=time.monotonic(),
            resp=resp,
            client=client,
            auditor=auditor,
        )

        first = await gen.__anext__()
        assert first == "chunk1"
        await gen.aclose()

        resp.aclose.assert_awaited_once()
        client.aclose.assert_awaited_once()
        auditor.assert_not_called()
        with pytest.raises(StopAsyncIteration):
            await gen.__anext__()

    @pytest.mark.asyncio
    async def test_does_not_read_ahead_of_consumer(self):
        produced = []

        async def tracked():
            for t in ("a", "b", "c"):
                produced.append(t)
                yield t

        gen = RelayStreamer.relay(tracked(), model_used="A", started_at=time.monotonic())
        assert await gen.__anext__() == "a"
        assert produced == ["a"]
        assert await gen.__anext__() == "b"
        assert produced == ["a", "b"]
        await gen.aclose()
