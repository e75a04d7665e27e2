"""
Chat relay service: streams completions from an OpenAI-compatible upstream.

Request flow:
  validate body -> score last user message -> try model candidates in order
  -> relay decoded text deltas as plain text -> trailing metrics chunk

Response body:
  <generated text>\n\n[[METRICS]] {"audit": ..., "latencyMs": ..., "modelUsed": ...}
"""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import ValidationError

from config import load_config
from fallback import ModelFallback
from logger import setup_logging
from models import ChatRequest
from relay import RelayStreamer
from security import analyze_prompt, audit_output
from sse_handler import iter_text_deltas
from upstream import UpstreamClient
from utils import dump_config, load_env_files

# Load environment
load_env_files()

# Load configuration; an empty candidate list is fatal here, at startup.
config = load_config()
config.validate(require_api_key=False)

# Initialize logging
log = setup_logging(config.log_path, config.log_level, config.log_color)
dump_config(config)

upstream_client = UpstreamClient(config)
model_fallback = ModelFallback(
    upstream_client,
    config.model_candidates,
    backoff_s=config.retry_backoff_s,
)
relay_streamer = RelayStreamer()


def _new_http_client() -> httpx.AsyncClient:
    """Per-request upstream client; no read timeout so long generation pauses survive."""
    connect_timeout = float(config.request_timeout_s)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=connect_timeout, write=connect_timeout, pool=connect_timeout, read=None
        )
    )


def _invalid_request() -> JSONResponse:
    return JSONResponse({"ok": False, "error": "Invalid request"}, status_code=400)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log the candidate order once the server is up."""
    log.info("=== MODEL CANDIDATES ===")
    for i, model in enumerate(model_fallback.candidates, start=1):
        log.info("%d. %s", i, model)
    if not config.api_key:
        log.warning("LLM_API_KEY not set; /api/chat will reject requests")
    yield


app = FastAPI(title="chat-relay-service", version="0.3.0", lifespan=lifespan)


@app.get("/healthz")
async def healthz() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/api/chat")
async def api_chat(request: Request) -> Response:
    """Relay one chat conversation to the upstream model candidates."""
    if not config.api_key:
        raise HTTPException(status_code=500, detail="LLM_API_KEY environment variable required")

    cl = request.headers.get("content-length")
    if cl and cl.isdigit() and int(cl) > config.max_request_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Request too large: {cl} bytes (max {config.max_request_bytes})",
        )

    try:
        body: Any = await request.json()
    except ValueError:
        return _invalid_request()
    try:
        chat = ChatRequest.model_validate(body)
    except ValidationError as e:
        log.info("Rejected chat request: %d validation error(s)", e.error_count())
        return _invalid_request()

    req_id = (
        (request.headers.get("x-request-id") or "").strip()
        or (request.headers.get("x-correlation-id") or "").strip()
        or uuid.uuid4().hex
    )
    client_ip = request.client.host if request.client else "unknown"

    risk = analyze_prompt(chat.last_user_content())
    log.info(
        "Incoming chat req_id=%s from=%s messages=%d risk=%s hits=%s",
        req_id,
        client_ip,
        len(chat.messages),
        risk.header_value(),
        [h.type for h in risk.hits],
    )

    client = _new_http_client()
    started_at = time.monotonic()
    try:
        result = await model_fallback.open_stream(client, chat.settings, chat.messages, req_id=req_id)
    except (Exception, asyncio.CancelledError):
        with contextlib.suppress(Exception):
            await client.aclose()
        raise

    if not result.ok:
        with contextlib.suppress(Exception):
            await client.aclose()
        return PlainTextResponse(result.failure_text(), status_code=502)

    assert result.response is not None and result.model_used is not None
    deltas = iter_text_deltas(result.response.aiter_bytes())
    return StreamingResponse(
        relay_streamer.relay(
            deltas,
            model_used=result.model_used,
            started_at=started_at,
            resp=result.response,
            client=client,
            auditor=audit_output,
            req_id=req_id,
        ),
        media_type="text/plain; charset=utf-8",
        headers={
            "X-Risk-Score": risk.header_value(),
            "Cache-Control": "no-store",
            "X-Model-Used": result.model_used,
            "X-Request-Id": req_id,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)
