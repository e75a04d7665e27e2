"""Startup helpers for the chat relay service."""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from config import AppConfig
from logger import LOGGER_NAME, mask_secret

log = logging.getLogger(LOGGER_NAME)


def load_env_files() -> None:
    """Load .env files from program and current directory."""
    this_dir = Path(__file__).resolve().parent
    p1 = this_dir / ".env"
    p2 = Path.cwd() / ".env"

    if p1.exists():
        load_dotenv(dotenv_path=str(p1), override=False)
        log.info("Loaded .env from %s", str(p1))

    if p2.exists() and p2 != p1:
        load_dotenv(dotenv_path=str(p2), override=False)
        log.info("Loaded .env from %s", str(p2))


def dump_config(config: AppConfig) -> None:
    """Log effective configuration at startup."""
    log.info("=== chat relay startup config ===")
    log.info("LLM_ENDPOINT_URL=%s", config.endpoint_url)
    log.info(
        "LLM_API_KEY_set=%s value=%s len=%s",
        bool(config.api_key),
        mask_secret(config.api_key),
        len(config.api_key or ""),
    )
    log.info("LLM_MODELS=%s", list(config.model_candidates))
    log.info("LLM_HTTP_REFERER=%s", config.http_referer)
    log.info("LLM_X_TITLE=%s", config.x_title)
    log.info("RETRY_BACKOFF_MS=%d", int(config.retry_backoff_s * 1000))
    log.info("REQUEST_TIMEOUT_S=%s", config.request_timeout_s)
    log.info("MAX_REQUEST_BYTES=%s", config.max_request_bytes)
    log.info("LOG_LEVEL=%s", config.log_level)
    log.info("LOG_PATH=%s", config.log_path or "<stderr>")
    log.info("USER_AGENT=%s", config.user_agent)
    log.info("=================================")
