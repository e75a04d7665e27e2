"""Configuration management for the chat relay service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple

DEFAULT_ENDPOINT_URL = "https://openrouter.ai/api/v1/chat/completions"


def _env_bool(name: str, default: bool) -> bool:
    """Get boolean environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    """Get float environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    """Get integer environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """Get string environment variable with fallback."""
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip()


def _csv_list(name: str) -> Tuple[str, ...]:
    """Parse comma-separated environment variable into an ordered, de-duplicated tuple."""
    v = os.getenv(name, "")
    seen = set()
    items = []
    for x in v.split(","):
        item = x.strip()
        if not item or item in seen:
            continue
        seen.add(item)
        items.append(item)
    return tuple(items)


@dataclass(frozen=True)
class AppConfig:
    """Application configuration."""

    # Upstream settings
    endpoint_url: str
    api_key: str
    model_candidates: Tuple[str, ...]
    http_referer: str
    x_title: str

    # Retry and timeouts
    retry_backoff_s: float
    request_timeout_s: float

    # Server settings
    port: int
    log_level: str
    log_path: str
    log_color: bool
    max_request_bytes: int
    user_agent: str

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        return cls(
            endpoint_url=_env_str("LLM_ENDPOINT_URL", DEFAULT_ENDPOINT_URL),
            api_key=_env_str("LLM_API_KEY", ""),
            model_candidates=_csv_list("LLM_MODELS"),
            http_referer=_env_str("LLM_HTTP_REFERER", ""),
            x_title=_env_str("LLM_X_TITLE", ""),
            retry_backoff_s=_env_int("RETRY_BACKOFF_MS", 400) / 1000.0,
            request_timeout_s=_env_float("REQUEST_TIMEOUT_S", 30.0),
            port=_env_int("PORT", 8000),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            log_path=_env_str("LOG_PATH", ""),
            log_color=_env_bool("LOG_COLOR", True),
            max_request_bytes=_env_int("MAX_REQUEST_BYTES", 1_000_000),
            user_agent=_env_str("USER_AGENT", "chat-relay/0.3.0"),
        )

    def validate(self, require_api_key: bool = True) -> None:
        """Validate configuration."""
        if require_api_key and not self.api_key:
            raise ValueError("LLM_API_KEY is required")
        if not self.model_candidates:
            raise ValueError("LLM_MODELS must list at least one model")
        if not self.endpoint_url.startswith(("http://", "https://")):
            raise ValueError("LLM_ENDPOINT_URL must be an http(s) URL")
        if self.retry_backoff_s < 0:
            raise ValueError("RETRY_BACKOFF_MS must be >= 0")
        if self.request_timeout_s <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        if self.max_request_bytes <= 0:
            raise ValueError("MAX_REQUEST_BYTES must be > 0")
        if not self.user_agent:
            raise ValueError("USER_AGENT must be non-empty")


def load_config() -> AppConfig:
    """Load configuration from environment."""
    return AppConfig.from_env()
