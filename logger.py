"""Logging configuration for the chat relay service."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

import colorlog

LOGGER_NAME = "chat_relay"


def setup_logging(
    log_path: str | None = None,
    level_name: str = "INFO",
    use_color: bool = True,
) -> logging.Logger:
    """
    Configure the service logger.

    With a log path, records go to a rotating file (1 MB, 3 backups);
    otherwise, or if the file cannot be opened, they go to stderr.

    LOG_LEVEL=DISABLE disables logging entirely.
    """
    level_name = (level_name or "INFO").upper().strip()
    logger = logging.getLogger(LOGGER_NAME)

    # Clear existing handlers to avoid duplication
    logger.handlers.clear()

    if level_name == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        logger.propagate = False
        return logger

    logging.disable(logging.NOTSET)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    handler, fallback_err = _create_log_handler(log_path)
    handler.setFormatter(
        _create_log_formatter(use_color and not isinstance(handler, RotatingFileHandler))
    )

    logger.addHandler(handler)
    if fallback_err is not None:
        logger.warning(
            "Failed to open log file %r (%s). Falling back to stderr logging.",
            log_path,
            fallback_err,
        )
    logger.propagate = False
    return logger


def _create_log_handler(log_path: str | None) -> tuple[logging.Handler, Exception | None]:
    """Create log handler with fallback to StreamHandler on error."""
    if not log_path:
        return logging.StreamHandler(), None
    try:
        return RotatingFileHandler(
            log_path,
            maxBytes=1_048_576,  # 1 MB
            backupCount=3,
            encoding="utf-8",
        ), None
    except OSError as e:
        return logging.StreamHandler(), e


def _create_log_formatter(use_color: bool) -> logging.Formatter:
    """Create log formatter; colored for terminal output."""
    if use_color:
        return colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s - %(message)s",
            reset=True,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    return logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")


def mask_secret(s: str, keep_start: int = 6, keep_end: int = 4) -> str:
    """Mask a secret string, keeping only start and end characters."""
    s = (s or "").strip()
    if not s:
        return ""
    if len(s) <= keep_start + keep_end:
        return "*" * len(s)
    return f"{s[:keep_start]}...{s[-keep_end:]}"
